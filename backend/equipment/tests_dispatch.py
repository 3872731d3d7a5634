"""
Post-commit side effects: outbox dispatch, retries and failure isolation.
"""
from io import StringIO
from unittest import mock

from django.contrib.auth import get_user_model
from django.core.management import call_command
from django.db import IntegrityError
from django.test import TestCase, TransactionTestCase, override_settings

from accounts.models import Notification
from audit.models import ActionLog
from audit.utils import ActionLogError, ActionLogHelpers
from equipment import services
from equipment.dispatch import build_event_payload, dispatch_custody_event, drain_pending_custody_events
from equipment.models import CustodyEvent, Equipment, TransferRequest
from equipment.notifications import EVENT_TRANSFER_APPROVED, EVENT_TRANSFER_COMPLETED
from equipment.tasks import dispatch_custody_event_task, drain_pending_custody_events_task

User = get_user_model()


class DispatchTestCase(TestCase):
    def setUp(self):
        self.sender = User.objects.create_user(username="sender", password="pass")
        self.recipient = User.objects.create_user(username="recipient", password="pass")
        self.equipment = Equipment.objects.create(
            serial_number="NV-77",
            product_name="Night Vision Goggles",
            category="Optics",
            current_holder=self.sender,
            current_holder_name=self.sender.display_name,
        )

    def make_event(self, notifications=None, action_log=True):
        return CustodyEvent.objects.create(
            event_type=ActionLog.TRANSFER_APPROVED,
            equipment=self.equipment,
            payload=build_event_payload(
                self.equipment,
                action_log=ActionLogHelpers.transfer_approved(self.equipment, self.sender, self.recipient)
                if action_log else None,
                notifications=notifications if notifications is not None else [
                    {'event': EVENT_TRANSFER_APPROVED, 'recipients': [self.sender.pk], 'actor_name': 'sender'},
                    {'event': EVENT_TRANSFER_COMPLETED, 'recipients': [self.sender.pk, self.recipient.pk],
                     'actor_name': 'sender'},
                ],
            ),
        )


class DispatchCustodyEventTests(DispatchTestCase):
    def test_dispatch_records_log_and_notifications_once(self):
        event = self.make_event()

        self.assertTrue(dispatch_custody_event(event.pk))
        self.assertTrue(dispatch_custody_event(event.pk))

        event.refresh_from_db()
        self.assertEqual(event.status, CustodyEvent.STATUS_DISPATCHED)
        self.assertEqual(event.attempts, 1)
        self.assertIsNotNone(event.dispatched_at)
        self.assertEqual(ActionLog.objects.count(), 1)
        self.assertEqual(Notification.objects.count(), 3)

    def test_event_without_action_log(self):
        event = self.make_event(action_log=False, notifications=[])

        self.assertTrue(dispatch_custody_event(event.pk))
        self.assertFalse(ActionLog.objects.exists())

    def test_missing_event(self):
        self.assertFalse(dispatch_custody_event(123456))

    def test_action_log_failure_is_retried_without_duplicating_notifications(self):
        event = self.make_event()

        with mock.patch('equipment.dispatch.record_action', side_effect=ActionLogError()):
            self.assertFalse(dispatch_custody_event(event.pk))

        event.refresh_from_db()
        self.assertEqual(event.status, CustodyEvent.STATUS_PENDING)
        self.assertEqual(event.attempts, 1)
        self.assertFalse(event.action_logged)
        self.assertTrue(event.notified)
        self.assertIn('action log', event.last_error)
        self.assertEqual(Notification.objects.count(), 3)

        self.assertTrue(dispatch_custody_event(event.pk))
        event.refresh_from_db()
        self.assertEqual(event.status, CustodyEvent.STATUS_DISPATCHED)
        self.assertIsNone(event.last_error)
        self.assertEqual(ActionLog.objects.count(), 1)
        self.assertEqual(Notification.objects.count(), 3)

    def test_partial_notification_failure_resumes_after_last_success(self):
        event = self.make_event()

        with mock.patch(
            'equipment.dispatch.send_transfer_notification', side_effect=[1, RuntimeError('mail down')]
        ):
            self.assertFalse(dispatch_custody_event(event.pk))

        event.refresh_from_db()
        self.assertEqual(event.payload['notifications_sent'], 1)
        self.assertFalse(event.notified)
        self.assertTrue(event.action_logged)

        with mock.patch('equipment.dispatch.send_transfer_notification', return_value=2) as send:
            self.assertTrue(dispatch_custody_event(event.pk))

        send.assert_called_once()
        self.assertEqual(send.call_args[0][0], EVENT_TRANSFER_COMPLETED)
        self.assertEqual(ActionLog.objects.count(), 1)

    @override_settings(TRANSFER_EVENT_MAX_ATTEMPTS=2)
    def test_event_fails_after_max_attempts(self):
        event = self.make_event()

        with mock.patch('equipment.dispatch.record_action', side_effect=ActionLogError()):
            dispatch_custody_event(event.pk)
            dispatch_custody_event(event.pk)
            self.assertFalse(dispatch_custody_event(event.pk))

        event.refresh_from_db()
        self.assertEqual(event.status, CustodyEvent.STATUS_FAILED)
        self.assertEqual(event.attempts, 2)

    @override_settings(TRANSFER_EVENT_MAX_ATTEMPTS=2)
    def test_rolled_back_attempt_is_still_counted(self):
        event = self.make_event()

        with mock.patch('equipment.dispatch.record_action', side_effect=IntegrityError('FOREIGN KEY constraint failed')):
            self.assertFalse(dispatch_custody_event(event.pk))
            event.refresh_from_db()
            self.assertEqual(event.status, CustodyEvent.STATUS_PENDING)
            self.assertEqual(event.attempts, 1)
            self.assertIn('FOREIGN KEY', event.last_error)

            self.assertFalse(dispatch_custody_event(event.pk))

        event.refresh_from_db()
        self.assertEqual(event.status, CustodyEvent.STATUS_FAILED)
        self.assertEqual(event.attempts, 2)
        self.assertFalse(Notification.objects.exists())
        self.assertFalse(dispatch_custody_event(event.pk))

    def test_recipients_with_notifications_disabled_are_skipped(self):
        self.recipient.notification_preferences = {'in_app_notifications': False}
        self.recipient.save()
        event = self.make_event()

        self.assertTrue(dispatch_custody_event(event.pk))
        self.assertFalse(Notification.objects.filter(user=self.recipient).exists())
        self.assertEqual(Notification.objects.filter(user=self.sender).count(), 2)


class DrainPendingCustodyEventsTests(DispatchTestCase):
    def test_drain_dispatches_pending_events(self):
        first = self.make_event()
        second = self.make_event(notifications=[])
        CustodyEvent.objects.filter(pk=second.pk).update(status=CustodyEvent.STATUS_FAILED)

        self.assertEqual(drain_pending_custody_events(min_age_seconds=0), 1)
        first.refresh_from_db()
        self.assertEqual(first.status, CustodyEvent.STATUS_DISPATCHED)
        self.assertEqual(CustodyEvent.objects.get(pk=second.pk).status, CustodyEvent.STATUS_FAILED)

    def test_drain_skips_recent_events(self):
        self.make_event()
        self.assertEqual(drain_pending_custody_events(min_age_seconds=3600), 0)

    def test_management_command(self):
        self.make_event()
        out = StringIO()

        call_command('dispatch_custody_events', stdout=out)

        self.assertIn('Dispatched 1 of 1 pending custody events', out.getvalue())
        self.assertFalse(CustodyEvent.objects.filter(status=CustodyEvent.STATUS_PENDING).exists())


class CustodyTaskTests(DispatchTestCase):
    def test_dispatch_task_swallows_errors(self):
        event = self.make_event()
        with mock.patch('equipment.tasks.dispatch_custody_event', side_effect=RuntimeError('boom')):
            self.assertFalse(dispatch_custody_event_task(event.pk))

    def test_drain_task_swallows_errors(self):
        with mock.patch('equipment.tasks.drain_pending_custody_events', side_effect=RuntimeError('boom')):
            self.assertEqual(drain_pending_custody_events_task(), 0)


class SideEffectIsolationTests(DispatchTestCase):
    def test_failed_side_effects_do_not_undo_transfer(self):
        with self.captureOnCommitCallbacks(execute=True):
            transfer_id = services.create_transfer_request(self.equipment.pk, self.recipient, 'Swap', self.sender)

        with mock.patch('equipment.dispatch.record_action', side_effect=ActionLogError()), \
                mock.patch('equipment.dispatch.send_transfer_notification', side_effect=RuntimeError('down')):
            with self.captureOnCommitCallbacks(execute=True):
                services.approve_transfer_request(transfer_id, self.recipient)

        self.assertEqual(TransferRequest.objects.get(pk=transfer_id).status, TransferRequest.STATUS_APPROVED)
        self.equipment.refresh_from_db()
        self.assertEqual(self.equipment.current_holder, self.recipient)

        event = CustodyEvent.objects.filter(transfer_request_id=transfer_id).last()
        self.assertEqual(event.status, CustodyEvent.STATUS_PENDING)
        self.assertIn('notifications', event.last_error)

        self.assertTrue(dispatch_custody_event(event.pk))
        self.assertTrue(ActionLog.objects.filter(action_type=ActionLog.TRANSFER_APPROVED).exists())

    def test_enqueue_failure_leaves_event_for_drain(self):
        with mock.patch('equipment.services.dispatch_custody_event_task.delay', side_effect=ConnectionError('no broker')):
            with self.captureOnCommitCallbacks(execute=True):
                transfer_id = services.create_transfer_request(
                    self.equipment.pk, self.recipient, 'Swap', self.sender
                )

        event = CustodyEvent.objects.get(transfer_request_id=transfer_id)
        self.assertEqual(event.status, CustodyEvent.STATUS_PENDING)
        self.assertFalse(Notification.objects.exists())

        self.assertEqual(drain_pending_custody_events(min_age_seconds=0), 1)
        self.assertTrue(Notification.objects.filter(user=self.recipient, event='transfer_request').exists())


class DeletedReferenceDispatchTests(TransactionTestCase):
    def setUp(self):
        self.actor = User.objects.create_user(username="actor", password="pass", first_name="Yael", last_name="Ben")
        self.equipment = Equipment.objects.create(
            serial_number="TH-5", product_name="Thermal Scope", category="Optics"
        )

    def make_status_event(self):
        return CustodyEvent.objects.create(
            event_type=ActionLog.STATUS_UPDATE,
            equipment=self.equipment,
            payload=build_event_payload(
                self.equipment, action_log=ActionLogHelpers.status_update(self.equipment, self.actor, 'LOST')
            ),
        )

    def test_actor_deleted_before_dispatch(self):
        event = self.make_status_event()
        self.actor.delete()

        self.assertTrue(dispatch_custody_event(event.pk))

        event.refresh_from_db()
        self.assertEqual(event.status, CustodyEvent.STATUS_DISPATCHED)
        self.assertEqual(event.attempts, 1)
        log = ActionLog.objects.get()
        self.assertIsNone(log.actor)
        self.assertEqual(log.actor_name, 'Yael Ben')
        self.assertEqual(log.equipment, self.equipment)

    def test_equipment_deleted_before_dispatch(self):
        event = self.make_status_event()
        self.equipment.delete()

        self.assertTrue(dispatch_custody_event(event.pk))

        log = ActionLog.objects.get()
        self.assertIsNone(log.equipment)
        self.assertEqual(log.equipment_serial, 'TH-5')
