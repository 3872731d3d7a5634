"""
Transfer request state machine: create, approve, reject, cancel, remind.
"""
import threading
from unittest import mock, skipUnless

from django.contrib.auth import get_user_model
from django.db import DatabaseError, connection
from django.test import TestCase, TransactionTestCase

from accounts.models import Notification
from audit.models import ActionLog
from equipment import services
from equipment.exceptions import (
    EquipmentNotFound,
    InvalidTransferState,
    TransferError,
    TransferPermissionDenied,
    TransferRequestNotFound,
)
from equipment.models import CustodyEvent, Equipment, TransferRequest

User = get_user_model()


class TransferTestCase(TestCase):
    def setUp(self):
        self.sender = User.objects.create_user(
            username="cohen", password="pass", first_name="Dana", last_name="Cohen"
        )
        self.recipient = User.objects.create_user(
            username="levi", password="pass", first_name="Amit", last_name="Levi"
        )
        self.officer = User.objects.create_user(
            username="mizrahi", password="pass", first_name="Noa", last_name="Mizrahi", role="COMMANDER"
        )
        self.equipment = Equipment.objects.create(
            serial_number="RF-1001",
            product_name="Field Radio",
            category="Communications",
            location="Base A",
            current_holder=self.sender,
            current_holder_name=self.sender.display_name,
        )

    def create_request(self, **kwargs):
        params = {
            'equipment_id': self.equipment.pk,
            'to_user': self.recipient,
            'reason': 'Shift rotation',
            'from_user': self.sender,
        }
        params.update(kwargs)
        with self.captureOnCommitCallbacks(execute=True):
            return services.create_transfer_request(**params)


class CreateTransferRequestTests(TransferTestCase):
    def test_create_opens_pending_request_and_marks_equipment(self):
        transfer_id = self.create_request(note='Bring the charger')

        transfer = TransferRequest.objects.get(pk=transfer_id)
        self.assertEqual(transfer.status, TransferRequest.STATUS_PENDING)
        self.assertEqual(transfer.from_user_name, 'Dana Cohen')
        self.assertEqual(transfer.to_user_name, 'Amit Levi')
        self.assertEqual(transfer.equipment_serial, 'RF-1001')
        self.assertEqual(transfer.note, 'Bring the charger')
        self.assertEqual(len(transfer.status_history), 1)
        self.assertEqual(transfer.status_history[0]['status'], 'PENDING')
        self.assertEqual(transfer.status_history[0]['updated_by'], self.sender.pk)
        self.assertEqual(transfer.status_history[0]['note'], 'Transfer request created')

        self.equipment.refresh_from_db()
        self.assertEqual(self.equipment.status, Equipment.STATUS_PENDING_TRANSFER)
        self.assertEqual(self.equipment.current_holder, self.sender)
        last = self.equipment.tracking_history[-1]
        self.assertEqual(last['action'], 'transfer_requested')
        self.assertEqual(last['notes'], 'Transfer requested to Amit Levi: Shift rotation')
        self.assertIn('timestamp', last)

    def test_create_notifies_recipient_and_logs_after_commit(self):
        transfer_id = self.create_request()

        notification = Notification.objects.get(user=self.recipient)
        self.assertEqual(notification.event, 'transfer_request')
        self.assertEqual(notification.type, 'EQUIPMENT_TRANSFER')
        self.assertEqual(notification.object_id, transfer_id)
        self.assertIn('Dana Cohen', notification.message)
        self.assertFalse(Notification.objects.filter(user=self.sender).exists())

        log = ActionLog.objects.get(action_type=ActionLog.TRANSFER_REQUESTED)
        self.assertEqual(log.actor, self.sender)
        self.assertEqual(log.target, self.recipient)
        self.assertEqual(log.equipment_serial, 'RF-1001')

        event = CustodyEvent.objects.get(transfer_request_id=transfer_id)
        self.assertEqual(event.status, CustodyEvent.STATUS_DISPATCHED)

    def test_side_effects_wait_for_commit(self):
        with self.captureOnCommitCallbacks(execute=False) as callbacks:
            services.create_transfer_request(self.equipment.pk, self.recipient, 'Rotation', self.sender)

        self.assertEqual(len(callbacks), 1)
        self.assertFalse(Notification.objects.exists())
        self.assertFalse(ActionLog.objects.exists())
        self.assertEqual(CustodyEvent.objects.get().status, CustodyEvent.STATUS_PENDING)

    def test_missing_equipment_writes_nothing(self):
        with self.assertRaises(EquipmentNotFound) as ctx:
            self.create_request(equipment_id=999999)

        self.assertEqual(ctx.exception.message, 'Equipment not found')
        self.assertFalse(TransferRequest.objects.exists())
        self.assertFalse(CustodyEvent.objects.exists())
        self.assertFalse(Notification.objects.exists())

    def test_second_pending_request_is_rejected(self):
        self.create_request()
        history_length = len(Equipment.objects.get(pk=self.equipment.pk).tracking_history)

        with self.assertRaises(InvalidTransferState) as ctx:
            self.create_request(to_user=self.officer)

        self.assertEqual(ctx.exception.message, 'Equipment already has a pending transfer request')
        self.assertEqual(TransferRequest.objects.count(), 1)
        self.equipment.refresh_from_db()
        self.assertEqual(len(self.equipment.tracking_history), history_length)

    def test_full_history_evicts_oldest_entry(self):
        self.equipment.tracking_history = [
            {'action': 'daily_check_in', 'notes': f'check {i}'} for i in range(20)
        ]
        self.equipment.save()

        self.create_request()

        self.equipment.refresh_from_db()
        self.assertEqual(len(self.equipment.tracking_history), 20)
        self.assertEqual(self.equipment.tracking_history[0]['notes'], 'check 1')
        self.assertEqual(self.equipment.tracking_history[-1]['action'], 'transfer_requested')

    def test_database_error_becomes_generic_transfer_error(self):
        with mock.patch.object(TransferRequest.objects, 'create', side_effect=DatabaseError('database is locked')):
            with self.assertRaises(TransferError) as ctx:
                self.create_request()

        self.assertNotIsInstance(ctx.exception, InvalidTransferState)
        self.assertEqual(ctx.exception.message, 'Failed to create transfer request')
        self.equipment.refresh_from_db()
        self.assertEqual(self.equipment.status, Equipment.STATUS_AVAILABLE)


class ApproveTransferRequestTests(TransferTestCase):
    def test_approve_moves_custody_to_recipient(self):
        transfer_id = self.create_request()

        with self.captureOnCommitCallbacks(execute=True):
            services.approve_transfer_request(transfer_id, self.officer, note='Verified')

        transfer = TransferRequest.objects.get(pk=transfer_id)
        self.assertEqual(transfer.status, TransferRequest.STATUS_APPROVED)
        self.assertEqual([entry['status'] for entry in transfer.status_history], ['PENDING', 'APPROVED'])
        self.assertEqual(transfer.status_history[-1]['updated_by'], self.officer.pk)
        self.assertEqual(transfer.status_history[-1]['updated_by_name'], 'Noa Mizrahi')
        self.assertEqual(transfer.status_history[-1]['note'], 'Verified')

        self.equipment.refresh_from_db()
        self.assertEqual(self.equipment.status, Equipment.STATUS_AVAILABLE)
        self.assertEqual(self.equipment.current_holder, self.recipient)
        self.assertEqual(self.equipment.current_holder_name, 'Amit Levi')
        last = self.equipment.tracking_history[-1]
        self.assertEqual(last['action'], 'transfer_approved')
        self.assertEqual(last['holder'], 'Amit Levi')
        self.assertEqual(last['notes'], 'Transfer approved by Noa Mizrahi: Verified')

    def test_approve_notifies_both_parties(self):
        transfer_id = self.create_request()
        with self.captureOnCommitCallbacks(execute=True):
            services.approve_transfer_request(transfer_id, self.officer)

        sender_events = set(Notification.objects.filter(user=self.sender).values_list('event', flat=True))
        recipient_events = set(Notification.objects.filter(user=self.recipient).values_list('event', flat=True))
        self.assertEqual(sender_events, {'transfer_approved', 'transfer_completed'})
        self.assertEqual(recipient_events, {'transfer_request', 'transfer_completed'})

        log = ActionLog.objects.get(action_type=ActionLog.TRANSFER_APPROVED)
        self.assertEqual(log.actor, self.officer)
        self.assertEqual(log.target_name, 'Amit Levi')

    def test_second_approve_fails_and_changes_nothing(self):
        transfer_id = self.create_request()
        with self.captureOnCommitCallbacks(execute=True):
            services.approve_transfer_request(transfer_id, self.officer)
        self.equipment.refresh_from_db()
        history_length = len(self.equipment.tracking_history)

        with self.assertRaises(InvalidTransferState) as ctx:
            services.approve_transfer_request(transfer_id, self.officer)

        self.assertEqual(ctx.exception.message, 'Transfer request is not pending')
        self.equipment.refresh_from_db()
        self.assertEqual(len(self.equipment.tracking_history), history_length)
        self.assertEqual(len(TransferRequest.objects.get(pk=transfer_id).status_history), 2)
        self.assertEqual(ActionLog.objects.filter(action_type=ActionLog.TRANSFER_APPROVED).count(), 1)

    def test_reject_after_approve_fails(self):
        transfer_id = self.create_request()
        services.approve_transfer_request(transfer_id, self.officer)

        with self.assertRaises(InvalidTransferState):
            services.reject_transfer_request(transfer_id, self.officer)

        self.equipment.refresh_from_db()
        self.assertEqual(self.equipment.current_holder, self.recipient)

    def test_unknown_request(self):
        with self.assertRaises(TransferRequestNotFound) as ctx:
            services.approve_transfer_request(424242, self.officer)
        self.assertEqual(ctx.exception.message, 'Transfer request not found')


@skipUnless(connection.vendor == 'postgresql', 'row locks need PostgreSQL')
class ConcurrentDecisionTests(TransactionTestCase):
    def setUp(self):
        self.sender = User.objects.create_user(username="cohen", password="pass")
        self.recipient = User.objects.create_user(username="levi", password="pass")
        self.officer = User.objects.create_user(username="mizrahi", password="pass", role="COMMANDER")
        self.equipment = Equipment.objects.create(
            serial_number="RF-2002",
            product_name="Field Radio",
            category="Communications",
            current_holder=self.sender,
            current_holder_name=self.sender.display_name,
        )
        enqueue = mock.patch('equipment.services._enqueue_dispatch')
        enqueue.start()
        self.addCleanup(enqueue.stop)
        self.transfer_id = services.create_transfer_request(
            self.equipment.pk, self.recipient, 'Shift rotation', self.sender
        )

    def race(self, *operations):
        barrier = threading.Barrier(len(operations))
        outcomes = []

        def run(operation):
            try:
                barrier.wait()
                operation()
                outcomes.append('ok')
            except InvalidTransferState:
                outcomes.append('not pending')
            finally:
                connection.close()

        threads = [threading.Thread(target=run, args=(operation,)) for operation in operations]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
        return sorted(outcomes)

    def test_only_one_of_two_approvals_wins(self):
        outcomes = self.race(
            lambda: services.approve_transfer_request(self.transfer_id, self.recipient),
            lambda: services.approve_transfer_request(self.transfer_id, self.officer),
        )

        self.assertEqual(outcomes, ['not pending', 'ok'])
        transfer = TransferRequest.objects.get(pk=self.transfer_id)
        self.assertEqual(transfer.status, TransferRequest.STATUS_APPROVED)
        self.assertEqual(len(transfer.status_history), 2)
        self.equipment.refresh_from_db()
        self.assertEqual(self.equipment.current_holder, self.recipient)
        self.assertEqual(len(self.equipment.tracking_history), 2)
        self.assertEqual(CustodyEvent.objects.filter(event_type=ActionLog.TRANSFER_APPROVED).count(), 1)

    def test_approve_and_reject_are_exclusive(self):
        outcomes = self.race(
            lambda: services.approve_transfer_request(self.transfer_id, self.recipient),
            lambda: services.reject_transfer_request(self.transfer_id, self.officer),
        )

        self.assertEqual(outcomes, ['not pending', 'ok'])
        transfer = TransferRequest.objects.get(pk=self.transfer_id)
        self.assertEqual(len(transfer.status_history), 2)
        self.equipment.refresh_from_db()
        self.assertEqual(len(self.equipment.tracking_history), 2)
        self.assertEqual(CustodyEvent.objects.count(), 2)


class RejectTransferRequestTests(TransferTestCase):
    def test_reject_keeps_holder(self):
        transfer_id = self.create_request()

        with self.captureOnCommitCallbacks(execute=True):
            services.reject_transfer_request(transfer_id, self.recipient, reason='Not qualified')

        transfer = TransferRequest.objects.get(pk=transfer_id)
        self.assertEqual(transfer.status, TransferRequest.STATUS_REJECTED)
        self.assertEqual(transfer.status_history[-1]['note'], 'Not qualified')

        self.equipment.refresh_from_db()
        self.assertEqual(self.equipment.status, Equipment.STATUS_AVAILABLE)
        self.assertEqual(self.equipment.current_holder, self.sender)
        self.assertEqual(self.equipment.tracking_history[-1]['action'], 'transfer_rejected')
        self.assertEqual(self.equipment.tracking_history[-1]['holder'], 'Dana Cohen')

        notification = Notification.objects.get(user=self.sender)
        self.assertEqual(notification.event, 'transfer_rejected')
        self.assertTrue(ActionLog.objects.filter(action_type=ActionLog.TRANSFER_REJECTED).exists())

    def test_new_request_allowed_after_reject(self):
        transfer_id = self.create_request()
        services.reject_transfer_request(transfer_id, self.recipient)

        second_id = self.create_request(to_user=self.officer)

        self.assertNotEqual(transfer_id, second_id)
        self.assertEqual(TransferRequest.objects.filter(status=TransferRequest.STATUS_PENDING).count(), 1)


class CancelTransferRequestTests(TransferTestCase):
    def test_requester_can_cancel(self):
        transfer_id = self.create_request()

        with self.captureOnCommitCallbacks(execute=True):
            services.cancel_transfer_request(transfer_id, self.sender)

        transfer = TransferRequest.objects.get(pk=transfer_id)
        self.assertEqual(transfer.status, TransferRequest.STATUS_CANCELLED)
        self.assertEqual(transfer.status_history[-1]['note'], 'Transfer cancelled by requester')

        self.equipment.refresh_from_db()
        self.assertEqual(self.equipment.status, Equipment.STATUS_AVAILABLE)
        self.assertEqual(self.equipment.current_holder, self.sender)
        self.assertEqual(self.equipment.tracking_history[-1]['action'], 'transfer_cancelled')

        self.assertTrue(ActionLog.objects.filter(action_type=ActionLog.TRANSFER_CANCELLED).exists())
        # Only the creation notification exists
        self.assertEqual(Notification.objects.count(), 1)

    def test_other_user_cannot_cancel(self):
        transfer_id = self.create_request()
        events_before = CustodyEvent.objects.count()

        with self.assertRaises(TransferPermissionDenied) as ctx:
            services.cancel_transfer_request(transfer_id, self.recipient)

        self.assertEqual(ctx.exception.message, 'Only the original requester can cancel the transfer')
        transfer = TransferRequest.objects.get(pk=transfer_id)
        self.assertEqual(transfer.status, TransferRequest.STATUS_PENDING)
        self.assertEqual(len(transfer.status_history), 1)
        self.equipment.refresh_from_db()
        self.assertEqual(self.equipment.status, Equipment.STATUS_PENDING_TRANSFER)
        self.assertEqual(CustodyEvent.objects.count(), events_before)

    def test_cancel_after_cancel_fails(self):
        transfer_id = self.create_request()
        services.cancel_transfer_request(transfer_id, self.sender, reason='Changed plans')

        with self.assertRaises(InvalidTransferState):
            services.cancel_transfer_request(transfer_id, self.sender)


class TransferReminderTests(TransferTestCase):
    def test_requester_can_remind(self):
        transfer_id = self.create_request()
        updated_at = TransferRequest.objects.get(pk=transfer_id).updated_at

        services.send_transfer_reminder(transfer_id, self.sender)

        reminder = Notification.objects.get(user=self.recipient, event='transfer_reminder')
        self.assertIn('Dana Cohen', reminder.message)
        self.assertEqual(TransferRequest.objects.get(pk=transfer_id).updated_at, updated_at)

    def test_only_requester_can_remind(self):
        transfer_id = self.create_request()

        with self.assertRaises(TransferPermissionDenied) as ctx:
            services.send_transfer_reminder(transfer_id, self.officer)

        self.assertEqual(ctx.exception.message, 'Only the original requester can send reminders')
        self.assertFalse(Notification.objects.filter(event='transfer_reminder').exists())

    def test_cannot_remind_about_closed_request(self):
        transfer_id = self.create_request()
        services.reject_transfer_request(transfer_id, self.recipient)

        with self.assertRaises(InvalidTransferState):
            services.send_transfer_reminder(transfer_id, self.sender)

    def test_notification_failure_is_swallowed(self):
        transfer_id = self.create_request()

        with mock.patch('equipment.services.send_transfer_reminder_task.delay', side_effect=RuntimeError('broker down')):
            services.send_transfer_reminder(transfer_id, self.sender)

        self.assertFalse(Notification.objects.filter(event='transfer_reminder').exists())


class TransferQueryTests(TransferTestCase):
    def test_pending_queries(self):
        transfer_id = self.create_request()

        self.assertEqual([t.pk for t in services.get_pending_transfer_requests_for_user(self.recipient)], [transfer_id])
        self.assertEqual(list(services.get_pending_transfer_requests_for_user(self.sender)), [])
        self.assertEqual([t.pk for t in services.get_all_pending_transfer_requests()], [transfer_id])
        self.assertEqual(services.get_pending_transfer_request_for_equipment(self.equipment.pk).pk, transfer_id)

    def test_equipment_requests_newest_first(self):
        first_id = self.create_request()
        services.cancel_transfer_request(first_id, self.sender)
        second_id = self.create_request(to_user=self.officer)

        ids = [t.pk for t in services.get_equipment_transfer_requests(self.equipment.pk)]
        self.assertEqual(ids, [second_id, first_id])
        self.assertIsNone(services.get_pending_transfer_request_for_equipment(999999))
