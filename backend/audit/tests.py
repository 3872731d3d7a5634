from datetime import timedelta
from unittest import mock

from django.contrib.auth import get_user_model
from django.db import DatabaseError
from django.test import TestCase
from django.utils import timezone
from rest_framework import status
from rest_framework.test import APITestCase

from audit.models import ActionLog
from audit.utils import (
    ActionLogError,
    ActionLogHelpers,
    get_action_logs_by_actor,
    get_action_logs_by_date_range,
    get_action_logs_by_type,
    get_equipment_action_logs,
    get_recent_action_logs,
    record_action,
)
from equipment.models import Equipment

User = get_user_model()


class ActionLogTestCase(TestCase):
    def setUp(self):
        self.actor = User.objects.create_user(username="actor", password="pass", first_name="Tal", last_name="Azulay")
        self.target = User.objects.create_user(username="target", password="pass")
        self.equipment = Equipment.objects.create(
            serial_number="GPS-3", product_name="GPS Unit", category="Navigation"
        )
        self.other_equipment = Equipment.objects.create(
            serial_number="GPS-4", product_name="GPS Unit", category="Navigation"
        )


class RecordActionTests(ActionLogTestCase):
    def test_record_transfer_requested(self):
        entry = ActionLogHelpers.transfer_requested(self.equipment, self.actor, self.target, 'Rotation')
        log_id = record_action(entry)

        log = ActionLog.objects.get(pk=log_id)
        self.assertEqual(log.action_type, ActionLog.TRANSFER_REQUESTED)
        self.assertEqual(log.equipment, self.equipment)
        self.assertEqual(log.equipment_serial, 'GPS-3')
        self.assertEqual(log.actor_name, 'Tal Azulay')
        self.assertEqual(log.target, self.target)
        self.assertEqual(log.note, 'Rotation')
        self.assertIsNotNone(log.timestamp)

    def test_name_snapshot_used_when_user_missing(self):
        entry = ActionLogHelpers.transfer_approved(self.equipment, self.actor, None, to_user_name='Former Soldier')
        self.assertIsNone(entry['target_id'])
        self.assertEqual(entry['target_name'], 'Former Soldier')

    def test_helper_default_notes(self):
        self.assertEqual(
            ActionLogHelpers.status_update(self.equipment, self.actor, 'LOST')['note'], 'Status updated to: LOST'
        )
        self.assertEqual(
            ActionLogHelpers.location_update(self.equipment, self.actor, 'Base C', 'moved')['note'], 'moved'
        )
        entry = ActionLogHelpers.daily_check_in(self.equipment, self.actor)
        self.assertEqual(entry['action_type'], ActionLog.DAILY_CHECK_IN)
        self.assertIsNone(entry['target_id'])

    def test_unknown_keys_are_ignored(self):
        entry = ActionLogHelpers.maintenance_start(self.equipment, self.actor)
        entry['timestamp'] = 'ignored'
        log = ActionLog.objects.get(pk=record_action(entry))
        self.assertEqual(log.action_type, ActionLog.MAINTENANCE_START)

    def test_deleted_references_are_dropped(self):
        entry = ActionLogHelpers.transfer_requested(self.equipment, self.actor, self.target, 'Rotation')
        self.actor.delete()
        self.equipment.delete()

        log = ActionLog.objects.get(pk=record_action(entry))
        self.assertIsNone(log.actor)
        self.assertIsNone(log.equipment)
        self.assertEqual(log.target, self.target)
        self.assertEqual(log.actor_name, 'Tal Azulay')
        self.assertEqual(log.equipment_serial, 'GPS-3')

    def test_persistence_failure_raises_action_log_error(self):
        entry = ActionLogHelpers.daily_check_in(self.equipment, self.actor)
        with mock.patch.object(ActionLog.objects, 'create', side_effect=DatabaseError('disk full')):
            with self.assertRaises(ActionLogError) as ctx:
                record_action(entry)
        self.assertEqual(ctx.exception.message, 'Failed to create action log entry')


class ActionLogQueryTests(ActionLogTestCase):
    def setUp(self):
        super().setUp()
        self.first = record_action(ActionLogHelpers.equipment_created(self.equipment, self.actor))
        self.second = record_action(ActionLogHelpers.daily_check_in(self.equipment, self.target))
        self.third = record_action(ActionLogHelpers.daily_check_in(self.other_equipment, self.actor))

    def test_equipment_logs_newest_first(self):
        ids = [log.pk for log in get_equipment_action_logs(self.equipment.pk)]
        self.assertEqual(ids, [self.second, self.first])
        self.assertEqual(len(get_equipment_action_logs(self.equipment.pk, limit=1)), 1)
        self.assertEqual(get_equipment_action_logs(self.equipment.pk, limit=0), [])

    def test_logs_by_type(self):
        ids = [log.pk for log in get_action_logs_by_type(ActionLog.DAILY_CHECK_IN)]
        self.assertEqual(ids, [self.third, self.second])

    def test_logs_by_actor(self):
        ids = [log.pk for log in get_action_logs_by_actor(self.actor.pk)]
        self.assertEqual(ids, [self.third, self.first])

    def test_recent_logs(self):
        self.assertEqual([log.pk for log in get_recent_action_logs(limit=2)], [self.third, self.second])
        self.assertEqual(get_recent_action_logs(limit=0), [])

    def test_date_range_is_inclusive(self):
        now = timezone.now()
        self.assertEqual(len(get_action_logs_by_date_range(now - timedelta(minutes=5), now + timedelta(minutes=5))), 3)
        self.assertEqual(get_action_logs_by_date_range(now + timedelta(days=1), now + timedelta(days=2)), [])

    def test_log_survives_equipment_deletion(self):
        self.other_equipment.delete()
        log = ActionLog.objects.get(pk=self.third)
        self.assertIsNone(log.equipment)
        self.assertEqual(log.equipment_serial, 'GPS-4')


class ActionLogApiTests(APITestCase):
    def setUp(self):
        self.commander = User.objects.create_user(username="commander", password="pass", role="COMMANDER")
        self.auditor = User.objects.create_user(username="auditor", password="pass", role="AUDITOR")
        self.soldier = User.objects.create_user(username="soldier", password="pass")
        equipment = Equipment.objects.create(serial_number="CAM-1", product_name="Camera", category="Optics")
        record_action(ActionLogHelpers.equipment_created(equipment, self.commander))
        record_action(ActionLogHelpers.daily_check_in(equipment, self.soldier))

    def test_auditor_can_filter_by_type(self):
        self.client.force_authenticate(self.auditor)
        response = self.client.get('/api/audit/actions/', {'action_type': ActionLog.DAILY_CHECK_IN})
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['count'], 1)
        self.assertEqual(response.data['results'][0]['action_type_display'], 'Daily Check-in')

    def test_soldier_cannot_read_audit_trail(self):
        self.client.force_authenticate(self.soldier)
        response = self.client.get('/api/audit/actions/')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_audit_trail_is_read_only(self):
        self.client.force_authenticate(self.commander)
        response = self.client.post('/api/audit/actions/', {'action_type': 'STATUS_UPDATE'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_405_METHOD_NOT_ALLOWED)
