"""
Equipment record operations: registration, status, condition, location,
maintenance and daily check-in.
"""
from django.contrib.auth import get_user_model
from django.test import TestCase

from audit.models import ActionLog
from equipment import services
from equipment.exceptions import EquipmentNotFound, InvalidEquipmentOperation, InvalidTransferState
from equipment.models import Equipment

User = get_user_model()


class EquipmentOperationTests(TestCase):
    def setUp(self):
        self.manager = User.objects.create_user(
            username="manager", password="pass", first_name="Yael", last_name="Peretz", role="EQUIPMENT_MANAGER"
        )
        self.soldier = User.objects.create_user(
            username="soldier", password="pass", first_name="Omer", last_name="Biton"
        )
        with self.captureOnCommitCallbacks(execute=True):
            self.equipment = services.register_equipment(
                "BN-500", "Binoculars", "Optics", self.manager,
                holder=self.soldier, location="Outpost 3",
            )

    def test_register_equipment(self):
        self.assertEqual(self.equipment.status, Equipment.STATUS_AVAILABLE)
        self.assertEqual(self.equipment.current_holder_name, 'Omer Biton')
        self.assertEqual(len(self.equipment.tracking_history), 1)
        self.assertEqual(self.equipment.tracking_history[0]['action'], 'equipment_created')
        self.assertEqual(self.equipment.tracking_history[0]['updated_by'], self.manager.pk)

        log = ActionLog.objects.get(action_type=ActionLog.EQUIPMENT_CREATED)
        self.assertEqual(log.actor, self.manager)
        self.assertEqual(log.target, self.soldier)

    def test_register_duplicate_serial(self):
        with self.assertRaises(InvalidEquipmentOperation) as ctx:
            services.register_equipment("BN-500", "Binoculars", "Optics", self.manager)
        self.assertEqual(ctx.exception.message, 'Equipment with this serial number already exists')
        self.assertEqual(Equipment.objects.count(), 1)

    def test_register_without_holder(self):
        equipment = services.register_equipment("BN-501", "Binoculars", "Optics", self.manager)
        self.assertIsNone(equipment.current_holder)
        self.assertEqual(equipment.current_holder_name, '')

    def test_update_status(self):
        with self.captureOnCommitCallbacks(execute=True):
            equipment = services.update_equipment_status(self.equipment.pk, Equipment.STATUS_LOST, self.manager)

        self.assertEqual(equipment.status, Equipment.STATUS_LOST)
        self.assertEqual(equipment.tracking_history[-1]['notes'], 'Status updated to: LOST')
        log = ActionLog.objects.get(action_type=ActionLog.STATUS_UPDATE)
        self.assertEqual(log.note, 'Status updated to: LOST')

    def test_status_cannot_be_set_to_pending_transfer(self):
        with self.assertRaises(InvalidEquipmentOperation):
            services.update_equipment_status(self.equipment.pk, Equipment.STATUS_PENDING_TRANSFER, self.manager)

    def test_status_locked_while_transfer_pending(self):
        services.create_transfer_request(self.equipment.pk, self.manager, 'Return to stores', self.soldier)

        with self.assertRaises(InvalidTransferState):
            services.update_equipment_status(self.equipment.pk, Equipment.STATUS_LOST, self.manager)
        with self.assertRaises(InvalidTransferState):
            services.start_maintenance(self.equipment.pk, self.manager)

        self.equipment.refresh_from_db()
        self.assertEqual(self.equipment.status, Equipment.STATUS_PENDING_TRANSFER)

    def test_unknown_status(self):
        with self.assertRaises(InvalidEquipmentOperation):
            services.update_equipment_status(self.equipment.pk, 'MELTED', self.manager)

    def test_unknown_equipment(self):
        with self.assertRaises(EquipmentNotFound):
            services.update_equipment_condition(999999, Equipment.CONDITION_WORN, self.manager)

    def test_update_condition_and_location(self):
        services.update_equipment_condition(self.equipment.pk, Equipment.CONDITION_WORN, self.manager, 'Scratched lens')
        equipment = services.update_equipment_location(self.equipment.pk, 'Outpost 4', self.soldier)

        self.assertEqual(equipment.condition, Equipment.CONDITION_WORN)
        self.assertEqual(equipment.location, 'Outpost 4')
        actions = [entry['action'] for entry in equipment.tracking_history]
        self.assertEqual(actions, ['equipment_created', 'condition_update', 'location_update'])
        self.assertEqual(equipment.tracking_history[1]['notes'], 'Scratched lens')

    def test_blank_location_rejected(self):
        with self.assertRaises(InvalidEquipmentOperation):
            services.update_equipment_location(self.equipment.pk, '   ', self.manager)

    def test_maintenance_cycle(self):
        equipment = services.start_maintenance(self.equipment.pk, self.manager)
        self.assertEqual(equipment.status, Equipment.STATUS_REPAIR)

        with self.assertRaises(InvalidEquipmentOperation):
            services.start_maintenance(self.equipment.pk, self.manager)

        equipment = services.complete_maintenance(self.equipment.pk, self.manager, 'New strap')
        self.assertEqual(equipment.status, Equipment.STATUS_AVAILABLE)
        self.assertEqual(equipment.tracking_history[-1]['action'], 'maintenance_complete')
        self.assertEqual(equipment.tracking_history[-1]['notes'], 'New strap')

    def test_complete_maintenance_requires_repair(self):
        with self.assertRaises(InvalidEquipmentOperation) as ctx:
            services.complete_maintenance(self.equipment.pk, self.manager)
        self.assertEqual(ctx.exception.message, 'Equipment is not under maintenance')

    def test_daily_check_in(self):
        self.assertIsNone(self.equipment.last_seen)

        with self.captureOnCommitCallbacks(execute=True):
            equipment = services.record_daily_check_in(self.equipment.pk, self.soldier)

        self.assertIsNotNone(equipment.last_seen)
        self.assertEqual(equipment.tracking_history[-1]['action'], 'daily_check_in')
        self.assertEqual(equipment.tracking_history[-1]['holder'], 'Omer Biton')
        self.assertTrue(ActionLog.objects.filter(action_type=ActionLog.DAILY_CHECK_IN, actor=self.soldier).exists())
