"""
Tracking history ring buffer.
"""
from datetime import datetime, timedelta, timezone as dt_timezone
from unittest import mock

from django.test import SimpleTestCase

from equipment import history


def _stamp(day):
    return datetime(2024, 1, day, 12, 0, tzinfo=dt_timezone.utc)


class AddTrackingHistoryEntryTests(SimpleTestCase):
    def test_appends_entry_with_server_timestamp(self):
        now = _stamp(1)
        with mock.patch('django.utils.timezone.now', return_value=now):
            updated = history.add_tracking_history_entry(
                [], history.create_daily_check_in_entry('Pvt. Levi', 'Armory', 7)
            )

        self.assertEqual(len(updated), 1)
        self.assertEqual(updated[0]['action'], history.ACTION_DAILY_CHECK_IN)
        self.assertEqual(updated[0]['holder'], 'Pvt. Levi')
        self.assertEqual(updated[0]['updated_by'], 7)
        self.assertEqual(updated[0]['timestamp'], now.isoformat())

    def test_none_history_is_treated_as_empty(self):
        updated = history.add_tracking_history_entry(None, {'action': 'x'})
        self.assertEqual([entry['action'] for entry in updated], ['x'])

    def test_input_list_is_not_mutated(self):
        original = [{'action': 'a', 'timestamp': _stamp(1).isoformat()}]
        history.add_tracking_history_entry(original, {'action': 'b'})
        self.assertEqual(len(original), 1)

    def test_entry_timestamp_overrides_caller_value(self):
        now = _stamp(3)
        with mock.patch('django.utils.timezone.now', return_value=now):
            updated = history.add_tracking_history_entry([], {'action': 'x', 'timestamp': 'bogus'})
        self.assertEqual(updated[0]['timestamp'], now.isoformat())

    def test_below_capacity_keeps_everything(self):
        current = [{'action': f'a{i}'} for i in range(19)]
        updated = history.add_tracking_history_entry(current, {'action': 'new'})
        self.assertEqual(len(updated), 20)
        self.assertEqual(updated[0]['action'], 'a0')
        self.assertEqual(updated[-1]['action'], 'new')

    def test_full_history_evicts_oldest(self):
        current = [{'action': f'a{i}'} for i in range(1, 21)]
        updated = history.add_tracking_history_entry(current, {'action': 'a21'})

        self.assertEqual(len(updated), history.MAX_TRACKING_HISTORY_ENTRIES)
        self.assertEqual(updated[0]['action'], 'a2')
        self.assertEqual(updated[-1]['action'], 'a21')

    def test_twenty_five_appends_keep_last_twenty_in_order(self):
        entries = []
        for i in range(1, 26):
            entries = history.add_tracking_history_entry(entries, {'action': f'e{i}'})

        self.assertEqual(len(entries), 20)
        self.assertEqual([entry['action'] for entry in entries], [f'e{i}' for i in range(6, 26)])

    def test_oversized_history_only_drops_one_entry(self):
        current = [{'action': f'a{i}'} for i in range(22)]
        updated = history.add_tracking_history_entry(current, {'action': 'new'})
        self.assertEqual(len(updated), 22)
        self.assertEqual(updated[0]['action'], 'a1')


class HistoryEntryFactoryTests(SimpleTestCase):
    def test_transfer_requested_entry(self):
        entry = history.create_transfer_requested_entry('Sgt. Cohen', 'Pvt. Levi', 'Base A', 'Rotation', 3)
        self.assertEqual(entry, {
            'action': 'transfer_requested',
            'holder': 'Sgt. Cohen',
            'location': 'Base A',
            'notes': 'Transfer requested to Pvt. Levi: Rotation',
            'updated_by': 3,
        })

    def test_transfer_approved_entry_with_and_without_note(self):
        plain = history.create_transfer_approved_entry('Pvt. Levi', 'Base A', 4, 'Lt. Mizrahi')
        noted = history.create_transfer_approved_entry('Pvt. Levi', 'Base A', 4, 'Lt. Mizrahi', 'ok')
        self.assertEqual(plain['notes'], 'Transfer approved by Lt. Mizrahi')
        self.assertEqual(noted['notes'], 'Transfer approved by Lt. Mizrahi: ok')
        self.assertEqual(plain['holder'], 'Pvt. Levi')

    def test_rejected_and_cancelled_entries_keep_original_holder(self):
        rejected = history.create_transfer_rejected_entry('Sgt. Cohen', 'Base A', 4, 'Lt. Mizrahi', 'not now')
        cancelled = history.create_transfer_cancelled_entry('Sgt. Cohen', 'Base A', 3, 'Sgt. Cohen')
        self.assertEqual(rejected['holder'], 'Sgt. Cohen')
        self.assertEqual(rejected['notes'], 'Transfer rejected by Lt. Mizrahi: not now')
        self.assertEqual(cancelled['notes'], 'Transfer cancelled by Sgt. Cohen')

    def test_default_notes(self):
        self.assertEqual(history.create_equipment_created_entry('', '', 1)['notes'], 'Equipment created in system')
        self.assertEqual(history.create_status_update_entry('', '', 'LOST', 1)['notes'], 'Status updated to: LOST')
        self.assertEqual(history.create_maintenance_start_entry('', '', 1)['notes'], 'Maintenance started')
        self.assertEqual(history.create_daily_check_in_entry('', '', 1)['notes'], 'Daily status check completed')

    def test_location_entry_records_new_location(self):
        entry = history.create_location_update_entry('Pvt. Levi', 'Base B', 1)
        self.assertEqual(entry['location'], 'Base B')


class HistoryQueryTests(SimpleTestCase):
    def setUp(self):
        self.entries = [
            {'action': 'equipment_created', 'timestamp': _stamp(1).isoformat()},
            {'action': 'daily_check_in', 'timestamp': _stamp(2).isoformat()},
            {'action': 'daily_check_in', 'timestamp': 'not-a-date'},
            {'action': 'status_update'},
            {'action': 'daily_check_in', 'timestamp': _stamp(4).isoformat()},
        ]

    def test_most_recent_entry(self):
        self.assertEqual(history.get_most_recent_history_entry(self.entries)['action'], 'daily_check_in')
        self.assertIsNone(history.get_most_recent_history_entry([]))
        self.assertIsNone(history.get_most_recent_history_entry(None))

    def test_entries_by_action(self):
        matches = history.get_history_entries_by_action(self.entries, 'daily_check_in')
        self.assertEqual(len(matches), 3)
        self.assertEqual(history.get_history_entries_by_action(None, 'daily_check_in'), [])

    def test_date_range_is_inclusive_and_skips_bad_timestamps(self):
        matches = history.get_history_entries_by_date_range(self.entries, _stamp(2), _stamp(4))
        self.assertEqual([entry['timestamp'] for entry in matches], [_stamp(2).isoformat(), _stamp(4).isoformat()])

    def test_date_range_accepts_naive_bounds_as_utc(self):
        start = datetime(2024, 1, 1, 0, 0)
        end = start + timedelta(days=1)
        matches = history.get_history_entries_by_date_range(self.entries, start, end)
        self.assertEqual(len(matches), 1)
        self.assertEqual(matches[0]['action'], 'equipment_created')
