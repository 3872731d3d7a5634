"""
Bounded tracking history for equipment records.

The history lives on Equipment.tracking_history as a JSON list, oldest entry
first. It never grows past MAX_TRACKING_HISTORY_ENTRIES; the oldest entry is
evicted to make room. Entries are never edited once appended.
"""
from __future__ import annotations

from datetime import datetime, timezone as dt_timezone
from typing import Any, Optional

from django.utils import timezone
from django.utils.dateparse import parse_datetime

MAX_TRACKING_HISTORY_ENTRIES = 20

ACTION_EQUIPMENT_CREATED = 'equipment_created'
ACTION_TRANSFER_REQUESTED = 'transfer_requested'
ACTION_TRANSFER_APPROVED = 'transfer_approved'
ACTION_TRANSFER_REJECTED = 'transfer_rejected'
ACTION_TRANSFER_CANCELLED = 'transfer_cancelled'
ACTION_STATUS_UPDATE = 'status_update'
ACTION_CONDITION_UPDATE = 'condition_update'
ACTION_LOCATION_UPDATE = 'location_update'
ACTION_MAINTENANCE_START = 'maintenance_start'
ACTION_MAINTENANCE_COMPLETE = 'maintenance_complete'
ACTION_DAILY_CHECK_IN = 'daily_check_in'


def add_tracking_history_entry(current_history: Optional[list[dict]], new_entry: dict) -> list[dict]:
    """
    Append new_entry to a copy of current_history, stamped with the current time.

    If the history is already at capacity the oldest entry (index 0) is dropped
    first. The input list is left untouched so callers can compute the new value
    inside a transaction and write it in one go.
    """
    updated_history = list(current_history or [])

    if len(updated_history) >= MAX_TRACKING_HISTORY_ENTRIES:
        updated_history.pop(0)

    entry = dict(new_entry)
    entry['timestamp'] = timezone.now().isoformat()
    updated_history.append(entry)

    return updated_history


def _entry(action: str, holder: str, location: str, notes: str, updated_by: Any) -> dict:
    return {
        'action': action,
        'holder': holder or '',
        'location': location or '',
        'notes': notes,
        'updated_by': updated_by,
    }


def create_equipment_created_entry(holder_name, location, creator_id, notes=None):
    return _entry(
        ACTION_EQUIPMENT_CREATED, holder_name, location,
        notes or 'Equipment created in system', creator_id,
    )


def create_transfer_requested_entry(from_holder_name, to_holder_name, location, reason, requestor_id):
    return _entry(
        ACTION_TRANSFER_REQUESTED, from_holder_name, location,
        f"Transfer requested to {to_holder_name}: {reason}", requestor_id,
    )


def create_transfer_approved_entry(new_holder_name, location, approver_id, approver_name, note=None):
    notes = f"Transfer approved by {approver_name}"
    if note:
        notes = f"{notes}: {note}"
    return _entry(ACTION_TRANSFER_APPROVED, new_holder_name, location, notes, approver_id)


def create_transfer_rejected_entry(original_holder_name, location, rejector_id, rejector_name, reason=None):
    notes = f"Transfer rejected by {rejector_name}"
    if reason:
        notes = f"{notes}: {reason}"
    return _entry(ACTION_TRANSFER_REJECTED, original_holder_name, location, notes, rejector_id)


def create_transfer_cancelled_entry(original_holder_name, location, canceller_id, canceller_name, reason=None):
    notes = f"Transfer cancelled by {canceller_name}"
    if reason:
        notes = f"{notes}: {reason}"
    return _entry(ACTION_TRANSFER_CANCELLED, original_holder_name, location, notes, canceller_id)


def create_status_update_entry(holder_name, location, new_status, updater_id, note=None):
    return _entry(
        ACTION_STATUS_UPDATE, holder_name, location,
        note or f"Status updated to: {new_status}", updater_id,
    )


def create_condition_update_entry(holder_name, location, new_condition, updater_id, note=None):
    return _entry(
        ACTION_CONDITION_UPDATE, holder_name, location,
        note or f"Condition updated to: {new_condition}", updater_id,
    )


def create_location_update_entry(holder_name, new_location, updater_id, note=None):
    return _entry(
        ACTION_LOCATION_UPDATE, holder_name, new_location,
        note or f"Location updated to: {new_location}", updater_id,
    )


def create_maintenance_start_entry(holder_name, location, updater_id, note=None):
    return _entry(ACTION_MAINTENANCE_START, holder_name, location, note or 'Maintenance started', updater_id)


def create_maintenance_complete_entry(holder_name, location, updater_id, note=None):
    return _entry(ACTION_MAINTENANCE_COMPLETE, holder_name, location, note or 'Maintenance completed', updater_id)


def create_daily_check_in_entry(holder_name, location, updater_id, note=None):
    return _entry(ACTION_DAILY_CHECK_IN, holder_name, location, note or 'Daily status check completed', updater_id)


def get_most_recent_history_entry(tracking_history: Optional[list[dict]]) -> Optional[dict]:
    if not tracking_history:
        return None
    return tracking_history[-1]


def get_history_entries_by_action(tracking_history: Optional[list[dict]], action: str) -> list[dict]:
    return [entry for entry in (tracking_history or []) if entry.get('action') == action]


def _as_aware(value: datetime) -> datetime:
    if timezone.is_naive(value):
        return timezone.make_aware(value, dt_timezone.utc)
    return value


def _entry_timestamp(entry: dict) -> Optional[datetime]:
    value = entry.get('timestamp')
    if isinstance(value, datetime):
        return _as_aware(value)
    if not isinstance(value, str):
        return None
    try:
        parsed = parse_datetime(value)
    except ValueError:
        return None
    if parsed is None:
        return None
    return _as_aware(parsed)


def get_history_entries_by_date_range(tracking_history: Optional[list[dict]], start: datetime, end: datetime) -> list[dict]:
    """
    Entries whose timestamp falls within [start, end]. Entries with a missing or
    unparseable timestamp are skipped.
    """
    start = _as_aware(start)
    end = _as_aware(end)
    matches = []
    for entry in tracking_history or []:
        stamp = _entry_timestamp(entry)
        if stamp is None:
            continue
        if start <= stamp <= end:
            matches.append(entry)
    return matches
