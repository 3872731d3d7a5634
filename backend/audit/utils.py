"""
Utility functions for the action log.
"""
import logging

from django.conf import settings
from django.db import DatabaseError, transaction

from .models import ActionLog

logger = logging.getLogger(__name__)

RECORDABLE_FIELDS = (
    'action_type', 'equipment_id', 'equipment_serial', 'equipment_name',
    'actor_id', 'actor_name', 'target_id', 'target_name', 'note',
)
RELATED_FIELDS = ('equipment', 'actor', 'target')


class ActionLogError(Exception):
    """Raised when an action log entry cannot be persisted."""

    def __init__(self, message='Failed to create action log entry'):
        self.message = message
        super().__init__(message)


def record_action(entry):
    """
    Persist an action log entry and return its id.

    `entry` is a dict as built by ActionLogHelpers; the timestamp is set by the
    database write. References to rows deleted since the entry was built are
    dropped; the name snapshots remain. Any persistence error is logged and
    raised as ActionLogError.
    """
    data = {key: entry.get(key) for key in RECORDABLE_FIELDS}
    try:
        with transaction.atomic():
            for field in RELATED_FIELDS:
                data[f"{field}_id"] = _existing_pk(field, data[f"{field}_id"])
            log = ActionLog.objects.create(**data)
    except DatabaseError as e:
        logger.error(f"Failed to create action log for {data.get('action_type')}: {e}", exc_info=True)
        raise ActionLogError() from e
    return log.pk


def _existing_pk(field, pk):
    if pk is None:
        return None
    model = ActionLog._meta.get_field(field).related_model
    return pk if model.objects.filter(pk=pk).exists() else None


def _default_limit():
    return settings.ACTION_LOG_DEFAULT_LIMIT


def get_equipment_action_logs(equipment_id, limit=None):
    if limit is None:
        limit = _default_limit()
    return list(ActionLog.objects.filter(equipment_id=equipment_id)[:limit])


def get_action_logs_by_type(action_type, limit=100):
    return list(ActionLog.objects.filter(action_type=action_type)[:limit])


def get_action_logs_by_actor(actor_id, limit=100):
    return list(ActionLog.objects.filter(actor_id=actor_id)[:limit])


def get_recent_action_logs(limit=None):
    if limit is None:
        limit = _default_limit()
    return list(ActionLog.objects.all()[:limit])


def get_action_logs_by_date_range(start, end, limit=200):
    """Entries with start <= timestamp <= end, newest first."""
    return list(
        ActionLog.objects.filter(timestamp__gte=start, timestamp__lte=end)[:limit]
    )


def _party(user, name=None):
    if user is None:
        return None, name
    return user.pk, name or user.display_name


def _base(action_type, equipment, actor, target=None, note=None, target_name=None):
    actor_id, actor_name = _party(actor)
    target_id, target_name = _party(target, target_name)
    return {
        'action_type': action_type,
        'equipment_id': equipment.pk,
        'equipment_serial': equipment.serial_number,
        'equipment_name': equipment.product_name,
        'actor_id': actor_id,
        'actor_name': actor_name,
        'target_id': target_id,
        'target_name': target_name,
        'note': note,
    }


class ActionLogHelpers:
    """
    Build ready-to-record action log entries.

    Every helper returns a JSON-serializable dict so it can be stored in an
    outbox payload and recorded later with record_action(). Transfer helpers
    accept the name snapshot kept on the request, which survives the user
    being deleted.
    """

    @staticmethod
    def transfer_requested(equipment, from_user, to_user, reason):
        return _base(ActionLog.TRANSFER_REQUESTED, equipment, from_user, to_user, reason)

    @staticmethod
    def transfer_approved(equipment, approver, to_user, note=None, to_user_name=None):
        return _base(ActionLog.TRANSFER_APPROVED, equipment, approver, to_user, note, to_user_name)

    @staticmethod
    def transfer_rejected(equipment, rejector, from_user, reason=None, from_user_name=None):
        return _base(ActionLog.TRANSFER_REJECTED, equipment, rejector, from_user, reason, from_user_name)

    @staticmethod
    def transfer_cancelled(equipment, canceller, to_user, reason=None, to_user_name=None):
        return _base(ActionLog.TRANSFER_CANCELLED, equipment, canceller, to_user, reason, to_user_name)

    @staticmethod
    def equipment_created(equipment, creator, holder=None):
        return _base(ActionLog.EQUIPMENT_CREATED, equipment, creator, holder)

    @staticmethod
    def status_update(equipment, updater, new_status, note=None):
        return _base(ActionLog.STATUS_UPDATE, equipment, updater, note=note or f"Status updated to: {new_status}")

    @staticmethod
    def condition_update(equipment, updater, new_condition, note=None):
        return _base(ActionLog.CONDITION_UPDATE, equipment, updater, note=note or f"Condition updated to: {new_condition}")

    @staticmethod
    def location_update(equipment, updater, new_location, note=None):
        return _base(ActionLog.LOCATION_UPDATE, equipment, updater, note=note or f"Location updated to: {new_location}")

    @staticmethod
    def maintenance_start(equipment, updater, note=None):
        return _base(ActionLog.MAINTENANCE_START, equipment, updater, note=note)

    @staticmethod
    def maintenance_complete(equipment, updater, note=None):
        return _base(ActionLog.MAINTENANCE_COMPLETE, equipment, updater, note=note)

    @staticmethod
    def daily_check_in(equipment, user, note=None):
        return _base(ActionLog.DAILY_CHECK_IN, equipment, user, note=note)
