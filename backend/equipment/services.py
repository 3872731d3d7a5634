"""
Custody operations on equipment and transfer requests.

Every mutating operation runs in one database transaction that locks the rows
it reads (transfer request first, then equipment), applies the custody change
and writes a CustodyEvent describing its action log entry and notifications.
Those side effects are dispatched after commit; their failure never undoes
the custody change.
"""
import functools
import logging

from django.db import DatabaseError, IntegrityError, transaction
from django.utils import timezone

from audit.models import ActionLog
from audit.utils import ActionLogHelpers
from . import history
from .dispatch import build_event_payload
from .exceptions import (
    EquipmentError,
    EquipmentNotFound,
    InvalidEquipmentOperation,
    InvalidTransferState,
    TransferError,
    TransferPermissionDenied,
    TransferRequestNotFound,
)
from .models import CustodyEvent, Equipment, TransferRequest, build_status_entry
from .notifications import (
    EVENT_TRANSFER_APPROVED,
    EVENT_TRANSFER_COMPLETED,
    EVENT_TRANSFER_REJECTED,
    EVENT_TRANSFER_REQUEST,
)
from .tasks import dispatch_custody_event_task, send_transfer_reminder_task

logger = logging.getLogger(__name__)

PENDING_TRANSFER_EXISTS = 'Equipment already has a pending transfer request'


def _wrap_database_errors(action, error_class=TransferError):
    """
    Turn unexpected database failures into a domain error with a fixed message.
    Must sit outside @transaction.atomic so the rollback has happened first.
    """
    def decorator(func):
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            try:
                return func(*args, **kwargs)
            except DatabaseError as e:
                logger.error(f"Error trying to {action}: {e}", exc_info=True)
                raise error_class(f"Failed to {action}") from e
        return wrapper
    return decorator


def _enqueue_dispatch(event_id):
    try:
        dispatch_custody_event_task.delay(event_id)
    except Exception as e:
        # The periodic drain picks the event up later.
        logger.error(f"Failed to enqueue custody event {event_id}: {e}", exc_info=True)


def _record_event(event_type, equipment, transfer_request=None, action_log=None, notifications=None):
    event = CustodyEvent.objects.create(
        event_type=event_type,
        equipment=equipment,
        transfer_request=transfer_request,
        payload=build_event_payload(equipment, transfer_request, action_log, notifications),
    )
    transaction.on_commit(functools.partial(_enqueue_dispatch, event.pk))
    return event


def _notification(event, recipients, actor_name):
    return {
        'event': event,
        'recipients': [user_id for user_id in recipients if user_id is not None],
        'actor_name': actor_name,
    }


def _lock_equipment(equipment_id):
    try:
        return Equipment.objects.select_for_update().get(pk=equipment_id)
    except Equipment.DoesNotExist:
        raise EquipmentNotFound()


def _lock_transfer_request(transfer_request_id):
    try:
        return TransferRequest.objects.select_for_update().get(pk=transfer_request_id)
    except TransferRequest.DoesNotExist:
        raise TransferRequestNotFound()


def _lock_pending_transfer_request(transfer_request_id):
    transfer_request = _lock_transfer_request(transfer_request_id)
    if not transfer_request.is_pending:
        raise InvalidTransferState()
    return transfer_request


def _apply_to_equipment(equipment, entry, **changes):
    """Set fields, append the tracking history entry and save."""
    for field, value in changes.items():
        setattr(equipment, field, value)
    equipment.tracking_history = history.add_tracking_history_entry(equipment.tracking_history, entry)
    equipment.save(update_fields=[*changes, 'tracking_history', 'updated_at'])


# Transfer requests

@_wrap_database_errors('create transfer request')
@transaction.atomic
def create_transfer_request(equipment_id, to_user, reason, from_user, note=None):
    """
    Open a PENDING transfer request for an equipment item and mark the item
    PENDING_TRANSFER. Returns the new request id.
    """
    equipment = _lock_equipment(equipment_id)
    if equipment.is_pending_transfer or TransferRequest.objects.filter(
        equipment=equipment, status=TransferRequest.STATUS_PENDING
    ).exists():
        raise InvalidTransferState(PENDING_TRANSFER_EXISTS)

    try:
        with transaction.atomic():
            transfer_request = TransferRequest.objects.create(
                equipment=equipment,
                equipment_serial=equipment.serial_number,
                equipment_name=equipment.product_name,
                from_user=from_user,
                from_user_name=from_user.display_name,
                to_user=to_user,
                to_user_name=to_user.display_name,
                reason=reason,
                note=note,
                status=TransferRequest.STATUS_PENDING,
                status_history=[
                    build_status_entry(TransferRequest.STATUS_PENDING, from_user, 'Transfer request created')
                ],
            )
    except IntegrityError as e:
        raise InvalidTransferState(PENDING_TRANSFER_EXISTS) from e

    _apply_to_equipment(
        equipment,
        history.create_transfer_requested_entry(
            from_user.display_name, to_user.display_name, equipment.location, reason, from_user.pk
        ),
        status=Equipment.STATUS_PENDING_TRANSFER,
    )

    _record_event(
        ActionLog.TRANSFER_REQUESTED,
        equipment,
        transfer_request,
        action_log=ActionLogHelpers.transfer_requested(equipment, from_user, to_user, reason),
        notifications=[
            _notification(EVENT_TRANSFER_REQUEST, [to_user.pk], from_user.display_name),
        ],
    )
    logger.info(
        f"Transfer request {transfer_request.pk} created for {equipment.serial_number}: "
        f"{from_user.display_name} -> {to_user.display_name}"
    )
    return transfer_request.pk


@_wrap_database_errors('approve transfer request')
@transaction.atomic
def approve_transfer_request(transfer_request_id, approver, note=None):
    """
    Approve a PENDING request: custody moves to the recipient and the item
    becomes AVAILABLE again.
    """
    transfer_request = _lock_pending_transfer_request(transfer_request_id)
    equipment = _lock_equipment(transfer_request.equipment_id)

    transfer_request.transition_to(TransferRequest.STATUS_APPROVED, approver, note)
    transfer_request.save(update_fields=['status', 'status_history', 'updated_at'])

    _apply_to_equipment(
        equipment,
        history.create_transfer_approved_entry(
            transfer_request.to_user_name, equipment.location, approver.pk, approver.display_name, note
        ),
        current_holder=transfer_request.to_user,
        current_holder_name=transfer_request.to_user_name,
        status=Equipment.STATUS_AVAILABLE,
    )

    _record_event(
        ActionLog.TRANSFER_APPROVED,
        equipment,
        transfer_request,
        action_log=ActionLogHelpers.transfer_approved(
            equipment, approver, transfer_request.to_user, note, to_user_name=transfer_request.to_user_name
        ),
        notifications=[
            _notification(EVENT_TRANSFER_APPROVED, [transfer_request.from_user_id], approver.display_name),
            _notification(
                EVENT_TRANSFER_COMPLETED,
                [transfer_request.from_user_id, transfer_request.to_user_id],
                approver.display_name,
            ),
        ],
    )
    logger.info(f"Transfer request {transfer_request.pk} approved by {approver.display_name}")


@_wrap_database_errors('reject transfer request')
@transaction.atomic
def reject_transfer_request(transfer_request_id, rejector, reason=None):
    """
    Reject a PENDING request. The holder is unchanged and the item becomes
    AVAILABLE again.
    """
    transfer_request = _lock_pending_transfer_request(transfer_request_id)
    equipment = _lock_equipment(transfer_request.equipment_id)

    transfer_request.transition_to(TransferRequest.STATUS_REJECTED, rejector, reason)
    transfer_request.save(update_fields=['status', 'status_history', 'updated_at'])

    _apply_to_equipment(
        equipment,
        history.create_transfer_rejected_entry(
            transfer_request.from_user_name, equipment.location, rejector.pk, rejector.display_name, reason
        ),
        status=Equipment.STATUS_AVAILABLE,
    )

    _record_event(
        ActionLog.TRANSFER_REJECTED,
        equipment,
        transfer_request,
        action_log=ActionLogHelpers.transfer_rejected(
            equipment, rejector, transfer_request.from_user, reason,
            from_user_name=transfer_request.from_user_name,
        ),
        notifications=[
            _notification(EVENT_TRANSFER_REJECTED, [transfer_request.from_user_id], rejector.display_name),
        ],
    )
    logger.info(f"Transfer request {transfer_request.pk} rejected by {rejector.display_name}")


@_wrap_database_errors('cancel transfer request')
@transaction.atomic
def cancel_transfer_request(transfer_request_id, canceller, reason=None):
    """
    Withdraw a PENDING request. Only the original requester may cancel.
    """
    transfer_request = _lock_pending_transfer_request(transfer_request_id)
    if transfer_request.from_user_id != canceller.pk:
        raise TransferPermissionDenied('Only the original requester can cancel the transfer')
    equipment = _lock_equipment(transfer_request.equipment_id)

    transfer_request.transition_to(
        TransferRequest.STATUS_CANCELLED, canceller, reason or 'Transfer cancelled by requester'
    )
    transfer_request.save(update_fields=['status', 'status_history', 'updated_at'])

    _apply_to_equipment(
        equipment,
        history.create_transfer_cancelled_entry(
            transfer_request.from_user_name, equipment.location, canceller.pk, canceller.display_name, reason
        ),
        status=Equipment.STATUS_AVAILABLE,
    )

    _record_event(
        ActionLog.TRANSFER_CANCELLED,
        equipment,
        transfer_request,
        action_log=ActionLogHelpers.transfer_cancelled(
            equipment, canceller, transfer_request.to_user, reason,
            to_user_name=transfer_request.to_user_name,
        ),
    )
    logger.info(f"Transfer request {transfer_request.pk} cancelled by {canceller.display_name}")


@_wrap_database_errors('send transfer reminder')
def send_transfer_reminder(transfer_request_id, reminder_user):
    """
    Nudge the recipient of a PENDING request. Only the original requester may
    send reminders. Nothing is written; a failed notification is only logged.
    """
    try:
        transfer_request = TransferRequest.objects.get(pk=transfer_request_id)
    except TransferRequest.DoesNotExist:
        raise TransferRequestNotFound()
    if not transfer_request.is_pending:
        raise InvalidTransferState()
    if transfer_request.from_user_id != reminder_user.pk:
        raise TransferPermissionDenied('Only the original requester can send reminders')

    try:
        send_transfer_reminder_task.delay(transfer_request.pk, reminder_user.display_name)
    except Exception as e:
        logger.error(f"Failed to send reminder for transfer request {transfer_request.pk}: {e}", exc_info=True)


def get_equipment_transfer_requests(equipment_id):
    """All requests for one item, newest first."""
    return TransferRequest.objects.filter(equipment_id=equipment_id).order_by('-created_at', '-id')


def get_pending_transfer_requests_for_user(user):
    """PENDING requests addressed to `user`, newest first."""
    return TransferRequest.objects.filter(
        to_user=user, status=TransferRequest.STATUS_PENDING
    ).order_by('-created_at', '-id')


def get_all_pending_transfer_requests():
    return TransferRequest.objects.filter(status=TransferRequest.STATUS_PENDING).order_by('-created_at', '-id')


def get_pending_transfer_request_for_equipment(equipment_id):
    return TransferRequest.objects.filter(
        equipment_id=equipment_id, status=TransferRequest.STATUS_PENDING
    ).first()


# Equipment

@_wrap_database_errors('register equipment', EquipmentError)
@transaction.atomic
def register_equipment(serial_number, product_name, category, created_by, holder=None,
                       location='', condition=Equipment.CONDITION_GOOD, notes=None):
    """
    Create a new AVAILABLE item, optionally already signed out to `holder`.
    """
    if condition not in dict(Equipment.EQUIPMENT_CONDITION_CHOICES):
        raise InvalidEquipmentOperation(f"Invalid equipment condition: {condition}")

    holder_name = holder.display_name if holder else ''
    equipment = Equipment(
        serial_number=serial_number,
        product_name=product_name,
        category=category,
        location=location or '',
        condition=condition,
        status=Equipment.STATUS_AVAILABLE,
        current_holder=holder,
        current_holder_name=holder_name,
        notes=notes,
        tracking_history=history.add_tracking_history_entry(
            [], history.create_equipment_created_entry(holder_name, location or '', created_by.pk, notes)
        ),
    )
    try:
        with transaction.atomic():
            equipment.save()
    except IntegrityError as e:
        raise InvalidEquipmentOperation('Equipment with this serial number already exists') from e

    _record_event(
        ActionLog.EQUIPMENT_CREATED,
        equipment,
        action_log=ActionLogHelpers.equipment_created(equipment, created_by, holder),
    )
    logger.info(f"Equipment {equipment.serial_number} registered by {created_by.display_name}")
    return equipment


def _lock_idle_equipment(equipment_id):
    equipment = _lock_equipment(equipment_id)
    if equipment.is_pending_transfer:
        raise InvalidTransferState('Equipment has a pending transfer request')
    return equipment


@_wrap_database_errors('update equipment status', EquipmentError)
@transaction.atomic
def update_equipment_status(equipment_id, new_status, user, note=None):
    """
    Set the operational status of an item. PENDING_TRANSFER is owned by the
    transfer workflow and can neither be set nor overridden here.
    """
    if new_status == Equipment.STATUS_PENDING_TRANSFER:
        raise InvalidEquipmentOperation('Pending transfer status is set by transfer requests only')
    if new_status not in dict(Equipment.EQUIPMENT_STATUS_CHOICES):
        raise InvalidEquipmentOperation(f"Invalid equipment status: {new_status}")

    equipment = _lock_idle_equipment(equipment_id)
    _apply_to_equipment(
        equipment,
        history.create_status_update_entry(
            equipment.current_holder_name, equipment.location, new_status, user.pk, note
        ),
        status=new_status,
    )
    _record_event(
        ActionLog.STATUS_UPDATE,
        equipment,
        action_log=ActionLogHelpers.status_update(equipment, user, new_status, note),
    )
    return equipment


@_wrap_database_errors('update equipment condition', EquipmentError)
@transaction.atomic
def update_equipment_condition(equipment_id, new_condition, user, note=None):
    if new_condition not in dict(Equipment.EQUIPMENT_CONDITION_CHOICES):
        raise InvalidEquipmentOperation(f"Invalid equipment condition: {new_condition}")

    equipment = _lock_equipment(equipment_id)
    _apply_to_equipment(
        equipment,
        history.create_condition_update_entry(
            equipment.current_holder_name, equipment.location, new_condition, user.pk, note
        ),
        condition=new_condition,
    )
    _record_event(
        ActionLog.CONDITION_UPDATE,
        equipment,
        action_log=ActionLogHelpers.condition_update(equipment, user, new_condition, note),
    )
    return equipment


@_wrap_database_errors('update equipment location', EquipmentError)
@transaction.atomic
def update_equipment_location(equipment_id, new_location, user, note=None):
    if not new_location or not new_location.strip():
        raise InvalidEquipmentOperation('Location is required')

    equipment = _lock_equipment(equipment_id)
    _apply_to_equipment(
        equipment,
        history.create_location_update_entry(equipment.current_holder_name, new_location, user.pk, note),
        location=new_location,
    )
    _record_event(
        ActionLog.LOCATION_UPDATE,
        equipment,
        action_log=ActionLogHelpers.location_update(equipment, user, new_location, note),
    )
    return equipment


@_wrap_database_errors('start maintenance', EquipmentError)
@transaction.atomic
def start_maintenance(equipment_id, user, note=None):
    equipment = _lock_idle_equipment(equipment_id)
    if equipment.status == Equipment.STATUS_REPAIR:
        raise InvalidEquipmentOperation('Equipment is already under maintenance')

    _apply_to_equipment(
        equipment,
        history.create_maintenance_start_entry(equipment.current_holder_name, equipment.location, user.pk, note),
        status=Equipment.STATUS_REPAIR,
    )
    _record_event(
        ActionLog.MAINTENANCE_START,
        equipment,
        action_log=ActionLogHelpers.maintenance_start(equipment, user, note),
    )
    return equipment


@_wrap_database_errors('complete maintenance', EquipmentError)
@transaction.atomic
def complete_maintenance(equipment_id, user, note=None):
    equipment = _lock_equipment(equipment_id)
    if equipment.status != Equipment.STATUS_REPAIR:
        raise InvalidEquipmentOperation('Equipment is not under maintenance')

    _apply_to_equipment(
        equipment,
        history.create_maintenance_complete_entry(equipment.current_holder_name, equipment.location, user.pk, note),
        status=Equipment.STATUS_AVAILABLE,
    )
    _record_event(
        ActionLog.MAINTENANCE_COMPLETE,
        equipment,
        action_log=ActionLogHelpers.maintenance_complete(equipment, user, note),
    )
    return equipment


@_wrap_database_errors('record daily check-in', EquipmentError)
@transaction.atomic
def record_daily_check_in(equipment_id, user, note=None):
    """Confirm the item was physically seen today."""
    equipment = _lock_equipment(equipment_id)
    _apply_to_equipment(
        equipment,
        history.create_daily_check_in_entry(equipment.current_holder_name, equipment.location, user.pk, note),
        last_seen=timezone.now(),
    )
    _record_event(
        ActionLog.DAILY_CHECK_IN,
        equipment,
        action_log=ActionLogHelpers.daily_check_in(equipment, user, note),
    )
    return equipment
