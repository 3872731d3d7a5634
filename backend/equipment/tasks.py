"""
Celery tasks for equipment custody side effects.
"""
import logging
from celery import shared_task

from .dispatch import dispatch_custody_event, drain_pending_custody_events
from .models import TransferRequest
from .notifications import notify_transfer_reminder

logger = logging.getLogger(__name__)


@shared_task
def dispatch_custody_event_task(event_id):
    """
    Apply the action log entry and notifications of one committed custody change.
    """
    try:
        return dispatch_custody_event(event_id)
    except Exception as e:
        logger.error(f"Error dispatching custody event {event_id}: {e}", exc_info=True)
        return False


@shared_task
def drain_pending_custody_events_task():
    """
    Periodic task retrying custody events whose side effects have not been applied.
    """
    try:
        return drain_pending_custody_events()
    except Exception as e:
        logger.error(f"Error draining custody events: {e}", exc_info=True)
        return 0


@shared_task
def send_transfer_reminder_task(transfer_request_id, reminder_name):
    """
    Remind the recipient of a pending transfer request. Best effort.
    """
    try:
        transfer_request = TransferRequest.objects.get(pk=transfer_request_id)
        return notify_transfer_reminder(
            transfer_request.to_user_id,
            reminder_name,
            transfer_request.equipment_name,
            equipment_serial=transfer_request.equipment_serial,
            equipment_id=transfer_request.equipment_id,
            transfer_request_id=transfer_request.pk,
        )
    except Exception as e:
        logger.error(f"Error sending transfer reminder for request {transfer_request_id}: {e}", exc_info=True)
        return 0
