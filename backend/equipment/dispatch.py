"""
Post-commit side effects for custody changes (outbox drain).

Each committed custody change leaves a CustodyEvent row. Dispatching an event
records its action log entry and sends its notifications. Failures are logged
and stored on the event; they never propagate, and the custody change itself
is never rolled back. Pending events are retried until
TRANSFER_EVENT_MAX_ATTEMPTS is reached, then marked FAILED.
"""
import logging
from datetime import timedelta

from django.conf import settings
from django.db import transaction
from django.utils import timezone

from audit.utils import ActionLogError, record_action
from .models import CustodyEvent
from .notifications import send_transfer_notification

logger = logging.getLogger(__name__)


def build_event_payload(equipment, transfer_request=None, action_log=None, notifications=None):
    """
    Payload stored on a CustodyEvent.

    `notifications` is a list of dicts with `event`, `recipients` (user ids) and
    `actor_name`; equipment and transfer identifiers are shared by all of them.
    """
    return {
        'equipment_id': equipment.pk,
        'equipment_serial': equipment.serial_number,
        'equipment_name': equipment.product_name,
        'transfer_request_id': transfer_request.pk if transfer_request else None,
        'action_log': action_log,
        'notifications': notifications or [],
    }


def _send_notifications(event):
    """
    Send the event's notifications in order. Progress is kept in
    payload['notifications_sent'] so a retry resumes after the last success.
    """
    payload = event.payload
    directives = payload.get('notifications', [])
    start = payload.get('notifications_sent', 0)
    for index in range(start, len(directives)):
        directive = directives[index]
        with transaction.atomic():
            send_transfer_notification(
                directive['event'],
                directive['recipients'],
                directive.get('actor_name', ''),
                payload.get('equipment_name', ''),
                equipment_serial=payload.get('equipment_serial'),
                equipment_id=payload.get('equipment_id'),
                transfer_request_id=payload.get('transfer_request_id'),
            )
        payload['notifications_sent'] = index + 1


def dispatch_custody_event(event_id):
    """
    Apply the side effects of one custody event. Returns True once the event
    is fully dispatched.
    """
    try:
        return _dispatch_locked(event_id)
    except Exception as e:
        logger.error(f"Error dispatching custody event {event_id}: {e}", exc_info=True)
        _record_failed_attempt(event_id, f"dispatch: {e}")
        return False


def _mark_attempt_failed(event):
    if event.attempts >= settings.TRANSFER_EVENT_MAX_ATTEMPTS:
        event.status = CustodyEvent.STATUS_FAILED
        logger.error(
            f"Custody event {event.pk} ({event.event_type}) failed after {event.attempts} attempts: {event.last_error}"
        )
    else:
        logger.warning(
            f"Custody event {event.pk} ({event.event_type}) attempt {event.attempts} failed: {event.last_error}"
        )


def _record_failed_attempt(event_id, error):
    """Count an attempt whose dispatch transaction was rolled back."""
    with transaction.atomic():
        event = CustodyEvent.objects.select_for_update().filter(
            pk=event_id, status=CustodyEvent.STATUS_PENDING
        ).first()
        if event is None:
            return
        event.attempts += 1
        event.last_error = error
        _mark_attempt_failed(event)
        event.save(update_fields=['status', 'attempts', 'last_error'])


def _dispatch_locked(event_id):
    with transaction.atomic():
        event = CustodyEvent.objects.select_for_update().filter(pk=event_id).first()
        if event is None:
            logger.warning(f"Custody event {event_id} not found; nothing to dispatch")
            return False
        if event.status != CustodyEvent.STATUS_PENDING:
            return event.status == CustodyEvent.STATUS_DISPATCHED

        event.attempts += 1
        errors = []
        if not isinstance(event.payload, dict):
            event.payload = {}
        payload = event.payload

        if payload.get('action_log') and not event.action_logged:
            try:
                record_action(payload['action_log'])
                event.action_logged = True
            except ActionLogError as e:
                errors.append(f"action log: {e.message}")
        elif not payload.get('action_log'):
            event.action_logged = True

        if not event.notified:
            try:
                _send_notifications(event)
                event.notified = True
            except Exception as e:
                logger.error(f"Error sending notifications for custody event {event.pk}: {e}", exc_info=True)
                errors.append(f"notifications: {e}")

        if not errors:
            event.status = CustodyEvent.STATUS_DISPATCHED
            event.dispatched_at = timezone.now()
            event.last_error = None
        else:
            event.last_error = '; '.join(errors)
            _mark_attempt_failed(event)

        event.save(update_fields=[
            'status', 'attempts', 'action_logged', 'notified', 'payload', 'last_error', 'dispatched_at',
        ])
        return event.status == CustodyEvent.STATUS_DISPATCHED


def drain_pending_custody_events(min_age_seconds=None, limit=100):
    """
    Retry pending custody events older than min_age_seconds. Returns the number
    of events dispatched.
    """
    if min_age_seconds is None:
        min_age_seconds = settings.TRANSFER_EVENT_RETRY_DELAY_SECONDS
    cutoff = timezone.now() - timedelta(seconds=min_age_seconds)

    event_ids = list(
        CustodyEvent.objects.filter(
            status=CustodyEvent.STATUS_PENDING,
            created_at__lte=cutoff,
        ).values_list('id', flat=True)[:limit]
    )

    dispatched = 0
    for event_id in event_ids:
        if dispatch_custody_event(event_id):
            dispatched += 1

    if event_ids:
        logger.info(f"Drained {len(event_ids)} pending custody event(s), {dispatched} dispatched")
    return dispatched
