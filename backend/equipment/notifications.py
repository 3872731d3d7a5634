"""
In-app notifications for transfer request events.

Every helper creates accounts.Notification rows and returns the number created.
Callers run these after the custody change has committed and treat any
exception as non-fatal.
"""
import logging

from django.contrib.auth import get_user_model
from django.contrib.contenttypes.models import ContentType

from accounts.models import Notification
from .models import TransferRequest

logger = logging.getLogger(__name__)

EVENT_TRANSFER_REQUEST = 'transfer_request'
EVENT_TRANSFER_APPROVED = 'transfer_approved'
EVENT_TRANSFER_REJECTED = 'transfer_rejected'
EVENT_TRANSFER_COMPLETED = 'transfer_completed'
EVENT_TRANSFER_REMINDER = 'transfer_reminder'


def _title_and_message(event, actor_name, equipment_name, equipment_serial):
    item = f"{equipment_name} ({equipment_serial})" if equipment_serial else equipment_name
    if event == EVENT_TRANSFER_REQUEST:
        return 'New transfer request', f"{actor_name} requested to transfer {item} to you"
    if event == EVENT_TRANSFER_APPROVED:
        return 'Transfer request approved', f"{actor_name} approved the transfer of {item}"
    if event == EVENT_TRANSFER_REJECTED:
        return 'Transfer request rejected', f"{actor_name} rejected the transfer of {item}"
    if event == EVENT_TRANSFER_COMPLETED:
        return 'Equipment transfer completed', f"The transfer of {item} was completed successfully"
    if event == EVENT_TRANSFER_REMINDER:
        return 'Reminder: equipment transfer request', f"{actor_name} sent you a reminder about the transfer request for {item}"
    raise ValueError(f"Unknown transfer notification event: {event}")


def send_transfer_notification(event, recipient_ids, actor_name, equipment_name,
                               equipment_serial=None, equipment_id=None, transfer_request_id=None):
    title, message = _title_and_message(event, actor_name, equipment_name, equipment_serial)
    transfer_ct = ContentType.objects.get_for_model(TransferRequest)
    link = f"/equipment/transfers/{transfer_request_id}" if transfer_request_id else (
        f"/equipment/{equipment_id}" if equipment_id else None
    )

    recipients = get_user_model().objects.filter(pk__in=set(recipient_ids))
    created = 0
    for user in recipients:
        if not user.wants_in_app_notifications():
            logger.debug(f"Skipping {event} notification for user {user.pk}: in-app notifications disabled")
            continue
        Notification.objects.create(
            user=user,
            type='EQUIPMENT_TRANSFER',
            event=event,
            title=title,
            message=message,
            link=link,
            content_type=transfer_ct if transfer_request_id else None,
            object_id=transfer_request_id,
        )
        created += 1

    logger.info(f"Sent {created} {event} notification(s) for transfer request {transfer_request_id}")
    return created


def notify_transfer_reminder(to_user_id, reminder_name, equipment_name, equipment_serial=None,
                             equipment_id=None, transfer_request_id=None):
    return send_transfer_notification(
        EVENT_TRANSFER_REMINDER, [to_user_id], reminder_name, equipment_name,
        equipment_serial, equipment_id, transfer_request_id,
    )
