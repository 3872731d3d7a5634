"""
Retry custody events whose action log entry or notifications were not applied.
"""
import logging
from django.core.management.base import BaseCommand

from equipment.dispatch import drain_pending_custody_events
from equipment.models import CustodyEvent

logger = logging.getLogger(__name__)


class Command(BaseCommand):
    help = "Dispatch pending custody events (action log entries and notifications)."

    def add_arguments(self, parser):
        parser.add_argument(
            "--min-age",
            type=int,
            default=0,
            help="Only retry events at least this many seconds old (default 0).",
        )
        parser.add_argument(
            "--limit",
            type=int,
            default=100,
            help="Maximum number of events to process (default 100).",
        )

    def handle(self, *args, **options):
        pending = CustodyEvent.objects.filter(status=CustodyEvent.STATUS_PENDING).count()
        dispatched = drain_pending_custody_events(
            min_age_seconds=options["min_age"],
            limit=options["limit"],
        )
        failed = CustodyEvent.objects.filter(status=CustodyEvent.STATUS_FAILED).count()
        self.stdout.write(self.style.SUCCESS(
            f"Dispatched {dispatched} of {pending} pending custody events ({failed} failed in total)."
        ))
