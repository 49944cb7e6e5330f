import logging
from datetime import timedelta

from django.core.management.base import BaseCommand
from django.utils import timezone

from deliveries.models import Delivery, DeliveryOffer, DriverLocationHistory

logger = logging.getLogger(__name__)


class Command(BaseCommand):
    help = "Clean up old offer ledger rows and shift location events."

    def add_arguments(self, parser):
        parser.add_argument(
            "--days",
            type=int,
            default=30,
            help="Delete records older than this many days (default: 30).",
        )
        parser.add_argument(
            "--dry-run",
            action="store_true",
            help="Show what would be deleted without actually deleting.",
        )

    def handle(self, *args, **options):
        days = options["days"]
        dry_run = options["dry_run"]
        cutoff = timezone.now() - timedelta(days=days)

        # Offers of finished deliveries only; live offers drive the timers
        old_offers = DeliveryOffer.objects.filter(
            sent_at__lt=cutoff,
            delivery__status__in=Delivery.TERMINAL_STATUSES,
        )
        offers_count = old_offers.count()

        # Pickup/delivery rows are the audit trail and are kept
        old_shift_events = DriverLocationHistory.objects.filter(
            timestamp__lt=cutoff,
            event_type__in=[DriverLocationHistory.SHIFT_START, DriverLocationHistory.SHIFT_END],
        )
        events_count = old_shift_events.count()

        if dry_run:
            self.stdout.write(
                self.style.WARNING(
                    f"DRY RUN: Would delete {offers_count} offers and {events_count} shift events older than {days} days."
                )
            )
            return

        old_offers.delete()
        old_shift_events.delete()
        logger.info("Cleaned up %s old offers and %s shift events", offers_count, events_count)
        self.stdout.write(
            self.style.SUCCESS(
                f"Deleted {offers_count} old offers and {events_count} shift events older than {days} days."
            )
        )
