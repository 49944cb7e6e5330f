from django.conf import settings
from django.core.management.base import BaseCommand

from services.matching.offer_timeout import process_offer_timeouts


class Command(BaseCommand):
    help = "Expire delivery offers that have been waiting too long and offer them to the next driver."

    def add_arguments(self, parser):
        parser.add_argument(
            "--timeout",
            type=int,
            default=settings.OFFER_TIMEOUT_SECONDS,
            help="Seconds before an unanswered offer expires (default: OFFER_TIMEOUT_SECONDS).",
        )

    def handle(self, *args, **options):
        timeout = options["timeout"]
        expired_count, redispatched_count = process_offer_timeouts(timeout_seconds=timeout)

        self.stdout.write(
            self.style.SUCCESS(
                f"Expired {expired_count} offer(s); re-dispatched {redispatched_count} delivery(ies)."
            )
        )
