from django.core.management.base import BaseCommand

from apps.orders import outbox
from apps.orders.models import OutboxEvent


class Command(BaseCommand):
    help = "Send pending and failed order notifications from the outbox."

    def add_arguments(self, parser):
        parser.add_argument(
            "--max-attempts", type=int, default=5,
            help="Skip events that already failed this many times.",
        )

    def handle(self, *args, **options):
        ids = list(
            OutboxEvent.objects.exclude(status=OutboxEvent.Status.SENT)
            .filter(attempts__lt=options["max_attempts"])
            .values_list("pk", flat=True)
        )
        sent = outbox.dispatch(ids)
        self.stdout.write(f"dispatched {sent}/{len(ids)} outbox event(s)")
