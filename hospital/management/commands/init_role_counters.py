from django.core.management.base import BaseCommand

from hospital.utils import sync_role_counters


class Command(BaseCommand):
    help = "Create the display-ID counters (A/D/S/U) and align them with IDs already issued"

    def handle(self, *args, **kwargs):
        state = sync_role_counters()
        for prefix, last_id in state.items():
            self.stdout.write(f"{prefix}: {last_id} issued")
        self.stdout.write(self.style.SUCCESS("Role counters initialized"))
