from django.core.management.base import BaseCommand

from lab_core.workflows.turnaround_scanner import check_turnaround_breaches


class Command(BaseCommand):
    help = "Raise turnaround alerts for items that stayed too long in their status"

    def handle(self, *args, **options):
        created = check_turnaround_breaches()
        self.stdout.write(f"{created} new turnaround alert(s).")
