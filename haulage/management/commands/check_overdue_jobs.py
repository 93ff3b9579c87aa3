"""Notify office staff about jobs stuck at a collection or delivery."""

from django.core.management.base import BaseCommand

from haulage.services.overdue import notify_overdue_jobs, overdue_threshold_minutes


class Command(BaseCommand):
    help = "Flag jobs that have been at a collection/delivery for too long"

    def handle(self, *args, **options):
        flagged = notify_overdue_jobs()
        if not flagged:
            self.stdout.write("No overdue jobs.")
            return
        for job in flagged:
            self.stdout.write(f"  {job.order_number} ({job.get_status_display()})")
        self.stdout.write(
            self.style.WARNING(
                f"{len(flagged)} job(s) over {overdue_threshold_minutes()} minutes."
            )
        )
