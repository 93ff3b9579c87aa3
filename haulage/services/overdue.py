import logging
from datetime import timedelta

from django.conf import settings
from django.db import transaction
from django.utils import timezone

from haulage.models import Job
from haulage.services import status_flow
from haulage.services.notifications import job_link, notify
from haulage.services.profiles import office_staff
from haulage.services.progress import status_label

logger = logging.getLogger(__name__)


def overdue_threshold_minutes() -> int:
    return int(settings.HAULAGE["OVERDUE_THRESHOLD_MINUTES"])


def find_overdue_jobs(now=None):
    """Jobs sitting at a collection or delivery for longer than the threshold."""
    now = now or timezone.now()
    cutoff = now - timedelta(minutes=overdue_threshold_minutes())
    return Job.objects.filter(
        status__in=status_flow.DWELL_STATUSES,
        overdue_notification_sent=False,
        deleted_at__isnull=True,
        last_status_update_at__lte=cutoff,
    ).select_related("org", "assigned_driver")


def notify_overdue_jobs(now=None):
    """Warn office staff and the driver once per stay; returns the jobs flagged."""
    flagged = []
    minutes = overdue_threshold_minutes()
    for job in find_overdue_jobs(now):
        with transaction.atomic():
            updated = Job.objects.filter(
                pk=job.pk, overdue_notification_sent=False
            ).update(overdue_notification_sent=True)
            if not updated:
                continue
            recipients = list(office_staff(job.org))
            if job.assigned_driver_id:
                recipients.append(job.assigned_driver)
            notify(
                recipients,
                f"Job {job.order_number} overdue",
                f"Job {job.order_number} has been {status_label(job.status)} "
                f"for over {minutes} minutes.",
                job_link(job),
            )
        flagged.append(job)
        logger.info("Job %s flagged overdue at %s", job.pk, job.status)
    return flagged
