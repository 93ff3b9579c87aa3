import logging

from django.db import transaction
from django.utils import timezone

from haulage.models import Job
from haulage.policies.roles import is_staff_role
from haulage.services import status_flow
from haulage.services.audit import record_audit
from haulage.services.exceptions import AuthorizationError, NotFoundError
from haulage.services.notifications import job_link, notify
from haulage.services.progress import ensure_version, record_event, status_timestamp

logger = logging.getLogger(__name__)


def cancel_job(job, actor, reason="", expected_version=None):
    """
    Cancel a job that has not finished yet. Admin/office only, irrevocable.

    Writes one `cancelled` progress log and one audit entry, soft-deletes the
    job and tells the assigned driver.
    """
    if actor is None or actor.org_id != job.org_id:
        raise NotFoundError("Job not found.")
    if not is_staff_role(actor):
        logger.warning("User %s denied cancelling job %s", actor.pk, job.pk)
        raise AuthorizationError("Only admin or office staff can cancel jobs.")

    with transaction.atomic():
        locked = Job.objects.select_for_update().get(pk=job.pk)
        ensure_version(locked, expected_version)
        if status_flow.is_terminal(locked.status):
            logger.warning(
                "Refused to cancel job %s in status %s", locked.pk, locked.status
            )
            raise AuthorizationError(
                f"Job {locked.order_number} is already {locked.get_status_display()}"
                " and cannot be cancelled.",
                field="status",
            )

        before_status = locked.status
        now = timezone.now()
        logged_at = status_timestamp(locked, now)
        record_event(
            locked, actor, Job.Status.CANCELLED, timestamp=logged_at, notes=reason
        )
        locked._transition(
            Job.Status.CANCELLED,
            cancelled_at=now,
            deleted_at=now,
            last_status_update_at=logged_at,
        )
        record_audit(
            org=locked.org,
            actor=actor,
            entity="job",
            entity_id=locked.pk,
            action="cancel_job",
            before={"status": before_status},
            after={
                "status": Job.Status.CANCELLED.value,
                "cancelled_at": now,
                "deleted_at": now,
            },
            notes=reason,
        )
        if locked.assigned_driver_id:
            notify(
                [locked.assigned_driver],
                f"Job {locked.order_number} cancelled",
                f"Job {locked.order_number} has been cancelled."
                + (f" Reason: {reason}" if reason else ""),
                job_link(locked),
            )

    logger.info("Job %s cancelled by %s (was %s)", locked.pk, actor.pk, before_status)
    job.refresh_from_db()
    return job
