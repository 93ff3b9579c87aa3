"""
Role-gated job and stop edits.

Every field of a request is checked against `policies.job_fields` before
anything is written, and one denied field rejects the whole request. The
accepted changes are applied to the job row and its stops in a single
transaction together with their progress log rows and one audit entry.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import transaction
from django.db.models import Max
from django.utils import timezone

from haulage.models import AuditLog, Job, JobProgressLog, JobStop
from haulage.policies import job_fields
from haulage.policies.roles import is_driver
from haulage.services import status_flow
from haulage.services.audit import job_snapshot, record_audit, stop_snapshot
from haulage.services.exceptions import (
    AuthorizationError,
    NotFoundError,
    ValidationError,
)
from haulage.services.notifications import job_link, notify
from haulage.services.profiles import get_driver
from haulage.services.progress import (
    authorise_job_access,
    ensure_version,
    record_event,
    status_label,
    status_timestamp,
)

logger = logging.getLogger(__name__)

A = JobProgressLog.ActionType


@dataclass
class JobUpdateResult:
    job: Job
    stops: list
    audit_log: Optional[AuditLog] = None


def _denied(actor, field):
    logger.warning("User %s (%s) denied editing %s", actor.pk, actor.role, field)
    return AuthorizationError(
        f"Your role ({actor.role}) cannot change '{field}'.", field=field
    )


def check_permissions(
    actor, job_updates, stops_to_add, stops_to_update, stops_to_delete
):
    """Raise for the first denied or unknown field; writes nothing."""
    role = actor.role

    for name in job_updates:
        category = job_fields.job_field_category(name)
        if category is None:
            raise ValidationError(f"'{name}' is not an editable job field.", field=name)
        if not job_fields.is_allowed(role, category):
            raise _denied(actor, name)

    if stops_to_add and not job_fields.is_allowed(role, job_fields.ADD_STOP):
        raise _denied(actor, "stops_to_add")
    if stops_to_delete and not job_fields.is_allowed(role, job_fields.DELETE_STOP):
        raise _denied(actor, "stops_to_delete")

    for field, items in (
        ("stops_to_add", stops_to_add),
        ("stops_to_update", stops_to_update),
    ):
        for index, data in enumerate(items):
            if not isinstance(data, dict):
                raise ValidationError(
                    "Each stop must be an object.", field=field, entry_index=index
                )

    for index, data in enumerate(stops_to_add):
        for name in data:
            if job_fields.stop_field_category(name) is None:
                raise ValidationError(
                    f"'{name}' is not a stop field.",
                    field=f"stops_to_add.{name}",
                    entry_index=index,
                )

    for index, data in enumerate(stops_to_update):
        if not data.get("id"):
            raise ValidationError(
                "Each stop update needs the stop id.",
                field="stops_to_update.id",
                entry_index=index,
            )
        for name in data:
            if name == "id":
                continue
            category = job_fields.stop_field_category(name)
            if category is None:
                raise ValidationError(
                    f"'{name}' is not a stop field.",
                    field=f"stops_to_update.{name}",
                    entry_index=index,
                )
            if not job_fields.is_allowed(role, category):
                raise _denied(actor, name)


def clean_value(model, name, value):
    """Blank means NULL for nullable columns and "" for the rest."""
    field = model._meta.get_field(name)
    if value == "" and field.null:
        return None
    if value is None and not field.null:
        return ""
    return value


def full_clean_or_raise(instance, prefix=None, entry_index=None):
    try:
        instance.full_clean()
    except DjangoValidationError as exc:
        raise ValidationError.from_django(
            exc, prefix=prefix, entry_index=entry_index
        ) from exc


def _resolve_stops(job, stop_ids, field):
    existing = {str(stop.pk): stop for stop in job.stops.all()}
    resolved = []
    for index, stop_id in enumerate(stop_ids):
        stop = existing.get(str(stop_id))
        if stop is None:
            raise NotFoundError(
                "Stop not found on this job.", field=field, entry_index=index
            )
        resolved.append(stop)
    return resolved


def next_stop_seq(job, stop_type) -> int:
    current = job.stops.filter(type=stop_type).aggregate(m=Max("seq"))["m"]
    return (current or 0) + 1


def _apply_status(job, actor, target, now):
    """Status set through an edit: one log row, no backfill."""
    if target == Job.Status.CANCELLED:
        raise ValidationError(
            "Use the cancel action to cancel a job.", field="status"
        )
    if status_flow.status_index(target) == status_flow.NOT_FOUND:
        raise ValidationError(f"Unknown status '{target}'.", field="status")
    if target == job.status:
        return False
    if is_driver(actor) and (
        target not in status_flow.MANUAL_PROGRESS_STATUSES
        or not status_flow.is_valid_forward_transition(job.status, target)
    ):
        logger.warning(
            "Driver %s denied moving job %s from %s to %s",
            actor.pk,
            job.pk,
            job.status,
            target,
        )
        raise AuthorizationError(
            f"Drivers can only move a job forward, not from "
            f"{status_label(job.status)} to {status_label(target)}.",
            field="status",
        )
    logged_at = status_timestamp(job, now)
    record_event(job, actor, target, timestamp=logged_at)
    job.status = target
    job.last_status_update_at = logged_at
    job.overdue_notification_sent = False
    return True


def _apply_assignment(job, actor, value, now, status_requested):
    """Returns (previous, new) drivers when the assignment changed, else None."""
    driver = None
    if value not in (None, ""):
        driver = get_driver(job.org, value)
        if driver is None:
            raise ValidationError(
                "Driver not found in this organisation.", field="assigned_driver_id"
            )

    previous = job.assigned_driver
    if getattr(previous, "pk", None) == getattr(driver, "pk", None):
        return None

    job.assigned_driver = driver
    if previous is not None and driver is not None:
        record_event(
            job,
            actor,
            A.DRIVER_REASSIGNED,
            timestamp=now,
            notes=f"Reassigned from {previous.full_name} to {driver.full_name}",
        )

    if not status_requested:
        if driver is not None and job.status == Job.Status.PLANNED:
            _apply_status(job, actor, Job.Status.ASSIGNED, now)
        elif driver is None and job.status == Job.Status.ASSIGNED:
            _apply_status(job, actor, Job.Status.PLANNED, now)
    return previous, driver


def _notify_assignment(job, previous, driver):
    link = job_link(job)
    if driver is not None:
        notify(
            [driver],
            f"Job {job.order_number} assigned",
            f"You have been assigned job {job.order_number}.",
            link,
        )
    if previous is not None:
        notify(
            [previous],
            f"Job {job.order_number} reassigned",
            f"Job {job.order_number} is no longer assigned to you.",
            link,
        )


def _require_route(job):
    types = set(job.stops.values_list("type", flat=True))
    if JobStop.StopType.COLLECTION.value not in types:
        raise ValidationError(
            "A job needs at least one collection stop.", field="stops_to_delete"
        )
    if JobStop.StopType.DELIVERY.value not in types:
        raise ValidationError(
            "A job needs at least one delivery stop.", field="stops_to_delete"
        )


def apply_job_update(
    job,
    actor,
    job_updates=None,
    stops_to_add=None,
    stops_to_update=None,
    stops_to_delete=None,
    expected_version=None,
):
    """
    Edit a job and its stops on behalf of `actor`.

    The before/after audit diff only covers fields present in the request.
    Returns a JobUpdateResult; audit_log is None when nothing changed.
    """
    job_updates = dict(job_updates or {})
    stops_to_add = list(stops_to_add or [])
    stops_to_update = list(stops_to_update or [])
    stops_to_delete = list(stops_to_delete or [])

    if not (job_updates or stops_to_add or stops_to_update or stops_to_delete):
        raise ValidationError("Nothing to update.")

    authorise_job_access(job, actor)
    check_permissions(
        actor, job_updates, stops_to_add, stops_to_update, stops_to_delete
    )

    update_ids = [str(data["id"]) for data in stops_to_update]
    overlap = set(update_ids) & {str(stop_id) for stop_id in stops_to_delete}
    if overlap:
        raise ValidationError(
            "A stop cannot be updated and deleted in the same request.",
            field="stops_to_update",
        )

    now = timezone.now()
    with transaction.atomic():
        locked = Job.objects.select_for_update().get(pk=job.pk)
        ensure_version(locked, expected_version)
        if locked.status == Job.Status.CANCELLED:
            raise ValidationError("Cancelled jobs cannot be edited.", field="status")

        updating = _resolve_stops(locked, update_ids, "stops_to_update")
        deleting = _resolve_stops(locked, stops_to_delete, "stops_to_delete")

        job_fields_present = list(job_updates)
        before_job = job_snapshot(locked, job_fields_present)
        before_stops = [stop_snapshot(stop) for stop in updating + deleting]

        # Job row
        assignment = None
        status_requested = "status" in job_updates
        if "assigned_driver_id" in job_updates:
            assignment = _apply_assignment(
                locked, actor, job_updates["assigned_driver_id"], now, status_requested
            )
        if status_requested:
            _apply_status(locked, actor, job_updates["status"], now)
        for name, value in job_updates.items():
            if name in ("status", "assigned_driver_id"):
                continue
            setattr(locked, name, clean_value(Job, name, value))
        full_clean_or_raise(locked)
        after_job = job_snapshot(locked, job_fields_present)
        job_changed = after_job != before_job

        # Stops: deletions first so their seq numbers can be reused
        stops_changed = False
        for stop in deleting:
            record_event(
                locked,
                actor,
                A.STOP_DELETED,
                timestamp=now,
                stop=stop,
                notes=f"Removed {stop}",
            )
            stop.delete()
            stops_changed = True

        after_stops = []
        for index, (stop, data) in enumerate(zip(updating, stops_to_update)):
            before = stop_snapshot(stop)
            for name, value in data.items():
                if name != "id":
                    setattr(stop, name, clean_value(JobStop, name, value))
            full_clean_or_raise(stop, prefix="stops_to_update", entry_index=index)
            after = stop_snapshot(stop)
            changed = [
                name for name in data if name != "id" and before[name] != after[name]
            ]
            if not changed:
                continue
            stop.save()
            record_event(
                locked,
                actor,
                A.STOP_DETAILS_UPDATED if is_driver(actor) else A.STOP_UPDATED,
                timestamp=now,
                stop=stop,
                notes="Updated " + ", ".join(changed),
            )
            after_stops.append(after)
            stops_changed = True

        for index, data in enumerate(stops_to_add):
            fields = {
                name: clean_value(JobStop, name, value)
                for name, value in data.items()
                if name != "seq"
            }
            stop_type = fields.get("type")
            if stop_type not in JobStop.StopType.values:
                raise ValidationError(
                    "Stop type must be collection or delivery.",
                    field="stops_to_add.type",
                    entry_index=index,
                )
            stop = JobStop(
                org_id=locked.org_id,
                job=locked,
                seq=data.get("seq") or next_stop_seq(locked, stop_type),
                **fields,
            )
            full_clean_or_raise(stop, prefix="stops_to_add", entry_index=index)
            stop.save()
            record_event(
                locked,
                actor,
                A.STOP_ADDED,
                timestamp=now,
                stop=stop,
                notes=f"Added {stop}",
            )
            after_stops.append(stop_snapshot(stop))
            stops_changed = True

        if stops_to_delete or stops_to_add:
            _require_route(locked)

        if not (job_changed or stops_changed):
            return JobUpdateResult(job=locked, stops=list(locked.stops.all()))

        locked._transition(locked.status)
        audit_log = record_audit(
            org=locked.org,
            actor=actor,
            entity="job",
            entity_id=locked.pk,
            action="update_job",
            before={"job": before_job, "stops": before_stops},
            after={
                "job": after_job,
                "stops": after_stops,
                "deleted_stop_ids": [str(stop_id) for stop_id in stops_to_delete],
            },
        )
        if assignment is not None:
            _notify_assignment(locked, *assignment)

    logger.info(
        "Job %s updated by %s: fields=%s stops +%d ~%d -%d",
        locked.pk,
        actor.pk,
        ",".join(job_fields_present) or "-",
        len(stops_to_add),
        len(after_stops) - len(stops_to_add),
        len(stops_to_delete),
    )
    job.refresh_from_db()
    return JobUpdateResult(job=job, stops=list(job.stops.all()), audit_log=audit_log)
