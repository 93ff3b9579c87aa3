"""
Progress log engine.

A batch of progress entries is validated as a whole, sorted by timestamp and
applied inside one transaction holding a row lock on the job. Every skipped
status is backfilled with its own log row so the timeline never has gaps.
"""

import logging
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional

from django.conf import settings
from django.db import transaction
from django.db.models import Max
from django.utils import timezone

from haulage.models import Job, JobProgressLog, JobStop
from haulage.policies.roles import is_driver, is_staff_role
from haulage.services import status_flow
from haulage.services.audit import record_audit
from haulage.services.exceptions import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from haulage.services.notifications import job_link, notify
from haulage.services.profiles import office_staff

logger = logging.getLogger(__name__)

STATUS_ACTIONS = status_flow.STATUS_SEQUENCE + (Job.Status.CANCELLED.value,)


@dataclass
class ProgressEntry:
    status: str
    timestamp: Optional[datetime]
    notes: Optional[str] = None
    stop: Optional[JobStop] = None
    lat: Optional[Decimal] = None
    lon: Optional[Decimal] = None


def status_label(status) -> str:
    try:
        return Job.Status(status).label
    except ValueError:
        return str(status)


def backfill_note(target) -> str:
    return f"Auto-logged: skipped on the way to {status_label(target)}"


def authorise_job_access(job, actor):
    """
    Raise unless the actor may act on the job at all.

    Out-of-org jobs look missing. Drivers only reach jobs assigned to them.
    """
    if actor is None or actor.org_id != job.org_id:
        raise NotFoundError("Job not found.")
    if is_staff_role(actor):
        return
    if is_driver(actor) and job.assigned_driver_id == actor.pk:
        return
    logger.warning("User %s denied access to job %s", actor.pk, job.pk)
    raise AuthorizationError("You can only update jobs assigned to you.")


def record_event(
    job,
    actor,
    action_type,
    *,
    timestamp=None,
    notes=None,
    stop=None,
    is_backfill=False,
    lat=None,
    lon=None,
):
    """Append one progress log row."""
    return JobProgressLog.objects.create(
        org_id=job.org_id,
        job=job,
        stop=stop,
        actor=actor,
        actor_role=getattr(actor, "role", "") or "system",
        action_type=action_type,
        timestamp=timestamp or timezone.now(),
        notes=notes or None,
        is_backfill=is_backfill,
        lat=lat,
        lon=lon,
    )


def latest_status_log(job):
    """
    The log row the job's current status comes from.

    A stop-scoped POD only completes its drop; the job-level row written
    after the last drop carries the job's status.
    """
    return (
        JobProgressLog.objects.filter(job=job, action_type__in=STATUS_ACTIONS)
        .exclude(stop__isnull=False, action_type=Job.Status.POD_RECEIVED)
        .order_by("-timestamp", "-id")
        .first()
    )


def latest_status_at(job):
    """Time of the newest status-type row, stop-scoped ones included."""
    return JobProgressLog.objects.filter(
        job=job, action_type__in=STATUS_ACTIONS
    ).aggregate(latest=Max("timestamp"))["latest"]


def status_timestamp(job, now):
    """Stamp for a status row written at `now`; never before the newest one."""
    latest = latest_status_at(job)
    if latest is not None and latest > now:
        return latest
    return now


def ensure_version(job, expected_version):
    """ConflictError unless the locked job is still at `expected_version`."""
    if expected_version is None:
        return
    try:
        expected = int(expected_version)
    except (TypeError, ValueError):
        raise ValidationError(
            "expected_version must be a whole number.", field="expected_version"
        )
    if job.version != expected:
        logger.warning(
            "Stale write on job %s (expected v%s, found v%s)",
            job.pk,
            expected,
            job.version,
        )
        raise ConflictError(
            "The job was changed by someone else. Reload and try again.",
            field="version",
        )


def future_tolerance():
    return timedelta(
        seconds=int(settings.HAULAGE["FUTURE_TIMESTAMP_TOLERANCE_SECONDS"])
    )


def stop_states(job):
    """Furthest sub-status reached by each stop of the job, keyed by stop id."""
    actions = {}
    rows = JobProgressLog.objects.filter(job=job, stop__isnull=False).values_list(
        "stop_id", "action_type"
    )
    for stop_id, action_type in rows:
        actions.setdefault(stop_id, []).append(action_type)
    types = dict(job.stops.values_list("id", "type"))
    return {
        stop_id: status_flow.stop_state_from_actions(types[stop_id], stop_actions)
        for stop_id, stop_actions in actions.items()
        if stop_id in types
    }


def _validate_entries(entries):
    if not entries:
        raise ValidationError("At least one progress entry is required.")
    latest_allowed = timezone.now() + future_tolerance()
    for index, entry in enumerate(entries):
        if entry.status not in status_flow.MANUAL_PROGRESS_STATUSES:
            raise ValidationError(
                f"'{entry.status}' cannot be set through a progress update.",
                field="status",
                entry_index=index,
            )
        if not isinstance(entry.timestamp, datetime) or timezone.is_naive(
            entry.timestamp
        ):
            raise ValidationError(
                "A timezone-aware timestamp is required.",
                field="timestamp",
                entry_index=index,
            )
        if entry.timestamp > latest_allowed:
            raise ValidationError(
                "Timestamp is in the future.",
                field="timestamp",
                entry_index=index,
            )
        if entry.stop is not None and entry.status not in status_flow.stop_sequence(
            entry.stop.type
        ):
            raise ValidationError(
                f"'{entry.status}' does not apply to a {entry.stop.type} stop.",
                field="status",
                entry_index=index,
            )


class _BatchState:
    """Running view of the job while a batch is applied."""

    def __init__(self, job):
        self.job = job
        self.status = job.status
        self.last_status_at = latest_status_at(job)
        self.stop_states = stop_states(job)
        self.delivery_stop_ids = list(
            job.stops.filter(type=JobStop.StopType.DELIVERY).values_list(
                "id", flat=True
            )
        )
        self.status_logged = False
        self.created = []

    def deliveries_complete(self):
        return all(
            self.stop_states.get(stop_id) == Job.Status.POD_RECEIVED
            for stop_id in self.delivery_stop_ids
        )

    def log(self, actor, action_type, entry, **kwargs):
        self.created.append(
            record_event(
                self.job,
                actor,
                action_type,
                timestamp=entry.timestamp,
                stop=entry.stop,
                lat=entry.lat,
                lon=entry.lon,
                **kwargs,
            )
        )


def _apply_job_entry(state, entry, actor, index):
    if entry.status == state.status:
        if entry.notes:
            state.log(
                actor, JobProgressLog.ActionType.NOTE_ADDED, entry, notes=entry.notes
            )
        return
    if not status_flow.is_valid_forward_transition(state.status, entry.status):
        raise ValidationError(
            f"Cannot move job from {status_label(state.status)} "
            f"to {status_label(entry.status)}.",
            field="status",
            entry_index=index,
        )
    for skipped in status_flow.compute_skipped_statuses(state.status, entry.status):
        state.log(
            actor, skipped, entry, notes=backfill_note(entry.status), is_backfill=True
        )
    state.log(actor, entry.status, entry, notes=entry.notes)
    state.status = entry.status
    state.last_status_at = entry.timestamp
    state.status_logged = True


def _apply_stop_entry(state, entry, actor, index):
    stop = entry.stop
    if stop.job_id != state.job.pk:
        raise NotFoundError(
            "Stop not found on this job.", field="stop_id", entry_index=index
        )
    if status_flow.status_index(state.status) < status_flow.status_index(
        Job.Status.ACCEPTED
    ):
        raise ValidationError(
            "The job must be accepted before stop progress is logged.",
            field="status",
            entry_index=index,
        )

    current = state.stop_states.get(stop.pk)
    if entry.status == current:
        if entry.notes:
            state.log(
                actor, JobProgressLog.ActionType.NOTE_ADDED, entry, notes=entry.notes
            )
        return
    if status_flow.is_terminal(state.status):
        raise ValidationError(
            f"The job is already {status_label(state.status)}.",
            field="status",
            entry_index=index,
        )
    if status_flow.stop_status_index(
        stop.type, entry.status
    ) <= status_flow.stop_status_index(stop.type, current):
        raise ValidationError(
            f"{stop} is already past {status_label(entry.status)}.",
            field="status",
            entry_index=index,
        )
    skipped = status_flow.compute_skipped_stop_statuses(
        stop.type, current, entry.status
    )
    for status in skipped:
        state.log(
            actor, status, entry, notes=backfill_note(entry.status), is_backfill=True
        )
    state.log(actor, entry.status, entry, notes=entry.notes)
    state.stop_states[stop.pk] = entry.status
    state.last_status_at = entry.timestamp
    state.status_logged = True

    if entry.status != Job.Status.POD_RECEIVED:
        state.status = entry.status
        return
    # A drop's POD leaves the job on the last status the stop reached
    if skipped:
        state.status = skipped[-1]
    if state.deliveries_complete():
        completed = replace(entry, stop=None, notes="All deliveries completed")
        _apply_job_entry(state, completed, actor, index)


def apply_progress_batch(job, entries, actor, expected_version=None):
    """
    Apply progress entries to a job; returns the log rows written.

    Entries are applied in timestamp order, so the job ends on the status of
    the chronologically-latest entry. A stop-scoped POD is the exception: it
    completes the drop, and only the last outstanding drop moves the job on to
    `pod_received`. Any failing entry aborts the batch and the raised error
    carries its index in the submitted list.
    """
    entries = list(entries)
    _validate_entries(entries)
    authorise_job_access(job, actor)

    with transaction.atomic():
        locked = Job.objects.select_for_update().get(pk=job.pk)
        ensure_version(locked, expected_version)
        if locked.status == Job.Status.CANCELLED:
            raise ValidationError(
                "Cancelled jobs accept no progress updates.", field="status"
            )

        before_status = locked.status
        state = _BatchState(locked)

        order = sorted(range(len(entries)), key=lambda i: entries[i].timestamp)
        for index in order:
            entry = entries[index]
            if state.last_status_at and entry.timestamp < state.last_status_at:
                raise ValidationError(
                    "Timestamp is earlier than the job's latest status update.",
                    field="timestamp",
                    entry_index=index,
                )
            if entry.stop is None:
                _apply_job_entry(state, entry, actor, index)
            else:
                _apply_stop_entry(state, entry, actor, index)

        if state.status_logged:
            locked._transition(
                state.status,
                last_status_update_at=state.last_status_at,
                overdue_notification_sent=False,
            )

        if state.created:
            record_audit(
                org=locked.org,
                actor=actor,
                entity="job",
                entity_id=locked.pk,
                action="update_progress",
                before={"status": before_status},
                after={"status": state.status},
            )

        if is_driver(actor) and state.status != before_status:
            notify(
                office_staff(locked.org),
                f"Job {locked.order_number} updated",
                f"{actor.full_name} marked job {locked.order_number} "
                f"as {status_label(state.status)}.",
                job_link(locked),
            )

    if state.created:
        logger.info(
            "Job %s progress by %s: %s -> %s (%d log rows)",
            locked.pk,
            actor.pk,
            before_status,
            state.status,
            len(state.created),
        )
    job.refresh_from_db()
    return state.created


def apply_progress_update(
    job,
    target_status,
    timestamp,
    actor,
    notes=None,
    stop=None,
    *,
    lat=None,
    lon=None,
    expected_version=None,
):
    entry = ProgressEntry(
        status=target_status,
        timestamp=timestamp,
        notes=notes,
        stop=stop,
        lat=lat,
        lon=lon,
    )
    return apply_progress_batch(job, [entry], actor, expected_version=expected_version)


def add_job_note(job, actor, notes, stop=None, timestamp=None):
    authorise_job_access(job, actor)
    if not (notes or "").strip():
        raise ValidationError("A note cannot be empty.", field="notes")
    if stop is not None and stop.job_id != job.pk:
        raise NotFoundError("Stop not found on this job.", field="stop_id")
    entry = record_event(
        job,
        actor,
        JobProgressLog.ActionType.NOTE_ADDED,
        timestamp=timestamp,
        notes=notes.strip(),
        stop=stop,
    )
    logger.info("Note added to job %s by %s", job.pk, actor.pk)
    return entry


@transaction.atomic
def set_timeline_visibility(log, visible, actor):
    """Show or hide a progress log row on the timeline. Admin/office only."""
    if actor is None or actor.org_id != log.org_id:
        raise NotFoundError("Progress log not found.")
    if not is_staff_role(actor):
        logger.warning("User %s denied timeline visibility change", actor.pk)
        raise AuthorizationError(
            "Only admin or office staff can change timeline visibility.",
            field="visible_in_timeline",
        )

    before = log.visible_in_timeline
    if before == visible:
        return log
    log.visible_in_timeline = visible
    log.save(update_fields=["visible_in_timeline"])
    record_audit(
        org=log.org,
        actor=actor,
        entity="job_progress_log",
        entity_id=log.pk,
        action="update_timeline_visibility",
        before={"visible_in_timeline": before},
        after={"visible_in_timeline": visible},
    )
    return log


def timeline(job, include_hidden=False):
    logs = job.progress_logs.select_related("actor").order_by("timestamp", "id")
    if not include_hidden:
        logs = logs.filter(visible_in_timeline=True)
    return logs
