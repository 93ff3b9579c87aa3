"""
JSON endpoints for the dashboard and the driver app.

Views stay thin: parse the request, resolve the job inside the caller's
organisation, call a service and render the result. Service errors become
`{"ok": false, "error": {...}}` with the matching HTTP status.
"""

import functools
import json
import logging

from django.contrib.auth.decorators import login_required
from django.core.exceptions import ValidationError as DjangoValidationError
from django.http import JsonResponse
from django.views.decorators.http import require_GET, require_http_methods, require_POST

from .forms import (
    DocumentUploadForm,
    ProgressEntryForm,
    VersionForm,
    raise_form_errors,
)
from .models import Job, JobProgressLog
from .policies.job_actions import actions_for
from .policies.roles import is_driver, is_staff_role
from .serializers import (
    audit_to_dict,
    document_to_dict,
    job_to_dict,
    log_to_dict,
    next_action_to_dict,
    profile_to_dict,
    stop_to_dict,
)
from .services.cancellation import cancel_job
from .services.documents import upload_document
from .services.exceptions import (
    AuthorizationError,
    NotFoundError,
    ServiceError,
    ValidationError,
)
from .services.job_creation import create_job
from .services.job_updates import apply_job_update
from .services.next_action import compute_next_driver_action
from .services.profiles import list_profiles
from .services.progress import (
    ProgressEntry,
    add_job_note,
    apply_progress_batch,
    authorise_job_access,
    set_timeline_visibility,
    timeline,
)

logger = logging.getLogger(__name__)


def service_view(view):
    """Render ServiceErrors raised by the view as discriminated JSON results."""

    @functools.wraps(view)
    def wrapper(request, *args, **kwargs):
        try:
            return view(request, *args, **kwargs)
        except ServiceError as exc:
            return JsonResponse(
                {"ok": False, "error": exc.as_dict()}, status=exc.status_code
            )

    return wrapper


def _json_body(request) -> dict:
    try:
        body = json.loads(request.body or b"{}")
    except (TypeError, ValueError):
        raise ValidationError("Request body must be valid JSON.")
    if not isinstance(body, dict):
        raise ValidationError("Request body must be a JSON object.")
    return body


def _check_identity(request, body):
    """org_id / actor_id / actor_role in a body must describe the signed-in user."""
    user = request.user
    expected = {"org_id": user.org_id, "actor_id": user.pk, "actor_role": user.role}
    for key, value in expected.items():
        if key in body and str(body[key]) != str(value):
            logger.warning("User %s sent mismatching %s", user.pk, key)
            raise AuthorizationError(
                f"{key} does not match the signed-in user.", field=key
            )


def _expected_version(body):
    form = VersionForm({"expected_version": body.get("expected_version")})
    if not form.is_valid():
        raise_form_errors(form)
    return form.cleaned_data["expected_version"]


def _get_job(request, job_id) -> Job:
    job = (
        Job.objects.filter(org_id=request.user.org_id, pk=job_id)
        .select_related("org", "assigned_driver")
        .first()
    )
    if job is None:
        raise NotFoundError("Job not found.")
    return job


def _get_stop(job, stop_id, entry_index=None):
    if stop_id in (None, ""):
        return None
    try:
        stop = job.stops.filter(pk=stop_id).first()
    except DjangoValidationError:
        stop = None
    if stop is None:
        raise NotFoundError(
            "Stop not found on this job.", field="stop_id", entry_index=entry_index
        )
    return stop


def _ok(status=200, **payload):
    return JsonResponse({"ok": True, **payload}, status=status)


@login_required
@require_http_methods(["GET", "POST"])
@service_view
def job_list(request):
    """GET: jobs visible to the user. POST: create a job with its stops."""
    user = request.user

    if request.method == "POST":
        body = _json_body(request)
        _check_identity(request, body)
        stops = body.get("stops") or []
        if not isinstance(stops, list) or not all(isinstance(s, dict) for s in stops):
            raise ValidationError("stops must be a list of objects.", field="stops")
        job = create_job(user.org, user, body.get("job") or {}, stops)
        return _ok(
            status=201,
            job=job_to_dict(job, user),
            stops=[stop_to_dict(stop) for stop in job.stops.all()],
        )

    jobs = Job.objects.filter(org_id=user.org_id).select_related("assigned_driver")
    if is_driver(user):
        jobs = jobs.filter(assigned_driver=user)
    if request.GET.get("status"):
        jobs = jobs.filter(status=request.GET["status"])
    if not request.GET.get("include_cancelled"):
        jobs = jobs.filter(deleted_at__isnull=True)

    return _ok(
        jobs=[
            {**job_to_dict(job, user), "actions": actions_for(user, job)}
            for job in jobs
        ]
    )


@login_required
@require_GET
@service_view
def job_detail(request, job_id):
    user = request.user
    job = _get_job(request, job_id)
    authorise_job_access(job, user)
    return _ok(
        job=job_to_dict(job, user),
        stops=[stop_to_dict(stop) for stop in job.stops.all()],
        timeline=[
            log_to_dict(log)
            for log in timeline(job, include_hidden=is_staff_role(user))
        ],
        documents=[document_to_dict(doc) for doc in job.documents.all()],
        actions=actions_for(user, job),
    )


@login_required
@require_POST
@service_view
def update_job(request, job_id):
    body = _json_body(request)
    _check_identity(request, body)
    job = _get_job(request, job_id)

    for key in ("stops_to_add", "stops_to_update", "stops_to_delete"):
        if key in body and not isinstance(body[key], list):
            raise ValidationError(f"{key} must be a list.", field=key)
    for key in ("stops_to_add", "stops_to_update"):
        for index, item in enumerate(body.get(key) or []):
            if not isinstance(item, dict):
                raise ValidationError(
                    f"{key} must be a list of objects.", field=key, entry_index=index
                )
    for index, stop_id in enumerate(body.get("stops_to_delete") or []):
        if not isinstance(stop_id, str):
            raise ValidationError(
                "stops_to_delete must be a list of stop ids.",
                field="stops_to_delete",
                entry_index=index,
            )
    job_updates = body.get("job_updates") or {}
    if not isinstance(job_updates, dict):
        raise ValidationError("job_updates must be an object.", field="job_updates")

    result = apply_job_update(
        job,
        request.user,
        job_updates=job_updates,
        stops_to_add=body.get("stops_to_add"),
        stops_to_update=body.get("stops_to_update"),
        stops_to_delete=body.get("stops_to_delete"),
        expected_version=_expected_version(body),
    )
    return _ok(
        job=job_to_dict(result.job, request.user),
        stops=[stop_to_dict(stop) for stop in result.stops],
        audit_log_id=result.audit_log.pk if result.audit_log else None,
    )


@login_required
@require_POST
@service_view
def update_job_progress(request, job_id):
    """
    Record progress: a single entry in the body, or a batch under `entries`.

    The whole batch is applied or none of it; errors name the failing entry.
    """
    body = _json_body(request)
    _check_identity(request, body)
    job = _get_job(request, job_id)

    raw_entries = body["entries"] if "entries" in body else [body]
    if not isinstance(raw_entries, list) or not raw_entries:
        raise ValidationError("entries must be a non-empty list.", field="entries")

    entries = []
    for index, raw in enumerate(raw_entries):
        if not isinstance(raw, dict):
            raise ValidationError("Each entry must be an object.", entry_index=index)
        form = ProgressEntryForm(raw)
        if not form.is_valid():
            raise_form_errors(form, entry_index=index)
        data = form.cleaned_data
        entries.append(
            ProgressEntry(
                status=data["status"],
                timestamp=data["timestamp"],
                notes=data["notes"] or None,
                stop=_get_stop(job, data["stop_id"], entry_index=index),
                lat=data["lat"],
                lon=data["lon"],
            )
        )

    logs = apply_progress_batch(
        job, entries, request.user, expected_version=_expected_version(body)
    )
    return _ok(
        job=job_to_dict(job, request.user),
        logs=[log_to_dict(log) for log in logs],
    )


@login_required
@require_POST
@service_view
def cancel_job_view(request, job_id):
    body = _json_body(request)
    _check_identity(request, body)
    job = _get_job(request, job_id)
    job = cancel_job(
        job,
        request.user,
        reason=body.get("reason") or "",
        expected_version=_expected_version(body),
    )
    return _ok(job=job_to_dict(job, request.user))


@login_required
@require_POST
@service_view
def add_note(request, job_id):
    body = _json_body(request)
    _check_identity(request, body)
    job = _get_job(request, job_id)
    log = add_job_note(
        job,
        request.user,
        body.get("notes") or "",
        stop=_get_stop(job, body.get("stop_id")),
    )
    return _ok(status=201, log=log_to_dict(log))


@login_required
@require_POST
@service_view
def upload_job_document(request, job_id):
    """Multipart upload; a POD for a delivery stop also records pod_received."""
    _check_identity(request, request.POST)
    job = _get_job(request, job_id)

    form = DocumentUploadForm(request.POST, request.FILES)
    if not form.is_valid():
        raise_form_errors(form)

    document, logs = upload_document(
        job,
        request.user,
        form.cleaned_data["file"],
        form.cleaned_data["type"],
        stop=_get_stop(job, form.cleaned_data["stop_id"]),
        notes=form.cleaned_data["notes"],
    )
    return _ok(
        status=201,
        document=document_to_dict(document),
        logs=[log_to_dict(log) for log in logs],
    )


@login_required
@require_GET
@service_view
def next_action(request, job_id):
    job = _get_job(request, job_id)
    authorise_job_access(job, request.user)
    action = compute_next_driver_action(
        job,
        list(job.stops.all()),
        list(job.progress_logs.all()),
        request.user.pk,
    )
    return _ok(next_action=next_action_to_dict(action))


@login_required
@require_GET
@service_view
def job_audit(request, job_id):
    job = _get_job(request, job_id)
    if not is_staff_role(request.user):
        raise AuthorizationError("Only admin or office staff can read the audit log.")
    entries = job.org.audit_logs.filter(entity="job", entity_id=str(job.pk))
    return _ok(audit=[audit_to_dict(entry) for entry in entries])


@login_required
@require_POST
@service_view
def timeline_visibility(request, log_id):
    body = _json_body(request)
    _check_identity(request, body)
    if not isinstance(body.get("visible"), bool):
        raise ValidationError("visible must be true or false.", field="visible")

    log = JobProgressLog.objects.filter(org_id=request.user.org_id, pk=log_id).first()
    if log is None:
        raise NotFoundError("Progress log not found.")
    log = set_timeline_visibility(log, body["visible"], request.user)
    return _ok(log=log_to_dict(log))


@login_required
@require_GET
@service_view
def profiles(request):
    """Profile lookup by role, e.g. ?role=driver for the assign dialog."""
    if not is_staff_role(request.user):
        raise AuthorizationError("Only admin or office staff can list profiles.")
    roles = request.GET.getlist("role") or ["driver"]
    return _ok(
        profiles=[profile_to_dict(u) for u in list_profiles(request.user.org, roles)]
    )
