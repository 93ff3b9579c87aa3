import logging
import re

from django.conf import settings
from django.db import transaction
from django.utils import timezone

from accounts.models import Organisation
from haulage.models import Job, JobStop
from haulage.policies.roles import is_staff_role
from haulage.services.audit import job_snapshot, record_audit, stop_snapshot
from haulage.services.exceptions import AuthorizationError, ValidationError
from haulage.services.job_updates import clean_value, full_clean_or_raise
from haulage.services.notifications import job_link, notify
from haulage.services.profiles import get_driver
from haulage.services.progress import record_event

logger = logging.getLogger(__name__)

CREATE_FIELDS = (
    "order_number",
    "assigned_driver_id",
    "price",
    "notes",
    "collection_date",
    "delivery_date",
)
STOP_FIELDS = (
    "type",
    "name",
    "address_line1",
    "address_line2",
    "city",
    "postcode",
    "window_from",
    "window_to",
    "notes",
)


def _validate_stops_business_rules(stops_data):
    """
    Sanity checks before saving:
    - at least one collection and one delivery
    - only known stop fields
    """
    for index, data in enumerate(stops_data):
        unknown = set(data) - set(STOP_FIELDS) - {"seq"}
        if unknown:
            raise ValidationError(
                f"Unknown stop field(s): {', '.join(sorted(unknown))}.",
                field="stops",
                entry_index=index,
            )

    types = [data.get("type") for data in stops_data]
    if (
        JobStop.StopType.COLLECTION not in types
        or JobStop.StopType.DELIVERY not in types
    ):
        raise ValidationError(
            "Route must include at least 1 Collection and 1 Delivery stop.",
            field="stops",
        )


def order_prefix(org) -> str:
    return org.order_prefix or settings.HAULAGE["ORDER_NUMBER_PREFIX"]


def allocate_order_number(org) -> str:
    """
    Lowest free `<prefix>-NNN` number of the organisation.

    Callers hold a lock on the organisation row so two creations cannot pick
    the same number.
    """
    prefix = order_prefix(org)
    pattern = re.compile(rf"^{re.escape(prefix)}-(\d+)$")
    taken = set()
    for order_number in Job.objects.filter(
        org=org, order_number__startswith=f"{prefix}-"
    ).values_list("order_number", flat=True):
        match = pattern.match(order_number)
        if match:
            taken.add(int(match.group(1)))

    number = 1
    while number in taken:
        number += 1
    return f"{prefix}-{number:03d}"


def create_job(org, actor, job_data, stops_data):
    """
    Atomic create: Job + Stops.

    Stops are numbered 1,2,3 .. per type in the order given. The job starts
    `planned`, and moves on to `assigned` straight away when a driver is given.
    """
    same_org = actor is not None and org is not None and actor.org_id == org.pk
    if not same_org or not is_staff_role(actor):
        logger.warning("User %s denied creating a job", getattr(actor, "pk", None))
        raise AuthorizationError("Only admin or office staff can create jobs.")

    job_data = dict(job_data or {})
    stops_data = [dict(data) for data in stops_data or []]
    unknown = set(job_data) - set(CREATE_FIELDS)
    if unknown:
        raise ValidationError(
            f"Unknown job field(s): {', '.join(sorted(unknown))}.",
            field=sorted(unknown)[0],
        )
    _validate_stops_business_rules(stops_data)

    driver = None
    if job_data.get("assigned_driver_id") not in (None, ""):
        driver = get_driver(org, job_data["assigned_driver_id"])
        if driver is None:
            raise ValidationError(
                "Driver not found in this organisation.", field="assigned_driver_id"
            )

    now = timezone.now()
    with transaction.atomic():
        locked_org = Organisation.objects.select_for_update().get(pk=org.pk)
        order_number = (job_data.get("order_number") or "").strip()

        job = Job(
            org=locked_org,
            order_number=order_number or allocate_order_number(locked_org),
            price=clean_value(Job, "price", job_data.get("price")),
            notes=clean_value(Job, "notes", job_data.get("notes")),
            collection_date=clean_value(
                Job, "collection_date", job_data.get("collection_date")
            ),
            delivery_date=clean_value(
                Job, "delivery_date", job_data.get("delivery_date")
            ),
            created_by=actor,
            last_status_update_at=now,
        )
        full_clean_or_raise(job)
        job.save()
        record_event(job, actor, Job.Status.PLANNED, timestamp=now)

        if driver is not None:
            record_event(job, actor, Job.Status.ASSIGNED, timestamp=now)
            job._transition(Job.Status.ASSIGNED, assigned_driver=driver)

        seqs = {}
        stops = []
        for index, data in enumerate(stops_data):
            data.pop("seq", None)
            stop_type = str(data.get("type"))
            seqs[stop_type] = seqs.get(stop_type, 0) + 1
            stop = JobStop(org=locked_org, job=job, seq=seqs[stop_type])
            for name, value in data.items():
                setattr(stop, name, clean_value(JobStop, name, value))
            full_clean_or_raise(stop, prefix="stops", entry_index=index)
            stop.save()
            stops.append(stop)

        record_audit(
            org=locked_org,
            actor=actor,
            entity="job",
            entity_id=job.pk,
            action="create_job",
            before={},
            after={
                "job": job_snapshot(job),
                "stops": [stop_snapshot(stop) for stop in stops],
            },
        )
        if driver is not None:
            notify(
                [driver],
                f"Job {job.order_number} assigned",
                f"You have been assigned job {job.order_number}.",
                job_link(job),
            )

    logger.info(
        "Job %s (%s) created by %s with %d stops",
        job.pk,
        job.order_number,
        actor.pk,
        len(stops),
    )
    return job
