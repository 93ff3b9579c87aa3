import json
import logging

from django.core.serializers.json import DjangoJSONEncoder

from haulage.models import AuditLog

logger = logging.getLogger(__name__)

JOB_SNAPSHOT_FIELDS = (
    "order_number",
    "status",
    "assigned_driver_id",
    "price",
    "notes",
    "collection_date",
    "delivery_date",
    "cancelled_at",
    "deleted_at",
)

STOP_SNAPSHOT_FIELDS = (
    "type",
    "seq",
    "name",
    "address_line1",
    "address_line2",
    "city",
    "postcode",
    "window_from",
    "window_to",
    "notes",
)


def jsonable(data):
    """Round-trip through DjangoJSONEncoder so the data fits a JSONField."""
    return json.loads(json.dumps(data, cls=DjangoJSONEncoder))


def job_snapshot(job, fields=JOB_SNAPSHOT_FIELDS):
    return {field: getattr(job, field) for field in fields}


def stop_snapshot(stop, fields=STOP_SNAPSHOT_FIELDS):
    snapshot = {"id": stop.pk}
    snapshot.update({field: getattr(stop, field) for field in fields})
    return snapshot


def record_audit(*, org, actor, entity, entity_id, action, before, after, notes=""):
    """Single writer for AuditLog rows."""
    entry = AuditLog.objects.create(
        org=org,
        actor=actor,
        entity=entity,
        entity_id=str(entity_id),
        action=action,
        before=jsonable(before),
        after=jsonable(after),
        notes=notes or "",
    )
    logger.info(
        "audit %s %s:%s by %s",
        action,
        entity,
        entity_id,
        getattr(actor, "pk", None),
    )
    return entry
