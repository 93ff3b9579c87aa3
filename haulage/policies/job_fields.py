"""
Field-level write permissions for job edits, held as data.

Each editable field maps to a category; each role maps to the categories it
may touch. Adding a role or a field is an edit to the tables below.
"""

JOB_FIELD_CATEGORIES = {
    "status": "job.status",
    "notes": "job.notes",
    "assigned_driver_id": "job.assignment",
    "price": "job.commercial",
    "order_number": "job.reference",
    "collection_date": "job.schedule",
    "delivery_date": "job.schedule",
}

STOP_FIELD_CATEGORIES = {
    "window_from": "stop.window",
    "window_to": "stop.window",
    "notes": "stop.window",
    "name": "stop.address",
    "address_line1": "stop.address",
    "address_line2": "stop.address",
    "city": "stop.address",
    "postcode": "stop.address",
    "type": "stop.address",
    "seq": "stop.address",
}

ADD_STOP = "stop.add"
DELETE_STOP = "stop.delete"

_ALL = frozenset(
    set(JOB_FIELD_CATEGORIES.values())
    | set(STOP_FIELD_CATEGORIES.values())
    | {ADD_STOP, DELETE_STOP}
)

ROLE_PERMISSIONS = {
    "admin": _ALL,
    "office": _ALL,
    "driver": frozenset({"job.status", "job.notes", "stop.window"}),
}


def is_allowed(role, category) -> bool:
    return category in ROLE_PERMISSIONS.get(str(role), frozenset())


def job_field_category(field):
    """Category of a job field, None when the field is not editable."""
    return JOB_FIELD_CATEGORIES.get(field)


def stop_field_category(field):
    return STOP_FIELD_CATEGORIES.get(field)
