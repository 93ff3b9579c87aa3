import pytest

from haulage.models import AuditLog, Job, JobProgressLog, Notification
from haulage.services.exceptions import AuthorizationError, ValidationError
from haulage.services.job_creation import allocate_order_number, create_job

pytestmark = pytest.mark.django_db

S = Job.Status


def route():
    return [
        {
            "type": "collection",
            "name": "Depot",
            "address_line1": "Unit 4, Ring Road",
            "city": "Leeds",
            "postcode": "LS9 0AA",
            "window_from": "08:00",
            "window_to": "10:00",
        },
        {
            "type": "delivery",
            "address_line1": "12 Market Street",
            "city": "York",
            "postcode": "YO1 8AB",
        },
        {
            "type": "delivery",
            "address_line1": "3 Quay Side",
            "city": "Hull",
            "postcode": "HU1 1AA",
        },
    ]


def test_create_job_numbers_stops_per_type(org, office_user):
    job = create_job(org, office_user, {"price": "420.00"}, route())

    assert job.status == S.PLANNED
    assert job.order_number == "FRS-001"
    assert [(s.type, s.seq) for s in job.stops.order_by("type", "seq")] == [
        ("collection", 1),
        ("delivery", 1),
        ("delivery", 2),
    ]
    logs = JobProgressLog.objects.filter(job=job)
    assert list(logs.values_list("action_type", flat=True)) == ["planned"]
    audit = AuditLog.objects.get(action="create_job")
    assert audit.after["job"]["order_number"] == "FRS-001"
    assert len(audit.after["stops"]) == 3


def test_create_with_driver_starts_assigned(
    org, office_user, driver, django_capture_on_commit_callbacks
):
    with django_capture_on_commit_callbacks(execute=True):
        job = create_job(org, office_user, {"assigned_driver_id": driver.pk}, route())

    assert job.status == S.ASSIGNED
    assert job.assigned_driver == driver
    assert list(
        job.progress_logs.order_by("id").values_list("action_type", flat=True)
    ) == ["planned", "assigned"]
    assert Notification.objects.filter(user=driver).exists()


def test_order_numbers_fill_the_lowest_gap(org, office_user, job_factory):
    job_factory(org=org, order_number="FRS-001")
    job_factory(org=org, order_number="FRS-003")

    assert allocate_order_number(org) == "FRS-002"


def test_organisation_prefix_wins(org, office_user):
    org.order_prefix = "ACME"
    org.save()

    job = create_job(org, office_user, {}, route())

    assert job.order_number == "ACME-001"


def test_explicit_order_number_must_be_unique(org, office_user, job_factory):
    job_factory(org=org, order_number="PO-77")

    with pytest.raises(ValidationError):
        create_job(org, office_user, {"order_number": "PO-77"}, route())


@pytest.mark.parametrize("missing", ["collection", "delivery"])
def test_route_needs_collection_and_delivery(org, office_user, missing):
    stops = [s for s in route() if s["type"] != missing]

    with pytest.raises(ValidationError) as excinfo:
        create_job(org, office_user, {}, stops)

    assert excinfo.value.field == "stops"
    assert not Job.objects.exists()


def test_invalid_stop_reports_its_index(org, office_user):
    stops = route()
    stops[2]["postcode"] = ""

    with pytest.raises(ValidationError) as excinfo:
        create_job(org, office_user, {}, stops)

    assert excinfo.value.field == "stops.postcode"
    assert excinfo.value.entry_index == 2
    assert not Job.objects.exists()


def test_drivers_cannot_create_jobs(org, driver):
    with pytest.raises(AuthorizationError):
        create_job(org, driver, {}, route())


def test_driver_must_belong_to_the_organisation(org, office_user, outsider):
    with pytest.raises(ValidationError):
        create_job(org, office_user, {"assigned_driver_id": outsider.pk}, route())
