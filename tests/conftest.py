from datetime import timedelta

import pytest
from django.utils import timezone

from haulage import factories
from haulage.models import Job, JobStop


@pytest.fixture
def organisation_factory():
    return factories.OrganisationFactory


@pytest.fixture
def user_factory():
    return factories.UserFactory


@pytest.fixture
def driver_factory():
    return factories.DriverFactory


@pytest.fixture
def job_factory():
    return factories.JobFactory


@pytest.fixture
def job_stop_factory():
    return factories.JobStopFactory


@pytest.fixture
def document_factory():
    return factories.DocumentFactory


@pytest.fixture
def org(organisation_factory):
    return organisation_factory(name="Fast Road Services", slug="frs")


@pytest.fixture
def admin_user(user_factory, org):
    return user_factory(username="admin", org=org, role="admin")


@pytest.fixture
def office_user(user_factory, org):
    return user_factory(username="office", org=org, role="office")


@pytest.fixture
def driver(driver_factory, org):
    return driver_factory(username="dave", org=org, first_name="Dave", last_name="Hill")


@pytest.fixture
def other_driver(driver_factory, org):
    return driver_factory(username="olga", org=org, first_name="Olga", last_name="Reed")


@pytest.fixture
def outsider(user_factory, organisation_factory):
    """Office user of another organisation."""
    return user_factory(
        username="outsider", org=organisation_factory(slug="rival"), role="office"
    )


@pytest.fixture
def make_job(job_factory, job_stop_factory, office_user):
    """Job of office_user's organisation with numbered collection/delivery stops."""

    def make(
        status=Job.Status.PLANNED, driver=None, collections=1, deliveries=1, **kwargs
    ):
        job = job_factory(
            org=office_user.org,
            created_by=office_user,
            status=status,
            assigned_driver=driver,
            **kwargs,
        )
        for seq in range(1, collections + 1):
            job_stop_factory(
                job=job, type=JobStop.StopType.COLLECTION, seq=seq, name=f"Depot {seq}"
            )
        for seq in range(1, deliveries + 1):
            job_stop_factory(
                job=job, type=JobStop.StopType.DELIVERY, seq=seq, name=f"Shop {seq}"
            )
        return job

    return make


@pytest.fixture
def clock():
    """Aware timestamps a fixed number of minutes after a start an hour ago."""
    start = timezone.now() - timedelta(hours=1)

    def at(minutes=0):
        return start + timedelta(minutes=minutes)

    return at
