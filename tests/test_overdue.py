from datetime import timedelta

import pytest
from django.core.management import call_command
from django.utils import timezone

from haulage.models import Job, Notification
from haulage.services.overdue import find_overdue_jobs, notify_overdue_jobs

pytestmark = pytest.mark.django_db

S = Job.Status


@pytest.fixture
def two_hours_ago():
    return timezone.now() - timedelta(hours=2)


def test_only_long_stays_at_a_stop_are_overdue(make_job, driver, two_hours_ago):
    waiting = make_job(
        status=S.AT_COLLECTION, driver=driver, last_status_update_at=two_hours_ago
    )
    make_job(status=S.AT_DELIVERY, last_status_update_at=timezone.now())
    make_job(status=S.ON_ROUTE_DELIVERY, last_status_update_at=two_hours_ago)
    make_job(
        status=S.AT_DELIVERY,
        last_status_update_at=two_hours_ago,
        overdue_notification_sent=True,
    )

    assert list(find_overdue_jobs()) == [waiting]


def test_threshold_comes_from_settings(make_job, settings, two_hours_ago):
    settings.HAULAGE = {**settings.HAULAGE, "OVERDUE_THRESHOLD_MINUTES": 180}
    make_job(status=S.AT_COLLECTION, last_status_update_at=two_hours_ago)

    assert list(find_overdue_jobs()) == []


def test_overdue_jobs_are_flagged_and_notified_once(
    make_job, driver, office_user, two_hours_ago, django_capture_on_commit_callbacks
):
    job = make_job(
        status=S.AT_DELIVERY, driver=driver, last_status_update_at=two_hours_ago
    )

    with django_capture_on_commit_callbacks(execute=True):
        flagged = notify_overdue_jobs()
        again = notify_overdue_jobs()

    assert flagged == [job]
    assert again == []
    job.refresh_from_db()
    assert job.overdue_notification_sent is True
    assert set(Notification.objects.values_list("user_id", flat=True)) == {
        office_user.pk,
        driver.pk,
    }
    assert Notification.objects.count() == 2


def test_check_overdue_jobs_command(make_job, two_hours_ago, capsys):
    job = make_job(status=S.AT_COLLECTION, last_status_update_at=two_hours_ago)

    call_command("check_overdue_jobs")

    assert job.order_number in capsys.readouterr().out
