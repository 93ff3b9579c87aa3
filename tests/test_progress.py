from datetime import timedelta

import pytest
from django.utils import timezone

from haulage.models import AuditLog, Job, JobProgressLog, Notification
from haulage.services.cancellation import cancel_job
from haulage.services.exceptions import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from haulage.services.progress import (
    ProgressEntry,
    add_job_note,
    apply_progress_batch,
    apply_progress_update,
    latest_status_log,
    set_timeline_visibility,
    stop_states,
    timeline,
)

pytestmark = pytest.mark.django_db

S = Job.Status


def actions(job):
    return list(
        JobProgressLog.objects.filter(job=job)
        .order_by("timestamp", "id")
        .values_list("action_type", flat=True)
    )


def test_office_update_backfills_skipped_statuses(make_job, office_user, clock):
    job = make_job(status=S.PLANNED)

    logs = apply_progress_update(job, S.ON_ROUTE_COLLECTION, clock(), office_user)

    assert [log.action_type for log in logs] == [
        "assigned",
        "accepted",
        "on_route_collection",
    ]
    assert [log.is_backfill for log in logs] == [True, True, False]
    assert logs[0].notes == "Auto-logged: skipped on the way to On Route to Collection"
    assert {log.timestamp for log in logs} == {clock()}
    assert all(log.actor_role == "office" for log in logs)
    job.refresh_from_db()
    assert job.status == S.ON_ROUTE_COLLECTION
    assert job.version == 2
    assert job.last_status_update_at == clock()


def test_driver_jump_to_delivered_logs_every_status(make_job, driver, clock):
    job = make_job(status=S.ACCEPTED, driver=driver)

    logs = apply_progress_update(
        job, S.DELIVERED, clock(), driver, notes="Left at gate"
    )

    assert [log.action_type for log in logs] == [
        "on_route_collection",
        "at_collection",
        "loaded",
        "on_route_delivery",
        "at_delivery",
        "delivered",
    ]
    assert logs[-1].notes == "Left at gate"
    assert not logs[-1].is_backfill
    assert job.status == S.DELIVERED
    audit = AuditLog.objects.get(entity_id=str(job.pk))
    assert audit.action == "update_progress"
    assert audit.before == {"status": "accepted"}
    assert audit.after == {"status": "delivered"}


def test_driver_progress_notifies_office_after_commit(
    make_job, driver, office_user, admin_user, clock, django_capture_on_commit_callbacks
):
    job = make_job(status=S.ACCEPTED, driver=driver)

    with django_capture_on_commit_callbacks(execute=True):
        apply_progress_update(job, S.ON_ROUTE_COLLECTION, clock(), driver)

    notified = set(Notification.objects.values_list("user__username", flat=True))
    assert notified == {"office", "admin"}
    note = Notification.objects.get(user=office_user)
    assert note.link_to == f"/jobs/{job.pk}"
    assert job.order_number in note.title


def test_resubmitting_current_status_only_adds_the_note(make_job, driver, clock):
    job = make_job(status=S.LOADED, driver=driver)

    logs = apply_progress_update(job, S.LOADED, clock(), driver, notes="Straps checked")
    nothing = apply_progress_update(job, S.LOADED, clock(1), driver)

    assert [log.action_type for log in logs] == ["note_added"]
    assert nothing == []
    job.refresh_from_db()
    assert job.status == S.LOADED
    assert job.version == 1
    assert AuditLog.objects.filter(action="update_progress").count() == 1


def test_batch_is_applied_in_timestamp_order(make_job, driver, clock):
    job = make_job(status=S.ACCEPTED, driver=driver)
    entries = [
        ProgressEntry(status=S.AT_COLLECTION, timestamp=clock(10)),
        ProgressEntry(status=S.ON_ROUTE_COLLECTION, timestamp=clock(5)),
    ]

    logs = apply_progress_batch(job, entries, driver)

    assert [log.action_type for log in logs] == ["on_route_collection", "at_collection"]
    assert not any(log.is_backfill for log in logs)
    assert job.status == S.AT_COLLECTION
    assert job.last_status_update_at == clock(10)


def test_failing_entry_rolls_back_the_whole_batch(make_job, driver, clock):
    job = make_job(status=S.ACCEPTED, driver=driver)
    entries = [
        ProgressEntry(status=S.LOADED, timestamp=clock(1)),
        ProgressEntry(status=S.AT_COLLECTION, timestamp=clock(2)),
    ]

    with pytest.raises(ValidationError) as excinfo:
        apply_progress_batch(job, entries, driver)

    assert excinfo.value.entry_index == 1
    assert actions(job) == []
    job.refresh_from_db()
    assert job.status == S.ACCEPTED
    assert job.version == 1


def test_non_manual_status_is_rejected_with_its_index(make_job, driver, clock):
    job = make_job(status=S.ACCEPTED, driver=driver)
    entries = [
        ProgressEntry(status=S.ON_ROUTE_COLLECTION, timestamp=clock(1)),
        ProgressEntry(status=S.CANCELLED, timestamp=clock(2)),
    ]

    with pytest.raises(ValidationError) as excinfo:
        apply_progress_batch(job, entries, driver)

    assert excinfo.value.entry_index == 1
    assert excinfo.value.field == "status"
    assert actions(job) == []


def test_naive_timestamp_is_rejected(make_job, driver, clock):
    job = make_job(status=S.ACCEPTED, driver=driver)

    with pytest.raises(ValidationError) as excinfo:
        apply_progress_update(
            job, S.ON_ROUTE_COLLECTION, clock().replace(tzinfo=None), driver
        )

    assert excinfo.value.field == "timestamp"


def test_empty_batch_is_rejected(make_job, driver):
    job = make_job(status=S.ACCEPTED, driver=driver)

    with pytest.raises(ValidationError):
        apply_progress_batch(job, [], driver)


def test_timestamp_before_latest_status_is_rejected(make_job, driver, clock):
    job = make_job(status=S.ACCEPTED, driver=driver)
    apply_progress_update(job, S.ON_ROUTE_COLLECTION, clock(10), driver)

    with pytest.raises(ValidationError) as excinfo:
        apply_progress_update(job, S.AT_COLLECTION, clock(5), driver)

    assert excinfo.value.field == "timestamp"
    assert actions(job) == ["on_route_collection"]


def test_backward_move_is_rejected(make_job, office_user, clock):
    job = make_job(status=S.AT_DELIVERY)

    with pytest.raises(ValidationError):
        apply_progress_update(job, S.LOADED, clock(), office_user)


def test_cancelled_job_accepts_no_progress(make_job, office_user, clock):
    job = make_job(status=S.CANCELLED)

    with pytest.raises(ValidationError):
        apply_progress_update(job, S.ACCEPTED, clock(), office_user)

    assert actions(job) == []


def test_stale_version_conflicts(make_job, driver, clock):
    job = make_job(status=S.ACCEPTED, driver=driver)

    with pytest.raises(ConflictError):
        apply_progress_update(
            job, S.ON_ROUTE_COLLECTION, clock(), driver, expected_version=7
        )

    apply_progress_update(
        job, S.ON_ROUTE_COLLECTION, clock(), driver, expected_version=1
    )
    assert job.version == 2


def test_only_the_assigned_driver_may_update(make_job, driver, other_driver, clock):
    job = make_job(status=S.ACCEPTED, driver=driver)

    with pytest.raises(AuthorizationError):
        apply_progress_update(job, S.ON_ROUTE_COLLECTION, clock(), other_driver)


def test_other_organisation_sees_no_job(make_job, outsider, clock):
    job = make_job(status=S.ACCEPTED)

    with pytest.raises(NotFoundError):
        apply_progress_update(job, S.ON_ROUTE_COLLECTION, clock(), outsider)


def test_progress_clears_the_overdue_flag(make_job, driver, clock):
    job = make_job(
        status=S.AT_COLLECTION, driver=driver, overdue_notification_sent=True
    )

    apply_progress_update(job, S.LOADED, clock(), driver)

    assert job.overdue_notification_sent is False


def test_stop_progress_tracks_each_stop(make_job, driver, clock):
    job = make_job(status=S.LOADED, driver=driver, deliveries=2)
    first, second = job.stops.filter(type="delivery").order_by("seq")

    logs = apply_progress_update(job, S.AT_DELIVERY, clock(1), driver, stop=first)

    assert [log.action_type for log in logs] == ["on_route_delivery", "at_delivery"]
    assert all(log.stop_id == first.pk for log in logs)
    assert job.status == S.AT_DELIVERY

    apply_progress_update(job, S.ON_ROUTE_DELIVERY, clock(2), driver, stop=second)

    assert stop_states(job) == {first.pk: "at_delivery", second.pk: "on_route_delivery"}
    assert job.status == S.ON_ROUTE_DELIVERY


def test_stop_cannot_move_back(make_job, driver, clock):
    job = make_job(status=S.LOADED, driver=driver)
    delivery = job.stops.get(type="delivery")
    apply_progress_update(job, S.AT_DELIVERY, clock(1), driver, stop=delivery)

    with pytest.raises(ValidationError):
        apply_progress_update(job, S.ON_ROUTE_DELIVERY, clock(2), driver, stop=delivery)


def test_stop_progress_needs_an_accepted_job(make_job, driver, clock):
    job = make_job(status=S.ASSIGNED, driver=driver)
    collection = job.stops.get(type="collection")

    with pytest.raises(ValidationError):
        apply_progress_update(
            job, S.ON_ROUTE_COLLECTION, clock(), driver, stop=collection
        )


def test_stop_status_must_fit_the_stop_type(make_job, driver, clock):
    job = make_job(status=S.LOADED, driver=driver)
    collection = job.stops.get(type="collection")

    with pytest.raises(ValidationError) as excinfo:
        apply_progress_update(job, S.AT_DELIVERY, clock(), driver, stop=collection)

    assert excinfo.value.entry_index == 0


def test_stop_of_another_job_is_not_found(make_job, driver, clock):
    job = make_job(status=S.LOADED, driver=driver)
    foreign = make_job().stops.get(type="delivery")

    with pytest.raises(NotFoundError):
        apply_progress_update(job, S.ON_ROUTE_DELIVERY, clock(), driver, stop=foreign)


def test_each_drop_completes_only_its_stop(make_job, driver, clock):
    job = make_job(status=S.ACCEPTED, driver=driver, deliveries=2)
    collection = job.stops.get(type="collection")
    first, second = job.stops.filter(type="delivery").order_by("seq")
    apply_progress_update(job, S.LOADED, clock(1), driver, stop=collection)

    logs = apply_progress_update(job, S.POD_RECEIVED, clock(2), driver, stop=first)

    assert [log.action_type for log in logs] == [
        "on_route_delivery",
        "at_delivery",
        "pod_received",
    ]
    assert all(log.stop_id == first.pk for log in logs)
    assert job.status == S.AT_DELIVERY
    assert latest_status_log(job).action_type == job.status

    apply_progress_update(job, S.ON_ROUTE_DELIVERY, clock(3), driver, stop=second)
    assert job.status == S.ON_ROUTE_DELIVERY

    logs = apply_progress_update(job, S.POD_RECEIVED, clock(4), driver, stop=second)

    assert [(log.action_type, log.stop_id) for log in logs] == [
        ("at_delivery", second.pk),
        ("pod_received", second.pk),
        ("delivered", None),
        ("pod_received", None),
    ]
    assert logs[-1].notes == "All deliveries completed"
    assert job.status == S.POD_RECEIVED
    assert latest_status_log(job).action_type == job.status


def test_open_drops_leave_the_job_cancellable(make_job, driver, office_user, clock):
    job = make_job(status=S.LOADED, driver=driver, deliveries=2)
    first = job.stops.filter(type="delivery").order_by("seq").first()
    apply_progress_update(job, S.POD_RECEIVED, clock(1), driver, stop=first)

    cancel_job(job, office_user, reason="Customer closed")

    assert job.status == S.CANCELLED


def test_finished_job_takes_no_more_stop_progress(make_job, driver, clock):
    job = make_job(status=S.ACCEPTED, driver=driver)
    collection = job.stops.get(type="collection")
    delivery = job.stops.get(type="delivery")
    apply_progress_update(job, S.POD_RECEIVED, clock(1), driver, stop=delivery)

    with pytest.raises(ValidationError):
        apply_progress_update(
            job, S.ON_ROUTE_COLLECTION, clock(2), driver, stop=collection
        )

    # The same POD sent twice is a no-op
    again = apply_progress_update(job, S.POD_RECEIVED, clock(3), driver, stop=delivery)
    assert again == []
    assert job.status == S.POD_RECEIVED


def test_delivered_job_may_still_receive_its_pod(make_job, office_user, clock):
    job = make_job(status=S.DELIVERED)

    logs = apply_progress_update(job, S.POD_RECEIVED, clock(), office_user)

    assert [log.action_type for log in logs] == ["pod_received"]
    assert job.status == S.POD_RECEIVED


def test_future_timestamp_is_rejected(make_job, driver):
    job = make_job(status=S.ACCEPTED, driver=driver)
    tomorrow = timezone.now() + timedelta(days=1)

    with pytest.raises(ValidationError) as excinfo:
        apply_progress_update(job, S.AT_COLLECTION, tomorrow, driver)

    assert excinfo.value.field == "timestamp"
    assert excinfo.value.entry_index == 0
    assert actions(job) == []


def test_small_clock_skew_keeps_cancel_last(make_job, driver, office_user):
    job = make_job(status=S.ACCEPTED, driver=driver)
    apply_progress_update(
        job, S.AT_COLLECTION, timezone.now() + timedelta(seconds=60), driver
    )

    cancel_job(job, office_user)

    assert job.status == S.CANCELLED
    assert latest_status_log(job).action_type == "cancelled"


def test_expected_version_must_be_a_number(make_job, driver, clock):
    job = make_job(status=S.ACCEPTED, driver=driver)

    with pytest.raises(ValidationError) as excinfo:
        apply_progress_update(
            job, S.ON_ROUTE_COLLECTION, clock(), driver, expected_version="abc"
        )

    assert excinfo.value.field == "expected_version"
    assert actions(job) == []


def test_add_job_note(make_job, driver):
    job = make_job(status=S.ACCEPTED, driver=driver)

    log = add_job_note(job, driver, "  Gate code 1234 ")

    assert log.action_type == "note_added"
    assert log.notes == "Gate code 1234"
    with pytest.raises(ValidationError):
        add_job_note(job, driver, "   ")


def test_hidden_entries_leave_the_timeline(make_job, office_user, driver, clock):
    job = make_job(status=S.ACCEPTED, driver=driver)
    log = add_job_note(job, driver, "Typo")

    set_timeline_visibility(log, False, office_user)

    assert log not in timeline(job)
    assert log in timeline(job, include_hidden=True)
    audit = AuditLog.objects.get(action="update_timeline_visibility")
    assert audit.before == {"visible_in_timeline": True}
    assert audit.after == {"visible_in_timeline": False}


def test_driver_cannot_hide_timeline_entries(make_job, driver):
    job = make_job(status=S.ACCEPTED, driver=driver)
    log = add_job_note(job, driver, "Running late")

    with pytest.raises(AuthorizationError):
        set_timeline_visibility(log, False, driver)
