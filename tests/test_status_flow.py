import pytest

from haulage.models import Job, JobStop
from haulage.services import status_flow

S = Job.Status


def test_sequence_follows_declaration_order_without_cancelled():
    assert status_flow.STATUS_SEQUENCE == (
        "planned",
        "assigned",
        "accepted",
        "on_route_collection",
        "at_collection",
        "loaded",
        "on_route_delivery",
        "at_delivery",
        "delivered",
        "pod_received",
    )


def test_status_index_handles_unknown_and_cancelled():
    assert status_flow.status_index(S.PLANNED) == 0
    assert status_flow.status_index("pod_received") == 9
    assert status_flow.status_index(S.CANCELLED) == status_flow.NOT_FOUND
    assert status_flow.status_index("teleported") == status_flow.NOT_FOUND
    assert status_flow.status_index(None) == status_flow.NOT_FOUND


def test_manual_statuses_exclude_creation_and_cancel():
    assert "planned" not in status_flow.MANUAL_PROGRESS_STATUSES
    assert "assigned" not in status_flow.MANUAL_PROGRESS_STATUSES
    assert "cancelled" not in status_flow.MANUAL_PROGRESS_STATUSES
    assert status_flow.MANUAL_PROGRESS_STATUSES[0] == "accepted"
    assert status_flow.MANUAL_PROGRESS_STATUSES[-1] == "pod_received"


@pytest.mark.parametrize(
    "current,target,expected",
    [
        (S.PLANNED, S.ON_ROUTE_COLLECTION, ["assigned", "accepted"]),
        (
            S.ACCEPTED,
            S.DELIVERED,
            [
                "on_route_collection",
                "at_collection",
                "loaded",
                "on_route_delivery",
                "at_delivery",
            ],
        ),
        (S.LOADED, S.ON_ROUTE_DELIVERY, []),
        (S.LOADED, S.LOADED, []),
        (S.AT_DELIVERY, S.ACCEPTED, []),
        (S.ACCEPTED, S.CANCELLED, []),
    ],
)
def test_compute_skipped_statuses(current, target, expected):
    assert status_flow.compute_skipped_statuses(current, target) == expected


def test_skipped_statuses_are_strictly_between_and_ascending():
    for i, current in enumerate(status_flow.STATUS_SEQUENCE):
        for j, target in enumerate(status_flow.STATUS_SEQUENCE):
            skipped = status_flow.compute_skipped_statuses(current, target)
            if j <= i:
                assert skipped == []
            else:
                assert skipped == list(status_flow.STATUS_SEQUENCE[i + 1 : j])


@pytest.mark.parametrize(
    "current,target,expected",
    [
        (S.PLANNED, S.ACCEPTED, True),
        (S.ACCEPTED, S.ACCEPTED, False),
        (S.LOADED, S.AT_COLLECTION, False),
        (S.LOADED, S.CANCELLED, True),
        (S.DELIVERED, S.CANCELLED, False),
        (S.CANCELLED, S.ACCEPTED, False),
        (S.CANCELLED, S.CANCELLED, False),
    ],
)
def test_is_valid_forward_transition(current, target, expected):
    assert status_flow.is_valid_forward_transition(current, target) is expected


def test_terminal_statuses():
    assert status_flow.is_terminal("delivered")
    assert status_flow.is_terminal(S.POD_RECEIVED)
    assert status_flow.is_terminal(S.CANCELLED)
    assert not status_flow.is_terminal(S.AT_DELIVERY)


def test_stop_sequences_and_backfill():
    collection = JobStop.StopType.COLLECTION
    delivery = JobStop.StopType.DELIVERY

    assert status_flow.stop_sequence(collection) == (
        "on_route_collection",
        "at_collection",
        "loaded",
    )
    assert status_flow.compute_skipped_stop_statuses(collection, None, "loaded") == [
        "on_route_collection",
        "at_collection",
    ]
    assert status_flow.compute_skipped_stop_statuses(
        delivery, "on_route_delivery", "pod_received"
    ) == ["at_delivery"]
    assert (
        status_flow.compute_skipped_stop_statuses(delivery, "at_delivery", "at_delivery")
        == []
    )


def test_stop_state_from_actions_takes_furthest_sub_status():
    delivery = JobStop.StopType.DELIVERY
    actions = ["note_added", "at_delivery", "on_route_delivery", "document_uploaded"]

    assert status_flow.stop_state_from_actions(delivery, actions) == "at_delivery"
    assert status_flow.stop_state_from_actions(delivery, ["note_added"]) is None
    assert not status_flow.is_stop_complete(delivery, "at_delivery")
    assert status_flow.is_stop_complete(delivery, "pod_received")


def test_status_actions_are_told_apart_from_events():
    assert status_flow.is_status_action("loaded")
    assert status_flow.is_status_action(S.CANCELLED)
    assert not status_flow.is_status_action("note_added")
