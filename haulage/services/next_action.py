"""Derives the single next step a driver has to take on a job. Read-only."""

from dataclasses import dataclass
from typing import Optional

from haulage.models import Job, JobStop
from haulage.services import status_flow

S = Job.Status

# next status -> (action, button label)
DRIVER_ACTIONS = {
    S.ACCEPTED.value: ("accept_job", "Accept Job"),
    S.ON_ROUTE_COLLECTION.value: (
        "start_travel_to_collection",
        "Start Travel to Collection",
    ),
    S.AT_COLLECTION.value: ("arrive_at_collection", "Arrive at Collection"),
    S.LOADED.value: ("load_goods", "Confirm Loaded"),
    S.ON_ROUTE_DELIVERY.value: ("start_travel_to_delivery", "Start Travel to Delivery"),
    S.AT_DELIVERY.value: ("arrive_at_delivery", "Arrive at Delivery"),
    S.POD_RECEIVED.value: ("get_pod", "Get Proof of Delivery"),
}


@dataclass(frozen=True)
class NextDriverAction:
    action: str
    next_status: str
    label: str
    stop: Optional[JobStop] = None


def _ordered_stops(stops):
    """Collections first, then deliveries, each by seq."""
    return sorted(
        stops, key=lambda s: (s.type != JobStop.StopType.COLLECTION, s.seq)
    )


def stop_context(stop, position, total) -> str:
    kind = "Collection" if stop.type == JobStop.StopType.COLLECTION else "Delivery"
    place = stop.name or stop.address_line1
    if total > 1:
        return f"{place} ({kind} {position}/{total})"
    return f"{place} ({kind})"


def compute_next_driver_action(job, stops, progress_logs, driver_id):
    """
    Next action for `driver_id` on `job`, or None when there is nothing to do.

    Per stop, the furthest sub-status is read from the stop-scoped log rows;
    the first stop that is not complete decides the action.

    Finished jobs short-circuit to None. The progress engine only moves a job
    to `pod_received` once every drop has its POD, so through stop progress
    a finished job has no incomplete stops left.
    """
    if job.assigned_driver_id is None or str(job.assigned_driver_id) != str(driver_id):
        return None
    if status_flow.is_terminal(job.status):
        return None
    if job.status in (S.PLANNED, S.ASSIGNED):
        action, label = DRIVER_ACTIONS[S.ACCEPTED.value]
        return NextDriverAction(
            action=action, next_status=S.ACCEPTED.value, label=label
        )

    actions_by_stop = {}
    for log in progress_logs or ():
        if log.stop_id is not None:
            actions_by_stop.setdefault(log.stop_id, []).append(log.action_type)

    ordered = _ordered_stops(stops or ())
    totals = {}
    for stop in ordered:
        totals[str(stop.type)] = totals.get(str(stop.type), 0) + 1

    positions = {}
    for stop in ordered:
        kind = str(stop.type)
        positions[kind] = positions.get(kind, 0) + 1
        sequence = status_flow.stop_sequence(stop.type)
        state = status_flow.stop_state_from_actions(
            stop.type, actions_by_stop.get(stop.pk, ())
        )
        if status_flow.is_stop_complete(stop.type, state):
            continue

        if state is None:
            next_status = sequence[0]
        else:
            next_status = sequence[sequence.index(state) + 1]
        action, verb = DRIVER_ACTIONS[next_status]
        context = stop_context(stop, positions[kind], totals[kind])
        return NextDriverAction(
            action=action,
            next_status=next_status,
            label=f"{verb}: {context}",
            stop=stop,
        )

    return None
