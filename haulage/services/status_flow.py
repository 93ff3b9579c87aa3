"""
Job status vocabulary and ordering.

The happy path is the declaration order of `Job.Status` minus CANCELLED.
Every ordering, backfill and next-action check in the project derives from
the tuples below. Values are plain strings so rows loaded from the database
and enum members compare and hash alike.
"""

from haulage.models import Job, JobStop

S = Job.Status

STATUS_SEQUENCE = tuple(s.value for s in S if s != S.CANCELLED)
NOT_FOUND = -1

TERMINAL_STATUSES = (S.DELIVERED.value, S.POD_RECEIVED.value, S.CANCELLED.value)

# Reachable only through creation, assignment or cancel_job
NON_MANUAL_STATUSES = (S.PLANNED.value, S.ASSIGNED.value, S.CANCELLED.value)
MANUAL_PROGRESS_STATUSES = tuple(
    s for s in STATUS_SEQUENCE if s not in NON_MANUAL_STATUSES
)

COLLECTION_STOP_SEQUENCE = (
    S.ON_ROUTE_COLLECTION.value,
    S.AT_COLLECTION.value,
    S.LOADED.value,
)
DELIVERY_STOP_SEQUENCE = (
    S.ON_ROUTE_DELIVERY.value,
    S.AT_DELIVERY.value,
    S.POD_RECEIVED.value,
)

STOP_SEQUENCES = {
    JobStop.StopType.COLLECTION.value: COLLECTION_STOP_SEQUENCE,
    JobStop.StopType.DELIVERY.value: DELIVERY_STOP_SEQUENCE,
}

# A driver standing at a stop; the overdue monitor watches these.
DWELL_STATUSES = (S.AT_COLLECTION.value, S.AT_DELIVERY.value)


def status_index(status) -> int:
    """0-based position in the happy path, NOT_FOUND for cancelled/unknown."""
    if status is None or str(status) not in STATUS_SEQUENCE:
        return NOT_FOUND
    return STATUS_SEQUENCE.index(str(status))


def is_terminal(status) -> bool:
    return status in TERMINAL_STATUSES


def is_status_action(action_type) -> bool:
    """True for progress log rows that record a status rather than an event."""
    return action_type == S.CANCELLED or status_index(action_type) != NOT_FOUND


def is_valid_forward_transition(current, target) -> bool:
    if target == S.CANCELLED:
        return not is_terminal(current)
    current_i, target_i = status_index(current), status_index(target)
    if current_i == NOT_FOUND or target_i == NOT_FOUND:
        return False
    return target_i > current_i


def compute_skipped_statuses(current, target) -> list:
    """
    Statuses strictly between current and target, ascending.

    Empty for same/backward targets and for anything outside the sequence,
    cancelled included. Callers reject those targets themselves.
    """
    current_i, target_i = status_index(current), status_index(target)
    if current_i == NOT_FOUND or target_i == NOT_FOUND or target_i <= current_i:
        return []
    return list(STATUS_SEQUENCE[current_i + 1 : target_i])


def stop_sequence(stop_type) -> tuple:
    return STOP_SEQUENCES[str(stop_type)]


def stop_status_index(stop_type, status) -> int:
    """Position inside the stop's sub-sequence; None (pending) is NOT_FOUND."""
    sequence = stop_sequence(stop_type)
    if status is None or str(status) not in sequence:
        return NOT_FOUND
    return sequence.index(str(status))


def compute_skipped_stop_statuses(stop_type, current, target) -> list:
    """Same rule as compute_skipped_statuses, inside one stop's sub-sequence.

    `current` is None while the stop has no progress yet.
    """
    sequence = stop_sequence(stop_type)
    target_i = stop_status_index(stop_type, target)
    if target_i == NOT_FOUND:
        return []
    if current is None:
        return list(sequence[:target_i])
    current_i = stop_status_index(stop_type, current)
    if current_i == NOT_FOUND or target_i <= current_i:
        return []
    return list(sequence[current_i + 1 : target_i])


def stop_state_from_actions(stop_type, action_types):
    """Furthest sub-status reached by a stop, given its stop-scoped actions."""
    reached = NOT_FOUND
    for action_type in action_types:
        reached = max(reached, stop_status_index(stop_type, action_type))
    if reached == NOT_FOUND:
        return None
    return stop_sequence(stop_type)[reached]


def is_stop_complete(stop_type, state) -> bool:
    return state is not None and state == stop_sequence(stop_type)[-1]
