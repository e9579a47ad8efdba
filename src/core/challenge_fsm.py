"""
Challenge lifecycle state machine.

    draft -> upcoming -> active -> completed
    draft|upcoming|active -> cancelled

completed and cancelled are terminal. Every status change, whether it comes
from the scheduled sweep or from an admin action, goes through transition().
"""

from datetime import datetime
from typing import Optional

from src.core.enums import ChallengeEvent, ChallengeStatus
from src.core.exceptions import InvalidTransition
from src.utils.dates import as_utc

S = ChallengeStatus
E = ChallengeEvent

TRANSITIONS: dict[tuple[ChallengeStatus, ChallengeEvent], ChallengeStatus] = {
    (S.DRAFT, E.PUBLISH): S.UPCOMING,
    (S.DRAFT, E.CANCEL): S.CANCELLED,
    (S.UPCOMING, E.START): S.ACTIVE,
    (S.UPCOMING, E.COMPLETE): S.COMPLETED,
    (S.UPCOMING, E.CANCEL): S.CANCELLED,
    (S.ACTIVE, E.COMPLETE): S.COMPLETED,
    (S.ACTIVE, E.CANCEL): S.CANCELLED,
}


def transition(status: ChallengeStatus | str, event: ChallengeEvent | str) -> ChallengeStatus:
    """
    Apply event to status

    Raises:
        InvalidTransition: event is not accepted in this state
    """
    status = ChallengeStatus(status)
    event = ChallengeEvent(event)

    new_status = TRANSITIONS.get((status, event))
    if new_status is None:
        raise InvalidTransition(
            f"Cannot {event.value} a challenge that is {status.value}"
        )
    return new_status


def can_transition(status: ChallengeStatus | str, event: ChallengeEvent | str) -> bool:
    return (ChallengeStatus(status), ChallengeEvent(event)) in TRANSITIONS


def event_for_target(
    status: ChallengeStatus | str, target: ChallengeStatus | str
) -> ChallengeEvent:
    """
    Find the event that moves status to target in one step

    Used when an admin edits the status field directly.

    Raises:
        InvalidTransition: target is not reachable in one step
    """
    status = ChallengeStatus(status)
    target = ChallengeStatus(target)

    for (from_status, event), to_status in TRANSITIONS.items():
        if from_status == status and to_status == target:
            return event

    raise InvalidTransition(
        f"Cannot change challenge status from {status.value} to {target.value}"
    )


def time_event(
    status: ChallengeStatus | str,
    start_date: datetime,
    end_date: datetime,
    now: datetime,
) -> Optional[ChallengeEvent]:
    """
    Event the status sweep should fire for a challenge, if any

    Only upcoming and active challenges move on their own:
    past endDate completes, past startDate starts an upcoming one.
    """
    status = ChallengeStatus(status)
    if status not in (S.UPCOMING, S.ACTIVE):
        return None

    now = as_utc(now)
    start_date = as_utc(start_date)
    end_date = as_utc(end_date)

    if now >= end_date:
        return E.COMPLETE
    if now >= start_date and status == S.UPCOMING:
        return E.START
    return None
