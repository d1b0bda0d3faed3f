"""Narrative arc status transitions."""

from config.exceptions import InvalidTransitionError
from models.enums import ArcStatus

# Main progression; a later stage may be reached directly from an earlier one
ARC_PROGRESSION = (
    ArcStatus.SETUP,
    ArcStatus.RISING,
    ArcStatus.CLIMAX,
    ArcStatus.FALLING,
    ArcStatus.RESOLVED,
)

TERMINAL_STATUSES = frozenset({ArcStatus.RESOLVED, ArcStatus.ABANDONED})


def allowed_transitions(current: ArcStatus) -> frozenset[ArcStatus]:
    current = ArcStatus(current)
    if current in TERMINAL_STATUSES:
        return frozenset()
    later = ARC_PROGRESSION[ARC_PROGRESSION.index(current) + 1:]
    return frozenset(later) | {ArcStatus.ABANDONED}


def can_transition(current: ArcStatus, requested: ArcStatus) -> bool:
    return ArcStatus(requested) in allowed_transitions(current)


def check_transition(current: ArcStatus, requested: ArcStatus) -> ArcStatus:
    """Return the requested status, or raise if the move is not allowed.

    Staying in the same status is a no-op and always allowed.
    """
    current, requested = ArcStatus(current), ArcStatus(requested)
    if current == requested:
        return requested
    if not can_transition(current, requested):
        raise InvalidTransitionError(current.value, requested.value)
    return requested
