"""Partition lifecycle states.

    HOT ──(aging predicate true for every row)──▶ COOL ──(retention elapsed)──▶ EXPIRED

EXPIRED is terminal. A partition can never go straight from HOT to EXPIRED.
"""

from enum import Enum

from tiering.common.exceptions import InvalidTransitionError


class PartitionState(str, Enum):
    """Lifecycle state of a partition."""

    HOT = "HOT"  # Standard storage, visible to queries
    COOL = "COOL"  # Archived, reachable only through archive retrieval
    EXPIRED = "EXPIRED"  # Deleted, terminal


ALLOWED_TRANSITIONS: dict[PartitionState, frozenset[PartitionState]] = {
    PartitionState.HOT: frozenset({PartitionState.COOL}),
    PartitionState.COOL: frozenset({PartitionState.EXPIRED}),
    PartitionState.EXPIRED: frozenset(),
}


def can_transition(current: PartitionState, target: PartitionState) -> bool:
    return target in ALLOWED_TRANSITIONS[PartitionState(current)]


def ensure_transition(current: PartitionState, target: PartitionState) -> None:
    """Raise InvalidTransitionError unless current -> target is allowed."""
    current = PartitionState(current)
    target = PartitionState(target)
    if not can_transition(current, target):
        raise InvalidTransitionError(
            f"Partition cannot move from {current.value} to {target.value}"
        )


def transition_name(current: PartitionState, target: PartitionState) -> str:
    """Metric label for a transition, e.g. 'hot_to_cool'."""
    return f"{PartitionState(current).value.lower()}_to_{PartitionState(target).value.lower()}"
