"""Toggle semantics shared by votes, follows and saves.

Every user-owned relation moves through ``Absent -> Present(value) -> Absent``.
Votes additionally allow ``Present(a) -> Present(b)`` when the user switches
magnitude. ``0`` always means "no row".
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class RemoteOperation(str, Enum):
    """Persistence call needed to reach the resolved state."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


@dataclass(frozen=True)
class ToggleResolution:
    """Outcome of resolving one user action against the current state."""

    current_value: int
    requested_value: int
    next_value: int
    operation: RemoteOperation

    def apply_to_count(self, count: int) -> int:
        """Return the aggregate after this transition."""
        return next_count(count, self.current_value, self.next_value)


def resolve_toggle(current_value: int, requested_value: int) -> ToggleResolution:
    """Resolve the next relation value for a requested action.

    Repeating the current value undoes it; anything else replaces it.

    Args:
        current_value: Existing value, ``0`` when no relation exists.
        requested_value: Value the action asks for; must be nonzero.

    Raises:
        ValueError: If ``requested_value`` is zero.
    """
    if requested_value == 0:
        raise ValueError("requested_value must be nonzero")

    next_value = 0 if current_value == requested_value else requested_value

    if next_value == 0:
        operation = RemoteOperation.DELETE
    elif current_value == 0:
        operation = RemoteOperation.CREATE
    else:
        operation = RemoteOperation.UPDATE

    return ToggleResolution(
        current_value=current_value,
        requested_value=requested_value,
        next_value=next_value,
        operation=operation,
    )


def next_count(current_count: int, current_value: int, next_value: int) -> int:
    """Return the denormalised aggregate after replacing one owner's value."""
    return current_count - current_value + next_value
