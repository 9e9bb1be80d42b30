"""Shared result types used across service boundaries."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Generic, Literal, TypeVar, Union

T = TypeVar("T")


@dataclass(frozen=True)
class Ok(Generic[T]):
    """Successful service call carrying its payload."""

    data: T
    success: Literal[True] = field(default=True, init=False)


@dataclass(frozen=True)
class Err:
    """Failed service call; ``error`` is safe to log, not to display."""

    error: str
    success: Literal[False] = field(default=False, init=False)


# Discriminated on ``success``; service functions return this instead of raising.
ServiceResult = Union[Ok[T], Err]

