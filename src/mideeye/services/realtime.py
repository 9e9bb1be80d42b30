"""In-process realtime change feed.

Changes pushed by the store (another user's answer, a vote cast elsewhere)
arrive as immutable :class:`ChangeEvent` values on an ``asyncio.Queue``. A
background consumer fans each event out to the handlers subscribed to its
table. Handlers are reducers over local state; they never touch the store.
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Any, cast

from mideeye.core.settings import settings

logger = logging.getLogger(__name__)


class ChangeType(str, Enum):
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


def _freeze(row: Mapping[str, Any] | None) -> Mapping[str, Any] | None:
    if row is None:
        return None
    return MappingProxyType(dict(row))


@dataclass(frozen=True)
class ChangeEvent:
    """One row-level change on ``table``.

    ``new`` is the row after the change (absent for DELETE); ``old`` is the row
    before it (absent for INSERT, optional for UPDATE).
    """

    table: str
    event_type: ChangeType
    new: Mapping[str, Any] | None = None
    old: Mapping[str, Any] | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "event_type", ChangeType(self.event_type))
        object.__setattr__(self, "new", _freeze(self.new))
        object.__setattr__(self, "old", _freeze(self.old))
        if self.event_type is not ChangeType.DELETE and self.new is None:
            raise ValueError(f"{self.event_type.value} event on {self.table} requires a new row")
        if self.event_type is ChangeType.DELETE and self.old is None:
            raise ValueError(f"DELETE event on {self.table} requires the old row")

    @property
    def row(self) -> Mapping[str, Any]:
        """Row that identifies the affected record."""
        row = self.old if self.event_type is ChangeType.DELETE else self.new
        return cast(Mapping[str, Any], row)


Handler = Callable[[ChangeEvent], None]


class RealtimeChannel:
    """Queue-backed event channel with a background dispatch loop."""

    def __init__(self, maxsize: int | None = None) -> None:
        self._queue: asyncio.Queue[ChangeEvent] = asyncio.Queue(
            maxsize=settings.realtime_queue_size if maxsize is None else maxsize
        )
        self._handlers: defaultdict[str, list[Handler]] = defaultdict(list)
        self._task: asyncio.Task[None] | None = None
        self._stopping = asyncio.Event()

    def subscribe(self, table: str, handler: Handler) -> Callable[[], None]:
        """Register ``handler`` for ``table``; returns the unsubscribe callable."""
        self._handlers[table].append(handler)

        def unsubscribe() -> None:
            handlers = self._handlers.get(table, [])
            if handler in handlers:
                handlers.remove(handler)

        return unsubscribe

    def publish(self, event: ChangeEvent) -> None:
        """Enqueue an event without waiting.

        Raises:
            asyncio.QueueFull: If the consumer has fallen too far behind.
        """
        self._queue.put_nowait(event)

    def dispatch(self, event: ChangeEvent) -> None:
        """Deliver one event to its subscribers synchronously."""
        for handler in list(self._handlers.get(event.table, ())):
            try:
                handler(event)
            except (ValueError, TypeError, KeyError, AttributeError) as err:
                logger.error(
                    "Realtime handler %r rejected %s on %s: %s",
                    handler,
                    event.event_type.value,
                    event.table,
                    err,
                    exc_info=True,
                )

    async def start(self) -> None:
        """Start the background dispatch loop."""
        if self._task is None or self._task.done():
            self._stopping.clear()
            self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        """Drain queued events and stop the dispatch loop."""
        if self._task is None:
            return

        await self._queue.join()
        self._stopping.set()
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    async def drain(self) -> None:
        """Wait until every queued event has been dispatched."""
        await self._queue.join()

    async def _run(self) -> None:
        while not self._stopping.is_set():
            event = await self._queue.get()
            try:
                self.dispatch(event)
            except Exception:
                logger.exception(
                    "Realtime dispatch of %s on %s failed", event.event_type.value, event.table
                )
            finally:
                self._queue.task_done()
