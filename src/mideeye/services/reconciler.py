"""Optimistic local state for votes, follows and saves.

A reconciler owns two maps for one relation kind and one signed-in user:

- ``values``: the user's own relation per target (absent means ``0``);
- ``counts``: the aggregate per target, for count-bearing kinds.

:meth:`OptimisticReconciler.toggle` applies the resolved state to both maps
before the remote call, then restores the pre-action snapshot if the call
fails, raises, or times out. Each target has its own in-flight gate, so a
second click on the same target while a request is pending is rejected while
other targets stay independent.

Every write bumps a per-target version. A failed request whose target was not
written since the optimistic update restores the snapshot as is. If something
else did write it (another user's vote, an auth change) only the optimistic
delta is reversed, so those external changes stay applied. A realtime event
for the user's own row while the request is pending is the store's answer for
that row and is kept as is.
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from dataclasses import dataclass
from enum import Enum

from mideeye.core.settings import settings
from mideeye.schemas.relations import RelationEdge, RelationKind, parse_relation_row
from mideeye.services.clients import RelationClient
from mideeye.services.notifier import LoggingNotifier, Notification, NotificationLevel, Notifier
from mideeye.services.realtime import ChangeEvent, ChangeType
from mideeye.services.toggle import RemoteOperation, ToggleResolution, resolve_toggle

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RelationMessages:
    """User-facing copy for one relation kind."""

    login_prompt: str
    failure: str
    added: str | None = None
    removed: str | None = None


_VOTE_MESSAGES = RelationMessages(
    login_prompt="Please login to vote",
    failure="Failed to vote. Please try again.",
)

MESSAGES: dict[RelationKind, RelationMessages] = {
    RelationKind.QUESTION_VOTE: _VOTE_MESSAGES,
    RelationKind.ANSWER_VOTE: _VOTE_MESSAGES,
    RelationKind.FOLLOW: RelationMessages(
        login_prompt="Please login to follow users",
        failure="Failed to update follow. Please try again.",
    ),
    RelationKind.SAVED_POST: RelationMessages(
        login_prompt="Please login to save posts",
        failure="Failed to save post. Please try again.",
        added="Post saved!",
        removed="Post removed from saved",
    ),
}


class ToggleStatus(str, Enum):
    APPLIED = "applied"
    ROLLED_BACK = "rolled_back"
    BUSY = "busy"
    NOT_AUTHENTICATED = "not_authenticated"


@dataclass(frozen=True)
class RelationSnapshot:
    """Local state of one target; ``count`` is ``None`` when no count is cached."""

    value: int
    count: int | None


@dataclass(frozen=True)
class ToggleOutcome:
    status: ToggleStatus
    target_id: str
    state: RelationSnapshot
    resolution: ToggleResolution | None = None
    error: str | None = None


class OptimisticReconciler:
    """Optimistic toggle state for one relation kind.

    Args:
        kind: Relation family managed by this instance.
        client: Remote persistence used to confirm each toggle.
        user_id: Signed-in user, or ``None`` for anonymous visitors.
        notifier: Receives login prompts, failures and save confirmations.
        counted: Whether to maintain ``counts``. Defaults to ``True`` for
            votes and follows (follower counts), ``False`` for saves.
        timeout: Seconds before a pending call counts as failed.
    """

    def __init__(
        self,
        kind: RelationKind,
        client: RelationClient,
        *,
        user_id: str | None,
        notifier: Notifier | None = None,
        counted: bool | None = None,
        timeout: float | None = None,
    ) -> None:
        self.kind = kind
        self.client = client
        self.user_id = user_id
        self.notifier: Notifier = notifier or LoggingNotifier()
        self.counted = kind is not RelationKind.SAVED_POST if counted is None else counted
        self.timeout = settings.mutation_timeout_seconds if timeout is None else timeout
        self.messages = MESSAGES[kind]

        self.values: dict[str, int] = {}
        self.counts: dict[str, int] = {}
        self._in_flight: set[str] = set()
        self._versions: dict[str, int] = {}
        self._own_updates: set[str] = set()

    def value_of(self, target_id: str) -> int:
        return self.values.get(target_id, 0)

    def count_of(self, target_id: str) -> int:
        return self.counts.get(target_id, 0)

    def is_pending(self, target_id: str) -> bool:
        return target_id in self._in_flight

    def snapshot(self, target_id: str) -> RelationSnapshot:
        return RelationSnapshot(self.value_of(target_id), self.counts.get(target_id))

    def set_user(self, user_id: str | None) -> None:
        """Handle an auth-state change.

        The per-user ``values`` are dropped; aggregate counts stay valid.
        """
        if user_id == self.user_id:
            return
        self.user_id = user_id
        self.values.clear()
        for target_id in self._in_flight:
            self._bump(target_id)

    async def load(self, target_ids: Sequence[str]) -> bool:
        """Seed local maps from the store.

        Targets with a request in flight are left alone. Returns ``False`` if
        any batch fetch failed; whatever did load is still applied.
        """
        ids = list(dict.fromkeys(target_ids))
        if not ids:
            return True

        ok = True
        counts: dict[str, int] | None = None
        values: dict[str, int] | None = None

        if self.counted:
            result = await self.client.get_aggregate(self.kind, ids)
            if result.success:
                counts = result.data
            else:
                logger.warning("Loading %s counts failed: %s", self.kind.value, result.error)
                ok = False

        if self.user_id is not None:
            owner_result = await self.client.get_owner_relations(self.user_id, self.kind, ids)
            if owner_result.success:
                values = owner_result.data
            else:
                logger.warning(
                    "Loading %s relations for %s failed: %s",
                    self.kind.value,
                    self.user_id,
                    owner_result.error,
                )
                ok = False

        for target_id in ids:
            if target_id in self._in_flight:
                continue
            if counts is not None:
                self.counts[target_id] = counts.get(target_id, 0)
            if values is not None:
                self._set_value(target_id, values.get(target_id, 0))
            if counts is not None or values is not None:
                self._bump(target_id)
        return ok

    async def toggle(self, target_id: str, requested_value: int = 1) -> ToggleOutcome:
        """Apply a user action optimistically and confirm it remotely.

        Raises:
            ValueError: If ``requested_value`` is invalid for this kind.
        """
        owner_id = self.user_id
        if owner_id is None:
            self._emit(NotificationLevel.INFO, self.messages.login_prompt)
            return ToggleOutcome(
                ToggleStatus.NOT_AUTHENTICATED, target_id, self.snapshot(target_id)
            )

        if self.kind.binary and requested_value != 1:
            raise ValueError(f"{self.kind.value} toggles only accept the value 1")

        if target_id in self._in_flight:
            logger.debug("Ignoring %s toggle on %s: request pending", self.kind.value, target_id)
            return ToggleOutcome(ToggleStatus.BUSY, target_id, self.snapshot(target_id))

        self._own_updates.discard(target_id)
        before = self.snapshot(target_id)
        resolution = resolve_toggle(before.value, requested_value)

        self._set_value(target_id, resolution.next_value)
        if self.counted:
            self.counts[target_id] = resolution.apply_to_count(before.count or 0)
        version = self._bump(target_id)
        self._in_flight.add(target_id)

        try:
            error = await self._send(owner_id, target_id, resolution)
        except asyncio.CancelledError:
            self._restore(target_id, owner_id, before, resolution, version)
            raise
        finally:
            self._in_flight.discard(target_id)

        if error is None:
            message = (
                self.messages.added if resolution.next_value else self.messages.removed
            )
            self._own_updates.discard(target_id)
            if message:
                self._emit(NotificationLevel.SUCCESS, message)
            return ToggleOutcome(
                ToggleStatus.APPLIED, target_id, self.snapshot(target_id), resolution
            )

        self._restore(target_id, owner_id, before, resolution, version)
        self._emit(NotificationLevel.ERROR, self.messages.failure)
        return ToggleOutcome(
            ToggleStatus.ROLLED_BACK, target_id, self.snapshot(target_id), resolution, error
        )

    def apply_event(self, event: ChangeEvent) -> None:
        """Merge a realtime change for this kind's table into local state."""
        if event.table != self.kind.table:
            return

        new_edge = parse_relation_row(event.table, event.new) if event.new is not None else None
        old_edge = parse_relation_row(event.table, event.old) if event.old is not None else None
        edge: RelationEdge = new_edge or old_edge  # type: ignore[assignment]
        if edge.kind is not self.kind:
            return

        target_id = edge.target_id
        new_value = 0 if event.event_type is ChangeType.DELETE or new_edge is None else new_edge.value

        if self.user_id is not None and edge.owner_id == self.user_id:
            if target_id in self._in_flight:
                self._own_updates.add(target_id)
            local = self.value_of(target_id)
            if new_value == local:
                return
            delta = new_value - local
            self._set_value(target_id, new_value)
        else:
            if old_edge is not None:
                old_value = old_edge.value
            elif event.event_type is ChangeType.INSERT:
                old_value = 0
            else:
                logger.debug("Skipping %s update on %s without old row", event.table, target_id)
                return
            delta = new_value - old_value

        if self.counted and delta:
            self.counts[target_id] = self.count_of(target_id) + delta
        self._bump(target_id)

    async def _send(
        self, owner_id: str, target_id: str, resolution: ToggleResolution
    ) -> str | None:
        """Run the remote call; return an error string, or ``None`` on success."""
        try:
            if resolution.operation is RemoteOperation.DELETE:
                call = self.client.remove_relation(owner_id, target_id, self.kind)
            else:
                call = self.client.cast_relation(
                    self.kind, owner_id, target_id, resolution.next_value
                )
            result = await asyncio.wait_for(call, timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.warning(
                "%s %s on %s timed out after %.1fs",
                self.kind.value,
                resolution.operation.value,
                target_id,
                self.timeout,
            )
            return "timeout"
        except Exception as err:
            logger.warning(
                "%s %s on %s raised: %s",
                self.kind.value,
                resolution.operation.value,
                target_id,
                err,
                exc_info=True,
            )
            return str(err) or err.__class__.__name__

        if not result.success:
            logger.warning(
                "%s %s on %s failed: %s",
                self.kind.value,
                resolution.operation.value,
                target_id,
                result.error,
            )
            return result.error
        return None

    def _restore(
        self,
        target_id: str,
        owner_id: str,
        before: RelationSnapshot,
        resolution: ToggleResolution,
        version: int,
    ) -> None:
        if target_id in self._own_updates:
            self._own_updates.discard(target_id)
            logger.info(
                "%s on %s confirmed by the store while pending; keeping its state",
                self.kind.value,
                target_id,
            )
            return

        if self._versions.get(target_id) == version:
            self._set_value(target_id, before.value)
            if self.counted:
                if before.count is None:
                    self.counts.pop(target_id, None)
                else:
                    self.counts[target_id] = before.count
            self._bump(target_id)
            return

        # Values of a previous user were cleared by set_user and stay cleared.
        if self.user_id == owner_id:
            self._set_value(target_id, before.value)
        if self.counted and target_id in self.counts:
            self.counts[target_id] -= resolution.next_value - before.value
        self._bump(target_id)

    def _set_value(self, target_id: str, value: int) -> None:
        if value:
            self.values[target_id] = value
        else:
            self.values.pop(target_id, None)

    def _bump(self, target_id: str) -> int:
        version = self._versions.get(target_id, 0) + 1
        self._versions[target_id] = version
        return version

    def _emit(self, level: NotificationLevel, message: str) -> None:
        self.notifier.notify(Notification(level, message))
