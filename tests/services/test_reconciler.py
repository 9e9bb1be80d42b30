"""Tests for the optimistic reconciler."""

import asyncio

import pytest

from mideeye.schemas.common import Err, Ok
from mideeye.schemas.relations import RelationKind
from mideeye.services.clients import LocalRelationClient
from mideeye.services.notifier import NotificationLevel
from mideeye.services.realtime import ChangeEvent, ChangeType
from mideeye.services.reconciler import (
    OptimisticReconciler,
    RelationSnapshot,
    ToggleStatus,
)
from mideeye.services.toggle import RemoteOperation

USER = "user-1"


@pytest.fixture
def client(mocker):
    client = mocker.AsyncMock(spec=LocalRelationClient)
    client.cast_relation.side_effect = lambda kind, owner, target, value: Ok(value)
    client.remove_relation.return_value = Ok(None)
    client.get_aggregate.return_value = Ok({})
    client.get_owner_relations.return_value = Ok({})
    return client


def _reconciler(kind, client, notifications, **kwargs):
    kwargs.setdefault("user_id", USER)
    return OptimisticReconciler(kind, client, notifier=notifications, **kwargs)


@pytest.mark.asyncio
async def test_upvote_then_repeat_removes_vote(client, notifications) -> None:
    reconciler = _reconciler(RelationKind.QUESTION_VOTE, client, notifications)
    reconciler.counts["q1"] = 7

    first = await reconciler.toggle("q1", 1)
    assert first.status is ToggleStatus.APPLIED
    assert first.state == RelationSnapshot(1, 8)
    client.cast_relation.assert_awaited_once_with(RelationKind.QUESTION_VOTE, USER, "q1", 1)

    second = await reconciler.toggle("q1", 1)
    assert second.status is ToggleStatus.APPLIED
    assert second.resolution.operation is RemoteOperation.DELETE
    assert second.state == RelationSnapshot(0, 7)
    client.remove_relation.assert_awaited_once_with(USER, "q1", RelationKind.QUESTION_VOTE)
    assert notifications.events == []


@pytest.mark.asyncio
async def test_direction_switch_moves_count_by_two(client, notifications) -> None:
    reconciler = _reconciler(RelationKind.ANSWER_VOTE, client, notifications)
    reconciler.values["a1"] = 1
    reconciler.counts["a1"] = 5

    outcome = await reconciler.toggle("a1", -1)

    assert outcome.resolution.operation is RemoteOperation.UPDATE
    assert outcome.state == RelationSnapshot(-1, 3)
    client.cast_relation.assert_awaited_once_with(RelationKind.ANSWER_VOTE, USER, "a1", -1)


@pytest.mark.asyncio
async def test_failed_follow_restores_snapshot(client, notifications) -> None:
    client.cast_relation.side_effect = None
    client.cast_relation.return_value = Err("permission denied")
    reconciler = _reconciler(RelationKind.FOLLOW, client, notifications)
    reconciler.counts["u2"] = 10

    outcome = await reconciler.toggle("u2")

    assert outcome.status is ToggleStatus.ROLLED_BACK
    assert outcome.error == "permission denied"
    assert reconciler.snapshot("u2") == RelationSnapshot(0, 10)
    assert [n.message for n in notifications.events] == [
        "Failed to update follow. Please try again."
    ]
    assert notifications.events[0].level is NotificationLevel.ERROR


@pytest.mark.parametrize("kind", list(RelationKind))
@pytest.mark.parametrize("failure", ["err", "raise", "timeout"])
@pytest.mark.asyncio
async def test_every_failure_mode_rolls_back(client, notifications, kind, failure) -> None:
    async def hang(*args):
        await asyncio.sleep(5)

    if failure == "err":
        client.cast_relation.side_effect = None
        client.cast_relation.return_value = Err("boom")
    elif failure == "raise":
        client.cast_relation.side_effect = RuntimeError("connection reset")
    else:
        client.cast_relation.side_effect = hang

    reconciler = _reconciler(kind, client, notifications, counted=True, timeout=0.01)
    reconciler.counts["t1"] = 3

    outcome = await reconciler.toggle("t1")

    assert outcome.status is ToggleStatus.ROLLED_BACK
    assert reconciler.snapshot("t1") == RelationSnapshot(0, 3)
    assert not reconciler.is_pending("t1")
    assert len(notifications.of_level(NotificationLevel.ERROR)) == 1


@pytest.mark.asyncio
async def test_failed_removal_restores_existing_relation(client, notifications) -> None:
    client.remove_relation.return_value = Err("offline")
    reconciler = _reconciler(RelationKind.SAVED_POST, client, notifications)
    reconciler.values["p1"] = 1

    outcome = await reconciler.toggle("p1")

    assert outcome.status is ToggleStatus.ROLLED_BACK
    assert reconciler.value_of("p1") == 1
    assert "p1" not in reconciler.counts


@pytest.mark.asyncio
async def test_anonymous_toggle_prompts_login(client, notifications) -> None:
    reconciler = _reconciler(RelationKind.SAVED_POST, client, notifications, user_id=None)

    outcome = await reconciler.toggle("p1")

    assert outcome.status is ToggleStatus.NOT_AUTHENTICATED
    assert [(n.level, n.message) for n in notifications.events] == [
        (NotificationLevel.INFO, "Please login to save posts")
    ]
    client.cast_relation.assert_not_awaited()


@pytest.mark.asyncio
async def test_binary_kind_rejects_other_values(client, notifications) -> None:
    reconciler = _reconciler(RelationKind.FOLLOW, client, notifications)
    with pytest.raises(ValueError):
        await reconciler.toggle("u2", -1)


@pytest.mark.asyncio
async def test_save_messages(client, notifications) -> None:
    reconciler = _reconciler(RelationKind.SAVED_POST, client, notifications)

    await reconciler.toggle("p1")
    await reconciler.toggle("p1")

    assert [n.message for n in notifications.of_level(NotificationLevel.SUCCESS)] == [
        "Post saved!",
        "Post removed from saved",
    ]
    assert reconciler.counts == {}


@pytest.mark.asyncio
async def test_same_target_is_busy_while_pending(client, notifications) -> None:
    release = asyncio.Event()

    async def slow_cast(kind, owner, target, value):
        if target == "q1":
            await release.wait()
        return Ok(value)

    client.cast_relation.side_effect = slow_cast
    reconciler = _reconciler(RelationKind.QUESTION_VOTE, client, notifications)

    pending = asyncio.create_task(reconciler.toggle("q1"))
    await asyncio.sleep(0)
    assert reconciler.is_pending("q1")

    busy = await reconciler.toggle("q1")
    assert busy.status is ToggleStatus.BUSY
    assert busy.state == RelationSnapshot(1, 1)

    other = await reconciler.toggle("q2")
    assert other.status is ToggleStatus.APPLIED

    release.set()
    first = await pending
    assert first.status is ToggleStatus.APPLIED
    assert client.cast_relation.await_count == 2
    assert reconciler.values == {"q1": 1, "q2": 1}


@pytest.mark.asyncio
async def test_cancelled_toggle_restores_state(client, notifications) -> None:
    async def hang(*args):
        await asyncio.sleep(5)

    client.cast_relation.side_effect = hang
    reconciler = _reconciler(RelationKind.QUESTION_VOTE, client, notifications)
    reconciler.counts["q1"] = 2

    task = asyncio.create_task(reconciler.toggle("q1"))
    await asyncio.sleep(0)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert reconciler.snapshot("q1") == RelationSnapshot(0, 2)
    assert not reconciler.is_pending("q1")


def _held_failure(client) -> asyncio.Event:
    """Hold the remote call until the returned event is set, then fail it."""
    release = asyncio.Event()

    async def failing_call(*args):
        await release.wait()
        return Err("rejected")

    client.cast_relation.side_effect = failing_call
    return release


@pytest.mark.asyncio
async def test_other_users_vote_while_pending_keeps_their_change(client, notifications) -> None:
    release = _held_failure(client)
    reconciler = _reconciler(RelationKind.QUESTION_VOTE, client, notifications)
    reconciler.counts["q1"] = 4

    task = asyncio.create_task(reconciler.toggle("q1"))
    await asyncio.sleep(0)
    reconciler.apply_event(
        ChangeEvent(
            "votes",
            ChangeType.INSERT,
            new={"user_id": "someone", "votable_id": "q1", "votable_type": "question", "value": 1},
        )
    )
    release.set()
    outcome = await task

    assert outcome.status is ToggleStatus.ROLLED_BACK
    assert reconciler.value_of("q1") == 0
    assert reconciler.count_of("q1") == 5
    assert len(notifications.of_level(NotificationLevel.ERROR)) == 1


@pytest.mark.asyncio
async def test_failed_direction_switch_reverses_only_own_delta(client, notifications) -> None:
    release = _held_failure(client)
    reconciler = _reconciler(RelationKind.ANSWER_VOTE, client, notifications)
    reconciler.values["a1"] = 1
    reconciler.counts["a1"] = 10

    task = asyncio.create_task(reconciler.toggle("a1", -1))
    await asyncio.sleep(0)
    reconciler.apply_event(
        ChangeEvent(
            "votes",
            ChangeType.DELETE,
            old={"user_id": "someone", "votable_id": "a1", "votable_type": "answer", "value": 1},
        )
    )
    release.set()
    await task

    assert reconciler.snapshot("a1") == RelationSnapshot(1, 9)


@pytest.mark.asyncio
async def test_auth_change_while_pending_restores_count(client, notifications) -> None:
    release = _held_failure(client)
    reconciler = _reconciler(RelationKind.FOLLOW, client, notifications)
    reconciler.counts["u2"] = 10

    task = asyncio.create_task(reconciler.toggle("u2"))
    await asyncio.sleep(0)
    reconciler.set_user("someone-else")
    release.set()
    outcome = await task

    assert outcome.status is ToggleStatus.ROLLED_BACK
    assert reconciler.count_of("u2") == 10
    assert reconciler.value_of("u2") == 0


@pytest.mark.asyncio
async def test_own_row_event_while_pending_is_kept(client, notifications) -> None:
    """The store reported our row while the call was pending; it wins over the failure."""
    release = _held_failure(client)
    reconciler = _reconciler(RelationKind.QUESTION_VOTE, client, notifications)
    reconciler.counts["q1"] = 4

    task = asyncio.create_task(reconciler.toggle("q1"))
    await asyncio.sleep(0)
    reconciler.apply_event(
        ChangeEvent(
            "votes",
            ChangeType.INSERT,
            new={"user_id": USER, "votable_id": "q1", "votable_type": "question", "value": 1},
        )
    )
    release.set()
    await task

    assert reconciler.snapshot("q1") == RelationSnapshot(1, 5)


@pytest.mark.asyncio
async def test_load_seeds_counts_and_values(client, notifications) -> None:
    client.get_aggregate.return_value = Ok({"q1": 4})
    client.get_owner_relations.return_value = Ok({"q1": -1})
    reconciler = _reconciler(RelationKind.QUESTION_VOTE, client, notifications)

    assert await reconciler.load(["q1", "q2", "q1"]) is True

    assert reconciler.snapshot("q1") == RelationSnapshot(-1, 4)
    assert reconciler.snapshot("q2") == RelationSnapshot(0, 0)
    client.get_aggregate.assert_awaited_once_with(RelationKind.QUESTION_VOTE, ["q1", "q2"])


@pytest.mark.asyncio
async def test_load_reports_partial_failure(client, notifications) -> None:
    client.get_aggregate.return_value = Err("down")
    client.get_owner_relations.return_value = Ok({"u2": 1})
    reconciler = _reconciler(RelationKind.FOLLOW, client, notifications)

    assert await reconciler.load(["u2"]) is False
    assert reconciler.snapshot("u2") == RelationSnapshot(1, None)


@pytest.mark.asyncio
async def test_anonymous_load_skips_owner_lookup(client, notifications) -> None:
    client.get_aggregate.return_value = Ok({"q1": 2})
    reconciler = _reconciler(RelationKind.QUESTION_VOTE, client, notifications, user_id=None)

    await reconciler.load(["q1"])

    client.get_owner_relations.assert_not_awaited()
    assert reconciler.count_of("q1") == 2


def test_set_user_drops_own_values(client, notifications) -> None:
    reconciler = _reconciler(RelationKind.QUESTION_VOTE, client, notifications)
    reconciler.values["q1"] = 1
    reconciler.counts["q1"] = 3

    reconciler.set_user("user-2")

    assert reconciler.values == {}
    assert reconciler.counts == {"q1": 3}


class TestApplyEvent:
    def _vote(self, owner: str, value: int, target: str = "q1") -> dict:
        return {"user_id": owner, "votable_id": target, "votable_type": "question", "value": value}

    def test_other_users_vote_changes_count_only(self, client, notifications) -> None:
        reconciler = _reconciler(RelationKind.QUESTION_VOTE, client, notifications)
        reconciler.counts["q1"] = 1

        reconciler.apply_event(ChangeEvent("votes", ChangeType.INSERT, new=self._vote("u9", 1)))
        reconciler.apply_event(
            ChangeEvent(
                "votes", ChangeType.UPDATE, new=self._vote("u9", -1), old=self._vote("u9", 1)
            )
        )

        assert reconciler.snapshot("q1") == RelationSnapshot(0, 0)

    def test_own_echo_is_not_double_counted(self, client, notifications) -> None:
        reconciler = _reconciler(RelationKind.QUESTION_VOTE, client, notifications)
        reconciler.values["q1"] = 1
        reconciler.counts["q1"] = 8

        reconciler.apply_event(ChangeEvent("votes", ChangeType.INSERT, new=self._vote(USER, 1)))

        assert reconciler.snapshot("q1") == RelationSnapshot(1, 8)

    def test_own_delete_elsewhere_clears_value(self, client, notifications) -> None:
        reconciler = _reconciler(RelationKind.QUESTION_VOTE, client, notifications)
        reconciler.values["q1"] = 1
        reconciler.counts["q1"] = 8

        reconciler.apply_event(ChangeEvent("votes", ChangeType.DELETE, old=self._vote(USER, 1)))

        assert reconciler.snapshot("q1") == RelationSnapshot(0, 7)

    def test_other_vote_kind_is_ignored(self, client, notifications) -> None:
        reconciler = _reconciler(RelationKind.QUESTION_VOTE, client, notifications)
        row = {"user_id": "u9", "votable_id": "a1", "votable_type": "answer", "value": 1}

        reconciler.apply_event(ChangeEvent("votes", ChangeType.INSERT, new=row))

        assert reconciler.counts == {}

    def test_follow_insert_from_other_user(self, client, notifications) -> None:
        reconciler = _reconciler(RelationKind.FOLLOW, client, notifications)
        row = {"follower_id": "u9", "following_id": "u2"}

        reconciler.apply_event(ChangeEvent("user_follows", ChangeType.INSERT, new=row))

        assert reconciler.snapshot("u2") == RelationSnapshot(0, 1)

    def test_malformed_row_raises(self, client, notifications) -> None:
        reconciler = _reconciler(RelationKind.FOLLOW, client, notifications)
        with pytest.raises(ValueError):
            reconciler.apply_event(
                ChangeEvent("user_follows", ChangeType.INSERT, new={"follower_id": "u9"})
            )
