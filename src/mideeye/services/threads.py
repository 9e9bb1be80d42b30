"""Threaded answer trees built from flat parent-pointer lists.

Answers are fetched oldest first as a flat list where each row may point at a
parent answer. :func:`build_thread_tree` turns that list into a forest in
linear time without reordering siblings. Rows whose parent is missing from the
working set (deleted, or outside the page) are promoted to roots so their
content stays visible. Rows caught in a parent-pointer cycle are also roots.
"""
from __future__ import annotations

import bisect
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, field
from typing import Generic, Protocol, TypeVar

from mideeye.schemas.question import AnswerRecord
from mideeye.services.realtime import ChangeEvent, ChangeType

ANSWERS_TABLE = "answers"


class Threadable(Protocol):
    @property
    def id(self) -> str: ...

    @property
    def parent_id(self) -> str | None: ...


R = TypeVar("R", bound=Threadable)


@dataclass(eq=False)
class ThreadNode(Generic[R]):
    """Display wrapper; ``record`` is never modified."""

    record: R
    children: list[ThreadNode[R]] = field(default_factory=list)

    @property
    def id(self) -> str:
        return self.record.id

    def walk(self) -> Iterator[ThreadNode[R]]:
        """Yield this node and its descendants in display (pre-)order."""
        stack: list[ThreadNode[R]] = [self]
        while stack:
            node = stack.pop()
            yield node
            stack.extend(reversed(node.children))


def _cycle_members(parents: Mapping[str, str | None]) -> set[str]:
    """Return ids whose parent chain loops back onto itself.

    Each id is visited once across all walks, so this is O(n).
    """
    on_path, done = 1, 2
    state: dict[str, int] = {}
    cyclic: set[str] = set()

    for start in parents:
        if start in state:
            continue
        path: list[str] = []
        current: str | None = start
        while current is not None and current in parents and current not in state:
            state[current] = on_path
            path.append(current)
            current = parents[current]
        if current is not None and state.get(current) == on_path:
            cyclic.update(path[path.index(current):])
        for item in path:
            state[item] = done

    return cyclic


def build_thread_tree(records: Iterable[R]) -> list[ThreadNode[R]]:
    """Build a reply forest from records in arrival order.

    Roots and children both keep input order. Every input record appears in
    the output exactly once. When ids repeat, the first record owns the id and
    receives the children.
    """
    nodes = [ThreadNode(record) for record in records]

    index: dict[str, ThreadNode[R]] = {}
    for node in nodes:
        index.setdefault(node.id, node)

    cyclic = _cycle_members({key: node.record.parent_id for key, node in index.items()})

    roots: list[ThreadNode[R]] = []
    for node in nodes:
        parent_id = node.record.parent_id
        parent = index.get(parent_id) if parent_id is not None else None
        if parent is None or parent is node or node.id in cyclic:
            roots.append(node)
        else:
            parent.children.append(node)
    return roots


def reduce_answers(
    answers: tuple[AnswerRecord, ...], event: ChangeEvent
) -> tuple[AnswerRecord, ...]:
    """Return the answer list after applying one change event.

    ``answers`` must be ordered by ``created_at``; the result keeps that order.
    Inserts of an id already present are ignored (realtime echoes of our own
    writes).
    """
    if event.event_type is ChangeType.DELETE:
        removed_id = str(event.row["id"])
        return tuple(answer for answer in answers if answer.id != removed_id)

    record = AnswerRecord.model_validate(dict(event.row))
    position = next((i for i, answer in enumerate(answers) if answer.id == record.id), None)

    if position is not None:
        if event.event_type is ChangeType.INSERT:
            return answers
        return answers[:position] + (record,) + answers[position + 1:]

    insert_at = bisect.bisect_right(answers, record.created_at, key=lambda a: a.created_at)
    return answers[:insert_at] + (record,) + answers[insert_at:]


class ThreadView:
    """Answer thread of one question plus the reply drafts typed into it.

    Drafts and open reply boxes are keyed by answer id, so rebuilding the tree
    after a realtime event never loses text. Drafts for deleted answers are
    discarded.
    """

    def __init__(self, question_id: str, answers: Iterable[AnswerRecord] = ()) -> None:
        self.question_id = question_id
        self._answers: tuple[AnswerRecord, ...] = tuple(answers)
        self._tree: list[ThreadNode[AnswerRecord]] | None = None
        self.drafts: dict[str, str] = {}
        self.open_replies: set[str] = set()

    @property
    def answers(self) -> tuple[AnswerRecord, ...]:
        return self._answers

    @property
    def tree(self) -> list[ThreadNode[AnswerRecord]]:
        if self._tree is None:
            self._tree = build_thread_tree(self._answers)
        return self._tree

    def replace_all(self, answers: Iterable[AnswerRecord]) -> None:
        """Swap in a fresh fetch of the whole thread."""
        self._answers = tuple(answers)
        self._invalidate()

    def apply_event(self, event: ChangeEvent) -> None:
        """Realtime handler for the ``answers`` table."""
        if event.table != ANSWERS_TABLE:
            return
        if str(event.row.get("question_id")) != self.question_id:
            return
        self._answers = reduce_answers(self._answers, event)
        self._invalidate()

    def open_reply(self, answer_id: str) -> None:
        self.open_replies.add(answer_id)

    def close_reply(self, answer_id: str) -> None:
        self.open_replies.discard(answer_id)

    def set_draft(self, answer_id: str, text: str) -> None:
        self.drafts[answer_id] = text

    def take_draft(self, answer_id: str) -> str:
        """Pop the trimmed draft for submission and close its reply box."""
        self.close_reply(answer_id)
        return self.drafts.pop(answer_id, "").strip()

    def _invalidate(self) -> None:
        self._tree = None
        live = {answer.id for answer in self._answers}
        self.drafts = {key: text for key, text in self.drafts.items() if key in live}
        self.open_replies &= live
