from __future__ import annotations

"""Completion classification for correlated fragment groups."""

from enum import Enum
from typing import AbstractSet, Iterable, List, Mapping, Sequence

from src.chat.fragments import Fragment, FragmentType


class Completion(str, Enum):
    PENDING = "pending"
    DONE = "done"
    SUPPRESSED = "suppressed"


def is_done(group: Sequence[Fragment]) -> bool:
    # Every family emits one start and one complete; extra duplicates still count as done.
    return len(group) >= 2


def build_error_index(fragments: Iterable[Fragment]) -> frozenset[str]:
    """Collect the task ids referenced by `error` fragments."""
    return frozenset(
        fragment.task_id
        for fragment in fragments
        if fragment.type == FragmentType.ERROR.value and fragment.task_id is not None
    )


def is_suppressed(group: Sequence[Fragment], error_index: AbstractSet[str]) -> bool:
    """True when any member's task failed.

    Upload groups are keyed by request id, so membership is checked on each
    fragment's task id rather than on the group key.
    """
    return any(fragment.task_id in error_index for fragment in group if fragment.task_id)


def classify(group: Sequence[Fragment], error_index: AbstractSet[str]) -> Completion:
    if is_done(group):
        return Completion.DONE
    if is_suppressed(group, error_index):
        return Completion.SUPPRESSED
    return Completion.PENDING


def pending_fragments(
    groups: Mapping[str, Sequence[Fragment]], error_index: AbstractSet[str]
) -> List[Fragment]:
    """Return the still-running fragment of every pending group, in key order."""
    pending: List[Fragment] = []
    for group in groups.values():
        if not group or is_suppressed(group, error_index):
            continue
        if len(group) == 1:
            pending.append(group[-1])
    return pending
