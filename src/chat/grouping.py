from __future__ import annotations

"""Group lifecycle fragments of one task family by correlation key."""

from typing import Dict, Iterable, List, Sequence

from src.chat.fragments import Family, Fragment, Message


def media_fragments(messages: Iterable[Message]) -> List[Fragment]:
    """Flatten message content in thread order, dropping text fragments."""
    return [
        fragment
        for message in messages
        for fragment in message.content
        if not fragment.is_text
    ]


def group_by_correlation(fragments: Sequence[Fragment], family: Family) -> Dict[str, List[Fragment]]:
    """Return `key -> fragments` for members of `family`.

    Keys appear in first-seen order and each group keeps arrival order.
    Members without a key are skipped.
    """
    groups: Dict[str, List[Fragment]] = {}
    for fragment in fragments:
        key = fragment.correlation_key(family)
        if key is None:
            continue
        groups.setdefault(key, []).append(fragment)
    return groups
