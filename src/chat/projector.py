from __future__ import annotations

"""Project a thread's messages into a read-only chat state snapshot.

The projection is a pure function of the ordered message list: every call
regroups all fragments from scratch, derives the error index and the pending
enumeration per family, and returns frozen records. Nothing here mutates the
messages it is given.
"""

from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from src.chat.classifier import Completion, build_error_index, classify, is_done, pending_fragments
from src.chat.error_codes import describe_error_code
from src.chat.fragments import Family, Fragment, FragmentType, Message
from src.chat.grouping import group_by_correlation, media_fragments
from src.chat.wire import fragment_to_wire

# Completion events the client relays on the user's behalf; they render as the assistant's.
RELAYED_COMPLETE_TYPES = frozenset(
    {
        FragmentType.SONG_RENDERING_COMPLETE.value,
        FragmentType.STEM_SEPARATION_COMPLETE.value,
        FragmentType.QUANTIZATION_COMPLETE.value,
        FragmentType.MIXING_COMPLETE.value,
        FragmentType.SONG_COMPOSITION_COMPLETE.value,
    }
)


@dataclass(frozen=True)
class FamilyState:
    family: Family
    groups: Mapping[str, Tuple[Fragment, ...]]
    pending: Tuple[Fragment, ...]

    def is_done(self, key: str) -> bool:
        group = self.groups.get(key)
        return bool(group) and is_done(group)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "groups": {
                key: [fragment_to_wire(fragment) for fragment in group]
                for key, group in self.groups.items()
            },
            "pending": [fragment_to_wire(fragment) for fragment in self.pending],
        }


@dataclass(frozen=True)
class ChatState:
    families: Mapping[Family, FamilyState]
    error_task_ids: frozenset

    def family(self, family: Family) -> FamilyState:
        return self.families[family]

    def _group_of(self, fragment: Fragment) -> Optional[Tuple[Fragment, ...]]:
        family = fragment.family
        if family is None:
            return None
        key = fragment.correlation_key(family)
        if key is None:
            return None
        return self.families[family].groups.get(key) or None

    def done_for(self, fragment: Fragment) -> Optional[bool]:
        """Return the derived `done` flag, or None for ungrouped fragments."""
        group = self._group_of(fragment)
        return None if group is None else is_done(group)

    def completion_for(self, fragment: Fragment) -> Optional[Completion]:
        """Return pending/done/suppressed for the fragment's group, or None if ungrouped."""
        group = self._group_of(fragment)
        return None if group is None else classify(group, self.error_task_ids)

    @property
    def pending(self) -> Tuple[Fragment, ...]:
        return tuple(
            fragment for state in self.families.values() for fragment in state.pending
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "families": {
                family.label: state.to_dict() for family, state in self.families.items()
            },
            "error_task_ids": sorted(self.error_task_ids),
        }


def project(messages: Sequence[Message]) -> ChatState:
    fragments = media_fragments(messages)
    error_index = build_error_index(fragments)
    families: Dict[Family, FamilyState] = {}
    for family in Family:
        groups = group_by_correlation(fragments, family)
        families[family] = FamilyState(
            family=family,
            groups=MappingProxyType({key: tuple(group) for key, group in groups.items()}),
            pending=tuple(pending_fragments(groups, error_index)),
        )
    return ChatState(families=MappingProxyType(families), error_task_ids=error_index)


class ChatStateProjector:
    """Memoize `project` on the identity of the last message sequence.

    Stores hand out immutable tuples, so an identical object means identical
    content. A miss simply recomputes.
    """
    def __init__(self) -> None:
        self._last_messages: Optional[Sequence[Message]] = None
        self._last_state: Optional[ChatState] = None

    def project(self, messages: Sequence[Message]) -> ChatState:
        if self._last_state is not None and messages is self._last_messages:
            return self._last_state
        state = project(messages)
        self._last_messages = messages
        self._last_state = state
        return state


@dataclass(frozen=True)
class AnnotatedFragment:
    fragment: Fragment
    done: Optional[bool]
    message_id: str
    thread_id: str
    completion: Optional[Completion] = None

    @property
    def type(self) -> str:
        return self.fragment.type

    @property
    def is_loading(self) -> bool:
        # Failed tasks stop loading even though they never completed.
        return self.completion is Completion.PENDING

    def to_dict(self) -> Dict[str, Any]:
        payload = fragment_to_wire(self.fragment)
        payload["messageId"] = self.message_id
        payload["threadId"] = self.thread_id
        if self.done is not None:
            payload["done"] = self.done
        if self.completion is not None:
            payload["completion"] = self.completion.value
        if self.fragment.type == FragmentType.ERROR.value:
            payload["errorMessage"] = describe_error_code(self.fragment.error)
        return payload


@dataclass(frozen=True)
class AnnotatedMessage:
    message: Message
    role: str
    fragments: Tuple[AnnotatedFragment, ...]


def _carries_relayed_complete(message: Message) -> bool:
    return any(fragment.type in RELAYED_COMPLETE_TYPES for fragment in message.content)


def annotate_messages(
    messages: Sequence[Message], state: ChatState, thread_id: str
) -> List[AnnotatedMessage]:
    """Attach derived `done` flags and ids to each fragment for rendering.

    User messages that only relay a task completion are hidden, and any other
    message carrying one is shown as the assistant's.
    """
    annotated: List[AnnotatedMessage] = []
    for message in messages:
        relayed = _carries_relayed_complete(message)
        if relayed and message.role == "user":
            continue
        annotated.append(
            AnnotatedMessage(
                message=message,
                role="assistant" if relayed else message.role,
                fragments=tuple(
                    AnnotatedFragment(
                        fragment=fragment,
                        done=state.done_for(fragment),
                        message_id=message.id,
                        thread_id=thread_id,
                        completion=state.completion_for(fragment),
                    )
                    for fragment in message.content
                ),
            )
        )
    return annotated


def active_upload_request(messages: Sequence[Message]) -> Optional[Fragment]:
    """Return the latest upload request that has no matching upload completion."""
    fragments = [fragment for message in messages for fragment in message.content]
    completed = {
        fragment.audio_upload_request_id
        for fragment in fragments
        if fragment.type == FragmentType.AUDIO_UPLOAD_COMPLETE.value
        and fragment.audio_upload_request_id is not None
    }
    for fragment in reversed(fragments):
        if fragment.type != FragmentType.AUDIO_UPLOAD_REQUEST.value:
            continue
        if fragment.audio_upload_request_id not in completed:
            return fragment
    return None
