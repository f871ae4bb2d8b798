from __future__ import annotations

"""Fragment, message and task-family data shapes for chat threads."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Tuple


class FragmentType(str, Enum):
    """Every fragment `type` tag the chat service emits."""
    TEXT = "text"
    ERROR = "error"
    AUDIO_UPLOAD_REQUEST = "audio_upload_request"
    AUDIO_UPLOAD_START = "audio_upload_start"
    AUDIO_UPLOAD_COMPLETE = "audio_upload_complete"
    AUDIO_ANALYSIS_START = "audio_analysis_start"
    AUDIO_ANALYSIS_COMPLETE = "audio_analysis_complete"
    REFERENCE_CANDIDATES = "reference_candidates"
    REFERENCE_SELECTION = "reference_selection"
    SONG_RENDERING_START = "song_rendering_start"
    SONG_RENDERING_COMPLETE = "song_rendering_complete"
    QUANTIZATION_START = "quantization_start"
    QUANTIZATION_COMPLETE = "quantization_complete"
    MIXING_START = "mixing_start"
    MIXING_COMPLETE = "mixing_complete"
    STEM_SEPARATION_START = "stem_separation_start"
    STEM_SEPARATION_COMPLETE = "stem_separation_complete"
    SONG_COMPOSITION_START = "song_composition_start"
    SONG_COMPOSITION_COMPLETE = "song_composition_complete"
    LYRICS_WRITING = "lyrics_writing"
    MUSICAL_MATCHES = "musical_matches"


# Wire names of the correlation keys.
TASK_ID = "taskId"
AUDIO_UPLOAD_REQUEST_ID = "audioUploadRequestId"
REFERENCE_CANDIDATES_ID = "referenceCandidatesId"


class Family(Enum):
    """Task kinds whose fragments are correlated into lifecycle groups."""
    UPLOADS = ("uploads", AUDIO_UPLOAD_REQUEST_ID)
    SONG_RENDERINGS = ("song_renderings", TASK_ID)
    REFERENCES = ("references", REFERENCE_CANDIDATES_ID)
    QUANTIZATIONS = ("quantizations", TASK_ID)
    MIXINGS = ("mixings", TASK_ID)
    STEM_SEPARATIONS = ("stem_separations", TASK_ID)
    SONG_COMPOSITIONS = ("song_compositions", TASK_ID)
    ANALYSES = ("analyses", TASK_ID)

    def __init__(self, label: str, key_field: str) -> None:
        self.label = label
        self.key_field = key_field


FAMILY_BY_TYPE: Dict[FragmentType, Family] = {
    FragmentType.AUDIO_UPLOAD_REQUEST: Family.UPLOADS,
    FragmentType.AUDIO_UPLOAD_START: Family.UPLOADS,
    FragmentType.AUDIO_UPLOAD_COMPLETE: Family.UPLOADS,
    FragmentType.SONG_RENDERING_START: Family.SONG_RENDERINGS,
    FragmentType.SONG_RENDERING_COMPLETE: Family.SONG_RENDERINGS,
    FragmentType.REFERENCE_CANDIDATES: Family.REFERENCES,
    FragmentType.REFERENCE_SELECTION: Family.REFERENCES,
    FragmentType.QUANTIZATION_START: Family.QUANTIZATIONS,
    FragmentType.QUANTIZATION_COMPLETE: Family.QUANTIZATIONS,
    FragmentType.MIXING_START: Family.MIXINGS,
    FragmentType.MIXING_COMPLETE: Family.MIXINGS,
    FragmentType.STEM_SEPARATION_START: Family.STEM_SEPARATIONS,
    FragmentType.STEM_SEPARATION_COMPLETE: Family.STEM_SEPARATIONS,
    FragmentType.SONG_COMPOSITION_START: Family.SONG_COMPOSITIONS,
    FragmentType.SONG_COMPOSITION_COMPLETE: Family.SONG_COMPOSITIONS,
    FragmentType.AUDIO_ANALYSIS_START: Family.ANALYSES,
    FragmentType.AUDIO_ANALYSIS_COMPLETE: Family.ANALYSES,
}

_TYPE_BY_VALUE = {member.value: member for member in FragmentType}


def family_of(fragment_type: str) -> Optional[Family]:
    """Return the family a type tag belongs to, or None."""
    known = _TYPE_BY_VALUE.get(fragment_type)
    if known is None:
        return None
    return FAMILY_BY_TYPE.get(known)


@dataclass(frozen=True)
class Fragment:
    """One immutable unit of message content.

    The `type` tag is kept as the raw string so unknown server types survive a
    round trip. Correlation keys and the common payload fields are lifted into
    attributes; every other wire field stays in the read-only `attributes`.
    There is no `done` field: completion is derived by the classifier. The hash
    covers the lifted fields only, so equal fragments still hash equal.
    """
    type: str
    task_id: Optional[str] = None
    audio_upload_request_id: Optional[str] = None
    reference_candidates_id: Optional[str] = None
    audio_id: Optional[str] = None
    text: Optional[str] = None
    error: Optional[str] = None
    attributes: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "attributes", MappingProxyType(dict(self.attributes)))

    def __hash__(self) -> int:
        return hash(
            (
                self.type,
                self.task_id,
                self.audio_upload_request_id,
                self.reference_candidates_id,
                self.audio_id,
                self.text,
                self.error,
            )
        )

    @property
    def family(self) -> Optional[Family]:
        return family_of(self.type)

    @property
    def is_text(self) -> bool:
        return self.type == FragmentType.TEXT.value

    def correlation_key(self, family: Family) -> Optional[str]:
        """Return this fragment's key within `family`, or None if not a member."""
        if self.family is not family:
            return None
        if family.key_field == AUDIO_UPLOAD_REQUEST_ID:
            return self.audio_upload_request_id
        if family.key_field == REFERENCE_CANDIDATES_ID:
            return self.reference_candidates_id
        return self.task_id

    def get(self, name: str, default: Any = None) -> Any:
        return self.attributes.get(name, default)


@dataclass(frozen=True)
class Message:
    id: str
    role: str
    content: Tuple[Fragment, ...]
    timestamp: datetime
    is_local: bool = False


@dataclass(frozen=True)
class ThreadSummary:
    thread_id: str
    title: str = ""
    artist_id: Optional[str] = None
    artist_name: Optional[str] = None
    last_message_at: Optional[datetime] = None
