from __future__ import annotations

"""Split annotated message content into status and content presentation units."""

from dataclasses import dataclass
from typing import Any, Dict, List, Tuple

from src.chat.fragments import FragmentType
from src.chat.projector import AnnotatedFragment, AnnotatedMessage

STATUS_FRAGMENT_TYPES = frozenset(
    {
        FragmentType.AUDIO_UPLOAD_START.value,
        FragmentType.AUDIO_UPLOAD_COMPLETE.value,
        FragmentType.REFERENCE_SELECTION.value,
        FragmentType.SONG_RENDERING_START.value,
        FragmentType.QUANTIZATION_START.value,
        FragmentType.MIXING_START.value,
        FragmentType.STEM_SEPARATION_START.value,
        FragmentType.SONG_COMPOSITION_START.value,
        FragmentType.ERROR.value,
        FragmentType.AUDIO_ANALYSIS_START.value,
    }
)

CONTENT = "content"
STATUS = "status"


@dataclass(frozen=True)
class Segment:
    kind: str
    role: str
    fragments: Tuple[AnnotatedFragment, ...]
    is_loading: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "role": self.role,
            "is_loading": self.is_loading,
            "fragments": [fragment.to_dict() for fragment in self.fragments],
        }


def segment_message(message: AnnotatedMessage) -> List[Segment]:
    segments: List[Segment] = []
    bubble: List[AnnotatedFragment] = []
    for fragment in message.fragments:
        if fragment.type not in STATUS_FRAGMENT_TYPES:
            bubble.append(fragment)
            continue
        if bubble:
            segments.append(Segment(kind=CONTENT, role=message.role, fragments=tuple(bubble)))
            bubble = []
        segments.append(
            Segment(
                kind=STATUS,
                role=message.role,
                fragments=(fragment,),
                is_loading=fragment.is_loading,
            )
        )
    if bubble:
        segments.append(Segment(kind=CONTENT, role=message.role, fragments=tuple(bubble)))
    return segments
