from __future__ import annotations

"""Detect newly delivered artifacts in the latest assistant message."""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol, Sequence
import logging

from src.chat.fragments import Fragment, FragmentType, Message

ARTIFACT_FRAGMENT_TYPES = (
    FragmentType.AUDIO_UPLOAD_COMPLETE.value,
    FragmentType.QUANTIZATION_COMPLETE.value,
    FragmentType.MIXING_COMPLETE.value,
    FragmentType.STEM_SEPARATION_COMPLETE.value,
    FragmentType.SONG_RENDERING_COMPLETE.value,
    FragmentType.SONG_COMPOSITION_COMPLETE.value,
    FragmentType.LYRICS_WRITING.value,
)

_ARTIFACT_MESSAGES = {
    FragmentType.AUDIO_UPLOAD_COMPLETE.value: "Audio upload completed",
    FragmentType.QUANTIZATION_COMPLETE.value: "Audio quantization completed",
    FragmentType.MIXING_COMPLETE.value: "Audio mixing completed",
    FragmentType.STEM_SEPARATION_COMPLETE.value: "Stem separation completed",
    FragmentType.SONG_RENDERING_COMPLETE.value: "Song rendering completed",
    FragmentType.SONG_COMPOSITION_COMPLETE.value: "Song composition completed",
}


@dataclass(frozen=True)
class ArtifactNotification:
    type: str
    message: str
    artifact_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"type": self.type, "message": self.message}
        if self.artifact_id is not None:
            payload["artifactId"] = self.artifact_id
        return payload


class NotificationSink(Protocol):
    """Receiver for artifact notifications (desktop shell, browser, ...)."""
    def notify(self, notification: ArtifactNotification) -> None:
        raise NotImplementedError


class LoggingSink:
    """Sink that records notifications in the log only."""
    def __init__(self, logger: Optional[logging.Logger] = None) -> None:
        self._logger = logger or logging.getLogger(__name__)

    def notify(self, notification: ArtifactNotification) -> None:
        self._logger.info(
            "artifact_ready type=%s artifact_id=%s",
            notification.type,
            notification.artifact_id,
        )


class MemorySink:
    """Sink that buffers notifications until drained."""
    def __init__(self) -> None:
        self._pending: List[ArtifactNotification] = []

    def notify(self, notification: ArtifactNotification) -> None:
        self._pending.append(notification)

    def drain(self) -> List[ArtifactNotification]:
        drained, self._pending = self._pending, []
        return drained


def artifact_message(fragment: Fragment) -> str:
    if fragment.type == FragmentType.LYRICS_WRITING.value:
        return f'Lyrics for "{fragment.get("songName", "")}" are ready'
    return _ARTIFACT_MESSAGES.get(fragment.type, "New artifact generated")


def _artifact_id(fragment: Fragment) -> Optional[str]:
    if fragment.audio_id is not None:
        return fragment.audio_id
    butcher_id = fragment.get("butcherId")
    return str(butcher_id) if butcher_id is not None else None


def detect_artifacts(messages: Sequence[Message]) -> List[ArtifactNotification]:
    """Return notifications for artifact fragments in the last message, if it is the assistant's."""
    if not messages:
        return []
    last = messages[-1]
    if last.role != "assistant":
        return []
    return [
        ArtifactNotification(
            type=fragment.type,
            message=artifact_message(fragment),
            artifact_id=_artifact_id(fragment),
        )
        for fragment in last.content
        if fragment.type in ARTIFACT_FRAGMENT_TYPES
    ]
