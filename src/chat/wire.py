from __future__ import annotations

"""Conversion between chat API JSON payloads and fragment/message records."""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from src.chat.error_codes import normalize_error_code
from src.chat.fragments import (
    AUDIO_UPLOAD_REQUEST_ID,
    REFERENCE_CANDIDATES_ID,
    TASK_ID,
    Fragment,
    FragmentType,
    Message,
    ThreadSummary,
)

ROLES = frozenset({"user", "assistant"})

# Presentation-only fields the client may have attached; never parsed back.
_RENDER_FIELDS = frozenset({"done", "messageId", "threadId"})
_LIFTED_FIELDS = {
    "type": "type",
    TASK_ID: "task_id",
    AUDIO_UPLOAD_REQUEST_ID: "audio_upload_request_id",
    REFERENCE_CANDIDATES_ID: "reference_candidates_id",
    "audioId": "audio_id",
    "text": "text",
    "error": "error",
}


class WireFormatError(ValueError):
    """Raised when a chat API payload does not have the expected shape."""
    pass


@dataclass(frozen=True)
class PendingResult:
    status: str
    message: Optional[Message] = None


def _optional_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    return str(value)


def fragment_from_wire(payload: Any) -> Fragment:
    if not isinstance(payload, dict):
        raise WireFormatError(f"Fragment must be an object, got {type(payload).__name__}.")
    fragment_type = payload.get("type")
    if not isinstance(fragment_type, str) or not fragment_type:
        raise WireFormatError("Fragment is missing its type.")
    attributes = {
        key: value
        for key, value in payload.items()
        if key not in _LIFTED_FIELDS and key not in _RENDER_FIELDS
    }
    error = _optional_str(payload.get("error"))
    if fragment_type == FragmentType.ERROR.value:
        error = normalize_error_code(payload.get("error"))
    text = payload.get("text")
    return Fragment(
        type=fragment_type,
        task_id=_optional_str(payload.get(TASK_ID)),
        audio_upload_request_id=_optional_str(payload.get(AUDIO_UPLOAD_REQUEST_ID)),
        reference_candidates_id=_optional_str(payload.get(REFERENCE_CANDIDATES_ID)),
        audio_id=_optional_str(payload.get("audioId")),
        text=text if isinstance(text, str) else None,
        error=error,
        attributes=attributes,
    )


def fragment_to_wire(fragment: Fragment) -> Dict[str, Any]:
    payload: Dict[str, Any] = {"type": fragment.type}
    for wire_name, attr in _LIFTED_FIELDS.items():
        if wire_name == "type":
            continue
        value = getattr(fragment, attr)
        if value is not None:
            payload[wire_name] = value
    payload.update(fragment.attributes)
    return payload


def parse_timestamp(value: Any) -> datetime:
    """Parse ISO-8601 strings or epoch milliseconds into an aware datetime."""
    if value is None or value == "":
        return datetime.now(timezone.utc)
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, bool):
        raise WireFormatError(f"Invalid timestamp: {value!r}")
    elif isinstance(value, (int, float)):
        parsed = datetime.fromtimestamp(value / 1000.0, tz=timezone.utc)
    elif isinstance(value, str):
        cleaned = value.strip()
        if cleaned.endswith("Z"):
            cleaned = cleaned[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(cleaned)
        except ValueError as exc:
            raise WireFormatError(f"Invalid timestamp: {value!r}") from exc
    else:
        raise WireFormatError(f"Invalid timestamp: {value!r}")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def message_from_wire(payload: Any) -> Message:
    if not isinstance(payload, dict):
        raise WireFormatError(f"Message must be an object, got {type(payload).__name__}.")
    message_id = payload.get("id") or payload.get("_id")
    if message_id is None or message_id == "":
        raise WireFormatError("Message is missing its id.")
    role = payload.get("role")
    if role not in ROLES:
        raise WireFormatError(f"Unsupported message role: {role!r}")
    raw_content = payload.get("content", [])
    if isinstance(raw_content, dict):
        raw_content = [raw_content]
    if not isinstance(raw_content, list):
        raise WireFormatError("Message content must be a list of fragments.")
    return Message(
        id=str(message_id),
        role=role,
        content=tuple(fragment_from_wire(entry) for entry in raw_content),
        timestamp=parse_timestamp(payload.get("timestamp")),
    )


def message_to_wire(message: Message) -> Dict[str, Any]:
    return {
        "id": message.id,
        "role": message.role,
        "content": [fragment_to_wire(fragment) for fragment in message.content],
        "timestamp": message.timestamp.isoformat(),
    }


def messages_from_wire(payload: Any) -> List[Message]:
    if not isinstance(payload, list):
        raise WireFormatError("Expected a list of messages.")
    return [message_from_wire(entry) for entry in payload]


def pending_results_from_wire(payload: Any) -> List[PendingResult]:
    """Parse the pending-messages response; an empty list means nothing is pending."""
    if payload is None:
        return []
    if not isinstance(payload, list):
        raise WireFormatError("Pending messages response must be a list.")
    results: List[PendingResult] = []
    for entry in payload:
        if not isinstance(entry, dict):
            raise WireFormatError("Pending message entry must be an object.")
        raw_message = entry.get("message")
        results.append(
            PendingResult(
                status=str(entry.get("status", "")),
                message=message_from_wire(raw_message) if raw_message else None,
            )
        )
    return results


def thread_summaries_from_wire(payload: Any) -> List[ThreadSummary]:
    """Parse the `{threadId: details}` mapping returned by the thread listing."""
    if not isinstance(payload, dict):
        raise WireFormatError("Thread listing must be an object keyed by thread id.")
    summaries: List[ThreadSummary] = []
    for thread_id, details in payload.items():
        if not isinstance(details, dict):
            details = {}
        last_message_at = details.get("lastMessageAt")
        summaries.append(
            ThreadSummary(
                thread_id=str(thread_id),
                title=str(details.get("title") or ""),
                artist_id=_optional_str(details.get("artistId")),
                artist_name=_optional_str(details.get("artistName")),
                last_message_at=_parse_optional_timestamp(last_message_at),
            )
        )
    return summaries


def _parse_optional_timestamp(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    try:
        return parse_timestamp(value)
    except WireFormatError:
        # The listing endpoint has been seen returning locale-formatted dates.
        return None
