"""
Chat fragment correlation engine

Pure functions and records that turn a thread's ordered messages into
grouped task lifecycles, completion flags and render segments.
"""

from src.chat.classifier import Completion, build_error_index, classify, is_done, pending_fragments
from src.chat.error_codes import KNOWN_ERROR_CODES, normalize_error_code
from src.chat.fragments import Family, Fragment, FragmentType, Message, ThreadSummary
from src.chat.grouping import group_by_correlation, media_fragments
from src.chat.notifications import ArtifactNotification, detect_artifacts
from src.chat.projector import (
    ChatState,
    ChatStateProjector,
    active_upload_request,
    annotate_messages,
    project,
)
from src.chat.segmenter import Segment, segment_message

__all__ = [
    # Model
    "Family",
    "Fragment",
    "FragmentType",
    "Message",
    "ThreadSummary",
    # Grouping and classification
    "media_fragments",
    "group_by_correlation",
    "Completion",
    "build_error_index",
    "classify",
    "is_done",
    "pending_fragments",
    "KNOWN_ERROR_CODES",
    "normalize_error_code",
    # Projection
    "ChatState",
    "ChatStateProjector",
    "project",
    "annotate_messages",
    "active_upload_request",
    # Presentation boundary
    "Segment",
    "segment_message",
    "ArtifactNotification",
    "detect_artifacts",
]
