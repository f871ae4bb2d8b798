from __future__ import annotations

"""Task error codes surfaced in `error` fragments."""

from typing import Any, Dict

NO_CHORDS_SNAPPED = "NoChordsSnapped"
UNSUPPORTED_TIME_SIGNATURE = "UnsupportedTimeSignature"
NO_BEATS_FOUND = "NoBeatsFound"
UNKNOWN = "Unknown"

KNOWN_ERROR_CODES = frozenset({NO_CHORDS_SNAPPED, UNSUPPORTED_TIME_SIGNATURE, NO_BEATS_FOUND})

_DESCRIPTIONS: Dict[str, str] = {
    NO_CHORDS_SNAPPED: "No chords could be matched to the recording.",
    UNSUPPORTED_TIME_SIGNATURE: "The recording uses a time signature that is not supported yet.",
    NO_BEATS_FOUND: "No beats were detected in the recording.",
    UNKNOWN: "Something went wrong while processing your audio.",
}


def normalize_error_code(code: Any) -> str:
    """Return `code` if it is a known error code, otherwise `Unknown`."""
    if isinstance(code, str) and code in KNOWN_ERROR_CODES:
        return code
    return UNKNOWN


def describe_error_code(code: Any) -> str:
    """Return user-facing text for an error code."""
    return _DESCRIPTIONS[normalize_error_code(code)]
