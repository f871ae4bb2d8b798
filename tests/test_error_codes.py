from src.chat.error_codes import (
    NO_BEATS_FOUND,
    UNKNOWN,
    describe_error_code,
    normalize_error_code,
)


def test_known_codes_are_preserved():
    for code in ("NoChordsSnapped", "UnsupportedTimeSignature", "NoBeatsFound"):
        assert normalize_error_code(code) == code


def test_unknown_codes_collapse_to_unknown():
    assert normalize_error_code("SomeUnlistedCode") == UNKNOWN
    assert normalize_error_code("") == UNKNOWN
    assert normalize_error_code(None) == UNKNOWN
    assert normalize_error_code(42) == UNKNOWN


def test_describe_error_code_falls_back_to_unknown_text():
    assert describe_error_code(NO_BEATS_FOUND) == "No beats were detected in the recording."
    assert describe_error_code("Nope") == describe_error_code(UNKNOWN)
