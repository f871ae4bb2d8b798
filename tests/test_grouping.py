from datetime import datetime, timezone

from src.chat.fragments import Family, Fragment, Message
from src.chat.grouping import group_by_correlation, media_fragments


def _msg(message_id, *fragments, role="assistant"):
    return Message(
        id=message_id,
        role=role,
        content=tuple(fragments),
        timestamp=datetime(2026, 1, 1, tzinfo=timezone.utc),
    )


def test_media_fragments_drops_text_and_keeps_thread_order():
    start = Fragment(type="song_rendering_start", task_id="t1")
    complete = Fragment(type="song_rendering_complete", task_id="t1")
    messages = [
        _msg("m1", Fragment(type="text", text="hi"), start),
        _msg("m2", complete, Fragment(type="text", text="done")),
    ]
    assert media_fragments(messages) == [start, complete]


def test_group_by_correlation_keeps_first_seen_key_order():
    fragments = [
        Fragment(type="mixing_start", task_id="b"),
        Fragment(type="mixing_start", task_id="a"),
        Fragment(type="mixing_complete", task_id="b"),
    ]
    groups = group_by_correlation(fragments, Family.MIXINGS)
    assert list(groups) == ["b", "a"]
    assert [fragment.type for fragment in groups["b"]] == ["mixing_start", "mixing_complete"]


def test_group_by_correlation_is_deterministic():
    fragments = [
        Fragment(type="quantization_start", task_id="q1"),
        Fragment(type="quantization_complete", task_id="q1"),
        Fragment(type="quantization_start", task_id="q2"),
    ]
    assert group_by_correlation(fragments, Family.QUANTIZATIONS) == group_by_correlation(
        fragments, Family.QUANTIZATIONS
    )


def test_families_do_not_mix_even_with_shared_task_id():
    fragments = [
        Fragment(type="mixing_start", task_id="shared"),
        Fragment(type="stem_separation_start", task_id="shared"),
    ]
    mixings = group_by_correlation(fragments, Family.MIXINGS)
    stems = group_by_correlation(fragments, Family.STEM_SEPARATIONS)
    assert [f.type for f in mixings["shared"]] == ["mixing_start"]
    assert [f.type for f in stems["shared"]] == ["stem_separation_start"]


def test_uploads_group_by_request_id_not_task_id():
    fragments = [
        Fragment(type="audio_upload_request", audio_upload_request_id="r1"),
        Fragment(type="audio_upload_start", audio_upload_request_id="r1", task_id="t9"),
        Fragment(type="audio_upload_complete", audio_upload_request_id="r1", task_id="t9"),
    ]
    groups = group_by_correlation(fragments, Family.UPLOADS)
    assert list(groups) == ["r1"]
    assert len(groups["r1"]) == 3


def test_references_group_by_candidates_id():
    fragments = [
        Fragment(type="reference_candidates", reference_candidates_id="c1"),
        Fragment(type="reference_selection", reference_candidates_id="c1"),
    ]
    groups = group_by_correlation(fragments, Family.REFERENCES)
    assert len(groups["c1"]) == 2


def test_members_without_a_key_are_skipped():
    fragments = [
        Fragment(type="song_rendering_start"),
        Fragment(type="song_rendering_start", task_id="t1"),
    ]
    groups = group_by_correlation(fragments, Family.SONG_RENDERINGS)
    assert list(groups) == ["t1"]


def test_uncorrelated_types_never_group():
    fragments = [
        Fragment(type="error", task_id="t1", error="Unknown"),
        Fragment(type="lyrics_writing", task_id="t1"),
        Fragment(type="some_future_type", task_id="t1"),
    ]
    for family in Family:
        assert group_by_correlation(fragments, family) == {}
