from src.chat.classifier import (
    Completion,
    build_error_index,
    classify,
    is_done,
    is_suppressed,
    pending_fragments,
)
from src.chat.fragments import Fragment


def _start(task_id):
    return Fragment(type="song_rendering_start", task_id=task_id)


def _complete(task_id):
    return Fragment(type="song_rendering_complete", task_id=task_id)


def test_is_done_by_group_size():
    assert is_done([_start("t1")]) is False
    assert is_done([_start("t1"), _complete("t1")]) is True
    # Duplicate deliveries still read as done.
    assert is_done([_start("t1"), _complete("t1"), _complete("t1")]) is True


def test_error_index_collects_error_task_ids_only():
    fragments = [
        Fragment(type="error", task_id="t1", error="NoBeatsFound"),
        Fragment(type="error", error="Unknown"),
        _start("t2"),
    ]
    assert build_error_index(fragments) == frozenset({"t1"})


def test_errored_single_start_is_suppressed_not_pending():
    groups = {"t1": [_start("t1")], "t2": [_start("t2")]}
    error_index = build_error_index([Fragment(type="error", task_id="t1", error="Unknown")])
    assert classify(groups["t1"], error_index) is Completion.SUPPRESSED
    assert classify(groups["t2"], error_index) is Completion.PENDING
    assert pending_fragments(groups, error_index) == [groups["t2"][0]]


def test_done_wins_over_suppression():
    group = [_start("t1"), _complete("t1")]
    assert classify(group, frozenset({"t1"})) is Completion.DONE


def test_upload_suppressed_through_member_task_id():
    group = [
        Fragment(type="audio_upload_request", audio_upload_request_id="r1"),
    ]
    assert is_suppressed(group, frozenset({"t5"})) is False
    group = [
        Fragment(type="audio_upload_start", audio_upload_request_id="r1", task_id="t5"),
    ]
    assert is_suppressed(group, frozenset({"t5"})) is True
    assert pending_fragments({"r1": group}, frozenset({"t5"})) == []


def test_pending_excludes_done_groups_and_keeps_key_order():
    groups = {
        "b": [_start("b")],
        "a": [_start("a"), _complete("a")],
        "c": [_start("c")],
    }
    pending = pending_fragments(groups, frozenset())
    assert [fragment.task_id for fragment in pending] == ["b", "c"]
