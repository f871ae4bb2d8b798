from datetime import datetime, timezone

from src.chat.fragments import Fragment, Message
from src.chat.notifications import MemorySink, artifact_message, detect_artifacts


def _msg(message_id, *fragments, role="assistant"):
    return Message(
        id=message_id,
        role=role,
        content=tuple(fragments),
        timestamp=datetime(2026, 1, 1, tzinfo=timezone.utc),
    )


def test_detects_artifacts_in_last_assistant_message():
    messages = [
        _msg("m1", Fragment(type="mixing_complete", task_id="old", audio_id="a0")),
        _msg(
            "m2",
            Fragment(type="text", text="Done!"),
            Fragment(type="quantization_complete", task_id="q", audio_id="a1"),
        ),
    ]
    notifications = detect_artifacts(messages)
    assert len(notifications) == 1
    assert notifications[0].type == "quantization_complete"
    assert notifications[0].message == "Audio quantization completed"
    assert notifications[0].artifact_id == "a1"


def test_no_notifications_when_last_message_is_from_user():
    messages = [_msg("m1", Fragment(type="mixing_complete", task_id="m", audio_id="a"), role="user")]
    assert detect_artifacts(messages) == []
    assert detect_artifacts([]) == []


def test_lyrics_and_butcher_id_fallback():
    lyrics = Fragment(type="lyrics_writing", attributes={"songName": "Night Drive"})
    assert artifact_message(lyrics) == 'Lyrics for "Night Drive" are ready'
    rendering = Fragment(
        type="song_rendering_complete", task_id="t", attributes={"butcherId": "b-1"}
    )
    notification = detect_artifacts([_msg("m1", rendering)])[0]
    assert notification.artifact_id == "b-1"
    assert notification.to_dict() == {
        "type": "song_rendering_complete",
        "message": "Song rendering completed",
        "artifactId": "b-1",
    }


def test_memory_sink_drains_once():
    sink = MemorySink()
    for notification in detect_artifacts(
        [_msg("m1", Fragment(type="mixing_complete", task_id="m", audio_id="a"))]
    ):
        sink.notify(notification)
    assert len(sink.drain()) == 1
    assert sink.drain() == []
