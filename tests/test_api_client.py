import asyncio
import json
from pathlib import Path

import httpx
import pytest

from src.chat.fragments import Fragment
from src.chat.wire import WireFormatError
from src.client.api_client import ChatApiError, HttpChatApi
from src.client.config import Settings


def _settings(token="secret"):
    return Settings(
        project_root=Path("."),
        api_base_url="http://chat.test",
        api_token=token,
        api_timeout_seconds=5.0,
        poll_interval_seconds=2.0,
        poll_max_iterations=10,
        bridge_debug=False,
        bridge_host="127.0.0.1",
        bridge_port=8765,
        app_env="test",
    )


def _api(handler):
    client = httpx.AsyncClient(base_url="http://chat.test", transport=httpx.MockTransport(handler))
    return HttpChatApi(_settings(), client=client), client


def _call(handler, method_name, *args, **kwargs):
    async def _run():
        api, client = _api(handler)
        try:
            return await getattr(api, method_name)(*args, **kwargs)
        finally:
            await client.aclose()

    return asyncio.run(_run())


def test_list_messages_parses_history():
    seen = {}

    def handler(request):
        seen["path"] = request.url.path
        return httpx.Response(
            200,
            json={
                "messages": [
                    {"_id": "m1", "role": "user", "content": [{"type": "text", "text": "hi"}]},
                    {"id": "m2", "role": "assistant", "content": [{"type": "mixing_start", "taskId": "x"}]},
                ]
            },
        )

    messages = _call(handler, "list_messages", "thread-1")
    assert seen["path"] == "/api/v1/chat/thread-1/messages"
    assert [message.id for message in messages] == ["m1", "m2"]
    assert messages[1].content[0].task_id == "x"


def test_send_message_posts_fragment_as_content():
    seen = {}

    def handler(request):
        seen["method"] = request.method
        seen["body"] = json.loads(request.content)
        return httpx.Response(
            200,
            json={"message": {"id": "r1", "role": "assistant", "content": [{"type": "text", "text": "ok"}]}},
        )

    reply = _call(
        handler,
        "send_message",
        "thread-1",
        Fragment(type="error", task_id="t1", error="Unknown"),
    )
    assert seen["method"] == "POST"
    assert seen["body"] == {"content": {"type": "error", "taskId": "t1", "error": "Unknown"}}
    assert reply.id == "r1"


def test_send_message_without_message_is_invalid():
    def handler(request):
        return httpx.Response(200, json={})

    with pytest.raises(WireFormatError):
        _call(handler, "send_message", "thread-1", Fragment(type="text", text="hi"))


def test_pending_messages_empty_list():
    def handler(request):
        assert request.url.path == "/api/v1/chat/thread-1/pending-messages"
        return httpx.Response(200, json=[])

    assert _call(handler, "pending_messages", "thread-1") == []


def test_http_errors_raise_chat_api_error():
    def handler(request):
        return httpx.Response(503, text="unavailable")

    with pytest.raises(ChatApiError) as excinfo:
        _call(handler, "pending_messages", "thread-1")
    assert excinfo.value.status_code == 503


def test_transport_errors_raise_chat_api_error():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(ChatApiError) as excinfo:
        _call(handler, "list_messages", "thread-1")
    assert excinfo.value.status_code is None


def test_invalid_json_raises_wire_format_error():
    def handler(request):
        return httpx.Response(200, content=b"<html>", headers={"content-type": "text/html"})

    with pytest.raises(WireFormatError):
        _call(handler, "list_messages", "thread-1")


def test_list_threads_sends_query_params():
    seen = {}

    def handler(request):
        seen["params"] = dict(request.url.params)
        return httpx.Response(
            200,
            json={"threads": {"t1": {"title": "Song", "lastMessageAt": "2026-01-01T00:00:00Z"}}},
        )

    summaries = _call(handler, "list_threads", "artist-1", amount=5)
    assert seen["params"] == {"artistId": "artist-1", "amount": "5"}
    assert summaries[0].thread_id == "t1"


def test_owned_client_sends_bearer_token():
    api = HttpChatApi(_settings(token="abc"))
    assert api._client.headers["Authorization"] == "Bearer abc"
    asyncio.run(api.aclose())
