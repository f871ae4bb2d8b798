from __future__ import annotations

"""Local HTTP bridge that serves projected chat state to a presentation shell."""

from typing import Any, AsyncIterator, Dict, Optional
from contextlib import asynccontextmanager
import logging
import time

from fastapi import FastAPI, HTTPException, Request
from pydantic import BaseModel
import uvicorn

from src.chat.fragments import ThreadSummary
from src.chat.notifications import MemorySink
from src.chat.wire import WireFormatError, fragment_from_wire, fragment_to_wire, message_to_wire
from src.client.api_client import ChatApi, ChatApiError, HttpChatApi
from src.client.config import Settings
from src.client.logging_utils import (
    clear_log_context,
    configure_logging,
    set_log_context,
)
from src.client.session import ChatSession
from src.client.thread_store import ThreadStore


class SendTextRequest(BaseModel):
    text: str


class SendFragmentRequest(BaseModel):
    fragment: Dict[str, Any]


def create_app(api: Optional[ChatApi] = None, settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or Settings.from_env()
    configure_logging(settings)
    store = ThreadStore()
    chat_api: ChatApi = api if api is not None else HttpChatApi(settings)
    sessions: Dict[str, ChatSession] = {}
    sinks: Dict[str, MemorySink] = {}

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        try:
            yield
        finally:
            for session in list(sessions.values()):
                await session.close()
            sessions.clear()
            if isinstance(chat_api, HttpChatApi):
                await chat_api.aclose()

    app = FastAPI(title="Studio Chat Sync Bridge", version="0.1.0", lifespan=lifespan)
    logger = logging.getLogger("client.bridge")
    if settings.bridge_debug:
        logger.setLevel(logging.DEBUG)
    app.state.settings = settings
    app.state.store = store
    app.state.api = chat_api
    app.state.sessions = sessions

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        start = time.monotonic()
        parts = request.url.path.strip("/").split("/")
        thread_id = parts[1] if len(parts) > 1 and parts[0] == "threads" else None
        set_log_context(thread_id=thread_id)
        status: Any = "error"
        try:
            response = await call_next(request)
            status = response.status_code
        finally:
            duration_ms = (time.monotonic() - start) * 1000.0
            logger.debug(
                "http_request method=%s path=%s status=%s duration_ms=%.2f",
                request.method,
                request.url.path,
                status,
                duration_ms,
            )
            clear_log_context()
        return response

    @app.get("/threads")
    async def list_threads(artist_id: str, amount: int = 30) -> Dict[str, Any]:
        try:
            listed = await chat_api.list_threads(artist_id, amount)
        except (ChatApiError, WireFormatError) as exc:
            raise HTTPException(status_code=502, detail=str(exc)) from exc
        store.set_summaries(listed)
        return {"threads": [_summary_to_dict(summary) for summary in store.summaries()]}

    @app.post("/threads/{thread_id}/open")
    async def open_thread(thread_id: str) -> Dict[str, Any]:
        session = sessions.get(thread_id)
        if session is None:
            sink = MemorySink()
            session = ChatSession(thread_id, chat_api, store, settings, notification_sink=sink)
            try:
                await session.open()
            except (ChatApiError, WireFormatError) as exc:
                await session.close()
                await store.close_thread(thread_id)
                raise HTTPException(status_code=502, detail=str(exc)) from exc
            sessions[thread_id] = session
            sinks[thread_id] = sink
        return {"thread_id": thread_id, "messages": len(session.messages())}

    @app.get("/threads/{thread_id}/state")
    async def get_state(thread_id: str) -> Dict[str, Any]:
        session = _get_session_or_404(sessions, thread_id)
        payload = session.state().to_dict()
        payload["poll_state"] = session.poller.state(thread_id).value
        payload["loaded"] = store.is_loaded(thread_id)
        return payload

    @app.get("/threads/{thread_id}/messages")
    async def get_messages(thread_id: str) -> Dict[str, Any]:
        session = _get_session_or_404(sessions, thread_id)
        rendered = []
        for annotated, segments in session.render():
            rendered.append(
                {
                    "id": annotated.message.id,
                    "role": annotated.role,
                    "timestamp": annotated.message.timestamp.isoformat(),
                    "is_local": annotated.message.is_local,
                    "segments": [segment.to_dict() for segment in segments],
                }
            )
        upload_request = session.active_upload_request()
        return {
            "thread_id": thread_id,
            "messages": rendered,
            "active_upload_request": fragment_to_wire(upload_request) if upload_request else None,
        }

    @app.post("/threads/{thread_id}/messages")
    async def send_text(thread_id: str, payload: SendTextRequest) -> Dict[str, Any]:
        session = _get_session_or_404(sessions, thread_id)
        if not payload.text.strip():
            raise HTTPException(status_code=400, detail="Message text is empty.")
        confirmed = await session.send_text(payload.text)
        return _send_result(confirmed)

    @app.post("/threads/{thread_id}/fragments")
    async def send_fragment(thread_id: str, payload: SendFragmentRequest) -> Dict[str, Any]:
        session = _get_session_or_404(sessions, thread_id)
        try:
            fragment = fragment_from_wire(payload.fragment)
        except WireFormatError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        confirmed = await session.send(fragment)
        return _send_result(confirmed)

    @app.get("/threads/{thread_id}/notifications")
    async def drain_notifications(thread_id: str) -> Dict[str, Any]:
        _get_session_or_404(sessions, thread_id)
        sink = sinks[thread_id]
        return {"notifications": [item.to_dict() for item in sink.drain()]}

    @app.delete("/threads/{thread_id}")
    async def close_thread(thread_id: str) -> Dict[str, Any]:
        session = _get_session_or_404(sessions, thread_id)
        await session.close()
        await store.close_thread(thread_id)
        sessions.pop(thread_id, None)
        sinks.pop(thread_id, None)
        return {"thread_id": thread_id, "closed": True}

    return app


def _get_session_or_404(sessions: Dict[str, ChatSession], thread_id: str) -> ChatSession:
    session = sessions.get(thread_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Thread is not open.")
    return session


def _summary_to_dict(summary: ThreadSummary) -> Dict[str, Any]:
    return {
        "thread_id": summary.thread_id,
        "title": summary.title,
        "artist_id": summary.artist_id,
        "artist_name": summary.artist_name,
        "last_message_at": summary.last_message_at.isoformat() if summary.last_message_at else None,
    }


def _send_result(confirmed: Any) -> Dict[str, Any]:
    if confirmed is None:
        return {"sent": False, "message": None}
    return {"sent": True, "message": message_to_wire(confirmed)}


def main() -> None:
    """Run the bridge with uvicorn using environment settings."""
    settings = Settings.from_env()
    uvicorn.run(
        "src.client.app:create_app",
        factory=True,
        host=settings.bridge_host,
        port=settings.bridge_port,
    )


if __name__ == "__main__":
    main()
