from __future__ import annotations

"""Per-thread chat session wiring the store, sender, poller and projection."""

from typing import List, Optional, Tuple
import logging

from src.chat.fragments import Fragment, Message
from src.chat.notifications import LoggingSink, NotificationSink, detect_artifacts
from src.chat.projector import (
    AnnotatedMessage,
    ChatState,
    ChatStateProjector,
    active_upload_request,
    annotate_messages,
)
from src.chat.segmenter import Segment, segment_message
from src.client.api_client import ChatApi
from src.client.config import Settings
from src.client.logging_utils import set_log_context
from src.client.poller import DEFAULT_INTERVAL_SECONDS, DEFAULT_MAX_ITERATIONS, PendingMessagePoller
from src.client.send_pipeline import SendPipeline
from src.client.thread_store import ThreadStore


class ChatSession:
    """Own one thread's lifecycle: history load, polling, sending and projection.

    Use as an async context manager so the poll task and any in-flight
    history fetch are cancelled on every exit path.
    """
    def __init__(
        self,
        thread_id: str,
        api: ChatApi,
        store: ThreadStore,
        settings: Optional[Settings] = None,
        *,
        poller: Optional[PendingMessagePoller] = None,
        notification_sink: Optional[NotificationSink] = None,
    ) -> None:
        self.thread_id = thread_id
        self._api = api
        self._store = store
        self._poller = poller or PendingMessagePoller(
            api,
            store,
            interval_seconds=settings.poll_interval_seconds if settings else DEFAULT_INTERVAL_SECONDS,
            max_iterations=settings.poll_max_iterations if settings else DEFAULT_MAX_ITERATIONS,
        )
        self.sender = SendPipeline(api, store)
        self._sink = notification_sink or LoggingSink()
        self._projector = ChatStateProjector()
        self._logger = logging.getLogger(__name__)
        self._opened = False
        self._closed = False
        self._loading_history = False
        self._last_notified_id: Optional[str] = None

    async def __aenter__(self) -> "ChatSession":
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    @property
    def poller(self) -> PendingMessagePoller:
        return self._poller

    async def open(self) -> None:
        if self._opened:
            return
        self._opened = True
        set_log_context(thread_id=self.thread_id)
        self._store.open_thread(self.thread_id)
        self._store.add_listener(self._on_change)
        self._loading_history = True
        try:
            loaded = await self._store.load_history(
                self.thread_id, lambda: self._api.list_messages(self.thread_id)
            )
        finally:
            self._loading_history = False
        snapshot = self._store.snapshot(self.thread_id)
        if snapshot:
            self._last_notified_id = snapshot[-1].id
        self._logger.info(
            "session_open thread_id=%s loaded=%s messages=%s",
            self.thread_id,
            loaded,
            len(snapshot),
        )
        self._poller.trigger(self.thread_id)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._store.remove_listener(self._on_change)
        await self._poller.cancel(self.thread_id)
        await self._store.cancel_fetch(self.thread_id)
        self._logger.info("session_closed thread_id=%s", self.thread_id)

    def messages(self) -> Tuple[Message, ...]:
        return self._store.snapshot(self.thread_id)

    def state(self) -> ChatState:
        return self._projector.project(self.messages())

    def render(self) -> List[Tuple[AnnotatedMessage, List[Segment]]]:
        messages = self.messages()
        annotated = annotate_messages(messages, self._projector.project(messages), self.thread_id)
        return [(message, segment_message(message)) for message in annotated]

    def active_upload_request(self) -> Optional[Fragment]:
        return active_upload_request(self.messages())

    async def send(self, fragment: Fragment) -> Optional[Message]:
        return await self.sender.send(self.thread_id, fragment)

    async def send_text(self, text: str) -> Optional[Message]:
        return await self.sender.send_text(self.thread_id, text)

    def _on_change(self, thread_id: str, snapshot: Tuple[Message, ...]) -> None:
        if thread_id != self.thread_id or self._closed:
            return
        # open() starts the first poll once the history is installed.
        if self._loading_history:
            return
        self._poller.trigger(thread_id)
        if not snapshot:
            return
        last = snapshot[-1]
        if last.id == self._last_notified_id:
            return
        self._last_notified_id = last.id
        for notification in detect_artifacts(snapshot):
            self._sink.notify(notification)
