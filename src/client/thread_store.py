from __future__ import annotations

"""In-memory, append-only message store shared by the sender and the poller."""

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Awaitable, Callable, Dict, List, Optional, Tuple
import asyncio
import logging

from src.chat.fragments import Message, ThreadSummary


logger = logging.getLogger(__name__)

ChangeListener = Callable[[str, Tuple[Message, ...]], None]
HistoryFetch = Callable[[], Awaitable[List[Message]]]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class ThreadState:
    id: str
    summary: ThreadSummary
    messages: Tuple[Message, ...] = ()
    loaded: bool = False
    fetch_task: Optional[asyncio.Task] = field(default=None, repr=False)


class ThreadStore:
    """Hold each thread's message list as an immutable tuple snapshot.

    Writers only ever append; the single exception is installing the server
    history, which keeps any message appended while the fetch was in flight.
    """
    def __init__(self) -> None:
        self._threads: Dict[str, ThreadState] = {}
        self._listeners: List[ChangeListener] = []
        self._lock = asyncio.Lock()

    def open_thread(self, thread_id: str) -> ThreadState:
        state = self._threads.get(thread_id)
        if state is None:
            state = ThreadState(id=thread_id, summary=ThreadSummary(thread_id=thread_id))
            self._threads[thread_id] = state
        return state

    def _get(self, thread_id: str) -> ThreadState:
        state = self._threads.get(thread_id)
        if state is None:
            raise KeyError(thread_id)
        return state

    def snapshot(self, thread_id: str) -> Tuple[Message, ...]:
        return self._get(thread_id).messages

    def is_loaded(self, thread_id: str) -> bool:
        return self._get(thread_id).loaded

    def add_listener(self, listener: ChangeListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: ChangeListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    async def append(self, thread_id: str, message: Message) -> Tuple[Message, ...]:
        async with self._lock:
            state = self._get(thread_id)
            state.messages = state.messages + (message,)
            snapshot = state.messages
        self._notify(thread_id, snapshot)
        return snapshot

    async def load_history(self, thread_id: str, fetch: HistoryFetch) -> bool:
        """Fetch and install the server history.

        Returns False when the fetch was cancelled before it could write.
        Fetch errors propagate to the caller.
        """
        state = self.open_thread(thread_id)
        previous = state.fetch_task
        if previous is not None and not previous.done():
            previous.cancel()
        base_count = len(state.messages)
        task = asyncio.create_task(self._run_fetch(thread_id, fetch, base_count))
        state.fetch_task = task
        await asyncio.wait({task})
        if state.fetch_task is task:
            state.fetch_task = None
        if task.cancelled():
            logger.debug("history_fetch_cancelled thread_id=%s", thread_id)
            return False
        task.result()
        return True

    async def _run_fetch(self, thread_id: str, fetch: HistoryFetch, base_count: int) -> None:
        history = await fetch()
        async with self._lock:
            state = self._get(thread_id)
            server_ids = {message.id for message in history}
            appended_since = [
                message
                for message in state.messages[base_count:]
                if message.id not in server_ids
            ]
            state.messages = tuple(history) + tuple(appended_since)
            state.loaded = True
            if state.messages:
                state.summary = replace(
                    state.summary, last_message_at=state.messages[-1].timestamp
                )
            snapshot = state.messages
        logger.debug(
            "history_loaded thread_id=%s server=%s kept_local=%s",
            thread_id,
            len(history),
            len(appended_since),
        )
        self._notify(thread_id, snapshot)

    async def cancel_fetch(self, thread_id: str) -> None:
        """Cancel the in-flight history fetch and wait until it can no longer write."""
        state = self._threads.get(thread_id)
        if state is None or state.fetch_task is None:
            return
        task = state.fetch_task
        if not task.done():
            task.cancel()
            await asyncio.wait({task})
        if state.fetch_task is task:
            state.fetch_task = None

    def touch(self, thread_id: str, when: Optional[datetime] = None) -> ThreadSummary:
        state = self._get(thread_id)
        state.summary = replace(state.summary, last_message_at=when or _utcnow())
        return state.summary

    def set_summaries(self, summaries: List[ThreadSummary]) -> None:
        """Install the server's thread listing, keeping newer local activity times."""
        for summary in summaries:
            state = self.open_thread(summary.thread_id)
            local = state.summary.last_message_at
            if local is not None and (summary.last_message_at is None or local > summary.last_message_at):
                summary = replace(summary, last_message_at=local)
            state.summary = summary

    def summaries(self) -> List[ThreadSummary]:
        """Return thread summaries, most recently active first."""
        oldest = datetime.min.replace(tzinfo=timezone.utc)
        return sorted(
            (state.summary for state in self._threads.values()),
            key=lambda summary: summary.last_message_at or oldest,
            reverse=True,
        )

    async def close_thread(self, thread_id: str) -> None:
        await self.cancel_fetch(thread_id)
        self._threads.pop(thread_id, None)

    def _notify(self, thread_id: str, snapshot: Tuple[Message, ...]) -> None:
        for listener in list(self._listeners):
            try:
                listener(thread_id, snapshot)
            except Exception:
                logger.exception("thread_listener_failed thread_id=%s", thread_id)
