from __future__ import annotations

"""Single-flight polling of server-resolved task messages per thread."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, Dict, Optional
import asyncio
import logging

from src.client.api_client import ChatApi
from src.client.logging_utils import set_log_context
from src.client.thread_store import ThreadStore

DEFAULT_INTERVAL_SECONDS = 2.0
DEFAULT_MAX_ITERATIONS = 10000


class PollState(str, Enum):
    IDLE = "idle"
    POLLING = "polling"
    CANCELLED = "cancelled"


@dataclass
class _PollRun:
    thread_id: str
    cancelled: bool = False
    iterations: int = 0
    merged: int = 0
    task: Optional[asyncio.Task] = field(default=None, repr=False)


class PendingMessagePoller:
    """Pull not-yet-delivered completion messages into the thread store.

    At most one poll runs per thread. Each run calls the pending-messages
    endpoint sequentially, appends every resolved message in server order and
    stops on the first empty response or after `max_iterations`. A cancelled
    run never appends again.
    """
    def __init__(
        self,
        api: ChatApi,
        store: ThreadStore,
        *,
        interval_seconds: float = DEFAULT_INTERVAL_SECONDS,
        max_iterations: int = DEFAULT_MAX_ITERATIONS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._api = api
        self._store = store
        self._interval_seconds = interval_seconds
        self._max_iterations = max_iterations
        self._sleep = sleep
        self._runs: Dict[str, _PollRun] = {}
        self._logger = logging.getLogger(__name__)

    def trigger(self, thread_id: str) -> bool:
        """Start polling `thread_id` unless a poll is already in flight."""
        current = self._runs.get(thread_id)
        if current is not None and current.task is not None and not current.task.done():
            return False
        run = _PollRun(thread_id=thread_id)
        run.task = asyncio.create_task(self._poll(run), name=f"poll-{thread_id}")
        run.task.add_done_callback(lambda task: self._on_done(run, task))
        self._runs[thread_id] = run
        return True

    def state(self, thread_id: str) -> PollState:
        run = self._runs.get(thread_id)
        if run is None:
            return PollState.IDLE
        if run.cancelled:
            return PollState.CANCELLED
        if run.task is not None and not run.task.done():
            return PollState.POLLING
        return PollState.IDLE

    def request_cancel(self, thread_id: str) -> None:
        """Flag the current run as cancelled without waiting for it to finish."""
        run = self._runs.get(thread_id)
        if run is None:
            return
        run.cancelled = True
        if run.task is not None and not run.task.done():
            run.task.cancel()

    async def cancel(self, thread_id: str) -> None:
        """Cancel the thread's run, wait for it, and forget the thread."""
        self.request_cancel(thread_id)
        run = self._runs.pop(thread_id, None)
        if run is not None and run.task is not None and not run.task.done():
            await asyncio.wait({run.task})

    async def join(self, thread_id: str) -> None:
        """Wait for the current run to finish on its own; never raises."""
        run = self._runs.get(thread_id)
        if run is not None and run.task is not None and not run.task.done():
            await asyncio.wait({run.task})

    async def aclose(self) -> None:
        for thread_id in list(self._runs):
            await self.cancel(thread_id)

    async def _poll(self, run: _PollRun) -> None:
        thread_id = run.thread_id
        set_log_context(thread_id=thread_id)
        self._logger.debug("poll_start thread_id=%s", thread_id)
        while run.iterations < self._max_iterations:
            if run.cancelled:
                return
            results = await self._api.pending_messages(thread_id)
            run.iterations += 1
            if not results:
                self._logger.debug(
                    "poll_idle thread_id=%s iterations=%s merged=%s",
                    thread_id,
                    run.iterations,
                    run.merged,
                )
                return
            for result in results:
                if run.cancelled:
                    return
                if result.message is None:
                    continue
                await self._store.append(thread_id, result.message)
                run.merged += 1
                self._logger.info(
                    "poll_merged thread_id=%s message_id=%s status=%s",
                    thread_id,
                    result.message.id,
                    result.status,
                )
            await self._sleep(self._interval_seconds)
        self._logger.warning(
            "poll_ceiling_reached thread_id=%s iterations=%s", thread_id, run.iterations
        )

    def _on_done(self, run: _PollRun, task: asyncio.Task) -> None:
        # Finished runs are dropped; a cancelled one stays visible until cancel() or the next trigger.
        if not run.cancelled and self._runs.get(run.thread_id) is run:
            del self._runs[run.thread_id]
        if task.cancelled():
            self._logger.debug("poll_cancelled thread_id=%s", run.thread_id)
            return
        exc = task.exception()
        if exc is not None:
            self._logger.error(
                "poll_failed thread_id=%s iterations=%s error=%s",
                run.thread_id,
                run.iterations,
                exc,
                exc_info=(type(exc), exc, exc.__traceback__),
            )
