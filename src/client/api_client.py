from __future__ import annotations

"""HTTP client for the chat service endpoints the sync engine depends on."""

from typing import Any, Dict, List, Optional, Protocol
import logging
import time

import httpx

from src.chat.fragments import Fragment, Message, ThreadSummary
from src.chat.wire import (
    PendingResult,
    WireFormatError,
    fragment_to_wire,
    message_from_wire,
    messages_from_wire,
    pending_results_from_wire,
    thread_summaries_from_wire,
)
from src.client.config import Settings
from src.client.logging_utils import summarize_payload


logger = logging.getLogger(__name__)


class ChatApiError(RuntimeError):
    """Raised when the chat service rejects a request or cannot be reached."""
    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ChatApi(Protocol):
    """Chat service operations consumed by the store, sender, poller and bridge."""
    async def list_messages(self, thread_id: str) -> List[Message]:
        raise NotImplementedError

    async def send_message(self, thread_id: str, fragment: Fragment) -> Message:
        raise NotImplementedError

    async def pending_messages(self, thread_id: str) -> List[PendingResult]:
        raise NotImplementedError

    async def list_threads(self, artist_id: str, amount: int = 30) -> List[ThreadSummary]:
        raise NotImplementedError


class HttpChatApi:
    """`ChatApi` implementation over `httpx.AsyncClient`."""
    def __init__(
        self,
        settings: Settings,
        *,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        headers = {"Accept": "application/json"}
        if settings.api_token:
            headers["Authorization"] = f"Bearer {settings.api_token}"
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=settings.api_base_url,
            timeout=settings.api_timeout_seconds,
            headers=headers,
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def list_messages(self, thread_id: str) -> List[Message]:
        body = await self._request("GET", f"/api/v1/chat/{thread_id}/messages")
        raw = body.get("messages") if isinstance(body, dict) else body
        return messages_from_wire(raw or [])

    async def send_message(self, thread_id: str, fragment: Fragment) -> Message:
        body = await self._request(
            "POST",
            f"/api/v1/chat/{thread_id}/messages",
            json={"content": fragment_to_wire(fragment)},
        )
        raw = body.get("message") if isinstance(body, dict) else None
        if not raw:
            raise WireFormatError("Invalid message response")
        return message_from_wire(raw)

    async def pending_messages(self, thread_id: str) -> List[PendingResult]:
        body = await self._request("GET", f"/api/v1/chat/{thread_id}/pending-messages")
        return pending_results_from_wire(body)

    async def list_threads(self, artist_id: str, amount: int = 30) -> List[ThreadSummary]:
        body = await self._request(
            "GET",
            "/api/v1/chat/",
            params={"artistId": artist_id, "amount": amount},
        )
        threads = body.get("threads") if isinstance(body, dict) else None
        return thread_summaries_from_wire(threads or {})

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Any:
        start = time.monotonic()
        try:
            response = await self._client.request(method, path, json=json, params=params)
        except httpx.TimeoutException as exc:
            raise ChatApiError(f"Chat API request timed out: {method} {path}") from exc
        except httpx.HTTPError as exc:
            raise ChatApiError(f"Chat API connection error: {exc}") from exc
        elapsed_ms = (time.monotonic() - start) * 1000.0
        logger.debug(
            "chat_api_request method=%s path=%s status=%s elapsed_ms=%.2f",
            method,
            path,
            response.status_code,
            elapsed_ms,
        )
        if response.status_code >= 400:
            logger.warning(
                "chat_api_error method=%s path=%s status=%s response=%s",
                method,
                path,
                response.status_code,
                summarize_payload(response.text),
            )
            raise ChatApiError(
                f"Chat API HTTP error {response.status_code}: {method} {path}",
                status_code=response.status_code,
            )
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise WireFormatError(f"Chat API returned invalid JSON: {method} {path}") from exc
