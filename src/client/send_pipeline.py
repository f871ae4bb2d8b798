from __future__ import annotations

"""Optimistic message sending for chat threads."""

from datetime import datetime, timezone
from typing import Any, Dict, Optional
import logging
import uuid

import httpx

from src.chat.error_codes import normalize_error_code
from src.chat.fragments import Fragment, FragmentType, Message
from src.chat.wire import WireFormatError
from src.client.api_client import ChatApi, ChatApiError
from src.client.logging_utils import set_log_context, task_log_context
from src.client.thread_store import ThreadStore

SEND_FAILURE_TEXT = "Sorry, there was an error sending your message. Please try again."


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _local_id() -> str:
    return f"local-{uuid.uuid4().hex}"


def _task_fragment(fragment_type: FragmentType, **fields: Any) -> Fragment:
    """Build a fragment, lifting the known fields and keeping the rest as attributes."""
    lifted: Dict[str, Any] = {}
    attributes: Dict[str, Any] = {}
    for name, value in fields.items():
        if name in {"task_id", "audio_upload_request_id", "reference_candidates_id", "audio_id", "error"}:
            lifted[name] = value
        elif value is not None:
            attributes[name] = value
    return Fragment(type=fragment_type.value, attributes=attributes, **lifted)


class SendPipeline:
    """Append the user's turn locally, then reconcile with the server reply.

    The optimistic entry is never removed or replaced: a successful send adds
    the confirmed reply next to it, a failed send adds a synthetic assistant
    error message next to it.
    """
    def __init__(self, api: ChatApi, store: ThreadStore) -> None:
        self._api = api
        self._store = store
        self._logger = logging.getLogger(__name__)

    async def send(self, thread_id: str, fragment: Fragment) -> Optional[Message]:
        set_log_context(thread_id=thread_id)
        with task_log_context(fragment.task_id):
            return await self._send(thread_id, fragment)

    async def _send(self, thread_id: str, fragment: Fragment) -> Optional[Message]:
        # Cancel the outstanding history read before writing, so it cannot overwrite us.
        await self._store.cancel_fetch(thread_id)
        optimistic = Message(
            id=_local_id(),
            role="user",
            content=(fragment,),
            timestamp=_utcnow(),
            is_local=True,
        )
        await self._store.append(thread_id, optimistic)
        self._store.touch(thread_id, optimistic.timestamp)
        self._logger.debug(
            "send_optimistic thread_id=%s message_id=%s type=%s",
            thread_id,
            optimistic.id,
            fragment.type,
        )
        try:
            confirmed = await self._api.send_message(thread_id, fragment)
        except (ChatApiError, WireFormatError, httpx.HTTPError) as exc:
            self._logger.warning(
                "send_failed thread_id=%s type=%s error=%s", thread_id, fragment.type, exc
            )
            await self._store.append(thread_id, self._failure_message())
            return None
        except Exception as exc:
            self._logger.exception(
                "send_unexpected thread_id=%s type=%s error=%s", thread_id, fragment.type, exc
            )
            await self._store.append(thread_id, self._failure_message())
            return None
        if confirmed is None:
            self._logger.warning("send_failed thread_id=%s error=empty response", thread_id)
            await self._store.append(thread_id, self._failure_message())
            return None
        await self._store.append(thread_id, confirmed)
        self._store.touch(thread_id, confirmed.timestamp)
        self._logger.info(
            "send_confirmed thread_id=%s message_id=%s fragments=%s",
            thread_id,
            confirmed.id,
            len(confirmed.content),
        )
        return confirmed

    def _failure_message(self) -> Message:
        return Message(
            id=_local_id(),
            role="assistant",
            content=(Fragment(type=FragmentType.TEXT.value, text=SEND_FAILURE_TEXT),),
            timestamp=_utcnow(),
            is_local=True,
        )

    async def send_text(self, thread_id: str, text: str) -> Optional[Message]:
        trimmed = text.strip()
        if not trimmed:
            return None
        return await self.send(thread_id, Fragment(type=FragmentType.TEXT.value, text=trimmed))

    async def send_upload_start(
        self, thread_id: str, audio_upload_request_id: str, task_id: str, file_name: str
    ) -> Optional[Message]:
        return await self.send(
            thread_id,
            _task_fragment(
                FragmentType.AUDIO_UPLOAD_START,
                audio_upload_request_id=audio_upload_request_id,
                task_id=task_id,
                fileName=file_name,
            ),
        )

    async def send_upload_complete(
        self,
        thread_id: str,
        audio_upload_request_id: str,
        task_id: str,
        audio_id: str,
        song_name: str,
    ) -> Optional[Message]:
        return await self.send(
            thread_id,
            _task_fragment(
                FragmentType.AUDIO_UPLOAD_COMPLETE,
                audio_upload_request_id=audio_upload_request_id,
                task_id=task_id,
                audio_id=audio_id,
                songName=song_name,
            ),
        )

    async def send_reference_selection(
        self, thread_id: str, reference_id: str, reference_candidates_id: str, option_number: int
    ) -> Optional[Message]:
        return await self.send(
            thread_id,
            _task_fragment(
                FragmentType.REFERENCE_SELECTION,
                reference_candidates_id=reference_candidates_id,
                referenceId=reference_id,
                optionNumber=option_number,
            ),
        )

    async def send_song_rendering_complete(
        self, thread_id: str, audio_id: str, task_id: str, butcher_id: str
    ) -> Optional[Message]:
        return await self.send(
            thread_id,
            _task_fragment(
                FragmentType.SONG_RENDERING_COMPLETE,
                audio_id=audio_id,
                task_id=task_id,
                butcherId=butcher_id,
            ),
        )

    async def send_quantization_complete(
        self, thread_id: str, audio_id: str, task_id: str
    ) -> Optional[Message]:
        return await self.send(
            thread_id,
            _task_fragment(FragmentType.QUANTIZATION_COMPLETE, audio_id=audio_id, task_id=task_id),
        )

    async def send_mixing_complete(
        self, thread_id: str, audio_id: str, task_id: str
    ) -> Optional[Message]:
        return await self.send(
            thread_id,
            _task_fragment(FragmentType.MIXING_COMPLETE, audio_id=audio_id, task_id=task_id),
        )

    async def send_song_composition_complete(
        self, thread_id: str, audio_id: str, task_id: str
    ) -> Optional[Message]:
        return await self.send(
            thread_id,
            _task_fragment(
                FragmentType.SONG_COMPOSITION_COMPLETE, audio_id=audio_id, task_id=task_id
            ),
        )

    async def send_error(self, thread_id: str, error: Any, task_id: str) -> Optional[Message]:
        return await self.send(
            thread_id,
            _task_fragment(
                FragmentType.ERROR, task_id=task_id, error=normalize_error_code(error)
            ),
        )
