"""Transports deliver inbound chunks and carry outbound requests.

A transport is anything with ``stream()`` and ``resume()`` async
iterators of :class:`~parley.chunks.StreamChunk`.  :class:`SSETransport`
talks to an HTTP endpoint that answers with an event stream.
"""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator
from typing import Any, Protocol

import httpx
from httpx_sse import ServerSentEvent, aconnect_sse
from pydantic import BaseModel, Field

from parley.chunks import StreamChunk, parse_chunk
from parley.errors import ProtocolViolation, TransportFailure
from parley.message import Message
from parley.sse import DONE_SENTINEL

logger = logging.getLogger(__name__)


class ChatRequest(BaseModel):
    """A turn sent for remote processing: the conversation so far."""

    conversation_id: str
    messages: list[Message] = Field(default_factory=list)


class ResumeRequest(BaseModel):
    """A human approval decision sent back to the backend."""

    conversation_id: str
    approval_id: str
    tool_call_id: str
    approved: bool


class Transport(Protocol):
    name: str

    def stream(self, request: ChatRequest) -> AsyncIterator[StreamChunk]:
        ...

    def resume(self, request: ResumeRequest) -> AsyncIterator[StreamChunk]:
        ...


class SSETransport:
    """POSTs JSON and reads the ``text/event-stream`` response.

    Args:
        endpoint_url: URL a :class:`ChatRequest` is posted to.
        resume_url: URL a :class:`ResumeRequest` is posted to.  Defaults
            to ``endpoint_url``.
        client: Shared ``httpx.AsyncClient``; one is created if omitted.
        timeout: Read timeout for a created client, in seconds.
    """

    name = "sse"

    def __init__(
        self,
        endpoint_url: str,
        resume_url: str | None = None,
        client: httpx.AsyncClient | None = None,
        timeout: float = 120.0,
    ):
        self.endpoint_url = endpoint_url
        self.resume_url = resume_url or endpoint_url
        self.client = client or httpx.AsyncClient(timeout=timeout)

    async def aclose(self) -> None:
        await self.client.aclose()

    async def stream(self, request: ChatRequest) -> AsyncIterator[StreamChunk]:
        async for chunk in self._post(self.endpoint_url, request.model_dump(mode="json")):
            yield chunk

    async def resume(self, request: ResumeRequest) -> AsyncIterator[StreamChunk]:
        async for chunk in self._post(self.resume_url, request.model_dump(mode="json")):
            yield chunk

    async def _post(self, url: str, payload: dict[str, Any]) -> AsyncIterator[StreamChunk]:
        try:
            async with aconnect_sse(self.client, "POST", url, json=payload) as event_source:
                event_source.response.raise_for_status()
                async for event in event_source.aiter_sse():
                    if event.data == DONE_SENTINEL:
                        return
                    if not event.data:
                        continue
                    chunk = self._decode(event)
                    if chunk is not None:
                        yield chunk
        except httpx.HTTPError as e:
            raise TransportFailure(f"stream from {url} failed: {e}") from e

    def _decode(self, event: ServerSentEvent) -> StreamChunk | None:
        try:
            data = json.loads(event.data)
            if not isinstance(data, dict):
                raise ProtocolViolation(f"chunk is not a JSON object: {event.data[:80]}")
            return parse_chunk(data)
        except json.JSONDecodeError as e:
            logger.warning(f"Skipping SSE frame with invalid JSON: {e}")
        except ProtocolViolation as e:
            logger.warning(f"Skipping SSE frame: {e}")
        return None
