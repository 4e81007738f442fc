"""In-process chunk source backed by the OpenAI chat-completions stream.

OpenAI streams tool calls as fragments keyed by ``index``: the first
fragment for an index carries the call id and function name, later ones
carry argument text.  :class:`ChunkTranslator` maps that shape onto the
parley chunk alphabet so the engine sees the same events an SSE backend
would send.
"""

from __future__ import annotations

import json
import logging
import os
import uuid
from collections.abc import AsyncIterator, Iterable

from openai import APIError, AsyncOpenAI

from parley.chunks import (
    MessageEnd,
    MessageStart,
    StreamChunk,
    TextDelta,
    ThinkingDelta,
    ToolCallArgsDelta,
    ToolCallEnd,
    ToolCallStart,
)
from parley.errors import TransportFailure
from parley.message import Message, MessageRole
from parley.parts import ToolCallPart, ToolResultPart, ToolResultState
from parley.transport import ChatRequest, ResumeRequest

logger = logging.getLogger(__name__)


class ChunkTranslator:
    """Turns ``ChatCompletionChunk`` objects into stream chunks."""

    def __init__(self) -> None:
        self.message_id: str | None = None
        self._calls: dict[int, str] = {}
        self._finished = False

    def translate(self, completion_chunk) -> list[StreamChunk]:
        out: list[StreamChunk] = []
        if self.message_id is None:
            self.message_id = completion_chunk.id or f"msg-{uuid.uuid4().hex[:12]}"
            out.append(MessageStart(message_id=self.message_id))

        for choice in completion_chunk.choices:
            # n > 1 completions are not rendered
            if choice.index != 0:
                continue
            delta = choice.delta
            reasoning = getattr(delta, "reasoning_content", None) or getattr(delta, "reasoning", None)
            if reasoning:
                out.append(ThinkingDelta(delta=reasoning, message_id=self.message_id))
            if delta.content:
                out.append(TextDelta(delta=delta.content, message_id=self.message_id))
            for fragment in delta.tool_calls or []:
                out.extend(self._tool_call_chunks(fragment))
            if choice.finish_reason:
                out.extend(self.finish(choice.finish_reason))
        return out

    def _tool_call_chunks(self, fragment) -> list[StreamChunk]:
        out: list[StreamChunk] = []
        function = fragment.function
        call_id = self._calls.get(fragment.index)
        if call_id is None:
            call_id = fragment.id or f"{self.message_id}-call-{fragment.index}"
            self._calls[fragment.index] = call_id
            out.append(ToolCallStart(
                tool_call_id=call_id,
                name=(function.name if function is not None else None) or "",
                message_id=self.message_id,
            ))
        if function is not None and function.arguments:
            out.append(ToolCallArgsDelta(
                tool_call_id=call_id, delta=function.arguments, message_id=self.message_id,
            ))
        return out

    def finish(self, finish_reason: str | None = None) -> list[StreamChunk]:
        """End every open call and the message; later calls return nothing."""
        if self._finished or self.message_id is None:
            return []
        self._finished = True
        out: list[StreamChunk] = [
            ToolCallEnd(tool_call_id=call_id, message_id=self.message_id)
            for _, call_id in sorted(self._calls.items())
        ]
        out.append(MessageEnd(message_id=self.message_id, finish_reason=finish_reason))
        return out


def to_openai_messages(messages: Iterable[Message]) -> list[dict]:
    """Serialize a snapshot into chat-completions ``messages``.

    Thinking parts are not sent back.  Chat completions require every
    assistant ``tool_calls`` entry to be answered, so only calls with a
    completed result are included, each followed by its ``tool`` message
    even when the result arrived in a later message.
    """
    messages = list(messages)
    results = {
        part.tool_call_id: part
        for message in messages
        for part in message.parts
        if isinstance(part, ToolResultPart) and part.state is ToolResultState.COMPLETE
    }
    payload: list[dict] = []
    for message in messages:
        if message.role is MessageRole.USER:
            payload.append({"role": "user", "content": message.text})
            continue
        calls = [
            p for p in message.parts
            if isinstance(p, ToolCallPart) and p.id in results
        ]
        if not calls and not message.text:
            continue
        entry: dict = {"role": "assistant", "content": message.text or None}
        if calls:
            entry["tool_calls"] = [
                {
                    "id": call.id,
                    "type": "function",
                    "function": {
                        "name": call.name,
                        "arguments": (
                            json.dumps(call.input) if call.input_ready else call.raw_arguments
                        ),
                    },
                }
                for call in calls
            ]
        payload.append(entry)
        for call in calls:
            payload.append({
                "role": "tool",
                "tool_call_id": call.id,
                "content": results[call.id].content,
            })
    return payload


class OpenAIStreamSource:
    """Streams a turn straight from an OpenAI-compatible endpoint.

    Tools are offered to the model but never executed here, so the
    stream ends after the model's tool calls.

    Args:
        model: Model name passed to ``chat.completions.create``.
        api_key: API key; falls back to ``OPENAI_API_KEY``.
        base_url: Alternate OpenAI-compatible endpoint.
        client: Preconfigured ``AsyncOpenAI`` client.
        tools: Tool schemas in chat-completions format.
    """

    name = "openai"

    def __init__(
        self,
        model: str,
        api_key: str | None = None,
        base_url: str | None = None,
        client: AsyncOpenAI | None = None,
        tools: list[dict] | None = None,
    ):
        if client is None:
            if not api_key:
                api_key = os.getenv("OPENAI_API_KEY")
            client = AsyncOpenAI(api_key=api_key, base_url=base_url, timeout=600.0)
        self.client = client
        self.model = model
        self.tools = tools or []

    async def stream(self, request: ChatRequest) -> AsyncIterator[StreamChunk]:
        translator = ChunkTranslator()
        kwargs = {"tools": self.tools} if self.tools else {}
        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=to_openai_messages(request.messages),
                stream=True,
                **kwargs,
            )
            async for completion_chunk in response:
                for chunk in translator.translate(completion_chunk):
                    yield chunk
        except APIError as e:
            raise TransportFailure(f"OpenAI stream failed: {e}") from e
        for chunk in translator.finish():
            yield chunk

    async def resume(self, request: ResumeRequest) -> AsyncIterator[StreamChunk]:
        raise TransportFailure(
            "chat completions have no approval gate; "
            f"cannot resume approval {request.approval_id}"
        )
        yield  # unreachable; makes this an async generator like stream()
