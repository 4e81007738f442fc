"""Server-Sent Events framing for stream chunks."""

from __future__ import annotations

import json
from collections.abc import AsyncIterable, AsyncIterator

from parley.chunks import StreamChunk, chunk_to_dict

DONE_SENTINEL = "[DONE]"


async def sse_generator(
    chunk_stream: AsyncIterable[StreamChunk],
) -> AsyncIterator[str]:
    """Convert a StreamChunk async iterator into SSE-formatted strings."""
    async for chunk in chunk_stream:
        data = json.dumps(chunk_to_dict(chunk))
        yield f"event: {chunk.type.value}\ndata: {data}\n\n"
    yield f"data: {DONE_SENTINEL}\n\n"
