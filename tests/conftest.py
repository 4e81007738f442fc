from types import SimpleNamespace

import pytest

from parley.chunks import (
    ApprovalRequested,
    MessageEnd,
    MessageStart,
    StreamChunk,
    TextDelta,
    ToolCallArgsDelta,
    ToolCallEnd,
    ToolCallStart,
    ToolResultEnd,
)
from parley.engine import ReconciliationEngine
from parley.errors import TransportFailure
from parley.transport import ChatRequest, ResumeRequest


# ---------------------------------------------------------------------------
# Scripted transport
# ---------------------------------------------------------------------------

class ScriptedTransport:
    """Transport that replays pre-queued chunk scripts. No network calls.

    Each script is a list of chunks; an exception instance in a script
    is raised at that point in the stream.
    """

    name = "scripted"

    def __init__(self):
        self.scripts: list[list] = []
        self.resume_scripts: list[list] = []
        self.requests: list[ChatRequest] = []
        self.resumes: list[ResumeRequest] = []
        self.closed = False

    async def stream(self, request):
        self.requests.append(request)
        for item in self.scripts.pop(0):
            if isinstance(item, BaseException):
                raise item
            yield item

    async def resume(self, request):
        self.resumes.append(request)
        for item in self.resume_scripts.pop(0):
            if isinstance(item, BaseException):
                raise item
            yield item

    async def aclose(self):
        self.closed = True


# ---------------------------------------------------------------------------
# Chunk script helpers
# ---------------------------------------------------------------------------

def text_reply(message_id: str, *fragments: str) -> list[StreamChunk]:
    """An assistant message made of text deltas."""
    return [
        MessageStart(message_id=message_id),
        *[TextDelta(delta=f, message_id=message_id) for f in fragments],
        MessageEnd(message_id=message_id),
    ]


def gated_tool_call(
    message_id: str,
    tool_call_id: str = "t1",
    approval_id: str = "a1",
    name: str = "secure_get_weather",
    arguments: str = '{"location": "Paris"}',
) -> list[StreamChunk]:
    """A tool call that stops to wait for human approval."""
    return [
        MessageStart(message_id=message_id),
        ToolCallStart(tool_call_id=tool_call_id, name=name),
        ToolCallArgsDelta(tool_call_id=tool_call_id, delta=arguments),
        ToolCallEnd(tool_call_id=tool_call_id),
        ApprovalRequested(tool_call_id=tool_call_id, approval_id=approval_id),
        MessageEnd(message_id=message_id),
    ]


def tool_result_reply(
    message_id: str, tool_call_id: str, output, text: str = "",
) -> list[StreamChunk]:
    chunks = [
        MessageStart(message_id=message_id),
        ToolResultEnd(tool_call_id=tool_call_id, output=output),
    ]
    if text:
        chunks.append(TextDelta(delta=text))
    chunks.append(MessageEnd(message_id=message_id))
    return chunks


@pytest.fixture
def engine():
    return ReconciliationEngine()


@pytest.fixture
def transport():
    return ScriptedTransport()


@pytest.fixture
def broken_stream():
    """Factory for scripts that fail partway through a message."""
    def _make(message_id: str, partial: str, error: str = "connection reset"):
        return [
            MessageStart(message_id=message_id),
            TextDelta(delta=partial),
            TransportFailure(error),
        ]
    return _make


@pytest.fixture
def scripts():
    """The chunk script helpers, for tests that build conversations."""
    return SimpleNamespace(
        text=text_reply, gated=gated_tool_call, result=tool_result_reply,
    )
