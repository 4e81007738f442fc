from parley.chunks import (
    ApprovalRequested,
    ApprovalResponded,
    ChunkType,
    MessageEnd,
    MessageStart,
    StreamChunk,
    StreamError,
    TextDelta,
    ThinkingDelta,
    ToolCallArgsDelta,
    ToolCallEnd,
    ToolCallStart,
    ToolResultDelta,
    ToolResultEnd,
    ToolResultStart,
    chunk_to_dict,
    parse_chunk,
)
from parley.engine import ReconciliationEngine, ResumeSignal
from parley.errors import (
    Diagnostic,
    DiagnosticKind,
    MalformedArguments,
    ProtocolViolation,
    ReconciliationError,
    StateConflict,
    TransportFailure,
    UnknownApproval,
)
from parley.instrumentation import instrument, uninstrument
from parley.message import Message, MessageRole, MessageStatus
from parley.partial_json import INCOMPLETE, ArgumentAccumulator
from parley.parts import (
    Approval,
    Part,
    PartState,
    TextPart,
    ThinkingPart,
    ToolCallPart,
    ToolCallState,
    ToolResultPart,
    ToolResultState,
)
from parley.session import ChatSession
from parley.transport import ChatRequest, ResumeRequest, SSETransport, Transport
from parley.views import ToolCallView, tool_call_views

__all__ = [
    "ApprovalRequested",
    "ApprovalResponded",
    "ChunkType",
    "MessageEnd",
    "MessageStart",
    "StreamChunk",
    "StreamError",
    "TextDelta",
    "ThinkingDelta",
    "ToolCallArgsDelta",
    "ToolCallEnd",
    "ToolCallStart",
    "ToolResultDelta",
    "ToolResultEnd",
    "ToolResultStart",
    "chunk_to_dict",
    "parse_chunk",
    "ReconciliationEngine",
    "ResumeSignal",
    "Diagnostic",
    "DiagnosticKind",
    "MalformedArguments",
    "ProtocolViolation",
    "ReconciliationError",
    "StateConflict",
    "TransportFailure",
    "UnknownApproval",
    "instrument",
    "uninstrument",
    "Message",
    "MessageRole",
    "MessageStatus",
    "INCOMPLETE",
    "ArgumentAccumulator",
    "Approval",
    "Part",
    "PartState",
    "TextPart",
    "ThinkingPart",
    "ToolCallPart",
    "ToolCallState",
    "ToolResultPart",
    "ToolResultState",
    "ChatSession",
    "ChatRequest",
    "ResumeRequest",
    "SSETransport",
    "Transport",
    "ToolCallView",
    "tool_call_views",
]
