"""Typed stream chunks and their JSON wire form.

Each chunk kind is its own dataclass; ``type`` is a class-level
:class:`ChunkType`.  Identifiers that a chunk may omit (``message_id`` on
content chunks, ``part_id`` on deltas) default to ``None``, which the
engine reads as "the open message" / "the current part".
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from enum import Enum
from typing import Any, ClassVar

from pydantic import TypeAdapter, ValidationError

from parley.errors import ProtocolViolation
from parley.message import MessageRole


class ChunkType(Enum):
    MESSAGE_START = "MESSAGE_START"
    TEXT_DELTA = "TEXT_DELTA"
    THINKING_DELTA = "THINKING_DELTA"
    TOOL_CALL_START = "TOOL_CALL_START"
    TOOL_CALL_ARGS_DELTA = "TOOL_CALL_ARGS_DELTA"
    TOOL_CALL_END = "TOOL_CALL_END"
    TOOL_RESULT_START = "TOOL_RESULT_START"
    TOOL_RESULT_DELTA = "TOOL_RESULT_DELTA"
    TOOL_RESULT_END = "TOOL_RESULT_END"
    APPROVAL_REQUESTED = "APPROVAL_REQUESTED"
    APPROVAL_RESPONDED = "APPROVAL_RESPONDED"
    MESSAGE_END = "MESSAGE_END"
    STREAM_ERROR = "STREAM_ERROR"


@dataclass
class StreamChunk:
    """Base for all inbound chunks."""

    type: ClassVar[ChunkType]


@dataclass
class MessageStart(StreamChunk):
    type: ClassVar[ChunkType] = ChunkType.MESSAGE_START

    message_id: str
    role: MessageRole = MessageRole.ASSISTANT


@dataclass
class TextDelta(StreamChunk):
    type: ClassVar[ChunkType] = ChunkType.TEXT_DELTA

    delta: str
    message_id: str | None = None
    part_id: str | None = None


@dataclass
class ThinkingDelta(StreamChunk):
    type: ClassVar[ChunkType] = ChunkType.THINKING_DELTA

    delta: str
    message_id: str | None = None
    part_id: str | None = None


@dataclass
class ToolCallStart(StreamChunk):
    type: ClassVar[ChunkType] = ChunkType.TOOL_CALL_START

    tool_call_id: str
    name: str = ""
    message_id: str | None = None


@dataclass
class ToolCallArgsDelta(StreamChunk):
    type: ClassVar[ChunkType] = ChunkType.TOOL_CALL_ARGS_DELTA

    tool_call_id: str
    delta: str
    message_id: str | None = None


@dataclass
class ToolCallEnd(StreamChunk):
    """Terminal chunk for a call's arguments.

    ``input`` is the authoritative, already-parsed argument value sent by
    backends that do not stream argument tokens.  ``None`` means absent.
    """

    type: ClassVar[ChunkType] = ChunkType.TOOL_CALL_END

    tool_call_id: str
    input: Any = None
    message_id: str | None = None


@dataclass
class ToolResultStart(StreamChunk):
    type: ClassVar[ChunkType] = ChunkType.TOOL_RESULT_START

    tool_call_id: str
    message_id: str | None = None


@dataclass
class ToolResultDelta(StreamChunk):
    type: ClassVar[ChunkType] = ChunkType.TOOL_RESULT_DELTA

    tool_call_id: str
    delta: str
    message_id: str | None = None


@dataclass
class ToolResultEnd(StreamChunk):
    type: ClassVar[ChunkType] = ChunkType.TOOL_RESULT_END

    tool_call_id: str
    output: Any = None
    message_id: str | None = None


@dataclass
class ApprovalRequested(StreamChunk):
    type: ClassVar[ChunkType] = ChunkType.APPROVAL_REQUESTED

    tool_call_id: str
    approval_id: str
    message_id: str | None = None


@dataclass
class ApprovalResponded(StreamChunk):
    """Server echo of a recorded approval decision."""

    type: ClassVar[ChunkType] = ChunkType.APPROVAL_RESPONDED

    approval_id: str
    approved: bool
    tool_call_id: str | None = None
    message_id: str | None = None


@dataclass
class MessageEnd(StreamChunk):
    type: ClassVar[ChunkType] = ChunkType.MESSAGE_END

    message_id: str | None = None
    finish_reason: str | None = None


@dataclass
class StreamError(StreamChunk):
    type: ClassVar[ChunkType] = ChunkType.STREAM_ERROR

    error: str
    message_id: str | None = None


CHUNK_CLASSES: dict[ChunkType, type[StreamChunk]] = {
    cls.type: cls
    for cls in (
        MessageStart, TextDelta, ThinkingDelta,
        ToolCallStart, ToolCallArgsDelta, ToolCallEnd,
        ToolResultStart, ToolResultDelta, ToolResultEnd,
        ApprovalRequested, ApprovalResponded,
        MessageEnd, StreamError,
    )
}

_ADAPTERS: dict[ChunkType, TypeAdapter] = {
    chunk_type: TypeAdapter(cls) for chunk_type, cls in CHUNK_CLASSES.items()
}

# snake_case field -> camelCase wire key
_WIRE_NAMES = {
    "message_id": "messageId",
    "part_id": "partId",
    "tool_call_id": "toolCallId",
    "approval_id": "approvalId",
    "finish_reason": "finishReason",
    "name": "toolName",
}

# Alternate wire keys accepted on decode
_WIRE_ALIASES = {
    "delta": ("content",),
}


def _wire_name(field_name: str) -> str:
    return _WIRE_NAMES.get(field_name, field_name)


def _wire_ids(data: dict[str, Any]) -> dict[str, str | None]:
    ids = {"message_id": data.get("messageId"), "tool_call_id": data.get("toolCallId")}
    return {k: v if isinstance(v, str) else None for k, v in ids.items()}


def parse_chunk(data: dict[str, Any]) -> StreamChunk:
    """Decode one JSON chunk object into its dataclass.

    Raises:
        ProtocolViolation: If ``type`` is unknown, a required field is
            missing or has the wrong type, or ``role`` is not a known role.
    """
    raw_type = data.get("type")
    try:
        chunk_type = ChunkType(raw_type)
    except ValueError:
        raise ProtocolViolation(f"unknown chunk type: {raw_type!r}") from None
    cls = CHUNK_CLASSES[chunk_type]

    kwargs: dict[str, Any] = {}
    for f in dataclasses.fields(cls):
        keys = (_wire_name(f.name), *_WIRE_ALIASES.get(f.name, ()))
        for key in keys:
            if key in data:
                kwargs[f.name] = data[key]
                break
        else:
            if (
                f.default is dataclasses.MISSING
                and f.default_factory is dataclasses.MISSING
            ):
                raise ProtocolViolation(
                    f"{chunk_type.value} chunk is missing {_wire_name(f.name)!r}",
                    **_wire_ids(data),
                )

    if "role" in kwargs:
        try:
            kwargs["role"] = MessageRole(kwargs["role"])
        except ValueError:
            raise ProtocolViolation(
                f"unknown role: {kwargs['role']!r}",
                message_id=_wire_ids(data)["message_id"],
            ) from None
    try:
        return _ADAPTERS[chunk_type].validate_python(kwargs)
    except ValidationError as e:
        fields = ", ".join(
            _wire_name(str(err["loc"][0])) if err["loc"] else "?" for err in e.errors()
        )
        raise ProtocolViolation(
            f"{chunk_type.value} chunk has invalid {fields}",
            **_wire_ids(data),
        ) from None


def chunk_to_dict(chunk: StreamChunk) -> dict[str, Any]:
    """Encode a chunk as its JSON wire object, omitting ``None`` fields."""
    data: dict[str, Any] = {"type": chunk.type.value}
    for f in dataclasses.fields(chunk):
        value = getattr(chunk, f.name)
        if value is None:
            continue
        if isinstance(value, MessageRole):
            value = value.value
        data[_wire_name(f.name)] = value
    return data
