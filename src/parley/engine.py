"""The stream-reconciliation engine.

:class:`ReconciliationEngine` consumes one :class:`~parley.chunks.StreamChunk`
at a time and maintains the conversation's messages and parts.  Chunks
are applied strictly in arrival order; an approval decision from a human
is the only other writer and is serialized against chunk processing with
the same lock.
"""

from __future__ import annotations

import json
import logging
import threading
import uuid
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Any

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
)
from parley.correlator import Correlator
from parley.errors import (
    Diagnostic,
    MalformedArguments,
    ProtocolViolation,
    ReconciliationError,
    StateConflict,
    TransportFailure,
    UnknownApproval,
)
from parley.instrumentation import approval_span, chunk_span, record_error
from parley.message import Message, MessageRole, MessageStatus
from parley.partial_json import INCOMPLETE, ArgumentAccumulator
from parley.parts import (
    Approval,
    PartState,
    TextPart,
    ThinkingPart,
    ToolCallPart,
    ToolCallState,
    ToolResultPart,
    ToolResultState,
    result_part_id,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResumeSignal:
    """Outbound notice that a gated tool call was decided."""

    approval_id: str
    tool_call_id: str
    approved: bool


def _new_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:12]}"


class ReconciliationEngine:
    """Builds an append-only conversation model from stream chunks.

    Recoverable problems (:class:`ProtocolViolation`,
    :class:`MalformedArguments`, :class:`StateConflict`) never abort
    processing: the offending chunk is dropped or partially applied,
    a warning is logged, and a :class:`Diagnostic` is kept.

    Args:
        on_resume: Called with a :class:`ResumeSignal` after each local
            approval decision.  Runs outside the engine lock and must
            not block.
    """

    def __init__(self, on_resume: Callable[[ResumeSignal], None] | None = None):
        self.on_resume = on_resume
        self._lock = threading.RLock()
        self._messages: list[Message] = []
        self._by_id: dict[str, Message] = {}
        self._open: Message | None = None
        self._owners: dict[str, Message] = {}
        self._parts: dict[str, Any] = {}
        self._correlator = Correlator()
        self._arguments: dict[str, ArgumentAccumulator] = {}
        self._authoritative: dict[str, Any] = {}
        self._diagnostics: list[Diagnostic] = []
        self._handlers: dict[ChunkType, Callable[[Any], None]] = {
            ChunkType.MESSAGE_START: self._on_message_start,
            ChunkType.TEXT_DELTA: self._on_text_delta,
            ChunkType.THINKING_DELTA: self._on_thinking_delta,
            ChunkType.TOOL_CALL_START: self._on_tool_call_start,
            ChunkType.TOOL_CALL_ARGS_DELTA: self._on_tool_call_args_delta,
            ChunkType.TOOL_CALL_END: self._on_tool_call_end,
            ChunkType.TOOL_RESULT_START: self._on_tool_result_start,
            ChunkType.TOOL_RESULT_DELTA: self._on_tool_result_delta,
            ChunkType.TOOL_RESULT_END: self._on_tool_result_end,
            ChunkType.APPROVAL_REQUESTED: self._on_approval_requested,
            ChunkType.APPROVAL_RESPONDED: self._on_approval_responded,
            ChunkType.MESSAGE_END: self._on_message_end,
            ChunkType.STREAM_ERROR: self._on_stream_error,
        }

    # ------------------------------------------------------------------
    # Write interface
    # ------------------------------------------------------------------

    def process(self, chunk: StreamChunk) -> None:
        """Apply one chunk to the model."""
        handler = self._handlers[chunk.type]
        with self._lock, chunk_span(chunk.type.value) as span:
            try:
                handler(chunk)
            except (ProtocolViolation, MalformedArguments, StateConflict) as e:
                record_error(span, e)
                self._record(e)

    def process_all(self, chunks: Iterable[StreamChunk]) -> None:
        for chunk in chunks:
            self.process(chunk)

    def submit_user_message(self, text: str, message_id: str | None = None) -> Message:
        """Append a closed human message and return a copy of it.

        Raises:
            ValueError: If *text* is empty after trimming.
            ProtocolViolation: If an assistant message is still streaming.
        """
        if not text.strip():
            raise ValueError("message text must not be empty")
        with self._lock:
            if self._open is not None:
                raise ProtocolViolation(
                    f"cannot submit while message {self._open.id} is streaming",
                    message_id=self._open.id,
                )
            message_id = message_id or _new_id("user")
            if message_id in self._by_id:
                raise ProtocolViolation(
                    f"message {message_id} already exists", message_id=message_id,
                )
            message = Message(
                id=message_id,
                role=MessageRole.USER,
                status=MessageStatus.COMPLETE,
            )
            self._add_message(message)
            self._append_part(message, TextPart(
                id=f"{message_id}:0", content=text, state=PartState.DONE,
            ))
            return message.model_copy(deep=True)

    def respond_approval(self, approval_id: str, approved: bool) -> ResumeSignal:
        """Record a human decision on a pending approval.

        Raises:
            UnknownApproval: If no tool call is waiting on *approval_id*.
                Nothing is mutated in that case.
        """
        with self._lock, approval_span(approval_id, approved) as span:
            part = self._correlator.call_for_approval(approval_id)
            if part is None or part.state is not ToolCallState.APPROVAL_REQUESTED:
                error = UnknownApproval(
                    f"no pending approval with id {approval_id}",
                    tool_call_id=part.id if part is not None else None,
                )
                record_error(span, error)
                raise error
            part.approval.approved = approved
            part.advance(ToolCallState.APPROVAL_RESPONDED)
            signal = ResumeSignal(
                approval_id=approval_id, tool_call_id=part.id, approved=approved,
            )
        logger.info(
            f"Approval {approval_id} for {part.name or part.id}: "
            f"{'approved' if approved else 'denied'}"
        )
        if self.on_resume is not None:
            self.on_resume(signal)
        return signal

    def cancel(self, reason: str = "cancelled") -> None:
        """Finalize the open message as errored, e.g. on session teardown."""
        with self._lock:
            if self._open is not None:
                self._fail(self._open, reason)

    # ------------------------------------------------------------------
    # Read interface
    # ------------------------------------------------------------------

    def get_snapshot(self) -> tuple[Message, ...]:
        """Deep copies of every message, in creation order."""
        with self._lock:
            return tuple(m.model_copy(deep=True) for m in self._messages)

    def is_streaming(self) -> bool:
        with self._lock:
            return self._open is not None

    @property
    def diagnostics(self) -> tuple[Diagnostic, ...]:
        with self._lock:
            return tuple(self._diagnostics)

    def resolved_input(self, tool_call_id: str) -> Any:
        """Best current argument value for a call.

        The authoritative input from ``TOOL_CALL_END`` wins whenever one
        was seen; otherwise the streamed fragments are parsed, which may
        give :data:`~parley.partial_json.INCOMPLETE`.
        """
        with self._lock:
            return self._resolve(tool_call_id)

    def result_for(self, tool_call_id: str) -> ToolResultPart | None:
        with self._lock:
            part = self._correlator.result_for(tool_call_id)
            return part.model_copy(deep=True) if part is not None else None

    def approval_for(self, tool_call_id: str) -> Approval | None:
        with self._lock:
            approval = self._correlator.approval_for(tool_call_id)
            return approval.model_copy() if approval is not None else None

    def pending_approvals(self) -> list[ToolCallPart]:
        with self._lock:
            return [p.model_copy(deep=True) for p in self._correlator.pending_approvals()]

    def unlinked_results(self) -> list[str]:
        """Tool-call ids whose result arrived but whose call has not."""
        with self._lock:
            return self._correlator.orphan_results()

    # ------------------------------------------------------------------
    # Messages and parts
    # ------------------------------------------------------------------

    def _record(self, error: ReconciliationError) -> None:
        logger.warning(f"{type(error).__name__}: {error}")
        self._diagnostics.append(Diagnostic.from_error(error))

    def _add_message(self, message: Message) -> None:
        self._messages.append(message)
        self._by_id[message.id] = message

    def _start(self, message_id: str, role: MessageRole) -> Message:
        if self._open is not None:
            stale = self._open
            stale.close(MessageStatus.COMPLETE)
            self._open = None
            self._record(ProtocolViolation(
                f"message {stale.id} was still open when {message_id} started",
                message_id=stale.id,
            ))
        message = Message(id=message_id, role=role)
        self._add_message(message)
        self._open = message
        return message

    def _target(self, message_id: str | None) -> Message:
        """Message a content chunk applies to, opening one when needed."""
        if message_id is None:
            if self._open is not None:
                return self._open
            message_id = _new_id("msg")
        message = self._by_id.get(message_id)
        if message is None:
            logger.debug(f"Implicitly starting message {message_id}")
            return self._start(message_id, MessageRole.ASSISTANT)
        if not message.is_open:
            raise ProtocolViolation(
                f"message {message_id} is closed", message_id=message_id,
            )
        return message

    def _append_part(self, message: Message, part) -> None:
        if message.parts:
            last = message.parts[-1]
            if isinstance(last, (TextPart, ThinkingPart)):
                last.state = PartState.DONE
        message.parts.append(part)
        self._owners[part.id] = message
        self._parts[part.id] = part

    def _append_content(
        self, chunk: TextDelta | ThinkingDelta, part_type: type[TextPart] | type[ThinkingPart],
    ) -> None:
        message = self._target(chunk.message_id)
        if chunk.part_id is not None:
            part = self._find_part(message, chunk.part_id, part_type)
            if part is None:
                part = part_type(id=chunk.part_id)
                self._append_part(message, part)
        else:
            last = message.parts[-1] if message.parts else None
            if isinstance(last, part_type) and last.state is PartState.STREAMING:
                part = last
            else:
                part = part_type(id=f"{message.id}:{len(message.parts)}")
                self._append_part(message, part)
        part.content += chunk.delta

    def _find_part(self, message: Message, part_id: str, part_type):
        owner = self._owners.get(part_id)
        if owner is None:
            return None
        part = self._parts[part_id]
        if owner is not message or not isinstance(part, part_type):
            raise ProtocolViolation(
                f"part {part_id} is not a {part_type.__name__} of message {message.id}",
                message_id=message.id,
            )
        if part.state is PartState.DONE:
            raise ProtocolViolation(
                f"part {part_id} is already complete", message_id=message.id,
            )
        return part

    def _fail(self, message: Message, error: str) -> None:
        message.close(MessageStatus.ERROR, error)
        if self._open is message:
            self._open = None
        self._record(TransportFailure(error, message_id=message.id))

    # ------------------------------------------------------------------
    # Tool calls
    # ------------------------------------------------------------------

    def _mutable_call(self, tool_call_id: str) -> ToolCallPart:
        part = self._correlator.call_for(tool_call_id)
        if part is None:
            raise ProtocolViolation(
                f"unknown tool call {tool_call_id}", tool_call_id=tool_call_id,
            )
        owner = self._owners[part.id]
        if not owner.is_open:
            raise ProtocolViolation(
                f"tool call {tool_call_id} belongs to closed message {owner.id}",
                message_id=owner.id, tool_call_id=tool_call_id,
            )
        return part

    def _resolve(self, tool_call_id: str) -> Any:
        if tool_call_id in self._authoritative:
            return self._authoritative[tool_call_id]
        accumulator = self._arguments.get(tool_call_id)
        if accumulator is None:
            return INCOMPLETE
        return accumulator.try_parse()

    def _result(self, tool_call_id: str, message_id: str | None) -> ToolResultPart:
        part = self._correlator.result_for(tool_call_id)
        if part is not None:
            owner = self._owners[part.id]
            if not owner.is_open:
                raise ProtocolViolation(
                    f"result for {tool_call_id} belongs to closed message {owner.id}",
                    message_id=owner.id, tool_call_id=tool_call_id,
                )
            return part
        message = self._target(message_id)
        part = ToolResultPart(id=result_part_id(tool_call_id), tool_call_id=tool_call_id)
        self._append_part(message, part)
        self._correlator.register_result(part)
        if tool_call_id not in self._correlator:
            logger.debug(f"Result for {tool_call_id} arrived before its call")
        return part

    # ------------------------------------------------------------------
    # Chunk handlers
    # ------------------------------------------------------------------

    def _on_message_start(self, chunk: MessageStart) -> None:
        existing = self._by_id.get(chunk.message_id)
        if existing is not None:
            if existing.is_open:
                return
            raise ProtocolViolation(
                f"message {chunk.message_id} is closed and cannot be reopened",
                message_id=chunk.message_id,
            )
        self._start(chunk.message_id, chunk.role)

    def _on_text_delta(self, chunk: TextDelta) -> None:
        self._append_content(chunk, TextPart)

    def _on_thinking_delta(self, chunk: ThinkingDelta) -> None:
        self._append_content(chunk, ThinkingPart)

    def _on_tool_call_start(self, chunk: ToolCallStart) -> None:
        if chunk.tool_call_id in self._correlator:
            raise ProtocolViolation(
                f"duplicate tool call id {chunk.tool_call_id}",
                tool_call_id=chunk.tool_call_id,
            )
        message = self._target(chunk.message_id)
        part = ToolCallPart(id=chunk.tool_call_id, name=chunk.name)
        self._append_part(message, part)
        self._correlator.register_call(part)
        self._arguments[part.id] = ArgumentAccumulator()

    def _on_tool_call_args_delta(self, chunk: ToolCallArgsDelta) -> None:
        part = self._mutable_call(chunk.tool_call_id)
        if part.state is not ToolCallState.STREAMING:
            raise ProtocolViolation(
                f"tool call {part.id} is {part.state.value} and takes no more arguments",
                tool_call_id=part.id,
            )
        accumulator = self._arguments[part.id]
        accumulator.feed(chunk.delta)
        part.raw_arguments = accumulator.text

    def _on_tool_call_end(self, chunk: ToolCallEnd) -> None:
        part = self._mutable_call(chunk.tool_call_id)
        if chunk.input is not None:
            self._authoritative[part.id] = chunk.input
        if part.state is not ToolCallState.STREAMING:
            # committed input is final; a late value only updates the slot
            logger.debug(f"Repeated end for tool call {part.id}")
            return
        value = self._resolve(part.id)
        if value is INCOMPLETE:
            part.input_error = f"arguments for {part.name or part.id} are not valid JSON"
            raise MalformedArguments(
                part.input_error,
                message_id=self._owners[part.id].id, tool_call_id=part.id,
            )
        part.input = value
        part.input_error = None
        part.advance(ToolCallState.INPUT_COMPLETE)

    def _on_tool_result_start(self, chunk: ToolResultStart) -> None:
        part = self._result(chunk.tool_call_id, chunk.message_id)
        if part.state is ToolResultState.COMPLETE:
            raise ProtocolViolation(
                f"result for {chunk.tool_call_id} is already complete",
                tool_call_id=chunk.tool_call_id,
            )

    def _on_tool_result_delta(self, chunk: ToolResultDelta) -> None:
        part = self._result(chunk.tool_call_id, chunk.message_id)
        if part.state is ToolResultState.COMPLETE:
            raise ProtocolViolation(
                f"result for {chunk.tool_call_id} is already complete",
                tool_call_id=chunk.tool_call_id,
            )
        part.content += chunk.delta

    def _on_tool_result_end(self, chunk: ToolResultEnd) -> None:
        part = self._result(chunk.tool_call_id, chunk.message_id)
        if part.state is ToolResultState.COMPLETE:
            logger.debug(f"Repeated end for result {chunk.tool_call_id}")
            return
        if chunk.output is not None:
            part.output = chunk.output
            if not part.content:
                part.content = (
                    chunk.output if isinstance(chunk.output, str)
                    else json.dumps(chunk.output)
                )
        part.state = ToolResultState.COMPLETE

    def _on_approval_requested(self, chunk: ApprovalRequested) -> None:
        part = self._correlator.call_for(chunk.tool_call_id)
        if part is None:
            raise ProtocolViolation(
                f"approval {chunk.approval_id} requested for unknown tool call "
                f"{chunk.tool_call_id}",
                tool_call_id=chunk.tool_call_id,
            )
        if (
            part.state is ToolCallState.APPROVAL_REQUESTED
            and part.approval.id == chunk.approval_id
        ):
            return
        if part.state is not ToolCallState.INPUT_COMPLETE:
            raise ProtocolViolation(
                f"approval {chunk.approval_id} requested while tool call "
                f"{part.id} is {part.state.value}",
                tool_call_id=part.id,
            )
        part.approval = Approval(id=chunk.approval_id)
        part.advance(ToolCallState.APPROVAL_REQUESTED)
        self._correlator.register_approval(chunk.approval_id, part)

    def _on_approval_responded(self, chunk: ApprovalResponded) -> None:
        part = self._correlator.call_for_approval(chunk.approval_id)
        if part is None:
            raise ProtocolViolation(
                f"server confirmed unknown approval {chunk.approval_id}",
                tool_call_id=chunk.tool_call_id,
            )
        if part.state is ToolCallState.APPROVAL_REQUESTED:
            part.approval.approved = chunk.approved
            part.advance(ToolCallState.APPROVAL_RESPONDED)
            return
        local = part.approval.approved
        if local == chunk.approved:
            return
        # The server's recorded decision is the one that executed.
        part.approval.approved = chunk.approved
        raise StateConflict(
            f"approval {chunk.approval_id}: local decision {local} replaced by "
            f"server decision {chunk.approved}",
            message_id=self._owners[part.id].id, tool_call_id=part.id,
        )

    def _on_message_end(self, chunk: MessageEnd) -> None:
        if chunk.message_id is None:
            message = self._open
            if message is None:
                return
        else:
            message = self._by_id.get(chunk.message_id)
            if message is None:
                raise ProtocolViolation(
                    f"end of unknown message {chunk.message_id}",
                    message_id=chunk.message_id,
                )
        if not message.is_open:
            return
        message.close(MessageStatus.COMPLETE)
        self._open = None

    def _on_stream_error(self, chunk: StreamError) -> None:
        if chunk.message_id is not None:
            message = self._by_id.get(chunk.message_id)
        else:
            message = self._open
        if message is None or not message.is_open:
            self._record(TransportFailure(
                f"stream error with no open message: {chunk.error}",
                message_id=chunk.message_id,
            ))
            return
        logger.warning(f"Message {message.id} ended with error: {chunk.error}")
        self._fail(message, chunk.error)
