"""Displayable fragments of a message.

A :data:`Part` is one of :class:`TextPart`, :class:`ThinkingPart`,
:class:`ToolCallPart` or :class:`ToolResultPart`, discriminated by ``kind``.
"""

from __future__ import annotations

from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field

from parley.errors import ProtocolViolation


class PartState(Enum):
    STREAMING = "streaming"
    DONE = "done"


class ToolCallState(Enum):
    """Lifecycle of a tool call.  Members are declared in transition order."""

    STREAMING = "input-streaming"
    INPUT_COMPLETE = "input-complete"
    APPROVAL_REQUESTED = "approval-requested"
    APPROVAL_RESPONDED = "approval-responded"

    @property
    def rank(self) -> int:
        return _TOOL_CALL_ORDER.index(self)


_TOOL_CALL_ORDER = list(ToolCallState)


class ToolResultState(Enum):
    STREAMING = "streaming"
    COMPLETE = "complete"


class TextPart(BaseModel):
    kind: Literal["text"] = "text"
    id: str
    content: str = ""
    state: PartState = PartState.STREAMING


class ThinkingPart(BaseModel):
    """Intermediate reasoning, shown apart from the answer text."""

    kind: Literal["thinking"] = "thinking"
    id: str
    content: str = ""
    state: PartState = PartState.STREAMING


class Approval(BaseModel):
    """Human-consent record attached to a gated tool call.

    ``approved`` stays ``None`` until a decision is made locally or
    echoed by the server.
    """

    id: str
    approved: bool | None = None


class ToolCallPart(BaseModel):
    kind: Literal["tool-call"] = "tool-call"
    id: str
    name: str = ""
    raw_arguments: str = ""
    state: ToolCallState = ToolCallState.STREAMING
    input: Any = None
    input_error: str | None = None
    approval: Approval | None = None

    def advance(self, state: ToolCallState) -> None:
        """Move forward to *state*; regressions raise ProtocolViolation."""
        if state.rank < self.state.rank:
            raise ProtocolViolation(
                f"tool call {self.id} cannot move from "
                f"{self.state.value} back to {state.value}",
                tool_call_id=self.id,
            )
        self.state = state

    @property
    def input_ready(self) -> bool:
        return self.state.rank >= ToolCallState.INPUT_COMPLETE.rank


class ToolResultPart(BaseModel):
    kind: Literal["tool-result"] = "tool-result"
    id: str
    tool_call_id: str
    state: ToolResultState = ToolResultState.STREAMING
    content: str = ""
    output: Any = None


Part = Annotated[
    Union[TextPart, ThinkingPart, ToolCallPart, ToolResultPart],
    Field(discriminator="kind"),
]


def result_part_id(tool_call_id: str) -> str:
    return f"{tool_call_id}:result"
