"""Read-side helpers for displaying tool calls from a snapshot."""

from __future__ import annotations

import json
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Any

from parley.message import Message
from parley.parts import (
    Approval,
    ToolCallPart,
    ToolCallState,
    ToolResultPart,
    ToolResultState,
)


@dataclass(frozen=True)
class ToolCallView:
    """What a renderer needs to draw one tool call and its result.

    ``display_arguments`` is pretty-printed JSON once the input is
    resolved, the raw argument text while it streams (or when it never
    parsed), and empty before any argument arrives.  ``output`` is
    ``None`` until the linked result completes.
    """

    tool_call_id: str
    name: str
    state: ToolCallState
    display_arguments: str
    input: Any
    input_error: str | None
    output: Any
    approval: Approval | None

    @property
    def executing(self) -> bool:
        return self.output is None

    @property
    def awaiting_approval(self) -> bool:
        return self.state is ToolCallState.APPROVAL_REQUESTED

    @classmethod
    def build(cls, part: ToolCallPart, result: ToolResultPart | None) -> ToolCallView:
        if part.input_ready:
            display = json.dumps(part.input, indent=2)
        else:
            display = part.raw_arguments
        return cls(
            tool_call_id=part.id,
            name=part.name,
            state=part.state,
            display_arguments=display,
            input=part.input if part.input_ready else None,
            input_error=part.input_error,
            output=_result_output(result),
            approval=part.approval,
        )


def _result_output(result: ToolResultPart | None) -> Any:
    if result is None or result.state is not ToolResultState.COMPLETE:
        return None
    if result.output is not None:
        return result.output
    try:
        return json.loads(result.content)
    except json.JSONDecodeError:
        return result.content


def tool_call_views(
    messages: Iterable[Message],
    result_for: Callable[[str], ToolResultPart | None],
) -> list[ToolCallView]:
    """Views for every tool call in *messages*, in order.

    Args:
        messages: A snapshot, e.g. ``engine.get_snapshot()``.
        result_for: Result lookup, normally ``engine.result_for``.
    """
    return [
        ToolCallView.build(part, result_for(part.id))
        for message in messages
        for part in message.parts
        if isinstance(part, ToolCallPart)
    ]
