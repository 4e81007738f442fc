"""Id-keyed back-references between tool calls, results and approvals."""

from __future__ import annotations

import logging

from parley.parts import Approval, ToolCallPart, ToolCallState, ToolResultPart

logger = logging.getLogger(__name__)


class Correlator:
    """Incremental index over a conversation's tool parts.

    Entries are added as parts are created, so every lookup is a dict
    access.  The index holds references only; parts belong to their
    :class:`~parley.message.Message`.
    """

    def __init__(self) -> None:
        self._calls: dict[str, ToolCallPart] = {}
        self._results: dict[str, ToolResultPart] = {}
        self._approvals: dict[str, ToolCallPart] = {}
        self._orphans: set[str] = set()

    def register_call(self, part: ToolCallPart) -> None:
        self._calls[part.id] = part
        if part.id in self._orphans:
            self._orphans.discard(part.id)
            logger.debug(f"Linked early result to tool call {part.id}")

    def register_result(self, part: ToolResultPart) -> None:
        self._results[part.tool_call_id] = part
        if part.tool_call_id not in self._calls:
            self._orphans.add(part.tool_call_id)

    def register_approval(self, approval_id: str, part: ToolCallPart) -> None:
        self._approvals[approval_id] = part

    def call_for(self, tool_call_id: str) -> ToolCallPart | None:
        return self._calls.get(tool_call_id)

    def result_for(self, tool_call_id: str) -> ToolResultPart | None:
        return self._results.get(tool_call_id)

    def approval_for(self, tool_call_id: str) -> Approval | None:
        part = self._calls.get(tool_call_id)
        return part.approval if part is not None else None

    def call_for_approval(self, approval_id: str) -> ToolCallPart | None:
        return self._approvals.get(approval_id)

    def pending_approvals(self) -> list[ToolCallPart]:
        """Calls awaiting a human decision, in request order."""
        return [
            part for part in self._approvals.values()
            if part.state is ToolCallState.APPROVAL_REQUESTED
        ]

    def orphan_results(self) -> list[str]:
        """Tool-call ids that have a result but no call yet."""
        return sorted(self._orphans)

    def __contains__(self, tool_call_id: str) -> bool:
        return tool_call_id in self._calls
