"""Error taxonomy for stream reconciliation.

Recoverable errors (:class:`ProtocolViolation`, :class:`MalformedArguments`,
:class:`StateConflict`) are caught by the engine, logged, and kept as
:class:`Diagnostic` entries so a renderer can show a degraded view.
:class:`UnknownApproval` is raised to the caller.  :class:`TransportFailure`
is raised by transports and turned into a stream error by the session.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class ReconciliationError(Exception):
    """Base for every error raised while reconciling a stream.

    Args:
        message: Human readable description.
        message_id: Message the offending chunk targeted, if known.
        tool_call_id: Tool call the offending chunk targeted, if known.
    """

    def __init__(
        self,
        message: str,
        message_id: str | None = None,
        tool_call_id: str | None = None,
    ):
        super().__init__(message)
        self.message_id = message_id
        self.tool_call_id = tool_call_id


class ProtocolViolation(ReconciliationError):
    """A chunk references an id or state that does not exist or is out of
    sequence.  The chunk is dropped and the stream continues."""


class MalformedArguments(ReconciliationError):
    """Accumulated tool-call arguments never became valid JSON."""


class StateConflict(ReconciliationError):
    """The server's approval echo disagrees with the local decision."""


class UnknownApproval(ReconciliationError):
    """No pending approval matches the id a caller responded to."""


class TransportFailure(ReconciliationError):
    """The inbound stream terminated abnormally."""


class DiagnosticKind(Enum):
    PROTOCOL_VIOLATION = "protocol_violation"
    MALFORMED_ARGUMENTS = "malformed_arguments"
    STATE_CONFLICT = "state_conflict"
    TRANSPORT_FAILURE = "transport_failure"


_KINDS: dict[type[ReconciliationError], DiagnosticKind] = {
    ProtocolViolation: DiagnosticKind.PROTOCOL_VIOLATION,
    MalformedArguments: DiagnosticKind.MALFORMED_ARGUMENTS,
    StateConflict: DiagnosticKind.STATE_CONFLICT,
    TransportFailure: DiagnosticKind.TRANSPORT_FAILURE,
}


@dataclass(frozen=True)
class Diagnostic:
    """A recorded, non-fatal reconciliation problem."""

    kind: DiagnosticKind
    message: str
    message_id: str | None = None
    tool_call_id: str | None = None

    @classmethod
    def from_error(cls, error: ReconciliationError) -> Diagnostic:
        for error_type, kind in _KINDS.items():
            if isinstance(error, error_type):
                return cls(
                    kind=kind,
                    message=str(error),
                    message_id=error.message_id,
                    tool_call_id=error.tool_call_id,
                )
        raise TypeError(f"{type(error).__name__} is not recorded as a diagnostic")
