from enum import Enum

from pydantic import BaseModel, Field, field_serializer

from parley.parts import Part, TextPart, ThinkingPart, PartState


class MessageRole(Enum):
    USER = "user"
    ASSISTANT = "assistant"


class MessageStatus(Enum):
    STREAMING = "streaming"
    COMPLETE = "complete"
    ERROR = "error"


class Message(BaseModel):
    """An ordered run of parts under one role.

    Parts are only ever appended.  ``error`` is set when the stream that
    produced this message terminated abnormally; the parts received up to
    that point are kept.
    """

    id: str
    role: MessageRole
    parts: list[Part] = Field(default_factory=list)
    status: MessageStatus = MessageStatus.STREAMING
    error: str | None = None

    @field_serializer('role')
    def serialize_role(self, role: MessageRole, _info) -> str:
        return role.value

    @field_serializer('status')
    def serialize_status(self, status: MessageStatus, _info) -> str:
        return status.value

    @property
    def is_open(self) -> bool:
        return self.status is MessageStatus.STREAMING

    @property
    def text(self) -> str:
        """Concatenated content of the text parts."""
        return "".join(p.content for p in self.parts if isinstance(p, TextPart))

    def close(self, status: MessageStatus, error: str | None = None) -> None:
        self.status = status
        self.error = error
        for part in self.parts:
            if isinstance(part, (TextPart, ThinkingPart)):
                part.state = PartState.DONE
