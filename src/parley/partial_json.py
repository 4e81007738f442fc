"""Best-effort JSON reduction for streamed tool-call arguments.

Argument text arrives in arbitrary fragments.  :class:`ArgumentAccumulator`
concatenates them and parses on demand; an unparseable buffer is reported
as :data:`INCOMPLETE` rather than raised, since mid-stream the buffer is
usually an unterminated object.
"""

from __future__ import annotations

import json
from typing import Any


class _Incomplete:
    """Sentinel type for "no value yet"."""

    _instance: _Incomplete | None = None

    def __new__(cls) -> _Incomplete:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "INCOMPLETE"

    def __bool__(self) -> bool:
        return False


INCOMPLETE = _Incomplete()


class ArgumentAccumulator:
    """Buffers argument fragments for a single tool call."""

    def __init__(self) -> None:
        self._buffer = ""

    def feed(self, fragment: str) -> None:
        if fragment:
            self._buffer += fragment

    @property
    def text(self) -> str:
        return self._buffer

    def try_parse(self) -> Any:
        """Parse the buffer, or return :data:`INCOMPLETE`.

        ``json.loads`` is strict, so a valid prefix such as ``{"a": 1``
        stays incomplete until the closing brace lands.
        """
        buffer = self.text
        if not buffer.strip():
            return INCOMPLETE
        try:
            return json.loads(buffer)
        except json.JSONDecodeError:
            return INCOMPLETE
