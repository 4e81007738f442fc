"""A conversation: one engine fed by one transport."""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import AsyncIterator, Callable

from parley.chunks import StreamChunk, StreamError
from parley.engine import ReconciliationEngine, ResumeSignal
from parley.errors import Diagnostic, TransportFailure
from parley.instrumentation import record_error, stream_span
from parley.message import Message
from parley.transport import ChatRequest, ResumeRequest, Transport

logger = logging.getLogger(__name__)


class ChatSession:
    """Wires a :class:`ReconciliationEngine` to a :class:`Transport`.

    Inbound streams (a submitted turn, or the continuation after an
    approval) are drained one at a time.  Approval decisions may come
    from any thread; the continuation runs as a background task on the
    session's event loop.

    Args:
        transport: Source of inbound chunks.
        conversation_id: Sent with every request; generated if omitted.
        on_chunk: Called after each chunk is applied, e.g. to redraw.
    """

    def __init__(
        self,
        transport: Transport,
        conversation_id: str | None = None,
        on_chunk: Callable[[StreamChunk], None] | None = None,
    ):
        self.transport = transport
        self.conversation_id = conversation_id or f"conv-{uuid.uuid4().hex[:12]}"
        self.on_chunk = on_chunk
        self.engine = ReconciliationEngine(on_resume=self._schedule_resume)
        self._stream_lock = asyncio.Lock()
        self._loop: asyncio.AbstractEventLoop | None = None
        self._tasks: set[asyncio.Task] = set()

    async def __aenter__(self) -> ChatSession:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    def get_snapshot(self) -> tuple[Message, ...]:
        return self.engine.get_snapshot()

    def is_streaming(self) -> bool:
        return self.engine.is_streaming()

    @property
    def diagnostics(self) -> tuple[Diagnostic, ...]:
        return self.engine.diagnostics

    async def submit_user_message(self, text: str) -> Message:
        """Append *text* as a user message and stream the reply.

        Raises:
            ValueError: If *text* is empty after trimming.
        """
        if not text.strip():
            raise ValueError("message text must not be empty")
        self._loop = asyncio.get_running_loop()
        async with self._stream_lock:
            message = self.engine.submit_user_message(text)
            request = ChatRequest(
                conversation_id=self.conversation_id,
                messages=list(self.engine.get_snapshot()),
            )
            await self._drain(self.transport.stream(request))
        return message

    def respond_approval(self, approval_id: str, approved: bool) -> ResumeSignal:
        """Decide a pending approval; the continuation streams in the background.

        Raises:
            UnknownApproval: If nothing is waiting on *approval_id*.
        """
        return self.engine.respond_approval(approval_id, approved)

    async def join(self) -> None:
        """Wait for every scheduled continuation to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def aclose(self) -> None:
        """Cancel continuations and finalize any message still streaming."""
        for task in list(self._tasks):
            task.cancel()
        await asyncio.gather(*list(self._tasks), return_exceptions=True)
        self.engine.cancel("session closed")
        aclose = getattr(self.transport, "aclose", None)
        if aclose is not None:
            await aclose()

    # ------------------------------------------------------------------

    async def _drain(self, chunks: AsyncIterator[StreamChunk]) -> None:
        async with stream_span(self.conversation_id, self.transport.name) as span:
            try:
                async for chunk in chunks:
                    self.engine.process(chunk)
                    if self.on_chunk is not None:
                        self.on_chunk(chunk)
            except TransportFailure as e:
                record_error(span, e)
                logger.error(f"Transport failed for {self.conversation_id}: {e}")
                self.engine.process(StreamError(error=str(e)))
                return
            except asyncio.CancelledError:
                self.engine.cancel("cancelled")
                raise
            except Exception as e:
                record_error(span, e)
                self.engine.process(StreamError(error=f"{type(e).__name__}: {e}"))
                raise
        if self.engine.is_streaming():
            self.engine.process(StreamError(error="stream ended before the message completed"))

    def _schedule_resume(self, signal: ResumeSignal) -> None:
        request = ResumeRequest(
            conversation_id=self.conversation_id,
            approval_id=signal.approval_id,
            tool_call_id=signal.tool_call_id,
            approved=signal.approved,
        )
        if self._loop is None:
            raise RuntimeError("session has not streamed yet; nothing to resume")
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is self._loop:
            self._track(self._loop.create_task(self._resume(request)))
        else:
            self._loop.call_soon_threadsafe(
                lambda: self._track(self._loop.create_task(self._resume(request)))
            )

    def _track(self, task: asyncio.Task) -> None:
        self._tasks.add(task)
        task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(
                f"Resume stream for {self.conversation_id} failed: {task.exception()}"
            )

    async def _resume(self, request: ResumeRequest) -> None:
        async with self._stream_lock:
            await self._drain(self.transport.resume(request))
