"""Optional OpenTelemetry instrumentation for parley.

Call ``parley.instrument()`` once at startup to enable tracing.
Requires ``opentelemetry-api`` to be installed; the client
works identically without it.
"""

import importlib.util
import logging
from contextlib import asynccontextmanager, contextmanager

logger = logging.getLogger(__name__)

_tracer = None


def instrument(*, tracer_name: str = "parley") -> None:
    """Enable OpenTelemetry tracing for stream reconciliation.

    Call once at startup, after configuring your TracerProvider.
    Requires ``opentelemetry-api``: ``pip install parley[otel]``

    Example::

        from opentelemetry.sdk.trace import TracerProvider
        from opentelemetry import trace

        trace.set_tracer_provider(TracerProvider())

        import parley
        parley.instrument()

    Args:
        tracer_name: Name passed to ``trace.get_tracer()``.

    Raises:
        ImportError: If ``opentelemetry-api`` is not installed.
    """
    global _tracer
    if importlib.util.find_spec("opentelemetry.trace") is None:
        raise ImportError(
            "opentelemetry-api is required for instrumentation. "
            "Install it with: pip install parley[otel]"
        )
    from opentelemetry import trace
    _tracer = trace.get_tracer(tracer_name)
    if isinstance(_tracer, trace.NoOpTracer):
        logger.info(
            "No TracerProvider configured; spans will be "
            "discarded. Set up a TracerProvider to export "
            "traces."
        )
    else:
        logger.info("Parley instrumentation enabled")


def uninstrument() -> None:
    """Disable OpenTelemetry tracing.

    Subsequent operations will not emit spans.
    """
    global _tracer
    _tracer = None


@asynccontextmanager
async def stream_span(conversation_id: str, transport: str):
    """Wrap one inbound stream (a turn or a resume) in a ``chat`` span."""
    if _tracer is None:
        yield None
        return
    from opentelemetry.trace import SpanKind

    with _tracer.start_as_current_span(
        f"chat {conversation_id}",
        kind=SpanKind.CLIENT,
        attributes={
            "gen_ai.operation.name": "chat",
            "gen_ai.conversation.id": conversation_id,
            "parley.transport": transport,
        },
    ) as span:
        yield span


@contextmanager
def chunk_span(chunk_type: str):
    """Wrap the reconciliation of a single chunk."""
    if _tracer is None:
        yield None
        return
    with _tracer.start_as_current_span(
        f"reconcile {chunk_type}",
        attributes={"parley.chunk.type": chunk_type},
    ) as span:
        yield span


@contextmanager
def approval_span(approval_id: str, approved: bool):
    """Wrap a human approval decision."""
    if _tracer is None:
        yield None
        return
    with _tracer.start_as_current_span(
        "respond_approval",
        attributes={
            "parley.approval.id": approval_id,
            "parley.approval.approved": approved,
        },
    ) as span:
        yield span


def record_error(span, exception: BaseException) -> None:
    """Record an exception and set ERROR status on a span.

    Sets ``error.type`` per OTel semantic conventions.
    No-ops when *span* is ``None`` (tracing disabled).
    """
    if span is None:
        return
    from opentelemetry.trace import StatusCode

    span.set_status(StatusCode.ERROR, str(exception))
    span.record_exception(exception)
    span.set_attribute(
        "error.type", type(exception).__qualname__
    )
