"""Terminal chat client with human-in-the-loop tool approvals.

Demonstrates:
- Building a transport from environment settings
- Rendering text and tool calls as chunks arrive
- Answering approval requests and waiting for the continuation

Usage:
    PARLEY_ENDPOINT_URL=http://localhost:8000/api/chat uv run examples/terminal_chat.py
    uv run --env-file=.env examples/terminal_chat.py --trace
"""

import argparse
import asyncio

from parley.chunks import ChunkType, StreamChunk
from parley.config import ClientSettings, configure_logging
from parley.session import ChatSession
from parley.views import tool_call_views


def setup_tracing(service_name: str):
    from opentelemetry import trace
    from opentelemetry.sdk.resources import SERVICE_NAME, Resource
    from opentelemetry.sdk.trace import TracerProvider
    from opentelemetry.sdk.trace.export import (
        SimpleSpanProcessor, ConsoleSpanExporter,
    )
    from parley.instrumentation import instrument

    provider = TracerProvider(
        resource=Resource({SERVICE_NAME: service_name})
    )
    provider.add_span_processor(SimpleSpanProcessor(ConsoleSpanExporter()))
    trace.set_tracer_provider(provider)
    instrument()


def print_chunk(chunk: StreamChunk):
    if chunk.type is ChunkType.TEXT_DELTA:
        print(chunk.delta, end="", flush=True)
    elif chunk.type is ChunkType.TOOL_CALL_START:
        print(f"\n[calling {chunk.name}]", flush=True)
    elif chunk.type is ChunkType.MESSAGE_END:
        print()


def print_tool_calls(session: ChatSession):
    for view in tool_call_views(session.get_snapshot(), session.engine.result_for):
        status = "awaiting approval" if view.awaiting_approval else view.state.value
        print(f"  {view.name} ({status})")
        print("    " + view.display_arguments.replace("\n", "\n    "))
        if view.output is not None:
            print(f"    -> {view.output}")


async def ask_approvals(session: ChatSession):
    while pending := session.engine.pending_approvals():
        for call in pending:
            answer = input(f"Allow {call.name}({call.raw_arguments})? [y/N] ")
            session.respond_approval(call.approval.id, answer.strip().lower() == "y")
        await session.join()


async def main():
    parser = argparse.ArgumentParser(description="Parley terminal chat")
    parser.add_argument("--trace", action="store_true")
    parser.add_argument("--log-file", default=None)
    args = parser.parse_args()

    settings = ClientSettings.from_env()
    configure_logging(settings.log_level, log_file=args.log_file)
    if args.trace:
        setup_tracing("parley-terminal")

    async with ChatSession(settings.build_transport(), on_chunk=print_chunk) as session:
        print("Parley chat (Ctrl-D to quit)\n")
        while True:
            try:
                user_input = input("You: ")
            except (KeyboardInterrupt, EOFError):
                print("\nGoodbye!")
                break
            if not user_input.strip():
                continue

            await session.submit_user_message(user_input)
            await ask_approvals(session)
            print_tool_calls(session)
            for diagnostic in session.diagnostics:
                print(f"  ! {diagnostic.kind.value}: {diagnostic.message}")


if __name__ == "__main__":
    asyncio.run(main())
