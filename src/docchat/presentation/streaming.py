"""Server-Sent Events framing for the chat stream."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import aclosing

from docchat.domain.models import StreamEvent

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def encode_event(event: StreamEvent) -> str:
    """Frame one event as ``data: <json>`` followed by a blank line."""
    return f"data: {event.to_json()}\n\n"


async def sse_frames(events: AsyncIterator[StreamEvent]) -> AsyncIterator[str]:
    """Frame every event; closing this generator closes *events* too."""
    async with aclosing(events) as source:
        async for event in source:
            yield encode_event(event)
