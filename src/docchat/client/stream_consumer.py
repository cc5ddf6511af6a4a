"""Async consumer for the project chat stream.

Keeps the local conversation state a chat UI renders from: the message
list, a loading flag, the in-progress assistant text, the current sources,
and the last error.  Bytes arrive over ``httpx``; each ``data:`` line is
parsed into one stream event and dispatched.
"""

from __future__ import annotations

import asyncio
import random
import string
import time
from collections.abc import Callable, Sequence

import httpx
import pydantic
from loguru import logger

from docchat.domain.models import (
    ChatTurn,
    DoneEvent,
    ErrorEvent,
    ImageEvent,
    ResponseStyle,
    RetrievedPassage,
    SourcesEvent,
    StreamEvent,
    TextEvent,
    parse_stream_event,
    utcnow,
)

DATA_PREFIX = "data: "
GENERIC_SEND_ERROR = "An error occurred while sending your message"

_ID_ALPHABET = string.ascii_lowercase + string.digits


def generate_session_id() -> str:
    """Return an id like ``session_1718000000000_k3j9x0a2b``."""
    suffix = "".join(random.choices(_ID_ALPHABET, k=9))
    return f"session_{int(time.time() * 1000)}_{suffix}"


class StreamHTTPError(Exception):
    """The stream endpoint answered with a non-2xx status."""

    def __init__(self, status_code: int) -> None:
        super().__init__(f"HTTP error! status: {status_code}")
        self.status_code = status_code


def _friendly_error(exc: Exception) -> str:
    if isinstance(exc, httpx.TimeoutException):
        return "Request timed out. Please try again."
    if isinstance(exc, httpx.NetworkError):
        return "Network error. Please check your connection and try again."
    return str(exc) or GENERIC_SEND_ERROR


class ChatStreamConsumer:
    """Client-side state machine for one project's chat.

    Parameters
    ----------
    client:
        An ``httpx.AsyncClient`` whose ``base_url`` (and auth headers) point
        at the backend.
    project_id:
        Project whose stream endpoint is called.
    initial_messages:
        Previously persisted turns to start from.
    on_update:
        Called with the consumer after every state change, e.g. to re-render.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        project_id: str,
        *,
        initial_messages: Sequence[ChatTurn] = (),
        on_update: Callable[[ChatStreamConsumer], None] | None = None,
    ) -> None:
        self.client = client
        self.project_id = project_id
        self.on_update = on_update

        self.messages: list[ChatTurn] = list(initial_messages)
        self.is_loading = False
        self.streaming_content = ""
        self.sources: list[RetrievedPassage] = []
        self.error: str | None = None

        self._task: asyncio.Task | None = None

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    async def send_message(
        self,
        content: str,
        *,
        context_style: ResponseStyle | str = ResponseStyle.DETAILED,
        images: Sequence[str] | None = None,
    ) -> None:
        """Append a user turn and stream the assistant's answer.

        A no-op when *content* is blank or a stream is already in flight.
        If the stream is stopped, ``asyncio.CancelledError`` propagates to
        the caller after the state has been cleared.
        """
        text = content.strip()
        if not text or self.is_loading:
            return

        image_urls = list(images or [])
        self.messages.append(
            ChatTurn(
                id=f"{generate_session_id()}_user",
                role="user",
                content=text,
                project_id=self.project_id,
                metadata={"images": image_urls} if image_urls else {},
            )
        )
        self.is_loading = True
        self.streaming_content = ""
        self.sources = []
        self.error = None
        self._notify()

        task = asyncio.current_task()
        self._task = task
        try:
            await self._consume(text, ResponseStyle(context_style), image_urls)
        except asyncio.CancelledError:
            logger.info("Chat stream aborted | project={}", self.project_id)
            # A newer send_message may already own the state.
            if self._task is task:
                self._finish()
            raise
        except Exception as exc:
            logger.exception("Error in chat stream | project={}", self.project_id)
            if self._task is task:
                self._finish(error=_friendly_error(exc))
        finally:
            if self._task is task:
                self._task = None

    def stop_streaming(self) -> None:
        """Abort the in-flight stream, if any, without recording an error."""
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._finish()

    async def retry_last_message(self) -> None:
        """Resend the most recent user turn.

        Assistant turns created after it are dropped first, and the user
        turn itself is removed because ``send_message`` appends it again.
        """
        if self.is_loading:
            return
        last_user = next((m for m in reversed(self.messages) if m.role == "user"), None)
        if last_user is None:
            return

        self.messages = [
            m
            for m in self.messages
            if m is not last_user
            and not (m.role == "assistant" and m.created_at > last_user.created_at)
        ]
        self.error = None
        await self.send_message(last_user.content, images=last_user.metadata.get("images"))

    def clear_messages(self) -> None:
        self.messages = []
        self.streaming_content = ""
        self.sources = []
        self.error = None
        self._notify()

    # ------------------------------------------------------------------
    # Stream handling
    # ------------------------------------------------------------------

    async def _consume(self, text: str, style: ResponseStyle, images: list[str]) -> None:
        payload = {
            "message": text,
            "sessionId": generate_session_id(),
            "contextStyle": style.value,
            "images": images,
        }
        url = f"/projects/{self.project_id}/chat/stream"
        async with self.client.stream("POST", url, json=payload) as response:
            if response.is_error:
                raise StreamHTTPError(response.status_code)

            released = False

            async def release() -> None:
                nonlocal released
                if not released:
                    released = True
                    await response.aclose()

            accumulated = ""
            try:
                async for line in response.aiter_lines():
                    event = self._parse_line(line)
                    if event is None:
                        continue

                    match event:
                        case SourcesEvent():
                            self.sources = event.passages()
                            self._notify()
                        case TextEvent(content=delta):
                            accumulated += delta
                            self.streaming_content = accumulated
                            self._notify()
                        case ImageEvent():
                            logger.debug("Received image event | project={}", self.project_id)
                        case DoneEvent():
                            self._complete(accumulated)
                            await release()
                            return
                        case ErrorEvent(content=message):
                            self._finish(error=message)
                            await release()
                            return

                logger.warning("Chat stream ended without a terminal event | project={}", self.project_id)
                self._finish(error="The response stream ended unexpectedly")
            finally:
                await release()

    def _parse_line(self, line: str) -> StreamEvent | None:
        if not line.startswith(DATA_PREFIX):
            return None
        raw = line[len(DATA_PREFIX):].strip()
        if not raw:
            return None
        try:
            event = parse_stream_event(raw)
            if isinstance(event, SourcesEvent):
                event.passages()
        except pydantic.ValidationError:
            logger.warning("Skipping malformed stream event | line={!r}", line[:120])
            return None
        return event

    def _complete(self, content: str) -> None:
        finished_at = utcnow()
        self.messages.append(
            ChatTurn(
                id=f"{generate_session_id()}_assistant",
                role="assistant",
                content=content,
                created_at=finished_at,
                project_id=self.project_id,
                metadata={
                    "sources": [s.to_wire() for s in self.sources],
                    "timestamp": finished_at.isoformat(),
                },
            )
        )
        self.is_loading = False
        self.streaming_content = ""
        self.sources = []
        self._notify()

    def _finish(self, error: str | None = None) -> None:
        self.is_loading = False
        self.streaming_content = ""
        self.error = error
        self._notify()

    def _notify(self) -> None:
        if self.on_update is not None:
            self.on_update(self)
