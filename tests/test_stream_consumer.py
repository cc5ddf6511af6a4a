"""Tests for the client-side chat stream consumer."""

import asyncio
import json
import re

import httpx
import pytest

from docchat.client import ChatStreamConsumer, generate_session_id
from docchat.domain.models import (
    DoneEvent,
    ErrorEvent,
    RetrievedPassage,
    SourcesEvent,
    TextEvent,
)

PROJECT = "p1"


def _frame(event) -> str:
    return f"data: {event.to_json()}\n\n"


def _sources() -> SourcesEvent:
    return SourcesEvent.from_passages(
        [RetrievedPassage(id="src-0", name="refunds.pdf", page_content="Refunds within 30 days.", score=0.91)]
    )


def _body(*events) -> bytes:
    return "".join(_frame(e) for e in events).encode()


class ChunkedStream(httpx.AsyncByteStream):
    """Serves body chunks; after ``block_after`` chunks, waits on ``gate`` (forever if unset)."""

    def __init__(
        self,
        chunks: list[bytes],
        block_after: int | None = None,
        gate: asyncio.Event | None = None,
    ) -> None:
        self.chunks = chunks
        self.block_after = block_after
        self.gate = gate
        self.closes = 0

    async def _wait(self) -> None:
        await (self.gate or asyncio.Event()).wait()

    async def __aiter__(self):
        for i, chunk in enumerate(self.chunks):
            if self.block_after is not None and i == self.block_after:
                await self._wait()
            yield chunk
        if self.block_after is not None and self.block_after >= len(self.chunks):
            await self._wait()

    async def aclose(self) -> None:
        self.closes += 1


class Backend:
    """MockTransport handler serving one queued stream per request."""

    def __init__(self, *responses) -> None:
        self.responses = list(responses)
        self.requests: list[dict] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(json.loads(request.content))
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        if isinstance(response, ChunkedStream):
            return httpx.Response(200, headers={"content-type": "text/event-stream"}, stream=response)
        return response


def _consumer(backend: Backend, **kwargs) -> ChatStreamConsumer:
    client = httpx.AsyncClient(transport=httpx.MockTransport(backend), base_url="http://test")
    return ChatStreamConsumer(client, PROJECT, **kwargs)


def _split(data: bytes, size: int) -> list[bytes]:
    return [data[i : i + size] for i in range(0, len(data), size)]


class TestSessionId:
    def test_format(self):
        assert re.fullmatch(r"session_\d+_[a-z0-9]{9}", generate_session_id())

    def test_unique(self):
        assert generate_session_id() != generate_session_id()


class TestSuccessfulStream:
    async def test_builds_assistant_turn_from_increments(self):
        stream = ChunkedStream([_body(_sources(), TextEvent(content="Hel"), TextEvent(content="lo"), DoneEvent())])
        backend = Backend(stream)
        snapshots: list[str] = []
        consumer = _consumer(backend, on_update=lambda c: snapshots.append(c.streaming_content))

        await consumer.send_message("  What is the refund policy?  ", context_style="concise")

        assert [m.role for m in consumer.messages] == ["user", "assistant"]
        assert consumer.messages[0].content == "What is the refund policy?"
        assistant = consumer.messages[1]
        assert assistant.content == "Hello"
        assert assistant.metadata["sources"][0]["name"] == "refunds.pdf"
        assert "timestamp" in assistant.metadata
        assert "Hel" in snapshots and "Hello" in snapshots
        assert consumer.is_loading is False
        assert consumer.streaming_content == ""
        assert consumer.sources == []
        assert consumer.error is None
        assert stream.closes == 1

        sent = backend.requests[0]
        assert sent["message"] == "What is the refund policy?"
        assert sent["contextStyle"] == "concise"
        assert sent["sessionId"].startswith("session_")

    async def test_handles_chunk_boundaries_inside_lines_and_characters(self):
        body = _body(_sources(), TextEvent(content="héllo wörld"), DoneEvent())
        stream = ChunkedStream(_split(body, 7))
        consumer = _consumer(Backend(stream))

        await consumer.send_message("hi")

        assert consumer.messages[-1].content == "héllo wörld"
        assert stream.closes == 1

    async def test_malformed_and_unknown_lines_are_skipped(self):
        body = (
            b"data: {not json}\n\n"
            b'data: {"type": "bogus", "content": ""}\n\n'
            b": keep-alive comment\n\n"
            + _body(TextEvent(content="ok"), DoneEvent())
        )
        consumer = _consumer(Backend(ChunkedStream([body])))

        await consumer.send_message("hi")

        assert consumer.messages[-1].content == "ok"

    async def test_images_are_sent_and_kept_on_user_turn(self):
        backend = Backend(ChunkedStream([_body(DoneEvent())]))
        consumer = _consumer(backend)

        await consumer.send_message("what is this?", images=["https://x/a.png"])

        assert backend.requests[0]["images"] == ["https://x/a.png"]
        assert consumer.messages[0].metadata == {"images": ["https://x/a.png"]}

    async def test_blank_message_is_ignored(self):
        backend = Backend()
        consumer = _consumer(backend)

        await consumer.send_message("   ")

        assert consumer.messages == []
        assert backend.requests == []


class TestFailures:
    async def test_error_event_sets_error_without_assistant_turn(self):
        stream = ChunkedStream(
            [_body(_sources(), TextEvent(content="Hel"), ErrorEvent(content="The response was interrupted"))]
        )
        consumer = _consumer(Backend(stream))

        await consumer.send_message("hi")

        assert [m.role for m in consumer.messages] == ["user"]
        assert consumer.error == "The response was interrupted"
        assert consumer.is_loading is False
        assert consumer.streaming_content == ""
        assert stream.closes == 1

    async def test_exhaustion_without_terminal_event(self):
        stream = ChunkedStream([_body(_sources(), TextEvent(content="Hel"))])
        consumer = _consumer(Backend(stream))

        await consumer.send_message("hi")

        assert [m.role for m in consumer.messages] == ["user"]
        assert consumer.error
        assert consumer.is_loading is False
        assert stream.closes == 1

    async def test_non_2xx_status(self):
        consumer = _consumer(Backend(httpx.Response(500, json={"detail": "boom"})))

        await consumer.send_message("hi")

        assert consumer.error == "HTTP error! status: 500"
        assert consumer.is_loading is False

    async def test_network_error_is_friendly(self):
        consumer = _consumer(Backend(httpx.ConnectError("refused")))

        await consumer.send_message("hi")

        assert consumer.error.startswith("Network error")

    async def test_timeout_is_friendly(self):
        consumer = _consumer(Backend(httpx.ReadTimeout("slow")))

        await consumer.send_message("hi")

        assert consumer.error == "Request timed out. Please try again."


class TestCancellation:
    async def test_stop_after_sources_leaves_no_assistant_turn(self):
        stream = ChunkedStream([_body(_sources()), _body(TextEvent(content="late"), DoneEvent())], block_after=1)
        got_sources = asyncio.Event()

        def on_update(c: ChatStreamConsumer) -> None:
            if c.sources:
                got_sources.set()

        consumer = _consumer(Backend(stream), on_update=on_update)

        task = asyncio.create_task(consumer.send_message("hi"))
        await got_sources.wait()
        consumer.stop_streaming()

        with pytest.raises(asyncio.CancelledError):
            await task

        assert [m.role for m in consumer.messages] == ["user"]
        assert consumer.error is None
        assert consumer.is_loading is False
        assert consumer.streaming_content == ""
        assert stream.closes == 1

    async def test_resend_right_after_stop_is_unaffected_by_the_aborted_stream(self):
        first = ChunkedStream([_body(_sources()), _body(TextEvent(content="stale"), DoneEvent())], block_after=1)
        gate = asyncio.Event()
        second = ChunkedStream(
            [_body(_sources()), _body(TextEvent(content="fresh"), DoneEvent())], block_after=1, gate=gate
        )
        backend = Backend(first, second)
        first_sources = asyncio.Event()
        second_sources = asyncio.Event()

        def on_update(c: ChatStreamConsumer) -> None:
            if c.sources:
                (second_sources if len(c.messages) == 2 else first_sources).set()

        consumer = _consumer(backend, on_update=on_update)
        seen_mid_stream: dict = {}

        async def inspect_second_stream() -> None:
            await second_sources.wait()
            seen_mid_stream["is_loading"] = consumer.is_loading
            await consumer.send_message("third")
            gate.set()

        aborted = asyncio.create_task(consumer.send_message("first"))
        await first_sources.wait()
        inspector = asyncio.create_task(inspect_second_stream())

        consumer.stop_streaming()
        await consumer.send_message("second")

        with pytest.raises(asyncio.CancelledError):
            await aborted
        await inspector

        assert seen_mid_stream["is_loading"] is True
        assert len(backend.requests) == 2
        assert [(m.role, m.content) for m in consumer.messages] == [
            ("user", "first"),
            ("user", "second"),
            ("assistant", "fresh"),
        ]
        assert consumer.is_loading is False
        assert consumer.error is None
        assert first.closes == 1
        assert second.closes == 1

    def test_stop_without_stream_is_harmless(self):
        consumer = _consumer(Backend())
        consumer.stop_streaming()
        assert consumer.is_loading is False


class TestRetryAndClear:
    async def test_retry_after_error_resends_verbatim(self):
        backend = Backend(
            ChunkedStream([_body(_sources(), ErrorEvent(content="The language model is unavailable"))]),
            ChunkedStream([_body(_sources(), TextEvent(content="Hello"), DoneEvent())]),
        )
        consumer = _consumer(backend)

        await consumer.send_message("What is the refund policy?", images=["https://x/a.png"])
        assert consumer.error

        await consumer.retry_last_message()

        assert backend.requests[1]["message"] == backend.requests[0]["message"]
        assert backend.requests[1]["images"] == ["https://x/a.png"]
        assert [m.role for m in consumer.messages] == ["user", "assistant"]
        assert consumer.messages[1].content == "Hello"
        assert consumer.error is None

    async def test_retry_replaces_stale_answer(self):
        backend = Backend(
            ChunkedStream([_body(TextEvent(content="first"), DoneEvent())]),
            ChunkedStream([_body(TextEvent(content="second"), DoneEvent())]),
        )
        consumer = _consumer(backend)

        await consumer.send_message("question")
        await consumer.retry_last_message()

        assert [(m.role, m.content) for m in consumer.messages] == [
            ("user", "question"),
            ("assistant", "second"),
        ]

    async def test_retry_without_user_turn_does_nothing(self):
        backend = Backend()
        consumer = _consumer(backend)
        await consumer.retry_last_message()
        assert backend.requests == []

    async def test_clear_messages(self):
        consumer = _consumer(Backend(ChunkedStream([_body(TextEvent(content="x"), DoneEvent())])))
        await consumer.send_message("hi")

        consumer.clear_messages()

        assert consumer.messages == []
        assert consumer.error is None
