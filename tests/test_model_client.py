"""Tests for the pydantic-ai streaming model client."""

from collections.abc import AsyncIterator

import httpx
import pytest
from pydantic_ai.messages import (
    ImageUrl,
    ModelMessage,
    ModelRequest,
    ModelResponse,
    SystemPromptPart,
    TextPart,
    UserPromptPart,
)
from pydantic_ai.models.function import AgentInfo, FunctionModel

from docchat.application.exceptions import ModelUnavailable
from docchat.infrastructure.model_client import PydanticAIModelClient, to_model_messages
from docchat.domain.models import PromptMessage


def _prompt() -> list[PromptMessage]:
    return [
        PromptMessage(role="system", content="guideline"),
        PromptMessage(role="system", content="Context:\n[1] text"),
        PromptMessage(role="user", content="earlier question"),
        PromptMessage(role="assistant", content="earlier answer"),
        PromptMessage(role="user", content="new question"),
    ]


class TestToModelMessages:
    def test_groups_requests_around_responses(self):
        converted = to_model_messages(_prompt())

        assert [type(m) for m in converted] == [ModelRequest, ModelResponse, ModelRequest]
        first = converted[0]
        assert [type(p) for p in first.parts] == [SystemPromptPart, SystemPromptPart, UserPromptPart]
        assert converted[1].parts == [TextPart(content="earlier answer")]
        assert converted[2].parts[0].content == "new question"

    def test_images_become_image_urls(self):
        converted = to_model_messages(
            [PromptMessage(role="user", content="look", images=["https://x/a.png"])]
        )
        content = converted[0].parts[0].content
        assert content[0] == "look"
        assert content[1] == ImageUrl(url="https://x/a.png")

    def test_last_message_must_be_user(self):
        with pytest.raises(ValueError):
            to_model_messages([PromptMessage(role="system", content="guideline")])


class TestStreaming:
    async def test_yields_each_increment_in_order(self):
        seen: list[list[ModelMessage]] = []

        async def stream_fn(messages: list[ModelMessage], info: AgentInfo) -> AsyncIterator[str]:
            seen.append(messages)
            yield "Hel"
            yield "lo"

        client = PydanticAIModelClient(FunctionModel(stream_function=stream_fn))

        increments = [d async for d in client.stream(_prompt())]

        assert increments == ["Hel", "lo"]
        assert len(seen) == 1
        assert isinstance(seen[0][-1], ModelRequest)

    async def test_failure_before_output(self):
        async def stream_fn(messages: list[ModelMessage], info: AgentInfo) -> AsyncIterator[str]:
            raise httpx.ConnectError("refused")
            yield  # pragma: no cover

        client = PydanticAIModelClient(FunctionModel(stream_function=stream_fn))

        with pytest.raises(ModelUnavailable) as exc_info:
            [d async for d in client.stream(_prompt())]
        assert exc_info.value.partial is False

    async def test_failure_mid_stream_is_partial(self):
        async def stream_fn(messages: list[ModelMessage], info: AgentInfo) -> AsyncIterator[str]:
            yield "Hel"
            raise httpx.ReadTimeout("stalled")

        client = PydanticAIModelClient(FunctionModel(stream_function=stream_fn))
        received: list[str] = []

        with pytest.raises(ModelUnavailable) as exc_info:
            async for delta in client.stream(_prompt()):
                received.append(delta)

        assert received == ["Hel"]
        assert exc_info.value.partial is True
