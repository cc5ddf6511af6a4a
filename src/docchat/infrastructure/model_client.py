"""Streaming chat completion through pydantic-ai.

Prompt messages are converted into pydantic-ai message objects and sent
with the direct model-request API, so the conversation reaches the model
exactly as composed (no agent-level system prompt or tool loop).
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Sequence

import httpx
from loguru import logger
from openai import AsyncAzureOpenAI, OpenAIError
from pydantic_ai.direct import model_request_stream
from pydantic_ai.exceptions import AgentRunError
from pydantic_ai.messages import (
    ImageUrl,
    ModelMessage,
    ModelRequest,
    ModelRequestPart,
    ModelResponse,
    ModelResponseStreamEvent,
    PartDeltaEvent,
    PartStartEvent,
    SystemPromptPart,
    TextPart,
    TextPartDelta,
    UserPromptPart,
)
from pydantic_ai.models import Model
from pydantic_ai.models.openai import OpenAIChatModel
from pydantic_ai.providers.openai import OpenAIProvider
from pydantic_ai.settings import ModelSettings

from docchat.application.exceptions import ModelUnavailable
from docchat.config import Settings
from docchat.domain.models import PromptMessage

_MODEL_ERRORS = (AgentRunError, OpenAIError, httpx.HTTPError, TimeoutError)


def to_model_messages(messages: Sequence[PromptMessage]) -> list[ModelMessage]:
    """Convert composed prompt messages into pydantic-ai request/response objects.

    Consecutive system/user messages share one ``ModelRequest``; each
    assistant message becomes a ``ModelResponse``.
    """
    if not messages or messages[-1].role != "user":
        raise ValueError("the last prompt message must be a user message")

    converted: list[ModelMessage] = []
    pending: list[ModelRequestPart] = []
    for msg in messages:
        if msg.role == "system":
            pending.append(SystemPromptPart(content=msg.content))
        elif msg.role == "user":
            if msg.images:
                pending.append(
                    UserPromptPart(content=[msg.content, *(ImageUrl(url=u) for u in msg.images)])
                )
            else:
                pending.append(UserPromptPart(content=msg.content))
        else:
            if pending:
                converted.append(ModelRequest(parts=pending))
                pending = []
            converted.append(ModelResponse(parts=[TextPart(content=msg.content)]))
    converted.append(ModelRequest(parts=pending))
    return converted


def _text_delta(event: ModelResponseStreamEvent) -> str:
    if isinstance(event, PartStartEvent) and isinstance(event.part, TextPart):
        return event.part.content
    if isinstance(event, PartDeltaEvent) and isinstance(event.delta, TextPartDelta):
        return event.delta.content_delta
    return ""


class PydanticAIModelClient:
    """Yields text increments in the order the model produces them.

    Parameters
    ----------
    model:
        Any pydantic-ai ``Model`` (OpenAI in production, ``FunctionModel`` in tests).
    model_settings:
        Sampling parameters forwarded on every request.
    """

    def __init__(self, model: Model, model_settings: ModelSettings | None = None) -> None:
        self.model = model
        self.model_settings = model_settings

    @classmethod
    def from_settings(cls, settings: Settings, *, instrument: bool = False) -> PydanticAIModelClient:
        client = AsyncAzureOpenAI(
            api_key=settings.azure_openai_api_key,
            azure_endpoint=settings.azure_openai_endpoint,
            api_version=settings.azure_openai_api_version,
            timeout=settings.model_timeout_seconds,
            max_retries=0,
        )
        model: Model = OpenAIChatModel(
            settings.azure_openai_chat_deployment,
            provider=OpenAIProvider(openai_client=client),
        )
        if instrument:
            from pydantic_ai.models.instrumented import InstrumentedModel

            model = InstrumentedModel(model)
        return cls(
            model,
            ModelSettings(
                temperature=settings.model_temperature,
                max_tokens=settings.model_max_tokens,
            ),
        )

    async def stream(self, messages: list[PromptMessage]) -> AsyncIterator[str]:
        """Stream the completion for *messages*.

        Raises:
            ModelUnavailable: If the model call fails; ``partial`` tells
                whether any increment was already yielded.
        """
        request = to_model_messages(messages)
        produced = False
        try:
            async with model_request_stream(
                self.model, request, model_settings=self.model_settings
            ) as response:
                async for event in response:
                    delta = _text_delta(event)
                    if delta:
                        produced = True
                        yield delta
        except _MODEL_ERRORS as exc:
            logger.warning("Model call failed | partial={} error={!r}", produced, exc)
            if produced:
                raise ModelUnavailable(
                    "The response was interrupted by a model error", partial=True
                ) from exc
            raise ModelUnavailable("The language model is unavailable") from exc
