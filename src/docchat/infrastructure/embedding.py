"""Query embedding via an Azure OpenAI embedding deployment."""

from __future__ import annotations

from openai import AsyncAzureOpenAI

from docchat.config import Settings


class OpenAIEmbeddingService:
    """Async embedding client for single queries."""

    def __init__(
        self,
        client: AsyncAzureOpenAI,
        deployment: str,
        dimensions: int = 1536,
    ) -> None:
        self.client = client
        self.deployment = deployment
        self._dimensions = dimensions

    @classmethod
    def from_settings(cls, settings: Settings) -> OpenAIEmbeddingService:
        # No SDK-level retries: a failed lookup is reported to the caller as-is.
        client = AsyncAzureOpenAI(
            api_key=settings.azure_openai_embedding_api_key,
            azure_endpoint=settings.azure_openai_embedding_endpoint,
            api_version=settings.azure_openai_embedding_api_version,
            timeout=settings.retrieval_timeout_seconds,
            max_retries=0,
        )
        return cls(
            client=client,
            deployment=settings.azure_openai_embedding_deployment,
            dimensions=settings.embedding_dimensions,
        )

    @property
    def dimension(self) -> int:
        return self._dimensions

    async def embed_query(self, text: str) -> list[float]:
        """Generate an embedding vector for a query string."""
        response = await self.client.embeddings.create(
            input=text,
            model=self.deployment,
            dimensions=self._dimensions,
        )
        return [float(x) for x in response.data[0].embedding]

    async def close(self) -> None:
        await self.client.close()
