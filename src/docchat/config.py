"""Runtime settings, read from the environment and an optional ``.env`` file."""

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_DATA_DIR = Path.cwd() / "database"


class Settings(BaseSettings):
    """Backend configuration.

    Secrets are only checked by ``validate_runtime()``, so tests can build
    an instance with ``_env_file=None`` and no credentials at all.
    """

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # -- Chat completions (Azure OpenAI deployment) --------------------------
    azure_openai_api_key: str = ""
    azure_openai_endpoint: str = ""
    azure_openai_api_version: str = "2025-01-01-preview"
    azure_openai_chat_deployment: str = "gpt-4o"
    model_temperature: float = 0.7
    model_max_tokens: int = 5000
    # Upper bound for one whole streamed answer.
    model_timeout_seconds: float = 120.0

    # -- Query embeddings; unset values reuse the chat deployment's ---------
    azure_openai_embedding_endpoint: str | None = None
    azure_openai_embedding_api_version: str | None = None
    azure_openai_embedding_api_key: str | None = None
    azure_openai_embedding_deployment: str = "text-embedding-3-small"
    embedding_dimensions: int = 1536

    # -- Grounding policy ---------------------------------------------------
    retrieval_k: int = Field(default=4, ge=1)
    similarity_threshold: float = Field(default=0.75, ge=0.0, le=1.0)
    history_window: int = Field(default=6, ge=0)
    retrieval_timeout_seconds: float = 30.0

    # -- SQLite files -------------------------------------------------------
    vector_db_path: Path = _DATA_DIR / "vectors.sqlite"
    chat_db_path: Path = _DATA_DIR / "chat_history.sqlite"

    # -- JWT auth (AUTH_ENABLED=false serves every request as a dev user) ---
    auth_enabled: bool = True
    jwt_secret: str = "dev-secret-change-in-production!!"
    jwt_expiry_hours: int = 24
    open_registration: bool = False

    # -- Tracing and logs ---------------------------------------------------
    observability: Literal["off", "logfire", "otel"] = "off"
    otel_service_name: str = "docchat-backend"
    otel_exporter_otlp_endpoint: str = "http://localhost:4318"
    otel_console_exporter: bool = False
    log_level: str = "INFO"
    log_json: bool = False

    @model_validator(mode="after")
    def _reuse_chat_credentials_for_embeddings(self) -> "Settings":
        self.azure_openai_embedding_endpoint = (
            self.azure_openai_embedding_endpoint or self.azure_openai_endpoint
        )
        self.azure_openai_embedding_api_version = (
            self.azure_openai_embedding_api_version or self.azure_openai_api_version
        )
        self.azure_openai_embedding_api_key = (
            self.azure_openai_embedding_api_key or self.azure_openai_api_key
        )
        return self

    def validate_runtime(self) -> None:
        """Fail fast at startup when the model backends cannot be reached.

        Raises:
            ValueError: Naming the first missing setting.
        """
        missing = [
            name
            for name, value in (
                ("AZURE_OPENAI_API_KEY", self.azure_openai_api_key),
                ("AZURE_OPENAI_ENDPOINT", self.azure_openai_endpoint),
                ("AZURE_OPENAI_EMBEDDING_ENDPOINT", self.azure_openai_embedding_endpoint),
            )
            if not value
        ]
        if missing:
            raise ValueError(f"{missing[0]} is not set; add it to the environment or .env")


@lru_cache
def get_settings() -> Settings:
    """Return the process-wide Settings instance."""
    return Settings()
