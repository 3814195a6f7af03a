"""Application settings loaded from environment variables."""

import os
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _env_file() -> str | None:
    if os.getenv("PYTEST_CURRENT_TEST"):
        return None
    return ".env"


class Settings(BaseSettings):
    """threadmem configuration. All values come from environment variables."""

    # Database
    database_path: Path = Field(default=Path("data/threadmem.db"))

    # Embeddings (OpenAI-compatible /embeddings endpoint)
    embedding_api_url: str = Field(default="https://api.openai.com/v1")
    embedding_api_key: str = Field(default="")
    embedding_model: str = Field(default="text-embedding-3-small")
    embedding_timeout_s: float = Field(default=20.0)

    # Anthropic (thread title generation)
    anthropic_api_key: str = Field(default="")
    title_model: str = Field(default="claude-haiku-4-5")

    # Logging
    log_level: str = Field(default="INFO")

    model_config = SettingsConfigDict(env_file=_env_file(), env_file_encoding="utf-8")

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        if os.getenv("PYTEST_CURRENT_TEST"):
            return (init_settings,)
        return (init_settings, env_settings, dotenv_settings, file_secret_settings)

    @property
    def embeddings_enabled(self) -> bool:
        return bool(self.embedding_api_key.strip())


settings = Settings()
