"""Application configuration and settings management."""
from __future__ import annotations

from pathlib import Path
from typing import Literal, Optional

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

MatcherStrategy = Literal["lexical", "llm", "embedding"]


class Settings(BaseSettings):
    """Project-level settings loaded from environment variables/.env."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    openai_api_key: SecretStr = Field(..., alias="OPENAI_API_KEY")
    openai_base_url: str = Field("https://api.openai.com/v1", alias="OPENAI_BASE_URL")
    classification_model: str = Field("gpt-4o-mini", alias="CLASSIFICATION_MODEL")
    transcription_model: str = Field("whisper-1", alias="TRANSCRIPTION_MODEL")
    transcription_language: str = Field("en", alias="TRANSCRIPTION_LANGUAGE")
    embedding_model: str = Field("text-embedding-3-small", alias="EMBEDDING_MODEL")

    telegram_bot_token: Optional[SecretStr] = Field(None, alias="TELEGRAM_BOT_TOKEN")

    data_dir: Path = Field(Path("data"), alias="DATA_DIR")
    log_dir: Path = Field(Path("logs"), alias="LOG_DIR")
    timezone: str = Field("UTC", alias="TIMEZONE")

    matcher_strategy: MatcherStrategy = Field("embedding", alias="MATCHER_STRATEGY")
    lexical_duplicate_threshold: float = Field(0.85, alias="LEXICAL_DUPLICATE_THRESHOLD")
    duplicate_window_days: int = Field(14, alias="DUPLICATE_WINDOW_DAYS")
    target_hint_threshold: float = Field(0.5, alias="TARGET_HINT_THRESHOLD")
    llm_candidate_limit: int = Field(30, alias="LLM_CANDIDATE_LIMIT")
    # The prompt asks for >= 0.7 while matches are accepted from 0.5 up.
    llm_accept_threshold: float = Field(0.5, alias="LLM_ACCEPT_THRESHOLD")
    llm_prompt_threshold: float = Field(0.7, alias="LLM_PROMPT_THRESHOLD")
    embedding_threshold: float = Field(0.75, alias="EMBEDDING_THRESHOLD")
    embedding_cache_ttl_seconds: float = Field(60.0, alias="EMBEDDING_CACHE_TTL_SECONDS")
    embedding_cache_size: int = Field(50, alias="EMBEDDING_CACHE_SIZE")
    embedding_match_thoughts: bool = Field(False, alias="EMBEDDING_MATCH_THOUGHTS")
    completion_timeout_seconds: float = Field(60.0, alias="COMPLETION_TIMEOUT_SECONDS")

    @property
    def snapshot_path(self) -> Path:
        return Path(self.data_dir) / "records.json"

    @property
    def uploads_dir(self) -> Path:
        return Path(self.data_dir) / "uploads"


_SETTINGS: Optional[Settings] = None


def get_settings() -> Settings:
    """Return cached settings instance."""

    global _SETTINGS
    if _SETTINGS is None:
        _SETTINGS = Settings()
    return _SETTINGS


__all__ = ["MatcherStrategy", "Settings", "get_settings"]
