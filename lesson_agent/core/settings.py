from pathlib import Path
from typing import Literal, Optional

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from lesson_agent.domain.retrieval.models import RetrievalConfig


PROJECT_ROOT = Path(__file__).resolve().parents[2]
ROOT_ENV = PROJECT_ROOT / ".env"
ROOT_ENV_LOCAL = PROJECT_ROOT / ".env.local"


class Settings(BaseSettings):
    """
    Lesson Plan Agent - Global Configuration Registry
    Centralizes all environment variables using Pydantic Settings.
    """

    model_config = SettingsConfigDict(
        env_file=(str(ROOT_ENV), str(ROOT_ENV_LOCAL)),
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
    )

    APP_ENV: str = "development"

    # Chat completion (OpenAI-compatible endpoint)
    LLM_API_KEY: str = ""
    LLM_BASE_URL: str = "https://api.deepseek.com/v1"
    LLM_MODEL: str = "deepseek-chat"
    LLM_TEMPERATURE: float = 0.7
    LLM_MAX_TOKENS: int = 4096
    LLM_MAX_RETRIES: int = 3
    LLM_TIMEOUT_SECONDS: float = 120.0

    # Embeddings (OpenAI-compatible endpoint)
    EMBEDDING_API_KEY: str = ""
    EMBEDDING_BASE_URL: str = "https://dashscope.aliyuncs.com/compatible-mode/v1"
    EMBEDDING_MODEL: str = "text-embedding-v4"
    EMBEDDING_DIMENSION: int = 1536
    EMBEDDING_TIMEOUT_SECONDS: float = 30.0
    EMBEDDING_CACHE_TTL_SECONDS: int = 3600
    EMBEDDING_CACHE_MAX_ENTRIES: int = 2048
    EMBEDDING_CONCURRENCY: int = 4

    # Hybrid retrieval
    VECTOR_WEIGHT: float = 0.6
    GRAPH_WEIGHT: float = 0.4
    MAX_RESULTS: int = 10
    SEARCH_DEPTH: int = 2
    RETRIEVAL_TIMEOUT_SECONDS: float = 20.0
    KNOWLEDGE_GRAPH_PATH: Optional[str] = None

    # Workflow
    MIN_LESSON_DURATION: int = 20
    MAX_LESSON_DURATION: int = 180
    MIN_OBJECTIVE_LENGTH: int = 10
    PROGRESS_CHANNEL_SIZE: int = Field(default=16, gt=0)

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: Literal["json", "console"] = "json"

    @field_validator("LOG_LEVEL", mode="before")
    @classmethod
    def _normalize_log_level(cls, value: str | None) -> str:
        return str(value or "INFO").strip().upper()

    @field_validator("LOG_FORMAT", mode="before")
    @classmethod
    def _normalize_log_format(cls, value: str | None) -> str:
        return str(value or "json").strip().lower()

    @model_validator(mode="after")
    def _enforce_retrieval_constraints(self) -> "Settings":
        # RetrievalConfig raises ValueError, which pydantic reports as a ValidationError
        self.retrieval_config()
        if self.EMBEDDING_DIMENSION <= 0:
            raise ValueError("EMBEDDING_DIMENSION must be greater than 0")
        if self.EMBEDDING_CONCURRENCY <= 0:
            raise ValueError("EMBEDDING_CONCURRENCY must be greater than 0")
        if self.MIN_LESSON_DURATION <= 0 or self.MIN_LESSON_DURATION >= self.MAX_LESSON_DURATION:
            raise ValueError("MIN_LESSON_DURATION must be positive and below MAX_LESSON_DURATION")
        return self

    def retrieval_config(self) -> RetrievalConfig:
        return RetrievalConfig(
            vector_weight=self.VECTOR_WEIGHT,
            graph_weight=self.GRAPH_WEIGHT,
            max_results=self.MAX_RESULTS,
            search_depth=self.SEARCH_DEPTH,
        )


settings = Settings()
