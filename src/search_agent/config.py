"""Configuration models for the search agent."""

from __future__ import annotations

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class OrchestratorConfig(BaseModel):
    """Configures the two-phase turn and its outbound stream."""

    request_timeout_seconds: float = Field(default=60.0, gt=0.0)
    word_delay_ms: float = Field(default=2.0, ge=0.0)
    stream_buffer_size: int = Field(default=64, ge=1)


class SearchConfig(BaseModel):
    """Configures upstream search calls and result filtering."""

    hackernews_num_results: int = Field(default=10, ge=1, le=100)
    reddit_num_results: int = Field(default=15, ge=1, le=100)
    linkedin_num_results: int = Field(default=10, ge=1, le=100)
    youtube_max_results: int = Field(default=10, ge=1, le=50)
    upstream_timeout_seconds: float = Field(default=15.0, gt=0.0)
    min_highlight_score: float | None = Field(default=None, ge=0.0, le=1.0)


class RateLimitConfig(BaseModel):
    """Fixed-window request allowance per caller identity."""

    max_requests: int = Field(default=3, ge=1)
    window_seconds: float = Field(default=30 * 24 * 3600.0, gt=0.0)


class Settings(BaseSettings):
    """Process environment. Upstream credentials are required at startup."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    ENVIRONMENT: str = "local"
    LOG_LEVEL: str = "INFO"

    OPENAI_API_KEY: str = Field(min_length=1)
    OPENAI_MODEL: str = "gpt-4o-mini"
    OPENAI_BASE_URL: str | None = None
    LLM_TIMEOUT_SECONDS: float = Field(default=30.0, gt=0.0)

    EXA_API_KEY: str = Field(min_length=1)
    YOUTUBE_API_KEY: str = Field(min_length=1)

    REDIS_URL: str = "redis://localhost:6379/0"

    MIN_HIGHLIGHT_SCORE: float | None = Field(default=None, ge=0.0, le=1.0)
    REQUEST_TIMEOUT_SECONDS: float = Field(default=60.0, gt=0.0)
    RATE_LIMIT_REQUESTS: int = Field(default=3, ge=1)
    RATE_LIMIT_WINDOW_SECONDS: float = Field(default=30 * 24 * 3600.0, gt=0.0)

    def orchestrator_config(self) -> OrchestratorConfig:
        return OrchestratorConfig(request_timeout_seconds=self.REQUEST_TIMEOUT_SECONDS)

    def search_config(self) -> SearchConfig:
        return SearchConfig(min_highlight_score=self.MIN_HIGHLIGHT_SCORE)

    def rate_limit_config(self) -> RateLimitConfig:
        return RateLimitConfig(
            max_requests=self.RATE_LIMIT_REQUESTS,
            window_seconds=self.RATE_LIMIT_WINDOW_SECONDS,
        )
