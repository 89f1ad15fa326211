"""Relay configuration with environment variable loading.

Pydantic-based configuration for the streaming relay.
Supports OpenAI and OpenAI-compatible APIs via custom base URL.
"""

import os

from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator

# Load environment variables from .env file
load_dotenv()

DEFAULT_BASE_URL = "https://api.openai.com/v1"


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name, "").strip()
    return int(value) if value else default


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name, "").strip()
    return float(value) if value else default


class RelayConfig(BaseModel):
    """Configuration for the upstream completion relay.

    The API key may be empty: the relay still starts, reports itself as
    unconfigured on /health, and answers every chat request with a
    ConfigurationMissing error instead of calling the provider.

    Attributes:
        api_key: Bearer credential for the upstream provider.
        base_url: API base URL of the OpenAI-compatible provider.
        default_model: Model used when a request does not name one.
        max_tokens: Generation cap sent with every upstream request.
        connect_timeout: Seconds to wait for the upstream connection.
        rate_limit_per_minute: Requests per caller per minute (0 disables).
        rate_limit_burst: Bucket size for the per-caller rate limit.
    """

    api_key: str = Field(
        default_factory=lambda: os.getenv("LLM_API_KEY") or os.getenv("OPENAI_API_KEY", ""),
        description="API key for LLM provider",
    )
    base_url: str = Field(
        default_factory=lambda: os.getenv("LLM_BASE_URL") or DEFAULT_BASE_URL,
        description="API base URL",
    )
    default_model: str = Field(
        default_factory=lambda: os.getenv("LLM_MODEL", "gpt-4o-mini"),
        description="Model to use when the request does not name one",
    )
    max_tokens: int = Field(
        default_factory=lambda: _env_int("MAX_TOKENS", 800),
        ge=1,
        le=128000,
        description="Maximum tokens in generated response",
    )
    connect_timeout: float = Field(
        default_factory=lambda: _env_float("UPSTREAM_CONNECT_TIMEOUT", 10.0),
        gt=0.0,
        description="Seconds allowed for establishing the upstream connection",
    )
    rate_limit_per_minute: int = Field(
        default_factory=lambda: _env_int("RATE_LIMIT_PER_MINUTE", 0),
        ge=0,
        description="Per-caller request rate (0 admits every request)",
    )
    rate_limit_burst: int = Field(
        default_factory=lambda: _env_int("RATE_LIMIT_BURST", 10),
        ge=1,
        description="Per-caller burst allowance",
    )

    @field_validator("api_key")
    @classmethod
    def strip_api_key(cls, v: str) -> str:
        """Strip whitespace so a blank key counts as missing."""
        return v.strip()

    @field_validator("base_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        """Normalize the base URL so endpoint paths join cleanly."""
        return v.rstrip("/")

    @property
    def is_configured(self) -> bool:
        """Whether an upstream credential is available."""
        return bool(self.api_key)

    @property
    def completions_url(self) -> str:
        return f"{self.base_url}/chat/completions"


def get_relay_config() -> RelayConfig:
    """Create relay configuration from environment.

    Returns:
        Configured RelayConfig instance.
    """
    return RelayConfig()
