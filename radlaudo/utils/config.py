"""
Configuration management for radlaudo.
Handles API keys, pricing, quota tiers and environment settings.
"""

from typing import Dict, Optional

from pydantic import Field
from pydantic_settings import BaseSettings as PydanticBaseSettings
from pydantic_settings import SettingsConfigDict


class Settings(PydanticBaseSettings):
    """Application settings with environment variable support."""

    model_config = SettingsConfigDict(
        env_file=".env", case_sensitive=False, extra="ignore"
    )

    reload: bool = Field(False)

    # API Keys
    anthropic_api_key: Optional[str] = Field(None)
    supabase_url: Optional[str] = Field(None)
    supabase_key: Optional[str] = Field(None)

    # Model Configuration
    anthropic_model: str = Field("claude-sonnet-4-5-20250929")
    anthropic_endpoint: str = Field("https://api.anthropic.com/v1/messages")
    anthropic_version: str = Field("2023-06-01")
    max_output_tokens: int = Field(4096)

    # Latency Thresholds (ms)
    llm_generation_threshold: int = Field(30000)
    storage_threshold: int = Field(1500)

    request_timeout: int = Field(120)

    # Storage
    storage_bucket: str = Field("report-exports")
    storage_init_attempts: int = Field(3)
    templates_dir: Optional[str] = Field(None)

    # Cost accounting
    usd_brl_rate: float = Field(5.5)

    # Monthly report quota per subscription tier (None means unlimited)
    tier_limits: Dict[str, Optional[int]] = Field(
        default_factory=lambda: {"free": 10, "pro": 100, "enterprise": None}
    )
    default_tier_limit: int = Field(10)

    # Prompt assembly
    max_context_chars: Optional[int] = Field(None)
    enforce_essential_fields: bool = Field(True)
    default_locale: str = Field("pt-BR")

    enable_caching: bool = Field(True)
    cache_ttl: int = Field(3600)

    # Logging
    log_level: str = Field("INFO")
    enable_structured_logging: bool = Field(True)
    compliance_log_file: Optional[str] = Field(None)


# Global settings instance
settings = Settings()


class ModelConfig:
    """Model-specific configuration constants."""

    # Temperature settings (always 0.0 for deterministic output)
    TEMPERATURE = 0.0

    DEFAULT_MODEL = "claude-sonnet-4-5-20250929"

    # USD per million tokens
    PRICING = {
        "claude-opus-4.5": {"input": 5.0, "output": 25.0},
        "claude-opus-4.1": {"input": 15.0, "output": 75.0},
        "claude-opus-4": {"input": 15.0, "output": 75.0},
        "claude-opus-3": {"input": 15.0, "output": 75.0},
        "claude-sonnet-4.5": {"input": 3.0, "output": 15.0},
        "claude-sonnet-4": {"input": 3.0, "output": 15.0},
        "claude-sonnet-3.7": {"input": 3.0, "output": 15.0},
        "claude-haiku-4.5": {"input": 1.0, "output": 5.0},
        "claude-haiku-3.5": {"input": 0.80, "output": 4.0},
        "claude-haiku-3": {"input": 0.25, "output": 1.25},
    }
    DEFAULT_PRICING_KEY = "claude-sonnet-4.5"

    SUPPORTED_LOCALES = {
        "pt-BR": "Português (Brasil)",
        "en": "English",
    }


class LatencyConfig:
    """Latency monitoring and alerting configuration."""

    # Critical thresholds (ms)
    CRITICAL_LLM_LATENCY = 60000
    CRITICAL_STORAGE_LATENCY = 3000

    # Warning thresholds (ms)
    WARNING_LLM_LATENCY = 20000
    WARNING_STORAGE_LATENCY = 1000
