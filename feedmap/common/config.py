"""
Application configuration using Pydantic Settings
Reads from environment variables and .env file

The reconciliation core never reads these settings on its own: callers build
components from a Settings instance (see the ``from_settings`` helpers).
"""
from functools import lru_cache
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings from environment"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # Application
    environment: str = Field(default="production", alias="ENVIRONMENT")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_json: bool = Field(default=True, alias="LOG_JSON")

    # Anthropic (AI batch mapping)
    anthropic_api_key: Optional[str] = Field(default=None, alias="ANTHROPIC_API_KEY")
    reconciliation_model: str = Field(default="claude-sonnet-4-5", alias="RECONCILIATION_MODEL")
    reconciliation_fallback_models: str = Field(
        default="claude-haiku-4-5,claude-3-5-haiku-latest",
        alias="RECONCILIATION_FALLBACK_MODELS",
    )
    ai_max_tokens: int = Field(default=4096, alias="AI_MAX_TOKENS")
    ai_request_timeout_seconds: float = Field(default=60.0, alias="AI_REQUEST_TIMEOUT_SECONDS")
    ai_high_confidence_threshold: float = Field(default=0.9, alias="AI_HIGH_CONFIDENCE_THRESHOLD")
    ai_reasoning_max_length: int = Field(default=200, alias="AI_REASONING_MAX_LENGTH")

    # Batch orchestration
    reconciliation_batch_size: int = Field(default=20, alias="RECONCILIATION_BATCH_SIZE")
    reconciliation_max_attempts: int = Field(default=3, alias="RECONCILIATION_MAX_ATTEMPTS")
    reconciliation_backoff_base_seconds: float = Field(default=1.0, alias="RECONCILIATION_BACKOFF_BASE_SECONDS")
    reconciliation_inter_batch_delay_seconds: float = Field(
        default=1.0, alias="RECONCILIATION_INTER_BATCH_DELAY_SECONDS"
    )
    reconciliation_malformed_retries: int = Field(default=1, alias="RECONCILIATION_MALFORMED_RETRIES")

    # Fuzzy matching
    fuzzy_auto_accept_threshold: float = Field(default=0.6, alias="FUZZY_AUTO_ACCEPT_THRESHOLD")
    fuzzy_search_threshold: float = Field(default=0.6, alias="FUZZY_SEARCH_THRESHOLD")
    fuzzy_description_weight: float = Field(default=0.3, alias="FUZZY_DESCRIPTION_WEIGHT")
    fuzzy_min_match_char_length: int = Field(default=2, alias="FUZZY_MIN_MATCH_CHAR_LENGTH")

    @property
    def fallback_models(self) -> List[str]:
        """Parse comma-separated fallback model list"""
        return [m.strip() for m in self.reconciliation_fallback_models.split(",") if m.strip()]

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v):
        """Validate log level"""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"LOG_LEVEL must be one of {valid_levels}")
        return v.upper()

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v):
        """Validate environment"""
        valid_envs = ["development", "staging", "production", "test"]
        if v.lower() not in valid_envs:
            raise ValueError(f"ENVIRONMENT must be one of {valid_envs}")
        return v.lower()

    @field_validator(
        "fuzzy_auto_accept_threshold",
        "fuzzy_search_threshold",
        "fuzzy_description_weight",
        "ai_high_confidence_threshold",
    )
    @classmethod
    def validate_unit_interval(cls, v):
        """Thresholds and weights live in [0, 1]"""
        if not 0.0 <= v <= 1.0:
            raise ValueError(f"value must be between 0 and 1, got {v}")
        return v

    @field_validator("reconciliation_batch_size", "reconciliation_max_attempts")
    @classmethod
    def validate_positive(cls, v):
        """Batch size and attempt count must be at least 1"""
        if v < 1:
            raise ValueError(f"value must be >= 1, got {v}")
        return v


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()
