"""Application Configuration: environment-driven settings via pydantic-settings.

Invariants:
    - All secrets come from environment variables (never hardcoded)
    - get_settings() is cached (lru_cache): single instance per process
    - Every pipeline stage that can mutate or spend is behind a flag that
      defaults to off (shadow runs, dry runs, execution)

Design Decisions:
    - pydantic-settings over raw os.environ: validation, type coercion, .env file support
    - Defaults provided for all non-secret settings: works out-of-the-box with docker-compose
"""

from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from decisioning.core.domain_types import EvidencePolicy


class Settings(BaseSettings):
    """Application settings from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False)

    # Database
    database_url: str = (
        "postgresql+asyncpg://decisioning:decisioning@db:5432/decisioning"
    )

    @field_validator("database_url", mode="before")
    @classmethod
    def convert_postgres_url(cls, v: str) -> str:
        """Hosted providers hand out postgresql:// but asyncpg needs postgresql+asyncpg://."""
        if isinstance(v, str) and v.startswith("postgresql://"):
            return v.replace("postgresql://", "postgresql+asyncpg://", 1)
        return v

    database_pool_size: int = 20
    database_max_overflow: int = 10

    # Anthropic (extraction provider)
    anthropic_api_key: str = "sk-ant-placeholder"
    anthropic_max_retries: int = 3
    anthropic_timeout_seconds: int = 60
    anthropic_base_delay_ms: int = 1000
    anthropic_max_delay_ms: int = 60_000

    # Facts extraction
    email_facts_extraction_enabled: bool = True
    extraction_model: str = "claude-sonnet-4-5"
    extraction_max_tokens: int = 2048

    # Decisioning
    shadow_decisioning_enabled: bool = False
    shadow_dry_run_enabled: bool = False
    decision_execution_enabled: bool = False
    min_destructive_confidence: float = Field(0.7, ge=0.0, le=1.0)
    evidence_policy: EvidencePolicy = EvidencePolicy.STRICT
    rounds_snapshot_limit: int = Field(10, ge=1, le=10)

    # Observability
    log_level: str = "INFO"
    log_format: str = "json"


@lru_cache
def get_settings() -> Settings:
    return Settings()
