"""Core configuration for the sync orchestrator."""

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from property_sync.core.logging import configure_logging


class DeduplicationSettings(BaseSettings):
    """Configuration for the deduplication engine.

    The confidence threshold has no default: deployments have historically used
    both 0.8 and 0.95, so it must be chosen explicitly.
    """

    enabled: bool = Field(
        default=True,
        description="Run duplicate detection before create operations",
    )
    confidence: float = Field(
        ge=0.0,
        le=1.0,
        description="Minimum confidence for a candidate to count as a duplicate",
    )
    strategies: str = Field(
        default="entity-id,address-matching,name-fuzzy,phone-email,parent-child,work-order-history",
        description="Comma-separated matching strategies, in precedence order",
    )
    cache: bool = Field(
        default=True,
        description="Cache match results per entity fingerprint",
    )
    cache_ttl_seconds: float = Field(
        default=3600.0,
        gt=0,
        description="Lifetime of a cached match result",
    )

    model_config = SettingsConfigDict(
        env_prefix="SYNC_DEDUP_",
        env_file=".env",
        extra="ignore",
    )

    def parsed_strategies(self) -> list[str]:
        return [s.strip() for s in self.strategies.split(",") if s.strip()]


class RetrySettings(BaseSettings):
    """Workflow-level default retry policy."""

    max_attempts: int = Field(
        default=3,
        ge=1,
        description="Total dispatch attempts per step",
    )
    backoff: Literal["fixed", "linear", "exponential"] = Field(
        default="exponential",
        description="Delay growth between attempts",
    )
    initial_delay_seconds: float = Field(
        default=1.0,
        ge=0.0,
        description="Base delay between attempts",
    )
    max_delay_seconds: float | None = Field(
        default=30.0,
        ge=0.0,
        description="Upper bound for a single delay (None = uncapped)",
    )

    model_config = SettingsConfigDict(
        env_prefix="SYNC_RETRY_",
        env_file=".env",
        extra="ignore",
    )


class SyncConfig(BaseSettings):
    """Main configuration for the sync orchestrator."""

    log_level: str = Field(
        default="INFO",
        description="Logging level",
    )
    debug: bool = Field(
        default=False,
        description="Enable debug mode",
    )
    dry_run: bool = Field(
        default=True,
        description="Use in-memory platform adapters instead of live clients",
    )

    step_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Default per-step dispatch timeout",
    )
    execution_retention_seconds: float = Field(
        default=300.0,
        ge=0,
        description="How long finished executions stay inspectable",
    )

    notifications_webhook_url: str = Field(
        default="",
        description="Webhook receiving notification actions (empty = log only)",
    )
    finance_team: str = Field(
        default="",
        description="Comma-separated recipients of the month-end reconciliation report",
    )
    cors_origins: str = Field(
        default="http://localhost:5173,http://127.0.0.1:5173",
        description="Comma-separated list of allowed CORS origins",
    )

    deduplication: DeduplicationSettings = Field(
        default_factory=DeduplicationSettings,
        description="Deduplication configuration",
    )
    retry: RetrySettings = Field(
        default_factory=RetrySettings,
        description="Default retry policy",
    )

    model_config = SettingsConfigDict(
        env_prefix="SYNC_",
        env_file=".env",
        extra="ignore",
    )

    def parsed_cors_origins(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

    def parsed_finance_team(self) -> list[str]:
        return [r.strip() for r in self.finance_team.split(",") if r.strip()]

    def setup_logging(self) -> None:
        """Configure logging based on settings."""
        configure_logging("DEBUG" if self.debug else self.log_level)
