"""Configuration management service with Pydantic Settings.

This module provides centralized configuration management for the
market signals pipeline, loading and validating environment variables
at startup. Every detector threshold, scoring weight and batch size
lives here so stages receive them injected rather than hard-coded.
"""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import Any, Literal

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_ENV_FILE = ".env"
_ENV_FILE_ENCODING = "utf-8"

_WEIGHT_TOLERANCE = 1e-6


def _split_csv(value: str) -> tuple[str, ...]:
    return tuple(part.strip() for part in value.split(",") if part.strip())


class DatabaseSettings(BaseSettings):
    """Database connection settings."""

    model_config = SettingsConfigDict(env_prefix="", extra="ignore")

    url: str = Field(
        alias="DATABASE_URL",
        description="PostgreSQL (or sqlite+aiosqlite for local runs) connection string",
    )
    pool_size: int = Field(
        default=5,
        alias="DATABASE_POOL_SIZE",
        ge=1,
        le=100,
        description="Connection pool size",
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Validate database URL format."""
        if not v.startswith(("postgresql://", "postgresql+asyncpg://", "sqlite+aiosqlite://")):
            raise ValueError("DATABASE_URL must be a PostgreSQL or sqlite+aiosqlite connection string")
        return v


class SnapshotSettings(BaseSettings):
    """Snapshot aggregation windows."""

    model_config = SettingsConfigDict(env_prefix="SNAPSHOT_", extra="ignore")

    portal_lookback_days: int = Field(
        default=28,
        alias="SNAPSHOT_PORTAL_LOOKBACK_DAYS",
        ge=7,
        le=365,
        description="Trailing window of raw portal rows read per run",
    )
    truth_lookback_days: int = Field(
        default=200,
        alias="SNAPSHOT_TRUTH_LOOKBACK_DAYS",
        ge=90,
        le=3650,
        description="Trailing window of registry/rental rows read per run (must span two quarters)",
    )
    stale_days_threshold: int = Field(
        default=60,
        alias="SNAPSHOT_STALE_DAYS_THRESHOLD",
        ge=1,
        le=3650,
        description="Days on market at which an active listing counts as stale",
    )
    batch_size: int = Field(
        default=100,
        alias="SNAPSHOT_BATCH_SIZE",
        ge=1,
        le=1000,
        description="Rows per snapshot upsert statement",
    )


class TruthSignalSettings(BaseSettings):
    """Official-data (registry/rental) signal thresholds."""

    model_config = SettingsConfigDict(env_prefix="TRUTH_", extra="ignore")

    price_change_pct: float = Field(
        default=0.05,
        alias="TRUTH_PRICE_CHANGE_PCT",
        ge=0.0,
        le=1.0,
        description="Minimum absolute QoQ change in median price per area unit",
    )
    rent_change_pct: float = Field(
        default=0.05,
        alias="TRUTH_RENT_CHANGE_PCT",
        ge=0.0,
        le=1.0,
        description="Minimum absolute QoQ change in median annual rent",
    )
    yield_opportunity_min: float = Field(
        default=0.065,
        alias="TRUTH_YIELD_OPPORTUNITY_MIN",
        ge=0.0,
        le=1.0,
        description="Gross yield floor for yield_opportunity signals",
    )
    min_sample_size: int = Field(
        default=25,
        alias="TRUTH_MIN_SAMPLE_SIZE",
        ge=1,
        le=100_000,
        description="Minimum transactions behind the current snapshot",
    )
    high_confidence: float = Field(default=0.85, alias="TRUTH_HIGH_CONFIDENCE", ge=0.0, le=1.0)
    low_confidence: float = Field(default=0.6, alias="TRUTH_LOW_CONFIDENCE", ge=0.0, le=1.0)
    signal_batch_size: int = Field(
        default=50,
        alias="TRUTH_SIGNAL_BATCH_SIZE",
        ge=1,
        le=1000,
        description="Signals per upsert statement",
    )


class PortalSignalSettings(BaseSettings):
    """Portal inventory (WoW) signal thresholds."""

    model_config = SettingsConfigDict(env_prefix="PORTAL_", extra="ignore")

    min_active_listings: int = Field(
        default=30,
        alias="PORTAL_MIN_ACTIVE_LISTINGS",
        ge=0,
        le=1_000_000,
        description="Minimum active listings in the current snapshot",
    )
    supply_spike_wow_pct: float = Field(
        default=0.20,
        alias="PORTAL_SUPPLY_SPIKE_WOW_PCT",
        ge=0.0,
        le=10.0,
        description="WoW growth in active listings that flags a supply spike",
    )
    discounting_spike_wow_pct: float = Field(
        default=0.15,
        alias="PORTAL_DISCOUNTING_SPIKE_WOW_PCT",
        ge=0.0,
        le=10.0,
        description="WoW growth in price cuts that flags a discounting spike",
    )
    staleness_rise_wow_pct: float = Field(
        default=0.15,
        alias="PORTAL_STALENESS_RISE_WOW_PCT",
        ge=0.0,
        le=10.0,
        description="WoW growth in stale listings that flags a staleness rise",
    )
    signal_batch_size: int = Field(
        default=50,
        alias="PORTAL_SIGNAL_BATCH_SIZE",
        ge=1,
        le=1000,
        description="Signals per upsert statement",
    )


class ScoreWeights(BaseSettings):
    """Composite score weights. Must sum to 1.0."""

    model_config = SettingsConfigDict(env_prefix="PRICING_WEIGHT_", extra="ignore")

    price: float = Field(default=0.30, alias="PRICING_WEIGHT_PRICE", ge=0.0, le=1.0)
    yield_: float = Field(default=0.20, alias="PRICING_WEIGHT_YIELD", ge=0.0, le=1.0)
    match_quality: float = Field(default=0.15, alias="PRICING_WEIGHT_MATCH_QUALITY", ge=0.0, le=1.0)
    sentiment: float = Field(default=0.15, alias="PRICING_WEIGHT_SENTIMENT", ge=0.0, le=1.0)
    liquidity: float = Field(default=0.10, alias="PRICING_WEIGHT_LIQUIDITY", ge=0.0, le=1.0)
    recency: float = Field(default=0.10, alias="PRICING_WEIGHT_RECENCY", ge=0.0, le=1.0)

    @model_validator(mode="after")
    def validate_total(self) -> ScoreWeights:
        total = sum(self.as_dict().values())
        if abs(total - 1.0) > _WEIGHT_TOLERANCE:
            raise ValueError(f"PRICING_WEIGHT_* must sum to 1.0 (got {total:.4f})")
        return self

    def as_dict(self) -> dict[str, float]:
        return {
            "price": self.price,
            "yield": self.yield_,
            "match_quality": self.match_quality,
            "sentiment": self.sentiment,
            "liquidity": self.liquidity,
            "recency": self.recency,
        }


class PricingSettings(BaseSettings):
    """Pricing-opportunity detector and comparable matcher settings."""

    model_config = SettingsConfigDict(env_prefix="PRICING_", extra="ignore")

    min_composite_score: int = Field(
        default=55,
        alias="PRICING_MIN_COMPOSITE_SCORE",
        ge=0,
        le=100,
        description="Composite score below which a listing is not signalled",
    )
    min_comparables: int = Field(
        default=3,
        alias="PRICING_MIN_COMPARABLES",
        ge=1,
        le=1000,
        description="Comparables required for a tier to win",
    )
    comparable_lookback_months: int = Field(
        default=24,
        alias="PRICING_COMPARABLE_LOOKBACK_MONTHS",
        ge=1,
        le=120,
        description="How far back comparable transactions are considered",
    )
    size_tolerance: float = Field(
        default=0.15,
        alias="PRICING_SIZE_TOLERANCE",
        ge=0.0,
        le=1.0,
        description="Size band for tiers 1 and 2 (fraction of listing size)",
    )
    loose_size_tolerance: float = Field(
        default=0.30,
        alias="PRICING_LOOSE_SIZE_TOLERANCE",
        ge=0.0,
        le=1.0,
        description="Size band for tier 3",
    )
    recency_half_life_days: float = Field(
        default=180.0,
        alias="PRICING_RECENCY_HALF_LIFE_DAYS",
        gt=0.0,
        le=3650.0,
        description="Half-life of the comparable recency weight",
    )
    default_area_yield: float = Field(
        default=0.055,
        alias="PRICING_DEFAULT_AREA_YIELD",
        ge=0.0,
        le=1.0,
        description="Area gross yield assumed when no yield snapshot exists",
    )
    signal_batch_size: int = Field(
        default=50,
        alias="PRICING_SIGNAL_BATCH_SIZE",
        ge=1,
        le=1000,
        description="Signals per upsert statement",
    )
    weights: ScoreWeights = Field(
        default_factory=lambda: ScoreWeights(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )

    @model_validator(mode="after")
    def validate_size_bands(self) -> PricingSettings:
        if self.loose_size_tolerance < self.size_tolerance:
            raise ValueError("PRICING_LOOSE_SIZE_TOLERANCE must be >= PRICING_SIZE_TOLERANCE")
        return self


class MappingSettings(BaseSettings):
    """Investor mapping score components."""

    model_config = SettingsConfigDict(env_prefix="MAPPING_", extra="ignore")

    min_score: float = Field(default=0.35, alias="MAPPING_MIN_SCORE", ge=0.0, le=1.0)
    area_match: float = Field(default=0.35, alias="MAPPING_AREA_MATCH", ge=0.0, le=1.0)
    area_open: float = Field(default=0.15, alias="MAPPING_AREA_OPEN", ge=0.0, le=1.0)
    budget_match: float = Field(default=0.25, alias="MAPPING_BUDGET_MATCH", ge=0.0, le=1.0)
    budget_soft: float = Field(default=0.10, alias="MAPPING_BUDGET_SOFT", ge=0.0, le=1.0)
    yield_match: float = Field(default=0.30, alias="MAPPING_YIELD_MATCH", ge=0.0, le=1.0)
    portfolio_exposure: float = Field(default=0.10, alias="MAPPING_PORTFOLIO_EXPOSURE", ge=0.0, le=1.0)
    low_risk_cap: float = Field(default=0.65, alias="MAPPING_LOW_RISK_CAP", ge=0.0, le=1.0)
    batch_size: int = Field(
        default=50,
        alias="MAPPING_BATCH_SIZE",
        ge=1,
        le=1000,
        description="Unmapped signals per page",
    )
    max_batches: int = Field(
        default=10,
        alias="MAPPING_MAX_BATCHES",
        ge=1,
        le=10_000,
        description="Pages scanned per mapping call",
    )


class NotificationSettings(BaseSettings):
    """Notification publisher settings."""

    model_config = SettingsConfigDict(env_prefix="NOTIFY_", extra="ignore")

    recipient_roles_raw: str = Field(
        default="agent,manager",
        alias="NOTIFY_RECIPIENT_ROLES",
        description="Org user roles that receive every signal notification (comma-separated)",
    )
    batch_size: int = Field(
        default=100,
        alias="NOTIFY_BATCH_SIZE",
        ge=1,
        le=1000,
        description="Notifications per insert statement",
    )

    @property
    def recipient_roles(self) -> tuple[str, ...]:
        return _split_csv(self.recipient_roles_raw)


class Settings(BaseSettings):
    """Main application settings.

    Loads configuration from environment variables with support for
    .env files via python-dotenv.

    Example:
        ```python
        from market_signals.config import get_settings

        settings = get_settings()
        print(settings.database.url)
        print(settings.portal.min_active_listings)
        ```
    """

    model_config = SettingsConfigDict(
        env_file=_ENV_FILE,
        env_file_encoding=_ENV_FILE_ENCODING,
        extra="ignore",
    )

    # NOTE: Each nested BaseSettings must be given the same env_file, otherwise it
    # will only read from the process environment (and ignore `.env`).
    database: DatabaseSettings = Field(
        default_factory=lambda: DatabaseSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    snapshots: SnapshotSettings = Field(
        default_factory=lambda: SnapshotSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    truth: TruthSignalSettings = Field(
        default_factory=lambda: TruthSignalSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    portal: PortalSignalSettings = Field(
        default_factory=lambda: PortalSignalSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    pricing: PricingSettings = Field(
        default_factory=lambda: PricingSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    mapping: MappingSettings = Field(
        default_factory=lambda: MappingSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    notifications: NotificationSettings = Field(
        default_factory=lambda: NotificationSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )

    # Application settings
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        alias="LOG_LEVEL",
        description="Logging level",
    )
    org_ids_raw: str = Field(
        default="",
        alias="ORG_IDS",
        description="Orgs processed when the CLI is given no --org (comma-separated)",
    )
    dry_run: bool = Field(
        default=False,
        alias="DRY_RUN",
        description="Run all stages but roll back every write",
    )

    @property
    def org_ids(self) -> tuple[str, ...]:
        return _split_csv(self.org_ids_raw)

    def get_logging_level(self) -> int:
        """Get the numeric logging level."""
        level: int = getattr(logging, self.log_level)
        return level

    def thresholds_snapshot(self) -> dict[str, Any]:
        """Thresholds recorded alongside every investor mapping for auditability."""
        return {
            "portal": {
                "min_active_listings": self.portal.min_active_listings,
                "supply_spike_wow_pct": self.portal.supply_spike_wow_pct,
                "discounting_spike_wow_pct": self.portal.discounting_spike_wow_pct,
                "staleness_rise_wow_pct": self.portal.staleness_rise_wow_pct,
            },
            "truth": {
                "price_change_pct": self.truth.price_change_pct,
                "rent_change_pct": self.truth.rent_change_pct,
                "yield_opportunity_min": self.truth.yield_opportunity_min,
                "min_sample_size": self.truth.min_sample_size,
            },
            "mapping": {
                "min_score": self.mapping.min_score,
                "area_match": self.mapping.area_match,
                "area_open": self.mapping.area_open,
                "budget_match": self.mapping.budget_match,
                "budget_soft": self.mapping.budget_soft,
                "yield_match": self.mapping.yield_match,
                "portfolio_exposure": self.mapping.portfolio_exposure,
                "low_risk_cap": self.mapping.low_risk_cap,
            },
        }

    def redacted_summary(self) -> dict[str, str | dict[str, str]]:
        """Get a summary of settings with secrets redacted.

        Returns:
            Dictionary of settings with sensitive values masked.
        """
        return {
            "database_url": self._redact_url(self.database.url),
            "snapshots": {
                "portal_lookback_days": str(self.snapshots.portal_lookback_days),
                "truth_lookback_days": str(self.snapshots.truth_lookback_days),
                "stale_days_threshold": str(self.snapshots.stale_days_threshold),
            },
            "truth": {
                "price_change_pct": str(self.truth.price_change_pct),
                "rent_change_pct": str(self.truth.rent_change_pct),
                "yield_opportunity_min": str(self.truth.yield_opportunity_min),
                "min_sample_size": str(self.truth.min_sample_size),
            },
            "portal": {
                "min_active_listings": str(self.portal.min_active_listings),
                "supply_spike_wow_pct": str(self.portal.supply_spike_wow_pct),
                "discounting_spike_wow_pct": str(self.portal.discounting_spike_wow_pct),
                "staleness_rise_wow_pct": str(self.portal.staleness_rise_wow_pct),
            },
            "pricing": {
                "min_composite_score": str(self.pricing.min_composite_score),
                "min_comparables": str(self.pricing.min_comparables),
                "weights": ",".join(f"{k}={v}" for k, v in self.pricing.weights.as_dict().items()),
            },
            "mapping": {
                "min_score": str(self.mapping.min_score),
                "batch_size": str(self.mapping.batch_size),
            },
            "notify_recipient_roles": ",".join(self.notifications.recipient_roles),
            "org_ids": ",".join(self.org_ids) or "(not set)",
            "log_level": self.log_level,
            "dry_run": str(self.dry_run),
        }

    def validate_requirements(self, *, org_ids: tuple[str, ...]) -> None:
        """Validate run-specific requirements.

        A run with no orgs has nothing to do and is refused rather than
        silently succeeding.
        """
        if not org_ids:
            raise ValueError("At least one org is required (pass --org or set ORG_IDS)")
        if any(not org.strip() for org in org_ids):
            raise ValueError("Org ids must be non-empty")

    @staticmethod
    def _redact_url(url: str) -> str:
        """Redact password from URL if present."""
        if "@" in url and "://" in url:
            protocol_end = url.index("://") + 3
            at_pos = url.index("@")
            creds_part = url[protocol_end:at_pos]
            if ":" in creds_part:
                username = creds_part.split(":")[0]
                return f"{url[:protocol_end]}{username}:***@{url[at_pos + 1 :]}"
        return url


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get the application settings singleton.

    Returns:
        The Settings instance.

    Raises:
        ValidationError: If required environment variables are missing
            or have invalid values.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache.

    Useful for testing when you need to reload settings with
    different environment variables.
    """
    get_settings.cache_clear()
