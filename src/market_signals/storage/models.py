"""SQLAlchemy models for persistent storage.

This module defines the schema the pipeline writes (snapshots, signals,
signal targets, notifications) and the reference tables it reads
(current portal inventory, comparable sale transactions, investors and
org users). Raw ingestion tables live in ``market_signals.ingestion``.
"""

from __future__ import annotations

from datetime import UTC, date, datetime

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class MarketMetricSnapshotModel(Base):
    """Periodic aggregate of one official-data metric for a geo/segment window."""

    __tablename__ = "market_metric_snapshot"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    org_id: Mapped[str] = mapped_column(String(64), nullable=False)
    source: Mapped[str] = mapped_column(String(20), nullable=False)
    metric: Mapped[str] = mapped_column(String(40), nullable=False)
    geo_type: Mapped[str] = mapped_column(String(20), nullable=False)
    geo_id: Mapped[str] = mapped_column(String(120), nullable=False)
    geo_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    segment: Mapped[str] = mapped_column(String(60), nullable=False)
    timeframe: Mapped[str] = mapped_column(String(10), nullable=False)
    window_start: Mapped[date] = mapped_column(Date, nullable=False)
    window_end: Mapped[date] = mapped_column(Date, nullable=False)
    value: Mapped[float] = mapped_column(Float, nullable=False)
    sample_size: Mapped[int] = mapped_column(Integer, nullable=False)
    evidence_json: Mapped[str] = mapped_column(Text, nullable=False, default="{}")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )

    __table_args__ = (
        UniqueConstraint(
            "org_id",
            "source",
            "metric",
            "geo_type",
            "geo_id",
            "segment",
            "timeframe",
            "window_end",
            name="uq_market_metric_snapshot_window",
        ),
        Index("idx_market_metric_snapshot_org_tf", "org_id", "timeframe", "window_end"),
    )


class PortalListingSnapshotModel(Base):
    """Daily aggregate of a portal's inventory for a geo/segment."""

    __tablename__ = "portal_listing_snapshot"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    org_id: Mapped[str] = mapped_column(String(64), nullable=False)
    portal: Mapped[str] = mapped_column(String(40), nullable=False)
    geo_type: Mapped[str] = mapped_column(String(20), nullable=False)
    geo_id: Mapped[str] = mapped_column(String(120), nullable=False)
    geo_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    segment: Mapped[str] = mapped_column(String(60), nullable=False)
    timeframe: Mapped[str] = mapped_column(String(10), nullable=False)
    as_of_date: Mapped[date] = mapped_column(Date, nullable=False)
    active_listings: Mapped[int] = mapped_column(Integer, nullable=False)
    price_cuts_count: Mapped[int] = mapped_column(Integer, nullable=False)
    stale_listings_count: Mapped[int] = mapped_column(Integer, nullable=False)
    evidence_json: Mapped[str] = mapped_column(Text, nullable=False, default="{}")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )

    __table_args__ = (
        UniqueConstraint(
            "org_id",
            "portal",
            "geo_type",
            "geo_id",
            "segment",
            "timeframe",
            "as_of_date",
            name="uq_portal_listing_snapshot_day",
        ),
        Index("idx_portal_listing_snapshot_org_date", "org_id", "as_of_date"),
    )


class MarketSignalModel(Base):
    """Detected, deduplicated market event.

    ``signal_key`` is the idempotency key; re-detection upserts the same row.
    ``status`` and the acknowledgement columns belong to operators and are
    never rewritten by the pipeline.
    """

    __tablename__ = "market_signal"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    org_id: Mapped[str] = mapped_column(String(64), nullable=False)
    signal_key: Mapped[str] = mapped_column(String(400), nullable=False)
    type: Mapped[str] = mapped_column(String(40), nullable=False)
    source_type: Mapped[str] = mapped_column(String(20), nullable=False)
    source: Mapped[str] = mapped_column(String(40), nullable=False)
    geo_type: Mapped[str] = mapped_column(String(20), nullable=False)
    geo_id: Mapped[str] = mapped_column(String(120), nullable=False)
    geo_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    segment: Mapped[str | None] = mapped_column(String(60), nullable=True)
    metric: Mapped[str] = mapped_column(String(40), nullable=False)
    timeframe: Mapped[str] = mapped_column(String(10), nullable=False)
    current_value: Mapped[float] = mapped_column(Float, nullable=False)
    prev_value: Mapped[float | None] = mapped_column(Float, nullable=True)
    delta_value: Mapped[float | None] = mapped_column(Float, nullable=True)
    delta_pct: Mapped[float | None] = mapped_column(Float, nullable=True)
    confidence_score: Mapped[float] = mapped_column(Float, nullable=False)
    severity: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="new")
    evidence_json: Mapped[str] = mapped_column(Text, nullable=False, default="{}")
    acknowledged_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    acknowledged_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    dismissed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    dismissed_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )

    __table_args__ = (
        UniqueConstraint("org_id", "signal_key", name="uq_market_signal_key"),
        Index("idx_market_signal_org_type", "org_id", "type"),
        Index("idx_market_signal_org_status", "org_id", "status"),
    )


class MarketSignalTargetModel(Base):
    """Mapping of one signal to one investor with its relevance explanation."""

    __tablename__ = "market_signal_target"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    org_id: Mapped[str] = mapped_column(String(64), nullable=False)
    signal_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("market_signal.id", ondelete="CASCADE"), nullable=False
    )
    investor_id: Mapped[str] = mapped_column(String(64), nullable=False)
    relevance_score: Mapped[float] = mapped_column(Float, nullable=False)
    reason_json: Mapped[str] = mapped_column(Text, nullable=False, default="{}")
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="new")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )

    __table_args__ = (
        UniqueConstraint("org_id", "signal_id", "investor_id", name="uq_market_signal_target_pair"),
        Index("idx_market_signal_target_org_status", "org_id", "status"),
        Index("idx_market_signal_target_signal", "signal_id"),
    )


class NotificationModel(Base):
    """Durably recorded notification; delivery happens elsewhere."""

    __tablename__ = "notifications"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    org_id: Mapped[str] = mapped_column(String(64), nullable=False)
    recipient_user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    notification_key: Mapped[str] = mapped_column(String(300), nullable=False, unique=True)
    entity_type: Mapped[str] = mapped_column(String(40), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(64), nullable=False)
    title: Mapped[str] = mapped_column(String(300), nullable=False)
    body: Mapped[str] = mapped_column(Text, nullable=False)
    metadata_json: Mapped[str] = mapped_column(Text, nullable=False, default="{}")
    read_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )

    __table_args__ = (Index("idx_notifications_recipient", "org_id", "recipient_user_id"),)


class PortalListingModel(Base):
    """Current portal inventory (one row per live listing)."""

    __tablename__ = "portal_listings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    org_id: Mapped[str] = mapped_column(String(64), nullable=False)
    portal: Mapped[str] = mapped_column(String(40), nullable=False)
    listing_id: Mapped[str] = mapped_column(String(80), nullable=False)
    listing_url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    area_name: Mapped[str] = mapped_column(String(200), nullable=False)
    building_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    property_type: Mapped[str] = mapped_column(String(60), nullable=False)
    bedrooms: Mapped[int | None] = mapped_column(Integer, nullable=True)
    size_sqm: Mapped[float | None] = mapped_column(Float, nullable=True)
    asking_price: Mapped[float | None] = mapped_column(Float, nullable=True)
    price_per_sqm: Mapped[float | None] = mapped_column(Float, nullable=True)
    listing_type: Mapped[str] = mapped_column(String(10), nullable=False, default="sale")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    listed_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    days_on_market: Mapped[int | None] = mapped_column(Integer, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )

    __table_args__ = (
        UniqueConstraint("org_id", "portal", "listing_id", name="uq_portal_listings_listing"),
        Index("idx_portal_listings_area", "org_id", "area_name"),
    )


class ComparableTransactionModel(Base):
    """Historical sale transaction available as a pricing comparable."""

    __tablename__ = "comparable_transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    org_id: Mapped[str] = mapped_column(String(64), nullable=False)
    external_id: Mapped[str] = mapped_column(String(80), nullable=False)
    area_name: Mapped[str] = mapped_column(String(200), nullable=False)
    building_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    property_type: Mapped[str | None] = mapped_column(String(60), nullable=True)
    bedrooms: Mapped[int | None] = mapped_column(Integer, nullable=True)
    size_sqm: Mapped[float | None] = mapped_column(Float, nullable=True)
    price: Mapped[float] = mapped_column(Float, nullable=False)
    price_per_sqm: Mapped[float | None] = mapped_column(Float, nullable=True)
    transaction_date: Mapped[date] = mapped_column(Date, nullable=False)

    __table_args__ = (
        UniqueConstraint("org_id", "external_id", name="uq_comparable_transactions_external"),
        Index("idx_comparable_transactions_area_date", "org_id", "area_name", "transaction_date"),
    )


class InvestorModel(Base):
    """Investor with an optional acquisition mandate (JSON document)."""

    __tablename__ = "investors"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    org_id: Mapped[str] = mapped_column(String(64), nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    mandate_json: Mapped[str | None] = mapped_column(Text, nullable=True)
    assigned_agent_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )

    __table_args__ = (Index("idx_investors_org", "org_id"),)


class InvestorHoldingModel(Base):
    """Existing investor position, used for portfolio-exposure boosts."""

    __tablename__ = "investor_holdings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    org_id: Mapped[str] = mapped_column(String(64), nullable=False)
    investor_id: Mapped[str] = mapped_column(String(64), nullable=False)
    geo_id: Mapped[str] = mapped_column(String(120), nullable=False)
    label: Mapped[str | None] = mapped_column(String(200), nullable=True)

    __table_args__ = (Index("idx_investor_holdings_lookup", "org_id", "investor_id", "geo_id"),)


class OrgUserModel(Base):
    """Org membership and role of a user."""

    __tablename__ = "org_users"

    org_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    role: Mapped[str] = mapped_column(String(20), nullable=False)
