"""Raw observation tables written by the ingestion collaborators.

Rows here are immutable once written. Only the snapshot aggregator reads
them; detectors work from snapshots and never import this package.
"""

from __future__ import annotations

from datetime import UTC, date, datetime

from sqlalchemy import Boolean, Date, DateTime, Float, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from market_signals.storage.models import Base


class RawRegistryTransactionModel(Base):
    """Official registry sale transaction."""

    __tablename__ = "raw_registry_transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    org_id: Mapped[str] = mapped_column(String(64), nullable=False)
    external_id: Mapped[str] = mapped_column(String(80), nullable=False)
    transaction_date: Mapped[date] = mapped_column(Date, nullable=False)
    geo_type: Mapped[str] = mapped_column(String(20), nullable=False)
    geo_id: Mapped[str] = mapped_column(String(120), nullable=False)
    geo_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    segment: Mapped[str] = mapped_column(String(60), nullable=False)
    sale_price: Mapped[float] = mapped_column(Float, nullable=False)
    area_sqm: Mapped[float | None] = mapped_column(Float, nullable=True)
    ingested_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )

    __table_args__ = (
        UniqueConstraint("org_id", "external_id", name="uq_raw_registry_transactions_external"),
        Index("idx_raw_registry_transactions_date", "org_id", "transaction_date"),
    )


class RawRentalContractModel(Base):
    """Official rental contract registration."""

    __tablename__ = "raw_rental_contracts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    org_id: Mapped[str] = mapped_column(String(64), nullable=False)
    external_id: Mapped[str] = mapped_column(String(80), nullable=False)
    contract_start: Mapped[date] = mapped_column(Date, nullable=False)
    geo_type: Mapped[str] = mapped_column(String(20), nullable=False)
    geo_id: Mapped[str] = mapped_column(String(120), nullable=False)
    geo_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    segment: Mapped[str] = mapped_column(String(60), nullable=False)
    annual_rent: Mapped[float] = mapped_column(Float, nullable=False)
    ingested_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )

    __table_args__ = (
        UniqueConstraint("org_id", "external_id", name="uq_raw_rental_contracts_external"),
        Index("idx_raw_rental_contracts_date", "org_id", "contract_start"),
    )


class RawPortalListingModel(Base):
    """Daily observation of one portal listing."""

    __tablename__ = "raw_portal_listings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    org_id: Mapped[str] = mapped_column(String(64), nullable=False)
    portal: Mapped[str] = mapped_column(String(40), nullable=False)
    listing_id: Mapped[str] = mapped_column(String(80), nullable=False)
    as_of_date: Mapped[date] = mapped_column(Date, nullable=False)
    geo_type: Mapped[str] = mapped_column(String(20), nullable=False)
    geo_id: Mapped[str] = mapped_column(String(120), nullable=False)
    geo_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    segment: Mapped[str] = mapped_column(String(60), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    price: Mapped[float | None] = mapped_column(Float, nullable=True)
    had_price_cut: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    days_on_market: Mapped[int | None] = mapped_column(Integer, nullable=True)
    ingested_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )

    __table_args__ = (
        UniqueConstraint(
            "org_id", "portal", "listing_id", "as_of_date", name="uq_raw_portal_listings_day"
        ),
        Index("idx_raw_portal_listings_date", "org_id", "as_of_date"),
    )
