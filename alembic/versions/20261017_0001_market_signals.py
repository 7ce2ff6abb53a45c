"""Market signals schema: raw inputs, reference data, snapshots, signals, targets, notifications.

Revision ID: 001_market_signals
Revises:
Create Date: 2026-10-17 00:00:00.000000+00:00
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001_market_signals"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _geo_columns() -> list[sa.Column]:
    return [
        sa.Column("geo_type", sa.String(20), nullable=False),
        sa.Column("geo_id", sa.String(120), nullable=False),
        sa.Column("geo_name", sa.String(200), nullable=True),
    ]


def upgrade() -> None:
    # Raw ingestion tables (written by ingestion jobs, read by the snapshot aggregator)
    op.create_table(
        "raw_registry_transactions",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("org_id", sa.String(64), nullable=False),
        sa.Column("external_id", sa.String(80), nullable=False),
        sa.Column("transaction_date", sa.Date(), nullable=False),
        *_geo_columns(),
        sa.Column("segment", sa.String(60), nullable=False),
        sa.Column("sale_price", sa.Float(), nullable=False),
        sa.Column("area_sqm", sa.Float(), nullable=True),
        sa.Column("ingested_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("org_id", "external_id", name="uq_raw_registry_transactions_external"),
    )
    op.create_index(
        "idx_raw_registry_transactions_date",
        "raw_registry_transactions",
        ["org_id", "transaction_date"],
    )

    op.create_table(
        "raw_rental_contracts",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("org_id", sa.String(64), nullable=False),
        sa.Column("external_id", sa.String(80), nullable=False),
        sa.Column("contract_start", sa.Date(), nullable=False),
        *_geo_columns(),
        sa.Column("segment", sa.String(60), nullable=False),
        sa.Column("annual_rent", sa.Float(), nullable=False),
        sa.Column("ingested_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("org_id", "external_id", name="uq_raw_rental_contracts_external"),
    )
    op.create_index(
        "idx_raw_rental_contracts_date", "raw_rental_contracts", ["org_id", "contract_start"]
    )

    op.create_table(
        "raw_portal_listings",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("org_id", sa.String(64), nullable=False),
        sa.Column("portal", sa.String(40), nullable=False),
        sa.Column("listing_id", sa.String(80), nullable=False),
        sa.Column("as_of_date", sa.Date(), nullable=False),
        *_geo_columns(),
        sa.Column("segment", sa.String(60), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("price", sa.Float(), nullable=True),
        sa.Column("had_price_cut", sa.Boolean(), nullable=False),
        sa.Column("days_on_market", sa.Integer(), nullable=True),
        sa.Column("ingested_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "org_id", "portal", "listing_id", "as_of_date", name="uq_raw_portal_listings_day"
        ),
    )
    op.create_index(
        "idx_raw_portal_listings_date", "raw_portal_listings", ["org_id", "as_of_date"]
    )

    # Reference data
    op.create_table(
        "portal_listings",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("org_id", sa.String(64), nullable=False),
        sa.Column("portal", sa.String(40), nullable=False),
        sa.Column("listing_id", sa.String(80), nullable=False),
        sa.Column("listing_url", sa.String(500), nullable=True),
        sa.Column("area_name", sa.String(200), nullable=False),
        sa.Column("building_name", sa.String(200), nullable=True),
        sa.Column("property_type", sa.String(60), nullable=False),
        sa.Column("bedrooms", sa.Integer(), nullable=True),
        sa.Column("size_sqm", sa.Float(), nullable=True),
        sa.Column("asking_price", sa.Float(), nullable=True),
        sa.Column("price_per_sqm", sa.Float(), nullable=True),
        sa.Column("listing_type", sa.String(10), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("listed_date", sa.Date(), nullable=True),
        sa.Column("days_on_market", sa.Integer(), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("org_id", "portal", "listing_id", name="uq_portal_listings_listing"),
    )
    op.create_index("idx_portal_listings_area", "portal_listings", ["org_id", "area_name"])

    op.create_table(
        "comparable_transactions",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("org_id", sa.String(64), nullable=False),
        sa.Column("external_id", sa.String(80), nullable=False),
        sa.Column("area_name", sa.String(200), nullable=False),
        sa.Column("building_name", sa.String(200), nullable=True),
        sa.Column("property_type", sa.String(60), nullable=True),
        sa.Column("bedrooms", sa.Integer(), nullable=True),
        sa.Column("size_sqm", sa.Float(), nullable=True),
        sa.Column("price", sa.Float(), nullable=False),
        sa.Column("price_per_sqm", sa.Float(), nullable=True),
        sa.Column("transaction_date", sa.Date(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("org_id", "external_id", name="uq_comparable_transactions_external"),
    )
    op.create_index(
        "idx_comparable_transactions_area_date",
        "comparable_transactions",
        ["org_id", "area_name", "transaction_date"],
    )

    op.create_table(
        "investors",
        sa.Column("id", sa.String(64), nullable=False),
        sa.Column("org_id", sa.String(64), nullable=False),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("mandate_json", sa.Text(), nullable=True),
        sa.Column("assigned_agent_id", sa.String(64), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_investors_org", "investors", ["org_id"])

    op.create_table(
        "investor_holdings",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("org_id", sa.String(64), nullable=False),
        sa.Column("investor_id", sa.String(64), nullable=False),
        sa.Column("geo_id", sa.String(120), nullable=False),
        sa.Column("label", sa.String(200), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "idx_investor_holdings_lookup", "investor_holdings", ["org_id", "investor_id", "geo_id"]
    )

    op.create_table(
        "org_users",
        sa.Column("org_id", sa.String(64), nullable=False),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("role", sa.String(20), nullable=False),
        sa.PrimaryKeyConstraint("org_id", "user_id"),
    )

    # Snapshots
    op.create_table(
        "market_metric_snapshot",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("org_id", sa.String(64), nullable=False),
        sa.Column("source", sa.String(20), nullable=False),
        sa.Column("metric", sa.String(40), nullable=False),
        *_geo_columns(),
        sa.Column("segment", sa.String(60), nullable=False),
        sa.Column("timeframe", sa.String(10), nullable=False),
        sa.Column("window_start", sa.Date(), nullable=False),
        sa.Column("window_end", sa.Date(), nullable=False),
        sa.Column("value", sa.Float(), nullable=False),
        sa.Column("sample_size", sa.Integer(), nullable=False),
        sa.Column("evidence_json", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
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
    )
    op.create_index(
        "idx_market_metric_snapshot_org_tf",
        "market_metric_snapshot",
        ["org_id", "timeframe", "window_end"],
    )

    op.create_table(
        "portal_listing_snapshot",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("org_id", sa.String(64), nullable=False),
        sa.Column("portal", sa.String(40), nullable=False),
        *_geo_columns(),
        sa.Column("segment", sa.String(60), nullable=False),
        sa.Column("timeframe", sa.String(10), nullable=False),
        sa.Column("as_of_date", sa.Date(), nullable=False),
        sa.Column("active_listings", sa.Integer(), nullable=False),
        sa.Column("price_cuts_count", sa.Integer(), nullable=False),
        sa.Column("stale_listings_count", sa.Integer(), nullable=False),
        sa.Column("evidence_json", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "org_id",
            "portal",
            "geo_type",
            "geo_id",
            "segment",
            "timeframe",
            "as_of_date",
            name="uq_portal_listing_snapshot_day",
        ),
    )
    op.create_index(
        "idx_portal_listing_snapshot_org_date",
        "portal_listing_snapshot",
        ["org_id", "as_of_date"],
    )

    # Signals, targets, notifications
    op.create_table(
        "market_signal",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("org_id", sa.String(64), nullable=False),
        sa.Column("signal_key", sa.String(400), nullable=False),
        sa.Column("type", sa.String(40), nullable=False),
        sa.Column("source_type", sa.String(20), nullable=False),
        sa.Column("source", sa.String(40), nullable=False),
        *_geo_columns(),
        sa.Column("segment", sa.String(60), nullable=True),
        sa.Column("metric", sa.String(40), nullable=False),
        sa.Column("timeframe", sa.String(10), nullable=False),
        sa.Column("current_value", sa.Float(), nullable=False),
        sa.Column("prev_value", sa.Float(), nullable=True),
        sa.Column("delta_value", sa.Float(), nullable=True),
        sa.Column("delta_pct", sa.Float(), nullable=True),
        sa.Column("confidence_score", sa.Float(), nullable=False),
        sa.Column("severity", sa.String(20), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="new"),
        sa.Column("evidence_json", sa.Text(), nullable=False),
        sa.Column("acknowledged_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("acknowledged_by", sa.String(64), nullable=True),
        sa.Column("dismissed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("dismissed_by", sa.String(64), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("org_id", "signal_key", name="uq_market_signal_key"),
    )
    op.create_index("idx_market_signal_org_type", "market_signal", ["org_id", "type"])
    op.create_index("idx_market_signal_org_status", "market_signal", ["org_id", "status"])

    op.create_table(
        "market_signal_target",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("org_id", sa.String(64), nullable=False),
        sa.Column("signal_id", sa.Integer(), nullable=False),
        sa.Column("investor_id", sa.String(64), nullable=False),
        sa.Column("relevance_score", sa.Float(), nullable=False),
        sa.Column("reason_json", sa.Text(), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="new"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["signal_id"], ["market_signal.id"], ondelete="CASCADE"),
        sa.UniqueConstraint(
            "org_id", "signal_id", "investor_id", name="uq_market_signal_target_pair"
        ),
    )
    op.create_index(
        "idx_market_signal_target_org_status", "market_signal_target", ["org_id", "status"]
    )
    op.create_index("idx_market_signal_target_signal", "market_signal_target", ["signal_id"])

    op.create_table(
        "notifications",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("org_id", sa.String(64), nullable=False),
        sa.Column("recipient_user_id", sa.String(64), nullable=False),
        sa.Column("notification_key", sa.String(300), nullable=False),
        sa.Column("entity_type", sa.String(40), nullable=False),
        sa.Column("entity_id", sa.String(64), nullable=False),
        sa.Column("title", sa.String(300), nullable=False),
        sa.Column("body", sa.Text(), nullable=False),
        sa.Column("metadata_json", sa.Text(), nullable=False),
        sa.Column("read_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("notification_key"),
    )
    op.create_index(
        "idx_notifications_recipient", "notifications", ["org_id", "recipient_user_id"]
    )


def downgrade() -> None:
    op.drop_table("notifications")
    op.drop_table("market_signal_target")
    op.drop_table("market_signal")
    op.drop_table("portal_listing_snapshot")
    op.drop_table("market_metric_snapshot")
    op.drop_table("org_users")
    op.drop_table("investor_holdings")
    op.drop_table("investors")
    op.drop_table("comparable_transactions")
    op.drop_table("portal_listings")
    op.drop_table("raw_portal_listings")
    op.drop_table("raw_rental_contracts")
    op.drop_table("raw_registry_transactions")
