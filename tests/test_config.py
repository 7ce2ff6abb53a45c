"""Tests for settings loading and validation."""

import pytest
from pydantic import ValidationError

from market_signals.config import (
    DatabaseSettings,
    NotificationSettings,
    PricingSettings,
    ScoreWeights,
    Settings,
)

TEST_URL = "sqlite+aiosqlite:///:memory:"


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    for name in ("ORG_IDS", "NOTIFY_RECIPIENT_ROLES", "PRICING_WEIGHT_PRICE", "DRY_RUN"):
        monkeypatch.delenv(name, raising=False)


class TestSettings:
    def test_defaults(self):
        settings = Settings(database=DatabaseSettings(DATABASE_URL=TEST_URL))

        assert settings.portal.min_active_listings == 30
        assert settings.truth.min_sample_size == 25
        assert settings.pricing.min_composite_score == 55
        assert settings.mapping.min_score == pytest.approx(0.35)
        assert settings.notifications.recipient_roles == ("agent", "manager")
        assert settings.org_ids == ()
        assert settings.dry_run is False

    def test_org_ids_from_env(self, monkeypatch):
        monkeypatch.setenv("ORG_IDS", "org_a, ,org_b")

        settings = Settings(database=DatabaseSettings(DATABASE_URL=TEST_URL))

        assert settings.org_ids == ("org_a", "org_b")

    def test_recipient_roles_from_env(self, monkeypatch):
        monkeypatch.setenv("NOTIFY_RECIPIENT_ROLES", "owner")

        assert NotificationSettings().recipient_roles == ("owner",)

    def test_validate_requirements(self):
        settings = Settings(database=DatabaseSettings(DATABASE_URL=TEST_URL))

        with pytest.raises(ValueError, match="At least one org"):
            settings.validate_requirements(org_ids=())
        settings.validate_requirements(org_ids=("org_a",))

    def test_thresholds_snapshot(self):
        settings = Settings(database=DatabaseSettings(DATABASE_URL=TEST_URL))

        snapshot = settings.thresholds_snapshot()

        assert snapshot["portal"]["min_active_listings"] == 30
        assert snapshot["mapping"]["low_risk_cap"] == pytest.approx(0.65)


class TestValidation:
    def test_rejects_unknown_database_scheme(self):
        with pytest.raises(ValidationError):
            DatabaseSettings(DATABASE_URL="mysql://x")

    def test_weights_must_sum_to_one(self):
        with pytest.raises(ValidationError, match="sum to 1.0"):
            ScoreWeights(PRICING_WEIGHT_PRICE=0.5)

    def test_weights_as_dict(self):
        assert sum(ScoreWeights().as_dict().values()) == pytest.approx(1.0)

    def test_loose_band_not_tighter_than_tight_band(self):
        with pytest.raises(ValidationError):
            PricingSettings(PRICING_SIZE_TOLERANCE=0.3, PRICING_LOOSE_SIZE_TOLERANCE=0.2)
