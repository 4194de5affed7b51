"""Tests for CrmIngestorSettings and ConfigService lookups."""

from __future__ import annotations

from decimal import Decimal
from pathlib import Path

import pytest

from crm_ingestor.config.service import ConfigService
from crm_ingestor.config.settings import CrmIngestorSettings
from crm_ingestor.core.exceptions import ConfigurationError
from crm_ingestor.core.models import Commission, Platform, SourceCategory


class TestSettings:
    def test_defaults(self) -> None:
        settings = CrmIngestorSettings(_env_file=None)
        assert settings.batch_size == 20
        assert settings.ledger_max_entries == 500
        assert settings.cursor_stale_seconds == 3600
        assert settings.labels["done"] == "CRM/Done"
        assert settings.sheet_names["stock"] == "Stock"
        assert set(settings.commissions) == {str(p) for p in Platform}

    def test_every_category_has_a_default_label(self) -> None:
        settings = CrmIngestorSettings(_env_file=None)
        for category in SourceCategory:
            assert str(category) in settings.labels

    def test_env_overrides(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("CRM_SPREADSHEET_ID", "abc")
        monkeypatch.setenv("CRM_BATCH_SIZE", "5")
        monkeypatch.setenv("CRM_MAX_THREADS_PER_RUN", "40")
        settings = CrmIngestorSettings(_env_file=None)
        assert settings.spreadsheet_id == "abc"
        assert settings.batch_size == 5
        assert settings.max_threads_per_run == 40

    def test_partial_label_mapping_keeps_defaults(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("CRM_LABELS", '{"done": "Processed"}')
        settings = CrmIngestorSettings(_env_file=None)
        assert settings.labels["done"] == "Processed"
        assert settings.labels["stock"] == "CRM/Stock"

    def test_commissions_from_json(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv(
            "CRM_COMMISSIONS", '{"Vinted": {"percentage_points": "12", "flat_fee": "0.70"}}'
        )
        settings = CrmIngestorSettings(_env_file=None)
        assert settings.commissions["Vinted"].percentage_points == Decimal("12")
        assert settings.commissions["Vinted"].flat_fee == Decimal("0.70")

    def test_ensure_directories(self, tmp_path: Path) -> None:
        settings = CrmIngestorSettings(
            _env_file=None,
            database_path=tmp_path / "data" / "state.db",
            credentials_path=tmp_path / "creds" / "client_secret.json",
        )
        settings.ensure_directories()
        assert (tmp_path / "data").is_dir()
        assert (tmp_path / "creds").is_dir()


class TestConfigService:
    def test_commission_for_platform(self, config: ConfigService) -> None:
        assert config.commission_for(Platform.VINTED) == Commission(Decimal("12"), Decimal("0.70"))
        assert config.commission_for("eBay").flat_fee == Decimal("0.35")

    def test_commission_lookup_is_exact(self, config: ConfigService) -> None:
        assert config.commission_for("vinted") == Commission()

    def test_unconfigured_platform_is_free(self, config: ConfigService) -> None:
        assert config.commission_for(Platform.WHATNOT) == Commission()

    def test_label_name_for_category_and_status(self, config: ConfigService) -> None:
        assert config.label_name_for(SourceCategory.SALE_EBAY) == "CRM/Sales/eBay"
        assert config.label_name_for("error") == "CRM/Error"

    def test_missing_label_raises(self, config: ConfigService) -> None:
        with pytest.raises(ConfigurationError, match="No label configured"):
            config.label_name_for("archived")

    def test_sheet_name_for(self, config: ConfigService) -> None:
        assert config.sheet_name_for("purchases") == "Purchases"
        with pytest.raises(ConfigurationError, match="No sheet configured"):
            config.sheet_name_for("dashboard")
