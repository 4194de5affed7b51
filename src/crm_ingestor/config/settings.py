"""Configuration via pydantic-settings with .env support."""

from __future__ import annotations

from decimal import Decimal
from pathlib import Path

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class CommissionSettings(BaseModel):
    """Marketplace fee: a percentage of the sale price plus a flat amount."""

    percentage_points: Decimal = Decimal("0")
    flat_fee: Decimal = Decimal("0")


def _default_labels() -> dict[str, str]:
    return {
        "stock": "CRM/Stock",
        "sale_vinted": "CRM/Sales/Vinted",
        "sale_vestiaire": "CRM/Sales/Vestiaire",
        "sale_ebay": "CRM/Sales/eBay",
        "sale_leboncoin": "CRM/Sales/Leboncoin",
        "sale_whatnot": "CRM/Sales/Whatnot",
        "purchase": "CRM/Purchases",
        "favorite_offer": "CRM/Favorites",
        "done": "CRM/Done",
        "error": "CRM/Error",
    }


def _default_sheet_names() -> dict[str, str]:
    return {
        "stock": "Stock",
        "sales": "Sales",
        "purchases": "Purchases",
        "logs": "Logs",
    }


def _default_commissions() -> dict[str, CommissionSettings]:
    return {
        "Vinted": CommissionSettings(percentage_points=Decimal("5"), flat_fee=Decimal("0.70")),
        "Vestiaire": CommissionSettings(percentage_points=Decimal("15")),
        "eBay": CommissionSettings(percentage_points=Decimal("13"), flat_fee=Decimal("0.35")),
        "Leboncoin": CommissionSettings(percentage_points=Decimal("8")),
        "Whatnot": CommissionSettings(percentage_points=Decimal("8"), flat_fee=Decimal("0.30")),
    }


class CrmIngestorSettings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    Mapping fields (``labels``, ``sheet_names``, ``commissions``) are read from
    JSON in the environment, e.g. ``CRM_LABELS='{"done": "Processed"}'``.
    Partial mappings are completed with the defaults.
    """

    model_config = SettingsConfigDict(
        env_prefix="CRM_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # OAuth credentials
    credentials_path: Path = Path("credentials/client_secret.json")
    token_path: Path = Path("credentials/token.json")
    # False for unattended runs: fail instead of opening a browser for consent
    oauth_interactive: bool = True

    # Tabular store
    spreadsheet_id: str = ""
    sheet_names: dict[str, str] = Field(default_factory=_default_sheet_names)

    # Mailbox
    user_id: str = "me"
    labels: dict[str, str] = Field(default_factory=_default_labels)

    # Commission table, keyed by exact platform name
    commissions: dict[str, CommissionSettings] = Field(default_factory=_default_commissions)

    # Database
    database_path: Path = Path("data/crm_ingestor.db")

    # Pipeline budgets
    batch_size: int = 20
    max_runtime_seconds: float = 330.0
    max_threads_per_run: int | None = None
    ledger_max_entries: int = 500
    cursor_stale_seconds: float = 3600.0

    # Rate limiting & retry
    backoff_retries: int = 3
    backoff_base_delay_seconds: float = 0.5
    backoff_factor: float = 2.0
    backoff_max_delay_seconds: float = 30.0

    # Recurring trigger
    schedule_interval_minutes: int = 10

    # Logging
    log_level: str = "INFO"

    def model_post_init(self, __context: object) -> None:
        self.labels = {**_default_labels(), **self.labels}
        self.sheet_names = {**_default_sheet_names(), **self.sheet_names}

    def ensure_directories(self) -> None:
        """Create data and credentials directories if they don't exist."""
        self.database_path.parent.mkdir(parents=True, exist_ok=True)
        self.credentials_path.parent.mkdir(parents=True, exist_ok=True)
