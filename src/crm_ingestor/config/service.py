"""Read-only lookups over settings used by parsers, writers and the orchestrator."""

from __future__ import annotations

from crm_ingestor.config.settings import CrmIngestorSettings
from crm_ingestor.core.exceptions import ConfigurationError
from crm_ingestor.core.models import Commission, Platform, SourceCategory


class ConfigService:
    """Commission, label and sheet-name lookups."""

    def __init__(self, settings: CrmIngestorSettings) -> None:
        self._settings = settings

    def commission_for(self, platform: Platform | str) -> Commission:
        """Commission for a platform; platforms without an entry are free."""
        entry = self._settings.commissions.get(str(platform))
        if entry is None:
            return Commission()
        return Commission(
            percentage_points=entry.percentage_points,
            flat_fee=entry.flat_fee,
        )

    def label_name_for(self, category: SourceCategory | str) -> str:
        """Mailbox label name for a source category or a status ("done", "error")."""
        try:
            return self._settings.labels[str(category)]
        except KeyError:
            raise ConfigurationError(f"No label configured for {category}") from None

    def sheet_name_for(self, kind: str) -> str:
        try:
            return self._settings.sheet_names[kind]
        except KeyError:
            raise ConfigurationError(f"No sheet configured for {kind}") from None
