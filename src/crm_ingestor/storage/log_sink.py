"""Operator-visible log entries written to the Logs sheet."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import UTC, datetime

from crm_ingestor.core.interfaces import TabularStore

logger = logging.getLogger(__name__)


class NullLogSink:
    """Default sink: drops every entry."""

    def append(self, level: str, source: str, message: str, detail: str = "") -> None:
        return None


class SheetLogSink:
    """Appends ``[timestamp, level, source, message, detail]`` rows to a sheet.

    Fire-and-forget: a failed append is reported through stdlib logging and
    never reaches the pipeline.
    """

    def __init__(
        self,
        tabular: TabularStore,
        sheet: str = "Logs",
        *,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ) -> None:
        self._tabular = tabular
        self._sheet = sheet
        self._clock = clock

    def append(self, level: str, source: str, message: str, detail: str = "") -> None:
        row = [self._clock().isoformat(timespec="seconds"), level, source, message, detail]
        try:
            self._tabular.append_rows(self._sheet, [row])
        except Exception as e:
            logger.warning("Could not append to %s sheet: %s", self._sheet, e)
