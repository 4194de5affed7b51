"""Shared fixtures and in-memory collaborators for CRM Ingestor tests."""

from __future__ import annotations

import base64
import dataclasses
import itertools
from collections.abc import Iterable, Mapping, Sequence
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path
from typing import Any

import pytest

from crm_ingestor.config.service import ConfigService
from crm_ingestor.config.settings import CommissionSettings, CrmIngestorSettings
from crm_ingestor.core.exceptions import ConfigurationError
from crm_ingestor.core.models import Message, Thread
from crm_ingestor.pipeline.ingestor import label_query_token
from crm_ingestor.storage.state_store import StateStore
from crm_ingestor.storage.writer import (
    LOGS_HEADERS,
    PURCHASES_HEADERS,
    SALES_HEADERS,
    STOCK_HEADERS,
)

_message_ids = itertools.count(1)


def make_message(
    body: str = "",
    *,
    subject: str = "",
    sender: str = "Shop <shop@example.com>",
    message_id: str | None = None,
    thread_id: str = "",
    html: str | None = None,
    date: datetime | None = datetime(2025, 3, 14, 9, 30, tzinfo=timezone.utc),
) -> Message:
    """Build a decoded Message with sensible defaults."""
    return Message(
        message_id=message_id or f"msg_{next(_message_ids):04d}",
        thread_id=thread_id,
        sender=sender,
        subject=subject,
        date=date,
        plain_text=body or None,
        html=html,
    )


def b64url(text: str) -> str:
    """Encode text the way the Gmail API encodes body data."""
    return base64.urlsafe_b64encode(text.encode("utf-8")).decode("ascii").rstrip("=")


class InMemoryTabularStore:
    """Dict-of-sheets stand-in for the Google Sheets store, with a call log."""

    def __init__(self, sheets: dict[str, list[list[Any]]] | None = None) -> None:
        self.sheets = {name: [list(r) for r in rows] for name, rows in (sheets or {}).items()}
        self.calls: list[tuple[str, str]] = []

    def _require(self, sheet: str) -> list[list[Any]]:
        if sheet not in self.sheets:
            raise ConfigurationError(f"Sheet {sheet!r} not found in spreadsheet")
        return self.sheets[sheet]

    def get_all_rows(self, sheet: str) -> list[list[Any]]:
        self.calls.append(("get", sheet))
        return [list(row) for row in self._require(sheet)]

    def set_rows(
        self,
        sheet: str,
        start_row: int,
        rows: Sequence[Sequence[Any]],
        start_column: int = 1,
    ) -> None:
        self.calls.append(("set", sheet))
        data = self._require(sheet)
        for offset, row in enumerate(rows):
            index = start_row - 1 + offset
            while len(data) <= index:
                data.append([])
            target = data[index]
            for col, value in enumerate(row, start=start_column - 1):
                while len(target) <= col:
                    target.append("")
                target[col] = value

    def set_cells(self, sheet: str, row_number: int, cells: Mapping[int, Any]) -> None:
        self.calls.append(("set", sheet))
        data = self._require(sheet)
        while len(data) < row_number:
            data.append([])
        target = data[row_number - 1]
        for column, value in cells.items():
            while len(target) < column:
                target.append("")
            target[column - 1] = value

    def append_rows(self, sheet: str, rows: Sequence[Sequence[Any]]) -> None:
        self.calls.append(("append", sheet))
        self._require(sheet).extend(list(row) for row in rows)

    def writes(self) -> int:
        return sum(1 for kind, _ in self.calls if kind in ("set", "append"))


class FakeMailbox:
    """Gmail stand-in that honours ``label:x -label:y`` queries and records labeling."""

    def __init__(self) -> None:
        self._label_ids: dict[str, str] = {}
        self._messages: dict[str, list[Message]] = {}
        self._thread_labels: dict[str, set[str]] = {}
        self.modify_calls: list[tuple[str, tuple[str, ...], tuple[str, ...]]] = []
        self.search_calls: list[tuple[str, int, int]] = []
        self.fail_threads: set[str] = set()

    def get_or_create_label(self, name: str) -> str:
        if name not in self._label_ids:
            self._label_ids[name] = f"Label_{len(self._label_ids) + 1}"
        return self._label_ids[name]

    def list_labels(self) -> list[dict[str, str]]:
        return [{"id": lid, "name": name} for name, lid in self._label_ids.items()]

    def add_thread(self, label: str, messages: Iterable[Message], thread_id: str | None = None) -> Thread:
        thread_id = thread_id or f"thread_{len(self._messages) + 1:03d}"
        self._messages[thread_id] = [
            dataclasses.replace(m, thread_id=thread_id) for m in messages
        ]
        self._thread_labels[thread_id] = {self.get_or_create_label(label)}
        return Thread(thread_id=thread_id)

    def labels_of(self, thread_id: str) -> set[str]:
        names = {lid: name for name, lid in self._label_ids.items()}
        return {names[lid] for lid in self._thread_labels[thread_id]}

    def _tokens(self, thread_id: str) -> set[str]:
        return {label_query_token(name) for name in self.labels_of(thread_id)}

    def search(self, query: str, offset: int, limit: int) -> list[Thread]:
        self.search_calls.append((query, offset, limit))
        include = [t[len("label:"):] for t in query.split() if t.startswith("label:")]
        exclude = [t[len("-label:"):] for t in query.split() if t.startswith("-label:")]
        matching = [
            Thread(thread_id=tid)
            for tid in self._messages
            if all(i in self._tokens(tid) for i in include)
            and not any(e in self._tokens(tid) for e in exclude)
        ]
        return matching[offset:offset + limit]

    def get_messages(self, thread: Thread) -> list[Message]:
        if thread.thread_id in self.fail_threads:
            raise RuntimeError("backend error")
        labels = tuple(sorted(self._thread_labels[thread.thread_id]))
        return [
            dataclasses.replace(m, label_ids=labels) for m in self._messages[thread.thread_id]
        ]

    def modify_labels(self, thread: Thread, add: Iterable[str] = (), remove: Iterable[str] = ()) -> None:
        add, remove = tuple(add), tuple(remove)
        self.modify_calls.append((thread.thread_id, add, remove))
        labels = self._thread_labels[thread.thread_id]
        labels.update(add)
        labels.difference_update(remove)

    def add_label(self, thread: Thread, label_id: str) -> None:
        self.modify_labels(thread, add=[label_id])


class RecordingLogSink:
    def __init__(self) -> None:
        self.entries: list[tuple[str, str, str, str]] = []

    def append(self, level: str, source: str, message: str, detail: str = "") -> None:
        self.entries.append((level, source, message, detail))


@pytest.fixture
def settings(tmp_path: Path) -> CrmIngestorSettings:
    """Settings pointing at temporary paths, with the Vinted fee used in examples."""
    return CrmIngestorSettings(
        credentials_path=tmp_path / "creds" / "client_secret.json",
        token_path=tmp_path / "creds" / "token.json",
        database_path=tmp_path / "data" / "state.db",
        spreadsheet_id="sheet-123",
        batch_size=10,
        commissions={
            "Vinted": CommissionSettings(
                percentage_points=Decimal("12"), flat_fee=Decimal("0.70")
            ),
            "eBay": CommissionSettings(percentage_points=Decimal("13"), flat_fee=Decimal("0.35")),
        },
    )


@pytest.fixture
def config(settings: CrmIngestorSettings) -> ConfigService:
    return ConfigService(settings)


@pytest.fixture
def tabular() -> InMemoryTabularStore:
    """Spreadsheet with empty Stock, Sales, Purchases and Logs sheets (headers only)."""
    return InMemoryTabularStore({
        "Stock": [list(STOCK_HEADERS)],
        "Sales": [list(SALES_HEADERS)],
        "Purchases": [list(PURCHASES_HEADERS)],
        "Logs": [list(LOGS_HEADERS)],
    })


@pytest.fixture
def mailbox() -> FakeMailbox:
    return FakeMailbox()


@pytest.fixture
def log_sink() -> RecordingLogSink:
    return RecordingLogSink()


@pytest.fixture
def state(tmp_path: Path) -> StateStore:
    store = StateStore(tmp_path / "state.db")
    store.connect()
    yield store
    store.close()


@pytest.fixture
def tmp_db_path(tmp_path: Path) -> Path:
    return tmp_path / "test.db"
