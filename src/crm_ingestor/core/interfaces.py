"""Collaborator interfaces the pipeline is constructed with."""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from typing import Any, Protocol

from crm_ingestor.core.models import Message, Thread


class Mailbox(Protocol):
    def search(self, query: str, offset: int, limit: int) -> list[Thread]: ...

    def get_messages(self, thread: Thread) -> list[Message]: ...

    def modify_labels(
        self, thread: Thread, add: Iterable[str] = (), remove: Iterable[str] = ()
    ) -> None: ...

    def add_label(self, thread: Thread, label_id: str) -> None: ...

    def get_or_create_label(self, name: str) -> str: ...

    def list_labels(self) -> list[dict[str, str]]: ...


class TabularStore(Protocol):
    """Row-oriented sheet access. Rows and columns are 1-based; row 1 is the header."""

    def get_all_rows(self, sheet: str) -> list[list[Any]]: ...

    def set_rows(
        self, sheet: str, start_row: int, rows: Sequence[Sequence[Any]], start_column: int = 1
    ) -> None: ...

    def set_cells(self, sheet: str, row_number: int, cells: Mapping[int, Any]) -> None: ...

    def append_rows(self, sheet: str, rows: Sequence[Sequence[Any]]) -> None: ...


class LogSink(Protocol):
    def append(self, level: str, source: str, message: str, detail: str = "") -> None: ...
