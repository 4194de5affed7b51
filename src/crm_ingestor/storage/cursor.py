"""Per-query resumable pagination over mailbox thread searches."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import Any

from crm_ingestor.core.models import Thread
from crm_ingestor.storage.state_store import StateStore

logger = logging.getLogger(__name__)

CURSOR_PREFIX = "THREAD_CURSOR::"
DEFAULT_STALE_SECONDS = 3600.0

SearchFn = Callable[[str, int, int], list[Thread]]


def _epoch_ms() -> int:
    return int(time.time() * 1000)


def cursor_key(query: str) -> str:
    return f"{CURSOR_PREFIX}{query}"


class ThreadCursor:
    """Hands out one page of threads per call and remembers where it stopped.

    State per query is ``{"page": int, "ts": epoch_ms, "done": bool}``. A
    cursor is deleted once its query is exhausted, so the next run starts from
    page 0. A cursor not advanced for ``stale_after_seconds`` restarts from
    page 0 instead of resuming.
    """

    def __init__(
        self,
        store: StateStore,
        search: SearchFn,
        *,
        stale_after_seconds: float = DEFAULT_STALE_SECONDS,
        clock: Callable[[], int] = _epoch_ms,
    ) -> None:
        self._store = store
        self._search = search
        self._stale_after_ms = int(stale_after_seconds * 1000)
        self._clock = clock

    def next_page(self, query: str, batch_size: int) -> list[Thread]:
        """Return the next page of threads for ``query``; empty once exhausted."""
        key = cursor_key(query)
        state: dict[str, Any] = self._store.get_json(key) or {"page": 0, "done": False}

        if state.get("done"):
            self._store.delete(key)
            return []

        now = self._clock()
        ts = state.get("ts")
        if ts is not None and now - ts > self._stale_after_ms:
            logger.info("Cursor for %r is stale (page %s), restarting", query, state.get("page"))
            state = {"page": 0, "done": False}

        page = int(state.get("page", 0))
        threads = self._search(query, page * batch_size, batch_size)

        if not threads:
            self._store.delete(key)
            return []

        self._store.set_json(
            key,
            {"page": page + 1, "ts": now, "done": len(threads) < batch_size},
        )
        return threads

    def peek(self, query: str) -> dict[str, Any] | None:
        return self._store.get_json(cursor_key(query))

    def clear(self, query: str | None = None) -> int:
        """Delete the cursor for ``query``, or every cursor when None. Returns the count."""
        if query is not None:
            return int(self._store.delete(cursor_key(query)))
        keys = self._store.keys(CURSOR_PREFIX)
        for key in keys:
            self._store.delete(key)
        return len(keys)
