"""Bounded memory of processed message IDs, persisted write-through."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable

from crm_ingestor.storage.state_store import StateStore

logger = logging.getLogger(__name__)

LEDGER_KEY = "PROC_IDS"
DEFAULT_MAX_ENTRIES = 500


def _epoch_ms() -> int:
    return int(time.time() * 1000)


class ProcessedIdLedger:
    """Maps message ID -> epoch-ms timestamp of when it was last marked.

    This is the fast-path duplicate filter. The "done" thread label stays the
    primary guard, so evicting an old ID only risks a harmless re-check.

    Load once per run with :meth:`load`; every :meth:`mark_seen` writes the
    whole mapping back to the state store.
    """

    def __init__(
        self,
        store: StateStore,
        *,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        clock: Callable[[], int] = _epoch_ms,
    ) -> None:
        self._store = store
        self._max_entries = max_entries
        self._clock = clock
        self._entries: dict[str, int] = {}

    def load(self) -> None:
        stored = self._store.get_json(LEDGER_KEY, {})
        if not isinstance(stored, dict):
            logger.warning("Ignoring malformed processed-ID ledger")
            stored = {}
        # Stable sort keeps insertion order among equal timestamps.
        self._entries = dict(sorted(stored.items(), key=lambda item: item[1]))

    def seen(self, message_id: str) -> bool:
        return message_id in self._entries

    def mark_seen(self, message_id: str) -> None:
        """Insert or refresh ``message_id``, prune, and persist."""
        self._entries.pop(message_id, None)
        self._entries[message_id] = self._clock()
        self._prune()
        self._store.set_json(LEDGER_KEY, self._entries)

    def clear(self) -> None:
        self._entries = {}
        self._store.delete(LEDGER_KEY)

    def _prune(self) -> None:
        excess = len(self._entries) - self._max_entries
        if excess <= 0:
            return
        oldest = sorted(self._entries.items(), key=lambda item: item[1])[:excess]
        for message_id, _ in oldest:
            del self._entries[message_id]
        logger.debug("Pruned %d ledger entries", excess)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, message_id: object) -> bool:
        return message_id in self._entries
