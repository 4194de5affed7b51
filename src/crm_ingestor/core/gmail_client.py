"""Gmail API mailbox: thread search with offsets, message fetch, and labeling."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Any

from googleapiclient.discovery import Resource

from crm_ingestor.core.backoff import BackoffPolicy
from crm_ingestor.core.models import Message, Thread
from crm_ingestor.core.parser import GmailParser

logger = logging.getLogger(__name__)

# Gmail API hard limit for threads.list maxResults
MAX_PAGE_SIZE = 500


class GmailMailbox:
    """Thin wrapper around the Gmail API exposing the mailbox operations the pipeline needs.

    Every request goes through the backoff policy; once retries are exhausted
    the underlying ``HttpError`` propagates unchanged.
    """

    def __init__(
        self,
        service: Resource,
        user_id: str = "me",
        *,
        backoff: BackoffPolicy | None = None,
        parser: GmailParser | None = None,
    ) -> None:
        self._service = service
        self._user_id = user_id
        self._backoff = backoff or BackoffPolicy()
        self._parser = parser or GmailParser()
        self._label_ids: dict[str, str] = {}

    def _execute(self, request: Any, context: str) -> Any:
        return self._backoff.run(request.execute, context)

    def list_labels(self) -> list[dict[str, str]]:
        """List all Gmail labels.

        Returns:
            List of dicts with 'id' and 'name' keys.
        """
        request = self._service.users().labels().list(userId=self._user_id)
        results = self._execute(request, "list labels")
        labels = results.get("labels", [])
        return [{"id": lbl["id"], "name": lbl["name"]} for lbl in labels]

    def get_or_create_label(self, name: str) -> str:
        """Return the ID of the label called ``name``, creating it if needed."""
        if name in self._label_ids:
            return self._label_ids[name]

        self._label_ids = {lbl["name"]: lbl["id"] for lbl in self.list_labels()}
        if name in self._label_ids:
            return self._label_ids[name]

        request = self._service.users().labels().create(
            userId=self._user_id,
            body={
                "name": name,
                "labelListVisibility": "labelShow",
                "messageListVisibility": "show",
            },
        )
        created = self._execute(request, f"create label {name}")
        logger.info("Created label %s (%s)", name, created["id"])
        self._label_ids[name] = created["id"]
        return created["id"]

    def search(self, query: str, offset: int, limit: int) -> list[Thread]:
        """Return at most ``limit`` threads matching ``query``, skipping the first ``offset``.

        The Gmail API pages with opaque tokens, so reaching an offset means
        walking the token chain from the start.
        """
        wanted = offset + limit
        collected: list[Thread] = []
        page_token: str | None = None

        while len(collected) < wanted:
            kwargs: dict[str, Any] = {
                "userId": self._user_id,
                "q": query,
                "maxResults": min(MAX_PAGE_SIZE, wanted - len(collected)),
            }
            if page_token:
                kwargs["pageToken"] = page_token

            request = self._service.users().threads().list(**kwargs)
            response = self._execute(request, "list threads")

            threads = response.get("threads", [])
            collected.extend(
                Thread(thread_id=t["id"], snippet=t.get("snippet", "")) for t in threads
            )
            page_token = response.get("nextPageToken")
            if not threads or not page_token:
                break

        logger.debug("Search %r offset=%d limit=%d: %d threads", query, offset, limit,
                     len(collected[offset:wanted]))
        return collected[offset:wanted]

    def get_messages(self, thread: Thread) -> list[Message]:
        """Fetch and decode every message of a thread, in thread order."""
        request = self._service.users().threads().get(
            userId=self._user_id, id=thread.thread_id, format="full"
        )
        response = self._execute(request, f"get thread {thread.thread_id}")
        return [self._parser.parse(raw) for raw in response.get("messages", [])]

    def modify_labels(
        self,
        thread: Thread,
        add: Iterable[str] = (),
        remove: Iterable[str] = (),
    ) -> None:
        """Add and remove label IDs on a thread in a single request."""
        body = {"addLabelIds": list(add), "removeLabelIds": list(remove)}
        request = self._service.users().threads().modify(
            userId=self._user_id, id=thread.thread_id, body=body
        )
        self._execute(request, f"label thread {thread.thread_id}")

    def add_label(self, thread: Thread, label_id: str) -> None:
        self.modify_labels(thread, add=[label_id])
