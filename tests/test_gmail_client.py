"""Tests for GmailMailbox with a mocked Gmail API service."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest
from googleapiclient.errors import HttpError

from crm_ingestor.core.backoff import BackoffPolicy
from crm_ingestor.core.gmail_client import GmailMailbox
from crm_ingestor.core.models import Thread
from tests.conftest import b64url


@pytest.fixture
def mock_service() -> MagicMock:
    """Create a fully-mocked Gmail API Resource."""
    return MagicMock()


@pytest.fixture
def sleep() -> MagicMock:
    return MagicMock()


@pytest.fixture
def mailbox(mock_service: MagicMock, sleep: MagicMock) -> GmailMailbox:
    """GmailMailbox over the mocked service with instant retries."""
    return GmailMailbox(
        mock_service,
        user_id="me",
        backoff=BackoffPolicy(retries=2, base_delay=0.01, jitter=0.0, sleep=sleep),
    )


def _threads_list(mock_service: MagicMock) -> MagicMock:
    return mock_service.users.return_value.threads.return_value.list


def _labels(mock_service: MagicMock) -> MagicMock:
    return mock_service.users.return_value.labels.return_value


# ---------- labels ----------


class TestLabels:
    def test_list_labels(self, mailbox: GmailMailbox, mock_service: MagicMock) -> None:
        _labels(mock_service).list.return_value.execute.return_value = {
            "labels": [
                {"id": "INBOX", "name": "INBOX", "type": "system"},
                {"id": "Label_1", "name": "CRM/Stock", "type": "user"},
            ]
        }
        assert mailbox.list_labels() == [
            {"id": "INBOX", "name": "INBOX"},
            {"id": "Label_1", "name": "CRM/Stock"},
        ]

    def test_list_labels_empty(self, mailbox: GmailMailbox, mock_service: MagicMock) -> None:
        _labels(mock_service).list.return_value.execute.return_value = {}
        assert mailbox.list_labels() == []

    def test_get_existing_label(self, mailbox: GmailMailbox, mock_service: MagicMock) -> None:
        _labels(mock_service).list.return_value.execute.return_value = {
            "labels": [{"id": "Label_7", "name": "CRM/Done"}]
        }
        assert mailbox.get_or_create_label("CRM/Done") == "Label_7"
        _labels(mock_service).create.assert_not_called()

    def test_creates_missing_label(self, mailbox: GmailMailbox, mock_service: MagicMock) -> None:
        _labels(mock_service).list.return_value.execute.return_value = {"labels": []}
        _labels(mock_service).create.return_value.execute.return_value = {"id": "Label_9"}
        assert mailbox.get_or_create_label("CRM/Error") == "Label_9"
        body = _labels(mock_service).create.call_args.kwargs["body"]
        assert body["name"] == "CRM/Error"

    def test_label_ids_are_cached(self, mailbox: GmailMailbox, mock_service: MagicMock) -> None:
        _labels(mock_service).list.return_value.execute.return_value = {
            "labels": [{"id": "Label_1", "name": "CRM/Stock"}]
        }
        mailbox.get_or_create_label("CRM/Stock")
        mailbox.get_or_create_label("CRM/Stock")
        assert _labels(mock_service).list.return_value.execute.call_count == 1


# ---------- search ----------


class TestSearch:
    def test_single_page(self, mailbox: GmailMailbox, mock_service: MagicMock) -> None:
        _threads_list(mock_service).return_value.execute.return_value = {
            "threads": [{"id": "t1", "snippet": "hello"}, {"id": "t2"}],
        }
        threads = mailbox.search("label:crm-stock", 0, 20)
        assert threads == [Thread("t1", "hello"), Thread("t2")]
        kwargs = _threads_list(mock_service).call_args.kwargs
        assert kwargs["q"] == "label:crm-stock"
        assert kwargs["maxResults"] == 20
        assert "pageToken" not in kwargs

    def test_offset_walks_page_tokens(self, mailbox: GmailMailbox, mock_service: MagicMock) -> None:
        _threads_list(mock_service).return_value.execute.side_effect = [
            {"threads": [{"id": "t1"}, {"id": "t2"}], "nextPageToken": "p2"},
            {"threads": [{"id": "t3"}]},
        ]
        threads = mailbox.search("q", 1, 5)
        assert [t.thread_id for t in threads] == ["t2", "t3"]
        calls = _threads_list(mock_service).call_args_list
        assert calls[0].kwargs["maxResults"] == 6
        assert calls[1].kwargs["pageToken"] == "p2"
        assert calls[1].kwargs["maxResults"] == 4

    def test_stops_once_enough_collected(
        self, mailbox: GmailMailbox, mock_service: MagicMock
    ) -> None:
        _threads_list(mock_service).return_value.execute.return_value = {
            "threads": [{"id": f"t{i}"} for i in range(3)],
            "nextPageToken": "more",
        }
        assert len(mailbox.search("q", 0, 3)) == 3
        assert _threads_list(mock_service).call_count == 1

    def test_offset_past_end(self, mailbox: GmailMailbox, mock_service: MagicMock) -> None:
        _threads_list(mock_service).return_value.execute.return_value = {
            "threads": [{"id": "t1"}]
        }
        assert mailbox.search("q", 10, 5) == []

    def test_page_size_capped(self, mailbox: GmailMailbox, mock_service: MagicMock) -> None:
        _threads_list(mock_service).return_value.execute.return_value = {"threads": []}
        mailbox.search("q", 600, 100)
        assert _threads_list(mock_service).call_args.kwargs["maxResults"] == 500


# ---------- messages and labeling ----------


class TestMessages:
    def test_get_messages_decodes_each(
        self, mailbox: GmailMailbox, mock_service: MagicMock
    ) -> None:
        threads = mock_service.users.return_value.threads.return_value
        threads.get.return_value.execute.return_value = {
            "messages": [
                {
                    "id": "m1",
                    "threadId": "t1",
                    "labelIds": ["Label_1"],
                    "payload": {
                        "mimeType": "text/plain",
                        "headers": [{"name": "Subject", "value": "Stock"}],
                        "body": {"data": b64url('{"sku": "A1"}')},
                    },
                },
                {"id": "m2", "threadId": "t1", "payload": {"mimeType": "text/plain"}},
            ]
        }
        messages = mailbox.get_messages(Thread("t1"))
        assert [m.message_id for m in messages] == ["m1", "m2"]
        assert messages[0].plain_text == '{"sku": "A1"}'
        assert messages[0].label_ids == ("Label_1",)
        assert threads.get.call_args.kwargs["format"] == "full"

    def test_modify_labels(self, mailbox: GmailMailbox, mock_service: MagicMock) -> None:
        mailbox.modify_labels(Thread("t1"), add=["Label_done"], remove=["Label_err"])
        modify = mock_service.users.return_value.threads.return_value.modify
        assert modify.call_args.kwargs["id"] == "t1"
        assert modify.call_args.kwargs["body"] == {
            "addLabelIds": ["Label_done"],
            "removeLabelIds": ["Label_err"],
        }

    def test_add_label(self, mailbox: GmailMailbox, mock_service: MagicMock) -> None:
        mailbox.add_label(Thread("t1"), "Label_err")
        modify = mock_service.users.return_value.threads.return_value.modify
        assert modify.call_args.kwargs["body"] == {
            "addLabelIds": ["Label_err"],
            "removeLabelIds": [],
        }


# ---------- retries ----------


class TestRetries:
    def test_transient_error_is_retried(
        self, mailbox: GmailMailbox, mock_service: MagicMock, sleep: MagicMock
    ) -> None:
        error = HttpError(resp=MagicMock(status=429), content=b"rate limit")
        _threads_list(mock_service).return_value.execute.side_effect = [
            error,
            {"threads": [{"id": "t1"}]},
        ]
        assert [t.thread_id for t in mailbox.search("q", 0, 5)] == ["t1"]
        assert sleep.call_count == 1

    def test_error_propagates_after_retries(
        self, mailbox: GmailMailbox, mock_service: MagicMock
    ) -> None:
        error = HttpError(resp=MagicMock(status=500), content=b"backend")
        _labels(mock_service).list.return_value.execute.side_effect = error
        with pytest.raises(HttpError):
            mailbox.list_labels()
        assert _labels(mock_service).list.return_value.execute.call_count == 3
