"""Pipeline orchestrator: page threads → parse messages → write records → label threads."""

from __future__ import annotations

import logging
import re
import time
from collections.abc import Callable, Iterable
from typing import Any

from crm_ingestor.config.service import ConfigService
from crm_ingestor.config.settings import CrmIngestorSettings
from crm_ingestor.core.auth import authenticate, build_gmail_service, build_sheets_service
from crm_ingestor.core.backoff import BackoffPolicy
from crm_ingestor.core.exceptions import ConfigurationError
from crm_ingestor.core.gmail_client import GmailMailbox
from crm_ingestor.core.interfaces import LogSink, Mailbox, TabularStore
from crm_ingestor.core.margin import SalesSummary, summarize_sales
from crm_ingestor.core.models import IngestProgress, Message, SourceCategory, Thread
from crm_ingestor.parsers import MessageParser, parser_for
from crm_ingestor.storage.cursor import CURSOR_PREFIX, ThreadCursor
from crm_ingestor.storage.ledger import ProcessedIdLedger
from crm_ingestor.storage.log_sink import SheetLogSink
from crm_ingestor.storage.sheets import SheetsTabularStore
from crm_ingestor.storage.state_store import StateStore
from crm_ingestor.storage.writer import CellwiseRecordWriter, RecordWriter

logger = logging.getLogger(__name__)

CATEGORY_ORDER: tuple[SourceCategory, ...] = tuple(SourceCategory)


def label_query_token(name: str) -> str:
    """Gmail search form of a label name ("CRM/Sales/eBay" -> "crm-sales-ebay")."""
    return re.sub(r"[\s/]+", "-", name.strip().lower())


def build_query(label: str, done_label: str) -> str:
    return f"label:{label_query_token(label)} -label:{label_query_token(done_label)}"


class CrmIngestor:
    """Drives ingestion of every labeled source category into the spreadsheet.

    Per category: page through threads carrying the category label but not
    the done label, parse each message, write the record, remember the
    message ID, and label the thread. Messages already labeled done are
    skipped; the processed-ID ledger skips individual messages handled in an
    earlier pass. A thread is labeled done only when none of its messages
    failed, otherwise it gets the error label and comes back next run.

    Collaborators may be passed in; any left out are built from settings on
    first use (OAuth, Gmail, Sheets, SQLite).
    """

    def __init__(
        self,
        settings: CrmIngestorSettings | None = None,
        on_progress: Callable[[IngestProgress], None] | None = None,
        *,
        mailbox: Mailbox | None = None,
        tabular: TabularStore | None = None,
        state: StateStore | None = None,
        log_sink: LogSink | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._settings = settings or CrmIngestorSettings()
        self._config = ConfigService(self._settings)
        self._on_progress = on_progress
        self._progress = IngestProgress()
        self._clock = clock
        self._started_at = 0.0

        self._mailbox = mailbox
        self._tabular = tabular
        self._state = state
        self._log_sink = log_sink

    @property
    def on_progress(self) -> Callable[[IngestProgress], None] | None:
        return self._on_progress

    @on_progress.setter
    def on_progress(self, callback: Callable[[IngestProgress], None] | None) -> None:
        self._on_progress = callback

    def _ensure_initialized(self) -> tuple[Mailbox, TabularStore, StateStore, LogSink]:
        """Initialize all components if not already done."""
        if self._mailbox is None or self._tabular is None:
            self._settings.ensure_directories()
            creds = authenticate(
                self._settings.credentials_path,
                self._settings.token_path,
                interactive=self._settings.oauth_interactive,
            )
            backoff = BackoffPolicy(
                retries=self._settings.backoff_retries,
                base_delay=self._settings.backoff_base_delay_seconds,
                factor=self._settings.backoff_factor,
                max_delay=self._settings.backoff_max_delay_seconds,
            )
            if self._mailbox is None:
                self._mailbox = GmailMailbox(
                    build_gmail_service(creds), self._settings.user_id, backoff=backoff
                )
            if self._tabular is None:
                self._tabular = SheetsTabularStore(
                    build_sheets_service(creds), self._settings.spreadsheet_id, backoff=backoff
                )

        self._ensure_state()

        if self._log_sink is None:
            self._log_sink = SheetLogSink(self._tabular, self._config.sheet_name_for("logs"))

        return self._mailbox, self._tabular, self._state, self._log_sink

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def ingest_all_labels_fast(self) -> IngestProgress:
        """Ingest every category in order, writing each record with one read and one write."""
        return self._run("fast", RecordWriter, CATEGORY_ORDER)

    def ingest_all_labels(self) -> IngestProgress:
        """Ingest every category in order with the cell-by-cell compatibility writer."""
        return self._run("compat", CellwiseRecordWriter, CATEGORY_ORDER)

    def ingest_category(
        self, category: SourceCategory, *, compat: bool = False
    ) -> IngestProgress:
        """Run a single category as its own invocation."""
        if compat:
            return self._run("compat", CellwiseRecordWriter, [category])
        return self._run("fast", RecordWriter, [category])

    def _run(
        self,
        mode: str,
        writer_cls: type[RecordWriter],
        categories: Iterable[SourceCategory],
    ) -> IngestProgress:
        _, tabular, state, log_sink = self._ensure_initialized()
        writer = writer_cls(tabular, self._config)

        ledger = ProcessedIdLedger(state, max_entries=self._settings.ledger_max_entries)
        ledger.load()

        run_id = state.start_run(mode)
        self._started_at = self._clock()
        self._progress = IngestProgress(current_stage="starting")
        self._notify()

        try:
            for category in categories:
                if self._budget_exhausted():
                    logger.info("Run budget exhausted before %s, resuming next run", category)
                    break
                try:
                    self._ingest_category(category, writer, ledger)
                except ConfigurationError as e:
                    self._abort_category(category, "Configuration fault", e)
                except Exception as e:
                    self._abort_category(category, "Category failed", e)

            self._progress.current_stage = "complete"
            self._notify()
        finally:
            state.complete_run(
                run_id,
                threads_seen=self._progress.threads_seen,
                messages_written=self._progress.messages_written,
                messages_skipped=self._progress.messages_skipped,
                messages_unparseable=self._progress.messages_unparseable,
                messages_failed=self._progress.messages_failed,
                categories_aborted=self._progress.categories_aborted,
            )

        summary = (
            f"Ingestion ({mode}) complete: {self._progress.messages_written} written, "
            f"{self._progress.messages_skipped} skipped, "
            f"{self._progress.messages_unparseable} unparseable, "
            f"{self._progress.messages_failed} failed, "
            f"{self._progress.categories_aborted} categories aborted"
        )
        logger.info(summary)
        log_sink.append("INFO", "ingest", summary, f"threads={self._progress.threads_seen}")
        return self._progress

    def _abort_category(self, category: SourceCategory, reason: str, error: Exception) -> None:
        self._progress.categories_aborted += 1
        logger.error("%s, aborting %s for this run: %s", reason, category, error)
        if self._log_sink is not None:
            self._log_sink.append("ERROR", str(category), f"{reason}, category aborted", str(error))
        self._notify()

    # ------------------------------------------------------------------
    # Category and thread processing
    # ------------------------------------------------------------------

    def _ingest_category(
        self,
        category: SourceCategory,
        writer: RecordWriter,
        ledger: ProcessedIdLedger,
    ) -> None:
        mailbox, _, state, _ = self._ensure_initialized()

        label = self._config.label_name_for(category)
        done_label = self._config.label_name_for("done")
        mailbox.get_or_create_label(label)
        done_id = mailbox.get_or_create_label(done_label)
        error_id = mailbox.get_or_create_label(self._config.label_name_for("error"))

        query = build_query(label, done_label)
        parser = parser_for(category)
        cursor = ThreadCursor(
            state,
            mailbox.search,
            stale_after_seconds=self._settings.cursor_stale_seconds,
        )

        self._progress.current_stage = str(category)
        self._notify()

        # Threads labeled done drop out of the query, shifting later threads
        # onto pages already passed. Sweep again from page 0 while the last
        # sweep made progress or resumed a cursor from an earlier run.
        attempted: set[str] = set()
        while not self._budget_exhausted():
            resumed = cursor.peek(query) is not None
            labeled = 0
            while not self._budget_exhausted():
                threads = cursor.next_page(query, self._settings.batch_size)
                if not threads:
                    break
                logger.info("%s: processing page of %d threads", category, len(threads))
                for thread in threads:
                    if thread.thread_id in attempted:
                        continue
                    attempted.add(thread.thread_id)
                    labeled += self._process_thread(
                        category, thread, parser, writer, ledger, done_id, error_id
                    )
            if not labeled and not resumed:
                break

    def _process_thread(
        self,
        category: SourceCategory,
        thread: Thread,
        parser: MessageParser,
        writer: RecordWriter,
        ledger: ProcessedIdLedger,
        done_id: str,
        error_id: str,
    ) -> bool:
        """Process one thread. Returns True if it was labeled done."""
        mailbox, _, _, log_sink = self._ensure_initialized()
        self._progress.threads_seen += 1

        try:
            messages = mailbox.get_messages(thread)
        except Exception as e:
            logger.error("Failed to fetch thread %s: %s", thread.thread_id, e)
            self._progress.messages_failed += 1
            self._notify()
            return False

        # Messages already labeled done were handled by an earlier run; a reply
        # that joined the conversation since then carries no label yet.
        pending = [message for message in messages if done_id not in message.label_ids]
        self._progress.messages_skipped += len(messages) - len(pending)
        if not pending:
            self._notify()
            return False

        failed = False
        for message in pending:
            if ledger.seen(message.message_id):
                self._progress.messages_skipped += 1
                continue
            try:
                self._process_message(category, message, parser, writer, ledger)
            except ConfigurationError:
                raise
            except Exception as e:
                failed = True
                self._progress.messages_failed += 1
                logger.error(
                    "Failed to ingest %s message %s: %s", category, message.message_id, e
                )
                log_sink.append(
                    "ERROR",
                    str(category),
                    f"Failed to ingest message {message.message_id}",
                    str(e),
                )
            self._notify()

        try:
            if failed:
                mailbox.add_label(thread, error_id)
                return False
            mailbox.modify_labels(thread, add=[done_id], remove=[error_id])
            return True
        except Exception as e:
            logger.error("Failed to label thread %s: %s", thread.thread_id, e)
            return False

    def _process_message(
        self,
        category: SourceCategory,
        message: Message,
        parser: MessageParser,
        writer: RecordWriter,
        ledger: ProcessedIdLedger,
    ) -> None:
        record = parser.parse(message)
        if record is None:
            logger.info(
                "Unrecognised %s message %s (%r), marking processed",
                category, message.message_id, message.subject,
            )
            ledger.mark_seen(message.message_id)
            self._progress.messages_unparseable += 1
            return

        outcome = writer.write(record)
        ledger.mark_seen(message.message_id)
        self._progress.messages_written += 1
        logger.info("%s message %s: %s", category, message.message_id, outcome)

    def _budget_exhausted(self) -> bool:
        if self._clock() - self._started_at >= self._settings.max_runtime_seconds:
            return True
        quota = self._settings.max_threads_per_run
        return quota is not None and self._progress.threads_seen >= quota

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def clear_state(self, *, ledger: bool = True, cursors: bool = True) -> dict[str, int]:
        """Forget processed IDs and/or pagination cursors. Returns what was removed."""
        state = self._ensure_state()
        removed = {"ledger_entries": 0, "cursors": 0}
        if ledger:
            processed = ProcessedIdLedger(state)
            processed.load()
            removed["ledger_entries"] = len(processed)
            processed.clear()
        if cursors:
            removed["cursors"] = ThreadCursor(state, lambda q, o, n: []).clear()
        logger.info("Cleared state: %s", removed)
        return removed

    def get_status(self) -> dict[str, Any]:
        """Ledger size, open cursors and recent runs."""
        state = self._ensure_state()
        processed = ProcessedIdLedger(state)
        processed.load()
        return {
            "ledger_entries": len(processed),
            "cursors": {key: state.get_json(key) for key in state.keys(CURSOR_PREFIX)},
            "recent_runs": state.recent_runs(),
        }

    def sales_kpis(self) -> SalesSummary:
        """Revenue, fees and margin totals computed from the Sales sheet."""
        _, tabular, _, _ = self._ensure_initialized()
        return summarize_sales(tabular.get_all_rows(self._config.sheet_name_for("sales")))

    def list_labels(self) -> list[dict[str, str]]:
        mailbox, _, _, _ = self._ensure_initialized()
        return mailbox.list_labels()

    def close(self) -> None:
        if self._state:
            self._state.close()

    def _ensure_state(self) -> StateStore:
        """Open the state store without touching remote services."""
        if self._state is None:
            self._state = StateStore(self._settings.database_path)
            self._state.connect()
        return self._state

    def _notify(self) -> None:
        if self._on_progress:
            self._on_progress(self._progress)
