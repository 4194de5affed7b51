"""Command line entry point for running and maintaining the CRM Ingestor."""

from __future__ import annotations

import argparse
import logging
import sys

from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.triggers.interval import IntervalTrigger

from crm_ingestor.config.settings import CrmIngestorSettings
from crm_ingestor.core.models import IngestProgress, SourceCategory
from crm_ingestor.pipeline.ingestor import CrmIngestor


def setup_logging(level: str) -> None:
    """Configure logging with timestamp and module info."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def on_progress(progress: IngestProgress) -> None:
    """Print progress updates to stdout."""
    print(
        f"[{progress.current_stage}] "
        f"threads={progress.threads_seen} "
        f"written={progress.messages_written} "
        f"skipped={progress.messages_skipped} "
        f"unparseable={progress.messages_unparseable} "
        f"failed={progress.messages_failed}",
        end="\r",
        flush=True,
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="CRM Ingestor - Ingest marketplace emails into the CRM spreadsheet"
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    subparsers.add_parser("list-labels", help="List all Gmail labels")

    ingest_parser = subparsers.add_parser("ingest", help="Ingest labeled emails")
    ingest_parser.add_argument(
        "--category",
        "-c",
        choices=[str(c) for c in SourceCategory],
        help="Only ingest this category (default: all, in order)",
    )
    ingest_parser.add_argument(
        "--compat",
        action="store_true",
        help="Use the cell-by-cell writer instead of the batched one",
    )

    subparsers.add_parser("status", help="Show ledger size, open cursors and recent runs")

    clear_parser = subparsers.add_parser("clear-state", help="Forget processed IDs and cursors")
    clear_parser.add_argument("--ledger", action="store_true", help="Only clear the ledger")
    clear_parser.add_argument("--cursors", action="store_true", help="Only clear cursors")

    subparsers.add_parser("kpis", help="Show sales KPIs from the Sales sheet")

    schedule_parser = subparsers.add_parser(
        "schedule", help="Run the fast ingestion on a recurring interval"
    )
    schedule_parser.add_argument(
        "--interval-minutes",
        type=int,
        default=None,
        dest="interval_minutes",
        help="Minutes between runs (default: from settings)",
    )
    return parser


def run_schedule(ingestor: CrmIngestor, interval_minutes: int) -> None:
    """Block, running ``ingest_all_labels_fast`` every ``interval_minutes``."""
    scheduler = BlockingScheduler()
    scheduler.add_job(
        ingestor.ingest_all_labels_fast,
        IntervalTrigger(minutes=interval_minutes),
        id="crm-ingest",
        max_instances=1,
        coalesce=True,
    )
    print(f"Ingesting every {interval_minutes} minutes, Ctrl-C to stop")
    scheduler.start()


def main() -> None:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args()
    if not args.command:
        parser.print_help()
        sys.exit(1)

    interval = getattr(args, "interval_minutes", None)
    if interval is not None and interval <= 0:
        print("Error: --interval-minutes must be positive", file=sys.stderr)
        sys.exit(1)

    settings = CrmIngestorSettings()
    setup_logging(settings.log_level)

    ingestor = CrmIngestor(settings=settings, on_progress=on_progress)

    try:
        if args.command == "list-labels":
            labels = ingestor.list_labels()
            print(f"\nFound {len(labels)} labels:\n")
            for label in sorted(labels, key=lambda x: x["name"]):
                print(f"  {label['id']:40s} {label['name']}")

        elif args.command == "ingest":
            if args.category:
                progress = ingestor.ingest_category(
                    SourceCategory(args.category), compat=args.compat
                )
            elif args.compat:
                progress = ingestor.ingest_all_labels()
            else:
                progress = ingestor.ingest_all_labels_fast()
            print(f"\n\nComplete: {progress}")

        elif args.command == "status":
            status = ingestor.get_status()
            print(f"\nProcessed-ID ledger: {status['ledger_entries']} entries")
            print(f"Open cursors: {len(status['cursors'])}")
            for key, cursor in status["cursors"].items():
                print(f"  {key}: {cursor}")
            print("Recent runs:")
            for run in status["recent_runs"]:
                print(
                    f"  #{run['run_id']} {run['mode']} {run['started_at']} "
                    f"written={run['messages_written']} failed={run['messages_failed']}"
                )

        elif args.command == "clear-state":
            # Neither flag means both.
            both = not args.ledger and not args.cursors
            removed = ingestor.clear_state(
                ledger=args.ledger or both, cursors=args.cursors or both
            )
            print(
                f"\nCleared {removed['ledger_entries']} ledger entries "
                f"and {removed['cursors']} cursors"
            )

        elif args.command == "kpis":
            summary = ingestor.sales_kpis()
            print(f"\nSales: {summary.sales_count}")
            print(f"Revenue: {summary.revenue}")
            print(f"Fees: {summary.fees}")
            print(f"Margin: {summary.margin}")
            print(f"Average basket: {summary.average_basket}")
            for platform, revenue in sorted(summary.revenue_by_platform.items()):
                print(f"  {platform}: {revenue}")

        elif args.command == "schedule":
            run_schedule(ingestor, args.interval_minutes or settings.schedule_interval_minutes)

    except KeyboardInterrupt:
        print("\n\nInterrupted by user")
        sys.exit(130)
    except Exception as e:
        print(f"\nError: {e}", file=sys.stderr)
        sys.exit(1)
    finally:
        ingestor.close()


if __name__ == "__main__":
    main()
