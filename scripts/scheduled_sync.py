#!/usr/bin/env python3
"""
Scheduled synchronization script for the catalog sync engine.

This script syncs the target platform with the source of truth:
- Syncs every kind in dependency order, or a single kind
- Optionally retracts a kind's previously synced records (--delete)
- Logs and prints per-kind outcome counts

Designed to be run on a schedule (e.g., via cron or a job scheduler).
SIGINT and SIGTERM cancel the run between entities.

Usage:
    python scripts/scheduled_sync.py [--config CONFIG_PATH] [--kind KIND] [--limit N] [--delete]
"""

import argparse
import signal
import sys
import threading
from datetime import datetime

import structlog

from catalog_sync.models.entity import EntityKind
from catalog_sync.providers import get_orchestrator
from catalog_sync.sync.models import KindReport, Outcome, RunReport
from catalog_sync.utils.config_loader import ConfigLoader
from catalog_sync.utils.logging_config import configure_logging

log = structlog.stdlib.get_logger()


def perform_sync(
    config_path: str | None = None,
    kind: EntityKind | None = None,
    limit: int | None = None,
    delete_mode: bool = False,
    cancel_event: threading.Event | None = None,
) -> dict:
    """
    Run one sync and collect statistics.

    Args:
        config_path: Optional path to configuration file
        kind: Sync only this kind (None for every kind)
        limit: Maximum entities per kind
        delete_mode: Retract ``kind`` instead of syncing it
        cancel_event: Event that cancels the run when set

    Returns:
        Dictionary with sync statistics
    """
    start_time = datetime.now()

    try:
        config_loader = ConfigLoader()
        config = config_loader.load_config(config_path)
        configure_logging(
            log_level=config.logging.log_level,
            json_logs=config.logging.json_logs,
            log_file=config.logging.log_file,
        )
        config_loader.validate_config(config)

        log.info(
            "scheduled_sync_started",
            kind=kind.value if kind else "all",
            limit=limit,
            delete_mode=delete_mode,
        )

        orchestrator = get_orchestrator(config, cancel_event=cancel_event)

        if kind is None:
            report = orchestrator.sync_everything(limit=limit)
        else:
            kind_report = orchestrator.sync_kind(kind, limit=limit, delete_mode=delete_mode)
            report = RunReport(
                run_id="single",
                kinds=[kind_report],
                cancelled=kind_report.cancelled,
                start_time=kind_report.start_time,
                end_time=kind_report.end_time,
            )

        end_time = datetime.now()
        stats = {
            "success": report.success,
            "cancelled": report.cancelled,
            "kinds": [_kind_stats(r) for r in report.kinds],
            "start_time": start_time.isoformat(),
            "end_time": end_time.isoformat(),
            "duration_seconds": (end_time - start_time).total_seconds(),
        }

        log.info("scheduled_sync_completed", success=stats["success"], cancelled=report.cancelled)
        return stats

    except Exception as e:
        end_time = datetime.now()
        duration = (end_time - start_time).total_seconds()

        log.error("scheduled_sync_failed", error=str(e), duration_seconds=duration)

        return {
            "success": False,
            "error": str(e),
            "start_time": start_time.isoformat(),
            "end_time": end_time.isoformat(),
            "duration_seconds": duration,
        }


def _kind_stats(report: KindReport) -> dict:
    return {
        "kind": report.kind.value,
        "delete_mode": report.delete_mode,
        "counts": {outcome.value: report.count(outcome) for outcome in Outcome},
        "stale_removed": report.stale_removed,
        "aborted": report.aborted,
        "abort_reason": report.abort_reason,
        "cancelled": report.cancelled,
        "errors": report.errors,
    }


def print_summary(stats: dict) -> None:
    print("\n" + "=" * 60)
    print("SYNCHRONIZATION SUMMARY")
    print("=" * 60)

    if "error" in stats:
        print("Status: ✗ FAILED")
        print(f"Error: {stats['error']}")
    else:
        status = "✓ SUCCESS" if stats["success"] else "✗ COMPLETED WITH ERRORS"
        if stats.get("cancelled"):
            status = "✗ CANCELLED"
        print(f"Status: {status}")
        for kind in stats["kinds"]:
            counts = ", ".join(f"{name}={count}" for name, count in kind["counts"].items() if count)
            print(f"{kind['kind']:<20} {counts or 'nothing to do'}")
            if kind["stale_removed"]:
                print(f"{'':<20} stale mappings removed: {kind['stale_removed']}")
            if kind["aborted"]:
                print(f"{'':<20} aborted: {kind['abort_reason']}")
            for message in kind["errors"]:
                print(f"{'':<20} - {message}")

    print(f"Duration: {stats.get('duration_seconds', 0):.2f} seconds")
    print("=" * 60)


def main():
    """Main entry point for scheduled sync script."""
    parser = argparse.ArgumentParser(description="Scheduled catalog synchronization")
    parser.add_argument(
        "--config",
        type=str,
        help="Path to configuration file",
        default=None,
    )
    parser.add_argument(
        "--kind",
        type=EntityKind,
        choices=list(EntityKind),
        help="Sync a single entity kind instead of every kind",
        default=None,
    )
    parser.add_argument(
        "--limit",
        type=int,
        help="Maximum number of entities per kind",
        default=None,
    )
    parser.add_argument(
        "--delete",
        action="store_true",
        help="Retract previously synced records of --kind",
    )

    args = parser.parse_args()

    if args.delete and args.kind is None:
        parser.error("--delete requires --kind")
    if args.limit is not None and args.limit < 0:
        parser.error("--limit must be >= 0")

    cancel_event = threading.Event()

    def request_cancel(signum, frame):
        log.warning("cancellation_requested", signal=signum)
        cancel_event.set()

    signal.signal(signal.SIGINT, request_cancel)
    signal.signal(signal.SIGTERM, request_cancel)

    stats = perform_sync(
        config_path=args.config,
        kind=args.kind,
        limit=args.limit,
        delete_mode=args.delete,
        cancel_event=cancel_event,
    )

    print_summary(stats)

    sys.exit(0 if stats.get("success") else 1)


if __name__ == "__main__":
    main()
