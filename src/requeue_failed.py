#!/usr/bin/env python3
import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Optional, Sequence

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

import psycopg
from pydantic import ValidationError

from requeue.config import DEFAULT_BATCH_SIZE, DEFAULT_DESTINATION
from requeue.db import PostgresFailedEventStore, close_pool
from requeue.engine import EXIT_STORE_ERROR, exit_code_for, run_requeue
from requeue.observability import configure_logging
from requeue.schemas import STATUS_INVALID_SCOPE, RunConfig, ScopeFilter

logger = logging.getLogger("requeue-failed")

USAGE_EXAMPLES = """
examples:
  requeue_failed.py --errortype=401,403
  requeue_failed.py --datefrom=1698982800 --dateto=1698982823
  requeue_failed.py --eventname='\\core\\event\\user_loggedin,\\core\\event\\user_loggedout'
  requeue_failed.py --datefrom=1698982800 --batch=500 --eventname='\\core\\event\\course_viewed' --dryrun=0
"""


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Move records from the failed event log back to the event log for reprocessing.",
        epilog=USAGE_EXAMPLES,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--errortype", default="", help="Comma separated error types (integers), default: all.")
    parser.add_argument("--eventname", default="", help="Comma separated event names, default: all.")
    parser.add_argument("--datefrom", type=int, default=None, help="Epoch seconds lower bound (inclusive).")
    parser.add_argument("--dateto", type=int, default=None, help="Epoch seconds upper bound (inclusive).")
    parser.add_argument(
        "--batch",
        type=int,
        default=DEFAULT_BATCH_SIZE,
        help=f"Batch size of each move iteration, default: {DEFAULT_BATCH_SIZE}.",
    )
    parser.add_argument(
        "--dryrun",
        type=int,
        choices=(0, 1),
        default=1,
        help="Run without executing any write queries, default: 1.",
    )
    parser.add_argument(
        "--max-runtime",
        type=int,
        default=0,
        help="Stop between batches after this many seconds, default: 0 (unbounded).",
    )
    parser.add_argument("--destination", default=DEFAULT_DESTINATION, help="Requeue source tag written on moved rows.")
    parser.add_argument("--output-json", default="", help="Optional path to JSON report.")
    return parser.parse_args(argv)


def build_run_config(args: argparse.Namespace) -> RunConfig:
    return RunConfig(
        scope=ScopeFilter(
            error_types=args.errortype,
            event_names=args.eventname,
            date_from=args.datefrom,
            date_to=args.dateto,
        ),
        batch_size=args.batch,
        max_runtime_sec=args.max_runtime,
        dry_run=bool(args.dryrun),
        destination=args.destination,
        trigger="cli",
    )


def _print_progress(message: str) -> None:
    print(message, flush=True)


def main(argv: Optional[Sequence[str]] = None, store=None) -> int:
    args = parse_args(argv)
    try:
        config = build_run_config(args)
    except ValidationError as exc:
        print(f"Invalid parameters: {exc}", file=sys.stderr)
        return 2

    configure_logging(component="requeue-cli")
    store = store or PostgresFailedEventStore()
    try:
        try:
            report = run_requeue(store, config, progress=_print_progress, component="requeue-cli")
        except (psycopg.Error, RuntimeError):
            logger.exception("Requeue run aborted by a store error")
            return EXIT_STORE_ERROR

        payload: dict = {"report": report.model_dump(mode="json")}
        if report.status != STATUS_INVALID_SCOPE and hasattr(store, "snapshot"):
            try:
                payload["failed_log_snapshot"] = store.snapshot()
            except (psycopg.Error, RuntimeError):
                logger.warning("Failed to read failed log snapshot after run", exc_info=True)
    finally:
        close_pool()

    text = json.dumps(payload, ensure_ascii=True, indent=2)
    print(text)
    if args.output_json:
        Path(args.output_json).write_text(text + "\n", encoding="utf-8")
    return exit_code_for(report)


if __name__ == "__main__":
    raise SystemExit(main())
