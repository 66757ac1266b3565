"""
Operational command line for the digest pipeline.

Commands:
    serve           scheduler thread + worker loop until SIGINT/SIGTERM
    schedule        run one scheduling pass
    process         run one worker batch
    drain           run worker batches until the queue is empty
    status          job counts, or jobs of one firm/date, or one recipient
    requeue         reset failed (or given) jobs to pending
    release-stale   fail jobs stuck in processing
    init-db         create tables (development)
"""

import argparse
import json
import logging
import sys
from datetime import date, timedelta
from typing import List, Optional

from config.settings import get_settings, validate_startup_configuration
from database.connection import get_sync_engine, get_sync_session_factory, init_schema
from admin_panel.services.email_job_service import EmailJobService
from services.logging_config import configure_logging
from tasks.runtime import build_scheduler, build_worker, serve

logger = logging.getLogger(__name__)


def _print_json(data) -> None:
    print(json.dumps(data, indent=2, default=str))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Day-end task digest scheduler and delivery worker",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    serve_cmd = sub.add_parser("serve", help="Run scheduler and worker until stopped")
    serve_cmd.add_argument("--no-scheduler", action="store_true", help="Run the worker loop only")

    sub.add_parser("schedule", help="Run one scheduling pass")
    sub.add_parser("process", help="Run one worker batch")

    drain_cmd = sub.add_parser("drain", help="Process batches until the queue is empty")
    drain_cmd.add_argument("--max-batches", type=int, default=1000)

    status_cmd = sub.add_parser("status", help="Show job status")
    status_cmd.add_argument("--firm", help="Firm id")
    status_cmd.add_argument("--date", type=date.fromisoformat, help="Local date (YYYY-MM-DD)")
    status_cmd.add_argument("--email", help="Show the latest job of this recipient")
    status_cmd.add_argument("--exhausted", action="store_true", help="List jobs with no retries left")

    requeue_cmd = sub.add_parser("requeue", help="Reset jobs to pending")
    requeue_cmd.add_argument("job_ids", nargs="*", help="Job ids (default: all failed jobs)")
    requeue_cmd.add_argument("--firm", help="Limit to one firm")
    requeue_cmd.add_argument("--date", type=date.fromisoformat, help="Limit to one local date")

    stale_cmd = sub.add_parser("release-stale", help="Fail jobs stuck in processing")
    stale_cmd.add_argument("--minutes", type=int, help="Claim age threshold")

    sub.add_parser("init-db", help="Create database tables")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    settings = get_settings()

    configure_logging("DEBUG" if args.verbose else settings.log_level, json_output=settings.log_json)

    if args.command in ("serve", "process", "drain"):
        # Fail fast on provider credentials before touching any job
        validate_startup_configuration(settings)

    if args.command == "init-db":
        init_schema(get_sync_engine())
        print("Database schema initialized")
        return 0

    if args.command == "serve":
        serve(settings, with_scheduler=not args.no_scheduler)
        return 0

    if args.command == "schedule":
        _print_json(build_scheduler(settings).run_scheduling_pass().to_dict())
        return 0

    if args.command == "process":
        _print_json(build_worker(settings).run_worker_batch().to_dict())
        return 0

    if args.command == "drain":
        reports = build_worker(settings).drain(max_batches=args.max_batches)
        _print_json({
            "batches": len(reports),
            "sent": sum(r.sent for r in reports),
            "failed": sum(r.failed for r in reports),
            "skipped": sum(r.skipped for r in reports),
        })
        return 0

    service = EmailJobService(get_sync_session_factory(), settings.digest)

    if args.command == "status":
        if args.email:
            found = service.get_latest_job_for_user(args.email)
            if found is None:
                print(f"No recipient with email {args.email}", file=sys.stderr)
                return 1
            _print_json(found)
        elif args.exhausted:
            _print_json(service.list_exhausted_jobs())
        elif args.firm and args.date:
            _print_json(service.get_email_status(args.firm, args.date))
        else:
            _print_json(service.status_counts(firm_id=args.firm, scheduled_date=args.date))
        return 0

    if args.command == "requeue":
        if args.job_ids:
            count = service.requeue_jobs(args.job_ids)
        else:
            count = service.requeue_failed(firm_id=args.firm, scheduled_date=args.date)
        print(f"Requeued {count} job(s)")
        return 0

    if args.command == "release-stale":
        older_than = timedelta(minutes=args.minutes) if args.minutes else None
        print(f"Released {service.release_stale_claims(older_than)} job(s)")
        return 0

    return 2
