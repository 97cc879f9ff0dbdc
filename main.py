"""CLI entrypoint for the bioRxiv digest administrative operations."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import Any

from dotenv import find_dotenv, load_dotenv

from admin import AdminService, build_admin_service
from trends import PERIOD_WINDOWS


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line flags."""
    parser = argparse.ArgumentParser(description="Fetch, annotate and summarize bioRxiv plant biology papers")
    parser.add_argument("--database-url", default=None, help="SQLAlchemy URL (defaults to DATABASE_URL)")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    refresh = sub.add_parser("refresh", help="Run one ingestion pass")
    refresh.add_argument(
        "--days-back",
        type=int,
        default=None,
        help="Fetch this many trailing days instead of the gap since the last run",
    )

    sub.add_parser("status", help="Show the latest refresh log")
    sub.add_parser("reset-status", help="Mark stuck in_progress refresh logs as interrupted")
    sub.add_parser("clear-cache", help="Drop cached trends and insights")
    sub.add_parser("populate-facets", help="Fill the facet tables if they are empty")

    backfill = sub.add_parser("backfill-methods", help="Re-annotate papers missing a summary or methods")
    backfill.add_argument("--limit", type=int, default=50)
    backfill.add_argument("--chunk", type=int, default=5)

    trends = sub.add_parser("trends", help="Print keyword/type/author trends for a period")
    trends.add_argument("--period", choices=list(PERIOD_WINDOWS), default="week")

    sub.add_parser("insights", help="Print momentum, co-authorship, methods and keyword clusters")
    return parser.parse_args(argv)


def dispatch(service: AdminService, args: argparse.Namespace) -> dict[str, Any]:
    if args.command == "refresh":
        return service.refresh(days_back=args.days_back)
    if args.command == "status":
        return service.refresh_status()
    if args.command == "reset-status":
        return service.reset_status()
    if args.command == "clear-cache":
        return service.clear_caches()
    if args.command == "populate-facets":
        return service.populate_facets()
    if args.command == "backfill-methods":
        return service.backfill_methods(limit=args.limit, chunk_size=args.chunk)
    if args.command == "trends":
        return service.trend_report(args.period)
    if args.command == "insights":
        return service.insights()
    raise ValueError(f"Unknown command: {args.command}")


def main(argv: list[str] | None = None) -> int:
    """Initialize config and run one administrative command."""
    load_dotenv(find_dotenv(usecwd=True))
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(message)s",
    )

    service = build_admin_service(args.database_url)
    outcome = dispatch(service, args)
    print(json.dumps(outcome, indent=2, default=str))
    return 0 if outcome.get("success", True) else 1


if __name__ == "__main__":
    sys.exit(main())
