"""
CLI entry point for scouted.

Usage:
    python -m scouted scrape
    python -m scouted scrape --sources ngobox,idr --dry-run
    python -m scouted upsert --file research.json
    python -m scouted digest --days 7
"""

import argparse
import asyncio
import inspect
import logging
import sys

import structlog

from scouted.exceptions import ScoutedError

# Log level mapping
LOG_LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
}


def setup_logging(level: str = "INFO", json_output: bool = False):
    """Configure structured logging (to stderr, stdout carries command output)."""
    log_level = LOG_LEVELS.get(level.upper(), logging.INFO)

    if json_output:
        processors = [
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors = [
            structlog.processors.TimeStamper(fmt="%Y-%m-%d %H:%M:%S"),
            structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )


def build_parser() -> argparse.ArgumentParser:
    """Argument parser with one sub-command per operation."""
    parser = argparse.ArgumentParser(
        prog="scouted",
        description="Education funding opportunity scout",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Scrape all configured sources and store the results
  python -m scouted scrape

  # Scrape specific sources without writing to the database
  python -m scouted scrape --sources ngobox,idr --dry-run

  # Store opportunities found by an external research agent
  python -m scouted upsert --file research.json

  # Store CSR spend rows
  python -m scouted upsert-csr --file csr.json --fy 2023-24

  # Text digest of the last week
  python -m scouted digest --days 7
        """,
    )

    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="INFO",
        help="Logging level (default: INFO)",
    )
    parser.add_argument(
        "--json-logs",
        action="store_true",
        help="Output logs as JSON (for production)",
    )
    parser.add_argument(
        "--version",
        action="store_true",
        help="Show version and exit",
    )

    commands = parser.add_subparsers(dest="command", metavar="COMMAND")

    scrape = commands.add_parser("scrape", help="Run the scraping pipeline")
    scrape.add_argument(
        "--sources",
        type=str,
        help="Comma-separated list of source_ids to process (default: all)",
    )
    scrape.add_argument(
        "--dry-run",
        action="store_true",
        help="Do not write to the database",
    )
    scrape.add_argument(
        "--no-classify",
        action="store_true",
        help="Skip the secondary LLM classifier",
    )
    scrape.add_argument(
        "--no-enrich",
        action="store_true",
        help="Skip detail page enrichment",
    )
    scrape.add_argument("--config", type=str, help="Path to sources.yml config file")
    scrape.add_argument(
        "--output",
        type=str,
        default="output",
        help="Output directory for the run snapshot (default: output)",
    )

    upsert = commands.add_parser("upsert", help="Store an opportunity batch (JSON array)")
    upsert.add_argument("--file", type=str, help="Input file (default: stdin)")

    upsert_csr = commands.add_parser("upsert-csr", help="Store a CSR spend batch (JSON array)")
    upsert_csr.add_argument("--file", type=str, help="Input file (default: stdin)")
    upsert_csr.add_argument("--fy", type=str, default="2023-24", help="Fiscal year (default: 2023-24)")

    digest = commands.add_parser("digest", help="Print a plain-text digest")
    digest.add_argument("--days", type=int, default=2, help="Look-back window in days (default: 2)")
    digest.add_argument("--limit", type=int, default=10, help="Maximum items (default: 10)")
    digest.add_argument("--all", action="store_true", help="Ignore the look-back window")

    send_digest = commands.add_parser("send-digest", help="Email the digest to subscribers")
    send_digest.add_argument("--hours", type=int, default=48, help="Look-back window in hours (default: 48)")
    send_digest.add_argument("--limit", type=int, default=10, help="Maximum items (default: 10)")

    subscribers = commands.add_parser("subscribers", help="Manage digest subscribers")
    subscribers.add_argument("action", choices=["add", "remove", "list"])
    subscribers.add_argument("email", nargs="?", help="Subscriber email (add/remove)")

    commands.add_parser("init-db", help="Create database tables")

    return parser


def open_store():
    """Store for DATABASE_URL, with the schema in place."""
    from scouted.config import get_settings
    from scouted.storage import OpportunityStore

    store = OpportunityStore.from_settings(get_settings())
    store.create_schema()
    return store


async def run_scrape(args) -> int:
    """Scrape sources, store results, write a snapshot."""
    from scouted.config import get_settings
    from scouted.orchestrator import ScoutPipeline
    from scouted.plugins import OpenRouterClassifier

    logger = structlog.get_logger(__name__)
    settings = get_settings()

    sources = None
    if args.sources:
        sources = [s.strip() for s in args.sources.split(",") if s.strip()]

    store = None if args.dry_run else open_store()
    classifier = None if args.no_classify else OpenRouterClassifier(settings=settings)

    pipeline = ScoutPipeline(
        config_path=args.config,
        output_dir=args.output,
        store=store,
        classifier=classifier,
        settings=settings,
        enrich=not args.no_enrich,
    )

    result = await pipeline.run(
        source_ids=sources,
        dry_run=args.dry_run,
        classify=not args.no_classify,
    )

    if result.opportunities:
        pipeline.save_json(result.opportunities)
    else:
        logger.warning("no_opportunities_found")

    for key, value in result.stats.items():
        print(f"{key}: {value}")
    return 0


def run_upsert(args) -> int:
    from scouted.ingest import ingest_opportunities, read_json_array

    items = read_json_array(args.file)
    result = ingest_opportunities(items, open_store())
    print(
        f"Received {result.received}, valid {result.valid} "
        f"(skipped {result.skipped}), unique {result.unique}, upserted {result.written}"
    )
    return 0


def run_upsert_csr(args) -> int:
    from scouted.ingest import ingest_csr_records, read_json_array

    items = read_json_array(args.file)
    result = ingest_csr_records(items, open_store(), fiscal_year=args.fy)
    print(
        f"Received {result.received}, valid {result.valid} "
        f"(skipped {result.skipped}), upserted {result.written} for FY {args.fy}"
    )
    return 0


def run_digest(args) -> int:
    from scouted.digest import fetch_digest_opportunities, format_text_digest
    from scouted.scoring import ScoringConfig

    hours = None if args.all else args.days * 24
    items = fetch_digest_opportunities(
        open_store(), hours=hours, limit=args.limit, config=ScoringConfig.load()
    )
    print(format_text_digest(items, days=args.days, show_all=args.all), end="")
    return 0


async def run_send_digest(args) -> int:
    from scouted.config import get_settings
    from scouted.digest import ResendMailer, send_digest

    logger = structlog.get_logger(__name__)
    settings = get_settings()

    store = open_store()
    if not settings.resend_api_key:
        logger.warning("digest_skipped", reason="RESEND_API_KEY not set")
        return 0

    mailer = ResendMailer(settings.resend_api_key, settings.resend_domain_verified)
    sent = await send_digest(
        store,
        mailer,
        hours=args.hours,
        limit=args.limit,
        site_url=settings.site_url,
    )
    print(f"Digest sent to {sent} subscribers")
    return 0


def run_subscribers(args) -> int:
    store = open_store()

    if args.action == "list":
        for email in store.list_subscribers():
            print(email)
        return 0

    if not args.email:
        print(f"Error: subscribers {args.action} needs an email", file=sys.stderr)
        return 2

    if args.action == "add":
        added = store.add_subscriber(args.email)
        print(f"Subscribed {args.email}" if added else f"{args.email} is already subscribed")
    else:
        removed = store.remove_subscriber(args.email)
        print(f"Unsubscribed {args.email}" if removed else f"{args.email} was not subscribed")
    return 0


def run_init_db(args) -> int:
    open_store()
    print("Database schema ready")
    return 0


COMMANDS = {
    "scrape": run_scrape,
    "upsert": run_upsert,
    "upsert-csr": run_upsert_csr,
    "digest": run_digest,
    "send-digest": run_send_digest,
    "subscribers": run_subscribers,
    "init-db": run_init_db,
}


def dispatch(args) -> int:
    """Run the selected command; coroutines go through asyncio.run."""
    handler = COMMANDS[args.command]
    if inspect.iscoroutinefunction(handler):
        return asyncio.run(handler(args))
    return handler(args)


def main(argv=None):
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    # Version check
    if args.version:
        from . import __version__
        print(f"scouted {__version__}")
        sys.exit(0)

    if not args.command:
        parser.print_help()
        sys.exit(2)

    # Setup logging
    setup_logging(args.log_level, args.json_logs)

    try:
        sys.exit(dispatch(args))
    except KeyboardInterrupt:
        print("\nInterrupted by user")
        sys.exit(130)
    except ScoutedError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    except Exception as e:
        logger = structlog.get_logger(__name__)
        logger.exception("fatal_error", error=str(e))
        sys.exit(1)


if __name__ == "__main__":
    main()
