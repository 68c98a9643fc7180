"""CLI entry point for the job ingestion pipeline."""

import argparse
import asyncio
import logging
import signal
import sys

from src.core.config import Settings
from src.core.db import find_enabled_searches, get_search, init_db, insert_search
from src.core.errors import JobHuntError, SearchNotFoundError
from src.pipeline.duplicates import DuplicateDetector
from src.pipeline.orchestrator import SearchOrchestrator, SearchOutcome, sync_searches
from src.platforms.http import build_client
from src.platforms.registry import available_providers, build_provider

logger = logging.getLogger(__name__)


def _add_common(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--config",
        default="config/settings.yaml",
        help="Path to settings YAML file (default: config/settings.yaml)",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose (DEBUG) logging",
    )


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Job search ingestion - fetch, enrich, store and de-duplicate job postings",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    # --- refresh: every enabled search for a provider ---
    refresh_parser = subparsers.add_parser("refresh", help="Run all enabled searches for a provider")
    refresh_parser.add_argument(
        "--provider",
        default="indeed",
        choices=available_providers(),
        help="Provider to refresh (default: indeed)",
    )
    refresh_parser.add_argument(
        "--dry-run",
        action="store_true",
        help="List the searches that would run without calling the provider",
    )
    _add_common(refresh_parser)

    # --- run: one search by id ---
    run_parser = subparsers.add_parser("run", help="Run one saved search")
    run_parser.add_argument("--search-id", type=int, required=True, help="Search id")
    _add_common(run_parser)

    # --- add-search ---
    add_parser = subparsers.add_parser("add-search", help="Save a new search")
    add_parser.add_argument("--query", required=True, help="What to search for")
    add_parser.add_argument("--country", default="gb", help="Country code (default: gb)")
    add_parser.add_argument("--location", help="Where to search")
    add_parser.add_argument("--distance", type=int, help="Search radius around the location")
    add_parser.add_argument("--max-age", type=int, help="Ignore postings older than this many days")
    add_parser.add_argument("--job-type", help="Provider job type filter (e.g. permanent)")
    add_parser.add_argument("--employer-only", action="store_true", help="Exclude recruiters")
    add_parser.add_argument(
        "--provider",
        default="indeed",
        choices=available_providers(),
        help="Provider to search (default: indeed)",
    )
    add_parser.add_argument("--disabled", action="store_true", help="Save the search disabled")
    _add_common(add_parser)

    # --- dedupe ---
    dedupe_parser = subparsers.add_parser("dedupe", help="Check every unchecked job for duplicates")
    _add_common(dedupe_parser)

    return parser.parse_args(argv)


def setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )
    logging.getLogger("httpx").setLevel(logging.DEBUG if verbose else logging.WARNING)


def install_cancel_handlers(cancel: asyncio.Event) -> None:
    """Set ``cancel`` on SIGINT/SIGTERM so runs stop at the next checkpoint."""
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, cancel.set)
        except NotImplementedError:
            logger.debug("Signal handlers unsupported here; %s will not cancel cleanly", sig.name)


def dry_run(settings: Settings, provider: str) -> None:
    """Print the searches a refresh would run."""
    conn = init_db(settings.database.path)
    sync_searches(conn, settings.searches)
    searches = find_enabled_searches(conn, provider)

    print(f"[DRY RUN] {len(searches)} enabled {provider} searches")
    for search in searches:
        print(f"[DRY RUN] #{search.id} '{search.display_name}' (country={search.country})")
        print(f"  Distance: {search.distance}  Max age: {search.max_age}  Job type: {search.job_type}")
        print(f"  Last run: {search.last_run}  Success: {search.last_fetch_success}")
    conn.close()


def print_outcomes(outcomes: list[SearchOutcome]) -> None:
    total_jobs = sum(o.new_jobs for o in outcomes)
    total_companies = sum(o.new_companies for o in outcomes)
    failed = sum(1 for o in outcomes if not o.success)

    print(f"\nRefresh complete: {len(outcomes)} searches, {total_jobs} new jobs, "
          f"{total_companies} new companies, {failed} failed.")
    for o in outcomes:
        status = "OK" if o.success else "FAILED"
        print(f"  #{o.search_id} {status}: {o.new_jobs} jobs, {o.new_companies} companies, "
              f"{o.pages_fetched} pages ({o.fetch_state.value})"
              + (f" - {o.message}" if o.message else ""))


async def refresh(settings: Settings, provider: str) -> list[SearchOutcome]:
    """Run every enabled search for a provider."""
    cancel = asyncio.Event()
    install_cancel_handlers(cancel)

    conn = init_db(settings.database.path)
    try:
        sync_searches(conn, settings.searches)
        async with build_client(settings.http) as client:
            providers = {provider: build_provider(provider, settings, client)}
            orchestrator = SearchOrchestrator(conn, settings, providers)
            return await orchestrator.run_provider(provider, cancel)
    finally:
        conn.close()


async def run_one(settings: Settings, search_id: int) -> SearchOutcome:
    """Run a single saved search by id."""
    cancel = asyncio.Event()
    install_cancel_handlers(cancel)

    conn = init_db(settings.database.path)
    try:
        search = get_search(conn, search_id)
        if search is None:
            msg = f"Search {search_id} not found"
            raise SearchNotFoundError(msg)
        async with build_client(settings.http) as client:
            providers = {search.provider: build_provider(search.provider, settings, client)}
            orchestrator = SearchOrchestrator(conn, settings, providers)
            return await orchestrator.run_search_by_id(search_id, cancel)
    finally:
        conn.close()


def cmd_add_search(args: argparse.Namespace, settings: Settings) -> None:
    """Handle add-search subcommand."""
    conn = init_db(settings.database.path)
    search_id = insert_search(
        conn,
        args.provider,
        args.query.strip(),
        args.country.strip().lower(),
        location=args.location,
        distance=args.distance,
        max_age=args.max_age,
        job_type=args.job_type,
        employer_only=args.employer_only,
        enabled=not args.disabled,
    )
    search = get_search(conn, search_id)
    conn.close()
    print(f"Saved search #{search_id}: {search.display_name if search else args.query}")


def cmd_dedupe(settings: Settings) -> None:
    """Handle dedupe subcommand."""
    conn = init_db(settings.database.path)
    try:
        detector = DuplicateDetector(conn, settings.duplicates)
        found = detector.check_unchecked()
    finally:
        conn.close()
    print(f"Duplicate check complete: {found} duplicates linked.")


def main(argv: list[str] | None = None) -> None:
    args = parse_args(argv)
    setup_logging(args.verbose)

    try:
        settings = Settings.from_yaml(args.config)
    except (FileNotFoundError, ValueError) as e:
        print(f"Error loading config: {e}", file=sys.stderr)
        sys.exit(1)

    try:
        if args.command == "refresh":
            if args.dry_run:
                dry_run(settings, args.provider)
                return
            outcomes = asyncio.run(refresh(settings, args.provider))
            print_outcomes(outcomes)
            if any(not o.success for o in outcomes):
                sys.exit(1)
        elif args.command == "run":
            outcome = asyncio.run(run_one(settings, args.search_id))
            print_outcomes([outcome])
            if not outcome.success:
                sys.exit(1)
        elif args.command == "add-search":
            cmd_add_search(args, settings)
        elif args.command == "dedupe":
            cmd_dedupe(settings)
    except (JobHuntError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
