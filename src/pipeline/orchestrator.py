"""Orchestrator: runs one saved search end to end.

Data flow per search:
  1. Fetching   - page through the provider, newest first, buffering new
                  results; a stored or too-old result latches ``existing_found``
                  and stops pagination once the current page is finished.
  2. Enriching  - fill missing salaries and descriptions (never fatal).
  3. Persisting - resolve companies, materialise jobs, write one batch.
  4. Deduplicating (optional) - fuzzy-check the jobs just inserted.
  5. Recorded   - SearchRun row, then alerts for watched companies.

A fetch failure aborts the run before anything is persisted. Cancellation is
cooperative: the in-flight page is dropped, everything gathered before it is
still persisted and recorded.
"""

import asyncio
import logging
import sqlite3
import time
from dataclasses import dataclass
from datetime import datetime, time as dt_time, timedelta, timezone
from enum import Enum

from src.core.config import SearchConfig, Settings
from src.core.db import (
    any_job_with_provider_id,
    find_enabled_searches,
    find_search_id,
    get_category_ids_by_name,
    get_search,
    insert_search,
    insert_search_run,
    persist_batch,
)
from src.core.errors import ProviderError, SearchNotFoundError, UnknownProviderError
from src.core.schemas import CanonicalJobResult, JobDraft, Search
from src.pipeline.alerts import AlertEmitter
from src.pipeline.companies import CompanyRef, CompanyResolver
from src.pipeline.descriptions import html_to_markdown
from src.pipeline.duplicates import DuplicateDetector
from src.platforms.base import JobFetcher, is_cancelled
from src.platforms.registry import Provider

logger = logging.getLogger(__name__)


class RunState(str, Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    EARLY_EXIT = "early_exit"
    EXHAUSTED = "exhausted"
    FETCH_FAILED = "fetch_failed"
    CANCELLED = "cancelled"
    ENRICHING = "enriching"
    PERSISTING = "persisting"
    DEDUPLICATING = "deduplicating"
    RECORDED = "recorded"


@dataclass
class SearchOutcome:
    """Summary of a single search run.

    ``fetch_state`` is how pagination ended (EARLY_EXIT, EXHAUSTED,
    FETCH_FAILED or CANCELLED); ``state`` is the last state the run reached.
    """

    search_id: int
    success: bool = True
    state: RunState = RunState.IDLE
    fetch_state: RunState = RunState.IDLE
    existing_found: bool = False
    pages_fetched: int = 0
    new_jobs: int = 0
    new_companies: int = 0
    conflicts: int = 0
    duplicates: int = 0
    message: str | None = None
    run_id: int | None = None

    @property
    def cancelled(self) -> bool:
        return self.fetch_state == RunState.CANCELLED


def max_age_cutoff(search: Search, now: datetime | None = None) -> datetime | None:
    """Start of the UTC day ``max_age`` days ago, or None when unbounded."""
    if search.max_age is None:
        return None
    today = (now or datetime.now(timezone.utc)).astimezone(timezone.utc).date()
    return datetime.combine(today - timedelta(days=search.max_age), dt_time.min, tzinfo=timezone.utc)


def provider_label(provider: str) -> str:
    return provider.capitalize()


class SearchOrchestrator:
    def __init__(
        self,
        conn: sqlite3.Connection,
        settings: Settings,
        providers: dict[str, Provider],
        alerts: AlertEmitter | None = None,
    ) -> None:
        self._conn = conn
        self._settings = settings
        self._providers = providers
        self._alerts = alerts or AlertEmitter(conn)

    async def run_search(
        self,
        search: Search,
        cancel: asyncio.Event | None = None,
    ) -> SearchOutcome:
        """Run one search through fetch, enrich, persist, dedupe and record.

        Raises:
            UnknownProviderError: no provider is registered for ``search.provider``.
        """
        provider = self._providers.get(search.provider)
        if provider is None:
            msg = f"No fetcher registered for provider '{search.provider}'"
            raise UnknownProviderError(msg)

        started = time.monotonic()
        label = provider_label(search.provider)
        outcome = SearchOutcome(search_id=search.id)
        logger.info("Running search '%s'", search.display_name)

        # Step 1: Fetch
        try:
            batch = await self._fetch(provider.fetcher, search, outcome, cancel)
        except ProviderError as exc:
            outcome.state = outcome.fetch_state = RunState.FETCH_FAILED
            outcome.success = False
            outcome.message = f"{label} API error"
            logger.error("Search '%s' failed while fetching: %s", search.display_name, exc)
            self._alerts.error(f"Search Error ({search.display_name})", str(exc))
            self._record(search, outcome, started)
            return outcome

        if not batch:
            logger.info("No new jobs for '%s'", search.display_name)
            self._record(search, outcome, started)
            return outcome

        # Step 2: Enrich
        if provider.enricher is not None:
            outcome.state = RunState.ENRICHING
            if not await provider.enricher.enrich(search, batch, cancel):
                outcome.message = f"{label} enrichment error"
                self._alerts.error(
                    f"Enrichment Error ({search.display_name})",
                    "Some salaries or descriptions could not be fetched",
                )

        # Step 3: Persist
        outcome.state = RunState.PERSISTING
        resolver = CompanyResolver(self._conn)
        drafts, refs = self._materialise(search, provider.fetcher.provider_id, batch, resolver)
        result = persist_batch(self._conn, resolver.staged_companies, drafts)
        outcome.new_jobs = result.new_jobs
        outcome.new_companies = result.new_companies
        outcome.conflicts = result.conflicts
        if result.conflicts:
            logger.info("%d jobs were already stored by another run", result.conflicts)

        # Step 4: Dedupe
        inserted = [j for j in result.job_ids if j is not None]
        if self._settings.duplicates.enabled and inserted:
            outcome.state = RunState.DEDUPLICATING
            detector = DuplicateDetector(self._conn, self._settings.duplicates)
            outcome.duplicates = detector.check_jobs(inserted, cancel)

        # Step 5: Record, then notify
        self._record(search, outcome, started)
        for draft, ref, job_id in zip(drafts, refs, result.job_ids):
            if ref.watched and job_id is not None:
                self._alerts.new_job(ref.name, job_id, draft.title)

        logger.info(
            "Search '%s': %d new jobs, %d new companies, %d duplicates (%s)",
            search.display_name, outcome.new_jobs, outcome.new_companies,
            outcome.duplicates, outcome.fetch_state.value,
        )
        return outcome

    async def run_provider(
        self,
        provider: str,
        cancel: asyncio.Event | None = None,
    ) -> list[SearchOutcome]:
        """Run every enabled search for a provider, one after another."""
        searches = find_enabled_searches(self._conn, provider)
        logger.info("Refreshing %d %s searches", len(searches), provider)

        outcomes: list[SearchOutcome] = []
        for search in searches:
            if is_cancelled(cancel):
                logger.info("Refresh cancelled - %d searches not run", len(searches) - len(outcomes))
                break
            outcomes.append(await self._run_guarded(search, cancel))
        return outcomes

    async def run_search_by_id(
        self,
        search_id: int,
        cancel: asyncio.Event | None = None,
    ) -> SearchOutcome:
        search = get_search(self._conn, search_id)
        if search is None:
            msg = f"Search {search_id} not found"
            raise SearchNotFoundError(msg)
        return await self._run_guarded(search, cancel)

    async def _run_guarded(self, search: Search, cancel: asyncio.Event | None) -> SearchOutcome:
        """Run a search; any uncaught failure becomes a failed run, not an exception."""
        started = time.monotonic()
        try:
            return await self.run_search(search, cancel)
        except Exception as exc:
            logger.exception("Search '%s' failed", search.display_name)
            outcome = SearchOutcome(search_id=search.id, success=False, message=str(exc))
            self._alerts.error(f"Search Error ({search.display_name})", str(exc))
            self._record(search, outcome, started)
            return outcome

    async def _fetch(
        self,
        fetcher: JobFetcher,
        search: Search,
        outcome: SearchOutcome,
        cancel: asyncio.Event | None,
    ) -> list[CanonicalJobResult]:
        outcome.state = RunState.FETCHING
        cutoff = max_age_cutoff(search)
        batch: list[CanonicalJobResult] = []
        seen: set[str] = set()
        end_state = RunState.EXHAUSTED

        async for page in fetcher.fetch_pages(search, cancel):
            outcome.pages_fetched += 1
            buffer: list[CanonicalJobResult] = []
            cancelled = False

            for result in page:
                if is_cancelled(cancel):
                    cancelled = True
                    break
                if cutoff is not None and result.posted < cutoff:
                    outcome.existing_found = True
                if result.key in seen:
                    continue
                if any_job_with_provider_id(self._conn, fetcher.provider_id, result.key):
                    outcome.existing_found = True
                    continue
                seen.add(result.key)
                buffer.append(result)

            if cancelled:
                logger.info(
                    "Cancelled during page %d - dropping %d buffered results",
                    outcome.pages_fetched, len(buffer),
                )
                end_state = RunState.CANCELLED
                break

            batch.extend(buffer)
            if outcome.existing_found:
                logger.info("Reached previously seen results on page %d", outcome.pages_fetched)
                end_state = RunState.EARLY_EXIT
                break
            if is_cancelled(cancel):
                end_state = RunState.CANCELLED
                break

        if end_state == RunState.EXHAUSTED and is_cancelled(cancel):
            end_state = RunState.CANCELLED
        outcome.state = outcome.fetch_state = end_state
        logger.info(
            "Fetched %d pages for '%s': %d new results",
            outcome.pages_fetched, search.display_name, len(batch),
        )
        return batch

    def _materialise(
        self,
        search: Search,
        provider_id: str,
        batch: list[CanonicalJobResult],
        resolver: CompanyResolver,
    ) -> tuple[list[JobDraft], list[CompanyRef]]:
        """Turn canonical results into job drafts, in provider order."""
        categories = get_category_ids_by_name(self._conn)
        drafts: list[JobDraft] = []
        refs: list[CompanyRef] = []

        for result in batch:
            ref = resolver.resolve(result)
            category_ids = sorted({
                categories[label.lower()]
                for label in result.attributes
                if label.lower() in categories
            })
            drafts.append(JobDraft(
                title=result.title,
                description=html_to_markdown(result.html_description or result.snippet),
                salary=result.formatted_salary,
                avg_yearly_salary=result.avg_yearly_salary,
                remote=result.remote,
                location=result.location,
                latitude=result.latitude,
                longitude=result.longitude,
                url=result.url,
                posted=result.posted,
                provider=provider_id,
                provider_id=result.key,
                source_id=search.id,
                archived=ref.blacklisted,
                company_id=ref.company_id,
                staged_company=ref.staged_index,
                category_ids=category_ids,
            ))
            refs.append(ref)

        return drafts, refs

    def _record(self, search: Search, outcome: SearchOutcome, started: float) -> None:
        outcome.run_id = insert_search_run(
            self._conn,
            search.id,
            outcome.success,
            outcome.message,
            outcome.new_jobs,
            outcome.new_companies,
            round(time.monotonic() - started),
        )
        outcome.state = RunState.RECORDED


def sync_searches(conn: sqlite3.Connection, searches: list[SearchConfig]) -> int:
    """Seed saved searches from settings; existing ones are left untouched.

    Returns the number of searches created.
    """
    created = 0
    for config in searches:
        existing = find_search_id(conn, config.provider, config.query, config.country, config.location)
        if existing is not None:
            continue
        insert_search(
            conn,
            config.provider,
            config.query,
            config.country,
            location=config.location,
            distance=config.distance,
            max_age=config.max_age,
            job_type=config.job_type,
            employer_only=config.employer_only,
            enabled=config.enabled,
        )
        created += 1
    if created:
        logger.info("Seeded %d searches from settings", created)
    return created
