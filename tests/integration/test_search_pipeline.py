"""Integration test: full search runs with fake providers (no network)."""

import asyncio
import sqlite3
from collections.abc import AsyncIterator, Callable
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest

from src.core.config import DuplicateCheckConfig, SearchConfig, Settings
from src.core.db import (
    count_companies,
    find_company_by_name,
    get_job_category_ids,
    get_search,
    init_db,
    insert_category,
    insert_company,
    insert_search,
    list_alerts,
    list_jobs,
    list_search_runs,
    persist_batch,
)
from src.core.errors import (
    ProviderPayloadError,
    ProviderRequestError,
    SearchNotFoundError,
    UnknownProviderError,
)
from src.core.schemas import AlertType, CanonicalJobResult, JobDraft, Search
from src.pipeline.orchestrator import (
    RunState,
    SearchOrchestrator,
    max_age_cutoff,
    sync_searches,
)
from src.platforms.base import Enricher, JobFetcher, is_cancelled
from src.platforms.registry import Provider

# ---------------------------------------------------------------------------
# Fake provider
# ---------------------------------------------------------------------------


class FakeFetcher(JobFetcher):
    """Serves pre-configured pages, newest first."""

    def __init__(
        self,
        pages: list[list[CanonicalJobResult]],
        *,
        fail_at: int | None = None,
        error: Exception | None = None,
        before_page: Callable[[int], None] | None = None,
    ) -> None:
        self._pages = pages
        self._fail_at = fail_at
        self._error = error or ProviderRequestError("indeed", "HTTP 500", status_code=500)
        self._before_page = before_page
        self.requested = 0

    @property
    def provider_id(self) -> str:
        return "indeed"

    async def fetch_pages(
        self,
        search: Search,
        cancel: asyncio.Event | None = None,
    ) -> AsyncIterator[list[CanonicalJobResult]]:
        for index, page in enumerate(self._pages):
            if is_cancelled(cancel):
                return
            if self._before_page is not None:
                self._before_page(index)
            self.requested += 1
            if index == self._fail_at:
                raise self._error
            yield [r.model_copy(deep=True) for r in page]


class FakeEnricher(Enricher):
    def __init__(
        self,
        ok: bool = True,
        side_effect: Callable[[list[CanonicalJobResult]], None] | None = None,
    ) -> None:
        self._ok = ok
        self._side_effect = side_effect
        self.calls: list[list[str]] = []

    async def enrich(
        self,
        search: Search,
        results: list[CanonicalJobResult],
        cancel: asyncio.Event | None = None,
    ) -> bool:
        self.calls.append([r.key for r in results])
        for r in results:
            if r.needs_salary:
                r.formatted_salary = "£30,000 a year"
                r.avg_yearly_salary = 30000
        if self._side_effect is not None:
            self._side_effect(results)
        return self._ok


def _result(
    key: str,
    *,
    employer: str = "Acme Ltd",
    days_ago: int = 0,
    **kw: object,
) -> CanonicalJobResult:
    defaults: dict[str, object] = {
        "key": key,
        "title": f"Python Developer {key}",
        "url": f"https://uk.indeed.com/viewjob?jk={key}",
        "html_description": f"<p>Role <b>{key}</b></p>",
        "employer_name": employer,
        "location": "Leeds",
        "posted": datetime.now(timezone.utc) - timedelta(days=days_ago),
    }
    defaults.update(kw)
    return CanonicalJobResult(**defaults)  # type: ignore[arg-type]


def _settings(*, dedupe: bool = False) -> Settings:
    return Settings(duplicates=DuplicateCheckConfig(enabled=dedupe))


def _orchestrator(
    db: sqlite3.Connection,
    fetcher: FakeFetcher,
    enricher: FakeEnricher | None = None,
    settings: Settings | None = None,
) -> SearchOrchestrator:
    providers = {"indeed": Provider(fetcher=fetcher, enricher=enricher or FakeEnricher())}
    return SearchOrchestrator(db, settings or _settings(), providers)


def _seed_job(db: sqlite3.Connection, key: str) -> None:
    company_id = insert_company(db, "Seeded Co")
    persist_batch(db, [], [JobDraft(title="Old", provider="indeed", provider_id=key, company_id=company_id)])


# ---------------------------------------------------------------------------
# Tests
# ---------------------------------------------------------------------------


class TestFullPipeline:
    @pytest.fixture
    def db(self, tmp_path: pytest.TempPathFactory) -> sqlite3.Connection:  # type: ignore[type-arg]
        return init_db(tmp_path / "test.db")

    @pytest.fixture
    def search(self, db: sqlite3.Connection) -> Search:
        sid = insert_search(db, "indeed", "python", "gb", location="Leeds")
        s = get_search(db, sid)
        assert s is not None
        return s

    async def test_basic_pipeline(self, db: sqlite3.Connection, search: Search) -> None:
        fetcher = FakeFetcher([
            [_result("a"), _result("b", employer="Beta plc")],
            [_result("c")],
        ])
        enricher = FakeEnricher()

        outcome = await _orchestrator(db, fetcher, enricher).run_search(search)

        assert outcome.success is True
        assert outcome.fetch_state == RunState.EXHAUSTED
        assert outcome.state == RunState.RECORDED
        assert outcome.existing_found is False
        assert outcome.pages_fetched == 2
        assert outcome.new_jobs == 3
        assert outcome.new_companies == 2
        assert enricher.calls == [["a", "b", "c"]]

        jobs = list_jobs(db)
        assert [j.provider_id for j in jobs] == ["a", "b", "c"]
        assert jobs[0].description == "Role **a**"
        assert jobs[0].salary == "£30,000 a year"
        assert jobs[0].source_id == search.id
        assert jobs[0].company_id == jobs[2].company_id

        (run,) = list_search_runs(db, search.id)
        assert run.success is True
        assert run.new_jobs == 3
        assert run.new_companies == 2
        refreshed = get_search(db, search.id)
        assert refreshed is not None
        assert refreshed.last_fetch_success is True
        assert refreshed.last_result_count == 3

    async def test_idempotent_rerun(self, db: sqlite3.Connection, search: Search) -> None:
        pages = [[_result("a"), _result("b")], [_result("c")]]
        await _orchestrator(db, FakeFetcher(pages)).run_search(search)

        fetcher = FakeFetcher(pages)
        enricher = FakeEnricher()
        outcome = await _orchestrator(db, fetcher, enricher).run_search(search)

        assert outcome.new_jobs == 0
        assert outcome.existing_found is True
        assert fetcher.requested == 1
        assert enricher.calls == []
        assert len(list_jobs(db)) == 3
        assert count_companies(db) == 1

    async def test_early_exit_finishes_page(self, db: sqlite3.Connection, search: Search) -> None:
        _seed_job(db, "e")
        fetcher = FakeFetcher([
            [_result("a"), _result("b"), _result("c"), _result("d"), _result("e"), _result("f")],
            [_result("g")],
        ])

        outcome = await _orchestrator(db, fetcher).run_search(search)

        assert outcome.existing_found is True
        assert outcome.fetch_state == RunState.EARLY_EXIT
        assert fetcher.requested == 1
        assert outcome.new_jobs == 5
        keys = {j.provider_id for j in list_jobs(db)}
        assert keys == {"a", "b", "c", "d", "e", "f"}

    async def test_too_old_result_stops_paging_but_is_kept(self, db: sqlite3.Connection) -> None:
        sid = insert_search(db, "indeed", "python", "gb", max_age=7)
        search = get_search(db, sid)
        assert search is not None
        fetcher = FakeFetcher([
            [_result("a", days_ago=1), _result("old", days_ago=30)],
            [_result("b", days_ago=31)],
        ])

        outcome = await _orchestrator(db, fetcher).run_search(search)

        assert outcome.existing_found is True
        assert fetcher.requested == 1
        assert {j.provider_id for j in list_jobs(db)} == {"a", "old"}

    async def test_duplicate_key_within_run_skipped(self, db: sqlite3.Connection, search: Search) -> None:
        fetcher = FakeFetcher([[_result("a")], [_result("a"), _result("b")]])
        outcome = await _orchestrator(db, fetcher).run_search(search)
        assert outcome.new_jobs == 2
        assert outcome.conflicts == 0

    async def test_zero_result_run(self, db: sqlite3.Connection, search: Search) -> None:
        _seed_job(db, "a")
        enricher = FakeEnricher()
        orchestrator = _orchestrator(db, FakeFetcher([[_result("a")]]), enricher, _settings(dedupe=True))

        with patch("src.pipeline.orchestrator.DuplicateDetector") as detector:
            outcome = await orchestrator.run_search(search)

        assert outcome.success is True
        assert outcome.new_jobs == 0
        assert outcome.new_companies == 0
        assert enricher.calls == []
        detector.assert_not_called()
        (run,) = list_search_runs(db, search.id)
        assert run.success is True
        assert (run.new_jobs, run.new_companies) == (0, 0)

    async def test_empty_provider_response(self, db: sqlite3.Connection, search: Search) -> None:
        outcome = await _orchestrator(db, FakeFetcher([[]])).run_search(search)
        assert outcome.success is True
        assert outcome.pages_fetched == 1
        assert len(list_search_runs(db, search.id)) == 1

    async def test_fetch_failure_persists_nothing(self, db: sqlite3.Connection, search: Search) -> None:
        enricher = FakeEnricher()
        fetcher = FakeFetcher([[_result("a")], [_result("b")]], fail_at=1)

        outcome = await _orchestrator(db, fetcher, enricher).run_search(search)

        assert outcome.success is False
        assert outcome.fetch_state == RunState.FETCH_FAILED
        assert outcome.message == "Indeed API error"
        assert list_jobs(db) == []
        assert enricher.calls == []

        (run,) = list_search_runs(db, search.id)
        assert run.success is False
        assert run.message == "Indeed API error"
        (alert,) = list_alerts(db)
        assert alert.type == AlertType.ERROR
        assert alert.title == "Search Error (python jobs in Leeds on indeed)"

        refreshed = get_search(db, search.id)
        assert refreshed is not None
        assert refreshed.enabled is True
        assert refreshed.last_fetch_success is False

    async def test_malformed_payload_is_fetch_failure(self, db: sqlite3.Connection, search: Search) -> None:
        fetcher = FakeFetcher([[_result("a")]], fail_at=0, error=ProviderPayloadError("indeed", "bad"))
        outcome = await _orchestrator(db, fetcher).run_search(search)
        assert outcome.fetch_state == RunState.FETCH_FAILED
        assert len(list_alerts(db)) == 1

    async def test_cancel_mid_pagination_keeps_prior_pages(self, db: sqlite3.Connection, search: Search) -> None:
        cancel = asyncio.Event()

        def before_page(index: int) -> None:
            if index == 1:
                cancel.set()

        fetcher = FakeFetcher(
            [[_result("a"), _result("b")], [_result("c"), _result("d")], [_result("e")]],
            before_page=before_page,
        )

        outcome = await _orchestrator(db, fetcher).run_search(search, cancel)

        assert outcome.cancelled is True
        assert outcome.success is True
        assert fetcher.requested == 2
        assert {j.provider_id for j in list_jobs(db)} == {"a", "b"}
        assert len(list_search_runs(db, search.id)) == 1

    async def test_cancel_before_start(self, db: sqlite3.Connection, search: Search) -> None:
        cancel = asyncio.Event()
        cancel.set()
        fetcher = FakeFetcher([[_result("a")]])
        outcome = await _orchestrator(db, fetcher).run_search(search, cancel)
        assert outcome.cancelled is True
        assert fetcher.requested == 0
        assert list_jobs(db) == []

    async def test_same_employer_creates_one_company(self, db: sqlite3.Connection, search: Search) -> None:
        fetcher = FakeFetcher([[_result("a", employer="NewCo"), _result("b", employer="newco")]])
        outcome = await _orchestrator(db, fetcher).run_search(search)
        assert outcome.new_companies == 1
        assert count_companies(db) == 1

    async def test_watched_company_alerts(self, db: sqlite3.Connection, search: Search) -> None:
        insert_company(db, "Acme Ltd", watched=True)
        fetcher = FakeFetcher([[_result("a"), _result("b", employer="Other")]])

        await _orchestrator(db, fetcher).run_search(search)

        job = next(j for j in list_jobs(db) if j.provider_id == "a")
        (alert,) = list_alerts(db)
        assert alert.type == AlertType.NEW_JOB
        assert alert.title == "New job posted by Acme Ltd"
        assert alert.message == "'Python Developer a'"
        assert alert.url == f"/job/{job.id}#jobs"

    async def test_blacklisted_company_jobs_archived(self, db: sqlite3.Connection, search: Search) -> None:
        insert_company(db, "Spam Recruiters", blacklisted=True)
        fetcher = FakeFetcher([[_result("a", employer="spam recruiters"), _result("b")]])

        await _orchestrator(db, fetcher).run_search(search)

        archived = {j.provider_id: j.archived for j in list_jobs(db)}
        assert archived == {"a": True, "b": False}

    async def test_alternative_employer_name_matches(self, db: sqlite3.Connection, search: Search) -> None:
        cid = insert_company(db, "Acme Group")
        fetcher = FakeFetcher([[_result("a", employer="Acme Careers", alternative_employer_name="Acme Group")]])
        outcome = await _orchestrator(db, fetcher).run_search(search)
        assert outcome.new_companies == 0
        assert list_jobs(db)[0].company_id == cid

    async def test_new_company_records_alternate_name(self, db: sqlite3.Connection, search: Search) -> None:
        fetcher = FakeFetcher([[_result("a", employer="Acme Careers", alternative_employer_name="Acme Group")]])
        await _orchestrator(db, fetcher).run_search(search)
        company = find_company_by_name(db, "Acme Group")
        assert company is not None
        assert company.name == "Acme Careers"

    async def test_attributes_mapped_to_categories(self, db: sqlite3.Connection, search: Search) -> None:
        permanent = insert_category(db, "Permanent")
        fetcher = FakeFetcher([[_result("a", attributes=["permanent", "Unknown tag"])]])
        await _orchestrator(db, fetcher).run_search(search)
        job = list_jobs(db)[0]
        assert get_job_category_ids(db, job.id) == [permanent]

    async def test_snippet_used_without_description(self, db: sqlite3.Connection, search: Search) -> None:
        fetcher = FakeFetcher([[_result("a", html_description=None, snippet="Short teaser")]])
        await _orchestrator(db, fetcher).run_search(search)
        assert list_jobs(db)[0].description == "Short teaser"

    async def test_enrichment_error_keeps_run_successful(self, db: sqlite3.Connection, search: Search) -> None:
        fetcher = FakeFetcher([[_result("a")]])
        outcome = await _orchestrator(db, fetcher, FakeEnricher(ok=False)).run_search(search)

        assert outcome.success is True
        assert outcome.message == "Indeed enrichment error"
        assert outcome.new_jobs == 1
        (run,) = list_search_runs(db, search.id)
        assert run.success is True
        assert run.message == "Indeed enrichment error"
        assert [a.type for a in list_alerts(db)] == [AlertType.ERROR]

    async def test_concurrent_insert_is_benign_conflict(self, db: sqlite3.Connection, search: Search) -> None:
        def other_run_inserts(results: list[CanonicalJobResult]) -> None:
            _seed_job(db, "b")

        fetcher = FakeFetcher([[_result("a"), _result("b"), _result("c")]])
        enricher = FakeEnricher(side_effect=other_run_inserts)

        outcome = await _orchestrator(db, fetcher, enricher).run_search(search)

        assert outcome.success is True
        assert outcome.conflicts == 1
        assert outcome.new_jobs == 2
        assert sorted(j.provider_id for j in list_jobs(db)) == ["a", "b", "c"]

    async def test_duplicates_linked_when_enabled(self, db: sqlite3.Connection, search: Search) -> None:
        description = "<p>" + "Build Python services for our logistics platform. " * 4 + "</p>"
        first = FakeFetcher([[_result("a", html_description=description, title="Python Developer")]])
        await _orchestrator(db, first, settings=_settings(dedupe=True)).run_search(search)

        second = FakeFetcher([[
            _result("b", html_description=description, title="Python Developer", employer="Recruiter"),
        ]])
        outcome = await _orchestrator(db, second, settings=_settings(dedupe=True)).run_search(search)

        assert outcome.duplicates == 1
        jobs = {j.provider_id: j for j in list_jobs(db)}
        assert jobs["b"].duplicate_job_id == jobs["a"].id
        assert jobs["b"].checked_for_duplicate is True

    async def test_unknown_provider_raises(self, db: sqlite3.Connection) -> None:
        sid = insert_search(db, "monster", "python", "gb")
        search = get_search(db, sid)
        assert search is not None
        with pytest.raises(UnknownProviderError, match="monster"):
            await _orchestrator(db, FakeFetcher([])).run_search(search)


class TestSweep:
    @pytest.fixture
    def db(self, tmp_path: pytest.TempPathFactory) -> sqlite3.Connection:  # type: ignore[type-arg]
        return init_db(tmp_path / "test.db")

    async def test_runs_enabled_searches_in_order(self, db: sqlite3.Connection) -> None:
        first = insert_search(db, "indeed", "python", "gb")
        insert_search(db, "indeed", "java", "gb", enabled=False)
        second = insert_search(db, "indeed", "go", "gb")

        outcomes = await _orchestrator(db, FakeFetcher([[]])).run_provider("indeed")
        assert [o.search_id for o in outcomes] == [first, second]

    async def test_one_failure_does_not_abort_sweep(self, db: sqlite3.Connection) -> None:
        first = insert_search(db, "indeed", "python", "gb")
        second = insert_search(db, "indeed", "go", "gb")
        calls = []

        def before_page(index: int) -> None:
            calls.append(index)
            if len(calls) == 1:
                raise RuntimeError("boom")

        fetcher = FakeFetcher([[_result("a")]], before_page=before_page)
        outcomes = await _orchestrator(db, fetcher).run_provider("indeed")

        assert [o.success for o in outcomes] == [False, True]
        assert list_search_runs(db, first)[0].success is False
        assert list_search_runs(db, second)[0].new_jobs == 1
        assert any(a.title.startswith("Search Error") for a in list_alerts(db))

    async def test_cancel_stops_between_searches(self, db: sqlite3.Connection) -> None:
        insert_search(db, "indeed", "python", "gb")
        insert_search(db, "indeed", "go", "gb")
        cancel = asyncio.Event()

        def before_page(index: int) -> None:
            if index == 1:
                cancel.set()

        fetcher = FakeFetcher([[_result("a")], [_result("b")]], before_page=before_page)
        outcomes = await _orchestrator(db, fetcher).run_provider("indeed", cancel)

        assert len(outcomes) == 1
        assert outcomes[0].new_jobs == 1

    async def test_run_search_by_id(self, db: sqlite3.Connection) -> None:
        sid = insert_search(db, "indeed", "python", "gb")
        outcome = await _orchestrator(db, FakeFetcher([[_result("a")]])).run_search_by_id(sid)
        assert outcome.search_id == sid
        assert outcome.new_jobs == 1

    async def test_run_search_by_id_missing(self, db: sqlite3.Connection) -> None:
        with pytest.raises(SearchNotFoundError):
            await _orchestrator(db, FakeFetcher([])).run_search_by_id(404)

    async def test_unknown_provider_recorded_as_failed_run(self, db: sqlite3.Connection) -> None:
        sid = insert_search(db, "monster", "python", "gb")
        outcome = await _orchestrator(db, FakeFetcher([])).run_search_by_id(sid)
        assert outcome.success is False
        assert list_search_runs(db, sid)[0].success is False


class TestHelpers:
    @pytest.fixture
    def db(self, tmp_path: pytest.TempPathFactory) -> sqlite3.Connection:  # type: ignore[type-arg]
        return init_db(tmp_path / "test.db")

    def test_sync_searches_idempotent(self, db: sqlite3.Connection) -> None:
        configs = [SearchConfig(query="python", location="Leeds"), SearchConfig(query="go")]
        assert sync_searches(db, configs) == 2
        assert sync_searches(db, configs) == 0

    def test_max_age_cutoff(self) -> None:
        search = Search(id=1, provider="indeed", query="q", country="gb", max_age=7)
        now = datetime(2024, 5, 10, 15, 30, tzinfo=timezone.utc)
        assert max_age_cutoff(search, now) == datetime(2024, 5, 3, tzinfo=timezone.utc)

    def test_no_cutoff_without_max_age(self) -> None:
        search = Search(id=1, provider="indeed", query="q", country="gb")
        assert max_age_cutoff(search) is None
