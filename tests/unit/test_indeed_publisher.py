"""Tests for the Indeed legacy endpoints: publisher search, salary, descriptions."""

from datetime import datetime, timezone

import httpx
import pytest

from src.core.config import HttpConfig, IndeedConfig
from src.core.errors import ProviderPayloadError
from src.core.schemas import Search
from src.platforms.http import build_client
from src.platforms.indeed.models import PublisherJobResult
from src.platforms.indeed.publisher import (
    PAGE_SIZE,
    IndeedDescriptionApi,
    IndeedPublisherFetcher,
    IndeedSalaryApi,
    build_search_params,
)

_HTTP = HttpConfig(max_attempts=1, backoff_min_seconds=0, backoff_max_seconds=0)
_INDEED = IndeedConfig(fetcher="publisher", publisher_id="pub-1")


def _result(key: str) -> dict[str, object]:
    return {
        "jobtitle": f"Developer {key}",
        "company": "Acme Ltd",
        "formattedLocation": "Leeds",
        "date": "Wed, 01 May 2024 09:30:00 GMT",
        "snippet": "Great <b>python</b> role",
        "url": f"https://uk.indeed.com/viewjob?jk={key}&from=api&tk=xyz",
        "latitude": 53.8,
        "longitude": -1.55,
        "jobkey": key,
        "sponsored": False,
    }


def _search(**kw: object) -> Search:
    defaults: dict[str, object] = {"id": 1, "provider": "indeed", "query": "python", "country": "gb"}
    defaults.update(kw)
    return Search(**defaults)  # type: ignore[arg-type]


def _client(handler) -> httpx.AsyncClient:  # type: ignore[no-untyped-def]
    return build_client(_HTTP, transport=httpx.MockTransport(handler))


class TestPublisherMapping:
    def test_to_canonical(self) -> None:
        r = PublisherJobResult.model_validate(_result("k1")).to_canonical()
        assert r.key == "k1"
        assert r.url == "https://uk.indeed.com/viewjob?jk=k1"
        assert r.posted == datetime(2024, 5, 1, 9, 30, tzinfo=timezone.utc)
        assert r.snippet == "Great <b>python</b> role"
        assert r.html_description is None
        assert r.employer_name == "Acme Ltd"
        assert r.needs_salary is True


class TestBuildSearchParams:
    def test_required_params(self) -> None:
        params = build_search_params("pub-1", _search(), 50)
        assert params["publisher"] == "pub-1"
        assert params["q"] == "python"
        assert params["co"] == "gb"
        assert params["start"] == "50"
        assert params["limit"] == str(PAGE_SIZE)
        assert params["sort"] == "date"
        assert params["format"] == "json"
        assert "l" not in params
        assert "sc" not in params

    def test_optional_filters(self) -> None:
        params = build_search_params(
            "pub-1",
            _search(location="Leeds", distance=10, max_age=7, job_type="permanent", employer_only=True),
            0,
        )
        assert params["l"] == "Leeds"
        assert params["radius"] == "10"
        assert params["fromage"] == "7"
        assert params["jt"] == "permanent"
        assert params["sc"] == "0bf:exrec();"


class TestPublisherFetcher:
    async def test_offset_pagination(self) -> None:
        starts: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            start = request.url.params["start"]
            starts.append(start)
            keys = [f"{start}-{i}" for i in range(PAGE_SIZE if start == "0" else 5)]
            return httpx.Response(200, json={"totalResults": PAGE_SIZE + 5, "results": [_result(k) for k in keys]})

        async with _client(handler) as client:
            fetcher = IndeedPublisherFetcher(client, _INDEED, _HTTP)
            pages = [page async for page in fetcher.fetch_pages(_search())]

        assert starts == ["0", str(PAGE_SIZE)]
        assert [len(p) for p in pages] == [PAGE_SIZE, 5]

    async def test_single_page(self) -> None:
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(200, json={"totalResults": 2, "results": [_result("a"), _result("b")]})

        async with _client(handler) as client:
            fetcher = IndeedPublisherFetcher(client, _INDEED, _HTTP)
            pages = [page async for page in fetcher.fetch_pages(_search())]

        assert len(calls) == 1
        assert [r.key for r in pages[0]] == ["a", "b"]
        assert calls[0].url.path == "/ads/apisearch"

    async def test_malformed_page(self) -> None:
        async with _client(lambda request: httpx.Response(200, json={"results": [{"jobkey": "x"}]})) as client:
            fetcher = IndeedPublisherFetcher(client, _INDEED, _HTTP)
            with pytest.raises(ProviderPayloadError):
                [page async for page in fetcher.fetch_pages(_search())]


class TestSalaryApi:
    async def test_get_salary(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"sEx": {"sAvg": 500, "sRg": "£0 - £500", "sT": "WEEKLY"}})

        async with _client(handler) as client:
            resp = await IndeedSalaryApi(client, _HTTP).get_salary("https://uk.indeed.com", "k1")

        assert resp.expected is not None
        assert resp.expected.type == "WEEKLY"
        assert seen[0].url.host == "uk.indeed.com"
        assert seen[0].url.params["jk"] == "k1"
        assert seen[0].url.params["vjs"] == "1"
        assert seen[0].headers["user-agent"].startswith("PostmanRuntime")


class TestDescriptionApi:
    async def test_get_descriptions(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"a": "<p>A</p>", "b": "<p>B</p>"})

        async with _client(handler) as client:
            descriptions = await IndeedDescriptionApi(client, _INDEED, _HTTP).get_descriptions(["a", "b"])

        assert descriptions == {"a": "<p>A</p>", "b": "<p>B</p>"}
        assert seen[0].url.path == "/rpc/jobdescs"
        assert seen[0].url.params["jks"] == "a,b"

    async def test_unexpected_shape(self) -> None:
        async with _client(lambda request: httpx.Response(200, json=["a"])) as client:
            with pytest.raises(ProviderPayloadError):
                await IndeedDescriptionApi(client, _INDEED, _HTTP).get_descriptions(["a"])
