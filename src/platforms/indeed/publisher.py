"""Indeed legacy endpoints: publisher job search, per-job salary and bulk descriptions."""

import asyncio
import logging
from collections.abc import AsyncIterator, Iterable
from typing import Any

import httpx
from pydantic import ValidationError

from src.core.config import HttpConfig, IndeedConfig
from src.core.errors import ProviderPayloadError
from src.core.schemas import CanonicalJobResult, Search
from src.pipeline.salary import LegacySalaryResponse
from src.platforms.base import JobFetcher, is_cancelled
from src.platforms.http import preview_payload, request_json
from src.platforms.indeed.models import PROVIDER, PublisherSearchResponse

logger = logging.getLogger(__name__)

PAGE_SIZE = 25

# "Exclude recruiters" filter understood by the publisher search.
_EXCLUDE_RECRUITERS = "0bf:exrec();"

# The salary endpoint answers browser-ish clients only.
_SALARY_USER_AGENT = "PostmanRuntime/7.29.2"


def build_search_params(publisher_id: str, search: Search, start: int) -> dict[str, str]:
    """Query parameters for one publisher search page."""
    params: dict[str, str] = {
        "publisher": publisher_id,
        "q": search.query,
        "co": search.country,
        "start": str(start),
        "sort": "date",
        "limit": str(PAGE_SIZE),
        "format": "json",
        "userip": "1.2.3.4",
        "useragent": "Mozilla//4.0(Firefox)",
        "latlong": "1",
        "v": "2",
        "filter": "0",
    }
    if search.location:
        params["l"] = search.location
    if search.distance is not None:
        params["radius"] = str(search.distance)
    if search.max_age is not None:
        params["fromage"] = str(search.max_age)
    if search.employer_only:
        params["sc"] = _EXCLUDE_RECRUITERS
    if search.job_type:
        params["jt"] = search.job_type
    return params


class IndeedPublisherFetcher(JobFetcher):
    """Job search over the publisher API, paginating by offset."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        indeed: IndeedConfig,
        http: HttpConfig,
    ) -> None:
        self._client = client
        self._indeed = indeed
        self._http = http

    @property
    def provider_id(self) -> str:
        return PROVIDER

    async def fetch_pages(
        self,
        search: Search,
        cancel: asyncio.Event | None = None,
    ) -> AsyncIterator[list[CanonicalJobResult]]:
        start = 0
        while not is_cancelled(cancel):
            body = await request_json(
                self._client,
                "GET",
                f"{self._indeed.publisher_url}/ads/apisearch",
                params=build_search_params(self._indeed.publisher_id or "", search, start),
                provider=PROVIDER,
                config=self._http,
            )
            try:
                response = PublisherSearchResponse.model_validate(body)
            except ValidationError as exc:
                logger.error("Unexpected Indeed publisher payload: %s", preview_payload(body))
                msg = f"malformed publisher search: {exc}"
                raise ProviderPayloadError(PROVIDER, msg, payload=body) from exc

            logger.info(
                "Indeed publisher page at %d: %d of %d results",
                start, len(response.results), response.total_results,
            )
            yield [r.to_canonical() for r in response.results]

            if not response.results or start + PAGE_SIZE >= response.total_results:
                return
            start += PAGE_SIZE


class IndeedSalaryApi:
    """Per-job salary lookup on the regional domain the job was advertised on."""

    def __init__(self, client: httpx.AsyncClient, http: HttpConfig) -> None:
        self._client = client
        self._http = http

    async def get_salary(self, domain: str, job_key: str) -> LegacySalaryResponse:
        body = await request_json(
            self._client,
            "GET",
            f"{domain}/viewjob",
            params={"vjs": "1", "jk": job_key},
            headers={"User-Agent": _SALARY_USER_AGENT},
            provider=PROVIDER,
            config=self._http,
        )
        try:
            return LegacySalaryResponse.model_validate(body)
        except ValidationError as exc:
            logger.error("Unexpected Indeed salary payload for %s: %s", job_key, preview_payload(body))
            msg = f"malformed salary for {job_key}: {exc}"
            raise ProviderPayloadError(PROVIDER, msg, payload=body) from exc


class IndeedDescriptionApi:
    """Bulk HTML descriptions keyed by job key."""

    def __init__(self, client: httpx.AsyncClient, indeed: IndeedConfig, http: HttpConfig) -> None:
        self._client = client
        self._indeed = indeed
        self._http = http

    async def get_descriptions(self, job_keys: Iterable[str]) -> dict[str, str]:
        body: Any = await request_json(
            self._client,
            "GET",
            f"{self._indeed.description_url}/rpc/jobdescs",
            params={"jks": ",".join(job_keys)},
            provider=PROVIDER,
            config=self._http,
        )
        if not isinstance(body, dict) or not all(
            isinstance(k, str) and isinstance(v, str) for k, v in body.items()
        ):
            logger.error("Unexpected Indeed description payload: %s", preview_payload(body))
            raise ProviderPayloadError(PROVIDER, "malformed job descriptions", payload=body)
        return body
