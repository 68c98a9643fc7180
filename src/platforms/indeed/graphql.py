"""Indeed GraphQL API: cursor-paginated job search and bulk job data."""

import asyncio
import logging
from collections.abc import AsyncIterator, Iterable
from typing import Any

import httpx
from pydantic import ValidationError

from src.core.config import HttpConfig, IndeedConfig
from src.core.errors import ProviderPayloadError
from src.core.schemas import CanonicalJobResult, Search
from src.platforms.base import JobFetcher, is_cancelled
from src.platforms.http import preview_payload, request_json
from src.platforms.indeed.models import (
    PROVIDER,
    JobDataData,
    JobDataResult,
    JobSearch,
    JobSearchData,
)
from src.platforms.indeed.queries import JOB_DATA_QUERY, JOB_SEARCH_QUERY

logger = logging.getLogger(__name__)


class IndeedGraphQLClient:
    """Thin GraphQL transport: one POST per query, errors raised as ProviderError."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        indeed: IndeedConfig,
        http: HttpConfig,
    ) -> None:
        self._client = client
        self._indeed = indeed
        self._http = http

    async def execute(
        self,
        query: str,
        variables: dict[str, Any],
        country: str,
    ) -> dict[str, Any]:
        """Run a query for a country and return its ``data`` object."""
        body = await request_json(
            self._client,
            "POST",
            self._indeed.graphql_url,
            params={"co": country.upper(), "locale": self._indeed.locale},
            headers={"indeed-api-key": self._indeed.graphql_api_key or ""},
            json={"query": query, "variables": variables},
            provider=PROVIDER,
            config=self._http,
        )

        if not isinstance(body, dict):
            logger.error("Indeed GraphQL returned a non-object body: %s", preview_payload(body))
            raise ProviderPayloadError(PROVIDER, "GraphQL body is not an object", payload=body)

        errors = body.get("errors")
        if errors:
            logger.error("Indeed GraphQL errors: %s", preview_payload(errors))
            raise ProviderPayloadError(PROVIDER, "GraphQL query returned errors", payload=errors)

        data = body.get("data")
        if not isinstance(data, dict):
            logger.error("Indeed GraphQL response has no data: %s", preview_payload(body))
            raise ProviderPayloadError(PROVIDER, "GraphQL response has no data", payload=body)
        return data

    async def job_search(self, variables: dict[str, Any], country: str) -> JobSearch:
        data = await self.execute(JOB_SEARCH_QUERY, variables, country)
        try:
            return JobSearchData.model_validate(data).job_search
        except ValidationError as exc:
            logger.error("Unexpected Indeed job search payload: %s", preview_payload(data))
            raise ProviderPayloadError(PROVIDER, f"malformed job search: {exc}", payload=data) from exc

    async def job_data(self, job_keys: Iterable[str], country: str) -> list[JobDataResult]:
        data = await self.execute(JOB_DATA_QUERY, {"jobKeys": list(job_keys)}, country)
        try:
            parsed = JobDataData.model_validate(data)
        except ValidationError as exc:
            logger.error("Unexpected Indeed job data payload: %s", preview_payload(data))
            raise ProviderPayloadError(PROVIDER, f"malformed job data: {exc}", payload=data) from exc
        return [r.job for r in parsed.job_data.results]


class IndeedGraphQLFetcher(JobFetcher):
    """Job search over the GraphQL endpoint, following ``nextCursor``."""

    def __init__(
        self,
        client: IndeedGraphQLClient,
        indeed: IndeedConfig,
        currency: str = "£",
    ) -> None:
        self._client = client
        self._indeed = indeed
        self._currency = currency

    @property
    def provider_id(self) -> str:
        return PROVIDER

    def build_variables(self, search: Search) -> dict[str, Any]:
        variables: dict[str, Any] = {
            "cursor": None,
            "query": search.query,
            "limit": self._indeed.search_limit,
        }
        if search.location and search.distance is not None:
            variables["location"] = {
                "where": search.location,
                "radius": search.distance,
                "radiusUnit": self._indeed.search_radius_unit,
            }
        return variables

    async def fetch_pages(
        self,
        search: Search,
        cancel: asyncio.Event | None = None,
    ) -> AsyncIterator[list[CanonicalJobResult]]:
        variables = self.build_variables(search)
        page = 0

        while not is_cancelled(cancel):
            result = await self._client.job_search(variables, search.country)
            page += 1
            logger.info("Indeed GraphQL page %d: %d results", page, len(result.results))

            yield [
                r.job.to_canonical(self._indeed.host_name, self._currency)
                for r in result.results
            ]

            cursor = result.page_info.next_cursor
            if not cursor or not result.results:
                return
            variables["cursor"] = cursor
