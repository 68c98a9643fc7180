"""Indeed enrichment: fill in salaries and descriptions after a search completes.

Fallback chain:
  1. One bulk GraphQL ``jobData`` call for every job missing data.
  2. If that is disabled or fails outright, the legacy endpoints:
       a. per-job salary lookups, grouped by advertising domain, with a
          consecutive-failure breaker per domain;
       b. one bulk description call.

Missing data is never an error; jobs that nothing could enrich keep empty
fields.
"""

import asyncio
import logging
from collections import defaultdict
from urllib.parse import urlsplit

from src.core.config import IndeedConfig
from src.core.errors import ProviderError, ProviderPayloadError
from src.core.schemas import CanonicalJobResult, Search
from src.pipeline.salary import normalize_compensation, normalize_legacy_salary
from src.platforms.base import Enricher, is_cancelled
from src.platforms.indeed.graphql import IndeedGraphQLClient
from src.platforms.indeed.publisher import IndeedDescriptionApi, IndeedSalaryApi

logger = logging.getLogger(__name__)


def result_domain(result: CanonicalJobResult) -> str:
    """Scheme and host of a result's URL, e.g. ``https://uk.indeed.com``."""
    parts = urlsplit(result.url)
    return f"{parts.scheme}://{parts.netloc}"


class IndeedEnricher(Enricher):
    def __init__(
        self,
        indeed: IndeedConfig,
        salary_api: IndeedSalaryApi,
        description_api: IndeedDescriptionApi,
        graphql: IndeedGraphQLClient | None = None,
        currency: str = "£",
    ) -> None:
        self._indeed = indeed
        self._salary_api = salary_api
        self._description_api = description_api
        self._graphql = graphql
        self._currency = currency

    async def enrich(
        self,
        search: Search,
        results: list[CanonicalJobResult],
        cancel: asyncio.Event | None = None,
    ) -> bool:
        pending = [r for r in results if r.needs_salary or r.needs_description]
        if not pending:
            logger.debug("Nothing to enrich for '%s'", search.display_name)
            return True

        success = True
        bulk_ok = False
        graphql = self._graphql
        if self._indeed.use_graphql_salary_and_descriptions and graphql is not None:
            bulk_ok = await self._enrich_bulk(graphql, search, pending)
            success = bulk_ok

        if not bulk_ok:
            if self._indeed.fetch_salary:
                needs_salary = [r for r in pending if r.needs_salary]
                if not await self.enrich_salaries(needs_salary, cancel):
                    success = False
            if not await self._enrich_descriptions([r for r in pending if r.needs_description]):
                success = False

        return success

    async def _enrich_bulk(
        self,
        graphql: IndeedGraphQLClient,
        search: Search,
        pending: list[CanonicalJobResult],
    ) -> bool:
        try:
            data = await graphql.job_data([r.key for r in pending], search.country)
        except ProviderError:
            logger.exception("Indeed GraphQL job data request failed")
            return False

        if not data:
            logger.error("Indeed GraphQL job data returned no results for %d jobs", len(pending))
            return False

        by_key = {d.key: d for d in data}
        for result in pending:
            item = by_key.get(result.key)
            if item is None:
                logger.warning("No GraphQL job data for Indeed job %s", result.key)
                continue
            if result.needs_salary:
                formatted, yearly = normalize_compensation(item.compensation, self._currency)
                result.formatted_salary = formatted
                result.avg_yearly_salary = yearly
            if result.needs_description and item.description and item.description.html:
                result.html_description = item.description.html
            if not result.attributes and item.attributes:
                result.attributes = [a.label for a in item.attributes]
        return True

    async def enrich_salaries(
        self,
        results: list[CanonicalJobResult],
        cancel: asyncio.Event | None = None,
    ) -> bool:
        """Look up salaries one job at a time, per advertising domain.

        Each domain keeps its own count of consecutive failures; once it reaches
        the threshold the rest of that domain is skipped for this run. Request
        failures only count towards the breaker. Returns False if any response
        could not be deserialised.
        """
        malformed = 0
        groups: dict[str, list[CanonicalJobResult]] = defaultdict(list)
        for result in results:
            groups[result_domain(result)].append(result)

        threshold = self._indeed.salary_failure_threshold
        for domain, group in groups.items():
            failures = 0
            for result in group:
                if is_cancelled(cancel):
                    logger.info("Salary lookups cancelled")
                    return malformed == 0
                if failures >= threshold:
                    logger.warning(
                        "Salary lookups for %s failed %d times in a row - skipping %d remaining",
                        domain, failures, len(group) - group.index(result),
                    )
                    break

                try:
                    response = await self._salary_api.get_salary(domain, result.key)
                except ProviderPayloadError as exc:
                    failures += 1
                    malformed += 1
                    logger.error("Malformed Indeed salary response for %s: %s", result.key, exc)
                    continue
                except ProviderError as exc:
                    failures += 1
                    logger.error("Indeed salary lookup failed for %s: %s", result.key, exc)
                    continue

                formatted, yearly = normalize_legacy_salary(response, self._currency)
                result.formatted_salary = formatted
                result.avg_yearly_salary = yearly
                failures = 0

        if malformed:
            logger.error("%d Indeed salary responses could not be read", malformed)
        return malformed == 0

    async def _enrich_descriptions(self, results: list[CanonicalJobResult]) -> bool:
        if not results:
            return True
        try:
            descriptions = await self._description_api.get_descriptions(r.key for r in results)
        except ProviderError:
            logger.exception("Indeed job description request failed")
            return False

        if not descriptions:
            logger.error("Indeed job description request returned nothing for %d jobs", len(results))
            return False

        for result in results:
            html = descriptions.get(result.key)
            if html:
                result.html_description = html
        return True
