"""Provider registry: builds each provider's fetcher and enricher from settings."""

import logging
from dataclasses import dataclass

import httpx

from src.core.config import Settings
from src.core.errors import UnknownProviderError
from src.platforms.base import Enricher, JobFetcher
from src.platforms.indeed.enrichment import IndeedEnricher
from src.platforms.indeed.graphql import IndeedGraphQLClient, IndeedGraphQLFetcher
from src.platforms.indeed.models import PROVIDER as INDEED
from src.platforms.indeed.publisher import (
    IndeedDescriptionApi,
    IndeedPublisherFetcher,
    IndeedSalaryApi,
)

logger = logging.getLogger(__name__)


@dataclass
class Provider:
    """Everything the orchestrator needs to run searches against one provider."""

    fetcher: JobFetcher
    enricher: Enricher | None = None

    @property
    def name(self) -> str:
        return self.fetcher.provider_id


def build_indeed(settings: Settings, client: httpx.AsyncClient) -> Provider:
    """Wire the Indeed fetcher selected by ``indeed.fetcher`` plus its enricher.

    Raises:
        ValueError: the selected fetcher has no credentials configured.
    """
    indeed = settings.indeed
    currency = settings.salary.currency_symbol

    graphql = IndeedGraphQLClient(client, indeed, settings.http) if indeed.can_use_graphql() else None

    fetcher: JobFetcher
    if indeed.fetcher == "graphql":
        if graphql is None:
            msg = "indeed.fetcher is 'graphql' but no graphql_api_key is configured"
            raise ValueError(msg)
        fetcher = IndeedGraphQLFetcher(graphql, indeed, currency)
    else:
        if not indeed.can_use_publisher():
            msg = "indeed.fetcher is 'publisher' but no publisher_id is configured"
            raise ValueError(msg)
        fetcher = IndeedPublisherFetcher(client, indeed, settings.http)

    enricher = IndeedEnricher(
        indeed,
        IndeedSalaryApi(client, settings.http),
        IndeedDescriptionApi(client, indeed, settings.http),
        graphql=graphql,
        currency=currency,
    )
    logger.debug("Indeed provider wired with %s fetcher", indeed.fetcher)
    return Provider(fetcher=fetcher, enricher=enricher)


_BUILDERS = {
    INDEED: build_indeed,
}


def build_provider(name: str, settings: Settings, client: httpx.AsyncClient) -> Provider:
    builder = _BUILDERS.get(name)
    if builder is None:
        msg = f"No fetcher registered for provider '{name}'"
        raise UnknownProviderError(msg)
    return builder(settings, client)


def available_providers() -> list[str]:
    return sorted(_BUILDERS)
