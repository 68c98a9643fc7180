"""Abstract base classes for provider fetchers and enrichment services."""

import asyncio
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator

from src.core.schemas import CanonicalJobResult, Search


def is_cancelled(cancel: asyncio.Event | None) -> bool:
    """Poll a cooperative cancellation signal."""
    return cancel is not None and cancel.is_set()


class JobFetcher(ABC):
    """Paginates one provider's search endpoint.

    ``fetch_pages`` is an async generator of pages, newest results first. It
    ends normally once the provider has no more pages, and raises
    ProviderError on any transport or payload failure. Callers stop early
    simply by not asking for the next page.
    """

    @property
    @abstractmethod
    def provider_id(self) -> str:
        """Unique identifier for this provider (e.g. 'indeed')."""

    @abstractmethod
    def fetch_pages(
        self,
        search: Search,
        cancel: asyncio.Event | None = None,
    ) -> AsyncIterator[list[CanonicalJobResult]]:
        """Yield pages of canonical results for a saved search."""


class Enricher(ABC):
    """Fills in descriptions and salaries the search endpoint left out."""

    @abstractmethod
    async def enrich(
        self,
        search: Search,
        results: list[CanonicalJobResult],
        cancel: asyncio.Event | None = None,
    ) -> bool:
        """Enrich results in place.

        Returns False if a reportable error occurred. Results that could not
        be enriched keep their empty fields.
        """
