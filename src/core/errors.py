"""Exception hierarchy for the ingestion pipeline."""

from typing import Any


class JobHuntError(Exception):
    """Base error for the ingestion pipeline."""


class ProviderError(JobHuntError):
    """A provider call failed in a way the caller must handle."""

    def __init__(self, provider: str, message: str) -> None:
        super().__init__(f"{provider}: {message}")
        self.provider = provider


class ProviderRequestError(ProviderError):
    """Transport or HTTP failure after the client's retries were exhausted."""

    def __init__(self, provider: str, message: str, *, status_code: int | None = None) -> None:
        super().__init__(provider, message)
        self.status_code = status_code


class ProviderPayloadError(ProviderError):
    """The provider answered, but the payload was malformed or unexpected."""

    def __init__(self, provider: str, message: str, *, payload: Any = None) -> None:
        super().__init__(provider, message)
        self.payload = payload


class UnknownProviderError(JobHuntError):
    """No fetcher is registered for a Search's provider."""


class SearchNotFoundError(JobHuntError):
    """A Search id does not exist in storage."""
