"""Shared HTTP plumbing for provider clients: httpx clients plus tenacity retries.

Retries live here and only here. Transport errors, 429 and 5xx responses are
retried with exponential backoff; anything left after the last attempt is
raised as ProviderRequestError. Bodies that are not JSON raise
ProviderPayloadError, which is never retried.
"""

import logging
from typing import Any

import httpx
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from src.core.config import HttpConfig
from src.core.errors import ProviderPayloadError, ProviderRequestError

logger = logging.getLogger(__name__)

_RETRYABLE_STATUS = frozenset({429, 500, 502, 503, 504})

# How much of a bad payload to keep in logs and errors.
_PAYLOAD_PREVIEW = 2000


def build_client(
    config: HttpConfig,
    *,
    base_url: str = "",
    headers: dict[str, str] | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> httpx.AsyncClient:
    """Create an AsyncClient with the configured timeout and user agent."""
    merged = {"User-Agent": config.user_agent}
    merged.update(headers or {})
    return httpx.AsyncClient(
        base_url=base_url,
        headers=merged,
        timeout=config.timeout_seconds,
        follow_redirects=True,
        transport=transport,
    )


def _is_retryable(exc: BaseException) -> bool:
    if isinstance(exc, httpx.TransportError):
        return True
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code in _RETRYABLE_STATUS
    return False


async def request_json(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    *,
    provider: str,
    config: HttpConfig,
    **kwargs: Any,
) -> Any:
    """Send a request and decode the JSON body, retrying transient failures.

    Raises:
        ProviderRequestError: transport failure or error status after retries.
        ProviderPayloadError: the response body is not valid JSON.
    """
    retrying = AsyncRetrying(
        stop=stop_after_attempt(config.max_attempts),
        wait=wait_exponential(
            multiplier=1,
            min=config.backoff_min_seconds,
            max=config.backoff_max_seconds,
        ),
        retry=retry_if_exception(_is_retryable),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )

    try:
        async for attempt in retrying:
            with attempt:
                response = await client.request(method, url, **kwargs)
                response.raise_for_status()
    except httpx.HTTPStatusError as exc:
        status = exc.response.status_code
        logger.error("%s %s returned HTTP %d", method, url, status)
        msg = f"HTTP {status} from {exc.request.url}"
        raise ProviderRequestError(provider, msg, status_code=status) from exc
    except httpx.HTTPError as exc:
        logger.error("%s %s failed: %s", method, url, exc)
        msg = f"request to {url} failed: {exc}"
        raise ProviderRequestError(provider, msg) from exc

    try:
        return response.json()
    except ValueError as exc:
        preview = response.text[:_PAYLOAD_PREVIEW]
        logger.error("Invalid JSON from %s %s: %s", method, url, preview)
        msg = f"invalid JSON from {url}"
        raise ProviderPayloadError(provider, msg, payload=preview) from exc


def preview_payload(payload: Any) -> str:
    """Truncated repr of a payload for error logs."""
    return repr(payload)[:_PAYLOAD_PREVIEW]
