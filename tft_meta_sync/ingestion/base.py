"""
Provider client contract.

A ``ProviderClient`` turns ``fetch(domain, patch)`` into
``GET {base_url}/{endpoint}?patch=...&apiKey=...``, paced by its own
``RateLimitedQueue`` and retried through ``retry.retry_async``.  Every failure
mode (transport error, non-2xx, unreadable body) ends up as
``FetchResult(success=False)``; ``fetch`` itself does not raise ``FetchError``.

The body of a successful response is wrapped in a ``RawPayload`` tagged with
the provider's ``source`` so the normalizer can pick the matching raw-shape
mapper.  Nothing outside ``tft_meta_sync.normalization`` looks inside
``RawPayload.body``.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, ClassVar, Optional

import httpx

from tft_meta_sync.config import ProviderConfig
from tft_meta_sync.errors import FetchError, NetworkError, ProviderError
from tft_meta_sync.ingestion.rate_limiter import RateLimitedQueue
from tft_meta_sync.ingestion.retry import retry_async
from tft_meta_sync.models.domain import Domain

logger = logging.getLogger(__name__)

_ERROR_BODY_PREVIEW = 200


# ── Result types ───────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class RawPayload:
    """Undecoded provider response for one domain.

    Attributes:
        source: Provider id; selects the raw-shape mapper.
        domain: Domain that was requested.
        body: Decoded JSON object exactly as the provider sent it.
        patch: Patch reported in the body, else the patch that was requested.
    """

    source: str
    domain: Domain
    body: dict[str, Any]
    patch: Optional[str] = None


@dataclass(frozen=True)
class FetchResult:
    """Outcome of ``ProviderClient.fetch``.

    Attributes:
        success: ``True`` when ``payload`` holds a decoded response.
        source: Provider id.
        domain: Requested domain.
        payload: Set on success.
        error: Last ``FetchError`` after retries were exhausted.
        status: HTTP status of the last response; ``None`` when the last
            attempt never got a response.
        attempts: Number of HTTP attempts made.
    """

    success: bool
    source: str
    domain: Domain
    payload: Optional[RawPayload] = None
    error: Optional[FetchError] = None
    status: Optional[int] = None
    attempts: int = 0


# ── Client ─────────────────────────────────────────────────────────────────────


class ProviderClient(ABC):
    """Base class for one upstream metagame provider.

    Subclasses set ``source`` and, when the provider names its routes
    differently, ``ENDPOINTS``.  Tests inject ``transport``
    (``httpx.MockTransport``) and ``sleep``.

    Args:
        config: Provider section from ``AppConfig.providers``.
        api_key: Overrides ``config.resolve_api_key()``.
        http_client: Pre-built ``httpx.AsyncClient``; not closed by ``aclose``.
        transport: Transport for the internally built client.
        queue: Pre-built queue; default is one queue per client.
        sleep: Awaitable sleep used for backoff delays.
    """

    source: ClassVar[str]
    payload_type: ClassVar[type[RawPayload]] = RawPayload
    ENDPOINTS: ClassVar[dict[Domain, str]] = {
        Domain.TEAM_COMPS: "comps",
        Domain.ITEMS: "items",
        Domain.AUGMENTS: "augments",
    }

    def __init__(
        self,
        config: ProviderConfig,
        api_key: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        queue: Optional[RateLimitedQueue] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.config = config
        self._api_key = api_key if api_key is not None else config.resolve_api_key()
        self._owns_http = http_client is None
        self._http = http_client or httpx.AsyncClient(
            base_url=config.base_url,
            timeout=config.timeout_seconds,
            transport=transport,
            headers={"Accept": "application/json", "User-Agent": "tft-meta-sync/0.1"},
        )
        self.queue = queue or RateLimitedQueue(config.requests_per_minute, name=self.source)
        self._sleep = sleep

    # ── Lifecycle ─────────────────────────────────────────────────────────────

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()

    async def __aenter__(self) -> "ProviderClient":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    # ── Request building ──────────────────────────────────────────────────────

    def endpoint_for(self, domain: Domain) -> str:
        return "/" + self.ENDPOINTS[Domain(domain)]

    def build_params(self, patch: Optional[str] = None) -> dict[str, str]:
        params: dict[str, str] = {}
        if patch:
            params["patch"] = patch
        if self._api_key:
            params["apiKey"] = self._api_key
        return params

    # ── Fetch ─────────────────────────────────────────────────────────────────

    async def fetch(self, domain: Domain, patch: Optional[str] = None) -> FetchResult:
        """Fetch one domain, retrying transient failures.

        Returns:
            ``FetchResult``; never raises ``FetchError``.
        """
        domain = Domain(domain)
        attempts = 0

        async def _attempt() -> tuple[RawPayload, int]:
            nonlocal attempts
            attempts += 1
            return await self.queue.enqueue(lambda: self._request(domain, patch))

        try:
            payload, status = await retry_async(
                _attempt,
                max_retries=self.config.max_retries,
                retry_delay_seconds=self.config.retry_delay_ms / 1000,
                sleep=self._sleep,
            )
        except FetchError as exc:
            logger.warning(
                "%s %s fetch failed after %d attempt(s): %s",
                self.source, domain, attempts, exc,
                extra={"source": self.source, "domain": domain.value},
            )
            return FetchResult(
                success=False,
                source=self.source,
                domain=domain,
                error=exc,
                status=exc.status,
                attempts=attempts,
            )

        logger.info(
            "%s %s fetched (patch=%s, HTTP %d)",
            self.source, domain, payload.patch, status,
            extra={"source": self.source, "domain": domain.value},
        )
        return FetchResult(
            success=True,
            source=self.source,
            domain=domain,
            payload=payload,
            status=status,
            attempts=attempts,
        )

    async def _request(self, domain: Domain, patch: Optional[str]) -> tuple[RawPayload, int]:
        """Issue one HTTP request.  Raises ``FetchError`` subclasses."""
        path = self.endpoint_for(domain)
        try:
            response = await self._http.get(path, params=self.build_params(patch))
        except httpx.TransportError as exc:
            raise NetworkError(
                f"{self.source} {path}: {type(exc).__name__}: {exc}", source=self.source
            ) from exc
        except httpx.HTTPError as exc:
            # DecodingError, TooManyRedirects: a response came back but is unusable.
            raise ProviderError(
                f"{self.source} {path}: {type(exc).__name__}: {exc}", source=self.source
            ) from exc

        status = response.status_code
        if not response.is_success:
            raise ProviderError(
                f"{self.source} {path} returned HTTP {status}: "
                f"{response.text[:_ERROR_BODY_PREVIEW]}",
                source=self.source,
                status=status,
            )

        try:
            body = response.json()
        except ValueError as exc:
            raise ProviderError(
                f"{self.source} {path} returned an undecodable body", source=self.source, status=status
            ) from exc
        if not isinstance(body, dict):
            raise ProviderError(
                f"{self.source} {path} returned {type(body).__name__}, expected a JSON object",
                source=self.source,
                status=status,
            )

        return self.wrap(domain, body, patch), status

    def wrap(self, domain: Domain, body: dict[str, Any], requested_patch: Optional[str]) -> RawPayload:
        """Tag a decoded body as this provider's payload."""
        reported = body.get("patch")
        return self.payload_type(
            source=self.source,
            domain=domain,
            body=body,
            patch=str(reported) if reported is not None else requested_patch,
        )
