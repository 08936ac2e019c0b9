"""Market metadata resolver backed by the Polymarket Gamma API.

Resolves an outcome (CLOB token) id to the market it belongs to, with a
cache-first lookup. Market metadata for a token is treated as immutable
once fetched, so successful lookups are cached for the process lifetime.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import httpx

from polymarket_fresh_cluster.ingestor.market_filter import should_filter_market
from polymarket_fresh_cluster.ingestor.models import MarketInfo

logger = logging.getLogger(__name__)

# Default configuration
DEFAULT_GAMMA_API_URL = "https://gamma-api.polymarket.com"
DEFAULT_TIMEOUT_SECONDS = 15.0
DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_BASE_DELAY = 1.0
RETRY_STATUS_CODES = (429, 500, 502, 503, 504)
USER_AGENT = "polymarket-fresh-cluster/0.1"


class MarketMetadataError(Exception):
    """Raised internally when metadata cannot be fetched."""


class MarketMetadataResolver:
    """Cache-first Gamma API lookups keyed by outcome token id.

    `resolve` never raises; None means "metadata unavailable".

    Example:
        ```python
        async with MarketMetadataResolver() as resolver:
            info = await resolver.resolve("71321045679252212594626385532706912750332728571942532289631379312455583992563")
            if info is not None and not resolver.should_filter(info):
                print(info.question, info.outcome)
        ```
    """

    def __init__(
        self,
        *,
        base_url: str = DEFAULT_GAMMA_API_URL,
        client: httpx.AsyncClient | None = None,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_base_delay: float = DEFAULT_RETRY_BASE_DELAY,
    ) -> None:
        """Initialize the resolver.

        Args:
            base_url: Gamma API host.
            client: Optional preconfigured httpx client (owned by the caller).
            timeout_seconds: Per-request timeout when creating our own client.
            max_retries: Attempts per lookup on transient failures.
            retry_base_delay: Initial backoff delay, doubled per attempt.
        """
        self._base_url = base_url.rstrip("/")
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout_seconds),
            follow_redirects=True,
            headers={"User-Agent": USER_AGENT},
        )
        self._max_retries = max_retries
        self._retry_base_delay = retry_base_delay
        self._cache: dict[str, MarketInfo] = {}

    @property
    def cache_size(self) -> int:
        return len(self._cache)

    def cached(self, outcome_id: str) -> MarketInfo | None:
        return self._cache.get(outcome_id)

    def should_filter(self, market_info: MarketInfo | None) -> bool:
        """Return True if the market is excluded by content policy."""
        return should_filter_market(market_info)

    async def resolve(self, outcome_id: str) -> MarketInfo | None:
        """Resolve an outcome id to its market metadata.

        Args:
            outcome_id: CLOB token id (decimal string).

        Returns:
            MarketInfo, or None if the API is unreachable or has no row.
        """
        cached = self._cache.get(outcome_id)
        if cached is not None:
            return cached

        try:
            rows = await self._fetch_markets(outcome_id)
        except MarketMetadataError as e:
            logger.warning("Error fetching market info for %s: %s", outcome_id, e)
            return None

        if not rows:
            logger.info("No market found for outcome %s", outcome_id)
            return None

        market = rows[0]
        if not isinstance(market, dict):
            logger.warning("Unexpected market row for %s: %r", outcome_id, market)
            return None

        info = MarketInfo.from_gamma_market(market, outcome_id)
        self._cache[outcome_id] = info
        return info

    async def _fetch_markets(self, outcome_id: str) -> list[Any]:
        url = f"{self._base_url}/markets"
        params = {"clob_token_ids": outcome_id}
        delay = self._retry_base_delay
        last_error: Exception | None = None

        for attempt in range(self._max_retries):
            try:
                response = await self._client.get(url, params=params)
                if response.status_code in RETRY_STATUS_CODES:
                    raise httpx.HTTPStatusError(
                        f"Retryable status {response.status_code}",
                        request=response.request,
                        response=response,
                    )
                response.raise_for_status()
                data = response.json()
            except (httpx.TimeoutException, httpx.NetworkError, httpx.RemoteProtocolError) as e:
                last_error = e
            except httpx.HTTPStatusError as e:
                if e.response.status_code not in RETRY_STATUS_CODES:
                    raise MarketMetadataError(f"HTTP {e.response.status_code} from {url}") from e
                last_error = e
            except httpx.HTTPError as e:
                raise MarketMetadataError(f"Request to {url} failed: {e}") from e
            except ValueError as e:
                raise MarketMetadataError(f"Invalid JSON from {url}") from e
            else:
                if not isinstance(data, list):
                    raise MarketMetadataError(f"Expected a list from {url}, got {type(data).__name__}")
                return data

            if attempt < self._max_retries - 1:
                logger.warning(
                    "Gamma request for %s failed (attempt %d/%d): %s. Retrying in %.1f seconds...",
                    outcome_id,
                    attempt + 1,
                    self._max_retries,
                    last_error,
                    delay,
                )
                await asyncio.sleep(delay)
                delay *= 2

        raise MarketMetadataError(
            f"All {self._max_retries} attempts failed for {outcome_id}: {last_error}"
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> MarketMetadataResolver:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.aclose()
