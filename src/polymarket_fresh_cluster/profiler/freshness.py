"""Wallet freshness classification.

A wallet is "fresh" when it has sent almost no transactions: the count
allows for the trade being observed plus one nonce increment racing it.
Verdicts are cached in memory for a bounded TTL and re-derived once stale.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Protocol

from polymarket_fresh_cluster.profiler.models import WalletFreshnessRecord

logger = logging.getLogger(__name__)

# Default configuration
DEFAULT_MAX_NONCE = 2
DEFAULT_CACHE_TTL = timedelta(hours=1)
DEFAULT_MAX_CACHE_ENTRIES = 100_000

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(UTC)


class TransactionCountSource(Protocol):
    async def get_transaction_count_latest(self, address: str) -> int: ...


class WalletFreshnessClassifier:
    """Decides whether a wallet is fresh, with a time-bounded cache.

    The classifier never raises: lookup failures classify the wallet as
    not fresh so a flaky RPC cannot stall trade processing.

    Example:
        ```python
        classifier = WalletFreshnessClassifier(polygon_client)
        if await classifier.is_fresh("0xabc..."):
            ...
        ```
    """

    def __init__(
        self,
        source: TransactionCountSource,
        *,
        max_nonce: int = DEFAULT_MAX_NONCE,
        cache_ttl: timedelta = DEFAULT_CACHE_TTL,
        max_cache_entries: int = DEFAULT_MAX_CACHE_ENTRIES,
        clock: Clock = utc_now,
    ) -> None:
        """Initialize the classifier.

        Args:
            source: Anything exposing `get_transaction_count_latest`.
            max_nonce: Highest transaction count still considered fresh.
            cache_ttl: How long a verdict is trusted.
            max_cache_entries: Cache size bound.
            clock: Returns the current UTC time.
        """
        self._source = source
        self._max_nonce = max_nonce
        self._cache_ttl = cache_ttl
        self._max_cache_entries = max_cache_entries
        self._clock = clock
        self._cache: dict[str, WalletFreshnessRecord] = {}

    @property
    def cache_size(self) -> int:
        return len(self._cache)

    def cached(self, address: str) -> WalletFreshnessRecord | None:
        """Return the cached record for an address, stale or not."""
        return self._cache.get(address.lower())

    async def is_fresh(self, address: str) -> bool:
        """Classify a wallet, consulting the cache first.

        Args:
            address: Wallet address in any case.

        Returns:
            True if the wallet's transaction count is at most max_nonce.
        """
        key = address.lower()
        now = self._clock()

        record = self._cache.get(key)
        if record is not None and not record.is_stale(now, self._cache_ttl):
            return record.is_fresh

        try:
            tx_count = await self._source.get_transaction_count_latest(address)
        except Exception as e:
            logger.warning("Error checking wallet %s: %s", address, e)
            return False

        is_fresh = tx_count <= self._max_nonce
        self._store(
            WalletFreshnessRecord(
                address=key,
                is_fresh=is_fresh,
                checked_at=self._clock(),
                transaction_count=tx_count,
            )
        )
        logger.debug("Wallet %s tx_count=%d fresh=%s", key, tx_count, is_fresh)
        return is_fresh

    def _store(self, record: WalletFreshnessRecord) -> None:
        # Re-insert so dict order tracks recency of the check.
        self._cache.pop(record.address, None)
        self._cache[record.address] = record
        if len(self._cache) > self._max_cache_entries:
            self._evict(record.checked_at)

    def _evict(self, now: datetime) -> None:
        # Dict order follows checked_at, so stale records sit at the front.
        while self._cache:
            oldest = next(iter(self._cache))
            over_limit = len(self._cache) > self._max_cache_entries
            if not over_limit and not self._cache[oldest].is_stale(now, self._cache_ttl):
                break
            del self._cache[oldest]
