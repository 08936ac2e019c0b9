"""Data models for the profiler module."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta


@dataclass(frozen=True)
class WalletFreshnessRecord:
    """Cached freshness verdict for a single wallet.

    Attributes:
        address: Lowercased wallet address.
        is_fresh: Whether the wallet was fresh when checked.
        checked_at: When the transaction count was read (UTC).
        transaction_count: Nonce observed at check time.
    """

    address: str
    is_fresh: bool
    checked_at: datetime
    transaction_count: int

    def is_stale(self, now: datetime, ttl: timedelta) -> bool:
        """Return True if the record is at or past its TTL."""
        return now - self.checked_at >= ttl
