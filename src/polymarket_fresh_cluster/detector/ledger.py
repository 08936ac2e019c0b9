"""Time-windowed ledger of fresh-wallet bets per outcome."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from datetime import datetime, timedelta
from decimal import Decimal

from polymarket_fresh_cluster.detector.models import Bet

logger = logging.getLogger(__name__)

DEFAULT_WINDOW = timedelta(hours=24)


class BetLedger:
    """Per-outcome, arrival-ordered collections of fresh-wallet bets.

    Only fresh wallets are recorded; freshness is decided upstream. A wallet
    holds at most one live entry per outcome. An entry is live while
    `now - timestamp < window`.

    Example:
        ```python
        ledger = BetLedger(window=timedelta(hours=24))
        if ledger.record("123", "0xabc...", "0xtx...", Decimal("50"), now):
            ...  # first live bet from this wallet on outcome "123"
        ledger.sweep_expired(now)
        ```
    """

    def __init__(self, *, window: timedelta = DEFAULT_WINDOW) -> None:
        if window <= timedelta(0):
            raise ValueError("window must be positive")
        self._window = window
        self._buckets: dict[str, list[Bet]] = {}

    @property
    def window(self) -> timedelta:
        return self._window

    def __len__(self) -> int:
        return len(self._buckets)

    def __contains__(self, outcome_id: object) -> bool:
        return outcome_id in self._buckets

    def outcome_ids(self) -> Iterator[str]:
        return iter(list(self._buckets))

    def _is_live(self, bet: Bet, now: datetime) -> bool:
        return bet.timestamp > now - self._window

    def record(
        self,
        outcome_id: str,
        wallet: str,
        tx_hash: str,
        amount: Decimal,
        timestamp: datetime,
    ) -> bool:
        """Record a fresh-wallet bet.

        Args:
            outcome_id: Outcome token id.
            wallet: Wallet address (compared case-insensitively).
            tx_hash: Transaction of the bet.
            amount: Bet amount in USDC.
            timestamp: When the bet was observed.

        Returns:
            True if this created the wallet's live entry on the outcome,
            False if it only added to an existing entry.
        """
        bucket = self._buckets.setdefault(outcome_id, [])
        bucket[:] = [b for b in bucket if self._is_live(b, timestamp)]

        key = wallet.lower()
        for bet in bucket:
            if bet.wallet.lower() == key:
                bet.amount += amount
                return False

        bucket.append(Bet(wallet=wallet, timestamp=timestamp, tx_hash=tx_hash, amount=amount))
        return True

    def fresh_bets(self, outcome_id: str, now: datetime | None = None) -> list[Bet]:
        """Return the live bets for an outcome in arrival order.

        When `now` is given, entries that have aged out are excluded.
        """
        bucket = self._buckets.get(outcome_id, [])
        if now is None:
            return list(bucket)
        return [b for b in bucket if self._is_live(b, now)]

    def sweep_expired(self, now: datetime) -> int:
        """Drop bets with `timestamp <= now - window` and empty outcomes.

        Returns:
            Number of bets removed.
        """
        removed = 0
        for outcome_id in list(self._buckets):
            bucket = self._buckets[outcome_id]
            live = [b for b in bucket if self._is_live(b, now)]
            removed += len(bucket) - len(live)
            if live:
                self._buckets[outcome_id] = live
            else:
                del self._buckets[outcome_id]
        if removed:
            logger.debug("Swept %d expired bets, %d outcomes remain", removed, len(self._buckets))
        return removed
