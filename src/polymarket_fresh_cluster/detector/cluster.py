"""Fresh-wallet cluster detection and alert lifecycle.

An outcome moves through UNSEEN -> BELOW_THRESHOLD and, once enough fresh
wallets have bet on it inside the window, to either SUPPRESSED (market is
excluded or unknown) or ACTIVE (alert raised). Both are terminal: an
outcome is alerted at most once and active alerts only receive updates.
"""

from __future__ import annotations

import logging
from collections import deque
from collections.abc import Callable
from datetime import UTC, datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Protocol

from polymarket_fresh_cluster.alerter.formatter import build_market_url
from polymarket_fresh_cluster.alerter.models import PipelineStats
from polymarket_fresh_cluster.detector.models import AlertWallet, Bet, ClusterAlert, OutcomeState
from polymarket_fresh_cluster.ingestor.models import UNKNOWN_MARKET, UNKNOWN_OUTCOME, MarketInfo

if TYPE_CHECKING:
    from polymarket_fresh_cluster.alerter.sink import AlertSink
    from polymarket_fresh_cluster.detector.ledger import BetLedger

logger = logging.getLogger(__name__)

# Default configuration
DEFAULT_THRESHOLD = 10
DEFAULT_MAX_ALERTS = 50


class MarketResolver(Protocol):
    async def resolve(self, outcome_id: str) -> MarketInfo | None: ...

    def should_filter(self, market_info: MarketInfo | None) -> bool: ...


def _utc_now() -> datetime:
    return datetime.now(UTC)


class ClusterDetector:
    """Raises one alert per outcome when fresh wallets converge on it.

    The detector is driven by the trade processor, which calls `evaluate`
    each time a new wallet entry lands in the ledger.

    Example:
        ```python
        detector = ClusterDetector(ledger, resolver, sink, stats, threshold=10)
        if ledger.record(outcome_id, wallet, tx_hash, amount, now):
            await detector.evaluate(outcome_id)
        ```
    """

    def __init__(
        self,
        ledger: BetLedger,
        resolver: MarketResolver,
        sink: AlertSink,
        stats: PipelineStats,
        *,
        threshold: int = DEFAULT_THRESHOLD,
        alert_on_unknown_market: bool = False,
        max_alerts: int = DEFAULT_MAX_ALERTS,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        """Initialize the detector.

        Args:
            ledger: Bet ledger to read live fresh-wallet bets from.
            resolver: Market metadata lookup and content policy.
            sink: Destination for alert and stats events.
            stats: Shared pipeline counters.
            threshold: Fresh wallets on one outcome required to alert.
            alert_on_unknown_market: Alert even when metadata is unavailable.
            max_alerts: Number of most recent alerts retained.
            clock: Returns the current UTC time.
        """
        if threshold < 1:
            raise ValueError("threshold must be at least 1")
        self._ledger = ledger
        self._resolver = resolver
        self._sink = sink
        self._stats = stats
        self._threshold = threshold
        self._alert_on_unknown_market = alert_on_unknown_market
        self._clock = clock

        self._alerted: set[str] = set()
        self._suppressed: set[str] = set()
        self._active: dict[str, ClusterAlert] = {}
        self._alerts: deque[ClusterAlert] = deque(maxlen=max_alerts)

    @property
    def threshold(self) -> int:
        return self._threshold

    @property
    def alerts(self) -> list[ClusterAlert]:
        """Retained alerts, newest first."""
        return list(self._alerts)

    @property
    def alerted_outcomes(self) -> frozenset[str]:
        """Outcomes that crossed the threshold, suppressed ones included."""
        return frozenset(self._alerted)

    def is_suppressed(self, outcome_id: str) -> bool:
        return outcome_id in self._suppressed

    def state(self, outcome_id: str) -> OutcomeState:
        if outcome_id in self._suppressed:
            return OutcomeState.SUPPRESSED
        if outcome_id in self._alerted:
            return OutcomeState.ACTIVE
        if outcome_id in self._ledger:
            return OutcomeState.BELOW_THRESHOLD
        return OutcomeState.UNSEEN

    async def evaluate(self, outcome_id: str) -> None:
        """Re-check an outcome after a new fresh wallet bet on it."""
        if outcome_id in self._suppressed:
            return

        now = self._clock()
        bets = self._ledger.fresh_bets(outcome_id, now)

        if outcome_id in self._alerted:
            alert = self._active.get(outcome_id)
            if alert is None or not bets:
                return
            alert.fresh_wallets = len(bets)
            alert.total_amount = sum((b.amount for b in bets), Decimal(0))
            alert.latest_bet = bets[-1].timestamp
            await self._sink.alert_update(alert)
            return

        if len(bets) < self._threshold:
            return

        # Claim the outcome before awaiting so it transitions exactly once.
        self._alerted.add(outcome_id)
        market_info = await self._resolver.resolve(outcome_id)

        if self._resolver.should_filter(market_info):
            self._suppressed.add(outcome_id)
            logger.info(
                "Suppressing outcome %s (filtered market: %s)",
                outcome_id,
                market_info.question if market_info else None,
            )
            return

        if (market_info is None or market_info.is_unknown) and not self._alert_on_unknown_market:
            self._suppressed.add(outcome_id)
            logger.info("Suppressing outcome %s (unknown market)", outcome_id)
            return

        alert = self._build_alert(outcome_id, market_info, bets)
        self._stats.alerts_triggered += 1
        self._retain(alert)
        logger.info(
            "Cluster alert: outcome=%s wallets=%d total=%s",
            outcome_id,
            alert.fresh_wallets,
            alert.total_amount,
        )
        await self._sink.new_alert(alert)
        await self._sink.stats(self._stats)

    def _build_alert(
        self,
        outcome_id: str,
        market_info: MarketInfo | None,
        bets: list[Bet],
    ) -> ClusterAlert:
        return ClusterAlert(
            outcome_id=outcome_id,
            question=market_info.question if market_info else UNKNOWN_MARKET,
            outcome=market_info.outcome if market_info else UNKNOWN_OUTCOME,
            price=market_info.price if market_info else None,
            slug=market_info.slug if market_info else None,
            image=market_info.image if market_info else None,
            condition_id=market_info.condition_id if market_info else None,
            market_url=build_market_url(market_info),
            fresh_wallets=len(bets),
            total_amount=sum((b.amount for b in bets), Decimal(0)),
            first_bet=bets[0].timestamp,
            latest_bet=bets[-1].timestamp,
            sample_tx=bets[0].tx_hash,
            wallets=tuple(AlertWallet.from_bet(b) for b in bets),
            created_at=self._clock(),
        )

    def _retain(self, alert: ClusterAlert) -> None:
        if len(self._alerts) == self._alerts.maxlen:
            evicted = self._alerts.pop()
            self._active.pop(evicted.outcome_id, None)
        self._alerts.appendleft(alert)
        self._active[alert.outcome_id] = alert
