"""Turns decoded OrderFilled events into fresh-wallet ledger entries."""

from __future__ import annotations

import logging
from collections import OrderedDict
from collections.abc import Callable
from datetime import UTC, datetime
from decimal import Decimal
from typing import TYPE_CHECKING

from polymarket_fresh_cluster.ingestor.models import (
    COLLATERAL_ASSET_ID,
    ZERO_ADDRESS,
    TradeEvent,
    TradeParticipant,
)

if TYPE_CHECKING:
    from polymarket_fresh_cluster.alerter.models import PipelineStats
    from polymarket_fresh_cluster.detector.cluster import ClusterDetector
    from polymarket_fresh_cluster.detector.ledger import BetLedger
    from polymarket_fresh_cluster.profiler.freshness import WalletFreshnessClassifier

logger = logging.getLogger(__name__)

DEFAULT_MAX_SEEN_EVENTS = 50_000


def _utc_now() -> datetime:
    return datetime.now(UTC)


class TradeProcessor:
    """Classifies each side of a fill and feeds fresh wallets to the ledger.

    Maker and taker are evaluated independently, each against the asset id
    on their side of the fill. Events are processed one at a time; a log seen
    before (e.g. a chunk retried after a failure) is ignored so amounts are
    never counted twice.
    """

    def __init__(
        self,
        classifier: WalletFreshnessClassifier,
        ledger: BetLedger,
        detector: ClusterDetector,
        stats: PipelineStats,
        *,
        min_bet_amount: Decimal = Decimal(0),
        decimals: int = 6,
        clock: Callable[[], datetime] = _utc_now,
        max_seen_events: int = DEFAULT_MAX_SEEN_EVENTS,
    ) -> None:
        self._classifier = classifier
        self._ledger = ledger
        self._detector = detector
        self._stats = stats
        self._min_bet_amount = min_bet_amount
        self._decimals = decimals
        self._clock = clock
        self._max_seen_events = max_seen_events
        self._seen: OrderedDict[tuple[str, int], None] = OrderedDict()

    async def process(self, event: TradeEvent) -> None:
        """Process one OrderFilled event."""
        key = event.event_key
        if key in self._seen:
            logger.debug("Skipping already processed log %s:%d", *key)
            return
        self._remember(key)
        self._stats.total_trades += 1

        for participant in event.participants(decimals=self._decimals):
            await self._process_participant(participant, event)

    async def _process_participant(self, participant: TradeParticipant, event: TradeEvent) -> None:
        if participant.wallet.lower() == ZERO_ADDRESS:
            return
        if participant.outcome_id == COLLATERAL_ASSET_ID:
            return
        # Checked before the freshness lookup.
        if participant.amount < self._min_bet_amount:
            return

        if not await self._classifier.is_fresh(participant.wallet):
            return

        self._stats.fresh_wallets_detected += 1
        is_new = self._ledger.record(
            participant.outcome_id,
            participant.wallet,
            event.transaction_hash,
            participant.amount,
            self._clock(),
        )
        logger.debug(
            "Fresh wallet %s bet %s on %s (new=%s)",
            participant.wallet,
            participant.amount,
            participant.outcome_id,
            is_new,
        )
        if is_new:
            await self._detector.evaluate(participant.outcome_id)

    def _remember(self, key: tuple[str, int]) -> None:
        self._seen[key] = None
        while len(self._seen) > self._max_seen_events:
            self._seen.popitem(last=False)
