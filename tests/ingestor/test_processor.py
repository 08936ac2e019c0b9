"""Tests for the trade processor."""

from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from polymarket_fresh_cluster.alerter.models import PipelineStats
from polymarket_fresh_cluster.detector.ledger import BetLedger
from polymarket_fresh_cluster.ingestor.models import ZERO_ADDRESS, TradeEvent
from polymarket_fresh_cluster.ingestor.processor import TradeProcessor

OUTCOME = "1111"
TAKER = "0x1111111111111111111111111111111111111111"
MAKER = "0x2222222222222222222222222222222222222222"


def make_event(
    *,
    maker: str = MAKER,
    taker: str = TAKER,
    maker_asset_id: str = "0",
    taker_asset_id: str = OUTCOME,
    maker_amount: int = 50_000_000,
    taker_amount: int = 100_000_000,
    tx_hash: str = "0xaaa",
    log_index: int = 0,
) -> TradeEvent:
    return TradeEvent(
        order_hash="0x01",
        maker=maker,
        taker=taker,
        maker_asset_id=maker_asset_id,
        taker_asset_id=taker_asset_id,
        maker_amount_filled=maker_amount,
        taker_amount_filled=taker_amount,
        fee=0,
        transaction_hash=tx_hash,
        block_number=100,
        log_index=log_index,
    )


@pytest.fixture
def classifier() -> AsyncMock:
    mock = AsyncMock()
    mock.is_fresh = AsyncMock(return_value=True)
    return mock


@pytest.fixture
def detector() -> AsyncMock:
    return AsyncMock()


@pytest.fixture
def stats() -> PipelineStats:
    return PipelineStats()


@pytest.fixture
def ledger() -> BetLedger:
    return BetLedger()


@pytest.fixture
def processor(classifier, ledger, detector, stats, clock) -> TradeProcessor:
    return TradeProcessor(classifier, ledger, detector, stats, clock=clock)


class TestProcess:
    @pytest.mark.asyncio
    async def test_records_fresh_taker(
        self, processor: TradeProcessor, ledger: BetLedger, detector: AsyncMock, stats: PipelineStats
    ) -> None:
        await processor.process(make_event())

        bets = ledger.fresh_bets(OUTCOME)
        assert [b.wallet for b in bets] == [TAKER]
        assert bets[0].amount == Decimal("100")
        assert bets[0].tx_hash == "0xaaa"
        detector.evaluate.assert_awaited_once_with(OUTCOME)
        assert stats.total_trades == 1
        assert stats.fresh_wallets_detected == 1

    @pytest.mark.asyncio
    async def test_collateral_side_is_ignored(
        self, processor: TradeProcessor, classifier: AsyncMock
    ) -> None:
        await processor.process(make_event())

        classifier.is_fresh.assert_awaited_once_with(TAKER)

    @pytest.mark.asyncio
    async def test_both_sides_evaluated_for_token_swaps(
        self, processor: TradeProcessor, ledger: BetLedger
    ) -> None:
        await processor.process(make_event(maker_asset_id="2222", taker_asset_id=OUTCOME))

        assert len(ledger.fresh_bets(OUTCOME)) == 1
        assert len(ledger.fresh_bets("2222")) == 1

    @pytest.mark.asyncio
    async def test_non_fresh_wallet_dropped(
        self,
        processor: TradeProcessor,
        classifier: AsyncMock,
        ledger: BetLedger,
        detector: AsyncMock,
        stats: PipelineStats,
    ) -> None:
        classifier.is_fresh.return_value = False

        await processor.process(make_event())

        assert OUTCOME not in ledger
        detector.evaluate.assert_not_awaited()
        assert stats.total_trades == 1
        assert stats.fresh_wallets_detected == 0

    @pytest.mark.asyncio
    async def test_zero_address_skipped(
        self, processor: TradeProcessor, classifier: AsyncMock
    ) -> None:
        await processor.process(make_event(taker=ZERO_ADDRESS))

        classifier.is_fresh.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_min_bet_checked_before_freshness(
        self, classifier, ledger, detector, stats, clock
    ) -> None:
        processor = TradeProcessor(
            classifier, ledger, detector, stats, min_bet_amount=Decimal("500"), clock=clock
        )

        await processor.process(make_event(taker_amount=100_000_000))

        classifier.is_fresh.assert_not_awaited()
        assert OUTCOME not in ledger

    @pytest.mark.asyncio
    async def test_repeat_bet_accumulates_without_reevaluation(
        self, processor: TradeProcessor, ledger: BetLedger, detector: AsyncMock
    ) -> None:
        await processor.process(make_event(tx_hash="0x1", taker_amount=100_000_000))
        await processor.process(make_event(tx_hash="0x2", taker_amount=200_000_000))

        bets = ledger.fresh_bets(OUTCOME)
        assert len(bets) == 1
        assert bets[0].amount == Decimal("300.00")
        assert bets[0].tx_hash == "0x1"
        assert detector.evaluate.await_count == 1

    @pytest.mark.asyncio
    async def test_duplicate_log_not_counted_twice(
        self, processor: TradeProcessor, ledger: BetLedger, stats: PipelineStats
    ) -> None:
        event = make_event()

        await processor.process(event)
        await processor.process(event)

        assert ledger.fresh_bets(OUTCOME)[0].amount == Decimal("100")
        assert stats.total_trades == 1
        assert stats.fresh_wallets_detected == 1
