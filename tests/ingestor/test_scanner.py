"""Tests for the chain scanner loop."""

import asyncio
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest

from polymarket_fresh_cluster.alerter.models import PipelineStats
from polymarket_fresh_cluster.detector.ledger import BetLedger
from polymarket_fresh_cluster.ingestor.models import TradeEvent
from polymarket_fresh_cluster.ingestor.processor import TradeProcessor
from polymarket_fresh_cluster.ingestor.scanner import ChainScanner
from polymarket_fresh_cluster.profiler.chain import RPCError


@pytest.fixture
def chain() -> AsyncMock:
    mock = AsyncMock()
    mock.get_block_number = AsyncMock(return_value=150)
    return mock


@pytest.fixture
def reader() -> AsyncMock:
    mock = AsyncMock()
    mock.get_order_filled_events = AsyncMock(return_value=[])
    return mock


@pytest.fixture
def processor() -> AsyncMock:
    return AsyncMock()


@pytest.fixture
def ledger() -> MagicMock:
    mock = MagicMock()
    mock.sweep_expired.return_value = 0
    return mock


@pytest.fixture
def sink() -> AsyncMock:
    return AsyncMock()


@pytest.fixture
def sleep() -> AsyncMock:
    return AsyncMock()


def make_scanner(chain, reader, processor, ledger, sink, sleep, clock, **kwargs) -> ChainScanner:
    kwargs.setdefault("chunk_size", 10)
    kwargs.setdefault("start_blocks_back", 50)
    return ChainScanner(
        chain,
        reader,
        processor,
        ledger,
        PipelineStats(),
        sink,
        sleep=sleep,
        clock=clock,
        **kwargs,
    )


class TestInitialize:
    @pytest.mark.asyncio
    async def test_cursor_starts_behind_head(
        self, chain, reader, processor, ledger, sink, sleep, clock
    ) -> None:
        scanner = make_scanner(chain, reader, processor, ledger, sink, sleep, clock)

        first_block = await scanner.initialize()

        assert scanner.cursor == 100
        assert first_block == 101

    @pytest.mark.asyncio
    async def test_cursor_clamped_at_genesis(
        self, chain, reader, processor, ledger, sink, sleep, clock
    ) -> None:
        chain.get_block_number.return_value = 20
        scanner = make_scanner(chain, reader, processor, ledger, sink, sleep, clock)

        await scanner.initialize()

        assert scanner.cursor == 0


class TestRunCycle:
    @pytest.mark.asyncio
    async def test_scans_in_chunks(
        self, chain, reader, processor, ledger, sink, sleep, clock
    ) -> None:
        scanner = make_scanner(chain, reader, processor, ledger, sink, sleep, clock)
        await scanner.initialize()
        chain.get_block_number.return_value = 125

        await scanner.run_cycle()

        ranges = [c.args for c in reader.get_order_filled_events.await_args_list]
        assert ranges == [(101, 110), (111, 120), (121, 125)]
        assert scanner.cursor == 125
        ledger.sweep_expired.assert_called_once_with(clock.now)
        sink.stats.assert_awaited_once()
        # Pause between chunks only
        assert sleep.await_count == 2

    @pytest.mark.asyncio
    async def test_cursor_resumes_across_cycles(
        self, chain, reader, processor, ledger, sink, sleep, clock
    ) -> None:
        chain.get_block_number.return_value = 99
        scanner = make_scanner(chain, reader, processor, ledger, sink, sleep, clock, start_blocks_back=0)
        await scanner.initialize()

        chain.get_block_number.return_value = 109
        await scanner.run_cycle()
        chain.get_block_number.return_value = 119
        await scanner.run_cycle()

        ranges = [c.args for c in reader.get_order_filled_events.await_args_list]
        assert ranges == [(100, 109), (110, 119)]

    @pytest.mark.asyncio
    async def test_no_new_blocks(self, chain, reader, processor, ledger, sink, sleep, clock) -> None:
        scanner = make_scanner(chain, reader, processor, ledger, sink, sleep, clock)
        await scanner.initialize()
        chain.get_block_number.return_value = 100

        processed = await scanner.run_cycle()

        assert processed == 0
        reader.get_order_filled_events.assert_not_awaited()
        sink.stats.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_processes_events_in_order(
        self, chain, reader, processor, ledger, sink, sleep, clock
    ) -> None:
        scanner = make_scanner(chain, reader, processor, ledger, sink, sleep, clock)
        await scanner.initialize()
        chain.get_block_number.return_value = 105
        reader.get_order_filled_events.return_value = ["e1", "e2"]

        processed = await scanner.run_cycle()

        assert processed == 2
        assert [c.args[0] for c in processor.process.await_args_list] == ["e1", "e2"]

    @pytest.mark.asyncio
    async def test_failed_chunk_keeps_cursor(
        self, chain, reader, processor, ledger, sink, sleep, clock
    ) -> None:
        scanner = make_scanner(chain, reader, processor, ledger, sink, sleep, clock)
        await scanner.initialize()
        chain.get_block_number.return_value = 130
        reader.get_order_filled_events.side_effect = [[], RPCError("range too large")]

        with pytest.raises(RPCError):
            await scanner.run_cycle()

        assert scanner.cursor == 110

        reader.get_order_filled_events.side_effect = None
        reader.get_order_filled_events.return_value = []
        await scanner.run_cycle()

        assert reader.get_order_filled_events.await_args_list[2].args == (111, 120)
        assert scanner.cursor == 130


class TestCursorSplits:
    """Scanning a range in one cycle or several leaves the same ledger."""

    @staticmethod
    def fills() -> list[TradeEvent]:
        events = []
        for block in range(100, 120):
            # Three wallets rotating over two outcomes, so later fills accumulate.
            events.append(
                TradeEvent(
                    order_hash="0x01",
                    maker="0x" + "f" * 40,
                    taker=f"0x{block % 3 + 1:040x}",
                    maker_asset_id="0",
                    taker_asset_id=str(1111 + block % 2),
                    maker_amount_filled=10_000_000,
                    taker_amount_filled=(block - 99) * 1_000_000,
                    fee=0,
                    transaction_hash=f"0x{block:064x}",
                    block_number=block,
                    log_index=0,
                )
            )
        return events

    async def scan(self, heads: list[int], chunk_size: int, clock) -> BetLedger:
        events = self.fills()

        async def get_order_filled_events(from_block: int, to_block: int) -> list[TradeEvent]:
            return [e for e in events if from_block <= e.block_number <= to_block]

        chain = AsyncMock()
        chain.get_block_number = AsyncMock(side_effect=[99, *heads])
        reader = AsyncMock()
        reader.get_order_filled_events = AsyncMock(side_effect=get_order_filled_events)
        classifier = AsyncMock()
        classifier.is_fresh = AsyncMock(return_value=True)
        stats = PipelineStats()
        ledger = BetLedger()
        processor = TradeProcessor(classifier, ledger, AsyncMock(), stats, clock=clock)
        scanner = ChainScanner(
            chain,
            reader,
            processor,
            ledger,
            stats,
            AsyncMock(),
            chunk_size=chunk_size,
            start_blocks_back=0,
            sleep=AsyncMock(),
            clock=clock,
        )
        await scanner.initialize()
        for _ in heads:
            await scanner.run_cycle()
        return ledger

    @staticmethod
    def contents(ledger: BetLedger) -> dict[str, list[tuple[str, str, Decimal]]]:
        return {
            outcome_id: [(b.wallet, b.tx_hash, b.amount) for b in ledger.fresh_bets(outcome_id)]
            for outcome_id in sorted(ledger.outcome_ids())
        }

    @pytest.mark.asyncio
    async def test_split_cycles_match_single_cycle(self, clock) -> None:
        split = await self.scan([109, 119], chunk_size=10, clock=clock)
        whole = await self.scan([119], chunk_size=10, clock=clock)
        small_chunks = await self.scan([119], chunk_size=3, clock=clock)

        assert self.contents(split) == self.contents(whole)
        assert self.contents(small_chunks) == self.contents(whole)
        assert sum(len(bets) for bets in self.contents(whole).values()) == 6
        assert sum(b.amount for b in whole.fresh_bets("1111")) == Decimal(sum(range(1, 21, 2)))


class TestRun:
    @pytest.mark.asyncio
    async def test_error_marks_disconnected_and_continues(
        self, chain, reader, processor, ledger, sink, clock
    ) -> None:
        stop = asyncio.Event()
        sleeps: list[float] = []

        async def fake_sleep(seconds: float) -> None:
            sleeps.append(seconds)
            if seconds == 30.0:
                stop.set()

        stats = PipelineStats()
        chain.get_block_number.side_effect = [150, RPCError("down")]
        scanner = ChainScanner(
            chain,
            reader,
            processor,
            ledger,
            stats,
            sink,
            poll_interval=30.0,
            sleep=fake_sleep,
            clock=clock,
        )
        await scanner.initialize()

        await scanner.run(stop)

        assert stats.is_connected is False
        sink.stats.assert_awaited_once()
        assert sleeps == [30.0]
        assert scanner.cursor == 100

    @pytest.mark.asyncio
    async def test_runs_until_stopped(
        self, chain, reader, processor, ledger, sink, clock
    ) -> None:
        stop = asyncio.Event()
        cycles = 0

        async def fake_sleep(seconds: float) -> None:
            nonlocal cycles
            cycles += 1
            if cycles == 3:
                stop.set()

        chain.get_block_number.return_value = 100
        scanner = ChainScanner(
            chain,
            reader,
            processor,
            ledger,
            PipelineStats(),
            sink,
            start_blocks_back=0,
            chunk_pause=0,
            sleep=fake_sleep,
            clock=clock,
        )

        await scanner.run(stop)

        assert scanner.cycles == 3
