"""Polling block scanner for exchange OrderFilled events.

Each cycle reads the chain head and walks the unscanned range in fixed-size
chunks (RPC providers cap `eth_getLogs` ranges). The cursor only moves past
a chunk once every event in it has been processed, so a failed cycle
resumes from the first unfinished chunk.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from polymarket_fresh_cluster.profiler.chain import RETRYABLE_ERRORS, PolygonClientError

if TYPE_CHECKING:
    from polymarket_fresh_cluster.alerter.models import PipelineStats
    from polymarket_fresh_cluster.alerter.sink import AlertSink
    from polymarket_fresh_cluster.detector.ledger import BetLedger
    from polymarket_fresh_cluster.ingestor.exchange import ExchangeLogReader
    from polymarket_fresh_cluster.ingestor.processor import TradeProcessor
    from polymarket_fresh_cluster.profiler.chain import PolygonClient

logger = logging.getLogger(__name__)

# Default configuration
DEFAULT_CHUNK_SIZE = 10
DEFAULT_START_BLOCKS_BACK = 50
DEFAULT_POLL_INTERVAL = 30.0  # seconds
DEFAULT_CHUNK_PAUSE = 0.1  # seconds

SCAN_ERRORS: tuple[type[BaseException], ...] = (PolygonClientError, *RETRYABLE_ERRORS)

Sleep = Callable[[float], Awaitable[None]]


def _utc_now() -> datetime:
    return datetime.now(UTC)


class ChainScanner:
    """Drives the ingestion loop from chain head to trade processor.

    Example:
        ```python
        scanner = ChainScanner(polygon, reader, processor, ledger, stats, sink)
        await scanner.initialize()
        await scanner.run(stop_event)
        ```
    """

    def __init__(
        self,
        chain: PolygonClient,
        reader: ExchangeLogReader,
        processor: TradeProcessor,
        ledger: BetLedger,
        stats: PipelineStats,
        sink: AlertSink,
        *,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        start_blocks_back: int = DEFAULT_START_BLOCKS_BACK,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        chunk_pause: float = DEFAULT_CHUNK_PAUSE,
        sleep: Sleep = asyncio.sleep,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        """Initialize the scanner.

        Args:
            chain: Source of the chain head.
            reader: OrderFilled log reader.
            processor: Consumer of decoded events.
            ledger: Bet ledger swept at the end of each cycle.
            stats: Shared pipeline counters.
            sink: Receives a stats snapshot after every cycle.
            chunk_size: Blocks per log query.
            start_blocks_back: Blocks behind the head to backfill at startup.
            poll_interval: Seconds between cycles.
            chunk_pause: Seconds between chunk queries.
            sleep: Awaitable sleep (injectable for tests).
            clock: Returns the current UTC time.
        """
        if chunk_size < 1:
            raise ValueError("chunk_size must be at least 1")
        self._chain = chain
        self._reader = reader
        self._processor = processor
        self._ledger = ledger
        self._stats = stats
        self._sink = sink
        self._chunk_size = chunk_size
        self._start_blocks_back = start_blocks_back
        self._poll_interval = poll_interval
        self._chunk_pause = chunk_pause
        self._sleep = sleep
        self._clock = clock

        self._cursor: int | None = None
        self._cycles = 0

    @property
    def cursor(self) -> int | None:
        """Last fully processed block, None before initialization."""
        return self._cursor

    @property
    def cycles(self) -> int:
        return self._cycles

    async def initialize(self) -> int:
        """Place the cursor `start_blocks_back` blocks behind the head.

        Returns:
            The first block that will be scanned.
        """
        head = await self._chain.get_block_number()
        self._cursor = max(0, head - self._start_blocks_back)
        self._stats.last_block = head
        self._stats.is_connected = True
        logger.info("Starting scan from block %d (head=%d)", self._cursor + 1, head)
        return self._cursor + 1

    async def run_cycle(self) -> int:
        """Scan from the cursor up to the current head.

        Returns:
            Number of events processed.

        Raises:
            PolygonClientError: If the chain cannot be read; the cursor
                stays at the last completed chunk.
        """
        cursor = self._cursor
        if cursor is None:
            cursor = await self.initialize() - 1

        head = await self._chain.get_block_number()
        self._stats.last_block = head
        self._stats.is_connected = True

        processed = 0
        while cursor < head:
            from_block = cursor + 1
            to_block = min(from_block + self._chunk_size - 1, head)
            processed += await self._scan_chunk(from_block, to_block)
            self._cursor = cursor = to_block
            if cursor < head and self._chunk_pause > 0:
                await self._sleep(self._chunk_pause)

        self._ledger.sweep_expired(self._clock())
        self._cycles += 1
        await self._sink.stats(self._stats)
        return processed

    async def _scan_chunk(self, from_block: int, to_block: int) -> int:
        try:
            events = await self._reader.get_order_filled_events(from_block, to_block)
            for event in events:
                await self._processor.process(event)
        except SCAN_ERRORS as e:
            logger.error("Error scanning blocks %d-%d: %s", from_block, to_block, e)
            raise
        if events:
            logger.debug("Blocks %d-%d: %d OrderFilled events", from_block, to_block, len(events))
        return len(events)

    async def run(self, stop_event: asyncio.Event) -> None:
        """Run cycles until `stop_event` is set.

        Upstream failures end the current cycle; the next one retries from
        the cursor after the poll interval.
        """
        while not stop_event.is_set():
            try:
                await self.run_cycle()
            except SCAN_ERRORS as e:
                logger.warning("Scan cycle failed at cursor %s: %s", self._cursor, e)
                self._stats.is_connected = False
                await self._sink.stats(self._stats)
            except Exception as e:
                logger.exception("Unexpected error in scan cycle at cursor %s: %s", self._cursor, e)

            if stop_event.is_set():
                break
            await self._sleep(self._poll_interval)
