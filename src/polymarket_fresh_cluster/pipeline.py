"""Main pipeline orchestrator for the fresh-wallet cluster tracker.

This module provides the Pipeline class that owns every piece of runtime
state (caches, ledger, alert list, cursor) and wires the components from
chain scanning to alerting.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from datetime import timedelta
from enum import Enum
from typing import Any

from polymarket_fresh_cluster.alerter.models import PipelineStats
from polymarket_fresh_cluster.alerter.server import AlertServer
from polymarket_fresh_cluster.alerter.sink import AlertSink, BroadcastAlertSink, ConsoleAlertSink
from polymarket_fresh_cluster.config import Settings, get_settings
from polymarket_fresh_cluster.detector.cluster import ClusterDetector
from polymarket_fresh_cluster.detector.ledger import BetLedger
from polymarket_fresh_cluster.ingestor.exchange import ExchangeLogReader
from polymarket_fresh_cluster.ingestor.gamma import MarketMetadataResolver
from polymarket_fresh_cluster.ingestor.processor import TradeProcessor
from polymarket_fresh_cluster.ingestor.scanner import ChainScanner
from polymarket_fresh_cluster.profiler.chain import PolygonClient, PolygonClientError
from polymarket_fresh_cluster.profiler.freshness import WalletFreshnessClassifier

logger = logging.getLogger(__name__)


class PipelineError(Exception):
    """Base exception for pipeline errors."""


class PipelineStartupError(PipelineError):
    """Raised when the pipeline cannot reach its upstream services."""


class PipelineState(str, Enum):
    """Pipeline lifecycle states."""

    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    ERROR = "error"


class Pipeline:
    """Main pipeline orchestrator for the fresh-wallet cluster tracker.

    Pipeline flow:
        Chain Scanner → Trade Processor → Freshness Classifier / Bet Ledger
        → Cluster Detector → Market Metadata Resolver / Alert Sink

    Example:
        ```python
        from polymarket_fresh_cluster.config import get_settings
        from polymarket_fresh_cluster.pipeline import Pipeline

        async with Pipeline(get_settings()) as pipeline:
            await pipeline.wait_stopped()
        ```
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        polygon_client: PolygonClient | None = None,
        resolver: MarketMetadataResolver | None = None,
        sink: AlertSink | None = None,
    ) -> None:
        """Initialize the pipeline.

        Args:
            settings: Application settings. If not provided, uses get_settings().
            polygon_client: Optional preconfigured chain client.
            resolver: Optional preconfigured market metadata resolver.
            sink: Optional alert sink; defaults to the one named in settings.
        """
        self._settings = settings or get_settings()
        self._state = PipelineState.STOPPED
        self._stats = PipelineStats()

        s = self._settings
        self._polygon_client = polygon_client or PolygonClient(
            s.polygon.rpc_url,
            fallback_rpc_url=s.polygon.fallback_rpc_url,
            max_requests_per_second=s.polygon.max_requests_per_second,
            max_retries=s.polygon.max_retries,
            request_timeout_seconds=s.polygon.request_timeout_seconds,
        )
        self._resolver = resolver or MarketMetadataResolver(
            base_url=s.polymarket.gamma_api_url,
            timeout_seconds=s.polymarket.request_timeout_seconds,
        )
        self._sink = sink or self._create_sink()
        self._server: AlertServer | None = None
        if isinstance(self._sink, BroadcastAlertSink) and s.alert.sink == "broadcast":
            self._server = AlertServer(self._sink, host=s.alert.host, port=s.alert.port)

        self._classifier = WalletFreshnessClassifier(
            self._polygon_client,
            max_nonce=s.fresh_wallet.max_nonce,
            cache_ttl=timedelta(seconds=s.fresh_wallet.cache_ttl_seconds),
            max_cache_entries=s.fresh_wallet.max_cache_entries,
        )
        self._ledger = BetLedger(window=s.cluster.window)
        self._detector = ClusterDetector(
            self._ledger,
            self._resolver,
            self._sink,
            self._stats,
            threshold=s.cluster.threshold,
            alert_on_unknown_market=s.cluster.alert_on_unknown_market,
            max_alerts=s.cluster.max_alerts,
        )
        self._processor = TradeProcessor(
            self._classifier,
            self._ledger,
            self._detector,
            self._stats,
            min_bet_amount=s.cluster.min_bet_amount_usdc,
            decimals=s.exchange.collateral_decimals,
        )
        self._reader = ExchangeLogReader(
            self._polygon_client,
            exchange_addresses=s.exchange.addresses,
        )
        self._scanner = ChainScanner(
            self._polygon_client,
            self._reader,
            self._processor,
            self._ledger,
            self._stats,
            self._sink,
            chunk_size=s.scan.chunk_size_blocks,
            start_blocks_back=s.scan.start_blocks_back,
            poll_interval=s.scan.poll_interval_seconds,
            chunk_pause=s.scan.chunk_pause_seconds,
        )

        # Synchronization
        self._stop_event: asyncio.Event | None = None
        self._scan_task: asyncio.Task[None] | None = None

    def _create_sink(self) -> AlertSink:
        if self._settings.alert.sink == "broadcast":
            return BroadcastAlertSink(max_alerts=self._settings.cluster.max_alerts)
        return ConsoleAlertSink()

    @property
    def state(self) -> PipelineState:
        """Current pipeline state."""
        return self._state

    @property
    def stats(self) -> PipelineStats:
        """Current pipeline statistics."""
        return self._stats

    @property
    def is_running(self) -> bool:
        """Check if pipeline is running."""
        return self._state == PipelineState.RUNNING

    @property
    def detector(self) -> ClusterDetector:
        return self._detector

    @property
    def ledger(self) -> BetLedger:
        return self._ledger

    @property
    def scanner(self) -> ChainScanner:
        return self._scanner

    @property
    def sink(self) -> AlertSink:
        return self._sink

    async def start(self) -> None:
        """Start the pipeline.

        Checks RPC connectivity, positions the scan cursor and launches the
        scan loop in the background.

        Raises:
            RuntimeError: If pipeline is already running.
            PipelineStartupError: If the RPC endpoint is unreachable.
        """
        if self._state != PipelineState.STOPPED:
            raise RuntimeError(f"Cannot start pipeline in state {self._state}")

        self._state = PipelineState.STARTING
        self._stop_event = asyncio.Event()
        logger.info("Starting pipeline...")

        try:
            if not await self._polygon_client.health_check():
                raise PipelineStartupError(
                    f"Cannot reach Polygon RPC at {Settings._redact_url(self._settings.polygon.rpc_url)}"
                )
            try:
                chain_id = await self._polygon_client.get_chain_id()
                await self._scanner.initialize()
            except PolygonClientError as e:
                raise PipelineStartupError(f"Failed to initialize scanner: {e}") from e
            logger.info("Connected to chain id %d", chain_id)
            await self._sink.stats(self._stats)

            if self._server is not None:
                await self._server.start()

            self._scan_task = asyncio.create_task(self._scanner.run(self._stop_event))
            self._state = PipelineState.RUNNING
            logger.info("Pipeline started successfully")
        except Exception as e:
            self._state = PipelineState.ERROR
            logger.error("Failed to start pipeline: %s", e)
            await self._cleanup()
            raise

    async def stop(self) -> None:
        """Stop the pipeline gracefully.

        Cancels the scan loop and closes upstream connections.
        """
        if self._state == PipelineState.STOPPED:
            return

        self._state = PipelineState.STOPPING
        logger.info("Stopping pipeline...")

        if self._stop_event:
            self._stop_event.set()

        if self._scan_task is not None:
            self._scan_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._scan_task
            self._scan_task = None

        await self._cleanup()

        self._state = PipelineState.STOPPED
        logger.info(
            "Pipeline stopped (trades=%d, fresh=%d, alerts=%d)",
            self._stats.total_trades,
            self._stats.fresh_wallets_detected,
            self._stats.alerts_triggered,
        )

    async def _cleanup(self) -> None:
        if self._server is not None:
            await self._server.stop()
        await self._sink.aclose()
        await self._resolver.aclose()
        await self._polygon_client.aclose()

    async def wait_stopped(self) -> None:
        """Block until the scan loop exits."""
        if self._scan_task is not None:
            with contextlib.suppress(asyncio.CancelledError):
                await self._scan_task

    async def run(self) -> None:
        """Start the pipeline and run until interrupted.

        Example:
            ```python
            pipeline = Pipeline()
            try:
                await pipeline.run()
            except KeyboardInterrupt:
                pass
            ```
        """
        await self.start()

        try:
            await self.wait_stopped()
        except asyncio.CancelledError:
            pass
        finally:
            await self.stop()

    async def __aenter__(self) -> Pipeline:
        """Async context manager entry."""
        await self.start()
        return self

    async def __aexit__(self, *args: Any) -> None:
        """Async context manager exit."""
        await self.stop()
