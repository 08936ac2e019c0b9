"""Alert sinks: where cluster alerts and stats snapshots are published.

Two sinks ship with the tracker:
- ConsoleAlertSink logs alerts through the standard logging setup.
- BroadcastAlertSink fans events out to connected subscribers (see
  `alerter.server.AlertServer`), replaying the recent alert list on connect.

Publishing never blocks the pipeline.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from polymarket_fresh_cluster.alerter.formatter import AlertFormatter
from polymarket_fresh_cluster.alerter.models import AlertEvent, AlertEventType, PipelineStats

if TYPE_CHECKING:
    from polymarket_fresh_cluster.detector.models import ClusterAlert

logger = logging.getLogger(__name__)

DEFAULT_MAX_ALERTS = 50
DEFAULT_SUBSCRIBER_QUEUE_SIZE = 256


class AlertSink(ABC):
    """Destination for alert events."""

    @abstractmethod
    async def publish(self, event: AlertEvent) -> None:
        """Publish one event. Implementations must not raise on delivery failure."""

    async def new_alert(self, alert: ClusterAlert) -> None:
        await self.publish(AlertEvent.new_alert(alert))

    async def alert_update(self, alert: ClusterAlert) -> None:
        await self.publish(AlertEvent.alert_update(alert))

    async def stats(self, stats: PipelineStats) -> None:
        await self.publish(AlertEvent.stats_snapshot(stats))

    async def aclose(self) -> None:
        """Release sink resources."""
        return None


class ConsoleAlertSink(AlertSink):
    """Logs alerts: new alerts at WARNING, updates at INFO, stats at DEBUG."""

    def __init__(self, formatter: AlertFormatter | None = None) -> None:
        self._formatter = formatter or AlertFormatter()

    async def publish(self, event: AlertEvent) -> None:
        if event.type == AlertEventType.NEW_ALERT and event.alert is not None:
            logger.warning("\n%s", self._formatter.format_new_alert(event.alert))
        elif event.type == AlertEventType.ALERT_UPDATE and event.alert is not None:
            logger.info("%s", self._formatter.format_update(event.alert))
        elif event.type == AlertEventType.STATS and event.stats is not None:
            s = event.stats
            logger.debug(
                "Stats: trades=%d fresh=%d alerts=%d block=%d connected=%s",
                s.total_trades,
                s.fresh_wallets_detected,
                s.alerts_triggered,
                s.last_block,
                s.is_connected,
            )


@dataclass(eq=False)
class Subscription:
    """State handed to a new subscriber.

    Attributes:
        existing_alerts: Recent alerts (newest first) serialized at subscribe time.
        stats: Latest stats snapshot, if one has been published.
        queue: Future events as wire messages.
        dropped: Set when the sink gave up on a full queue.
    """

    existing_alerts: list[dict[str, Any]]
    stats: dict[str, Any] | None
    queue: asyncio.Queue[dict[str, Any]] = field(repr=False)
    dropped: bool = False


class BroadcastAlertSink(AlertSink):
    """Fans events out to subscribers through bounded per-subscriber queues.

    Events are serialized when published so a later in-place alert update
    does not rewrite messages still waiting in a queue. A subscriber whose
    queue is full is dropped.

    Example:
        ```python
        sink = BroadcastAlertSink(max_alerts=50)
        sub = sink.subscribe()
        try:
            message = await sub.queue.get()
        finally:
            sink.unsubscribe(sub)
        ```
    """

    def __init__(
        self,
        *,
        max_alerts: int = DEFAULT_MAX_ALERTS,
        queue_size: int = DEFAULT_SUBSCRIBER_QUEUE_SIZE,
    ) -> None:
        self._alerts: deque[ClusterAlert] = deque(maxlen=max_alerts)
        self._stats: dict[str, Any] | None = None
        self._queue_size = queue_size
        self._subscribers: list[Subscription] = []

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    @property
    def alerts(self) -> list[ClusterAlert]:
        """Recent alerts, newest first."""
        return list(self._alerts)

    def subscribe(self) -> Subscription:
        subscription = Subscription(
            existing_alerts=[a.to_dict() for a in self._alerts],
            stats=dict(self._stats) if self._stats is not None else None,
            queue=asyncio.Queue(maxsize=self._queue_size),
        )
        self._subscribers.append(subscription)
        logger.info("Subscriber connected (%d total)", len(self._subscribers))
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        if subscription in self._subscribers:
            self._subscribers.remove(subscription)
            logger.info("Subscriber disconnected (%d total)", len(self._subscribers))

    async def publish(self, event: AlertEvent) -> None:
        if event.type == AlertEventType.NEW_ALERT and event.alert is not None:
            self._alerts.appendleft(event.alert)
        message = event.to_message()
        if event.type == AlertEventType.STATS:
            self._stats = message["data"]

        for subscription in list(self._subscribers):
            try:
                subscription.queue.put_nowait(message)
            except asyncio.QueueFull:
                logger.warning("Dropping slow subscriber (queue full)")
                subscription.dropped = True
                self.unsubscribe(subscription)
