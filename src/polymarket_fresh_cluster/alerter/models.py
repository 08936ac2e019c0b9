"""Data models for the alerter module."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from polymarket_fresh_cluster.detector.models import ClusterAlert


class AlertEventType(str, Enum):
    """Kinds of events published to alert sinks.

    Values match the wire event names sent to subscribers.
    """

    NEW_ALERT = "newAlert"
    ALERT_UPDATE = "alertUpdate"
    STATS = "stats"


@dataclass
class PipelineStats:
    """Counters published to sinks after each cycle and each new alert."""

    total_trades: int = 0
    fresh_wallets_detected: int = 0
    alerts_triggered: int = 0
    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    last_block: int = 0
    is_connected: bool = False

    def snapshot(self) -> PipelineStats:
        """Return an immutable-by-convention copy for publishing."""
        return PipelineStats(
            total_trades=self.total_trades,
            fresh_wallets_detected=self.fresh_wallets_detected,
            alerts_triggered=self.alerts_triggered,
            started_at=self.started_at,
            last_block=self.last_block,
            is_connected=self.is_connected,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_trades": self.total_trades,
            "fresh_wallets_detected": self.fresh_wallets_detected,
            "alerts_triggered": self.alerts_triggered,
            "started_at": self.started_at.isoformat(),
            "last_block": self.last_block,
            "is_connected": self.is_connected,
        }


@dataclass(frozen=True)
class AlertEvent:
    """A single publication to an alert sink."""

    type: AlertEventType
    alert: ClusterAlert | None = None
    stats: PipelineStats | None = None

    @classmethod
    def new_alert(cls, alert: ClusterAlert) -> AlertEvent:
        return cls(type=AlertEventType.NEW_ALERT, alert=alert)

    @classmethod
    def alert_update(cls, alert: ClusterAlert) -> AlertEvent:
        return cls(type=AlertEventType.ALERT_UPDATE, alert=alert)

    @classmethod
    def stats_snapshot(cls, stats: PipelineStats) -> AlertEvent:
        return cls(type=AlertEventType.STATS, stats=stats.snapshot())

    def to_message(self) -> dict[str, Any]:
        """Wire representation: `{"event": <name>, "data": <payload>}`."""
        if self.type == AlertEventType.STATS:
            data: Any = self.stats.to_dict() if self.stats else {}
        else:
            data = self.alert.to_dict() if self.alert else {}
        return {"event": self.type.value, "data": data}
