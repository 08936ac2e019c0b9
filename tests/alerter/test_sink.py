"""Tests for alert sinks."""

import logging
from datetime import UTC, datetime
from decimal import Decimal

import pytest

from polymarket_fresh_cluster.alerter.models import PipelineStats
from polymarket_fresh_cluster.alerter.sink import BroadcastAlertSink, ConsoleAlertSink
from polymarket_fresh_cluster.detector.models import AlertWallet, ClusterAlert


def make_alert(outcome_id: str = "1111", fresh_wallets: int = 3) -> ClusterAlert:
    ts = datetime(2024, 11, 5, 12, 0, tzinfo=UTC)
    wallet = AlertWallet(address="0x" + "1" * 40, tx_hash="0xaaa", timestamp=ts, amount=Decimal("50"))
    return ClusterAlert(
        outcome_id=outcome_id,
        question="Will it rain tomorrow?",
        outcome="Yes",
        price=Decimal("0.35"),
        slug="rain",
        image=None,
        condition_id="0xcond",
        market_url="https://polymarket.com/event/rain",
        fresh_wallets=fresh_wallets,
        total_amount=Decimal(50 * fresh_wallets),
        first_bet=ts,
        latest_bet=ts,
        sample_tx="0xaaa",
        wallets=(wallet,),
    )


class TestConsoleAlertSink:
    @pytest.mark.asyncio
    async def test_new_alert_logged_as_warning(self, caplog: pytest.LogCaptureFixture) -> None:
        sink = ConsoleAlertSink()

        with caplog.at_level(logging.DEBUG, logger="polymarket_fresh_cluster.alerter.sink"):
            await sink.new_alert(make_alert())

        assert caplog.records[-1].levelno == logging.WARNING
        assert "FRESH WALLET CLUSTER DETECTED" in caplog.text

    @pytest.mark.asyncio
    async def test_update_logged_as_info(self, caplog: pytest.LogCaptureFixture) -> None:
        sink = ConsoleAlertSink()

        with caplog.at_level(logging.DEBUG, logger="polymarket_fresh_cluster.alerter.sink"):
            await sink.alert_update(make_alert(fresh_wallets=5))

        assert caplog.records[-1].levelno == logging.INFO
        assert "5 fresh wallets" in caplog.text

    @pytest.mark.asyncio
    async def test_stats_logged_as_debug(self, caplog: pytest.LogCaptureFixture) -> None:
        sink = ConsoleAlertSink()

        with caplog.at_level(logging.DEBUG, logger="polymarket_fresh_cluster.alerter.sink"):
            await sink.stats(PipelineStats(total_trades=7))

        assert caplog.records[-1].levelno == logging.DEBUG
        assert "trades=7" in caplog.text


class TestBroadcastAlertSink:
    @pytest.mark.asyncio
    async def test_subscriber_receives_events(self) -> None:
        sink = BroadcastAlertSink()
        subscription = sink.subscribe()

        await sink.new_alert(make_alert())
        await sink.stats(PipelineStats(total_trades=3))

        first = subscription.queue.get_nowait()
        second = subscription.queue.get_nowait()
        assert first["event"] == "newAlert"
        assert first["data"]["outcome_id"] == "1111"
        assert second == {"event": "stats", "data": second["data"]}
        assert second["data"]["total_trades"] == 3

    @pytest.mark.asyncio
    async def test_late_subscriber_gets_history(self) -> None:
        sink = BroadcastAlertSink(max_alerts=2)
        for outcome_id in ("a", "b", "c"):
            await sink.new_alert(make_alert(outcome_id))
        await sink.stats(PipelineStats(alerts_triggered=3))

        subscription = sink.subscribe()

        assert [a["outcome_id"] for a in subscription.existing_alerts] == ["c", "b"]
        assert subscription.stats is not None
        assert subscription.stats["alerts_triggered"] == 3
        assert subscription.queue.empty()

    def test_first_subscriber_has_no_stats(self) -> None:
        subscription = BroadcastAlertSink().subscribe()

        assert subscription.existing_alerts == []
        assert subscription.stats is None

    @pytest.mark.asyncio
    async def test_messages_frozen_at_publish(self) -> None:
        sink = BroadcastAlertSink()
        subscription = sink.subscribe()
        alert = make_alert()

        await sink.alert_update(alert)
        alert.fresh_wallets = 10

        assert subscription.queue.get_nowait()["data"]["fresh_wallets"] == 3

    @pytest.mark.asyncio
    async def test_updates_do_not_enter_history(self) -> None:
        sink = BroadcastAlertSink()

        await sink.alert_update(make_alert())

        assert sink.alerts == []

    @pytest.mark.asyncio
    async def test_slow_subscriber_dropped(self) -> None:
        sink = BroadcastAlertSink(queue_size=1)
        slow = sink.subscribe()
        fast = sink.subscribe()

        await sink.new_alert(make_alert("a"))
        fast.queue.get_nowait()
        await sink.new_alert(make_alert("b"))

        assert slow.dropped is True
        assert fast.dropped is False
        assert sink.subscriber_count == 1

    def test_unsubscribe(self) -> None:
        sink = BroadcastAlertSink()
        subscription = sink.subscribe()

        sink.unsubscribe(subscription)
        sink.unsubscribe(subscription)

        assert sink.subscriber_count == 0
