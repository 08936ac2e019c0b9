"""Alert rendering for console output and subscriber payloads.

This module turns ClusterAlert objects into human-readable text for the
console sink and derives the links shown alongside them.
"""

from __future__ import annotations

from decimal import Decimal
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from polymarket_fresh_cluster.detector.models import ClusterAlert
    from polymarket_fresh_cluster.ingestor.models import MarketInfo

# Polymarket URLs
POLYMARKET_EVENT_URL = "https://polymarket.com/event/{slug}"
POLYMARKET_CONDITION_URL = "https://polymarket.com/event?c={condition_id}"
POLYGONSCAN_TX_URL = "https://polygonscan.com/tx/{tx_hash}"

# Wallet lines shown in the console body
MAX_LISTED_WALLETS = 10


def truncate_address(address: str, chars: int = 4) -> str:
    """Truncate an Ethereum address to 0x1234...5678 format."""
    if len(address) < chars * 2 + 4:
        return address
    return f"{address[: chars + 2]}...{address[-chars:]}"


def format_usdc(amount: Decimal) -> str:
    """Format a USDC amount with commas and 2 decimal places."""
    return f"${amount:,.2f}"


def format_price(price: Decimal | None) -> str:
    """Format an outcome price as implied probability."""
    if price is None:
        return "n/a"
    return f"{price * 100:.1f}%"


def build_market_url(market_info: MarketInfo | None) -> str | None:
    """Derive the polymarket.com link for a market.

    Event slug wins over market slug; the condition id is the last resort.
    """
    if market_info is None:
        return None
    if market_info.slug:
        return POLYMARKET_EVENT_URL.format(slug=market_info.slug)
    if market_info.market_slug:
        return POLYMARKET_EVENT_URL.format(slug=market_info.market_slug)
    if market_info.condition_id:
        return POLYMARKET_CONDITION_URL.format(condition_id=market_info.condition_id)
    return None


def build_tx_url(tx_hash: str) -> str:
    return POLYGONSCAN_TX_URL.format(tx_hash=tx_hash)


class AlertFormatter:
    """Formats cluster alerts as plain text.

    Example:
        ```python
        formatter = AlertFormatter()
        logger.warning("%s", formatter.format_new_alert(alert))
        ```
    """

    def __init__(self, *, max_listed_wallets: int = MAX_LISTED_WALLETS) -> None:
        self.max_listed_wallets = max_listed_wallets

    def format_new_alert(self, alert: ClusterAlert) -> str:
        """Build the multi-line text for a newly raised alert."""
        lines = [
            "FRESH WALLET CLUSTER DETECTED",
            "=" * 30,
            "",
            f"Market: {alert.question}",
            f"Outcome: {alert.outcome} @ {format_price(alert.price)}",
            f"Fresh wallets: {alert.fresh_wallets}",
            f"Total bet: {format_usdc(alert.total_amount)}",
            f"First bet: {alert.first_bet.isoformat()}",
            f"Latest bet: {alert.latest_bet.isoformat()}",
        ]

        if alert.wallets:
            lines.append("")
            lines.append("Wallets:")
            for wallet in alert.wallets[: self.max_listed_wallets]:
                lines.append(
                    f"  {truncate_address(wallet.address)} {format_usdc(wallet.amount)}"
                )
            hidden = len(alert.wallets) - self.max_listed_wallets
            if hidden > 0:
                lines.append(f"  ... and {hidden} more")

        lines.append("")
        if alert.market_url:
            lines.append(f"Market: {alert.market_url}")
        lines.append(f"Sample tx: {build_tx_url(alert.sample_tx)}")

        return "\n".join(lines)

    def format_update(self, alert: ClusterAlert) -> str:
        """Build the one-line text for an alert update."""
        return (
            f"Cluster update: {alert.question} [{alert.outcome}] "
            f"{alert.fresh_wallets} fresh wallets, {format_usdc(alert.total_amount)}"
        )
