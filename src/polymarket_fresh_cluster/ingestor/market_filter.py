"""Content policy for markets that should never raise cluster alerts.

Short-horizon crypto price markets ("Bitcoin up or down in the next 5
minutes?") attract waves of throwaway wallets by construction and drown out
real signals. The patterns are intentionally narrow: a missed market is
acceptable, filtering a legitimate one is not.
"""

from __future__ import annotations

import re

from polymarket_fresh_cluster.ingestor.models import MarketInfo

_CRYPTO = r"\b(?:bitcoin|btc|ethereum|eth|solana|sol|doge|xrp|crypto)\b"
_CLOCK = r"\b\d{1,2}(?::\d{2})?\s*(?:am|pm|utc|et|pt)\b"

FILTER_PATTERNS: tuple[re.Pattern[str], ...] = tuple(
    re.compile(p)
    for p in (
        # Numeric minute mentions: "5 min", "15-minute", "30 minutes"
        r"\b\d+[\s-]?min(?:ute)?s?\b",
        # Explicit short-horizon labels
        r"\b(?:1|5|15)-min\b",
        # Direction phrasing
        r"\bup or down\b",
        r"\bhigher or lower\b",
        r"\babove or below\b",
        # Price at a specific clock time
        r"\bprice\b.*" + _CLOCK,
        r"\bat " + _CLOCK,
        # Crypto asset combined with a clock time or a direction
        _CRYPTO + r".*" + _CLOCK,
        _CRYPTO + r".*\b(?:up|down|higher|lower)\b",
    )
)


def should_filter_question(question: str) -> bool:
    """Return True if a market question matches any excluded pattern."""
    text = question.lower()
    return any(pattern.search(text) for pattern in FILTER_PATTERNS)


def should_filter_market(market_info: MarketInfo | None) -> bool:
    """Return True if the market is excluded by content policy.

    Markets without question text are never filtered here; the unknown
    market policy handles them.
    """
    if market_info is None or not market_info.question:
        return False
    return should_filter_question(market_info.question)
