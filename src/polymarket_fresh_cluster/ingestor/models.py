"""Data models for the ingestor module."""

import json
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

# Asset id used by the exchange for the collateral (USDC) leg of a fill
COLLATERAL_ASSET_ID = "0"

UNKNOWN_MARKET = "Unknown Market"
UNKNOWN_OUTCOME = "Unknown"


@dataclass(frozen=True)
class TradeParticipant:
    """One side of a fill: who traded which asset for how much."""

    wallet: str
    outcome_id: str
    amount: Decimal


@dataclass(frozen=True)
class TradeEvent:
    """Represents a decoded `OrderFilled` log from a Polymarket exchange.

    Token ids are kept as decimal strings since they exceed 64 bits and are
    used verbatim as Gamma API lookup keys.
    """

    order_hash: str
    maker: str
    taker: str
    maker_asset_id: str
    taker_asset_id: str
    maker_amount_filled: int
    taker_amount_filled: int
    fee: int
    transaction_hash: str
    block_number: int
    log_index: int
    exchange_address: str = ""

    @property
    def event_key(self) -> tuple[str, int]:
        """Unique identifier of the log this event was decoded from."""
        return (self.transaction_hash.lower(), self.log_index)

    def participants(self, *, decimals: int = 6) -> tuple[TradeParticipant, TradeParticipant]:
        """Split the fill into maker and taker sides.

        Args:
            decimals: Fixed-point scale of the filled amounts.

        Returns:
            (maker, taker) participants with amounts converted to decimals.
        """
        scale = Decimal(10) ** decimals
        return (
            TradeParticipant(
                wallet=self.maker,
                outcome_id=self.maker_asset_id,
                amount=Decimal(self.maker_amount_filled) / scale,
            ),
            TradeParticipant(
                wallet=self.taker,
                outcome_id=self.taker_asset_id,
                amount=Decimal(self.taker_amount_filled) / scale,
            ),
        )


def _parse_json_list(value: Any) -> list[Any]:
    """Gamma encodes parallel arrays as JSON strings; accept real lists too."""
    if value is None or value == "":
        return []
    if isinstance(value, list):
        return value
    try:
        parsed = json.loads(value)
    except (TypeError, ValueError):
        return []
    return parsed if isinstance(parsed, list) else []


def _parse_price(value: Any) -> Decimal | None:
    if value is None or value == "":
        return None
    try:
        return Decimal(str(value))
    except InvalidOperation:
        return None


@dataclass(frozen=True)
class MarketInfo:
    """Human-readable metadata for one outcome token of a market."""

    question: str
    outcome: str
    price: Decimal | None = None
    slug: str | None = None
    market_slug: str | None = None
    condition_id: str | None = None
    market_id: str | None = None
    image: str | None = None

    @property
    def is_unknown(self) -> bool:
        """True when the market has no usable question text."""
        return not self.question or self.question == UNKNOWN_MARKET

    @classmethod
    def from_gamma_market(cls, data: dict[str, Any], token_id: str) -> "MarketInfo":
        """Build MarketInfo for `token_id` from a Gamma `/markets` row.

        `clobTokenIds`, `outcomes` and `outcomePrices` are correlated by
        index, so the token's position is looked up by value.
        """
        token_ids = [str(t) for t in _parse_json_list(data.get("clobTokenIds"))]
        outcomes = _parse_json_list(data.get("outcomes"))
        prices = _parse_json_list(data.get("outcomePrices"))

        outcome = UNKNOWN_OUTCOME
        price: Decimal | None = None
        if token_id in token_ids:
            index = token_ids.index(token_id)
            if index < len(outcomes) and outcomes[index]:
                outcome = str(outcomes[index])
            if index < len(prices):
                price = _parse_price(prices[index])

        market_id = data.get("id")
        return cls(
            question=str(data.get("question") or UNKNOWN_MARKET),
            outcome=outcome,
            price=price,
            slug=data.get("slug") or None,
            market_slug=data.get("marketSlug") or None,
            condition_id=data.get("conditionId") or None,
            market_id=str(market_id) if market_id is not None else None,
            image=data.get("image") or None,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "question": self.question,
            "outcome": self.outcome,
            "price": str(self.price) if self.price is not None else None,
            "slug": self.slug,
            "market_slug": self.market_slug,
            "condition_id": self.condition_id,
            "market_id": self.market_id,
            "image": self.image,
        }
