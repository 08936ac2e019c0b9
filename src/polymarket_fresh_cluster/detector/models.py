"""Data models for the detector module."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from decimal import Decimal
from enum import Enum


class OutcomeState(str, Enum):
    """Detection state of a single outcome."""

    UNSEEN = "unseen"
    BELOW_THRESHOLD = "below_threshold"
    SUPPRESSED = "suppressed"
    ACTIVE = "active"


@dataclass
class Bet:
    """A fresh wallet's position on one outcome within the time window.

    `amount` accumulates across repeat bets; `timestamp` stays at the
    first sighting so bucket order reflects arrival.
    """

    wallet: str
    timestamp: datetime
    tx_hash: str
    amount: Decimal
    is_fresh: bool = True


@dataclass(frozen=True)
class AlertWallet:
    """A wallet contributing to a cluster alert."""

    address: str
    tx_hash: str
    timestamp: datetime
    amount: Decimal

    @classmethod
    def from_bet(cls, bet: Bet) -> AlertWallet:
        return cls(
            address=bet.wallet,
            tx_hash=bet.tx_hash,
            timestamp=bet.timestamp,
            amount=bet.amount,
        )

    def to_dict(self) -> dict[str, object]:
        return {
            "address": self.address,
            "tx_hash": self.tx_hash,
            "timestamp": self.timestamp.isoformat(),
            "amount": str(self.amount),
        }


@dataclass
class ClusterAlert:
    """Alert raised when fresh wallets converge on one outcome.

    Market fields and the wallet list are frozen at creation; updates only
    touch `fresh_wallets`, `total_amount` and `latest_bet`.

    Attributes:
        outcome_id: Outcome token the cluster bet on.
        question: Market question (or placeholder when unknown).
        outcome: Outcome label for the token.
        price: Outcome price when the alert was created.
        market_url: Link to the market on polymarket.com, if derivable.
        fresh_wallets: Live fresh-wallet count for the outcome.
        total_amount: Sum of the live bets (USDC).
        first_bet: First-seen timestamp of the oldest live bet.
        latest_bet: First-seen timestamp of the newest live bet.
        sample_tx: Transaction hash of the oldest live bet.
        wallets: Contributing wallets at creation time.
    """

    outcome_id: str
    question: str
    outcome: str
    price: Decimal | None
    slug: str | None
    image: str | None
    condition_id: str | None
    market_url: str | None
    fresh_wallets: int
    total_amount: Decimal
    first_bet: datetime
    latest_bet: datetime
    sample_tx: str
    wallets: tuple[AlertWallet, ...]
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_dict(self) -> dict[str, object]:
        """Serialize to a JSON-compatible dictionary for subscribers."""
        return {
            "id": self.id,
            "outcome_id": self.outcome_id,
            "question": self.question,
            "outcome": self.outcome,
            "price": str(self.price) if self.price is not None else None,
            "slug": self.slug,
            "image": self.image,
            "condition_id": self.condition_id,
            "market_url": self.market_url,
            "fresh_wallets": self.fresh_wallets,
            "total_amount": str(self.total_amount),
            "first_bet": self.first_bet.isoformat(),
            "latest_bet": self.latest_bet.isoformat(),
            "sample_tx": self.sample_tx,
            "wallets": [w.to_dict() for w in self.wallets],
            "created_at": self.created_at.isoformat(),
        }
