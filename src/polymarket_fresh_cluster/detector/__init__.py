"""Anomaly detection layer - Fresh-wallet cluster identification."""

from polymarket_fresh_cluster.detector.cluster import ClusterDetector
from polymarket_fresh_cluster.detector.ledger import BetLedger
from polymarket_fresh_cluster.detector.models import AlertWallet, Bet, ClusterAlert, OutcomeState

__all__ = [
    "AlertWallet",
    "Bet",
    "BetLedger",
    "ClusterAlert",
    "ClusterDetector",
    "OutcomeState",
]
