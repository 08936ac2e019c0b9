"""Data ingestion layer - Chain scanning, log decoding and market metadata."""

from polymarket_fresh_cluster.ingestor.exchange import ExchangeLogError, ExchangeLogReader
from polymarket_fresh_cluster.ingestor.gamma import MarketMetadataError, MarketMetadataResolver
from polymarket_fresh_cluster.ingestor.models import MarketInfo, TradeEvent, TradeParticipant
from polymarket_fresh_cluster.ingestor.processor import TradeProcessor
from polymarket_fresh_cluster.ingestor.scanner import ChainScanner

__all__ = [
    "ChainScanner",
    "ExchangeLogError",
    "ExchangeLogReader",
    "MarketInfo",
    "MarketMetadataError",
    "MarketMetadataResolver",
    "TradeEvent",
    "TradeParticipant",
    "TradeProcessor",
]
