"""`OrderFilled` log queries against Polymarket exchange contracts.

Event layout (CTF Exchange and NegRisk CTF Exchange share it):

    OrderFilled(bytes32 indexed orderHash, address indexed maker,
                address indexed taker, uint256 makerAssetId,
                uint256 takerAssetId, uint256 makerAmountFilled,
                uint256 takerAmountFilled, uint256 fee)
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import TYPE_CHECKING, Any

from eth_abi import decode
from hexbytes import HexBytes
from web3 import AsyncWeb3

from polymarket_fresh_cluster.ingestor.models import TradeEvent

if TYPE_CHECKING:
    from polymarket_fresh_cluster.profiler.chain import PolygonClient

logger = logging.getLogger(__name__)

ORDER_FILLED_SIGNATURE = "OrderFilled(bytes32,address,address,uint256,uint256,uint256,uint256,uint256)"
ORDER_FILLED_TOPIC = AsyncWeb3.to_hex(AsyncWeb3.keccak(text=ORDER_FILLED_SIGNATURE))

_DATA_TYPES = ["uint256", "uint256", "uint256", "uint256", "uint256"]


class ExchangeLogError(Exception):
    """Raised when a log cannot be decoded as an OrderFilled event."""


def _topic_to_address(topic: Any) -> str:
    raw = HexBytes(topic)
    if len(raw) != 32:
        raise ExchangeLogError(f"Address topic must be 32 bytes, got {len(raw)}")
    return AsyncWeb3.to_checksum_address(raw[-20:])


def _to_hex(value: Any) -> str:
    return HexBytes(value).to_0x_hex()


def decode_order_filled(log: dict[str, Any]) -> TradeEvent:
    """Decode a raw `eth_getLogs` entry into a TradeEvent.

    Args:
        log: Log dictionary (web3 AttributeDict converted to dict or raw JSON).

    Returns:
        The decoded TradeEvent.

    Raises:
        ExchangeLogError: If the log is not a well-formed OrderFilled log.
    """
    try:
        topics = list(log["topics"])
        if len(topics) != 4:
            raise ExchangeLogError(f"OrderFilled expects 4 topics, got {len(topics)}")
        if _to_hex(topics[0]).lower() != ORDER_FILLED_TOPIC.lower():
            raise ExchangeLogError("Log is not an OrderFilled event")

        maker_asset_id, taker_asset_id, maker_amount, taker_amount, fee = decode(
            _DATA_TYPES, bytes(HexBytes(log["data"]))
        )
        return TradeEvent(
            order_hash=_to_hex(topics[1]),
            maker=_topic_to_address(topics[2]),
            taker=_topic_to_address(topics[3]),
            maker_asset_id=str(maker_asset_id),
            taker_asset_id=str(taker_asset_id),
            maker_amount_filled=int(maker_amount),
            taker_amount_filled=int(taker_amount),
            fee=int(fee),
            transaction_hash=_to_hex(log["transactionHash"]),
            block_number=int(log["blockNumber"]),
            log_index=int(log["logIndex"]),
            exchange_address=str(log.get("address", "")),
        )
    except ExchangeLogError:
        raise
    except Exception as e:
        raise ExchangeLogError(f"Failed to decode OrderFilled log: {e}") from e


class ExchangeLogReader:
    """Reads OrderFilled events for a block range.

    Example:
        ```python
        reader = ExchangeLogReader(polygon_client, exchange_addresses=[CTF_EXCHANGE_ADDRESS])
        events = await reader.get_order_filled_events(65_000_000, 65_000_009)
        ```
    """

    def __init__(
        self,
        polygon_client: PolygonClient,
        *,
        exchange_addresses: Sequence[str],
    ) -> None:
        if not exchange_addresses:
            raise ValueError("At least one exchange address is required")
        self._polygon = polygon_client
        self._addresses = [AsyncWeb3.to_checksum_address(a) for a in exchange_addresses]

    async def get_order_filled_events(self, from_block: int, to_block: int) -> list[TradeEvent]:
        """Fetch and decode OrderFilled events in an inclusive block range.

        Undecodable logs are skipped with a warning. Events come back in
        chain order (block number, then log index).
        """
        if to_block < from_block:
            raise ValueError("to_block must be >= from_block")

        address: str | list[str] = (
            self._addresses[0] if len(self._addresses) == 1 else list(self._addresses)
        )
        logs = await self._polygon.get_logs(
            {
                "address": address,
                "topics": [ORDER_FILLED_TOPIC],
                "fromBlock": from_block,
                "toBlock": to_block,
            }
        )

        events: list[TradeEvent] = []
        for log in logs:
            try:
                events.append(decode_order_filled(log))
            except ExchangeLogError as e:
                logger.warning(
                    "Skipping log in blocks %d-%d (tx=%s): %s",
                    from_block,
                    to_block,
                    log.get("transactionHash"),
                    e,
                )
        events.sort(key=lambda e: (e.block_number, e.log_index))
        return events
