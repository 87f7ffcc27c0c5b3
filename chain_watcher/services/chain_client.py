"""
EVM chain client for fetching and decoding contract logs.
Provides block height, log range queries and ABI-based decoding.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol, Sequence

from eth_utils import event_abi_to_log_topic, to_checksum_address
from web3 import AsyncWeb3, AsyncHTTPProvider
from web3._utils.events import get_event_data
from web3.exceptions import TransactionNotFound
import structlog

from chain_watcher.core.config import ChainConfig, WatchedContract, TopicFilter
from chain_watcher.core.exceptions import ChainRPCError
from chain_watcher.services.event_parser import to_jsonable


logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class LogFilter:
    """One emitter / topic set queried on every fetch."""
    address: str
    topics: Optional[TopicFilter] = None

    def to_params(self, from_block: int, to_block: int) -> Dict[str, Any]:
        params: Dict[str, Any] = {
            "fromBlock": from_block,
            "toBlock": to_block,
            "address": self.address,
        }
        if self.topics:
            params["topics"] = self.topics
        return params


class ChainClient(Protocol):
    """Chain surface the watcher depends on."""

    async def height(self) -> int:
        ...

    async def get_logs(self, from_block: int, to_block: int, filters: Sequence[LogFilter]) -> List[Any]:
        ...

    def decode(self, raw_log: Any) -> Dict[str, Any]:
        ...

    async def transaction_block_number(self, transaction_hash: str) -> Optional[int]:
        ...

    async def close(self) -> None:
        ...


def _hex(value: Any) -> str:
    if isinstance(value, str):
        return value.lower() if value.startswith("0x") else "0x" + value.lower()
    return AsyncWeb3.to_hex(value)


def log_sort_key(raw_log: Any):
    """Canonical order of a raw log."""
    return (
        int(raw_log["blockNumber"]),
        int(raw_log["transactionIndex"]),
        _hex(raw_log["transactionHash"]),
        int(raw_log["logIndex"]),
    )


class Web3ChainClient:
    """
    Async web3 client for a fixed set of watched contracts.

    Logs for all filters are fetched in one pass per range and returned in
    canonical order, so a crash mid-ingestion always leaves a stored prefix.
    """

    def __init__(
        self,
        contracts: Sequence[WatchedContract],
        w3: Optional[AsyncWeb3] = None,
    ):
        rpc_config = ChainConfig.get_rpc_config()
        self.w3 = w3 or AsyncWeb3(
            AsyncHTTPProvider(
                rpc_config["endpoint"],
                request_kwargs={"timeout": rpc_config["timeout"]},
            )
        )
        self.contracts = list(contracts)
        self.logger = logger.bind(service="chain_client")

        # address -> topic0 -> event ABI
        self._topic_to_abi: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._build_event_maps()

    def _build_event_maps(self) -> None:
        self._topic_to_abi.clear()
        for contract in self.contracts:
            address = to_checksum_address(contract.address)
            topic_map = self._topic_to_abi.setdefault(address, {})
            for event_abi in contract.event_abis:
                if event_abi.get("anonymous"):
                    continue
                topic_map[_hex(event_abi_to_log_topic(event_abi))] = event_abi

    @property
    def log_filters(self) -> List[LogFilter]:
        return [
            LogFilter(address=to_checksum_address(c.address), topics=c.topics)
            for c in self.contracts
        ]

    async def height(self) -> int:
        """Get the current block number."""
        try:
            return await self.w3.eth.block_number
        except Exception as e:
            raise ChainRPCError(f"Failed to get block number: {e}")

    async def get_logs(
        self,
        from_block: int,
        to_block: int,
        filters: Sequence[LogFilter]
    ) -> List[Any]:
        """Get logs for every filter in [from_block, to_block], in canonical order."""
        logs: List[Any] = []
        for log_filter in filters:
            try:
                logs.extend(await self.w3.eth.get_logs(log_filter.to_params(from_block, to_block)))
            except Exception as e:
                raise ChainRPCError(
                    f"Failed to get logs: {e}",
                    details={
                        "address": log_filter.address,
                        "from_block": from_block,
                        "to_block": to_block,
                    },
                )
        return sorted(logs, key=log_sort_key)

    def decode(self, raw_log: Any) -> Dict[str, Any]:
        """
        Decode a raw log against the watched contracts' ABIs.

        Logs that cannot be matched to an event ABI come back without
        ``event``/``signature``/``args`` and are dropped by validation.
        """
        address = to_checksum_address(raw_log["address"])
        topics = [_hex(t) for t in raw_log.get("topics", [])]
        decoded: Dict[str, Any] = {
            "address": address,
            "block_number": int(raw_log["blockNumber"]),
            "block_hash": _hex(raw_log["blockHash"]),
            "transaction_hash": _hex(raw_log["transactionHash"]),
            "transaction_index": int(raw_log["transactionIndex"]),
            "log_index": int(raw_log["logIndex"]),
            "topics": topics,
            "raw": to_jsonable(dict(raw_log)),
        }

        event_abi = self._topic_to_abi.get(address, {}).get(topics[0]) if topics else None
        if event_abi is None:
            self.logger.debug("No ABI for log", address=address, topics=topics)
            return decoded

        try:
            event_data = get_event_data(self.w3.codec, event_abi, raw_log)
        except Exception as e:
            self.logger.warning(
                "Failed to decode log",
                address=address,
                transaction_hash=decoded["transaction_hash"],
                log_index=decoded["log_index"],
                error=str(e)
            )
            return decoded

        decoded.update(
            event=event_data["event"],
            signature=topics[0],
            args=to_jsonable(dict(event_data["args"])),
        )
        return decoded

    async def transaction_block_number(self, transaction_hash: str) -> Optional[int]:
        """Block number of a mined transaction, or None if it has no receipt."""
        try:
            receipt = await self.w3.eth.get_transaction_receipt(transaction_hash)
        except TransactionNotFound:
            return None
        except Exception as e:
            raise ChainRPCError(f"Failed to get transaction receipt: {e}")
        return int(receipt["blockNumber"]) if receipt else None

    async def close(self) -> None:
        """Close the provider session if it holds one."""
        disconnect = getattr(self.w3.provider, "disconnect", None)
        if disconnect is not None:
            await disconnect()
