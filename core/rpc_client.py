"""
Minimal Ethereum JSON-RPC client.

Only the handful of read calls the pollers need. Every failure mode (network,
HTTP status, JSON-RPC error object, unexpected payload) surfaces as RpcError so
the poller has a single transient error type to retry on.
"""
from __future__ import annotations

import itertools
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

import requests


class RpcError(Exception):
    pass


def _to_int(value: Any, what: str) -> int:
    try:
        return int(value, 16) if isinstance(value, str) else int(value)
    except (TypeError, ValueError) as e:
        raise RpcError(f"invalid {what}: {value!r}") from e


class JsonRpcClient:
    def __init__(self, url: str, timeout: float = 5.0, session: Optional[requests.Session] = None):
        self.url = url
        self.timeout = timeout
        self.session = session or requests.Session()
        self._ids = itertools.count(1)

    def call(self, method: str, params: List[Any]) -> Any:
        payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
        try:
            r = self.session.post(self.url, json=payload, timeout=self.timeout)
            r.raise_for_status()
            data = r.json()
        except (requests.RequestException, ValueError) as e:
            raise RpcError(f"{method} failed: {e}") from e

        if not isinstance(data, dict):
            raise RpcError(f"{method}: unexpected response {data!r}")
        if data.get("error"):
            raise RpcError(f"{method}: {data['error']}")
        if "result" not in data:
            raise RpcError(f"{method}: response without result")
        return data["result"]

    def chain_id(self) -> int:
        return _to_int(self.call("eth_chainId", []), "chain id")

    def block_number(self) -> int:
        return _to_int(self.call("eth_blockNumber", []), "block number")

    def get_logs(self, from_block: int, to_block: int) -> List[Dict[str, Any]]:
        result = self.call("eth_getLogs", [{"fromBlock": hex(from_block), "toBlock": hex(to_block)}])
        if not isinstance(result, list):
            raise RpcError(f"eth_getLogs: unexpected result {result!r}")
        return result


class ReceiptFetcher(ABC):
    """Strategy for reading every receipt of one block."""
    name = "base"

    @abstractmethod
    def fetch(self, client: JsonRpcClient, block_number: int) -> List[Dict[str, Any]]:
        ...


class StandardReceipts(ReceiptFetcher):
    name = "eth_getBlockReceipts"

    def fetch(self, client: JsonRpcClient, block_number: int) -> List[Dict[str, Any]]:
        result = client.call("eth_getBlockReceipts", [hex(block_number)])
        if not isinstance(result, list):
            # null: the node does not have the block yet
            raise RpcError(f"no receipts for block {block_number}")
        return result


class AlchemyReceipts(ReceiptFetcher):
    name = "alchemy_getTransactionReceipts"

    def fetch(self, client: JsonRpcClient, block_number: int) -> List[Dict[str, Any]]:
        result = client.call("alchemy_getTransactionReceipts", [{"blockNumber": hex(block_number)}])
        receipts = (result or {}).get("receipts") if isinstance(result, dict) else None
        if not isinstance(receipts, list):
            raise RpcError(f"no receipts for block {block_number}")
        return receipts


# host substring -> strategy; anything unmatched uses the standard call
PROVIDER_RECEIPT_FETCHERS = [
    ("alchemy.com", AlchemyReceipts),
]


def receipt_fetcher_for(url: str) -> ReceiptFetcher:
    host = urlparse(url).hostname or ""
    for marker, fetcher in PROVIDER_RECEIPT_FETCHERS:
        if marker in host:
            return fetcher()
    return StandardReceipts()
