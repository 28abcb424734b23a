"""
Execution-layer client built on web3.py.

Converts web3 block payloads into `Block` records with canonical hex
fields. Any transport or RPC failure is raised as TransientNetworkError.
"""

from typing import Any, Optional

import requests
from web3 import Web3, HTTPProvider
from web3.exceptions import Web3Exception

from .errors import MalformedResponseError, TransientNetworkError
from .logger import get_logger
from .models import Block, Transaction
from .normalize import normalize_address, normalize_hex

logger = get_logger()


def _hex(value: Any) -> str:
    if isinstance(value, str):
        return normalize_hex(value)
    return Web3.to_hex(value)


def _address(value: Any) -> Optional[str]:
    if value is None:
        return None
    return normalize_address(value if isinstance(value, str) else Web3.to_hex(value))


def block_from_web3(raw: Any) -> Block:
    """Build a Block from a web3 block mapping (AttributeDict or dict)."""
    number = raw.get("number")
    block_hash = raw.get("hash")
    timestamp = raw.get("timestamp")
    if timestamp is None:
        raise MalformedResponseError(f"Block {number} has no timestamp")
    transactions = []
    for tx in raw.get("transactions") or []:
        if isinstance(tx, (bytes, str)):
            transactions.append(_hex(tx))
            continue
        transactions.append(Transaction(
            hash=_hex(tx["hash"]),
            from_address=_address(tx.get("from")),
            to_address=_address(tx.get("to")),
            blob_versioned_hashes=tuple(_hex(h) for h in (tx.get("blobVersionedHashes") or [])),
        ))
    return Block(
        number=int(number) if number is not None else None,
        hash=_hex(block_hash) if block_hash is not None else None,
        timestamp=int(timestamp),
        transactions=tuple(transactions),
    )


class Web3ChainClient:
    """Head height and block bodies over JSON-RPC."""

    def __init__(self, rpc_url: Optional[str] = None, w3: Optional[Web3] = None, timeout: float = 15.0):
        if w3 is None:
            if not rpc_url:
                raise ValueError("rpc_url or w3 is required")
            w3 = Web3(HTTPProvider(rpc_url, request_kwargs={"timeout": timeout}))
        self.w3 = w3

    def head_height(self) -> int:
        logger.record_rpc_call()
        try:
            return int(self.w3.eth.block_number)
        except (requests.exceptions.RequestException, Web3Exception, ValueError) as e:
            raise TransientNetworkError(f"Failed to read head height: {e}") from e

    def get_block(self, number: int, with_transactions: bool = True) -> Block:
        logger.record_rpc_call()
        try:
            raw = self.w3.eth.get_block(number, full_transactions=with_transactions)
        except (requests.exceptions.RequestException, Web3Exception, ValueError) as e:
            raise TransientNetworkError(f"Failed to fetch block {number}: {e}") from e
        return block_from_web3(raw)
