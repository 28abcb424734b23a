"""
Extraction of blob-carrying transactions from a block.

Pure and deterministic: the same block always yields the same jobs in
the block's transaction order, which is what makes re-scanning an
unadvanced range safe.
"""

from typing import Iterable, List

from .logger import get_logger
from .models import Block, Job, Transaction

logger = get_logger()


def is_relevant_blob_transaction(tx: Transaction, monitored_contracts: frozenset) -> bool:
    return (
        tx.to_address is not None
        and tx.to_address.lower() in monitored_contracts
        and len(tx.blob_versioned_hashes) > 0
    )


def scan_block(block: Block, contract_allow_list: Iterable[str], l2_source: str) -> List[Job]:
    """
    Build one Job per qualifying transaction in `block`.

    Returns an empty list, without raising, when the block has no number or
    hash yet, or when its transactions are bare hashes; callers re-fetch
    the block with full transaction bodies in that case.
    """
    if not block.is_resolved:
        logger.error(
            "Block is missing number or hash; skipping job creation",
            number=block.number,
            hash=block.hash,
        )
        return []

    if not block.transactions:
        return []

    if not block.is_hydrated:
        logger.warning(
            f"Block {block.number} transactions are hashes, not objects; needs a hydrated re-fetch"
        )
        return []

    monitored = frozenset(addr.lower() for addr in contract_allow_list)

    jobs = [
        Job(
            transaction_hash=tx.hash,
            from_address=tx.from_address,
            to_address=tx.to_address,
            block_number=block.number,
            block_hash=block.hash,
            timestamp=block.timestamp,
            l2_source=l2_source,
            blob_versioned_hashes=tuple(dict.fromkeys(h.lower() for h in tx.blob_versioned_hashes)),
        )
        for tx in block.transactions
        if is_relevant_blob_transaction(tx, monitored)
    ]

    if jobs:
        logger.info(f"Created {len(jobs)} processing jobs for block {block.number}")

    return jobs
