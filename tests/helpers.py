"""
Shared constants, builders and fakes for the test suite.
"""

import threading
from typing import Dict, List

from permablob.commitments import commitment_to_versioned_hash
from permablob.errors import PersistenceError, TransientNetworkError
from permablob.models import Block, Sidecar, Transaction

BATCHER = "0x5050f69a9786f081509234f1a7f4684b5e5b76c9"
INBOX = "0xff00000000000000000000000000000000008453"
OTHER = "0x1111111111111111111111111111111111111111"

COMMITMENT_1 = "0x" + "a1" * 48
COMMITMENT_2 = "0x" + "b2" * 48
COMMITMENT_3 = "0x" + "c3" * 48
HASH_1 = commitment_to_versioned_hash(COMMITMENT_1)
HASH_2 = commitment_to_versioned_hash(COMMITMENT_2)
HASH_3 = commitment_to_versioned_hash(COMMITMENT_3)

MAINNET_DENEB_TIMESTAMP = 1710338135


def make_sidecar(commitment: str, index: int = 0, blob: str = "0x" + "01" * 32) -> Sidecar:
    return Sidecar(index=index, blob=blob, kzg_commitment=commitment, kzg_proof="0x" + "0f" * 48)


def make_block(number: int, transactions=(), timestamp: int = MAINNET_DENEB_TIMESTAMP + 120) -> Block:
    return Block(
        number=number,
        hash="0x" + f"{number:064x}",
        timestamp=timestamp,
        transactions=tuple(transactions),
    )


def blob_tx(tx_hash: str, to: str = INBOX, hashes=(HASH_1,)) -> Transaction:
    return Transaction(hash=tx_hash, from_address=BATCHER, to_address=to, blob_versioned_hashes=tuple(hashes))


class FakeChain:
    """In-memory chain client. `failures[n]` makes get_block(n) raise that many times."""

    def __init__(self, head: int = 0, blocks: Dict[int, Block] = None):
        self.head = head
        self.blocks = dict(blocks or {})
        self.failures: Dict[int, int] = {}
        self.responses: Dict[int, List[Block]] = {}
        self.get_block_calls: List[int] = []
        self.head_calls = 0

    def head_height(self) -> int:
        self.head_calls += 1
        if isinstance(self.head, Exception):
            raise self.head
        return self.head

    def get_block(self, number: int, with_transactions: bool = True) -> Block:
        self.get_block_calls.append(number)
        if self.failures.get(number, 0) > 0:
            self.failures[number] -= 1
            raise TransientNetworkError(f"boom at {number}")
        if self.responses.get(number):
            return self.responses[number].pop(0)
        return self.blocks.get(number) or make_block(number)


class MemoryCursorStore:
    def __init__(self, value: int = 0):
        self.value = value
        self.fail = False
        self.writes: List[int] = []

    def get(self) -> int:
        return self.value

    def set(self, block_number: int) -> None:
        if self.fail:
            raise PersistenceError("disk full")
        self.writes.append(block_number)
        self.value = block_number


class FakeBeacon:
    """Returns (or raises) queued responses in order; repeats the last one."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls: List[int] = []

    def get_blob_sidecars(self, slot: int):
        self.calls.append(slot)
        response = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(response, Exception):
            raise response
        return response



class BarrierChain(FakeChain):
    """get_block only returns once `parties` calls are in flight at the same time."""

    def __init__(self, head: int, parties: int, timeout: float = 5.0):
        super().__init__(head=head)
        self.barrier = threading.Barrier(parties, timeout=timeout)
        self._lock = threading.Lock()
        self.in_flight = 0
        self.max_in_flight = 0

    def get_block(self, number: int, with_transactions: bool = True) -> Block:
        with self._lock:
            self.in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            self.barrier.wait()
            return super().get_block(number, with_transactions)
        finally:
            with self._lock:
                self.in_flight -= 1


class CancellingChain(FakeChain):
    """Cancels `token` from inside the first get_block call of a range."""

    def __init__(self, head: int, token):
        super().__init__(head=head)
        self.token = token

    def get_block(self, number: int, with_transactions: bool = True) -> Block:
        self.token.cancel()
        return super().get_block(number, with_transactions)
