"""
Data records passed between the scanner, the queue, the fetcher and
the archiver.

Jobs and fetch results travel through the job queue as JSON, so each
carries `to_dict`/`from_dict`. Hex values are canonical: lowercase with
a 0x prefix.
"""

from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union

from .normalize import normalize_hex


@dataclass(frozen=True)
class Transaction:
    hash: str
    from_address: str
    to_address: Optional[str]
    blob_versioned_hashes: Tuple[str, ...] = ()


@dataclass(frozen=True)
class Block:
    """Execution-layer block. A transaction given as a bare hash string is
    an unhydrated reference."""

    number: Optional[int]
    hash: Optional[str]
    timestamp: int
    transactions: Tuple[Union[Transaction, str], ...] = ()

    @property
    def is_resolved(self) -> bool:
        return self.number is not None and self.hash is not None

    @property
    def is_hydrated(self) -> bool:
        return all(isinstance(tx, Transaction) for tx in self.transactions)


@dataclass(frozen=True)
class Job:
    transaction_hash: str
    from_address: str
    to_address: str
    block_number: int
    block_hash: str
    timestamp: int
    l2_source: str
    blob_versioned_hashes: Tuple[str, ...]

    def __post_init__(self):
        # Jobs may arrive from any producer; matching relies on canonical hashes
        object.__setattr__(
            self,
            "blob_versioned_hashes",
            tuple(dict.fromkeys(normalize_hex(h) for h in self.blob_versioned_hashes)),
        )

    @property
    def key(self) -> Tuple[str, str]:
        return (self.transaction_hash, self.l2_source)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["blob_versioned_hashes"] = list(self.blob_versioned_hashes)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Job":
        return cls(
            transaction_hash=data["transaction_hash"],
            from_address=data["from_address"],
            to_address=data["to_address"],
            block_number=int(data["block_number"]),
            block_hash=data["block_hash"],
            timestamp=int(data["timestamp"]),
            l2_source=data["l2_source"],
            blob_versioned_hashes=tuple(data["blob_versioned_hashes"]),
        )


@dataclass(frozen=True)
class Sidecar:
    """One entry of a consensus-layer blob_sidecars response."""

    index: Optional[int]
    blob: str
    kzg_commitment: str
    kzg_proof: str


@dataclass(frozen=True)
class FetchedBlob:
    versioned_hash: str
    blob: str
    kzg_proof: str
    kzg_commitment: str


class FetchStatus(str, Enum):
    COMPLETE = "complete"
    PARTIAL = "partial"
    FAILED = "failed"


@dataclass
class FetchResult:
    transaction_hash: str
    from_address: str
    to_address: str
    block_number: int
    block_hash: str
    timestamp: int
    l2_source: str
    expected_blob_versioned_hashes: List[str]
    slot: Optional[int]
    fetched_blobs: List[FetchedBlob] = field(default_factory=list)
    all_found: bool = False
    status: FetchStatus = FetchStatus.FAILED
    fatal: bool = False
    errors: List[str] = field(default_factory=list)

    @classmethod
    def for_job(cls, job: Job, slot: Optional[int]) -> "FetchResult":
        return cls(
            transaction_hash=job.transaction_hash,
            from_address=job.from_address,
            to_address=job.to_address,
            block_number=job.block_number,
            block_hash=job.block_hash,
            timestamp=job.timestamp,
            l2_source=job.l2_source,
            expected_blob_versioned_hashes=list(job.blob_versioned_hashes),
            slot=slot,
        )

    def to_job(self) -> Job:
        return Job(
            transaction_hash=self.transaction_hash,
            from_address=self.from_address,
            to_address=self.to_address,
            block_number=self.block_number,
            block_hash=self.block_hash,
            timestamp=self.timestamp,
            l2_source=self.l2_source,
            blob_versioned_hashes=tuple(self.expected_blob_versioned_hashes),
        )

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FetchResult":
        slot = data.get("slot")
        return cls(
            transaction_hash=data["transaction_hash"],
            from_address=data["from_address"],
            to_address=data["to_address"],
            block_number=int(data["block_number"]),
            block_hash=data["block_hash"],
            timestamp=int(data["timestamp"]),
            l2_source=data["l2_source"],
            expected_blob_versioned_hashes=[normalize_hex(h) for h in data["expected_blob_versioned_hashes"]],
            slot=int(slot) if slot is not None else None,
            fetched_blobs=[FetchedBlob(**b) for b in data.get("fetched_blobs", [])],
            all_found=bool(data.get("all_found", False)),
            status=FetchStatus(data.get("status", FetchStatus.FAILED.value)),
            fatal=bool(data.get("fatal", False)),
            errors=list(data.get("errors") or []),
        )


@dataclass
class BlobArchivalDetail:
    versioned_hash: str
    success: bool
    location: Optional[str] = None
    sha256: Optional[str] = None
    error: Optional[str] = None


@dataclass
class ArchivalOutcome:
    transaction_hash: str
    success: bool
    message: str
    details: List[BlobArchivalDetail] = field(default_factory=list)
    error: Optional[str] = None
