"""
Archival of fetched blobs.

Each blob is wrapped in a self-describing JSON container (metadata,
base64 payload, checksums) and written to a blob store; the archive
index row is recorded afterwards. The store client is constructed by
the caller and owned by the store object.
"""

import base64
import hashlib
import json
import os
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from .database import ArchivedBlob
from .errors import PermablobError
from .logger import get_logger
from .models import ArchivalOutcome, BlobArchivalDetail, FetchedBlob, FetchResult
from .normalize import hex_to_bytes

logger = get_logger()

CONTAINER_VERSION = "1.0"
CONTAINER_TYPE = "ethereum-l2-blob"


class BlobStoreError(PermablobError):
    """Raised when a blob store write fails."""
    pass


class LocalBlobStore:
    """Writes containers under a directory on the local filesystem."""

    def __init__(self, root: Path):
        self.root = Path(root)

    def put(self, key: str, body: bytes, metadata: Optional[Dict[str, str]] = None) -> str:
        path = self.root / key
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp = path.with_suffix(path.suffix + ".tmp")
            with tmp.open("wb") as f:
                f.write(body)
                f.flush()
                os.fsync(f.fileno())
            tmp.replace(path)
        except OSError as e:
            raise BlobStoreError(f"Failed to write {path}: {e}") from e
        return str(path)


class S3BlobStore:
    """Writes containers to an S3 bucket via an explicitly passed boto3 client."""

    def __init__(self, bucket: str, client):
        self.bucket = bucket
        self.client = client

    @classmethod
    def from_config(cls, config) -> "S3BlobStore":
        session = boto3.Session(region_name=config.aws_region or os.getenv("AWS_DEFAULT_REGION", "us-east-1"))
        return cls(bucket=config.s3_bucket, client=session.client("s3"))

    def put(self, key: str, body: bytes, metadata: Optional[Dict[str, str]] = None) -> str:
        try:
            self.client.put_object(
                Bucket=self.bucket,
                Key=key,
                Body=body,
                Metadata=metadata or {},
                ContentType="application/json",
            )
        except (ClientError, BotoCoreError) as e:
            raise BlobStoreError(f"Failed to upload s3://{self.bucket}/{key}: {e}") from e
        return f"s3://{self.bucket}/{key}"


def build_blob_container(result: FetchResult, blob: FetchedBlob, raw: bytes) -> Dict[str, Any]:
    """JSON container for one blob; `raw` is the decoded blob payload."""
    return {
        "version": CONTAINER_VERSION,
        "type": CONTAINER_TYPE,
        "metadata": {
            "blobHash": blob.versioned_hash,
            "l2Source": result.l2_source,
            "l1BlockNumber": result.block_number,
            "l1BlockHash": result.block_hash,
            "blobIndex": result.expected_blob_versioned_hashes.index(blob.versioned_hash),
            "timestamp": result.timestamp,
            "sizeBytes": len(raw),
            "txHash": result.transaction_hash,
            "slot": result.slot,
        },
        "blob": base64.b64encode(raw).decode("ascii"),
        "checksums": {
            "kzgCommitment": blob.kzg_commitment,
            "kzgProof": blob.kzg_proof,
            "sha256": hashlib.sha256(raw).hexdigest(),
        },
    }


class BlobArchiver:

    def __init__(self, store, repository=None, container_name: str = "eth-l2-blobs"):
        self.store = store
        self.repository = repository
        self.container_name = container_name.strip("/")

    def object_key(self, result: FetchResult, blob: FetchedBlob) -> str:
        return f"{self.container_name}/{result.l2_source}/{result.transaction_hash}-{blob.versioned_hash}.json"

    def archive(self, result: FetchResult) -> ArchivalOutcome:
        logger.info(
            f"Starting archival for tx {result.transaction_hash} from L2 source {result.l2_source}",
            blobs=len(result.fetched_blobs),
        )

        if not result.fetched_blobs:
            logger.warning(f"No blobs to archive for tx {result.transaction_hash}")
            return ArchivalOutcome(
                transaction_hash=result.transaction_hash,
                success=True,
                message="No blobs were fetched for this transaction; nothing to archive.",
            )

        details = []
        for blob in result.fetched_blobs:
            if blob.versioned_hash not in result.expected_blob_versioned_hashes:
                message = (
                    f"Fetched blob {blob.versioned_hash} not in expected list for tx "
                    f"{result.transaction_hash}; not archived"
                )
                logger.error(message)
                logger.record_error("UnexpectedBlob")
                details.append(BlobArchivalDetail(
                    versioned_hash=blob.versioned_hash, success=False, error=message
                ))
                continue
            details.append(self._archive_blob(result, blob))

        success = all(d.success for d in details)
        archived = sum(1 for d in details if d.success)
        logger.record_blobs_archived(archived)
        return ArchivalOutcome(
            transaction_hash=result.transaction_hash,
            success=success,
            message=(
                "All fetched blobs processed for archival."
                if success else "Some blobs failed to archive."
            ),
            details=details,
        )

    def _archive_blob(self, result: FetchResult, blob: FetchedBlob) -> BlobArchivalDetail:
        try:
            raw = hex_to_bytes(blob.blob)
            container = build_blob_container(result, blob, raw)
            body = json.dumps(container, separators=(",", ":")).encode("utf-8")
            sha256 = container["checksums"]["sha256"]
            location = self.store.put(
                self.object_key(result, blob),
                body,
                metadata={"blob-hash": blob.versioned_hash, "sha256": sha256},
            )
            if self.repository is not None:
                self.repository.save(ArchivedBlob(
                    blob_hash=blob.versioned_hash,
                    location=location,
                    l1_block_number=result.block_number,
                    l2_source=result.l2_source,
                    tx_hash=result.transaction_hash,
                    size=len(raw),
                    sha256=sha256,
                    archived_at=datetime.now(),
                ))
            logger.info(f"Archived blob {blob.versioned_hash}", location=location)
            return BlobArchivalDetail(
                versioned_hash=blob.versioned_hash,
                success=True,
                location=location,
                sha256=sha256,
            )
        except (ValueError, PermablobError) as e:
            message = (
                f"Failed to prepare or archive blob {blob.versioned_hash} "
                f"for tx {result.transaction_hash}: {e}"
            )
            logger.error(message)
            logger.record_error(type(e).__name__)
            return BlobArchivalDetail(versioned_hash=blob.versioned_hash, success=False, error=message)


def create_blob_store(config):
    if config.archive_backend == "s3":
        return S3BlobStore.from_config(config)
    return LocalBlobStore(config.archive_dir)
