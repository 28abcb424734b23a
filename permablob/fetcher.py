"""
Blob retrieval and reconciliation for a single job.

`BlobFetcher.fetch` resolves the job's slot, pulls the slot's sidecars
from the beacon node with a bounded fixed-delay retry, and keeps the
sidecars whose derived versioned hash the job expects. It never raises:
every failure mode ends up in the returned FetchResult.
"""

import time
from typing import Callable, List, Set

from .commitments import commitment_to_versioned_hash
from .errors import MalformedResponseError, PreBlobSupportError, TransientNetworkError
from .logger import get_logger
from .models import FetchedBlob, FetchResult, FetchStatus, Job, Sidecar
from .normalize import normalize_hex
from .retry import RetryError, exponential_backoff

logger = get_logger()

DEFAULT_RETRY_COUNT = 3
DEFAULT_RETRY_DELAY = 2.0


class BlobFetcher:

    def __init__(
        self,
        beacon,
        slot_resolver,
        retry_count: int = DEFAULT_RETRY_COUNT,
        retry_delay: float = DEFAULT_RETRY_DELAY,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Args:
            beacon: Client exposing get_blob_sidecars(slot)
            slot_resolver: Callable mapping a block timestamp to a slot
            retry_count: Total request attempts per job (>= 1)
            retry_delay: Fixed delay in seconds between attempts
            sleep: Function used to wait between attempts
        """
        if retry_count < 1:
            raise ValueError("retry_count must be >= 1")
        self.beacon = beacon
        self.slot_resolver = slot_resolver
        self.retry_count = retry_count
        self.retry_delay = retry_delay
        self._sleep = sleep

    def fetch(self, job: Job) -> FetchResult:
        logger.info(
            f"Fetching blobs for tx {job.transaction_hash} in block {job.block_number}",
            expected=len(job.blob_versioned_hashes),
        )
        logger.record_fetch_attempt(job.l2_source)
        try:
            slot = self.slot_resolver(job.timestamp)
        except PreBlobSupportError as e:
            logger.error(f"Job {job.transaction_hash} is not fetchable: {e}")
            logger.record_error(type(e).__name__)
            result = FetchResult.for_job(job, slot=None)
            result.fatal = True
            result.errors.append(str(e))
            logger.record_fetch_outcome(job.l2_source, result.status.value)
            return result

        result = FetchResult.for_job(job, slot=slot)
        try:
            sidecars = self._request_with_retry(job, slot)
        except RetryError as e:
            message = (
                f"Failed to fetch blob sidecars for slot {slot} after "
                f"{e.attempts} attempts: {e.__cause__ or e}"
            )
            logger.error(message, tx=job.transaction_hash)
            logger.record_error(type(e.__cause__ or e).__name__)
            result.errors.append(message)
            sidecars = []
        except Exception as e:
            # Boundary for unexpected client failures; one job must not take down a worker
            message = f"Unexpected error fetching sidecars for slot {slot}: {e}"
            logger.error(message, tx=job.transaction_hash)
            logger.record_error(type(e).__name__)
            result.errors.append(message)
            sidecars = []

        self._reconcile(job, sidecars, result)
        logger.record_fetch_outcome(job.l2_source, result.status.value)
        return result

    def _request_with_retry(self, job: Job, slot: int) -> List[Sidecar]:
        def on_retry(attempt, exc, delay):
            logger.warning(
                f"Sidecar request attempt {attempt} failed for slot {slot}; retrying in {delay}s",
                tx=job.transaction_hash,
                error=str(exc),
            )

        @exponential_backoff(
            max_retries=self.retry_count - 1,
            base_delay=self.retry_delay,
            max_delay=self.retry_delay,
            exponential_base=1.0,
            exceptions=(TransientNetworkError, MalformedResponseError),
            on_retry=on_retry,
            sleep=self._sleep,
        )
        def request() -> List[Sidecar]:
            logger.record_sidecar_request()
            return self.beacon.get_blob_sidecars(slot)

        return request()

    def _reconcile(self, job: Job, sidecars: List[Sidecar], result: FetchResult) -> None:
        expected = [h.lower() for h in job.blob_versioned_hashes]
        expected_set = set(expected)
        found: Set[str] = set()

        if sidecars:
            logger.debug(f"Received {len(sidecars)} sidecars for slot {result.slot}")

        for sidecar in sidecars:
            try:
                commitment = normalize_hex(sidecar.kzg_commitment)
                versioned_hash = commitment_to_versioned_hash(commitment)
                if versioned_hash not in expected_set or versioned_hash in found:
                    continue
                result.fetched_blobs.append(FetchedBlob(
                    versioned_hash=versioned_hash,
                    blob=normalize_hex(sidecar.blob),
                    kzg_proof=normalize_hex(sidecar.kzg_proof),
                    kzg_commitment=commitment,
                ))
                found.add(versioned_hash)
            except ValueError as e:
                message = (
                    f"Error processing sidecar {sidecar.index} at slot {result.slot} "
                    f"(commitment: {sidecar.kzg_commitment[:20]}...): {e}"
                )
                logger.warning(message)
                result.errors.append(message)

        result.all_found = expected_set <= found
        if not result.all_found:
            missing = [h for h in expected if h not in found]
            message = (
                f"Not all expected blobs found for tx {job.transaction_hash}. "
                f"Expected {len(expected_set)}, found {len(found)}. Missing: {', '.join(missing)}"
            )
            logger.warning(message)
            result.errors.append(message)

        result.status = _status_for(result.all_found, len(found))
        logger.info(
            f"Processed blobs for tx {job.transaction_hash}: "
            f"{len(found)}/{len(expected_set)} found",
            status=result.status.value,
        )


def _status_for(all_found: bool, found_count: int) -> FetchStatus:
    if all_found:
        return FetchStatus.COMPLETE
    if found_count > 0:
        return FetchStatus.PARTIAL
    return FetchStatus.FAILED
