"""
Queue consumers for the fetch and archive stages.

Both workers follow the same delivery contract: a message is acked only
after its handoff succeeded, and released for redelivery otherwise.
Payloads that cannot be decoded are logged and acked so they do not
loop forever.
"""

from typing import Optional

from .cancellation import CancellationToken
from .jobqueue import (
    BLOB_ARCHIVE_QUEUE,
    BLOB_FETCH_DEAD_LETTER_QUEUE,
    BLOB_FETCH_QUEUE,
    Delivery,
)
from .logger import get_logger
from .models import FetchResult, Job

logger = get_logger()

POP_TIMEOUT_SECONDS = 5.0
QUEUE_ERROR_BACKOFF_SECONDS = 5.0


class _Worker:
    name = "Worker"
    input_queue = ""

    def __init__(self, queue, token: Optional[CancellationToken] = None, pop_timeout: float = POP_TIMEOUT_SECONDS):
        self.queue = queue
        self.token = token or CancellationToken()
        self.pop_timeout = pop_timeout

    def run(self) -> None:
        logger.info(f"[{self.name}] Starting work loop on {self.input_queue}")
        while not self.token.cancelled:
            try:
                self.process_one()
            except Exception as e:
                logger.error(f"[{self.name}] Error during queue operation: {e}")
                logger.record_error(type(e).__name__)
                if self.token.wait(QUEUE_ERROR_BACKOFF_SECONDS):
                    break
        logger.info(f"[{self.name}] Work loop stopped.")

    def process_one(self) -> bool:
        """Handle at most one delivery. Returns False when the queue was empty."""
        delivery = self.queue.pop(self.input_queue, timeout=self.pop_timeout)
        if delivery is None:
            logger.debug(f"[{self.name}] No message in {self.input_queue}, waiting...")
            return False
        try:
            self.handle(delivery)
        except (KeyError, TypeError, ValueError) as e:
            logger.error(
                f"[{self.name}] Dropping undecodable message: {e}",
                receipt=delivery.receipt,
                payload=delivery.payload,
            )
            logger.record_error("PoisonMessage")
            self.queue.ack(delivery)
            return True
        except Exception:
            self.queue.release(delivery)
            raise
        self.queue.ack(delivery)
        return True

    def handle(self, delivery: Delivery) -> None:
        raise NotImplementedError


class FetchWorker(_Worker):
    """Job -> BlobFetcher -> archive queue, with dead-lettering of incomplete results."""

    name = "BlobFetcherWorker"
    input_queue = BLOB_FETCH_QUEUE

    def __init__(self, queue, fetcher, token: Optional[CancellationToken] = None, pop_timeout: float = POP_TIMEOUT_SECONDS):
        super().__init__(queue, token, pop_timeout)
        self.fetcher = fetcher

    def handle(self, delivery: Delivery) -> None:
        job = Job.from_dict(delivery.payload)
        logger.info(f"[{self.name}] Dequeued job for tx {job.transaction_hash}", deliveries=delivery.deliveries)
        result = self.fetcher.fetch(job)
        self.route(result)

    def route(self, result: FetchResult) -> None:
        payload = result.to_dict()
        if result.fetched_blobs or result.all_found:
            self.queue.push(BLOB_ARCHIVE_QUEUE, payload)
            logger.info(
                f"[{self.name}] Enqueued {len(result.fetched_blobs)} blobs for archival",
                tx=result.transaction_hash,
            )
        if not result.all_found:
            self.queue.push(BLOB_FETCH_DEAD_LETTER_QUEUE, payload)
            logger.error(
                f"[{self.name}] Fetch incomplete for tx {result.transaction_hash}; dead-lettered",
                status=result.status.value,
                fatal=result.fatal,
                errors=result.errors,
            )


class ArchiveWorker(_Worker):
    """FetchResult -> BlobArchiver."""

    name = "BlobArchiverWorker"
    input_queue = BLOB_ARCHIVE_QUEUE

    def __init__(self, queue, archiver, token: Optional[CancellationToken] = None, pop_timeout: float = POP_TIMEOUT_SECONDS):
        super().__init__(queue, token, pop_timeout)
        self.archiver = archiver

    def handle(self, delivery: Delivery) -> None:
        result = FetchResult.from_dict(delivery.payload)
        logger.info(f"[{self.name}] Dequeued archival job for tx {result.transaction_hash}")
        outcome = self.archiver.archive(result)
        if outcome.success:
            logger.info(
                f"[{self.name}] Archival done for tx {outcome.transaction_hash}: {outcome.message}",
                details=[d.location for d in outcome.details],
            )
        else:
            logger.error(
                f"[{self.name}] Archival completed with failures for tx {outcome.transaction_hash}: {outcome.message}",
                errors=[d.error for d in outcome.details if not d.success],
            )


def requeue_dead_letters(queue, limit: Optional[int] = None, include_fatal: bool = False) -> int:
    """
    Move dead-lettered fetch results back onto the fetch queue as jobs.

    Fatal results (e.g. blocks predating blob support) stay put unless
    `include_fatal` is set. Returns the number of jobs requeued.
    """
    moved = 0
    skipped = []
    try:
        while limit is None or moved < limit:
            delivery = queue.pop(BLOB_FETCH_DEAD_LETTER_QUEUE, timeout=0)
            if delivery is None:
                break
            try:
                result = FetchResult.from_dict(delivery.payload)
            except (KeyError, TypeError, ValueError) as e:
                logger.error(
                    f"Dropping undecodable dead letter: {e}",
                    receipt=delivery.receipt,
                    payload=delivery.payload,
                )
                logger.record_error("PoisonMessage")
                queue.ack(delivery)
                continue
            if result.fatal and not include_fatal:
                skipped.append(delivery)
                continue
            queue.push(BLOB_FETCH_QUEUE, result.to_job().to_dict())
            queue.ack(delivery)
            moved += 1
    finally:
        # Fatal dead letters stay queued for inspection
        for delivery in skipped:
            queue.release(delivery)
    return moved
