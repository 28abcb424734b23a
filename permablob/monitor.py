"""
The block-scanning loop.

Each iteration reads the chain head, picks the next confirmed range
(bounded by the scan window), fetches and scans the range's blocks
concurrently in sub-batches, emits the produced jobs and only then
advances the persisted cursor. A failure anywhere in the range leaves
the cursor untouched, and the same range is retried after a backoff.

Jobs are deterministic, so a retried range re-emits identical jobs;
downstream consumers must tolerate duplicates.
"""

from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple

from .cancellation import CancellationToken
from .errors import MalformedResponseError
from .logger import get_logger
from .models import Block, Job
from .normalize import normalize_address_list
from .scanner import scan_block

logger = get_logger()


class LoopState(str, Enum):
    IDLE = "idle"
    COMPUTING_RANGE = "computing_range"
    PROCESSING = "processing"
    COMMITTING = "committing"
    SLEEPING = "sleeping"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class ScanSettings:
    contract_allow_list: Tuple[str, ...]
    l2_source: str
    confirmations: int = 3
    batch_size: int = 10
    scan_window: int = 100
    poll_interval: float = 12.0
    error_backoff: float = 5.0


@dataclass(frozen=True)
class IterationOutcome:
    """What one pass of the loop did. `advanced` is False when idle or failed."""

    head: Optional[int]
    target: Optional[int]
    from_block: Optional[int] = None
    to_block: Optional[int] = None
    jobs_emitted: int = 0
    advanced: bool = False
    caught_up: bool = False


def compute_range(cursor: int, head: int, confirmations: int, window: int) -> Optional[Tuple[int, int]]:
    """
    Next inclusive block range to process, or None when caught up.

    >>> compute_range(100, 200, 3, 50)
    (101, 150)
    >>> compute_range(195, 200, 3, 50)
    (196, 197)
    """
    target = head - confirmations
    if cursor >= target:
        return None
    from_block = cursor + 1
    return from_block, min(from_block + window - 1, target)


def partition(from_block: int, to_block: int, batch_size: int) -> List[Tuple[int, int]]:
    """Split an inclusive range into consecutive sub-batches of `batch_size`."""
    batches = []
    start = from_block
    while start <= to_block:
        end = min(start + batch_size - 1, to_block)
        batches.append((start, end))
        start = end + 1
    return batches


class ScanLoop:
    """
    Long-running controller that turns confirmed blocks into jobs.

    Args:
        chain: Client with head_height() and get_block(number, with_transactions)
        cursor: MonitorCursor, advanced only after a whole range succeeds
        emit: Callable receiving each Job (e.g. a queue push)
        settings: ScanSettings
        token: CancellationToken checked at loop top and during sleeps
    """

    def __init__(
        self,
        chain,
        cursor,
        emit: Callable[[Job], None],
        settings: ScanSettings,
        token: Optional[CancellationToken] = None,
    ):
        self.chain = chain
        self.cursor = cursor
        self.emit = emit
        self.settings = settings
        self.token = token or CancellationToken()
        self.state = LoopState.IDLE

    def run(self) -> None:
        logger.info(
            "Blob monitor started",
            cursor=self.cursor.value,
            l2_source=self.settings.l2_source,
            contracts=list(self.settings.contract_allow_list),
        )
        while not self.token.cancelled:
            try:
                outcome = self.run_once()
            except Exception as e:
                logger.error(f"Monitor loop error: {e}", error_type=type(e).__name__)
                logger.record_error(type(e).__name__)
                self.state = LoopState.SLEEPING
                if self.token.wait(self.settings.error_backoff):
                    break
                continue

            if outcome.caught_up:
                self.state = LoopState.SLEEPING
                if self.token.wait(self.settings.poll_interval):
                    break

        self.state = LoopState.CANCELLED
        logger.info("Blob monitor stopped", cursor=self.cursor.value)

    def run_once(self) -> IterationOutcome:
        """
        Process at most one range. Raises on any failure, leaving the
        cursor where it was.
        """
        self.state = LoopState.COMPUTING_RANGE
        head = self.chain.head_height()
        target = head - self.settings.confirmations
        block_range = compute_range(
            self.cursor.value, head, self.settings.confirmations, self.settings.scan_window
        )
        if block_range is None:
            logger.debug(
                f"Waiting for new blocks (cursor: {self.cursor.value}, target: {target})"
            )
            return IterationOutcome(head=head, target=target, caught_up=True)

        from_block, to_block = block_range
        logger.info(f"Processing blocks {from_block} to {to_block} (latest: {head})")

        self.state = LoopState.PROCESSING
        jobs_by_block = self.process_range(from_block, to_block)

        self.state = LoopState.COMMITTING
        emitted = 0
        for number in sorted(jobs_by_block):
            for job in jobs_by_block[number]:
                self.emit(job)
                emitted += 1
        self.cursor.advance(to_block)
        logger.record_jobs_created(emitted)
        logger.info(f"Completed processing up to block {to_block}", jobs=emitted)

        return IterationOutcome(
            head=head,
            target=target,
            from_block=from_block,
            to_block=to_block,
            jobs_emitted=emitted,
            advanced=True,
            caught_up=to_block >= target,
        )

    def process_range(self, from_block: int, to_block: int) -> Dict[int, List[Job]]:
        """
        Fetch and scan every block in the range. All-or-nothing: the first
        failure is re-raised once its sub-batch has settled.
        """
        results: Dict[int, List[Job]] = {}
        batch_size = self.settings.batch_size
        with ThreadPoolExecutor(max_workers=batch_size, thread_name_prefix="scan") as pool:
            for start, end in partition(from_block, to_block, batch_size):
                logger.debug(f"Processing batch: blocks {start} to {end}")
                futures = {pool.submit(self.process_block, n): n for n in range(start, end + 1)}
                wait(futures)
                failures = [(futures[f], f.exception()) for f in futures if f.exception() is not None]
                if failures:
                    number, error = min(failures, key=lambda item: item[0])
                    logger.error(
                        f"Error processing batch {start}-{end}: block {number} failed: {error}",
                        failed_blocks=sorted(n for n, _ in failures),
                    )
                    raise error
                for future, number in futures.items():
                    results[number] = future.result()
                logger.record_blocks_scanned(end - start + 1)
        return results

    def process_block(self, number: int) -> List[Job]:
        block = self.chain.get_block(number, with_transactions=True)
        if _needs_refetch(block):
            logger.warning(f"Block {number} came back incomplete; re-fetching with full transactions")
            block = self.chain.get_block(number, with_transactions=True)
            if _needs_refetch(block):
                raise MalformedResponseError(
                    f"Block {number} is missing its number/hash or transaction bodies"
                )
        return scan_block(block, self.settings.contract_allow_list, self.settings.l2_source)


def _needs_refetch(block: Block) -> bool:
    return not block.is_resolved or not block.is_hydrated


def settings_from_config(config) -> ScanSettings:
    return ScanSettings(
        contract_allow_list=tuple(normalize_address_list(config.base_contracts)),
        l2_source=config.l2_source,
        confirmations=config.confirmations,
        batch_size=config.batch_size,
        scan_window=config.scan_window,
        poll_interval=config.poll_interval,
        error_backoff=config.error_backoff,
    )
