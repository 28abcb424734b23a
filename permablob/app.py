import argparse
import dataclasses
import json
import signal
import threading
from pathlib import Path

from . import __version__
from .archiver import BlobArchiver, create_blob_store
from .beacon import BeaconClient
from .cancellation import CancellationToken
from .chain import Web3ChainClient
from .config import Config, load_config
from .cursor import MonitorCursor
from .database import create_session_factory
from .env import load_env
from .errors import ConfigError
from .fetcher import BlobFetcher
from .jobqueue import (
    BLOB_ARCHIVE_QUEUE,
    BLOB_FETCH_DEAD_LETTER_QUEUE,
    BLOB_FETCH_QUEUE,
    SqlJobQueue,
)
from .logger import get_logger
from .monitor import ScanLoop, settings_from_config
from .scanner import scan_block
from .schema import validate_config
from .slots import SlotResolver
from .storage import ArchivedBlobRepository, SqlCursorStore
from .workers import ArchiveWorker, FetchWorker, requeue_dead_letters

logger = get_logger()


def build_queue(config: Config, session_factory) -> SqlJobQueue:
    return SqlJobQueue(session_factory, visibility_timeout=config.queue_visibility_timeout)


def build_monitor(config: Config, session_factory, queue, token: CancellationToken) -> ScanLoop:
    chain = Web3ChainClient(config.eth_rpc_url, timeout=config.request_timeout)
    cursor = MonitorCursor.initialize(SqlCursorStore(session_factory), chain, config.blocks_from_head)

    def emit(job):
        queue.push(BLOB_FETCH_QUEUE, job.to_dict())

    return ScanLoop(chain, cursor, emit, settings_from_config(config), token)


def build_fetch_worker(config: Config, queue, token: CancellationToken) -> FetchWorker:
    fetcher = BlobFetcher(
        BeaconClient(config.beacon_api_url, timeout=config.request_timeout),
        SlotResolver.for_network(config.network),
        retry_count=config.fetch_retry_count,
        retry_delay=config.fetch_retry_delay,
    )
    return FetchWorker(queue, fetcher, token)


def build_archive_worker(config: Config, session_factory, queue, token: CancellationToken) -> ArchiveWorker:
    archiver = BlobArchiver(
        create_blob_store(config),
        ArchivedBlobRepository(session_factory),
        container_name=config.archive_container,
    )
    return ArchiveWorker(queue, archiver, token)


def install_signal_handlers(token: CancellationToken) -> None:
    def handler(signum, frame):
        logger.info(f"Received signal {signum}; shutting down gracefully...")
        token.cancel()

    signal.signal(signal.SIGINT, handler)
    signal.signal(signal.SIGTERM, handler)


def _require(config: Config, rpc: bool = False, beacon: bool = False) -> None:
    problems = validate_config(config, require_rpc=rpc, require_beacon=beacon)
    if problems:
        lines = "\n".join(f" - {p}" for p in problems)
        raise SystemExit(f"Invalid configuration:\n{lines}")
    logger.configure(level=config.log_level, log_dir=config.log_dir)


def cmd_init_db(args: argparse.Namespace, config: Config) -> None:
    _require(config)
    create_session_factory(config.database_path)
    print(f"Database ready: {config.database_path}")


def cmd_status(args: argparse.Namespace, config: Config) -> None:
    _require(config)
    session_factory = create_session_factory(config.database_path)
    queue = build_queue(config, session_factory)
    status = {
        "cursor": SqlCursorStore(session_factory).get(),
        "archived_blobs": ArchivedBlobRepository(session_factory).count(),
        "queues": {
            name: queue.size(name)
            for name in (BLOB_FETCH_QUEUE, BLOB_ARCHIVE_QUEUE, BLOB_FETCH_DEAD_LETTER_QUEUE)
        },
    }
    print(json.dumps(status, indent=2))


def cmd_scan_block(args: argparse.Namespace, config: Config) -> None:
    _require(config, rpc=True)
    chain = Web3ChainClient(config.eth_rpc_url, timeout=config.request_timeout)
    block = chain.get_block(args.number, with_transactions=True)
    jobs = scan_block(block, config.base_contracts, config.l2_source)
    if not jobs:
        print(f"No qualifying blob transactions in block {args.number}.")
        return
    for job in jobs:
        print(json.dumps(job.to_dict(), indent=2))


def cmd_monitor(args: argparse.Namespace, config: Config) -> None:
    _require(config, rpc=True)
    token = CancellationToken()
    install_signal_handlers(token)
    session_factory = create_session_factory(config.database_path)
    monitor = build_monitor(config, session_factory, build_queue(config, session_factory), token)
    monitor.run()
    logger.log_metrics_summary()


def cmd_fetch_worker(args: argparse.Namespace, config: Config) -> None:
    _require(config, beacon=True)
    token = CancellationToken()
    install_signal_handlers(token)
    session_factory = create_session_factory(config.database_path)
    build_fetch_worker(config, build_queue(config, session_factory), token).run()
    logger.log_metrics_summary()


def cmd_archive_worker(args: argparse.Namespace, config: Config) -> None:
    _require(config)
    token = CancellationToken()
    install_signal_handlers(token)
    session_factory = create_session_factory(config.database_path)
    build_archive_worker(config, session_factory, build_queue(config, session_factory), token).run()
    logger.log_metrics_summary()


def cmd_run(args: argparse.Namespace, config: Config) -> None:
    _require(config, rpc=True, beacon=True)
    token = CancellationToken()
    install_signal_handlers(token)
    session_factory = create_session_factory(config.database_path)
    queue = build_queue(config, session_factory)

    # Start-up failures (e.g. cursor initialization) are fatal before any thread starts
    monitor = build_monitor(config, session_factory, queue, token)
    runners = [("monitor", monitor.run)]
    for i in range(args.fetch_workers):
        runners.append((f"fetch-{i + 1}", build_fetch_worker(config, queue, token).run))
    runners.append(("archive", build_archive_worker(config, session_factory, queue, token).run))

    threads = [threading.Thread(target=fn, name=name, daemon=True) for name, fn in runners]
    for t in threads:
        t.start()
    logger.info("Ethereum L2 blob archival system started", threads=[t.name for t in threads])

    # Join with a timeout so the main thread keeps receiving signals
    while any(t.is_alive() for t in threads):
        for t in threads:
            t.join(timeout=1.0)
    logger.log_metrics_summary()


def cmd_requeue_dead_letters(args: argparse.Namespace, config: Config) -> None:
    _require(config)
    session_factory = create_session_factory(config.database_path)
    moved = requeue_dead_letters(
        build_queue(config, session_factory),
        limit=args.limit,
        include_fatal=args.include_fatal,
    )
    print(f"Requeued {moved} jobs onto {BLOB_FETCH_QUEUE}.")


def apply_overrides(config: Config, args: argparse.Namespace) -> Config:
    overrides = {}
    if args.rpc_url:
        overrides["eth_rpc_url"] = args.rpc_url
    if args.beacon_url:
        overrides["beacon_api_url"] = args.beacon_url
    if args.db:
        overrides["database_path"] = Path(args.db)
    if args.log_level:
        overrides["log_level"] = args.log_level.upper()
    return dataclasses.replace(config, **overrides) if overrides else config


def main(argv=None):
    # Load .env if present (ETH_RPC_URL, BEACON_API_URL, BASE_CONTRACTS, etc.)
    load_env()
    parser = argparse.ArgumentParser(prog="permablob", description="Ethereum L2 blob archiver")
    parser.add_argument("--version", action="store_true", help="Show version")
    parser.add_argument("--rpc-url", help="Execution-layer RPC URL (or set ETH_RPC_URL)")
    parser.add_argument("--beacon-url", help="Beacon node REST URL (or set BEACON_API_URL)")
    parser.add_argument("--db", help="SQLite database path (or set SQLITE_PATH)")
    parser.add_argument("--log-level", help="DEBUG, INFO, WARNING, ERROR (or set LOG_LEVEL)")

    subparsers = parser.add_subparsers(dest="command")
    ini = subparsers.add_parser("init-db", help="Create the SQLite database and tables")
    ini.set_defaults(func=cmd_init_db)

    sts = subparsers.add_parser("status", help="Show cursor, archive count and queue depths")
    sts.set_defaults(func=cmd_status)

    scb = subparsers.add_parser("scan-block", help="Print the jobs a single block would produce")
    scb.add_argument("--number", type=int, required=True, help="Block number")
    scb.set_defaults(func=cmd_scan_block)

    mon = subparsers.add_parser("monitor", help="Run the block-scanning loop")
    mon.set_defaults(func=cmd_monitor)

    fwk = subparsers.add_parser("fetch-worker", help="Fetch blob sidecars for queued jobs")
    fwk.set_defaults(func=cmd_fetch_worker)

    awk = subparsers.add_parser("archive-worker", help="Archive fetched blobs")
    awk.set_defaults(func=cmd_archive_worker)

    run = subparsers.add_parser("run", help="Run monitor, fetch and archive workers in one process")
    run.add_argument("--fetch-workers", type=int, default=1, help="Number of fetch worker threads (default 1)")
    run.set_defaults(func=cmd_run)

    rdl = subparsers.add_parser("requeue-dead-letters", help="Move dead-lettered fetches back onto the fetch queue")
    rdl.add_argument("--limit", type=int, help="Maximum number of jobs to requeue")
    rdl.add_argument("--include-fatal", action="store_true", help="Also requeue jobs that failed fatally")
    rdl.set_defaults(func=cmd_requeue_dead_letters)

    args = parser.parse_args(argv)

    if args.version:
        print(__version__)
        return

    if not hasattr(args, "func"):
        parser.print_help()
        return

    try:
        config = apply_overrides(load_config(strict=False), args)
    except ConfigError as e:
        raise SystemExit(str(e))
    args.func(args, config)


if __name__ == "__main__":
    main()
