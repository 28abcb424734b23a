"""
Service configuration read from the environment.

`load_env()` pulls in a local .env first; CLI flags may then override
individual fields with `dataclasses.replace`.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Mapping, Optional

from .errors import ConfigError
from .schema import validate_config


@dataclass(frozen=True)
class Config:
    eth_rpc_url: str = ""
    beacon_api_url: str = ""
    base_contracts: List[str] = field(default_factory=list)
    l2_source: str = "base"
    network: str = "mainnet"

    # Scan loop
    confirmations: int = 3
    batch_size: int = 10
    scan_window: int = 100
    blocks_from_head: int = 0
    poll_interval: float = 12.0
    error_backoff: float = 5.0

    # Blob fetcher
    fetch_retry_count: int = 3
    fetch_retry_delay: float = 2.0
    request_timeout: float = 15.0

    # Persistence and queueing
    database_path: Path = Path("data/permablob.db")
    queue_visibility_timeout: float = 300.0

    # Archival
    archive_backend: str = "local"
    archive_dir: Path = Path("data/archive")
    archive_container: str = "eth-l2-blobs"
    s3_bucket: Optional[str] = None
    aws_region: Optional[str] = None

    # Logging
    log_level: str = "INFO"
    log_dir: Path = Path("logs")


def _int(env: Mapping[str, str], key: str, default: int) -> int:
    raw = env.get(key)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigError([f"{key} must be an integer, got {raw!r}"])


def _float(env: Mapping[str, str], key: str, default: float) -> float:
    raw = env.get(key)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigError([f"{key} must be a number, got {raw!r}"])


def _list(env: Mapping[str, str], key: str) -> List[str]:
    raw = env.get(key) or ""
    return [x.strip() for x in raw.split(",") if x.strip()]


def load_config(environ: Optional[Mapping[str, str]] = None, strict: bool = True) -> Config:
    """
    Build a Config from environment variables.

    Args:
        environ: Mapping to read from (default: os.environ)
        strict: Raise ConfigError when validation finds problems

    Returns:
        Config instance
    """
    env = os.environ if environ is None else environ

    config = Config(
        eth_rpc_url=env.get("ETH_RPC_URL", ""),
        beacon_api_url=env.get("BEACON_API_URL", ""),
        base_contracts=_list(env, "BASE_CONTRACTS"),
        l2_source=env.get("L2_SOURCE") or "base",
        network=(env.get("NETWORK") or "mainnet").lower(),
        confirmations=_int(env, "CONFIRMATIONS", 3),
        batch_size=_int(env, "BATCH_SIZE", 10),
        scan_window=_int(env, "SCAN_WINDOW", 100),
        blocks_from_head=_int(env, "BLOCKS_FROM_HEAD", 0),
        poll_interval=_float(env, "POLL_INTERVAL_SECONDS", 12.0),
        error_backoff=_float(env, "ERROR_BACKOFF_SECONDS", 5.0),
        fetch_retry_count=_int(env, "BLOB_FETCHER_RETRY_COUNT", 3),
        fetch_retry_delay=_int(env, "BLOB_FETCHER_RETRY_DELAY_MS", 2000) / 1000.0,
        request_timeout=_float(env, "REQUEST_TIMEOUT_SECONDS", 15.0),
        database_path=Path(env.get("SQLITE_PATH") or "data/permablob.db"),
        queue_visibility_timeout=_float(env, "QUEUE_VISIBILITY_TIMEOUT_SECONDS", 300.0),
        archive_backend=(env.get("ARCHIVE_BACKEND") or "local").lower(),
        archive_dir=Path(env.get("ARCHIVE_DIR") or "data/archive"),
        archive_container=env.get("ARCHIVE_CONTAINER_NAME") or "eth-l2-blobs",
        s3_bucket=env.get("S3_BUCKET") or None,
        aws_region=env.get("AWS_DEFAULT_REGION") or None,
        log_level=(env.get("LOG_LEVEL") or "INFO").upper(),
        log_dir=Path(env.get("LOG_DIR") or "logs"),
    )

    if strict:
        problems = validate_config(config)
        if problems:
            raise ConfigError(problems)
    return config
