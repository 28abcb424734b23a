from typing import Any, List
from urllib.parse import urlparse

from .normalize import normalize_address
from .slots import NETWORKS

LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
ARCHIVE_BACKENDS = {"local", "s3"}


def _is_non_empty_str(v: Any) -> bool:
    return isinstance(v, str) and v.strip() != ""


def _valid_url(v: str) -> bool:
    try:
        p = urlparse(v)
        return bool(p.scheme in ("http", "https") and p.netloc)
    except ValueError:
        return False


def validate_config(config, require_rpc: bool = True, require_beacon: bool = False) -> List[str]:
    """
    Returns a list of validation error messages. Empty list means valid.
    """
    errors: List[str] = []

    if _is_non_empty_str(config.eth_rpc_url):
        if not _valid_url(config.eth_rpc_url):
            errors.append("ETH_RPC_URL must be an absolute http(s) URL")
    elif require_rpc:
        errors.append("ETH_RPC_URL is required")

    if _is_non_empty_str(config.beacon_api_url):
        if not _valid_url(config.beacon_api_url):
            errors.append("BEACON_API_URL must be an absolute http(s) URL")
    elif require_beacon:
        errors.append("BEACON_API_URL is required")

    for addr in config.base_contracts:
        try:
            normalize_address(addr)
        except ValueError:
            errors.append(f"BASE_CONTRACTS entry is not a 20-byte hex address: {addr}")

    if not _is_non_empty_str(config.l2_source):
        errors.append("L2_SOURCE must be a non-empty string")
    if config.network not in NETWORKS:
        errors.append(f"NETWORK must be one of: {', '.join(sorted(NETWORKS))}")

    # Zero is allowed for depth-like settings
    if config.confirmations < 0:
        errors.append("CONFIRMATIONS must be >= 0")
    if config.blocks_from_head < 0:
        errors.append("BLOCKS_FROM_HEAD must be >= 0")
    for name, value in (
        ("BATCH_SIZE", config.batch_size),
        ("SCAN_WINDOW", config.scan_window),
        ("BLOB_FETCHER_RETRY_COUNT", config.fetch_retry_count),
    ):
        if value < 1:
            errors.append(f"{name} must be >= 1")
    for name, value in (
        ("POLL_INTERVAL_SECONDS", config.poll_interval),
        ("ERROR_BACKOFF_SECONDS", config.error_backoff),
        ("BLOB_FETCHER_RETRY_DELAY_MS", config.fetch_retry_delay),
    ):
        if value < 0:
            errors.append(f"{name} must be >= 0")
    if config.request_timeout <= 0:
        errors.append("REQUEST_TIMEOUT_SECONDS must be > 0")
    if config.queue_visibility_timeout <= 0:
        errors.append("QUEUE_VISIBILITY_TIMEOUT_SECONDS must be > 0")

    if config.archive_backend not in ARCHIVE_BACKENDS:
        errors.append(f"ARCHIVE_BACKEND must be one of: {', '.join(sorted(ARCHIVE_BACKENDS))}")
    elif config.archive_backend == "s3" and not _is_non_empty_str(config.s3_bucket):
        errors.append("S3_BUCKET is required when ARCHIVE_BACKEND=s3")

    if config.log_level not in LOG_LEVELS:
        errors.append(f"LOG_LEVEL must be one of: {', '.join(sorted(LOG_LEVELS))}")

    return errors
