"""
Structured logging system for the blob archiver.

Provides centralized logging with console and file outputs, and
counters for monitoring scan, fetch, and archival health.
"""

import logging
import sys
import threading
from pathlib import Path
from typing import Optional
from datetime import datetime
import json


class StructuredLogger:
    """
    Centralized logger with support for console and file outputs.
    Tracks metrics for the scan loop and the fetch/archive workers.
    """

    def __init__(
        self,
        name: str = "permablob",
        level: str = "INFO",
        log_dir: Optional[Path] = None,
        enable_file: bool = True,
        enable_console: bool = True,
    ):
        """
        Initialize the structured logger.

        Args:
            name: Logger name
            level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
            log_dir: Directory for log files (default: logs/)
            enable_file: Write logs to file
            enable_console: Output logs to console
        """
        self.logger = logging.getLogger(name)

        # Scan loop and workers record from several threads
        self._lock = threading.Lock()
        self.metrics = {
            "rpc_calls": 0,
            "blocks_scanned": 0,
            "jobs_created": 0,
            "fetch_attempts": 0,
            "sidecar_requests": 0,
            "fetches_complete": 0,
            "fetches_partial": 0,
            "fetches_failed": 0,
            "blobs_archived": 0,
            "errors_by_type": {},
            "source_success_rate": {},
        }

        self.configure(level, log_dir, enable_file, enable_console)

    def configure(
        self,
        level: str = "INFO",
        log_dir: Optional[Path] = None,
        enable_file: bool = True,
        enable_console: bool = True,
    ):
        """Replace handlers, e.g. once the CLI has read LOG_LEVEL and LOG_DIR."""
        self.logger.setLevel(getattr(logging, level.upper()))
        for handler in list(self.logger.handlers):
            self.logger.removeHandler(handler)
            handler.close()

        if enable_console:
            console_handler = logging.StreamHandler(sys.stdout)
            console_handler.setLevel(getattr(logging, level.upper()))
            console_formatter = logging.Formatter(
                fmt='%(asctime)s | %(levelname)-8s | %(name)s | %(message)s',
                datefmt='%Y-%m-%d %H:%M:%S'
            )
            console_handler.setFormatter(console_formatter)
            self.logger.addHandler(console_handler)

        if enable_file:
            if log_dir is None:
                log_dir = Path("logs")
            log_dir = Path(log_dir)
            log_dir.mkdir(parents=True, exist_ok=True)

            log_file = log_dir / f"permablob_{datetime.now().strftime('%Y%m%d')}.log"
            file_handler = logging.FileHandler(log_file, encoding='utf-8')
            file_handler.setLevel(logging.DEBUG)  # Always log everything to file
            file_formatter = logging.Formatter(
                fmt='%(asctime)s | %(levelname)-8s | %(name)s:%(threadName)s | %(message)s',
                datefmt='%Y-%m-%d %H:%M:%S'
            )
            file_handler.setFormatter(file_formatter)
            self.logger.addHandler(file_handler)

    def debug(self, message: str, **kwargs):
        """Log debug message with optional context."""
        self._log(logging.DEBUG, message, kwargs)

    def info(self, message: str, **kwargs):
        """Log info message with optional context."""
        self._log(logging.INFO, message, kwargs)

    def warning(self, message: str, **kwargs):
        """Log warning message with optional context."""
        self._log(logging.WARNING, message, kwargs)

    def error(self, message: str, **kwargs):
        """Log error message with optional context."""
        self._log(logging.ERROR, message, kwargs)

    def critical(self, message: str, **kwargs):
        """Log critical message with optional context."""
        self._log(logging.CRITICAL, message, kwargs)

    def _log(self, level: int, message: str, context: dict):
        """Internal logging method with context."""
        if context:
            message = f"{message} | Context: {json.dumps(context, default=str)}"
        self.logger.log(level, message)

    # Metric tracking methods

    def record_rpc_call(self):
        """Increment execution-layer RPC call counter."""
        with self._lock:
            self.metrics["rpc_calls"] += 1

    def record_blocks_scanned(self, count: int = 1):
        with self._lock:
            self.metrics["blocks_scanned"] += count

    def record_jobs_created(self, count: int):
        with self._lock:
            self.metrics["jobs_created"] += count

    def record_sidecar_request(self):
        """Count one beacon blob_sidecars request, retries included."""
        with self._lock:
            self.metrics["sidecar_requests"] += 1

    def record_fetch_attempt(self, l2_source: str):
        """Record one job fetch for an L2 source, however many requests it takes."""
        with self._lock:
            self.metrics["fetch_attempts"] += 1
            stats = self.metrics["source_success_rate"].setdefault(
                l2_source, {"attempts": 0, "successes": 0}
            )
            stats["attempts"] += 1

    def record_fetch_outcome(self, l2_source: str, status: str):
        """Record the final status of a fetch (complete, partial, failed)."""
        with self._lock:
            key = f"fetches_{status}"
            if key in self.metrics:
                self.metrics[key] += 1
            if status == "complete" and l2_source in self.metrics["source_success_rate"]:
                self.metrics["source_success_rate"][l2_source]["successes"] += 1

    def record_blobs_archived(self, count: int):
        with self._lock:
            self.metrics["blobs_archived"] += count

    def record_error(self, error_type: str):
        """Count an error by its type name."""
        with self._lock:
            errors = self.metrics["errors_by_type"]
            errors[error_type] = errors.get(error_type, 0) + 1

    def get_metrics(self) -> dict:
        """Return current metrics."""
        with self._lock:
            metrics_copy = json.loads(json.dumps(self.metrics))
        for source, stats in metrics_copy["source_success_rate"].items():
            if stats["attempts"] > 0:
                stats["success_rate"] = round(
                    stats["successes"] / stats["attempts"], 3
                )

        return metrics_copy

    def log_metrics_summary(self):
        """Log a summary of current metrics."""
        metrics = self.get_metrics()

        fetched = metrics["fetches_complete"] + metrics["fetches_partial"] + metrics["fetches_failed"]
        complete_rate = 0
        if fetched > 0:
            complete_rate = round(metrics["fetches_complete"] / fetched * 100, 1)

        self.info("=== Blob Archival Session Metrics ===")
        self.info(f"RPC Calls: {metrics['rpc_calls']}")
        self.info(f"Blocks Scanned: {metrics['blocks_scanned']} (jobs created: {metrics['jobs_created']})")
        self.info(
            f"Fetches: {metrics['fetches_complete']}/{fetched} complete ({complete_rate}%), "
            f"{metrics['fetches_partial']} partial, {metrics['fetches_failed']} failed"
        )
        self.info(f"Sidecar Requests: {metrics['sidecar_requests']}")
        self.info(f"Blobs Archived: {metrics['blobs_archived']}")

        if metrics["source_success_rate"]:
            self.info("L2 Source Success Rates:")
            for source, stats in metrics["source_success_rate"].items():
                rate = stats.get("success_rate", 0) * 100
                self.info(f"  {source}: {stats['successes']}/{stats['attempts']} ({rate:.1f}%)")

        if metrics["errors_by_type"]:
            self.info("Error Types:")
            for error_type, count in metrics["errors_by_type"].items():
                self.info(f"  {error_type}: {count}")


# Global logger instance
_global_logger: Optional[StructuredLogger] = None


def get_logger(
    name: str = "permablob",
    level: str = "INFO",
    **kwargs
) -> StructuredLogger:
    """
    Get or create the global logger instance.

    Args:
        name: Logger name
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        **kwargs: Additional arguments passed to StructuredLogger

    Returns:
        StructuredLogger instance
    """
    global _global_logger

    if _global_logger is None:
        _global_logger = StructuredLogger(name=name, level=level, **kwargs)

    return _global_logger


def reset_logger():
    """Reset the global logger (useful for testing)."""
    global _global_logger
    _global_logger = None
