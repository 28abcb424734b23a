"""
Exception taxonomy shared by the scanner, fetcher, and persistence layers.

Transient and malformed-response errors are retried by the component
that raised them; pre-blob and persistence errors are not.
"""


class PermablobError(Exception):
    """Base class for all service errors."""
    pass


class TransientNetworkError(PermablobError):
    """An RPC or REST call failed at the transport level."""
    pass


class MalformedResponseError(PermablobError):
    """An upstream response did not have the expected shape."""
    pass


class PreBlobSupportError(PermablobError):
    """A block timestamp predates blob-carrying transactions."""
    pass


class PersistenceError(PermablobError):
    """A durable write (cursor, queue, archive index) failed."""
    pass


class ConfigError(PermablobError):
    """Raised when configuration is missing or invalid."""

    def __init__(self, problems):
        self.problems = list(problems)
        super().__init__("Invalid configuration: " + "; ".join(self.problems))
