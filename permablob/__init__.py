"""Ethereum L2 blob archival: scan blocks, fetch sidecars, archive blobs."""

__version__ = "0.1.0"
