"""
Versioned-hash derivation for KZG commitments.

A versioned hash is the commitment's SHA-256 digest with the first byte
replaced by the version tag (0x01 for KZG), as referenced on-chain by
blob transactions.
"""

import hashlib

from .normalize import hex_to_bytes

VERSIONED_HASH_VERSION_KZG = 0x01
KZG_COMMITMENT_BYTES = 48


def commitment_to_versioned_hash(commitment: str) -> str:
    """
    Derive the 0x-prefixed versioned hash for a hex-encoded commitment.

    Raises:
        ValueError: If the commitment is not valid hex or not 48 bytes
    """
    raw = hex_to_bytes(commitment)
    if len(raw) != KZG_COMMITMENT_BYTES:
        raise ValueError(
            f"KZG commitment must be {KZG_COMMITMENT_BYTES} bytes, got {len(raw)}"
        )
    digest = hashlib.sha256(raw).digest()
    return "0x" + (bytes([VERSIONED_HASH_VERSION_KZG]) + digest[1:]).hex()
