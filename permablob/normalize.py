import re

_HEX_RE = re.compile(r"^[0-9a-f]*$")


def normalize_hex(value: str) -> str:
    """Return `value` as lowercase hex with a single 0x prefix."""
    if not isinstance(value, str):
        raise ValueError(f"Expected hex string, got {type(value).__name__}")
    s = value.strip().lower()
    if s.startswith("0x"):
        s = s[2:]
    if not _HEX_RE.match(s):
        raise ValueError(f"Not a hex string: {value!r}")
    return f"0x{s}"


def strip_hex_prefix(value: str) -> str:
    return normalize_hex(value)[2:]


def hex_to_bytes(value: str) -> bytes:
    s = strip_hex_prefix(value)
    if len(s) % 2:
        raise ValueError(f"Odd-length hex string: {value!r}")
    return bytes.fromhex(s)


def normalize_address(value: str) -> str:
    addr = normalize_hex(value)
    if len(addr) != 42:
        raise ValueError(f"Address must be 20 bytes: {value!r}")
    return addr


def normalize_address_list(values) -> list[str]:
    """Normalize and dedupe an allow-list while preserving order."""
    seen = set()
    result = []
    for v in values:
        addr = normalize_address(v)
        if addr not in seen:
            seen.add(addr)
            result.append(addr)
    return result
