from typing import Optional, Union

from eth_utils import to_checksum_address

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

# ---------- Numbers ----------
def hex_to_int(h: Optional[str]) -> int:
    if not h or h == "0x":
        return 0
    return int(h, 16)


def parse_uint(value: Union[str, int, None]) -> int:
    """`0x`-prefixed strings are base 16, digit strings base 10, empty is 0."""
    if value is None:
        return 0
    if isinstance(value, int):
        if value < 0:
            raise ValueError(f"negative value: {value}")
        return value
    text = value.strip()
    if not text:
        return 0
    if text[:2].lower() == "0x":
        return hex_to_int(text)
    if not text.isdigit():
        raise ValueError(f"not a hex or decimal integer: {value!r}")
    return int(text, 10)


def to_block_hex(n: int) -> str:
    return hex(int(n))


# ---------- Addresses ----------
def parse_address(addr_hex: Optional[str]) -> str:
    """Case-insensitive address parse. Empty maps to the zero address (contract creation)."""
    if not addr_hex:
        return ZERO_ADDRESS
    return to_checksum_address(addr_hex.strip())


def same_address(a: Optional[str], b: Optional[str]) -> bool:
    if not a or not b:
        return False
    return a.lower() == b.lower()


# ---------- Bytes ----------
def hex_to_bytes(h: Optional[str]) -> bytes:
    if not h or h == "0x":
        return b""
    clean = h[2:] if h[:2].lower() == "0x" else h
    return bytes.fromhex(clean)


def hx(b: Optional[bytes]) -> str:
    """Bytes -> 0x-prefixed lowercase hex; None/empty -> "0x"."""
    if not b:
        return "0x"
    return "0x" + bytes(b).hex()
