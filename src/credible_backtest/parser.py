"""
Pure transformations over fetcher output and revert payloads.

Simple wire format (one payload line between the TRANSACTION_DATA markers):

    count|hash|from|to|value|data|blockNumber|txIndex|gasPrice[|gasLimit|maxFeePerGas|maxPriorityFeePerGas]|...

The three gas fields are either present for every record or for none; the
layout is chosen from the total field count.
"""

import json
from typing import Any, Dict, List, Optional

from eth_abi import decode as abi_decode
from eth_abi.exceptions import DecodingError

from .errors import ParseError
from .models import TransactionRecord
from .utils import hex_to_bytes, parse_address, parse_uint

DATA_MARKER = "TRANSACTION_DATA:"
LEGACY_FIELDS = 8
EXTENDED_FIELDS = 11

PANIC_SELECTOR = bytes.fromhex("4e487b71")  # Panic(uint256)
ERROR_SELECTOR = bytes.fromhex("08c379a0")  # Error(string)

PANIC_CODES = {
    0x00: "generic compiler panic",
    0x01: "assertion failed",
    0x11: "arithmetic overflow or underflow",
    0x12: "division or modulo by zero",
    0x21: "invalid enum value",
    0x22: "invalid storage byte array access",
    0x31: "pop on empty array",
    0x32: "array out-of-bounds access",
    0x41: "out of memory",
    0x51: "uninitialized function pointer",
}


# ---------- Fetcher output ----------
def extract_data_line(output: str) -> str:
    """Payload between the 2nd and 3rd TRANSACTION_DATA: marker; "" if there are fewer than 3."""
    first = output.find(DATA_MARKER)
    if first < 0:
        return ""
    second = output.find(DATA_MARKER, first + len(DATA_MARKER))
    if second < 0:
        return ""
    start = second + len(DATA_MARKER)
    third = output.find(DATA_MARKER, start)
    if third < 0:
        return ""
    return output[start:third].rstrip()


def _record_from_fields(fields: List[str], extended: bool) -> TransactionRecord:
    tx_hash = fields[0].strip().lower()
    try:
        if not tx_hash or int(tx_hash, 16) == 0:
            raise ParseError(f"zero or empty transaction hash: {fields[0]!r}")
        return TransactionRecord(
            hash=tx_hash,
            from_address=parse_address(fields[1]),
            to=parse_address(fields[2]),
            value=parse_uint(fields[3]),
            data=hex_to_bytes(fields[4].strip()),
            block_number=parse_uint(fields[5]),
            transaction_index=parse_uint(fields[6]),
            gas_price=parse_uint(fields[7]),
            gas_limit=parse_uint(fields[8]) if extended else 0,
            max_fee_per_gas=parse_uint(fields[9]) if extended else 0,
            max_priority_fee_per_gas=parse_uint(fields[10]) if extended else 0,
        )
    except ValueError as e:
        raise ParseError(f"bad record field in {fields!r}: {e}") from e


def parse_multiple_transactions(payload: str) -> List[TransactionRecord]:
    fields = payload.strip().split("|")
    try:
        count = parse_uint(fields[0])
    except ValueError as e:
        raise ParseError(f"bad record count: {fields[0]!r}") from e
    if count == 0:
        return []

    available = len(fields) - 1
    if available >= count * EXTENDED_FIELDS:
        width, extended = EXTENDED_FIELDS, True
    elif available >= count * LEGACY_FIELDS:
        width, extended = LEGACY_FIELDS, False
    else:
        raise ParseError(
            f"payload declares {count} records but has {available} fields "
            f"(need at least {count * LEGACY_FIELDS})"
        )

    records = []
    for i in range(count):
        offset = 1 + i * width
        records.append(_record_from_fields(fields[offset:offset + width], extended))
    return records


def parse_json_transactions(payload: str) -> List[TransactionRecord]:
    try:
        items = json.loads(payload)
    except ValueError as e:
        raise ParseError(f"invalid JSON payload: {e}") from e
    if not isinstance(items, list):
        raise ParseError("JSON payload must be an array")

    records = []
    for item in items:
        fields = [str(_get(item, k) or "") for k in (
            "hash", "from", "to", "value", "data", "block_number", "transaction_index",
            "gas_price", "gas_limit", "max_fee_per_gas", "max_priority_fee_per_gas",
        )]
        records.append(_record_from_fields(fields, extended=True))
    return records


def _get(item: Dict[str, Any], key: str) -> Optional[Any]:
    if not isinstance(item, dict):
        raise ParseError(f"JSON record is not an object: {item!r}")
    return item.get(key)


def records_from_fetcher_output(output: str) -> List[TransactionRecord]:
    payload = extract_data_line(output)
    if not payload:
        raise ParseError("no TRANSACTION_DATA payload found in fetcher output")
    if payload.lstrip().startswith("["):
        return parse_json_transactions(payload)
    return parse_multiple_transactions(payload)


# ---------- Revert data ----------
def decode_revert_reason(data: bytes) -> str:
    if len(data) < 4:
        return "Unknown error"
    selector, body = data[:4], data[4:]

    if selector == PANIC_SELECTOR:
        try:
            (code,) = abi_decode(["uint256"], body)
        except DecodingError:
            return f"Custom error: 0x{selector.hex()}"
        reason = PANIC_CODES.get(code)
        if reason is None:
            return f"Panic: unknown code 0x{code:02x}"
        return f"Panic: {reason}"

    if selector == ERROR_SELECTOR:
        try:
            (message,) = abi_decode(["string"], body)
        except (DecodingError, UnicodeDecodeError):
            return f"Custom error: 0x{selector.hex()}"
        return message

    return f"Custom error: 0x{selector.hex()}"
