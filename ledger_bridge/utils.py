"""
Helpers for normalizing JSON-RPC quantities, hex data and addresses.
"""
from typing import Any, Optional

from eth_utils import decode_hex, is_hex, is_hex_address, to_checksum_address

from .errors import InvalidParams


def parse_quantity(value: Any, field: str = "value") -> Optional[int]:
    """
    Parse a JSON-RPC quantity into an int.

    Accepts ints, ``0x``-prefixed hex strings and decimal strings.
    ``None`` is passed through so callers can tell "absent" from zero.
    """
    if value is None:
        return None
    if isinstance(value, bool):
        raise InvalidParams(f"Invalid {field}: {value!r}")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        text = value.strip()
        try:
            if text[:2].lower() == "0x":
                return int(text, 16) if len(text) > 2 else 0
            return int(text, 10)
        except ValueError:
            raise InvalidParams(f"Invalid {field}: {value!r}")
    raise InvalidParams(f"Invalid {field}: {value!r}")


def to_quantity(value: int) -> str:
    return hex(value)


def parse_data(value: Any, field: str = "data") -> bytes:
    """Decode hex call data; ``None`` and ``"0x"`` both mean empty."""
    if value is None:
        return b""
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    if isinstance(value, str) and (value == "0x" or is_hex(value)):
        try:
            return decode_hex(value)
        except ValueError:
            pass
    raise InvalidParams(f"Invalid {field}: {value!r}")


def parse_address(value: Any, field: str = "address") -> str:
    if not isinstance(value, str) or not is_hex_address(value):
        raise InvalidParams(f"Invalid {field}: {value!r}")
    return to_checksum_address(value)


def same_address(a: str, b: str) -> bool:
    return a.lower() == b.lower()


def strip_hex_prefix(value: str) -> str:
    return value[2:] if value[:2].lower() == "0x" else value
