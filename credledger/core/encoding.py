# credledger/core/encoding.py
import base64
from typing import Union

from credledger.core.errors import InvalidInput

HASH_SIZE = 32
ZERO_HASH = bytes(HASH_SIZE)


def b64url_encode(data: bytes) -> str:
    """Encode bytes to base64url (no padding, URL-safe)."""
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def b64url_decode(s: str) -> bytes:
    """Decode base64url string back to bytes."""
    # Restore padding
    padding = len(s) % 4
    if padding:
        s += "=" * (4 - padding)
    return base64.urlsafe_b64decode(s)


def hash_to_hex(value: bytes) -> str:
    """32-byte digest -> lowercase hex, no prefix."""
    return value.hex()


def coerce_hash(value: Union[bytes, bytearray, str]) -> bytes:
    """
    Accept a digest as raw bytes or as hex text (optional 0x prefix)
    and return exactly 32 bytes. Anything else is InvalidInput.
    """
    if isinstance(value, (bytes, bytearray)):
        raw = bytes(value)
    elif isinstance(value, str):
        text = value.strip()
        if text[:2] in ("0x", "0X"):
            text = text[2:]
        try:
            raw = bytes.fromhex(text)
        except ValueError:
            raise InvalidInput(f"Hash is not valid hex: {value!r}")
    else:
        raise InvalidInput(f"Unsupported hash type: {type(value).__name__}")

    if len(raw) != HASH_SIZE:
        raise InvalidInput(f"Hash must be {HASH_SIZE} bytes, got {len(raw)}")
    return raw


def require_text(value: str, what: str) -> str:
    """Return ``value`` if it encodes as UTF-8; lone surrogates are InvalidInput."""
    try:
        str(value).encode("utf-8")
    except UnicodeEncodeError:
        raise InvalidInput(f"{what} is not valid UTF-8 text: {value!r}")
    return value
