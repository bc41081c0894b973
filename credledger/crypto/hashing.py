# credledger/crypto/hashing.py
"""
Public hashing protocol.

generate_data_hash() is the canonicalization every off-ledger caller must
reproduce to verify a credential:

    digest = SHA-256( enc(name) || enc(roll_number) || enc(degree)
                      || enc(branch) || enc(graduation_year) || enc(cert_id) )

where each field is UTF-8 encoded and ``enc`` depends on the scheme:

  packed           enc(f) = utf8(f)
                   No delimiter. Fields that shift characters across a
                   boundary collide: ("AB", "C", ...) == ("A", "BC", ...).
                   Kept as the default so existing records keep verifying.

  length-prefixed  enc(f) = uint32_be(len(utf8(f))) || utf8(f)
                   Unambiguous. Use for new deployments.
"""
import hashlib
import struct
from enum import Enum
from typing import Any, Dict, Union

from credledger.core.canon import canonical_json
from credledger.core.encoding import require_text
from credledger.core.errors import ConfigurationError
from credledger.core.types import Sequence


class HashScheme(str, Enum):
    PACKED = "packed"
    LENGTH_PREFIXED = "length-prefixed"

    @classmethod
    def parse(cls, value: Union[str, "HashScheme", None]) -> "HashScheme":
        if value is None or value == "":
            return cls.PACKED
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            choices = ", ".join(s.value for s in cls)
            raise ConfigurationError(f"Unknown hash scheme '{value}' (expected one of: {choices})")


DEFAULT_SCHEME = HashScheme.PACKED

FIELD_NAMES = ("name", "roll_number", "degree", "branch", "graduation_year", "cert_id")


def _encode_fields(fields, scheme: HashScheme) -> bytes:
    parts = []
    for field, value in zip(FIELD_NAMES, fields):
        raw = str(require_text(value, field)).encode("utf-8")
        if scheme is HashScheme.LENGTH_PREFIXED:
            parts.append(struct.pack(">I", len(raw)))
        parts.append(raw)
    return b"".join(parts)


def generate_data_hash(
    name: str,
    roll_number: str,
    degree: str,
    branch: str,
    graduation_year: str,
    cert_id: str,
    scheme: Union[str, HashScheme] = DEFAULT_SCHEME,
) -> bytes:
    """32-byte digest of the six credential fields, in this exact order."""
    scheme = HashScheme.parse(scheme)
    payload = _encode_fields(
        (name, roll_number, degree, branch, graduation_year, cert_id), scheme
    )
    return hashlib.sha256(payload).digest()


def transaction_hash(event: str, sequence: Sequence, payload: Dict[str, Any]) -> str:
    """hex(sha256) over the canonical JSON of an accepted write."""
    body = {
        "event": event,
        "sequence": sequence.to_dict(),
        "payload": payload,
    }
    return hashlib.sha256(canonical_json(body)).hexdigest()
