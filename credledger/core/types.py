# credledger/core/types.py
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from credledger.core.encoding import ZERO_HASH, hash_to_hex


@dataclass(frozen=True, order=True)
class Sequence:
    """Ordering token attached to every accepted write (wall time + ordinal)."""
    timestamp: str = ""             # ISO 8601 UTC with millis
    ordinal: int = 0                # 0 only for the default/absent marker

    def to_dict(self) -> dict:
        return {"timestamp": self.timestamp, "ordinal": self.ordinal}


ZERO_SEQUENCE = Sequence()


@dataclass(frozen=True)
class IssuerInfo:
    """Authorization entry for one identity. Never deleted, only de-authorized."""
    identity: str
    authorized: bool = False
    institution_name: str = ""


@dataclass(frozen=True)
class CredentialRecord:
    """Single write-once entry in the credential ledger."""
    cert_id: str
    data_hash: bytes = ZERO_HASH
    issuer: str = ""
    issuer_name: str = ""           # snapshot taken when the record was created
    sequence: Sequence = ZERO_SEQUENCE
    exists: bool = False
    tx_hash: str = ""

    @classmethod
    def absent(cls, cert_id: str) -> "CredentialRecord":
        return cls(cert_id=cert_id)

    def to_dict(self) -> dict:
        return {
            "cert_id": self.cert_id,
            "data_hash": hash_to_hex(self.data_hash),
            "issuer": self.issuer,
            "issuer_name": self.issuer_name,
            "sequence": self.sequence.to_dict(),
            "exists": self.exists,
            "tx_hash": self.tx_hash,
        }


@dataclass(frozen=True)
class IssueReceipt:
    cert_id: str
    sequence: Sequence
    tx_hash: str


@dataclass(frozen=True)
class VerificationResult:
    """
    Outcome of comparing a candidate hash against a stored record.
    A mismatch is a normal result (is_valid=False), not an error.
    """
    cert_id: str
    is_valid: bool
    issuer: str
    issuer_name: str
    sequence: Sequence

    def __bool__(self):
        return self.is_valid


@dataclass(frozen=True)
class LedgerEvent:
    """Notification emitted after an operation commits."""
    name: str                                   # e.g. "AlumniRecordAdded"
    payload: Dict[str, Any] = field(default_factory=dict)
    sequence: Optional[Sequence] = None         # None for non-writes (RecordVerified)
    tx_hash: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "payload": dict(self.payload),
            "sequence": self.sequence.to_dict() if self.sequence else None,
            "tx_hash": self.tx_hash,
        }
