# credledger/chain/ledger.py
import hmac
import logging
from dataclasses import dataclass, replace
from types import MappingProxyType
from typing import List, Mapping, Tuple, Union

from credledger.core.encoding import ZERO_HASH, coerce_hash, hash_to_hex, require_text
from credledger.core.errors import AlreadyExists, InvalidInput, NotFound, Unauthorized
from credledger.core.types import (
    CredentialRecord,
    IssueReceipt,
    LedgerEvent,
    VerificationResult,
)
from credledger.crypto.hashing import DEFAULT_SCHEME, HashScheme, generate_data_hash, transaction_hash
from credledger.registry.access import AccessRegistry

logger = logging.getLogger(__name__)

RECORD_ADDED = "AlumniRecordAdded"
RECORD_VERIFIED = "RecordVerified"

HashLike = Union[bytes, bytearray, str]


@dataclass(frozen=True)
class _LedgerState:
    records: Mapping[str, CredentialRecord]
    index: Tuple[str, ...]


def record_event_payload(record: CredentialRecord) -> dict:
    """Body of the AlumniRecordAdded event; also what the tx hash covers."""
    return {
        "cert_id": record.cert_id,
        "data_hash": hash_to_hex(record.data_hash),
        "issuer": record.issuer,
        "issuer_name": record.issuer_name,
    }


class CredentialLedger:
    """
    Write-once store of credential records keyed by certificate id.

    Records are only ever added. The check that a cert_id is new and the
    insert happen under one lock, and the visible state is replaced in a
    single assignment, so concurrent readers see either the old ledger or
    the new one, never half a write.
    """

    def __init__(
        self,
        registry: AccessRegistry,
        hash_scheme: Union[str, HashScheme] = DEFAULT_SCHEME,
    ):
        self.registry = registry
        self.env = registry.env
        self.storage = registry.storage
        self.hash_scheme = HashScheme.parse(hash_scheme)

        records = {}
        index = []
        if self.storage is not None:
            for record in self.storage.load_records():
                records[record.cert_id] = record
                index.append(record.cert_id)
            if records:
                logger.info("Loaded %d credential records from storage", len(records))
        self._state = _LedgerState(records=MappingProxyType(records), index=tuple(index))

    # ── writes

    def add_record(self, cert_id: str, data_hash: HashLike, caller: str) -> IssueReceipt:
        """
        Store a new record attributed to ``caller``.
        Raises Unauthorized, InvalidInput or AlreadyExists; on any error nothing changes.
        """
        with self.env.serialized():
            if not self.registry.is_authorized(caller):
                logger.warning("Rejected record %s: %s is not an authorized issuer", cert_id, caller)
                raise Unauthorized(f"{caller} is not an authorized issuer")
            if not cert_id or not str(cert_id).strip():
                raise InvalidInput("Certificate ID is required")
            require_text(cert_id, "Certificate ID")
            digest = coerce_hash(data_hash)
            if digest == ZERO_HASH:
                raise InvalidInput("Data hash must not be the all-zero value")

            state = self._state
            if cert_id in state.records:
                logger.warning("Rejected record %s: already exists", cert_id)
                raise AlreadyExists(f"Record {cert_id} already exists")

            seq = self.env.clock.propose()
            draft = CredentialRecord(
                cert_id=cert_id,
                data_hash=digest,
                issuer=caller,
                issuer_name=self.registry.issuer_name(caller),
                sequence=seq,
                exists=True,
            )
            payload = record_event_payload(draft)
            tx = transaction_hash(RECORD_ADDED, seq, payload)
            record = replace(draft, tx_hash=tx)
            event = LedgerEvent(
                name=RECORD_ADDED,
                payload={**payload, "timestamp": seq.timestamp, "ordinal": seq.ordinal},
                sequence=seq,
                tx_hash=tx,
            )

            if self.storage is not None:
                with self.storage.transaction():
                    self.storage.save_record(record)
                    self.storage.append_event(event)

            records = dict(state.records)
            records[cert_id] = record
            self._state = _LedgerState(
                records=MappingProxyType(records),
                index=state.index + (cert_id,),
            )
            self.env.clock.commit(seq)
            self.env.events.publish(event)

        logger.info("Record %s added by %s at #%d", cert_id, caller, seq.ordinal)
        return IssueReceipt(cert_id=cert_id, sequence=seq, tx_hash=tx)

    def verify_record(self, cert_id: str, candidate_hash: HashLike) -> VerificationResult:
        """
        Compare ``candidate_hash`` to the stored hash. Raises NotFound for an
        unknown cert_id; a mismatch comes back as is_valid=False.
        """
        record = self._state.records.get(cert_id)
        if record is None:
            raise NotFound(f"No record for {cert_id}")
        candidate = coerce_hash(candidate_hash)
        is_valid = hmac.compare_digest(candidate, record.data_hash)

        result = VerificationResult(
            cert_id=cert_id,
            is_valid=is_valid,
            issuer=record.issuer,
            issuer_name=record.issuer_name,
            sequence=record.sequence,
        )
        event = LedgerEvent(name=RECORD_VERIFIED, payload={"cert_id": cert_id, "is_valid": is_valid})
        # Audit entries are appended in the same total order as writes
        with self.env.serialized():
            if self.storage is not None:
                with self.storage.transaction():
                    self.storage.append_event(event)
            self.env.events.publish(event)

        logger.info("Record %s verified: %s", cert_id, "valid" if is_valid else "MISMATCH")
        return result

    # ── lookups (lock-free)

    def get_record(self, cert_id: str) -> CredentialRecord:
        return self._state.records.get(cert_id) or CredentialRecord.absent(cert_id)

    def record_exists(self, cert_id: str) -> bool:
        return cert_id in self._state.records

    def get_all_cert_ids(self) -> List[str]:
        return list(self._state.index)

    def get_total_records(self) -> int:
        return len(self._state.index)

    def get_records(self) -> List[CredentialRecord]:
        """All records in creation order, from one snapshot."""
        state = self._state
        return [state.records[cert_id] for cert_id in state.index]

    def generate_data_hash(
        self,
        name: str,
        roll_number: str,
        degree: str,
        branch: str,
        graduation_year: str,
        cert_id: str,
    ) -> bytes:
        return generate_data_hash(
            name, roll_number, degree, branch, graduation_year, cert_id,
            scheme=self.hash_scheme,
        )

    def close(self) -> None:
        if self.storage is not None:
            self.storage.close()
            logger.debug("Storage closed")
            self.storage = None
            self.registry.storage = None
