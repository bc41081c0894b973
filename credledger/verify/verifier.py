# credledger/verify/verifier.py
from dataclasses import dataclass, field
from typing import List, Optional

from credledger.chain.ledger import RECORD_ADDED, CredentialLedger, record_event_payload
from credledger.core.encoding import ZERO_HASH
from credledger.core.fields import CredentialFields
from credledger.core.types import VerificationResult
from credledger.crypto.hashing import transaction_hash
from credledger.registry.access import OWNER_META_KEY
from credledger.storage import StorageBackend


@dataclass
class AuditFailure:
    index: int
    message: str
    category: str = "general"  # e.g. "ordering", "hash", "tx_hash", "event", "registry"


@dataclass
class AuditReport:
    is_valid: bool
    message: str = ""
    records_checked: int = 0
    failures: List[AuditFailure] = field(default_factory=list)

    @property
    def first_failure(self) -> Optional[AuditFailure]:
        return self.failures[0] if self.failures else None

    def fail(self, index: int, message: str, category: str) -> None:
        self.failures.append(AuditFailure(index, message, category))
        self.is_valid = False

    def __bool__(self):
        return self.is_valid

    def __str__(self):
        if self.is_valid:
            return f"Ledger is consistent ✓ ({self.records_checked} records)"
        lines = [f"Audit FAILED ({len(self.failures)} issues):"]
        for f in self.failures:
            lines.append(f"  • [{f.index}] {f.category}: {f.message}")
        return "\n".join(lines)


class CredentialVerifier:
    """
    Verifies a credential from its plaintext fields, the way a relying party
    would: recompute the data hash locally and compare it on the ledger.
    """

    def __init__(self, ledger: CredentialLedger):
        self.ledger = ledger

    def hash_fields(self, fields: CredentialFields) -> bytes:
        return self.ledger.generate_data_hash(*fields.as_tuple())

    def verify_fields(self, fields: CredentialFields) -> VerificationResult:
        """Raises NotFound when the cert_id was never issued."""
        return self.ledger.verify_record(fields.cert_id, self.hash_fields(fields))


def audit_storage(storage: StorageBackend) -> AuditReport:
    """
    Offline consistency check of a persisted ledger.

    Re-derives every record's transaction hash from its stored fields and
    cross-checks it against the event log, so an edited row (hash, issuer,
    name or ordering) shows up as a failure.
    """
    try:
        records = storage.load_records()
        events = storage.load_events()
        owner = storage.get_meta(OWNER_META_KEY)
        issuers = {i.identity: i for i in storage.load_issuers()}
    except Exception as e:
        report = AuditReport(False, f"Failed to load ledger from storage: {e}")
        report.failures.append(AuditFailure(-1, str(e), "storage"))
        return report

    report = AuditReport(True, records_checked=len(records))

    # 1. Registry
    if not owner:
        report.fail(-1, "No owner recorded", "registry")
    elif not (owner in issuers and issuers[owner].authorized):
        report.fail(-1, f"Owner {owner} is not an authorized issuer", "registry")

    # 2. Ordering
    last_ordinal = 0
    seen = set()
    for i, record in enumerate(records):
        if record.sequence.ordinal <= last_ordinal:
            report.fail(i, f"Ordinal {record.sequence.ordinal} does not increase", "ordering")
        last_ordinal = record.sequence.ordinal
        if record.cert_id in seen:
            report.fail(i, f"Duplicate cert_id {record.cert_id}", "ordering")
        seen.add(record.cert_id)

    # 3. Per-record integrity
    added = {e.payload.get("cert_id"): e for e in events if e.name == RECORD_ADDED}
    for i, record in enumerate(records):
        if not record.cert_id:
            report.fail(i, "Empty cert_id", "hash")
        if record.data_hash == ZERO_HASH:
            report.fail(i, f"{record.cert_id}: all-zero data hash", "hash")

        expected_tx = transaction_hash(RECORD_ADDED, record.sequence, record_event_payload(record))
        if record.tx_hash != expected_tx:
            report.fail(i, f"{record.cert_id}: stored fields do not match tx hash", "tx_hash")

        event = added.get(record.cert_id)
        if event is None:
            report.fail(i, f"{record.cert_id}: no {RECORD_ADDED} event", "event")
        elif event.tx_hash != record.tx_hash or event.sequence != record.sequence:
            report.fail(i, f"{record.cert_id}: event log disagrees with record", "event")

    orphans = set(added) - seen
    for cert_id in sorted(orphans):
        report.fail(-1, f"{RECORD_ADDED} event for missing record {cert_id}", "event")

    report.message = (
        f"{len(records)} records consistent" if report.is_valid
        else f"Failed with {len(report.failures)} issues"
    )
    return report
