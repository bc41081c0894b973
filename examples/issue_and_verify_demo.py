# examples/issue_and_verify_demo.py
# Run with: python examples/issue_and_verify_demo.py
#
# Walks one credential through the full lifecycle on a throwaway SQLite ledger.

import tempfile
from pathlib import Path

from credledger.chain.deploy import deploy
from credledger.core.errors import AlreadyExists
from credledger.core.fields import CredentialFields, generate_cert_id
from credledger.crypto.keys import IdentityKeyPair
from credledger.storage import SQLiteStorage
from credledger.verify.verifier import CredentialVerifier, audit_storage


if __name__ == "__main__":
    owner = IdentityKeyPair.generate()
    college = IdentityKeyPair.generate()

    db_path = Path(tempfile.mkdtemp()) / "demo-ledger.db"
    ledger = deploy(owner=owner.identity, storage=str(db_path), owner_name="University Registrar")
    ledger.env.events.subscribe(lambda e: print(f"  [event] {e.name} {e.payload}"))

    print("1. Owner authorizes an issuer")
    ledger.registry.authorize_issuer(owner.identity, college.identity, "XYZ University")

    print("2. Issuer records a credential (only its hash is stored)")
    fields = CredentialFields(
        name="Saurabh Singh",
        roll_number="2214094",
        degree="B.Tech",
        branch="Information Technology",
        graduation_year="2026",
        cert_id=generate_cert_id(),
    ).validate()
    receipt = ledger.add_record(fields.cert_id, ledger.generate_data_hash(*fields.as_tuple()), college.identity)
    print(f"  cert {receipt.cert_id} at #{receipt.sequence.ordinal}, tx {receipt.tx_hash[:16]}…")

    print("3. A relying party verifies from the plaintext fields")
    verifier = CredentialVerifier(ledger)
    print(f"  genuine  -> {verifier.verify_fields(fields).is_valid}")
    forged = CredentialFields(**{**fields.__dict__, "degree": "M.Tech"})
    print(f"  forged   -> {verifier.verify_fields(forged).is_valid}")

    print("4. Re-issuing the same id is refused")
    try:
        ledger.add_record(fields.cert_id, verifier.hash_fields(forged), college.identity)
    except AlreadyExists as e:
        print(f"  {e.kind}: {e.message}")

    print("5. Revoking the issuer keeps the record's institution snapshot")
    ledger.registry.revoke_issuer(owner.identity, college.identity)
    print(f"  issuer name on record: {ledger.get_record(fields.cert_id).issuer_name}")
    ledger.close()

    with SQLiteStorage(db_path) as storage:
        print(audit_storage(storage))
