# tests/test_cli.py
import json
from pathlib import Path
from typing import Generator

import pytest
from typer.testing import CliRunner

from credledger.cli import main as cli_main
from credledger.cli.main import app
from credledger.core.errors import ConfigurationError
from credledger.crypto.hashing import generate_data_hash
from credledger.crypto.keys import IdentityKeyPair
from credledger.storage import SQLiteStorage

runner = CliRunner()

JANE_OPTS = ["--name", "Jane Doe", "--roll", "R1", "--degree", "BSc", "--branch", "CS", "--year", "2024"]


@pytest.fixture
def temp_db(tmp_path: Path) -> Generator[Path, None, None]:
    """Temporary DB file + auto-cleanup."""
    db_path = tmp_path / "test-cli.db"
    yield db_path
    if db_path.exists():
        db_path.unlink()


@pytest.fixture
def populated_db(temp_db: Path) -> Path:
    """Ledger owned by O with issuer I and one issued credential CERT-1."""
    result = runner.invoke(app, ["init", "--as", "O", "--name", "Registrar", "--db", str(temp_db)])
    assert result.exit_code == 0, result.stdout
    result = runner.invoke(app, ["authorize", "I", "Acme College", "--as", "O", "--db", str(temp_db)])
    assert result.exit_code == 0, result.stdout
    result = runner.invoke(app, ["issue", *JANE_OPTS, "--cert-id", "CERT-1", "--as", "I", "--db", str(temp_db)])
    assert result.exit_code == 0, result.stdout
    return temp_db


def test_records_no_db(tmp_path: Path):
    result = runner.invoke(app, ["records", "--db", str(tmp_path / "missing.db")])
    assert result.exit_code == 1
    assert "not found" in result.stdout.lower()
    assert "to get started" in result.stdout.lower()


def test_init_twice_fails(populated_db: Path):
    result = runner.invoke(app, ["init", "--as", "O", "--db", str(populated_db)])
    assert result.exit_code == 1
    assert "already holds a ledger" in result.stdout


def test_init_requires_identity(temp_db: Path):
    result = runner.invoke(app, ["init", "--db", str(temp_db)])
    assert result.exit_code == 2
    assert "identity is required" in result.stdout


def test_keygen_and_init_with_key(tmp_path: Path, temp_db: Path):
    key_path = tmp_path / "owner.pem"
    result = runner.invoke(app, ["keygen", str(key_path)])
    assert result.exit_code == 0
    identity = IdentityKeyPair.load(key_path).identity
    assert identity in result.stdout.replace("\n", "")

    result = runner.invoke(app, ["init", "--key", str(key_path), "--db", str(temp_db)])
    assert result.exit_code == 0

    result = runner.invoke(app, ["keygen", str(key_path)])
    assert result.exit_code == 1
    assert "already exists" in result.stdout


def test_issue_and_show(populated_db: Path):
    result = runner.invoke(app, ["show", "CERT-1", "--db", str(populated_db)])
    assert result.exit_code == 0
    assert "Acme College" in result.stdout
    expected = generate_data_hash("Jane Doe", "R1", "BSc", "CS", "2024", "CERT-1").hex()
    assert expected in result.stdout


def test_show_missing(populated_db: Path):
    result = runner.invoke(app, ["show", "CERT-404", "--db", str(populated_db)])
    assert result.exit_code == 1
    assert "No record" in result.stdout


def test_verify_authentic(populated_db: Path):
    result = runner.invoke(app, ["verify", "CERT-1", *JANE_OPTS, "--db", str(populated_db)])
    assert result.exit_code == 0
    assert "AUTHENTIC" in result.stdout
    assert "Acme College" in result.stdout


def test_verify_tampered(populated_db: Path):
    opts = [o if o != "BSc" else "PhD" for o in JANE_OPTS]
    result = runner.invoke(app, ["verify", "CERT-1", *opts, "--db", str(populated_db)])
    assert result.exit_code == 1
    assert "does NOT match" in result.stdout


def test_verify_unknown_cert(populated_db: Path):
    result = runner.invoke(app, ["verify", "CERT-404", *JANE_OPTS, "--db", str(populated_db)])
    assert result.exit_code == 1
    assert "NotFound" in result.stdout


def test_issue_duplicate(populated_db: Path):
    result = runner.invoke(app, ["issue", *JANE_OPTS, "--cert-id", "CERT-1", "--as", "I", "--db", str(populated_db)])
    assert result.exit_code == 1
    assert "AlreadyExists" in result.stdout


def test_issue_unauthorized(populated_db: Path):
    result = runner.invoke(app, ["issue", *JANE_OPTS, "--cert-id", "CERT-2", "--as", "mallory", "--db", str(populated_db)])
    assert result.exit_code == 1
    assert "Unauthorized" in result.stdout


def test_issue_invalid_year(populated_db: Path):
    opts = [o if o != "2024" else "1900" for o in JANE_OPTS]
    result = runner.invoke(app, ["issue", *opts, "--cert-id", "CERT-3", "--as", "I", "--db", str(populated_db)])
    assert result.exit_code == 1
    assert "InvalidInput" in result.stdout


def test_issue_generates_cert_id(populated_db: Path):
    result = runner.invoke(app, ["issue", *JANE_OPTS, "--as", "I", "--db", str(populated_db)])
    assert result.exit_code == 0
    assert "Issued CERT-" in result.stdout


def test_records_lists_issued(populated_db: Path):
    result = runner.invoke(app, ["records", "--db", str(populated_db)])
    assert result.exit_code == 0
    assert "CERT-1" in result.stdout
    assert "1 total" in result.stdout


def test_revoke_and_issuers(populated_db: Path):
    result = runner.invoke(app, ["revoke", "I", "--as", "O", "--db", str(populated_db)])
    assert result.exit_code == 0

    result = runner.invoke(app, ["issuers", "--db", str(populated_db)])
    assert result.exit_code == 0
    assert "Acme College" in result.stdout
    assert "(owner)" in result.stdout

    # Snapshot survives revocation
    result = runner.invoke(app, ["show", "CERT-1", "--db", str(populated_db)])
    assert "Acme College" in result.stdout


def test_revoke_owner_fails(populated_db: Path):
    result = runner.invoke(app, ["revoke", "O", "--as", "O", "--db", str(populated_db)])
    assert result.exit_code == 1
    assert "CannotRevokeOwner" in result.stdout


def test_transfer_ownership(populated_db: Path):
    result = runner.invoke(app, ["transfer", "X", "--as", "O", "--db", str(populated_db)])
    assert result.exit_code == 0

    result = runner.invoke(app, ["authorize", "J", "Beta", "--as", "O", "--db", str(populated_db)])
    assert result.exit_code == 1
    assert "Unauthorized" in result.stdout

    result = runner.invoke(app, ["authorize", "J", "Beta", "--as", "X", "--db", str(populated_db)])
    assert result.exit_code == 0


def test_hash_command_matches_library():
    result = runner.invoke(app, ["hash", *JANE_OPTS, "--cert-id", "CERT-1"])
    assert result.exit_code == 0
    expected = generate_data_hash("Jane Doe", "R1", "BSc", "CS", "2024", "CERT-1").hex()
    assert result.stdout.strip() == expected


def test_hash_command_bad_scheme():
    result = runner.invoke(app, ["hash", *JANE_OPTS, "--cert-id", "CERT-1", "--scheme", "md5"])
    assert result.exit_code == 1
    assert "ConfigurationError" in result.stdout


def test_audit_clean(populated_db: Path):
    result = runner.invoke(app, ["audit", "--db", str(populated_db)])
    assert result.exit_code == 0
    assert "consistent" in result.stdout


def test_export_creates_jsonl(populated_db: Path, tmp_path: Path):
    """Export command writes one JSON event per line."""
    runner.invoke(app, ["verify", "CERT-1", *JANE_OPTS, "--db", str(populated_db)])
    output_file = tmp_path / "events.jsonl"

    result = runner.invoke(app, ["export", "--db", str(populated_db), "--output", str(output_file)])
    assert result.exit_code == 0
    assert output_file.exists()

    with open(output_file, "r", encoding="utf-8") as f:
        events = [json.loads(line) for line in f]

    names = [e["name"] for e in events]
    assert names == [
        "OwnershipTransferred", "IssuerAuthorized", "IssuerAuthorized",
        "AlumniRecordAdded", "RecordVerified",
    ]
    assert f"Exported {len(events)} events" in result.stdout
    output_file.unlink(missing_ok=True)


def test_records_limit_must_be_positive(populated_db: Path):
    result = runner.invoke(app, ["records", "--limit", "0", "--db", str(populated_db)])
    assert result.exit_code == 2


def test_authorize_rejects_malformed_key_identity(populated_db: Path):
    result = runner.invoke(app, ["authorize", "ed25519:abc", "Beta", "--as", "O", "--db", str(populated_db)])
    assert result.exit_code == 1
    assert "InvalidInput" in result.stdout


def test_authorize_key_identity(populated_db: Path):
    identity = IdentityKeyPair.generate().identity
    result = runner.invoke(app, ["authorize", identity, "Beta", "--as", "O", "--db", str(populated_db)])
    assert result.exit_code == 0

    result = runner.invoke(app, ["issuers", "--db", str(populated_db)])
    assert "Beta" in result.stdout


def test_failed_open_closes_storage(populated_db: Path, monkeypatch):
    closed = []

    class TrackingStorage(SQLiteStorage):
        def close(self):
            closed.append(self.db_path)
            super().close()

    def broken_deploy(**kwargs):
        raise ConfigurationError("broken ledger")

    monkeypatch.setattr(cli_main, "SQLiteStorage", TrackingStorage)
    monkeypatch.setattr(cli_main, "deploy", broken_deploy)

    result = runner.invoke(app, ["records", "--db", str(populated_db)])
    assert result.exit_code == 1
    assert "ConfigurationError" in result.stdout
    assert closed == [populated_db.resolve()]
