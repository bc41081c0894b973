# credledger/cli/main.py
"""
CLI for issuing, verifying and auditing credential records.
"""

import json
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from credledger.chain.deploy import deploy
from credledger.chain.ledger import CredentialLedger
from credledger.config import Settings, get_db_path
from credledger.core.encoding import hash_to_hex
from credledger.core.errors import InvalidInput, LedgerError
from credledger.core.fields import CredentialFields, generate_cert_id
from credledger.core.log import setup_logging
from credledger.crypto.hashing import generate_data_hash
from credledger.crypto.keys import IDENTITY_PREFIX, IdentityKeyPair
from credledger.registry.access import OWNER_META_KEY
from credledger.storage import SQLiteStorage
from credledger.verify.verifier import CredentialVerifier, audit_storage

app = typer.Typer(
    name="credledger",
    help="Issue, verify and audit tamper-evident educational credentials",
    add_completion=False,
    no_args_is_help=True,
)

console = Console()

DbOption = typer.Option(None, "--db", help="Path to SQLite database (overrides CREDLEDGER_DB_PATH)")
KeyOption = typer.Option(None, "--key", "-k", help="Ed25519 private key file of the caller")
AsOption = typer.Option(None, "--as", help="Raw caller identity (instead of --key)")


def resolve_caller(key: Optional[Path], as_identity: Optional[str]) -> str:
    if key and as_identity:
        console.print("[red]Use either --key or --as, not both[/]")
        raise typer.Exit(2)
    if as_identity:
        return check_identity(as_identity)
    if key:
        try:
            return IdentityKeyPair.load(key).identity
        except (OSError, ValueError) as e:
            console.print(f"[red]Could not load key {key}: {e}[/]")
            raise typer.Exit(1)
    console.print("[red]A caller identity is required (--key or --as)[/]")
    raise typer.Exit(2)


def open_ledger(db: Optional[Path]) -> CredentialLedger:
    """Open an existing ledger database or exit with a hint."""
    db_path = get_db_path(db)

    if not db_path.exists():
        console.print(f"[red]Database file not found: {db_path}[/]")
        console.print("[yellow]To get started:[/]")
        console.print("  • credledger keygen owner.pem")
        console.print("  • credledger init --key owner.pem --name 'Your Institution'")
        console.print("  • Or point at an existing ledger with --db or CREDLEDGER_DB_PATH")
        raise typer.Exit(1)

    storage = None
    try:
        storage = SQLiteStorage(db_path)
        return deploy(storage=storage)
    except LedgerError as e:
        if storage is not None:
            storage.close()
        console.print(f"[red]Failed to open ledger: {e.kind}: {e.message}[/]")
        raise typer.Exit(1)


def fail(e: LedgerError) -> None:
    console.print(f"[red]✗ {e.kind}: {e.message}[/]")
    raise typer.Exit(1)


def check_identity(identity: str) -> str:
    """Identities derived from a key must decode to an Ed25519 public key."""
    if identity.startswith(IDENTITY_PREFIX):
        try:
            IdentityKeyPair.from_public_b64url(identity)
        except ValueError as e:
            fail(InvalidInput(f"{identity} is not a valid Ed25519 identity: {e}"))
    return identity


@app.callback()
def main(
    log_level: Optional[str] = typer.Option(None, "--log-level", help="Override CREDLEDGER_LOG_LEVEL"),
):
    """Manage a credential ledger."""
    setup_logging(log_level or Settings.from_env().log_level)


@app.command()
def keygen(
    path: Path = typer.Argument(..., help="Where to write the new private key (PEM)"),
    force: bool = typer.Option(False, "--force", help="Overwrite an existing file"),
):
    """Create an Ed25519 identity key and print its identity."""
    if path.exists() and not force:
        console.print(f"[red]{path} already exists (use --force to overwrite)[/]")
        raise typer.Exit(1)
    keys = IdentityKeyPair.generate()
    keys.save(path)
    console.print(f"[green]Key written to {path}[/]")
    console.print(f"Identity: {keys.identity}")


@app.command()
def init(
    key: Optional[Path] = KeyOption,
    as_identity: Optional[str] = AsOption,
    name: str = typer.Option("", "--name", help="Institution name of the owner"),
    scheme: Optional[str] = typer.Option(None, "--scheme", help="packed | length-prefixed"),
    db: Optional[Path] = DbOption,
):
    """Create a new ledger owned by the caller."""
    owner = resolve_caller(key, as_identity)
    db_path = get_db_path(db)
    try:
        storage = SQLiteStorage(db_path)
    except LedgerError as e:
        fail(e)
    if storage.get_meta(OWNER_META_KEY):
        storage.close()
        console.print(f"[red]{db_path} already holds a ledger[/]")
        raise typer.Exit(1)

    try:
        ledger = deploy(
            owner=owner,
            storage=storage,
            hash_scheme=scheme or Settings.from_env().hash_scheme,
            owner_name=name,
        )
    except LedgerError as e:
        storage.close()
        fail(e)

    console.print(f"[green]✓ Ledger created at {db_path}[/]")
    console.print(f"  Owner: {owner}")
    console.print(f"  Hash scheme: {ledger.hash_scheme.value}")
    ledger.close()


@app.command()
def authorize(
    identity: str = typer.Argument(..., help="Issuer identity to authorize"),
    name: str = typer.Argument(..., help="Institution name"),
    key: Optional[Path] = KeyOption,
    as_identity: Optional[str] = AsOption,
    db: Optional[Path] = DbOption,
):
    """Authorize an issuer (owner only)."""
    caller = resolve_caller(key, as_identity)
    ledger = open_ledger(db)
    try:
        ledger.registry.authorize_issuer(caller, check_identity(identity), name)
    except LedgerError as e:
        fail(e)
    finally:
        ledger.close()
    console.print(f"[green]✓ Authorized {identity} as '{name}'[/]")


@app.command()
def revoke(
    identity: str = typer.Argument(..., help="Issuer identity to revoke"),
    key: Optional[Path] = KeyOption,
    as_identity: Optional[str] = AsOption,
    db: Optional[Path] = DbOption,
):
    """Revoke an issuer (owner only). Records it already created stay valid."""
    caller = resolve_caller(key, as_identity)
    ledger = open_ledger(db)
    try:
        ledger.registry.revoke_issuer(caller, identity)
    except LedgerError as e:
        fail(e)
    finally:
        ledger.close()
    console.print(f"[green]✓ Revoked {identity}[/]")


@app.command()
def transfer(
    new_owner: str = typer.Argument(..., help="Identity of the new owner"),
    key: Optional[Path] = KeyOption,
    as_identity: Optional[str] = AsOption,
    db: Optional[Path] = DbOption,
):
    """Transfer ownership (owner only)."""
    caller = resolve_caller(key, as_identity)
    ledger = open_ledger(db)
    try:
        ledger.registry.transfer_ownership(caller, check_identity(new_owner))
    except LedgerError as e:
        fail(e)
    finally:
        ledger.close()
    console.print(f"[green]✓ Ownership transferred to {new_owner}[/]")


@app.command()
def issuers(db: Optional[Path] = DbOption):
    """List every issuer the registry has ever seen."""
    ledger = open_ledger(db)
    registry = ledger.registry

    table = Table(title="Issuers")
    table.add_column("Identity", overflow="fold")
    table.add_column("Institution")
    table.add_column("Authorized")
    for info in registry.list_issuers():
        role = " (owner)" if info.identity == registry.owner else ""
        table.add_row(info.identity, info.institution_name or "—", ("yes" if info.authorized else "no") + role)

    console.print(table)
    ledger.close()


def _fields(name, roll, degree, branch, year, cert_id) -> CredentialFields:
    return CredentialFields(
        name=name, roll_number=roll, degree=degree, branch=branch,
        graduation_year=str(year), cert_id=cert_id,
    )


@app.command("hash")
def hash_cmd(
    name: str = typer.Option(..., "--name"),
    roll: str = typer.Option(..., "--roll"),
    degree: str = typer.Option(..., "--degree"),
    branch: str = typer.Option(..., "--branch"),
    year: str = typer.Option(..., "--year"),
    cert_id: str = typer.Option(..., "--cert-id"),
    scheme: Optional[str] = typer.Option(None, "--scheme", help="packed | length-prefixed"),
):
    """Compute the data hash of a credential offline."""
    try:
        digest = generate_data_hash(
            name, roll, degree, branch, year, cert_id,
            scheme=scheme or Settings.from_env().hash_scheme,
        )
    except LedgerError as e:
        fail(e)
    console.print(hash_to_hex(digest))


@app.command()
def issue(
    name: str = typer.Option(..., "--name"),
    roll: str = typer.Option(..., "--roll"),
    degree: str = typer.Option(..., "--degree"),
    branch: str = typer.Option(..., "--branch"),
    year: str = typer.Option(..., "--year"),
    cert_id: Optional[str] = typer.Option(None, "--cert-id", help="Generated when omitted"),
    key: Optional[Path] = KeyOption,
    as_identity: Optional[str] = AsOption,
    db: Optional[Path] = DbOption,
):
    """Hash a credential's fields and record it (authorized issuers only)."""
    caller = resolve_caller(key, as_identity)
    fields = _fields(name, roll, degree, branch, year, cert_id or generate_cert_id())
    ledger = open_ledger(db)
    try:
        fields.validate()
        receipt = ledger.add_record(fields.cert_id, ledger.generate_data_hash(*fields.as_tuple()), caller)
    except LedgerError as e:
        fail(e)
    finally:
        ledger.close()

    console.print(f"[green]✓ Issued {receipt.cert_id}[/]")
    console.print(f"  Sequence: #{receipt.sequence.ordinal} at {receipt.sequence.timestamp}")
    console.print(f"  Transaction: {receipt.tx_hash}")


@app.command()
def verify(
    cert_id: str = typer.Argument(..., help="Certificate ID to verify"),
    name: str = typer.Option(..., "--name"),
    roll: str = typer.Option(..., "--roll"),
    degree: str = typer.Option(..., "--degree"),
    branch: str = typer.Option(..., "--branch"),
    year: str = typer.Option(..., "--year"),
    db: Optional[Path] = DbOption,
):
    """Verify a credential against its plaintext fields."""
    ledger = open_ledger(db)
    try:
        result = CredentialVerifier(ledger).verify_fields(_fields(name, roll, degree, branch, year, cert_id))
    except LedgerError as e:
        fail(e)
    finally:
        ledger.close()

    if result.is_valid:
        console.print(f"[green]✓ {cert_id} is AUTHENTIC[/]")
    else:
        console.print(f"[red]✗ {cert_id} does NOT match the recorded credential[/]")
    console.print(f"  Issuer: {result.issuer_name or '—'} ({result.issuer})")
    console.print(f"  Recorded: #{result.sequence.ordinal} at {result.sequence.timestamp}")
    if not result.is_valid:
        raise typer.Exit(1)


@app.command()
def show(
    cert_id: str = typer.Argument(..., help="Certificate ID to display"),
    db: Optional[Path] = DbOption,
):
    """Show the stored record for a certificate id."""
    ledger = open_ledger(db)
    record = ledger.get_record(cert_id)
    ledger.close()

    if not record.exists:
        console.print(f"[yellow]No record for '{cert_id}'[/]")
        raise typer.Exit(1)

    console.print(f"[bold cyan]{record.cert_id}[/]")
    console.print(f"  Data hash:   {hash_to_hex(record.data_hash)}")
    console.print(f"  Issuer:      {record.issuer}")
    console.print(f"  Institution: {record.issuer_name or '—'}")
    console.print(f"  Sequence:    #{record.sequence.ordinal} at {record.sequence.timestamp}")
    console.print(f"  Transaction: {record.tx_hash}")


@app.command()
def records(
    db: Optional[Path] = DbOption,
    limit: int = typer.Option(20, "--limit", "-n", min=1, help="Number of most recent records to show"),
):
    """List the most recent records in creation order."""
    ledger = open_ledger(db)
    all_records = ledger.get_records()
    total = ledger.get_total_records()
    ledger.close()

    if not all_records:
        console.print("[yellow]No records in ledger yet.[/]")
        return

    table = Table(title=f"Credential Records ({total} total)")
    table.add_column("#")
    table.add_column("Certificate ID")
    table.add_column("Institution")
    table.add_column("Issued At")
    for record in all_records[-limit:]:
        table.add_row(
            str(record.sequence.ordinal), record.cert_id,
            record.issuer_name or "—", record.sequence.timestamp,
        )
    console.print(table)


@app.command()
def audit(db: Optional[Path] = DbOption):
    """Check the stored ledger for tampering or inconsistencies."""
    db_path = get_db_path(db)
    if not db_path.exists():
        console.print(f"[red]Database file not found: {db_path}[/]")
        raise typer.Exit(1)

    with SQLiteStorage(db_path) as storage:
        report = audit_storage(storage)

    if report.is_valid:
        console.print("[green]✓ Ledger is consistent[/]")
        console.print(f"  {report.message}")
    else:
        console.print("[red]✗ Audit failed[/]")
        for failure in report.failures:
            console.print(f"  • [{failure.index}] {failure.category}: {failure.message}")
        raise typer.Exit(1)


@app.command()
def export(
    db: Optional[Path] = DbOption,
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Output file (default: ledger-events.jsonl)"),
):
    """Export the event log as JSONL (one notification per line)."""
    db_path = get_db_path(db)
    if not db_path.exists():
        console.print(f"[red]Database file not found: {db_path}[/]")
        raise typer.Exit(1)

    with SQLiteStorage(db_path) as storage:
        events = storage.load_events()

    if not events:
        console.print("[yellow]No events recorded[/]")
        raise typer.Exit(0)

    out_path = output or Path("ledger-events.jsonl")
    with open(out_path, "w", encoding="utf-8") as f:
        for event in events:
            json.dump(event.to_dict(), f, separators=(",", ":"))
            f.write("\n")

    console.print(f"[green]Exported {len(events)} events to {out_path}[/]")


if __name__ == "__main__":
    app()
