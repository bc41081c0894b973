import json
import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List, Optional

from credledger.config import Settings
from credledger.core.canon import canonical_json_str
from credledger.core.errors import StorageError
from credledger.core.types import CredentialRecord, IssuerInfo, LedgerEvent, Sequence
from . import StorageBackend

logger = logging.getLogger(__name__)

MEMORY = ":memory:"


class SQLiteStorage(StorageBackend):
    """SQLite persistent storage for the credential ledger and issuer registry."""

    def __init__(self, db_path: str | Path | None = None):
        if db_path is None:
            db_path = Settings.from_env().db_path

        if str(db_path) == MEMORY:
            self.db_path = MEMORY
        else:
            self.db_path = Path(db_path)
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self.db_path = self.db_path.resolve()

        self._conn: Optional[sqlite3.Connection] = None
        self._depth = 0
        self._connect()

    def _connect(self):
        # Writes arrive from whichever thread holds the ledger lock
        try:
            self._conn = sqlite3.connect(str(self.db_path), isolation_level=None, check_same_thread=False)
            if self.db_path != MEMORY:
                self._conn.execute("PRAGMA journal_mode=WAL")
            self._create_schema()
        except sqlite3.Error as e:
            raise StorageError(f"Cannot open ledger database {self.db_path}: {e}") from e

    def _create_schema(self):
        self.conn.execute("""
            CREATE TABLE IF NOT EXISTS meta (
                key     TEXT PRIMARY KEY,
                value   TEXT NOT NULL
            )
        """)
        self.conn.execute("""
            CREATE TABLE IF NOT EXISTS issuers (
                identity            TEXT    PRIMARY KEY,
                authorized          INTEGER NOT NULL,
                institution_name    TEXT    NOT NULL
            )
        """)
        self.conn.execute("""
            CREATE TABLE IF NOT EXISTS records (
                cert_id         TEXT    PRIMARY KEY,
                ordinal         INTEGER NOT NULL UNIQUE,
                timestamp       TEXT    NOT NULL,
                data_hash       TEXT    NOT NULL,
                issuer          TEXT    NOT NULL,
                issuer_name     TEXT    NOT NULL,
                tx_hash         TEXT    NOT NULL
            )
        """)
        self.conn.execute("""
            CREATE TABLE IF NOT EXISTS events (
                id              INTEGER PRIMARY KEY AUTOINCREMENT,
                name            TEXT    NOT NULL,
                ordinal         INTEGER,
                timestamp       TEXT,
                tx_hash         TEXT,
                payload_json    TEXT    NOT NULL
            )
        """)
        self.conn.execute("CREATE INDEX IF NOT EXISTS idx_records_issuer ON records(issuer)")
        self.conn.execute("CREATE INDEX IF NOT EXISTS idx_events_ordinal ON events(ordinal)")

    @property
    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            raise StorageError("Storage connection is closed")
        return self._conn

    @contextmanager
    def transaction(self) -> Iterator["SQLiteStorage"]:
        """BEGIN IMMEDIATE ... COMMIT; nested calls join the outer transaction."""
        if self._depth:
            self._depth += 1
            try:
                yield self
            finally:
                self._depth -= 1
            return

        try:
            self.conn.execute("BEGIN IMMEDIATE")
        except sqlite3.Error as e:
            raise StorageError(f"Could not start transaction: {e}") from e

        self._depth = 1
        try:
            yield self
        except sqlite3.Error as e:
            self._rollback()
            raise StorageError(f"Write rejected by {self.db_path}: {e}") from e
        except BaseException:
            self._rollback()
            raise
        else:
            try:
                self.conn.execute("COMMIT")
            except sqlite3.Error as e:
                self._rollback()
                raise StorageError(f"Commit failed on {self.db_path}: {e}") from e
        finally:
            self._depth = 0

    def _rollback(self):
        try:
            self.conn.execute("ROLLBACK")
        except sqlite3.Error as e:
            logger.warning("Rollback failed on %s: %s", self.db_path, e)

    # ── meta

    def get_meta(self, key: str) -> Optional[str]:
        row = self.conn.execute("SELECT value FROM meta WHERE key = ?", (key,)).fetchone()
        return row[0] if row else None

    def set_meta(self, key: str, value: str) -> None:
        self.conn.execute(
            "INSERT INTO meta (key, value) VALUES (?, ?) "
            "ON CONFLICT(key) DO UPDATE SET value = excluded.value",
            (key, value),
        )

    # ── issuers

    def save_issuer(self, info: IssuerInfo) -> None:
        self.conn.execute("""
            INSERT INTO issuers (identity, authorized, institution_name)
            VALUES (?, ?, ?)
            ON CONFLICT(identity) DO UPDATE SET
                authorized = excluded.authorized,
                institution_name = excluded.institution_name
        """, (info.identity, int(info.authorized), info.institution_name))

    def load_issuers(self) -> List[IssuerInfo]:
        cursor = self.conn.execute(
            "SELECT identity, authorized, institution_name FROM issuers ORDER BY identity"
        )
        return [IssuerInfo(identity, bool(auth), name) for identity, auth, name in cursor]

    # ── records

    def save_record(self, record: CredentialRecord) -> None:
        # Plain INSERT: a second write for the same cert_id must fail, never overwrite
        self.conn.execute("""
            INSERT INTO records
            (cert_id, ordinal, timestamp, data_hash, issuer, issuer_name, tx_hash)
            VALUES (?, ?, ?, ?, ?, ?, ?)
        """, (
            record.cert_id, record.sequence.ordinal, record.sequence.timestamp,
            record.data_hash.hex(), record.issuer, record.issuer_name, record.tx_hash,
        ))

    def load_records(self) -> List[CredentialRecord]:
        cursor = self.conn.execute("""
            SELECT cert_id, ordinal, timestamp, data_hash, issuer, issuer_name, tx_hash
            FROM records ORDER BY ordinal ASC
        """)
        loaded = []
        for cert_id, ordinal, ts, data_hash, issuer, issuer_name, tx_hash in cursor:
            loaded.append(CredentialRecord(
                cert_id=cert_id,
                data_hash=bytes.fromhex(data_hash),
                issuer=issuer,
                issuer_name=issuer_name,
                sequence=Sequence(timestamp=ts, ordinal=ordinal),
                exists=True,
                tx_hash=tx_hash,
            ))
        return loaded

    # ── events

    def append_event(self, event: LedgerEvent) -> None:
        seq = event.sequence
        self.conn.execute("""
            INSERT INTO events (name, ordinal, timestamp, tx_hash, payload_json)
            VALUES (?, ?, ?, ?, ?)
        """, (
            event.name,
            seq.ordinal if seq else None,
            seq.timestamp if seq else None,
            event.tx_hash,
            canonical_json_str(event.payload),
        ))

    def load_events(self) -> List[LedgerEvent]:
        cursor = self.conn.execute("""
            SELECT name, ordinal, timestamp, tx_hash, payload_json
            FROM events ORDER BY id ASC
        """)
        loaded = []
        for name, ordinal, ts, tx_hash, payload_json in cursor:
            seq = Sequence(timestamp=ts, ordinal=ordinal) if ordinal is not None else None
            loaded.append(LedgerEvent(name=name, payload=json.loads(payload_json), sequence=seq, tx_hash=tx_hash))
        return loaded

    def last_sequence(self) -> Optional[Sequence]:
        row = self.conn.execute("""
            SELECT timestamp, ordinal FROM events
            WHERE ordinal IS NOT NULL
            ORDER BY ordinal DESC LIMIT 1
        """).fetchone()
        return Sequence(timestamp=row[0], ordinal=row[1]) if row else None

    def close(self) -> None:
        if self._conn:
            self._conn.close()
            self._conn = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
