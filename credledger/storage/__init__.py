"""
Storage backends for persistent credential ledgers.
"""

from abc import ABC, abstractmethod
from contextlib import AbstractContextManager
from typing import List, Optional
from pathlib import Path

from credledger.core.types import CredentialRecord, IssuerInfo, LedgerEvent, Sequence


class StorageBackend(ABC):
    """
    Abstract base for all persistent storage implementations.

    Writers wrap related calls in transaction(); either all of them land or
    none do, and a failure surfaces as StorageError.
    """

    @abstractmethod
    def transaction(self) -> AbstractContextManager:
        pass

    @abstractmethod
    def get_meta(self, key: str) -> Optional[str]:
        pass

    @abstractmethod
    def set_meta(self, key: str, value: str) -> None:
        pass

    @abstractmethod
    def save_issuer(self, info: IssuerInfo) -> None:
        pass

    @abstractmethod
    def load_issuers(self) -> List[IssuerInfo]:
        pass

    @abstractmethod
    def save_record(self, record: CredentialRecord) -> None:
        pass

    @abstractmethod
    def load_records(self) -> List[CredentialRecord]:
        """All records in creation order."""

    @abstractmethod
    def append_event(self, event: LedgerEvent) -> None:
        pass

    @abstractmethod
    def load_events(self) -> List[LedgerEvent]:
        pass

    @abstractmethod
    def last_sequence(self) -> Optional[Sequence]:
        pass

    @abstractmethod
    def close(self) -> None:
        pass


def create_storage(uri: str) -> StorageBackend:
    if uri.startswith("sqlite://"):
        from .sqlite import SQLiteStorage
        # sqlite:///abs/path.db is absolute, sqlite://rel/path.db is relative to cwd
        raw_path = uri[len("sqlite://"):]
        if not raw_path:
            raise ValueError(f"Missing database path in storage URI: {uri}")
        if raw_path == ":memory:":
            return SQLiteStorage(raw_path)
        return SQLiteStorage(Path(raw_path).resolve())
    else:
        raise ValueError(f"Unsupported storage URI: {uri}")


from .sqlite import SQLiteStorage

__all__ = ["StorageBackend", "create_storage", "SQLiteStorage"]
