# credledger/config.py
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from credledger.crypto.hashing import HashScheme

DEFAULT_DB_PATH = Path.home() / ".credledger" / "ledger.db"


@dataclass(frozen=True)
class Settings:
    db_path: Path = DEFAULT_DB_PATH
    hash_scheme: HashScheme = HashScheme.PACKED
    log_level: str = "WARNING"

    @classmethod
    def from_env(cls) -> "Settings":
        """
        CREDLEDGER_DB_PATH      SQLite file (default ~/.credledger/ledger.db)
        CREDLEDGER_HASH_SCHEME  packed | length-prefixed (default packed)
        CREDLEDGER_LOG_LEVEL    logging level name (default WARNING)
        """
        env_path = os.environ.get("CREDLEDGER_DB_PATH")
        return cls(
            db_path=Path(env_path) if env_path else DEFAULT_DB_PATH,
            hash_scheme=HashScheme.parse(os.environ.get("CREDLEDGER_HASH_SCHEME")),
            log_level=os.environ.get("CREDLEDGER_LOG_LEVEL", "WARNING"),
        )


def get_db_path(db_flag: Optional[Path] = None, settings: Optional[Settings] = None) -> Path:
    """Resolve DB path in this order:
    1. --db flag
    2. CREDLEDGER_DB_PATH environment variable
    3. Default: ~/.credledger/ledger.db
    """
    if db_flag:
        path = db_flag.resolve()
    else:
        path = (settings or Settings.from_env()).db_path.resolve()

    path.parent.mkdir(parents=True, exist_ok=True)
    return path
