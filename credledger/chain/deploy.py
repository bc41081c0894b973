# credledger/chain/deploy.py
import logging
from typing import Callable, Optional, Union

from credledger.chain.environment import EventBus, ExecutionEnvironment, SequenceClock
from credledger.chain.ledger import CredentialLedger
from credledger.core.errors import ConfigurationError
from credledger.crypto.hashing import HashScheme
from credledger.registry.access import OWNER_META_KEY, AccessRegistry
from credledger.storage import StorageBackend, create_storage

logger = logging.getLogger(__name__)

SCHEME_META_KEY = "hash_scheme"


def _open_storage(storage: Optional[Union[StorageBackend, str]]) -> Optional[StorageBackend]:
    if isinstance(storage, str):
        stripped = storage.strip()
        if stripped.startswith("sqlite://"):
            return create_storage(stripped)
        if stripped:
            # Plain file path -> SQLite
            return create_storage(f"sqlite://{stripped}")
        return None
    return storage


def deploy(
    owner: Optional[str] = None,
    storage: Optional[Union[StorageBackend, str]] = None,
    hash_scheme: Optional[Union[str, HashScheme]] = None,
    owner_name: str = "",
    now: Optional[Callable[[], str]] = None,
    events: Optional[EventBus] = None,
) -> CredentialLedger:
    """
    Build a registry + ledger pair sharing one execution environment.

    With empty (or no) storage this is a fresh deployment and ``owner`` is
    required. With storage that already holds a registry, state is restored;
    ``owner`` and ``hash_scheme`` are then only checked against what is stored.
    """
    store = _open_storage(storage)
    stored_owner = store.get_meta(OWNER_META_KEY) if store is not None else None

    if stored_owner:
        stored_scheme = HashScheme.parse(store.get_meta(SCHEME_META_KEY))
        if hash_scheme is not None and HashScheme.parse(hash_scheme) is not stored_scheme:
            raise ConfigurationError(
                f"Ledger was created with hash scheme '{stored_scheme.value}', "
                f"refusing to open it with '{HashScheme.parse(hash_scheme).value}'"
            )
        if owner and owner != stored_owner:
            logger.warning("Ignoring owner %s: storage already owned by %s", owner, stored_owner)

        clock = SequenceClock(now=now, last=store.last_sequence())
        env = ExecutionEnvironment(clock=clock, events=events)
        registry = AccessRegistry.restore(env, store)
        return CredentialLedger(registry, hash_scheme=stored_scheme)

    if not owner:
        raise ConfigurationError("An owner identity is required to initialize a new ledger")

    scheme = HashScheme.parse(hash_scheme)
    env = ExecutionEnvironment(clock=SequenceClock(now=now), events=events)
    if store is not None:
        with store.transaction():
            store.set_meta(SCHEME_META_KEY, scheme.value)
    registry = AccessRegistry(owner, env=env, storage=store, owner_name=owner_name)
    logger.info("Deployed new ledger (owner %s, scheme %s)", owner, scheme.value)
    return CredentialLedger(registry, hash_scheme=scheme)
