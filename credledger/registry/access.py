# credledger/registry/access.py
"""
Issuer authorization registry.

Holds the single owner identity and the identity -> (authorized, institution
name) map. Every mutation runs under the environment's serialization lock,
validates everything first, persists, then swaps in a new immutable snapshot.
Readers never take the lock; they always see one complete snapshot.
"""
import logging
from dataclasses import dataclass, replace
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional

from credledger.chain.environment import ExecutionEnvironment
from credledger.core.encoding import require_text
from credledger.core.errors import (
    AlreadyAuthorized,
    CannotRevokeOwner,
    ConfigurationError,
    InvalidInput,
    NoOp,
    NotAuthorized,
    Unauthorized,
)
from credledger.core.types import IssuerInfo, LedgerEvent, Sequence
from credledger.crypto.hashing import transaction_hash
from credledger.storage import StorageBackend

logger = logging.getLogger(__name__)

OWNER_META_KEY = "owner"

ISSUER_AUTHORIZED = "IssuerAuthorized"
ISSUER_REVOKED = "IssuerRevoked"
OWNERSHIP_TRANSFERRED = "OwnershipTransferred"


@dataclass(frozen=True)
class _RegistryState:
    owner: str
    issuers: Mapping[str, IssuerInfo]


def _blank(identity) -> bool:
    return identity is None or not str(identity).strip()


class AccessRegistry:
    """Who may write to the ledger, and under what institutional name."""

    def __init__(
        self,
        owner: str,
        env: Optional[ExecutionEnvironment] = None,
        storage: Optional[StorageBackend] = None,
        owner_name: str = "",
    ):
        if _blank(owner):
            raise InvalidInput("Initial owner identity is required")
        require_text(owner, "Owner identity")
        require_text(owner_name, "Institution name")

        self.env = env or ExecutionEnvironment()
        self.storage = storage
        self._state = _RegistryState(owner=owner, issuers=MappingProxyType({}))

        # Initialization is itself a write: owner set and auto-authorized
        with self.env.serialized():
            info = IssuerInfo(identity=owner, authorized=True, institution_name=owner_name)
            seq = self.env.clock.propose()
            events = [
                self._event(OWNERSHIP_TRANSFERRED, seq, {"previous_owner": "", "new_owner": owner}),
                self._event(ISSUER_AUTHORIZED, seq, {"identity": owner, "name": owner_name}),
            ]
            self._commit(
                _RegistryState(owner=owner, issuers=MappingProxyType({owner: info})),
                seq, [info], events, owner_changed=True,
            )
        logger.info("Registry initialized with owner %s", owner)

    @classmethod
    def restore(cls, env: ExecutionEnvironment, storage: StorageBackend) -> "AccessRegistry":
        """Rebuild the registry from storage without emitting or persisting anything."""
        owner = storage.get_meta(OWNER_META_KEY)
        if not owner:
            raise ConfigurationError("Storage holds no registry (owner missing)")

        registry = cls.__new__(cls)
        registry.env = env
        registry.storage = storage
        issuers = {info.identity: info for info in storage.load_issuers()}
        if not issuers.get(owner, IssuerInfo(owner)).authorized:
            raise ConfigurationError(f"Stored owner {owner} is not an authorized issuer")
        registry._state = _RegistryState(owner=owner, issuers=MappingProxyType(issuers))
        logger.info("Registry restored: owner %s, %d issuers", owner, len(issuers))
        return registry

    # ── lookups (lock-free)

    @property
    def owner(self) -> str:
        return self._state.owner

    def is_authorized(self, identity: str) -> bool:
        info = self._state.issuers.get(identity)
        return bool(info and info.authorized)

    def issuer_name(self, identity: str) -> str:
        info = self._state.issuers.get(identity)
        return info.institution_name if info else ""

    def get_issuer(self, identity: str) -> IssuerInfo:
        return self._state.issuers.get(identity) or IssuerInfo(identity=identity)

    def list_issuers(self) -> List[IssuerInfo]:
        return sorted(self._state.issuers.values(), key=lambda i: i.identity)

    # ── owner-only mutations

    def authorize_issuer(self, caller: str, identity: str, name: str) -> None:
        with self.env.serialized():
            state = self._state
            self._require_owner(caller, state, "authorize issuers")
            if _blank(identity):
                raise InvalidInput("Issuer identity is required")
            require_text(identity, "Issuer identity")
            current = state.issuers.get(identity)
            if current and current.authorized:
                raise AlreadyAuthorized(f"{identity} is already an authorized issuer")

            name = name or ""
            require_text(name, "Institution name")
            info = IssuerInfo(identity=identity, authorized=True, institution_name=name)
            seq = self.env.clock.propose()
            event = self._event(ISSUER_AUTHORIZED, seq, {"identity": identity, "name": name})
            self._commit(self._with_issuer(state, info), seq, [info], [event])
        logger.info("Issuer authorized: %s (%s)", identity, name)

    def revoke_issuer(self, caller: str, identity: str) -> None:
        with self.env.serialized():
            state = self._state
            self._require_owner(caller, state, "revoke issuers")
            current = state.issuers.get(identity)
            if not (current and current.authorized):
                raise NotAuthorized(f"{identity} is not an authorized issuer")
            if identity == state.owner:
                raise CannotRevokeOwner("The owner cannot be revoked; transfer ownership first")

            info = replace(current, authorized=False)
            seq = self.env.clock.propose()
            event = self._event(ISSUER_REVOKED, seq, {"identity": identity})
            self._commit(self._with_issuer(state, info), seq, [info], [event])
        logger.info("Issuer revoked: %s", identity)

    def transfer_ownership(self, caller: str, new_owner: str) -> None:
        with self.env.serialized():
            state = self._state
            self._require_owner(caller, state, "transfer ownership")
            if _blank(new_owner):
                raise InvalidInput("New owner identity is required")
            require_text(new_owner, "New owner identity")
            if new_owner == state.owner:
                raise NoOp(f"{new_owner} is already the owner")

            seq = self.env.clock.propose()
            events = [self._event(OWNERSHIP_TRANSFERRED, seq, {
                "previous_owner": state.owner, "new_owner": new_owner,
            })]
            changed = []
            new_state = replace(state, owner=new_owner)
            current = state.issuers.get(new_owner)
            if not (current and current.authorized):
                # Name stays whatever was stored before, possibly empty
                info = IssuerInfo(
                    identity=new_owner,
                    authorized=True,
                    institution_name=current.institution_name if current else "",
                )
                changed.append(info)
                new_state = self._with_issuer(new_state, info)
                events.append(self._event(ISSUER_AUTHORIZED, seq, {
                    "identity": new_owner, "name": info.institution_name,
                }))
            self._commit(new_state, seq, changed, events, owner_changed=True)
        logger.info("Ownership transferred: %s -> %s", state.owner, new_owner)

    # ── internals

    def _require_owner(self, caller: str, state: _RegistryState, action: str) -> None:
        if _blank(caller) or caller != state.owner:
            logger.warning("Rejected %s: %s is not the owner", action, caller)
            raise Unauthorized(f"Only the owner may {action}")

    @staticmethod
    def _with_issuer(state: _RegistryState, info: IssuerInfo) -> _RegistryState:
        issuers: Dict[str, IssuerInfo] = dict(state.issuers)
        issuers[info.identity] = info
        return replace(state, issuers=MappingProxyType(issuers))

    @staticmethod
    def _event(name: str, seq: Sequence, payload: dict) -> LedgerEvent:
        return LedgerEvent(name=name, payload=payload, sequence=seq,
                           tx_hash=transaction_hash(name, seq, payload))

    def _commit(self, new_state, seq, changed, events, owner_changed=False) -> None:
        """Persist, then publish. Caller holds the lock and has done every check.

        Subscribers are called once the outermost serialized block exits.
        """
        if self.storage is not None:
            with self.storage.transaction():
                if owner_changed:
                    self.storage.set_meta(OWNER_META_KEY, new_state.owner)
                for info in changed:
                    self.storage.save_issuer(info)
                for event in events:
                    self.storage.append_event(event)

        self._state = new_state
        self.env.clock.commit(seq)
        for event in events:
            self.env.events.publish(event)
