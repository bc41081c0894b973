# tests/test_registry.py
import pytest

from credledger.chain.environment import ExecutionEnvironment, SequenceClock
from credledger.core.errors import (
    AlreadyAuthorized,
    CannotRevokeOwner,
    InvalidInput,
    NoOp,
    NotAuthorized,
    Unauthorized,
)
from credledger.registry.access import AccessRegistry


def fixed_clock():
    return SequenceClock(now=lambda: "2026-01-31T14:00:00.000Z")


@pytest.fixture
def env():
    return ExecutionEnvironment(clock=fixed_clock())


@pytest.fixture
def registry(env):
    return AccessRegistry("O", env=env, owner_name="Registrar")


def test_owner_is_auto_authorized(registry):
    assert registry.owner == "O"
    assert registry.is_authorized("O") is True
    assert registry.issuer_name("O") == "Registrar"


def test_initialization_emits_events(registry, env):
    names = [e.name for e in env.events.history]
    assert names == ["OwnershipTransferred", "IssuerAuthorized"]
    assert env.clock.last.ordinal == 1


def test_empty_initial_owner_rejected():
    with pytest.raises(InvalidInput):
        AccessRegistry("  ")


def test_unknown_identity_lookups(registry):
    assert registry.is_authorized("nobody") is False
    assert registry.issuer_name("nobody") == ""
    info = registry.get_issuer("nobody")
    assert info.authorized is False and info.institution_name == ""


def test_authorize_issuer(registry, env):
    registry.authorize_issuer("O", "I", "Acme College")
    assert registry.is_authorized("I")
    assert registry.issuer_name("I") == "Acme College"

    event = env.events.history[-1]
    assert event.name == "IssuerAuthorized"
    assert event.payload == {"identity": "I", "name": "Acme College"}
    assert event.sequence.ordinal == 2
    assert event.tx_hash


def test_authorize_requires_owner(registry):
    with pytest.raises(Unauthorized):
        registry.authorize_issuer("I", "X", "Rogue U")
    assert registry.is_authorized("X") is False


def test_authorize_unauthorized_checked_before_input(registry):
    with pytest.raises(Unauthorized):
        registry.authorize_issuer("stranger", "", "x")


@pytest.mark.parametrize("identity", ["", "   ", None])
def test_authorize_empty_identity(registry, identity):
    with pytest.raises(InvalidInput):
        registry.authorize_issuer("O", identity, "Nameless")


def test_authorize_twice_fails(registry, env):
    registry.authorize_issuer("O", "I", "Acme College")
    before = len(env.events.history)
    with pytest.raises(AlreadyAuthorized):
        registry.authorize_issuer("O", "I", "Other Name")
    assert registry.issuer_name("I") == "Acme College"
    assert len(env.events.history) == before


def test_reauthorize_overwrites_name(registry):
    registry.authorize_issuer("O", "I", "Acme College")
    registry.revoke_issuer("O", "I")
    assert registry.issuer_name("I") == "Acme College"  # name kept after revoke
    registry.authorize_issuer("O", "I", "Acme University")
    assert registry.issuer_name("I") == "Acme University"


def test_revoke_issuer(registry, env):
    registry.authorize_issuer("O", "I", "Acme College")
    registry.revoke_issuer("O", "I")
    assert registry.is_authorized("I") is False
    assert env.events.history[-1].name == "IssuerRevoked"
    assert env.events.history[-1].payload == {"identity": "I"}


def test_revoke_requires_owner(registry):
    registry.authorize_issuer("O", "I", "Acme College")
    with pytest.raises(Unauthorized):
        registry.revoke_issuer("I", "I")
    assert registry.is_authorized("I")


def test_revoke_not_authorized(registry):
    with pytest.raises(NotAuthorized):
        registry.revoke_issuer("O", "ghost")
    registry.authorize_issuer("O", "I", "Acme College")
    registry.revoke_issuer("O", "I")
    with pytest.raises(NotAuthorized):
        registry.revoke_issuer("O", "I")


def test_cannot_revoke_owner(registry):
    with pytest.raises(CannotRevokeOwner):
        registry.revoke_issuer("O", "O")
    assert registry.is_authorized("O")


def test_transfer_ownership(registry, env):
    registry.transfer_ownership("O", "X")
    assert registry.owner == "X"
    assert registry.is_authorized("X")
    assert registry.is_authorized("O")  # old owner keeps issuer rights

    names = [e.name for e in env.events.history[-2:]]
    assert names == ["OwnershipTransferred", "IssuerAuthorized"]
    assert env.events.history[-2].payload == {"previous_owner": "O", "new_owner": "X"}

    registry.authorize_issuer("X", "I", "Acme College")
    with pytest.raises(Unauthorized):
        registry.authorize_issuer("O", "J", "Other College")


def test_transfer_to_existing_issuer_keeps_name(registry, env):
    registry.authorize_issuer("O", "I", "Acme College")
    registry.transfer_ownership("O", "I")
    assert registry.issuer_name("I") == "Acme College"
    # Already authorized: no extra IssuerAuthorized event
    assert env.events.history[-1].name == "OwnershipTransferred"


def test_transfer_to_revoked_issuer_reauthorizes_with_stored_name(registry):
    registry.authorize_issuer("O", "I", "Acme College")
    registry.revoke_issuer("O", "I")
    registry.transfer_ownership("O", "I")
    assert registry.is_authorized("I")
    assert registry.issuer_name("I") == "Acme College"


def test_transfer_failures(registry):
    with pytest.raises(Unauthorized):
        registry.transfer_ownership("I", "I")
    with pytest.raises(InvalidInput):
        registry.transfer_ownership("O", "")
    with pytest.raises(NoOp):
        registry.transfer_ownership("O", "O")
    assert registry.owner == "O"


def test_previous_owner_can_be_revoked_after_transfer(registry):
    registry.transfer_ownership("O", "X")
    registry.revoke_issuer("X", "O")
    assert registry.is_authorized("O") is False
    with pytest.raises(CannotRevokeOwner):
        registry.revoke_issuer("X", "X")


def test_list_issuers(registry):
    registry.authorize_issuer("O", "B", "Beta")
    registry.authorize_issuer("O", "A", "Alpha")
    registry.revoke_issuer("O", "B")
    listed = [(i.identity, i.authorized) for i in registry.list_issuers()]
    assert listed == [("A", True), ("B", False), ("O", True)]


def test_subscriber_receives_events_and_can_unsubscribe(registry, env):
    seen = []
    unsubscribe = env.events.subscribe(seen.append)
    registry.authorize_issuer("O", "I", "Acme College")
    unsubscribe()
    registry.revoke_issuer("O", "I")
    assert [e.name for e in seen] == ["IssuerAuthorized"]


def test_failing_subscriber_does_not_undo_write(registry, env):
    def broken(event):
        raise RuntimeError("observer down")

    env.events.subscribe(broken)
    registry.authorize_issuer("O", "I", "Acme College")
    assert registry.is_authorized("I")


@pytest.mark.parametrize("identity, name", [
    ("I", "Acme \ud800 College"),
    ("I-\udfff", "Acme College"),
])
def test_authorize_rejects_lone_surrogates(registry, env, identity, name):
    events_before = len(env.events.history)
    with pytest.raises(InvalidInput):
        registry.authorize_issuer("O", identity, name)
    assert registry.list_issuers() == [registry.get_issuer("O")]
    assert len(env.events.history) == events_before
    assert env.clock.last.ordinal == 1


def test_transfer_rejects_lone_surrogate(registry):
    with pytest.raises(InvalidInput):
        registry.transfer_ownership("O", "X\ud800")
    assert registry.owner == "O"


def test_initial_owner_name_must_be_text():
    with pytest.raises(InvalidInput):
        AccessRegistry("O", owner_name="Registrar \ud800")


def test_subscriber_may_write_back_into_registry(registry, env):
    def authorize_deputy(event):
        if event.name == "IssuerAuthorized" and event.payload["identity"] == "I":
            registry.authorize_issuer("O", "D", "Deputy")

    env.events.subscribe(authorize_deputy)
    registry.authorize_issuer("O", "I", "Acme College")
    assert registry.is_authorized("D")
    assert [e.payload["identity"] for e in env.events.of_type("IssuerAuthorized")] == ["O", "I", "D"]
