# credledger/crypto/keys.py
from pathlib import Path
from typing import Optional

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey,
    Ed25519PublicKey,
)

from credledger.core.encoding import b64url_decode, b64url_encode

IDENTITY_PREFIX = "ed25519:"


class IdentityKeyPair:
    """
    Ed25519 key pair standing behind a ledger identity.
    The identity string is derived from the public key, so whoever holds
    the private key file is the caller the ledger sees.
    """

    def __init__(self, public_key: Ed25519PublicKey, private_key: Optional[Ed25519PrivateKey] = None):
        self._public = public_key
        self._private = private_key

    @classmethod
    def generate(cls) -> "IdentityKeyPair":
        private = Ed25519PrivateKey.generate()
        return cls(private.public_key(), private)

    @classmethod
    def from_public_b64url(cls, value: str) -> "IdentityKeyPair":
        """Verify-only pair from an identity string; ValueError if it is not an Ed25519 key."""
        if value.startswith(IDENTITY_PREFIX):
            value = value[len(IDENTITY_PREFIX):]
        return cls(Ed25519PublicKey.from_public_bytes(b64url_decode(value)))

    @classmethod
    def load(cls, path: str | Path) -> "IdentityKeyPair":
        """Load a PEM (PKCS8, unencrypted) private key written by save()."""
        data = Path(path).read_bytes()
        private = serialization.load_pem_private_key(data, password=None)
        if not isinstance(private, Ed25519PrivateKey):
            raise ValueError(f"{path} does not hold an Ed25519 private key")
        return cls(private.public_key(), private)

    def save(self, path: str | Path) -> Path:
        if self._private is None:
            raise ValueError("Cannot save a verify-only key pair")
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        pem = self._private.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        )
        path.write_bytes(pem)
        path.chmod(0o600)
        return path

    def public_key_b64url(self) -> str:
        raw = self._public.public_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PublicFormat.Raw,
        )
        return b64url_encode(raw)

    @property
    def identity(self) -> str:
        return IDENTITY_PREFIX + self.public_key_b64url()
