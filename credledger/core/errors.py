# credledger/core/errors.py
"""
Error taxonomy for every ledger and registry failure.

Each error carries a stable ``kind`` string and an HTTP-style status a request
layer can map directly. Ledger errors are raised before any state changes, so
catching one always means nothing was written.
"""


class LedgerError(Exception):
    """Base exception for all credledger errors."""

    kind = "LedgerError"
    http_status = 500

    def __init__(self, message: str = ""):
        super().__init__(message or self.kind)
        self.message = message or self.kind

    def to_dict(self) -> dict:
        return {"error": self.kind, "message": self.message}


class Unauthorized(LedgerError):
    """Caller lacks the role the operation requires."""

    kind = "Unauthorized"
    http_status = 403


class InvalidInput(LedgerError):
    """Empty, malformed or zero-valued argument."""

    kind = "InvalidInput"
    http_status = 400


class AlreadyExists(LedgerError):
    """A record with this certificate id was already created."""

    kind = "AlreadyExists"
    http_status = 409


class AlreadyAuthorized(LedgerError):
    kind = "AlreadyAuthorized"
    http_status = 409


class NotFound(LedgerError):
    """No record exists for the certificate id."""

    kind = "NotFound"
    http_status = 404


class NotAuthorized(LedgerError):
    """Identity is not currently an authorized issuer."""

    kind = "NotAuthorized"
    http_status = 404


class CannotRevokeOwner(LedgerError):
    kind = "CannotRevokeOwner"
    http_status = 409


class NoOp(LedgerError):
    """Requested change would leave state as it is."""

    kind = "NoOp"
    http_status = 409


class StorageError(LedgerError):
    """Persistent storage rejected a write; in-memory state was not touched."""

    kind = "StorageError"
    http_status = 500


class ConfigurationError(LedgerError):
    kind = "ConfigurationError"
    http_status = 500


__all__ = [
    "LedgerError",
    "Unauthorized",
    "InvalidInput",
    "AlreadyExists",
    "AlreadyAuthorized",
    "NotFound",
    "NotAuthorized",
    "CannotRevokeOwner",
    "NoOp",
    "StorageError",
    "ConfigurationError",
]
