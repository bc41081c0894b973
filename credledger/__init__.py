# credledger/__init__.py
"""
Credledger — tamper-evident ledger of educational credentials.
Write-once credential records keyed by certificate id, gated by an owner-managed
list of trusted issuers and verified by a deterministic hash of the plaintext fields.
"""

__version__ = "0.1.0-dev"
