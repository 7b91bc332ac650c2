"""
Vault Exceptions.
"""
from typing import Any, Optional


class VaultError(Exception):
    """Base class for every vault key-lifecycle error."""


class KeyUnavailable(VaultError):
    """No session key could be resolved and no password was given."""


class DecryptionFailure(VaultError):
    """Ciphertext was not produced by a compatible cipher/key pair."""


class EnvelopeWriteFailure(VaultError):
    """The key envelope could not be written to the document store."""


class RetrieveFailure(VaultError):
    """The key envelope exists but could not be read or unwrapped."""

    def __init__(self, message: str, attempts: int = 0):
        super().__init__(message)
        self.attempts = attempts


class RotationPartialFailure(VaultError):
    """One or more vault items were not fully migrated to the new key."""

    def __init__(self, message: str, report: Optional[Any] = None):
        super().__init__(message)
        self.report = report


class StoreError(VaultError):
    """Raised by document-store backends when an operation is rejected."""


class DocumentNotFound(StoreError):
    """The addressed document does not exist."""
