"""SafePass Vault — Encrypted credential and note fields under a master-password key.

Security Note (Threat Model):
    The vault key is held in process memory for the session lifetime,
    sealed under a key derived from the session id. A memory dump of the
    application process could expose both, from which the vault key can be
    recovered. This is an accepted limitation — mitigation requires
    HSM/secure enclave integration which is out of scope.
"""

from .config import VaultConfig, RetryPolicy, load_app_secrets, generate_app_secret
from .crypto import derive_key, encrypt_field, decrypt_field
from .envelope import KeyEnvelopeStore
from .exceptions import (
    VaultError,
    KeyUnavailable,
    DecryptionFailure,
    EnvelopeWriteFailure,
    RetrieveFailure,
    RotationPartialFailure,
    StoreError,
    DocumentNotFound,
)
from .key_rotation import KeyRotationCoordinator, RotationReport, ItemState
from .models import Credential, Note
from .repository import VaultRepository
from .storage import DocumentStore, MemoryDocumentStore, FileDocumentStore

__all__ = [
    "VaultConfig",
    "RetryPolicy",
    "load_app_secrets",
    "generate_app_secret",
    "derive_key",
    "encrypt_field",
    "decrypt_field",
    "KeyEnvelopeStore",
    "KeyRotationCoordinator",
    "RotationReport",
    "ItemState",
    "Credential",
    "Note",
    "VaultRepository",
    "DocumentStore",
    "MemoryDocumentStore",
    "FileDocumentStore",
    "VaultError",
    "KeyUnavailable",
    "DecryptionFailure",
    "EnvelopeWriteFailure",
    "RetrieveFailure",
    "RotationPartialFailure",
    "StoreError",
    "DocumentNotFound",
]
