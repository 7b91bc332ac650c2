"""
Vault Crypto Core — Key derivation, field encryption, and key wrapping.

Three layers share one AEAD toolkit:
- Master-password layer: PBKDF2-HMAC-SHA256(password, salt) → 32-byte vault key
- Field layer: vault key → AEAD → "<backend>:<b64(nonce|payload)>" strings
- Envelope layer: HKDF(APP_SECRET_vN, "safepass-envelope-vN") → AES-GCM →
  [secret_id|nonce|payload], wrapping the vault key for at-rest storage
- Session layer: HKDF(process seed, "safepass-session") → AES-GCM with the
  session id as associated data, keeps the cached vault key sealed in memory

Security Note:
    Never log passwords, keys, plaintext or ciphertext values.
    Nonces are random 96-bit; collision probability negligible under normal usage.
"""
import os
import struct
import base64
import binascii
import logging

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.hkdf import HKDF
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
from cryptography.hazmat.primitives.ciphers.aead import AESGCM, ChaCha20Poly1305

from .config import DEFAULT_KDF_ITERATIONS
from .exceptions import DecryptionFailure

logger = logging.getLogger("safepass.vault")

NONCE_SIZE = 12  # 96-bit nonce
TAG_SIZE = 16
SECRET_ID_SIZE = 2  # uint16 big-endian
KEY_LENGTH = 32  # AES-256
SALT_SIZE = 16

APP_SALT = b"safepass-salt"
PBKDF2_ITERATIONS = DEFAULT_KDF_ITERATIONS

CIPHERS: dict[str, type] = {
    "aesgcm": AESGCM,
    "chacha20": ChaCha20Poly1305,
}


def _get_backend() -> str:
    """Return the default AEAD backend name from VAULT_CIPHER_BACKEND env var."""
    backend = os.environ.get("VAULT_CIPHER_BACKEND", "aesgcm").lower()
    if backend not in CIPHERS:
        return "aesgcm"
    return backend


# Field ciphertexts name their backend, so only new fields follow this.
DEFAULT_BACKEND = _get_backend()

# Envelopes and session seals carry no backend tag and always use AES-GCM.
ENVELOPE_CIPHER = AESGCM

# Per-process seed for session sealing; sealed keys never outlive the process.
_SESSION_SEED = os.urandom(KEY_LENGTH)


# ---------------------------------------------------------------------------
# Key derivation
# ---------------------------------------------------------------------------

def derive_key(
    password: str,
    salt: bytes = APP_SALT,
    iterations: int = PBKDF2_ITERATIONS,
) -> bytes:
    """Derive the 32-byte vault key from a master password.

    PBKDF2-HMAC-SHA256; the same (password, salt, iterations) always
    yields the same key.

    Args:
        password: Master password, must be non-empty.
        salt: Fixed application salt or the user's recorded salt.
        iterations: PBKDF2 iteration count.

    Returns:
        32-byte derived key.

    Raises:
        ValueError: If password is empty.
    """
    if not password:
        raise ValueError("Master password cannot be empty")
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=KEY_LENGTH,
        salt=salt,
        iterations=iterations,
    )
    return kdf.derive(password.encode("utf-8"))


def new_salt() -> bytes:
    """Generate a random per-user salt (not secret; stored with the envelope)."""
    return os.urandom(SALT_SIZE)


def hkdf_key(seed: bytes, context: str) -> bytes:
    """Derive a 32-byte subkey using HKDF-SHA256.

    Args:
        seed: Input key material (application secret or session id bytes).
        context: Context string for domain separation.
    """
    hkdf = HKDF(
        algorithm=hashes.SHA256(),
        length=KEY_LENGTH,
        salt=None,  # deterministic derivation for wrapping keys
        info=context.encode("utf-8"),
    )
    return hkdf.derive(seed)


def key_fingerprint(key: bytes) -> str:
    """Return a non-reversible hex tag identifying a vault key."""
    return hkdf_key(key, "safepass-key-fingerprint")[:16].hex()


# ---------------------------------------------------------------------------
# Field encryption
# ---------------------------------------------------------------------------

def encrypt_field(plaintext: str, key: bytes, backend: str | None = None) -> str:
    """Encrypt a single sensitive text field.

    Format: ``<backend>:<urlsafe-b64([nonce 12B][payload + tag 16B])>``

    A fresh nonce is drawn for every call, so equal plaintexts never
    produce equal ciphertexts.

    Args:
        plaintext: Field value, may be empty.
        key: 32-byte vault key.
        backend: AEAD backend name; defaults to DEFAULT_BACKEND.

    Returns:
        Self-describing ciphertext string.
    """
    backend = backend or DEFAULT_BACKEND
    cipher = CIPHERS[backend](key)
    nonce = os.urandom(NONCE_SIZE)
    ct = cipher.encrypt(nonce, plaintext.encode("utf-8"), None)
    blob = base64.urlsafe_b64encode(nonce + ct).decode("ascii")
    return f"{backend}:{blob}"


def decrypt_field(ciphertext: str, key: bytes) -> str:
    """Decrypt a field produced by :func:`encrypt_field`.

    Raises:
        DecryptionFailure: wrong key, tampered or non-ciphertext input.
    """
    backend, sep, blob = ciphertext.partition(":")
    if not sep or backend not in CIPHERS:
        raise DecryptionFailure("Value is not a vault field ciphertext")
    try:
        raw = base64.urlsafe_b64decode(blob.encode("ascii"))
    except (binascii.Error, UnicodeEncodeError, ValueError) as err:
        raise DecryptionFailure("Malformed field ciphertext") from err
    if len(raw) < NONCE_SIZE + TAG_SIZE:
        raise DecryptionFailure(
            f"Field ciphertext too short: {len(raw)} bytes "
            f"(minimum {NONCE_SIZE + TAG_SIZE})"
        )
    cipher = CIPHERS[backend](key)
    try:
        plaintext = cipher.decrypt(raw[:NONCE_SIZE], raw[NONCE_SIZE:], None)
        return plaintext.decode("utf-8")
    except InvalidTag as err:
        raise DecryptionFailure("Field was not encrypted under this key") from err
    except UnicodeDecodeError as err:
        raise DecryptionFailure("Decrypted field is not valid text") from err


# ---------------------------------------------------------------------------
# Envelope wrapping (persistent, document store)
# ---------------------------------------------------------------------------

def wrap_key(key: bytes, secret_id: int, app_secret: bytes) -> bytes:
    """Wrap a vault key under an application secret version.

    Format: [secret_id 2B uint16 BE][nonce 12B][encrypted_key + tag], sealed
    with AES-GCM whatever the field backend is.

    Args:
        key: 32-byte vault key to protect.
        secret_id: Application secret version identifier.
        app_secret: Raw 32-byte application secret for this version.

    Returns:
        Wrapped key bytes with secret_id prefix.
    """
    context = f"safepass-envelope-v{secret_id}"
    derived = hkdf_key(app_secret, context)
    cipher = ENVELOPE_CIPHER(derived)
    nonce = os.urandom(NONCE_SIZE)
    ct = cipher.encrypt(nonce, key, None)
    return struct.pack("!H", secret_id) + nonce + ct


def unwrap_key(wrapped: bytes, app_secrets: dict[int, bytes]) -> bytes:
    """Unwrap a vault key using the embedded application secret version.

    Raises:
        KeyError: If the secret version is not in app_secrets.
        ValueError: If the blob is truncated or the key has a wrong length.
        InvalidTag: If the blob was tampered with or the secret differs.
    """
    _min = SECRET_ID_SIZE + NONCE_SIZE + TAG_SIZE
    if len(wrapped) < _min:
        raise ValueError(
            f"wrapped key too short: {len(wrapped)} bytes (minimum {_min})"
        )
    secret_id = struct.unpack("!H", wrapped[:SECRET_ID_SIZE])[0]
    if secret_id not in app_secrets:
        raise KeyError(
            f"Application secret version {secret_id} not found in provided secrets"
        )
    derived = hkdf_key(app_secrets[secret_id], f"safepass-envelope-v{secret_id}")
    cipher = ENVELOPE_CIPHER(derived)
    nonce = wrapped[SECRET_ID_SIZE:SECRET_ID_SIZE + NONCE_SIZE]
    key = cipher.decrypt(nonce, wrapped[SECRET_ID_SIZE + NONCE_SIZE:], None)
    if len(key) != KEY_LENGTH:
        raise ValueError(f"unwrapped key has {len(key)} bytes, expected {KEY_LENGTH}")
    return key


# ---------------------------------------------------------------------------
# Session-layer sealing (ephemeral, process memory)
# ---------------------------------------------------------------------------

SESSION_CONTEXT = "safepass-session"


def seal_for_session(key: bytes, session_id: str) -> bytes:
    """Seal a vault key for the in-memory cache of one session.

    The sealing key comes from a per-process random seed and the session
    id is bound as associated data, so a sealed value only opens for the
    session that produced it.

    Format: [nonce 12B][encrypted_key + tag 16B]
    """
    cipher = ENVELOPE_CIPHER(hkdf_key(_SESSION_SEED, SESSION_CONTEXT))
    nonce = os.urandom(NONCE_SIZE)
    return nonce + cipher.encrypt(nonce, key, session_id.encode("utf-8"))


def open_for_session(sealed: bytes, session_id: str) -> bytes:
    """Open a value sealed by :func:`seal_for_session`.

    Raises:
        DecryptionFailure: The value is truncated or belongs to another session.
    """
    if len(sealed) < NONCE_SIZE + TAG_SIZE:
        raise DecryptionFailure(f"Sealed session key too short: {len(sealed)} bytes")
    cipher = ENVELOPE_CIPHER(hkdf_key(_SESSION_SEED, SESSION_CONTEXT))
    try:
        return cipher.decrypt(
            sealed[:NONCE_SIZE], sealed[NONCE_SIZE:], session_id.encode("utf-8"),
        )
    except InvalidTag as err:
        raise DecryptionFailure("Sealed key belongs to another session") from err
