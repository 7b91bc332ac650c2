"""
Key Envelope Store — wrapped vault key persisted per user.

The envelope lives at ``encryption/key`` in the user's document space:

    {
        "wrapped_key": <b64 [secret_id|nonce|payload]>,
        "key_version": <application secret version>,
        "salt": <b64 salt used for password derivation>,
        "kdf_iterations": <PBKDF2 iterations>,
        "updated_at": <iso8601>
    }

``retrieve`` prefers the cached session key, then the envelope, and only
derives from the password when no envelope exists yet (first login).
Envelope reads are retried under a :class:`RetryPolicy` to absorb
eventual-consistency lag right after a write.

Security Note:
    Never log keys, wrapped keys or passwords. Only log user IDs,
    attempt numbers and secret versions.
"""
import base64
import asyncio
import binascii
import logging
from typing import TYPE_CHECKING, Any, Optional
from collections.abc import Awaitable, Callable

from cryptography.exceptions import InvalidTag

from .config import VaultConfig
from .crypto import APP_SALT, derive_key, new_salt, unwrap_key, wrap_key
from .exceptions import EnvelopeWriteFailure, RetrieveFailure, StoreError
from .models import utcnow
from .storage import DocumentStore

if TYPE_CHECKING:
    from ..session import KeySession

logger = logging.getLogger("safepass.vault")

ENVELOPE_COLLECTION = "encryption"
ENVELOPE_ID = "key"

Sleep = Callable[[float], Awaitable[Any]]


class KeyEnvelopeStore:
    """Wraps, persists, and recovers the per-user vault key."""

    def __init__(
        self,
        docs: DocumentStore,
        config: VaultConfig,
        sleep: Sleep = asyncio.sleep,
    ):
        self._docs = docs
        self._config = config
        self._sleep = sleep

    @property
    def config(self) -> VaultConfig:
        return self._config

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _read(self, user_id: Any) -> Optional[dict]:
        return await self._docs.get_one(user_id, ENVELOPE_COLLECTION, ENVELOPE_ID)

    def _unwrap(self, record: dict) -> bytes:
        """Unwrap the envelope key, normalising failures to ValueError."""
        try:
            wrapped = base64.b64decode(record["wrapped_key"], validate=True)
            return unwrap_key(wrapped, self._config.app_secrets)
        except (InvalidTag, KeyError, binascii.Error, TypeError) as err:
            raise ValueError(f"envelope unwrap failed: {type(err).__name__}") from err

    def _fresh_salt(self) -> bytes:
        if self._config.salt_mode == "fixed":
            return APP_SALT
        return new_salt()

    async def salt_for(self, user_id: Any) -> bytes:
        """Return the salt recorded for a user, or a new one if none is recorded."""
        record = await self._read(user_id)
        if record and record.get("salt"):
            return base64.b64decode(record["salt"])
        return self._fresh_salt()

    def derive(self, password: str, salt: bytes) -> bytes:
        return derive_key(password, salt, self._config.kdf_iterations)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def store(
        self,
        user_id: Any,
        key: bytes,
        salt: Optional[bytes] = None,
    ) -> None:
        """Wrap ``key`` with the active application secret and upsert the envelope.

        Args:
            user_id: Owner of the envelope.
            key: 32-byte vault key.
            salt: Salt the key was derived with; left unchanged when None.

        Raises:
            EnvelopeWriteFailure: If the document store rejects the write.
        """
        secret_id = self._config.active_secret_id
        wrapped = wrap_key(key, secret_id, self._config.active_secret)
        record = {
            "wrapped_key": base64.b64encode(wrapped).decode("ascii"),
            "key_version": secret_id,
            "kdf_iterations": self._config.kdf_iterations,
            "updated_at": utcnow().isoformat(),
        }
        if salt is not None:
            record["salt"] = base64.b64encode(salt).decode("ascii")
        try:
            await self._docs.set_one(
                user_id, ENVELOPE_COLLECTION, ENVELOPE_ID, record, merge=True,
            )
        except StoreError as err:
            logger.error("Envelope write rejected for user=%s: %s", user_id, err)
            raise EnvelopeWriteFailure(
                f"Unable to store key envelope for user {user_id}"
            ) from err
        logger.debug(
            "Envelope stored: user=%s secret_version=%d", user_id, secret_id,
        )

    async def retrieve(
        self,
        session: "KeySession",
        password: Optional[str] = None,
    ) -> Optional[bytes]:
        """Resolve the vault key for the session's user.

        Lookup order: session cache → envelope → password bootstrap.

        Args:
            session: Key session of the user (``session.identity`` is the user id).
            password: Master password; only used when no envelope exists.

        Returns:
            The vault key, or None when no envelope exists and no password
            was supplied.

        Raises:
            RetrieveFailure: The envelope exists but stayed unreadable, or the
                store kept failing, for every attempt.
        """
        cached = session.get()
        if cached is not None:
            return cached

        user_id = session.identity
        policy = self._config.retry
        failure: Optional[str] = None
        for attempt in range(1, policy.max_attempts + 1):
            try:
                record = await self._read(user_id)
            except StoreError as err:
                failure = f"envelope read failed: {err}"
                record = None
                logger.warning(
                    "Envelope read error for user=%s (attempt %d/%d): %s",
                    user_id, attempt, policy.max_attempts, err,
                )
            else:
                if not record or not record.get("wrapped_key"):
                    if password:
                        return await self._bootstrap(session, password)
                    failure = None
                    logger.debug(
                        "No envelope for user=%s (attempt %d/%d)",
                        user_id, attempt, policy.max_attempts,
                    )
                else:
                    try:
                        key = self._unwrap(record)
                    except ValueError as err:
                        failure = str(err)
                        logger.warning(
                            "Envelope unreadable for user=%s (attempt %d/%d)",
                            user_id, attempt, policy.max_attempts,
                        )
                    else:
                        session.set(key)
                        logger.info(
                            "Vault key unwrapped for user=%s (secret_version=%s)",
                            user_id, record.get("key_version"),
                        )
                        return key
            if attempt < policy.max_attempts:
                await self._sleep(policy.delay)

        if failure is not None:
            logger.error(
                "Vault key for user=%s unreadable after %d attempt(s)",
                user_id, policy.max_attempts,
            )
            raise RetrieveFailure(
                f"Key envelope for user {user_id} could not be read: {failure}",
                attempts=policy.max_attempts,
            )
        logger.info(
            "No key envelope for user=%s after %d attempt(s)",
            user_id, policy.max_attempts,
        )
        return None

    async def _bootstrap(self, session: "KeySession", password: str) -> bytes:
        """First login: derive a key from the password and store its envelope."""
        salt = self._fresh_salt()
        key = self.derive(password, salt)
        await self.store(session.identity, key, salt)
        session.set(key)
        logger.info("Vault key bootstrapped for user=%s", session.identity)
        return key

    async def recover(self, session: "KeySession", password: str) -> bytes:
        """Rebuild an unreadable envelope from the master password.

        Derivation is deterministic, so the recorded salt and the password
        reproduce the key the envelope was caching.

        Raises:
            EnvelopeWriteFailure: If the rebuilt envelope cannot be stored.
        """
        user_id = session.identity
        try:
            record = await self._read(user_id)
        except StoreError as err:
            raise RetrieveFailure(
                f"Key envelope for user {user_id} could not be read: {err}",
            ) from err
        if record and record.get("salt"):
            salt = base64.b64decode(record["salt"])
        elif record:
            # envelopes written before per-user salts
            salt = APP_SALT
        else:
            salt = self._fresh_salt()
        key = self.derive(password, salt)
        await self.store(user_id, key, salt)
        session.set(key)
        logger.info("Vault key envelope rebuilt for user=%s", user_id)
        return key
