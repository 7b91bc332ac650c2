"""
Keyring — login, logout and master-password change for one deployment.

Ties the key envelope store, the rotation coordinator and the item
repository to explicit :class:`KeySession` objects: ``login`` creates
one, ``logout`` clears it, every other call receives it.
"""
import asyncio
import logging
from typing import Any, Optional

from .session import KeySession
from .vault.config import VaultConfig
from .vault.envelope import KeyEnvelopeStore, Sleep
from .vault.exceptions import KeyUnavailable
from .vault.key_rotation import KeyRotationCoordinator, RotationReport
from .vault.repository import VaultRepository
from .vault.storage import DocumentStore

logger = logging.getLogger("safepass.vault")


class Keyring:
    """Key lifecycle entry point used by authentication flows."""

    def __init__(
        self,
        docs: DocumentStore,
        config: Optional[VaultConfig] = None,
        sleep: Sleep = asyncio.sleep,
    ):
        self._docs = docs
        self._config = config or VaultConfig.from_env()
        self.envelopes = KeyEnvelopeStore(docs, self._config, sleep=sleep)
        self.rotation = KeyRotationCoordinator(docs, self.envelopes)

    @property
    def config(self) -> VaultConfig:
        return self._config

    async def login(self, user_id: Any, password: Optional[str] = None) -> KeySession:
        """Open a key session for ``user_id``.

        The stored envelope wins over ``password``; the password is only
        used to bootstrap the first envelope.

        Raises:
            KeyUnavailable: No envelope exists and no password was given.
            RetrieveFailure: The envelope exists but cannot be unwrapped.
        """
        session = KeySession(identity=user_id)
        key = await self.envelopes.retrieve(session, password)
        if key is None:
            raise KeyUnavailable(
                f"No vault key for user {user_id}; a master password is required"
            )
        logger.info("Key session opened for user=%s", user_id)
        return session

    def logout(self, session: KeySession) -> None:
        session.invalidate()
        logger.info("Key session closed for user=%s", session.identity)

    async def change_password(
        self, session: KeySession, new_password: str
    ) -> RotationReport:
        """Rotate the vault to a key derived from ``new_password``."""
        return await self.rotation.rotate(session, new_password)

    def repository(self, session: KeySession) -> VaultRepository:
        return VaultRepository(self._docs, session, self._config.cipher_backend)
