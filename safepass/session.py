import uuid
from typing import Optional, Any
from datetime import datetime, timezone
from .vault.crypto import (
    KEY_LENGTH,
    open_for_session,
    seal_for_session,
)


class KeySession:
    """Session-scoped holder of the active vault key.

    Created at login, torn down at logout with ``invalidate()``.
    The key is never persisted: it lives in process memory only, sealed
    under a key derived from the session id, and is opened on ``get()``.
    Cooperative scheduling gives every session a single writer, so no
    locking is done here.
    """

    def __init__(
        self,
        identity: Any,
        *,
        id: Optional[str] = None,
    ) -> None:
        if identity is None:
            raise ValueError("KeySession requires a user identity")
        # Unique ID:
        self._id_ = id or uuid.uuid4().hex
        # Session Identity (user id)
        self._identity = identity
        self._sealed: Optional[bytes] = None
        self._now = datetime.now(timezone.utc)
        self.__created__ = self._now
        self._created = int(self._now.timestamp())

    def __repr__(self) -> str:
        return (
            f'<Key-Session [identity:{self._identity}, created:{self.created}] '
            f'unlocked={self.unlocked}>'
        )

    # --- Properties ---

    @property
    def session_id(self) -> str:
        return self._id_

    @property
    def identity(self) -> Any:
        return self._identity

    @property
    def logon_time(self) -> datetime:
        return self.__created__

    @property
    def created(self) -> int:
        return self._created

    @property
    def unlocked(self) -> bool:
        return self._sealed is not None

    # --- Key access ---

    def get(self) -> Optional[bytes]:
        """Return the cached vault key, or None when the session is locked."""
        if self._sealed is None:
            return None
        return open_for_session(self._sealed, self._id_)

    def set(self, key: Optional[bytes]) -> None:
        """Cache a vault key, or clear the cache with None."""
        if key is None:
            self._sealed = None
            return
        if len(key) != KEY_LENGTH:
            raise ValueError(
                f"Vault key must be {KEY_LENGTH} bytes, got {len(key)}"
            )
        self._sealed = seal_for_session(bytes(key), self._id_)

    def invalidate(self) -> None:
        """Drop the cached key (logout)."""
        self._sealed = None
