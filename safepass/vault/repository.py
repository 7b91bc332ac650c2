"""
VaultRepository — Credential and Note storage with transparent field encryption.

Provides the item API used by presentation layers:
- ``add_credential`` / ``add_note`` — encrypt sensitive fields and insert
- ``update_credential`` / ``update_note`` — re-encrypt changed fields
- ``delete_credential`` / ``delete_note``
- ``list_credentials`` / ``list_notes`` / ``get_credential`` / ``get_note``
- ``reveal(item)`` — decrypt an item's sensitive fields for display
- ``search(query)`` — filter by plaintext metadata

Items handed out by the repository always carry ciphertext; plaintext
only exists in the dict returned by ``reveal``.

Security Note:
    Never log plaintext or ciphertext values. Only log item ids,
    collections and user IDs.
"""
import logging
from typing import TYPE_CHECKING, Any, Optional

from .crypto import decrypt_field, encrypt_field
from .exceptions import DocumentNotFound, KeyUnavailable
from .models import Credential, Note, VaultItem, utcnow
from .storage import DocumentStore

if TYPE_CHECKING:
    from ..session import KeySession

logger = logging.getLogger("safepass.vault")


class VaultRepository:
    """Vault items of one session user."""

    READONLY_FIELDS = frozenset({"id", "created_at", "updated_at"})

    def __init__(
        self,
        docs: DocumentStore,
        session: "KeySession",
        cipher_backend: Optional[str] = None,
    ):
        self._docs = docs
        self._session = session
        self._backend = cipher_backend

    @property
    def user_id(self) -> Any:
        return self._session.identity

    def _key(self) -> bytes:
        key = self._session.get()
        if key is None:
            raise KeyUnavailable(
                f"No vault key in session for user {self.user_id}; log in again"
            )
        return key

    def _seal(self, model: type[VaultItem], values: dict[str, Any]) -> dict[str, Any]:
        """Encrypt the sensitive entries of ``values``; blank secondary fields become None.

        Raises:
            ValueError: A primary field is missing its value.
        """
        key = self._key()
        sealed = dict(values)
        for name in model.encrypted_fields():
            if name not in sealed:
                continue
            value = sealed[name]
            if name in model.primary_fields and (not isinstance(value, str) or not value.strip()):
                raise ValueError(f"{model.__name__}.{name} cannot be empty")
            if value is None or (name in model.secondary_fields and not value.strip()):
                sealed[name] = None
                continue
            sealed[name] = encrypt_field(value, key, self._backend)
        return sealed

    # ------------------------------------------------------------------
    # Generic operations
    # ------------------------------------------------------------------

    async def _add(self, model: type[VaultItem], values: dict[str, Any]) -> VaultItem:
        item = model(**self._seal(model, values))
        item.id = await self._docs.add_one(
            self.user_id, model.collection, item.to_document(),
        )
        logger.debug(
            "Vault item added: user=%s %s/%s", self.user_id, model.collection, item.id,
        )
        return item

    async def _get(self, model: type[VaultItem], item_id: str) -> Optional[VaultItem]:
        data = await self._docs.get_one(self.user_id, model.collection, item_id)
        if data is None:
            return None
        return model.from_document(item_id, data)

    async def _update(
        self, model: type[VaultItem], item_id: str, changes: dict[str, Any]
    ) -> VaultItem:
        unknown = sorted(
            name for name in changes
            if name not in model.model_fields or name in self.READONLY_FIELDS
        )
        if unknown:
            raise ValueError(
                f"Cannot update {model.__name__} field(s): {', '.join(unknown)}"
            )
        current = await self._docs.get_one(self.user_id, model.collection, item_id)
        if current is None:
            raise DocumentNotFound(f"{model.collection}/{item_id} does not exist")
        updates = self._seal(model, changes)
        updates["updated_at"] = utcnow().isoformat()
        # rejects values the stored record could not be read back with
        model.from_document(item_id, {**current, **updates})
        await self._docs.update_one(self.user_id, model.collection, item_id, updates)
        logger.debug(
            "Vault item updated: user=%s %s/%s", self.user_id, model.collection, item_id,
        )
        return await self._get(model, item_id)

    async def _delete(self, model: type[VaultItem], item_id: str) -> None:
        await self._docs.delete_one(self.user_id, model.collection, item_id)
        logger.debug(
            "Vault item deleted: user=%s %s/%s", self.user_id, model.collection, item_id,
        )

    async def _list(self, model: type[VaultItem]) -> list[VaultItem]:
        documents = await self._docs.list_all(self.user_id, model.collection)
        items = [model.from_document(doc_id, data) for doc_id, data in documents.items()]
        return sorted(items, key=lambda item: item.updated_at, reverse=True)

    # ------------------------------------------------------------------
    # Credentials
    # ------------------------------------------------------------------

    async def add_credential(
        self,
        title: str,
        password: str,
        username: str = "",
        url: Optional[str] = None,
        website: Optional[str] = None,
        category: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> Credential:
        return await self._add(Credential, {
            "title": title,
            "username": username,
            "password": password,
            "url": url,
            "website": website,
            "category": category,
            "notes": notes,
        })

    async def update_credential(self, item_id: str, **changes: Any) -> Credential:
        return await self._update(Credential, item_id, changes)

    async def delete_credential(self, item_id: str) -> None:
        await self._delete(Credential, item_id)

    async def get_credential(self, item_id: str) -> Optional[Credential]:
        return await self._get(Credential, item_id)

    async def list_credentials(self) -> list[Credential]:
        return await self._list(Credential)

    # ------------------------------------------------------------------
    # Notes
    # ------------------------------------------------------------------

    async def add_note(
        self, title: str, content: str, category: Optional[str] = None
    ) -> Note:
        return await self._add(Note, {
            "title": title,
            "content": content,
            "category": category,
        })

    async def update_note(self, item_id: str, **changes: Any) -> Note:
        return await self._update(Note, item_id, changes)

    async def delete_note(self, item_id: str) -> None:
        await self._delete(Note, item_id)

    async def get_note(self, item_id: str) -> Optional[Note]:
        return await self._get(Note, item_id)

    async def list_notes(self) -> list[Note]:
        return await self._list(Note)

    # ------------------------------------------------------------------
    # Display helpers
    # ------------------------------------------------------------------

    def reveal(self, item: VaultItem) -> dict[str, Optional[str]]:
        """Decrypt the sensitive fields of an item.

        Raises:
            KeyUnavailable: The session holds no key.
            DecryptionFailure: A field was not encrypted under the session key.
        """
        key = self._key()
        revealed: dict[str, Optional[str]] = {}
        for name in item.encrypted_fields():
            value = getattr(item, name)
            revealed[name] = decrypt_field(value, key) if value else None
        return revealed

    async def search(self, query: str) -> dict[str, list[VaultItem]]:
        """Return credentials and notes whose metadata matches ``query``."""
        return {
            Credential.collection: [
                item for item in await self.list_credentials() if item.matches(query)
            ],
            Note.collection: [
                item for item in await self.list_notes() if item.matches(query)
            ],
        }
