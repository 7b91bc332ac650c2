"""
Vault Items — Credential and Note records as stored in the document store.

Encrypted attributes hold field ciphertext strings; everything else is
plaintext metadata. Each model declares the role of its encrypted fields:

- primary fields carry the item's identity (a credential without its
  secret is useless); rotation never discards them.
- secondary fields may be dropped when they cannot be migrated.
"""
from datetime import datetime, timezone
from typing import Any, ClassVar, Optional

from pydantic import BaseModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class VaultItem(BaseModel):
    """Common shape of every vault record."""

    collection: ClassVar[str] = ""
    primary_fields: ClassVar[tuple[str, ...]] = ()
    secondary_fields: ClassVar[tuple[str, ...]] = ()
    search_fields: ClassVar[tuple[str, ...]] = ("title", "category")

    id: Optional[str] = None
    title: str
    category: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @classmethod
    def encrypted_fields(cls) -> tuple[str, ...]:
        return cls.primary_fields + cls.secondary_fields

    @classmethod
    def from_document(cls, doc_id: str, data: dict[str, Any]) -> "VaultItem":
        return cls.model_validate({**data, "id": doc_id})

    def to_document(self) -> dict[str, Any]:
        """Serializable record without the id (the store owns ids)."""
        return self.model_dump(mode="json", exclude={"id"})

    def matches(self, query: str) -> bool:
        """Case-insensitive match against plaintext metadata."""
        needle = query.strip().lower()
        if not needle:
            return True
        for name in self.search_fields:
            value = getattr(self, name, None)
            if value and needle in str(value).lower():
                return True
        return False


class Credential(VaultItem):
    """Stored login: the ``password`` secret and free-form ``notes`` are encrypted."""

    collection: ClassVar[str] = "passwords"
    primary_fields: ClassVar[tuple[str, ...]] = ("password",)
    secondary_fields: ClassVar[tuple[str, ...]] = ("notes",)
    search_fields: ClassVar[tuple[str, ...]] = (
        "title", "username", "url", "website", "category",
    )

    username: str = ""
    password: str
    url: Optional[str] = None
    website: Optional[str] = None
    notes: Optional[str] = None


class Note(VaultItem):
    """Secure note: ``content`` is encrypted."""

    collection: ClassVar[str] = "notes"
    secondary_fields: ClassVar[tuple[str, ...]] = ("content",)

    content: Optional[str] = None


VAULT_ITEM_TYPES: tuple[type[VaultItem], ...] = (Credential, Note)
