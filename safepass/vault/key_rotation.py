"""
Vault Key Rotation — re-encryption of every vault item after a master-password change.

Walks all credentials and notes of a user, decrypts each encrypted field
with the current session key and re-encrypts it with the key derived
from the new password. Items are updated one at a time; a failing item
never blocks the others.

Progress is journaled per item at ``encryption/rotation``:

    {
        "fingerprint": <tag of the target key>,
        "salt": <b64 salt of the target key>,
        "status": "in_progress" | "complete",
        "items": {"<collection>/<id>": "pending" | "reencrypted" | "failed"},
    }

Re-running a rotation with the same new password resumes the journal and
skips items already re-encrypted, as long as their fields still open under
the new key (an edit made under the old key in between is migrated
again). Fields that no longer open under the old key but open under the
new one are treated as already rotated.

Security Note:
    Plaintext exists in memory only during re-encryption of each field.
    Never log plaintext or ciphertext values.
"""
import base64
import logging
from enum import Enum
from typing import TYPE_CHECKING, Any, Optional

from pydantic import BaseModel, Field

from .crypto import decrypt_field, encrypt_field, key_fingerprint
from .envelope import ENVELOPE_COLLECTION, KeyEnvelopeStore
from .exceptions import DecryptionFailure, RotationPartialFailure, StoreError
from .models import VAULT_ITEM_TYPES, VaultItem, utcnow
from .storage import DocumentStore

if TYPE_CHECKING:
    from ..session import KeySession

logger = logging.getLogger("safepass.vault")

JOURNAL_ID = "rotation"


class ItemState(str, Enum):
    PENDING = "pending"
    REENCRYPTED = "reencrypted"
    FAILED = "failed"


class RotationReport(BaseModel):
    """Outcome of a rotation run."""

    total: int = 0
    rotated: int = 0
    skipped: int = 0
    errors: int = 0
    bootstrap: bool = False
    resumed: bool = False
    items: dict[str, ItemState] = Field(default_factory=dict)
    failures: dict[str, list[str]] = Field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.errors == 0


class KeyRotationCoordinator:
    """Moves a user's vault from the session key to a new password key."""

    def __init__(self, docs: DocumentStore, envelopes: KeyEnvelopeStore):
        self._docs = docs
        self._envelopes = envelopes
        self._config = envelopes.config

    # ------------------------------------------------------------------
    # Journal helpers
    # ------------------------------------------------------------------

    async def _load_journal(self, user_id: Any) -> Optional[dict]:
        try:
            return await self._docs.get_one(user_id, ENVELOPE_COLLECTION, JOURNAL_ID)
        except StoreError as err:
            logger.warning(
                "Rotation journal unreadable for user=%s, starting over: %s",
                user_id, err,
            )
            return None

    async def _save_journal(self, user_id: Any, journal: dict) -> None:
        try:
            await self._docs.set_one(
                user_id, ENVELOPE_COLLECTION, JOURNAL_ID, journal, merge=False,
            )
        except StoreError as err:
            logger.warning(
                "Rotation journal write failed for user=%s: %s", user_id, err,
            )

    async def _target_key(
        self, user_id: Any, new_password: str
    ) -> tuple[bytes, bytes, dict, bool]:
        """Return (new_key, salt, journal, resumed)."""
        journal = await self._load_journal(user_id)
        if journal and journal.get("status") == "in_progress" and journal.get("salt"):
            salt = base64.b64decode(journal["salt"])
            new_key = self._envelopes.derive(new_password, salt)
            if key_fingerprint(new_key) == journal.get("fingerprint"):
                return new_key, salt, journal, True
            logger.info(
                "Abandoning unfinished rotation for user=%s (different password)",
                user_id,
            )
        salt = await self._envelopes.salt_for(user_id)
        new_key = self._envelopes.derive(new_password, salt)
        journal = {
            "fingerprint": key_fingerprint(new_key),
            "salt": base64.b64encode(salt).decode("ascii"),
            "status": "in_progress",
            "started_at": utcnow().isoformat(),
            "items": {},
        }
        return new_key, salt, journal, False

    # ------------------------------------------------------------------
    # Field migration
    # ------------------------------------------------------------------

    def _opens_under(self, model: type[VaultItem], data: dict, key: bytes) -> bool:
        """True when every encrypted field present in ``data`` opens under ``key``."""
        for name in model.encrypted_fields():
            value = data.get(name)
            if not value:
                continue
            try:
                decrypt_field(value, key)
            except DecryptionFailure:
                return False
        return True

    def _migrate_item(
        self,
        model: type[VaultItem],
        data: dict,
        old_key: bytes,
        new_key: bytes,
    ) -> tuple[dict, list[str]]:
        """Compute replacement fields for one item.

        Returns:
            (updates, failed_fields). ``updates`` maps field name to new
            ciphertext, or None for a dropped secondary field.
        """
        updates: dict[str, Optional[str]] = {}
        failed: list[str] = []
        for name in model.encrypted_fields():
            value = data.get(name)
            if not value:
                continue
            try:
                plaintext = decrypt_field(value, old_key)
            except DecryptionFailure:
                try:
                    decrypt_field(value, new_key)
                    continue  # already rotated
                except DecryptionFailure:
                    pass
                failed.append(name)
                if name in model.secondary_fields:
                    updates[name] = None
                continue
            updates[name] = encrypt_field(
                plaintext, new_key, self._config.cipher_backend,
            )
        if failed and self._config.degrade_policy == "strict":
            return {}, failed
        return updates, failed

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def rotate(self, session: "KeySession", new_password: str) -> RotationReport:
        """Re-encrypt every vault item of the session user under a new password key.

        Args:
            session: Key session holding (or able to resolve) the old key.
            new_password: The new master password.

        Returns:
            RotationReport with counters and per-item states.

        Raises:
            RetrieveFailure: The current envelope exists but is unreadable.
            EnvelopeWriteFailure: Items were migrated but the envelope could
                not be replaced; re-running resumes the rotation.
            RotationPartialFailure: Finished, but one or more items failed.
        """
        user_id = session.identity
        report = RotationReport()
        old_key = await self._envelopes.retrieve(session)
        if old_key is None:
            salt = await self._envelopes.salt_for(user_id)
            new_key = self._envelopes.derive(new_password, salt)
            await self._envelopes.store(user_id, new_key, salt)
            session.set(new_key)
            report.bootstrap = True
            logger.info(
                "No existing vault key for user=%s, stored new key", user_id,
            )
            return report

        new_key, salt, journal, resumed = await self._target_key(user_id, new_password)
        report.resumed = resumed
        states: dict[str, str] = journal["items"]
        logger.info(
            "Starting key rotation for user=%s (resumed=%s)", user_id, resumed,
        )
        await self._save_journal(user_id, journal)

        for model in VAULT_ITEM_TYPES:
            documents = await self._docs.list_all(user_id, model.collection)
            logger.info(
                "Processing %s: %d item(s)", model.collection, len(documents),
            )
            for doc_id, data in documents.items():
                item_key = f"{model.collection}/{doc_id}"
                report.total += 1
                if (
                    states.get(item_key) == ItemState.REENCRYPTED.value
                    and self._opens_under(model, data, new_key)
                ):
                    report.skipped += 1
                    report.items[item_key] = ItemState.REENCRYPTED
                    continue

                updates, failed = self._migrate_item(model, data, old_key, new_key)
                state = ItemState.FAILED if failed else ItemState.REENCRYPTED
                if updates:
                    try:
                        await self._docs.update_one(
                            user_id, model.collection, doc_id, updates,
                        )
                    except StoreError as err:
                        logger.error(
                            "Error rotating item %s for user=%s: %s",
                            item_key, user_id, err,
                        )
                        state = ItemState.FAILED
                        failed = [f"update: {err}"]
                if state is ItemState.FAILED:
                    report.errors += 1
                    report.failures[item_key] = failed
                    logger.warning(
                        "Item %s not fully rotated: %s", item_key, failed,
                    )
                else:
                    report.rotated += 1
                report.items[item_key] = state
                states[item_key] = state.value
                await self._save_journal(user_id, journal)

        await self._envelopes.store(user_id, new_key, salt)
        session.set(new_key)
        journal["status"] = "complete"
        journal["finished_at"] = utcnow().isoformat()
        await self._save_journal(user_id, journal)

        logger.info(
            "Key rotation complete for user=%s: total=%d rotated=%d skipped=%d errors=%d",
            user_id, report.total, report.rotated, report.skipped, report.errors,
        )
        if not report.ok:
            raise RotationPartialFailure(
                f"{report.errors} vault item(s) were not fully migrated",
                report=report,
            )
        return report
