"""
Tests for VaultRepository.

Tests cover:
- Encryption at rest for credentials and notes
- reveal(), update, delete, list ordering
- Metadata search
- Behaviour without a session key
"""
import os
import pytest

from safepass.vault.crypto import decrypt_field
from safepass.vault.exceptions import DecryptionFailure, DocumentNotFound, KeyUnavailable
from safepass.vault.models import Credential, Note
from safepass.vault.repository import VaultRepository


@pytest.fixture
def key():
    return os.urandom(32)


@pytest.fixture
def repo(store, session, key):
    session.set(key)
    return VaultRepository(store, session, "aesgcm")


class TestCredentials:

    async def test_add_encrypts_at_rest(self, repo, store, key):
        item = await repo.add_credential("Mail", "s3cr3t", username="me", notes="pin")
        raw = await store.get_one("user-1", "passwords", item.id)
        assert raw["password"] != "s3cr3t"
        assert decrypt_field(raw["password"], key) == "s3cr3t"
        assert decrypt_field(raw["notes"], key) == "pin"
        assert raw["username"] == "me"
        assert "id" not in raw

    async def test_reveal(self, repo):
        item = await repo.add_credential("Mail", "s3cr3t", notes="pin")
        assert repo.reveal(item) == {"password": "s3cr3t", "notes": "pin"}

    async def test_blank_notes_stored_as_none(self, repo, store):
        item = await repo.add_credential("Mail", "s3cr3t", notes="   ")
        raw = await store.get_one("user-1", "passwords", item.id)
        assert raw["notes"] is None
        assert repo.reveal(item)["notes"] is None

    async def test_update_reencrypts_changed_fields(self, repo):
        item = await repo.add_credential("Mail", "old")
        updated = await repo.update_credential(item.id, password="new", title="Mail 2")
        assert updated.title == "Mail 2"
        assert repo.reveal(updated)["password"] == "new"
        assert updated.updated_at >= item.updated_at

    @pytest.mark.parametrize("changes", [
        {"password": None},
        {"password": "  "},
        {"title": None},
        {"secret": "x"},
        {"created_at": "yesterday"},
        {"id": "other"},
    ])
    async def test_invalid_update_rejected(self, repo, store, changes):
        item = await repo.add_credential("Mail", "s3cr3t")
        before = await store.get_one("user-1", "passwords", item.id)
        with pytest.raises(ValueError):
            await repo.update_credential(item.id, **changes)
        assert await store.get_one("user-1", "passwords", item.id) == before
        listed = await repo.list_credentials()
        assert repo.reveal(listed[0])["password"] == "s3cr3t"

    async def test_update_missing_item(self, repo):
        with pytest.raises(DocumentNotFound):
            await repo.update_credential("nope", title="x")

    async def test_empty_password_rejected_on_add(self, repo):
        with pytest.raises(ValueError):
            await repo.add_credential("Mail", "")

    async def test_delete(self, repo):
        item = await repo.add_credential("Mail", "s3cr3t")
        await repo.delete_credential(item.id)
        assert await repo.get_credential(item.id) is None
        with pytest.raises(DocumentNotFound):
            await repo.delete_credential(item.id)

    async def test_list_newest_first(self, repo):
        first = await repo.add_credential("First", "a")
        second = await repo.add_credential("Second", "b")
        await repo.update_credential(first.id, title="First again")
        titles = [item.title for item in await repo.list_credentials()]
        assert titles == ["First again", "Second"]
        assert second.id in {item.id for item in await repo.list_credentials()}


class TestNotes:

    async def test_add_and_reveal(self, repo, store, key):
        note = await repo.add_note("Ideas", "top secret", category="work")
        raw = await store.get_one("user-1", "notes", note.id)
        assert decrypt_field(raw["content"], key) == "top secret"
        fetched = await repo.get_note(note.id)
        assert isinstance(fetched, Note)
        assert repo.reveal(fetched) == {"content": "top secret"}

    async def test_update_and_delete(self, repo):
        note = await repo.add_note("Ideas", "v1")
        updated = await repo.update_note(note.id, content="v2")
        assert repo.reveal(updated)["content"] == "v2"
        await repo.delete_note(note.id)
        assert await repo.list_notes() == []


class TestSearch:

    async def test_matches_metadata(self, repo):
        await repo.add_credential("GitHub", "x", username="octo", website="github.com")
        await repo.add_credential("Bank", "y", category="finance")
        await repo.add_note("Groceries", "milk", category="home")

        results = await repo.search("git")
        assert [c.title for c in results["passwords"]] == ["GitHub"]
        assert results["notes"] == []

        results = await repo.search("HOME")
        assert [n.title for n in results["notes"]] == ["Groceries"]

    async def test_does_not_search_secrets(self, repo):
        await repo.add_credential("Bank", "hunter2", notes="hunter2")
        results = await repo.search("hunter2")
        assert results["passwords"] == []

    async def test_blank_query_returns_everything(self, repo):
        await repo.add_credential("A", "1")
        await repo.add_note("B", "2")
        results = await repo.search("  ")
        assert len(results["passwords"]) == 1
        assert len(results["notes"]) == 1


class TestLockedSession:

    async def test_add_requires_key(self, repo, session):
        session.invalidate()
        with pytest.raises(KeyUnavailable):
            await repo.add_credential("Mail", "s3cr3t")

    async def test_reveal_requires_key(self, repo, session):
        item = await repo.add_credential("Mail", "s3cr3t")
        session.invalidate()
        with pytest.raises(KeyUnavailable):
            repo.reveal(item)

    async def test_reveal_with_other_key_fails(self, repo, session):
        item = await repo.add_credential("Mail", "s3cr3t")
        session.set(os.urandom(32))
        with pytest.raises(DecryptionFailure):
            repo.reveal(item)


class TestModels:

    def test_field_roles(self):
        assert Credential.encrypted_fields() == ("password", "notes")
        assert Note.encrypted_fields() == ("content",)
        assert Credential.collection == "passwords"
        assert Note.collection == "notes"

    def test_document_round_trip(self):
        item = Credential(title="Mail", password="aesgcm:xyz", notes=None)
        restored = Credential.from_document("abc", item.to_document())
        assert restored.id == "abc"
        assert restored.created_at == item.created_at
