"""
Tests for KeySession, the session-scoped key cache.
"""
import os
import pytest
from datetime import datetime

from safepass.session import KeySession


class TestKeySession:

    def test_new_session_is_locked(self, session):
        assert session.get() is None
        assert session.unlocked is False

    def test_set_and_get(self, session):
        key = os.urandom(32)
        session.set(key)
        assert session.get() == key
        assert session.unlocked is True

    def test_key_is_sealed_in_memory(self, session):
        """The raw key never sits in the session's attributes."""
        key = os.urandom(32)
        session.set(key)
        assert all(value != key for value in vars(session).values())

    def test_set_none_clears(self, session):
        session.set(os.urandom(32))
        session.set(None)
        assert session.get() is None

    def test_invalidate(self, session):
        session.set(os.urandom(32))
        session.invalidate()
        assert session.unlocked is False

    def test_rejects_wrong_key_length(self, session):
        with pytest.raises(ValueError):
            session.set(b"short")

    def test_requires_identity(self):
        with pytest.raises(ValueError):
            KeySession(identity=None)

    def test_identity_and_ids(self):
        session = KeySession(identity="alice", id="custom-id")
        assert session.identity == "alice"
        assert session.session_id == "custom-id"
        assert isinstance(session.logon_time, datetime)
        assert isinstance(session.created, int)

    def test_sessions_are_independent(self):
        first, second = KeySession(identity="u"), KeySession(identity="u")
        first.set(os.urandom(32))
        assert second.get() is None
        assert first.session_id != second.session_id

    def test_repr_hides_key(self, session):
        key = os.urandom(32)
        session.set(key)
        text = repr(session)
        assert key.hex() not in text
        assert "unlocked=True" in text
