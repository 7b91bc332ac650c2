"""Shared fixtures for the vault test-suite."""
import os
import pytest

from safepass import Keyring, KeySession
from safepass.vault.config import RetryPolicy, VaultConfig
from safepass.vault.envelope import KeyEnvelopeStore
from safepass.vault.exceptions import StoreError
from safepass.vault.storage import MemoryDocumentStore

TEST_ITERATIONS = 1_000


class FakeSleep:
    """Records requested delays instead of sleeping."""

    def __init__(self):
        self.calls: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.calls.append(delay)


class FlakyDocumentStore(MemoryDocumentStore):
    """Memory store with read counting and scripted failures."""

    def __init__(self):
        super().__init__()
        self.reads: list[tuple] = []
        self.fail_reads = 0
        self.fail_writes_to: set[str] = set()
        self.fail_updates_for: set[str] = set()
        self.on_read = None

    async def get_one(self, user_id, collection, doc_id):
        self.reads.append((user_id, collection, doc_id))
        if self.on_read is not None:
            await self.on_read(self, len(self.reads))
        if self.fail_reads:
            self.fail_reads -= 1
            raise StoreError("backend unavailable")
        return await super().get_one(user_id, collection, doc_id)

    async def set_one(self, user_id, collection, doc_id, data, merge=True):
        if f"{collection}/{doc_id}" in self.fail_writes_to:
            raise StoreError("write rejected")
        await super().set_one(user_id, collection, doc_id, data, merge)

    async def update_one(self, user_id, collection, doc_id, data):
        if doc_id in self.fail_updates_for:
            raise StoreError("update rejected")
        await super().update_one(user_id, collection, doc_id, data)

    def envelope_reads(self) -> int:
        return sum(1 for read in self.reads if read[1:] == ("encryption", "key"))


def make_config(**overrides) -> VaultConfig:
    values = {
        "app_secrets": {1: os.urandom(32)},
        "active_secret_id": 1,
        "kdf_iterations": TEST_ITERATIONS,
        "retry": RetryPolicy(max_attempts=3, delay=1.0),
    }
    values.update(overrides)
    return VaultConfig(**values)


@pytest.fixture
def config():
    return make_config()


@pytest.fixture
def fixed_config():
    """Config deriving with the fixed application salt."""
    return make_config(salt_mode="fixed")


@pytest.fixture
def store():
    return FlakyDocumentStore()


@pytest.fixture
def sleep():
    return FakeSleep()


@pytest.fixture
def envelopes(store, config, sleep):
    return KeyEnvelopeStore(store, config, sleep=sleep)


@pytest.fixture
def session():
    return KeySession(identity="user-1")


@pytest.fixture
def keyring(store, config, sleep):
    return Keyring(store, config, sleep=sleep)
