"""
Document Store — per-user collections of key/value records.

The vault core only talks to storage through :class:`DocumentStore`.
Two backends ship with the package:

- :class:`MemoryDocumentStore` keeps records in process memory and is the
  reference behaviour for adapters (returned records are copies).
- :class:`FileDocumentStore` persists the same tree as a single JSON file.

Backends raise :class:`StoreError` (or :class:`DocumentNotFound`) for
rejected operations; any other exception is a bug in the adapter.
"""
import copy
import asyncio
import uuid
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from collections.abc import Callable
from typing import Any, Optional, Union

import orjson

from .exceptions import DocumentNotFound, StoreError

logger = logging.getLogger("safepass.vault")

Document = dict[str, Any]
Listener = Callable[[str, str, Optional[Document]], Any]


class DocumentStore(ABC):
    """Async per-user document collections."""

    @abstractmethod
    async def get_one(
        self, user_id: str, collection: str, doc_id: str
    ) -> Optional[Document]:
        """Return a copy of the document, or None if absent."""

    @abstractmethod
    async def set_one(
        self,
        user_id: str,
        collection: str,
        doc_id: str,
        data: Document,
        merge: bool = True,
    ) -> None:
        """Create or replace a document; ``merge`` keeps unspecified fields."""

    @abstractmethod
    async def list_all(self, user_id: str, collection: str) -> dict[str, Document]:
        """Return every document of a collection keyed by document id."""

    @abstractmethod
    async def add_one(self, user_id: str, collection: str, data: Document) -> str:
        """Insert a document under a generated id and return the id."""

    @abstractmethod
    async def update_one(
        self, user_id: str, collection: str, doc_id: str, data: Document
    ) -> None:
        """Merge fields into an existing document."""

    @abstractmethod
    async def delete_one(self, user_id: str, collection: str, doc_id: str) -> None:
        """Remove a document."""

    def subscribe(self, user_id: str, collection: str, callback: Listener) -> Callable[[], None]:
        """Register a change listener; returns an unsubscribe callable.

        Listeners receive ``(collection, doc_id, document_or_None)``.
        """
        raise NotImplementedError(
            f"{type(self).__name__} does not support change notification"
        )


class MemoryDocumentStore(DocumentStore):
    """In-memory document store.

    Layout: ``{user_id: {collection: {doc_id: document}}}``.
    Writes are serialized; a write whose flush fails leaves the tree as
    it was before the write.
    """

    def __init__(self, data: Optional[dict[str, Any]] = None) -> None:
        self._data: dict[str, dict[str, dict[str, Document]]] = data or {}
        self._listeners: dict[tuple[str, str], list[Listener]] = {}
        self._lock = asyncio.Lock()

    def _collection(self, user_id: str, collection: str) -> dict[str, Document]:
        return self._data.setdefault(str(user_id), {}).setdefault(collection, {})

    def _snapshot(self) -> Optional[dict]:
        """State to restore when a flush fails; None when nothing is persisted."""
        return None

    async def _flush(self) -> None:
        """Subclasses persist ``self._data`` here."""

    async def _write(
        self,
        user_id: str,
        collection: str,
        doc_id: str,
        change: Callable[[dict[str, Document]], None],
    ) -> None:
        async with self._lock:
            backup = self._snapshot()
            change(self._collection(user_id, collection))
            try:
                await self._flush()
            except StoreError:
                if backup is not None:
                    self._data = backup
                raise
        self._notify(user_id, collection, doc_id)

    def _notify(self, user_id: str, collection: str, doc_id: str) -> None:
        listeners = self._listeners.get((str(user_id), collection), [])
        if not listeners:
            return
        document = self._collection(user_id, collection).get(doc_id)
        for listener in list(listeners):
            listener(collection, doc_id, copy.deepcopy(document))

    async def get_one(self, user_id, collection, doc_id):
        document = self._collection(user_id, collection).get(doc_id)
        return copy.deepcopy(document) if document is not None else None

    async def set_one(self, user_id, collection, doc_id, data, merge=True):
        data = copy.deepcopy(data)

        def change(docs):
            if merge and doc_id in docs:
                docs[doc_id].update(data)
            else:
                docs[doc_id] = data
        await self._write(user_id, collection, doc_id, change)

    async def list_all(self, user_id, collection):
        return copy.deepcopy(self._collection(user_id, collection))

    async def add_one(self, user_id, collection, data):
        doc_id = uuid.uuid4().hex
        data = copy.deepcopy(data)

        def change(docs):
            docs[doc_id] = data
        await self._write(user_id, collection, doc_id, change)
        return doc_id

    async def update_one(self, user_id, collection, doc_id, data):
        data = copy.deepcopy(data)

        def change(docs):
            if doc_id not in docs:
                raise DocumentNotFound(f"{collection}/{doc_id} does not exist")
            docs[doc_id].update(data)
        await self._write(user_id, collection, doc_id, change)

    async def delete_one(self, user_id, collection, doc_id):
        def change(docs):
            if docs.pop(doc_id, None) is None:
                raise DocumentNotFound(f"{collection}/{doc_id} does not exist")
        await self._write(user_id, collection, doc_id, change)

    def subscribe(self, user_id, collection, callback):
        key = (str(user_id), collection)
        self._listeners.setdefault(key, []).append(callback)

        def unsubscribe() -> None:
            listeners = self._listeners.get(key, [])
            if callback in listeners:
                listeners.remove(callback)
        return unsubscribe


class FileDocumentStore(MemoryDocumentStore):
    """Document store persisted as one JSON file, rewritten on every change.

    The file is read once, synchronously, when the store is created.
    Each write serializes the whole tree and hands the file replacement
    to a worker thread so the event loop is not blocked. Meant for a
    single process on local disk.
    """

    def __init__(self, path: Union[str, Path]) -> None:
        self._path = Path(path)
        data = None
        if self._path.exists():
            try:
                data = orjson.loads(self._path.read_bytes())
            except orjson.JSONDecodeError as err:
                raise StoreError(f"Corrupted document file {self._path}") from err
        super().__init__(data)
        logger.debug("Document store opened at %s", self._path)

    def _snapshot(self) -> Optional[dict]:
        return copy.deepcopy(self._data)

    def _replace(self, payload: bytes) -> None:
        tmp = self._path.with_suffix(self._path.suffix + ".tmp")
        tmp.write_bytes(payload)
        tmp.replace(self._path)

    async def _flush(self) -> None:
        payload = orjson.dumps(self._data, option=orjson.OPT_INDENT_2)
        try:
            await asyncio.to_thread(self._replace, payload)
        except OSError as err:
            logger.error("Document store write failed at %s: %s", self._path, err)
            raise StoreError(f"Unable to write {self._path}: {err}") from err
