"""Document store interface and its MongoDB implementation.

Everything durable lives in the store. The interface covers
point reads and writes, ordered collection snapshots, change subscriptions,
and a transaction primitive whose body is a plain callable. Documents cross
the interface as dicts carrying a string ``id``; store-native identifiers
never leak out.
"""
from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterator, List, Optional, TypeVar

from bson import ObjectId
from bson.errors import InvalidId
from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.errors import DuplicateKeyError, PyMongoError
from pymongo.read_concern import ReadConcern
from pymongo.write_concern import WriteConcern

from ticketdesk.errors import DeskError, DuplicateDocument, StoreError, TransactionConflict
from ticketdesk.models import EVENTS, IDCARDS, TICKETS, USERS

logger = logging.getLogger("ticketdesk.store")

T = TypeVar("T")
Doc = Dict[str, Any]
SnapshotCallback = Callable[[List[Doc]], None]


class Transaction(ABC):
    """Operations available inside ``DocumentStore.run_transaction``."""

    @abstractmethod
    def get(self, collection: str, doc_id: str) -> Optional[Doc]:
        ...

    @abstractmethod
    def update(self, collection: str, doc_id: str, fields: Doc, expect: Optional[Doc] = None) -> None:
        """Set ``fields`` on a document.

        When ``expect`` is given the write only applies while those fields
        still hold the expected values; otherwise TransactionConflict.
        """

    @abstractmethod
    def insert(self, collection: str, doc: Doc, timestamp_field: Optional[str] = None) -> str:
        """Create a document and return its new id.

        ``timestamp_field`` is filled with the store's clock at commit.
        """

    @abstractmethod
    def delete(self, collection: str, doc_id: str) -> None:
        ...


class Subscription(ABC):
    @abstractmethod
    def close(self) -> None:
        ...


class DocumentStore(ABC):
    @abstractmethod
    def run_transaction(self, fn: Callable[[Transaction], T]) -> T:
        """Run ``fn`` as one atomic unit.

        Any exception raised by ``fn`` aborts the transaction and propagates.
        A concurrent write to a document the body touched surfaces as
        TransactionConflict with nothing applied.
        """

    @abstractmethod
    def get(self, collection: str, doc_id: str) -> Optional[Doc]:
        ...

    @abstractmethod
    def find_one(self, collection: str, query: Doc) -> Optional[Doc]:
        ...

    @abstractmethod
    def insert(self, collection: str, doc: Doc, timestamp_field: Optional[str] = None) -> str:
        ...

    @abstractmethod
    def delete(self, collection: str, doc_id: str) -> bool:
        """Delete a document; False when it did not exist."""

    @abstractmethod
    def snapshot(self, collection: str, order_by: str, descending: bool = False) -> List[Doc]:
        ...

    @abstractmethod
    def subscribe(
        self,
        collection: str,
        order_by: str,
        callback: SnapshotCallback,
        descending: bool = False,
    ) -> Subscription:
        """Deliver the full ordered snapshot now and again after every change."""


# -------------------------
# MongoDB
# -------------------------
def to_oid(value: str) -> Optional[ObjectId]:
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        return None


def from_mongo(doc: Optional[Doc]) -> Optional[Doc]:
    if doc is None:
        return None
    out = dict(doc)
    out["id"] = str(out.pop("_id"))
    return out


@contextmanager
def db_errors(action: str) -> Iterator[None]:
    try:
        yield
    except DuplicateKeyError as e:
        raise DuplicateDocument("Document already exists.", details={"detail": str(e)}) from e
    except PyMongoError as e:
        logger.exception("MongoDB error while %s", action)
        raise StoreError(f"Database error while {action}.", details={"detail": str(e)}) from e


def _insert(col, doc: Doc, timestamp_field: Optional[str], session=None) -> str:
    oid = ObjectId()
    body = {k: v for k, v in doc.items() if k != "id"}
    if timestamp_field:
        # $currentDate stamps with the server clock rather than ours.
        col.update_one(
            {"_id": oid},
            {"$setOnInsert": body, "$currentDate": {timestamp_field: True}},
            upsert=True,
            session=session,
        )
    else:
        col.insert_one({**body, "_id": oid}, session=session)
    return str(oid)


class MongoTransaction(Transaction):
    def __init__(self, db, session) -> None:
        self._db = db
        self._session = session

    def get(self, collection: str, doc_id: str) -> Optional[Doc]:
        oid = to_oid(doc_id)
        if oid is None:
            return None
        return from_mongo(self._db[collection].find_one({"_id": oid}, session=self._session))

    def update(self, collection: str, doc_id: str, fields: Doc, expect: Optional[Doc] = None) -> None:
        query: Doc = {"_id": to_oid(doc_id)}
        if expect:
            query.update(expect)
        res = self._db[collection].update_one(query, {"$set": fields}, session=self._session)
        if res.matched_count == 0:
            raise TransactionConflict(
                "The record changed while the transaction was running. Please try again.",
                details={"collection": collection, "id": doc_id},
            )

    def insert(self, collection: str, doc: Doc, timestamp_field: Optional[str] = None) -> str:
        return _insert(self._db[collection], doc, timestamp_field, self._session)

    def delete(self, collection: str, doc_id: str) -> None:
        oid = to_oid(doc_id)
        if oid is not None:
            self._db[collection].delete_one({"_id": oid}, session=self._session)


class MongoDocumentStore(DocumentStore):
    """Needs a replica set (or Atlas): transactions and change streams both require one."""

    def __init__(self, client: MongoClient, db_name: str) -> None:
        self.client = client
        self.db = client[db_name]

    @classmethod
    def connect(cls, uri: str, db_name: str) -> "MongoDocumentStore":
        try:
            client = MongoClient(
                uri,
                serverSelectionTimeoutMS=3000,
                connectTimeoutMS=3000,
                socketTimeoutMS=5000,
                retryWrites=True,
                tz_aware=True,
            )
            # Verify connectivity early (will raise if unreachable)
            client.admin.command("ping")
        except PyMongoError as e:
            logger.exception("MongoDB connection failed")
            raise RuntimeError(f"MongoDB connection failed: {e}") from e
        store = cls(client, db_name)
        store.ensure_indexes()
        return store

    def ensure_indexes(self) -> None:
        with db_errors("creating indexes"):
            self.db[USERS].create_index([("email", ASCENDING)], unique=True)
            self.db[EVENTS].create_index([("date", ASCENDING)])
            self.db[TICKETS].create_index([("booking_time", DESCENDING)])
            self.db[TICKETS].create_index([("event_id", ASCENDING)])
            self.db[IDCARDS].create_index([("issued_date", DESCENDING)])

    def run_transaction(self, fn: Callable[[Transaction], T]) -> T:
        try:
            with self.client.start_session() as session:
                with session.start_transaction(
                    read_concern=ReadConcern("snapshot"),
                    write_concern=WriteConcern("majority"),
                ):
                    return fn(MongoTransaction(self.db, session))
        except DeskError:
            raise
        except PyMongoError as e:
            if e.has_error_label("TransientTransactionError"):
                logger.warning("Transaction aborted by a concurrent write: %s", e)
                raise TransactionConflict(
                    "The record changed while the transaction was running. Please try again.",
                    details={"detail": str(e)},
                ) from e
            logger.exception("Transaction failed")
            raise StoreError("Database error during transaction.", details={"detail": str(e)}) from e

    def get(self, collection: str, doc_id: str) -> Optional[Doc]:
        oid = to_oid(doc_id)
        if oid is None:
            return None
        with db_errors(f"reading {collection}"):
            return from_mongo(self.db[collection].find_one({"_id": oid}))

    def find_one(self, collection: str, query: Doc) -> Optional[Doc]:
        with db_errors(f"reading {collection}"):
            return from_mongo(self.db[collection].find_one(query))

    def insert(self, collection: str, doc: Doc, timestamp_field: Optional[str] = None) -> str:
        with db_errors(f"writing {collection}"):
            return _insert(self.db[collection], doc, timestamp_field)

    def delete(self, collection: str, doc_id: str) -> bool:
        oid = to_oid(doc_id)
        if oid is None:
            return False
        with db_errors(f"deleting from {collection}"):
            return self.db[collection].delete_one({"_id": oid}).deleted_count > 0

    def snapshot(self, collection: str, order_by: str, descending: bool = False) -> List[Doc]:
        with db_errors(f"reading {collection}"):
            cursor = self.db[collection].find().sort(order_by, DESCENDING if descending else ASCENDING)
            return [from_mongo(d) for d in cursor]

    def subscribe(
        self,
        collection: str,
        order_by: str,
        callback: SnapshotCallback,
        descending: bool = False,
    ) -> Subscription:
        return ChangeFeed(self, collection, order_by, callback, descending).start()


class ChangeFeed(Subscription):
    """Re-reads a whole collection whenever its change stream reports a change."""

    def __init__(
        self,
        store: MongoDocumentStore,
        collection: str,
        order_by: str,
        callback: SnapshotCallback,
        descending: bool = False,
        retry_delay: float = 2.0,
    ) -> None:
        self._store = store
        self._collection = collection
        self._order_by = order_by
        self._descending = descending
        self._callback = callback
        self._retry_delay = retry_delay
        self._stopped = threading.Event()
        self._thread = threading.Thread(
            target=self._run, name=f"ticketdesk-watch-{collection}", daemon=True
        )

    def start(self) -> "ChangeFeed":
        self._thread.start()
        return self

    def close(self) -> None:
        self._stopped.set()
        if self._thread.is_alive() and self._thread is not threading.current_thread():
            self._thread.join(timeout=5)

    def _run(self) -> None:
        while not self._stopped.is_set():
            try:
                with self._store.db[self._collection].watch(max_await_time_ms=500) as stream:
                    # Opened before the first read so nothing between the two is missed.
                    self._deliver()
                    while not self._stopped.is_set() and stream.alive:
                        if stream.try_next() is not None:
                            self._deliver()
            except PyMongoError:
                if self._stopped.is_set():
                    break
                logger.exception("Change stream on %s failed; reconnecting", self._collection)
                self._stopped.wait(self._retry_delay)

    def _deliver(self) -> None:
        try:
            docs = self._store.snapshot(self._collection, self._order_by, self._descending)
        except StoreError:
            return
        try:
            self._callback(docs)
        except Exception:
            logger.exception("Snapshot listener for %s failed", self._collection)
