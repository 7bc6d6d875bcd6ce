"""Unit tests for the PyMongo-backed store, against mocked clients."""

import threading
from unittest.mock import MagicMock

import pytest
from bson import ObjectId
from pymongo.errors import DuplicateKeyError, PyMongoError

from ticketdesk.errors import DuplicateDocument, NotFound, StoreError, TransactionConflict
from ticketdesk.store import ChangeFeed, MongoDocumentStore, MongoTransaction, from_mongo, to_oid

OID = "65a1b2c3d4e5f60718293a4b"


@pytest.fixture
def mongo():
    client = MagicMock()
    session = MagicMock()
    client.start_session.return_value.__enter__.return_value = session
    collection = MagicMock()
    client.__getitem__.return_value.__getitem__.return_value = collection
    return client, session, collection


@pytest.fixture
def mongo_store(mongo):
    client, _, _ = mongo
    return MongoDocumentStore(client, "ticketdesk_test")


class TestHelpers:
    def test_to_oid_rejects_garbage(self):
        assert to_oid("not-an-id") is None
        assert to_oid(OID) == ObjectId(OID)

    def test_from_mongo_exposes_string_id(self):
        assert from_mongo({"_id": ObjectId(OID), "name": "Gala"}) == {"id": OID, "name": "Gala"}
        assert from_mongo(None) is None


class TestRunTransaction:
    def test_runs_body_inside_session_transaction(self, mongo, mongo_store):
        _, session, _ = mongo

        result = mongo_store.run_transaction(lambda txn: txn)

        assert isinstance(result, MongoTransaction)
        session.start_transaction.assert_called_once()
        session.start_transaction.return_value.__exit__.assert_called_once()

    def test_transient_error_becomes_conflict(self, mongo_store):
        def body(_txn):
            raise PyMongoError("WriteConflict", error_labels=["TransientTransactionError"])

        with pytest.raises(TransactionConflict):
            mongo_store.run_transaction(body)

    def test_other_driver_errors_become_store_errors(self, mongo_store):
        def body(_txn):
            raise PyMongoError("connection reset")

        with pytest.raises(StoreError):
            mongo_store.run_transaction(body)

    def test_domain_errors_propagate_unchanged(self, mongo_store):
        err = NotFound("Event not found.")

        def body(_txn):
            raise err

        with pytest.raises(NotFound) as exc:
            mongo_store.run_transaction(body)
        assert exc.value is err


class TestMongoTransaction:
    def test_guarded_update_filters_on_expected_value(self, mongo):
        _, session, collection = mongo
        collection.update_one.return_value.matched_count = 1
        txn = MongoTransaction(mongo[0]["db"], session)

        txn.update("events", OID, {"available_seats": 4}, expect={"available_seats": 5})

        collection.update_one.assert_called_once_with(
            {"_id": ObjectId(OID), "available_seats": 5},
            {"$set": {"available_seats": 4}},
            session=session,
        )

    def test_unmatched_update_is_a_conflict(self, mongo):
        _, session, collection = mongo
        collection.update_one.return_value.matched_count = 0
        txn = MongoTransaction(mongo[0]["db"], session)

        with pytest.raises(TransactionConflict):
            txn.update("events", OID, {"available_seats": 4}, expect={"available_seats": 5})

    def test_insert_with_server_timestamp(self, mongo):
        _, session, collection = mongo
        txn = MongoTransaction(mongo[0]["db"], session)

        new_id = txn.insert("tickets", {"quantity": 2}, timestamp_field="booking_time")

        (query, update), kwargs = collection.update_one.call_args
        assert query == {"_id": ObjectId(new_id)}
        assert update == {"$setOnInsert": {"quantity": 2}, "$currentDate": {"booking_time": True}}
        assert kwargs == {"upsert": True, "session": session}

    def test_get_with_invalid_id_skips_query(self, mongo):
        _, session, collection = mongo
        txn = MongoTransaction(mongo[0]["db"], session)

        assert txn.get("events", "bogus") is None
        collection.find_one.assert_not_called()


class TestPointOperations:
    def test_delete_reports_missing(self, mongo, mongo_store):
        _, _, collection = mongo
        collection.delete_one.return_value.deleted_count = 0
        assert mongo_store.delete("events", OID) is False

    def test_duplicate_key_maps_to_conflict(self, mongo, mongo_store):
        _, _, collection = mongo
        collection.insert_one.side_effect = DuplicateKeyError("dup")

        with pytest.raises(DuplicateDocument):
            mongo_store.insert("users", {"email": "a@x.com"})

    def test_snapshot_sorts(self, mongo, mongo_store):
        _, _, collection = mongo
        collection.find.return_value.sort.return_value = [{"_id": ObjectId(OID), "date": "2026-01-01"}]

        docs = mongo_store.snapshot("events", "date")

        collection.find.return_value.sort.assert_called_once_with("date", 1)
        assert docs == [{"id": OID, "date": "2026-01-01"}]


class TestChangeFeed:
    EVENT_DOC = {"_id": ObjectId(OID), "date": "2026-01-01"}

    @pytest.fixture
    def stream(self, mongo):
        _, _, collection = mongo
        collection.find.return_value.sort.return_value = [self.EVENT_DOC]
        stream = MagicMock()
        stream.alive = True
        collection.watch.return_value.__enter__.return_value = stream
        return stream

    def stop_after(self, feed, changes):
        pending = list(changes)

        def try_next():
            if pending:
                return pending.pop(0)
            feed._stopped.set()
            return None

        return try_next

    def test_opens_stream_before_first_read_and_redelivers_on_change(self, mongo, mongo_store, stream):
        _, _, collection = mongo
        delivered = []
        feed = ChangeFeed(
            mongo_store, "events", "date",
            lambda docs: delivered.append((collection.watch.call_count, docs)),
        )
        stream.try_next.side_effect = self.stop_after(feed, [{"operationType": "update"}])

        feed._run()

        collection.watch.assert_called_once_with(max_await_time_ms=500)
        assert [watched for watched, _ in delivered] == [1, 1]
        assert delivered[0][1] == [{"id": OID, "date": "2026-01-01"}]

    def test_reconnects_after_driver_error(self, mongo, mongo_store, stream, monkeypatch, caplog):
        _, _, collection = mongo
        delivered = []
        feed = ChangeFeed(mongo_store, "events", "date", delivered.append, retry_delay=0.25)
        reopened = MagicMock()
        reopened.__enter__.return_value = stream
        collection.watch.side_effect = [PyMongoError("primary stepped down"), reopened]
        stream.try_next.side_effect = self.stop_after(feed, [])
        waits = []
        monkeypatch.setattr(feed._stopped, "wait", waits.append)

        feed._run()

        assert collection.watch.call_count == 2
        assert waits == [0.25]
        assert len(delivered) == 1
        assert "reconnecting" in caplog.text

    def test_listener_failure_is_logged_and_feed_keeps_running(self, mongo_store, stream, caplog):
        listener = MagicMock(side_effect=RuntimeError("boom"))
        feed = ChangeFeed(mongo_store, "events", "date", listener)
        stream.try_next.side_effect = self.stop_after(feed, [{"operationType": "insert"}])

        feed._run()

        assert listener.call_count == 2
        assert "Snapshot listener for events failed" in caplog.text

    def test_subscribe_starts_thread_and_close_joins_it(self, mongo_store, stream):
        stream.try_next.return_value = None
        delivered = threading.Event()

        feed = mongo_store.subscribe("events", "date", lambda docs: delivered.set())

        assert delivered.wait(timeout=5)
        feed.close()
        assert not feed._thread.is_alive()
