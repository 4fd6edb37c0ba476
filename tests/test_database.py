from types import SimpleNamespace

import pytest
from bson import ObjectId

from database import Database, page_meta, serialize_doc, to_object_id


class RecordingSession:
    def __init__(self, events):
        self.events = events

    def start_transaction(self):
        self.events.append("start_transaction")

    def commit_transaction(self):
        self.events.append("commit_transaction")

    def abort_transaction(self):
        self.events.append("abort_transaction")

    def end_session(self):
        self.events.append("end_session")


class RecordingCollection:
    def __init__(self, client, name):
        self.client = client
        self.name = name

    def _record(self, op, session):
        self.client.events.append((op, self.name))
        self.client.sessions.append(session)

    def find_one(self, filter_dict, session=None):
        self._record("find_one", session)
        return dict(filter_dict)

    def insert_one(self, document, session=None):
        self._record("insert_one", session)
        return SimpleNamespace(inserted_id=ObjectId())

    def update_one(self, filter_dict, update, session=None):
        self._record("update_one", session)
        return SimpleNamespace(matched_count=1)

    def delete_one(self, filter_dict, session=None):
        self._record("delete_one", session)
        return SimpleNamespace(deleted_count=1)


class RecordingClient:
    """Stands in for a replica-set MongoClient and records what the unit of work does."""

    def __init__(self):
        self.events = []
        self.sessions = []
        self.session = None

    def __getitem__(self, name):
        return {coll: RecordingCollection(self, coll) for coll in ("product", "order")}

    def start_session(self):
        self.events.append("start_session")
        self.session = RecordingSession(self.events)
        return self.session


def test_transaction_commits_then_ends_session():
    client = RecordingClient()
    db = Database(client, "ratacueva", use_transactions=True)
    product_id = ObjectId()

    with db.unit_of_work() as uow:
        uow.find_one("product", {"_id": product_id})
        uow.insert_one("order", {"note": "draft"})
        assert uow.increment("product", product_id, "stock", -1, floor=0)

    assert client.events == [
        "start_session",
        "start_transaction",
        ("find_one", "product"),
        ("insert_one", "order"),
        ("update_one", "product"),
        "commit_transaction",
        "end_session",
    ]
    assert all(session is client.session for session in client.sessions)
    assert uow.session is None


def test_transaction_aborts_then_ends_session_on_error():
    client = RecordingClient()
    db = Database(client, "ratacueva", use_transactions=True)

    with pytest.raises(RuntimeError):
        with db.unit_of_work() as uow:
            uow.insert_one("order", {"note": "draft"})
            raise RuntimeError("boom")

    assert client.events == [
        "start_session",
        "start_transaction",
        ("insert_one", "order"),
        "abort_transaction",
        "end_session",
    ]
    assert uow.session is None


def test_abort_replays_undo_log_newest_first(database, make_product, stock_of):
    product_id = make_product(stock=5)
    oid = to_object_id(product_id)

    with pytest.raises(RuntimeError):
        with database.unit_of_work() as uow:
            assert uow.increment("product", oid, "stock", -2, floor=0)
            uow.insert_one("order", {"note": "draft"})
            uow.update_one("product", {"_id": oid}, {"$set": {"name": "Changed"}}, undo={"$set": {"name": "RTX 4070"}})
            raise RuntimeError("boom")

    product = database["product"].find_one({"_id": oid})
    assert product["stock"] == 5
    assert product["name"] == "RTX 4070"
    assert database["order"].count_documents({}) == 0


def test_guarded_decrement_refuses_to_go_below_floor(database, make_product, stock_of):
    product_id = make_product(stock=2)
    with database.unit_of_work() as uow:
        assert not uow.increment("product", to_object_id(product_id), "stock", -3, floor=0)
        assert uow.increment("product", to_object_id(product_id), "stock", -2, floor=0)
    assert stock_of(product_id) == 0


def test_commit_keeps_writes(database, make_product, stock_of):
    product_id = make_product(stock=2)
    with database.unit_of_work() as uow:
        uow.increment("product", to_object_id(product_id), "stock", 3)
    assert stock_of(product_id) == 5


def test_serialize_doc_renames_nested_ids():
    oid = to_object_id("5f0c1f1f1f1f1f1f1f1f1f1f")
    doc = {"_id": oid, "items": [{"_id": oid, "product_id": "x"}], "ref": oid}
    assert serialize_doc(doc) == {
        "id": str(oid),
        "items": [{"id": str(oid), "product_id": "x"}],
        "ref": str(oid),
    }


def test_helpers():
    assert to_object_id("nope") is None
    assert to_object_id(None) is None
    assert page_meta(21, 2, 10) == {"total": 21, "page": 2, "limit": 10, "total_pages": 3}
    assert page_meta(0, 1, 10)["total_pages"] == 0
