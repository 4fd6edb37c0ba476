"""
MongoDB access for the Ratacueva API.

The client is built once by the application lifespan and handed to routes
through the ``get_database`` dependency. Collection names are the lowercase
schema class names (``Product`` -> "product").
"""
import logging
from datetime import datetime, timezone
from functools import partial
from typing import Any, Callable, Dict, List, Optional, Union

from bson import ObjectId
from fastapi import Request
from pydantic import BaseModel
from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.errors import PyMongoError

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_object_id(value: Any) -> Optional[ObjectId]:
    """Return ``value`` as an ObjectId, or None when it is not a valid id."""
    if isinstance(value, ObjectId):
        return value
    if isinstance(value, str) and ObjectId.is_valid(value):
        return ObjectId(value)
    return None


def serialize_doc(doc):
    """Render a stored document as JSON-friendly data (``_id`` -> ``id``)."""
    if isinstance(doc, list):
        return [serialize_doc(d) for d in doc]
    if isinstance(doc, ObjectId):
        return str(doc)
    if not isinstance(doc, dict):
        return doc
    out = {}
    for key, value in doc.items():
        if key == "_id":
            out["id"] = serialize_doc(value)
        else:
            out[key] = serialize_doc(value)
    return out


def page_meta(total: int, page: int, limit: int) -> dict:
    return {"total": total, "page": page, "limit": limit, "total_pages": -(-total // limit) if limit else 0}


def _session_kwargs(session) -> dict:
    return {"session": session} if session is not None else {}


class Database:
    def __init__(self, client: MongoClient, name: str, use_transactions: bool = False):
        self.client = client
        self.name = name
        self.db = client[name]
        self.use_transactions = use_transactions

    @classmethod
    def from_settings(cls, settings) -> "Database":
        if not settings.database_url or not settings.database_name:
            raise RuntimeError("DATABASE_URL and DATABASE_NAME must be set")
        client = MongoClient(settings.database_url)
        logger.info("Connected to MongoDB database %s", settings.database_name)
        return cls(client, settings.database_name, use_transactions=settings.use_transactions)

    def __getitem__(self, collection_name: str):
        return self.db[collection_name]

    def list_collection_names(self) -> List[str]:
        return self.db.list_collection_names()

    def ensure_indexes(self) -> None:
        self.db["user"].create_index("email", unique=True)
        self.db["cart"].create_index("user_id", unique=True)
        self.db["order"].create_index([("user_id", ASCENDING), ("created_at", DESCENDING)])
        self.db["shipment"].create_index("order_id", unique=True)
        self.db["shipment"].create_index("tracking_number", unique=True)
        self.db["review"].create_index("product_id")

    def close(self) -> None:
        self.client.close()

    def create_document(self, collection_name: str, data: Union[BaseModel, dict], session=None) -> str:
        """Insert a document stamped with created_at / updated_at and return its id."""
        if isinstance(data, BaseModel):
            data_dict = data.model_dump()
        else:
            data_dict = dict(data)
        now = utcnow()
        data_dict.setdefault("created_at", now)
        data_dict["updated_at"] = now
        result = self.db[collection_name].insert_one(data_dict, **_session_kwargs(session))
        return str(result.inserted_id)

    def get_documents(
        self,
        collection_name: str,
        filter_dict: Optional[dict] = None,
        limit: Optional[int] = None,
        skip: int = 0,
        sort: Optional[list] = None,
    ) -> List[dict]:
        cursor = self.db[collection_name].find(filter_dict or {})
        if sort:
            cursor = cursor.sort(sort)
        if skip:
            cursor = cursor.skip(skip)
        if limit:
            cursor = cursor.limit(limit)
        return list(cursor)

    def unit_of_work(self) -> "UnitOfWork":
        return UnitOfWork(self)


class UnitOfWork:
    """
    Groups writes so they commit or roll back together.

    With ``use_transactions`` the writes run inside a MongoDB session
    transaction (replica set or sharded cluster required). Without it, every
    write registers its inverse and ``abort`` replays them newest first.
    """

    def __init__(self, database: Database):
        self.database = database
        self.session = None
        self._undo: List[Callable[[], Any]] = []
        self._active = False

    def __enter__(self) -> "UnitOfWork":
        self.begin()
        return self

    def __exit__(self, exc_type, exc, tb):
        try:
            if exc_type is None:
                self.commit()
            else:
                self.abort()
        finally:
            self.close()
        return False

    def begin(self) -> None:
        if self.database.use_transactions:
            self.session = self.database.client.start_session()
            self.session.start_transaction()
        self._active = True

    def commit(self) -> None:
        if not self._active:
            return
        if self.session is not None:
            self.session.commit_transaction()
        self._undo.clear()
        self._active = False

    def abort(self) -> None:
        if not self._active:
            return
        self._active = False
        if self.session is not None:
            self.session.abort_transaction()
            return
        while self._undo:
            step = self._undo.pop()
            try:
                step()
            except PyMongoError:
                logger.exception("Rollback step failed")

    def close(self) -> None:
        if self.session is not None:
            self.session.end_session()
            self.session = None

    # --- operations -------------------------------------------------------

    def _collection(self, name: str):
        return self.database[name]

    def find_one(self, collection_name: str, filter_dict: dict) -> Optional[dict]:
        return self._collection(collection_name).find_one(filter_dict, **_session_kwargs(self.session))

    def insert_one(self, collection_name: str, document: dict) -> ObjectId:
        coll = self._collection(collection_name)
        now = utcnow()
        document.setdefault("created_at", now)
        document["updated_at"] = now
        inserted_id = coll.insert_one(document, **_session_kwargs(self.session)).inserted_id
        document["_id"] = inserted_id
        self._undo.append(partial(coll.delete_one, {"_id": inserted_id}))
        return inserted_id

    def update_one(
        self,
        collection_name: str,
        filter_dict: dict,
        update: dict,
        undo: Optional[dict] = None,
        undo_filter: Optional[dict] = None,
    ):
        """Apply ``update``; ``undo`` is the update document that reverts it."""
        coll = self._collection(collection_name)
        result = coll.update_one(filter_dict, update, **_session_kwargs(self.session))
        if undo is not None and result.matched_count:
            self._undo.append(partial(coll.update_one, undo_filter or filter_dict, undo))
        return result

    def increment(self, collection_name: str, doc_id: ObjectId, field: str, amount: int, floor: Optional[int] = None) -> bool:
        """
        Add ``amount`` to ``field``. With ``floor`` set, a decrement only
        applies while the result stays at or above it. Returns whether the
        document was updated.
        """
        filter_dict: Dict[str, Any] = {"_id": doc_id}
        if floor is not None and amount < 0:
            filter_dict[field] = {"$gte": floor - amount}
        result = self.update_one(
            collection_name,
            filter_dict,
            {"$inc": {field: amount}, "$set": {"updated_at": utcnow()}},
            undo={"$inc": {field: -amount}},
            undo_filter={"_id": doc_id},
        )
        return result.matched_count == 1


def get_database(request: Request) -> Database:
    return request.app.state.db
