"""
Document store access for the club membership backend.

Two implementations share one interface: a MongoDB-backed store used in
production and an in-memory store for development and tests. Documents are
handed out as plain dicts with the store identifier serialized as ``_id``.
"""

from __future__ import annotations

import copy
import logging
import threading
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Protocol

from bson import ObjectId
from pymongo import MongoClient, ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError, PyMongoError

logger = logging.getLogger(__name__)

FEEDBACK_COLLECTION = "feedback"
USER_COLLECTION = "user"
DESELECTED_COLLECTION = "deselected"
CARD_COLLECTION = "card"

COLLECTIONS = (
    FEEDBACK_COLLECTION,
    USER_COLLECTION,
    DESELECTED_COLLECTION,
    CARD_COLLECTION,
)

# Bookkeeping fields that are not copied into a deselection archive.
_ARCHIVE_SKIP_FIELDS = ("_id", "created_at", "updated_at")


class RecordStoreError(Exception):
    """Raised when the underlying store fails an operation."""


class RecordNotFound(RecordStoreError):
    """Raised when a referenced document does not exist."""


class DuplicateRecord(RecordStoreError):
    """Raised when a unique key is already taken."""


class RecordStore(Protocol):
    """Operations the API needs from the document store."""

    kind: str

    def collection_names(self) -> List[str]:
        ...

    def create_feedback(self, data: dict) -> str:
        ...

    def create_applicant(self, data: dict) -> str:
        ...

    def find_applicant_by_uid(self, uid: Any) -> Optional[dict]:
        ...

    def get_applicant(self, applicant_id: str) -> Optional[dict]:
        ...

    def list_applicants(self) -> List[dict]:
        ...

    def update_applicant(self, applicant_id: str, changes: dict) -> Optional[dict]:
        ...

    def archive_and_delete_applicant(self, applicant_id: str, reason: Any) -> dict:
        ...

    def list_deselected(self) -> List[dict]:
        ...

    def count_cards(self) -> int:
        ...

    def create_card(self, data: dict) -> str:
        ...

    def get_card(self, card_id: str) -> Optional[dict]:
        ...

    def increment_card_likes(self, card_id: str) -> Optional[int]:
        ...


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _object_id(value: Any) -> Optional[ObjectId]:
    if isinstance(value, ObjectId):
        return value
    if isinstance(value, str) and ObjectId.is_valid(value):
        return ObjectId(value)
    return None


def serialize_document(doc: Optional[dict]) -> Optional[dict]:
    """Return a copy of ``doc`` with ``_id`` rendered as a string."""
    if doc is None:
        return None
    out = dict(doc)
    if "_id" in out:
        out["_id"] = str(out["_id"])
    return out


def build_archive(applicant: dict, reason: Any) -> dict:
    """Snapshot an applicant for the deselected collection."""
    archive = {k: v for k, v in applicant.items() if k not in _ARCHIVE_SKIP_FIELDS}
    archive["userId"] = str(applicant["_id"])
    archive["reason"] = reason
    return archive


def create_document(db: Database, collection_name: str, data: dict) -> str:
    """Insert a document with timestamps and return its id as a string."""
    now = _now()
    doc = dict(data)
    doc["created_at"] = now
    doc["updated_at"] = now
    result = db[collection_name].insert_one(doc)
    return str(result.inserted_id)


def get_documents(
    db: Database,
    collection_name: str,
    filter_dict: Optional[dict] = None,
    limit: Optional[int] = None,
) -> List[dict]:
    cursor = db[collection_name].find(filter_dict or {})
    if limit:
        cursor = cursor.limit(limit)
    return [serialize_document(doc) for doc in cursor]


class MongoRecordStore:
    """pymongo-backed store. Accepts any ``Database`` handle."""

    kind = "mongodb"

    def __init__(self, db: Database):
        self.db = db

    @classmethod
    def from_url(cls, database_url: str, database_name: str) -> "MongoRecordStore":
        if not database_url:
            raise ValueError("DATABASE_URL is required for MongoRecordStore")
        client = MongoClient(database_url)
        return cls(client[database_name])

    def ensure_indexes(self) -> None:
        self.db[USER_COLLECTION].create_index("uid", unique=True)
        self.db[CARD_COLLECTION].create_index("id", unique=True)

    def collection_names(self) -> List[str]:
        return self.db.list_collection_names()

    def create_feedback(self, data: dict) -> str:
        return create_document(self.db, FEEDBACK_COLLECTION, data)

    def create_applicant(self, data: dict) -> str:
        try:
            return create_document(self.db, USER_COLLECTION, data)
        except DuplicateKeyError as exc:
            raise DuplicateRecord(f"uid {data.get('uid')!r} already registered") from exc

    def find_applicant_by_uid(self, uid: Any) -> Optional[dict]:
        return serialize_document(self.db[USER_COLLECTION].find_one({"uid": uid}))

    def get_applicant(self, applicant_id: str) -> Optional[dict]:
        oid = _object_id(applicant_id)
        if oid is None:
            return None
        return serialize_document(self.db[USER_COLLECTION].find_one({"_id": oid}))

    def list_applicants(self) -> List[dict]:
        return get_documents(self.db, USER_COLLECTION)

    def update_applicant(self, applicant_id: str, changes: dict) -> Optional[dict]:
        oid = _object_id(applicant_id)
        if oid is None:
            return None
        updated = self.db[USER_COLLECTION].find_one_and_update(
            {"_id": oid},
            {"$set": {**changes, "updated_at": _now()}},
            return_document=ReturnDocument.AFTER,
        )
        return serialize_document(updated)

    def archive_and_delete_applicant(self, applicant_id: str, reason: Any) -> dict:
        oid = _object_id(applicant_id)
        applicant = (
            self.db[USER_COLLECTION].find_one({"_id": oid}) if oid is not None else None
        )
        if applicant is None:
            raise RecordNotFound(f"applicant {applicant_id} not found")

        archive = build_archive(applicant, reason)
        archive_id = create_document(self.db, DESELECTED_COLLECTION, archive)
        try:
            result = self.db[USER_COLLECTION].delete_one({"_id": oid})
        except PyMongoError:
            logger.exception("Delete of applicant %s failed, removing archive", applicant_id)
            self.db[DESELECTED_COLLECTION].delete_one({"_id": ObjectId(archive_id)})
            raise
        if result.deleted_count == 0:
            # Another request deselected this applicant first.
            self.db[DESELECTED_COLLECTION].delete_one({"_id": ObjectId(archive_id)})
            raise RecordNotFound(f"applicant {applicant_id} already deselected")
        archive["_id"] = archive_id
        return archive

    def list_deselected(self) -> List[dict]:
        return get_documents(self.db, DESELECTED_COLLECTION)

    def count_cards(self) -> int:
        return self.db[CARD_COLLECTION].count_documents({})

    def create_card(self, data: dict) -> str:
        doc = {"likes": 0, **data}
        return create_document(self.db, CARD_COLLECTION, doc)

    def get_card(self, card_id: str) -> Optional[dict]:
        return serialize_document(self.db[CARD_COLLECTION].find_one({"id": card_id}))

    def increment_card_likes(self, card_id: str) -> Optional[int]:
        updated = self.db[CARD_COLLECTION].find_one_and_update(
            {"id": card_id},
            {"$inc": {"likes": 1}, "$set": {"updated_at": _now()}},
            return_document=ReturnDocument.AFTER,
        )
        if updated is None:
            return None
        return updated["likes"]


class InMemoryRecordStore:
    """Simple in-memory document store for development and tests."""

    kind = "memory"

    def __init__(self):
        self.collections: Dict[str, Dict[str, dict]] = {
            name: {} for name in COLLECTIONS
        }
        self._lock = threading.Lock()

    def reset(self) -> None:
        """Clear all stored data (useful in tests)."""
        with self._lock:
            for docs in self.collections.values():
                docs.clear()

    def _insert(self, collection_name: str, data: dict) -> str:
        now = _now()
        doc_id = str(ObjectId())
        doc = copy.deepcopy(data)
        doc.update({"_id": doc_id, "created_at": now, "updated_at": now})
        self.collections[collection_name][doc_id] = doc
        return doc_id

    def _delete_document(self, collection_name: str, doc_id: str) -> None:
        self.collections[collection_name].pop(doc_id, None)

    def _all(self, collection_name: str) -> List[dict]:
        return [copy.deepcopy(doc) for doc in self.collections[collection_name].values()]

    def collection_names(self) -> List[str]:
        return [name for name, docs in self.collections.items() if docs]

    def create_feedback(self, data: dict) -> str:
        with self._lock:
            return self._insert(FEEDBACK_COLLECTION, data)

    def create_applicant(self, data: dict) -> str:
        with self._lock:
            uid = data.get("uid")
            for doc in self.collections[USER_COLLECTION].values():
                if doc.get("uid") == uid:
                    raise DuplicateRecord(f"uid {uid!r} already registered")
            return self._insert(USER_COLLECTION, data)

    def find_applicant_by_uid(self, uid: Any) -> Optional[dict]:
        with self._lock:
            for doc in self.collections[USER_COLLECTION].values():
                if doc.get("uid") == uid:
                    return copy.deepcopy(doc)
        return None

    def get_applicant(self, applicant_id: str) -> Optional[dict]:
        with self._lock:
            doc = self.collections[USER_COLLECTION].get(applicant_id)
            return copy.deepcopy(doc) if doc else None

    def list_applicants(self) -> List[dict]:
        with self._lock:
            return self._all(USER_COLLECTION)

    def update_applicant(self, applicant_id: str, changes: dict) -> Optional[dict]:
        with self._lock:
            doc = self.collections[USER_COLLECTION].get(applicant_id)
            if doc is None:
                return None
            doc.update(copy.deepcopy(changes))
            doc["updated_at"] = _now()
            return copy.deepcopy(doc)

    def archive_and_delete_applicant(self, applicant_id: str, reason: Any) -> dict:
        with self._lock:
            applicant = self.collections[USER_COLLECTION].get(applicant_id)
            if applicant is None:
                raise RecordNotFound(f"applicant {applicant_id} not found")
            archive = build_archive(applicant, reason)
            archive_id = self._insert(DESELECTED_COLLECTION, archive)
            try:
                self._delete_document(USER_COLLECTION, applicant_id)
            except RecordStoreError:
                logger.exception("Delete of applicant %s failed, removing archive", applicant_id)
                self.collections[DESELECTED_COLLECTION].pop(archive_id, None)
                raise
            archive["_id"] = archive_id
            return archive

    def list_deselected(self) -> List[dict]:
        with self._lock:
            return self._all(DESELECTED_COLLECTION)

    def count_cards(self) -> int:
        with self._lock:
            return len(self.collections[CARD_COLLECTION])

    def create_card(self, data: dict) -> str:
        with self._lock:
            return self._insert(CARD_COLLECTION, {"likes": 0, **data})

    def _find_card(self, card_id: str) -> Optional[dict]:
        for doc in self.collections[CARD_COLLECTION].values():
            if doc.get("id") == card_id:
                return doc
        return None

    def get_card(self, card_id: str) -> Optional[dict]:
        with self._lock:
            doc = self._find_card(card_id)
            return copy.deepcopy(doc) if doc else None

    def increment_card_likes(self, card_id: str) -> Optional[int]:
        with self._lock:
            doc = self._find_card(card_id)
            if doc is None:
                return None
            doc["likes"] = doc.get("likes", 0) + 1
            doc["updated_at"] = _now()
            return doc["likes"]
