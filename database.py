"""
MongoDB access

`db` is the configured database, or None when DATABASE_URL is not set.
DocumentStore wraps one collection with the operations the catalog needs and
turns unique-index violations into DuplicateKey errors.
"""
import logging
import os
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from bson import ObjectId
from pymongo import ASCENDING, MongoClient
from pymongo.errors import DuplicateKeyError

from errors import DuplicateKey, NotFound

logger = logging.getLogger(__name__)

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME", "catalog")

client = MongoClient(DATABASE_URL) if DATABASE_URL else None
db = client[DATABASE_NAME] if client is not None else None


def to_public(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Replace Mongo's `_id` with a string `id`."""
    if not doc:
        return doc
    doc = dict(doc)
    doc["id"] = str(doc.pop("_id"))
    return doc


def as_object_id(value: Any) -> Optional[ObjectId]:
    if isinstance(value, ObjectId):
        return value
    if isinstance(value, str) and ObjectId.is_valid(value):
        return ObjectId(value)
    return None


def _now() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class DocumentStore:
    def __init__(self, collection, unique_fields: Sequence[str] = ()):
        self.collection = collection
        self.unique_fields = tuple(unique_fields)

    @property
    def name(self) -> str:
        return self.collection.name

    def ensure_indexes(self) -> None:
        for field in self.unique_fields:
            self.collection.create_index([(field, ASCENDING)], unique=True)

    def find(
        self,
        filter: Dict[str, Any],
        sort: Optional[List[Tuple[str, int]]] = None,
        skip: int = 0,
        limit: int = 0,
    ) -> List[Dict[str, Any]]:
        cursor = self.collection.find(filter)
        if sort:
            cursor = cursor.sort(sort)
        if skip:
            cursor = cursor.skip(skip)
        if limit:
            cursor = cursor.limit(limit)
        return [to_public(doc) for doc in cursor]

    def count(self, filter: Dict[str, Any]) -> int:
        return self.collection.count_documents(filter)

    def find_one(self, filter: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        return to_public(self.collection.find_one(filter))

    def find_by_id(self, id: str) -> Optional[Dict[str, Any]]:
        oid = as_object_id(id)
        return self.find_one({"_id": oid}) if oid is not None else None

    def find_by_ids(self, ids: Iterable[str]) -> List[Dict[str, Any]]:
        """One round-trip for the whole id set; unknown or malformed ids are skipped."""
        oids = [oid for oid in (as_object_id(i) for i in ids) if oid is not None]
        if not oids:
            return []
        return self.find({"_id": {"$in": oids}})

    def insert(self, data: Dict[str, Any]) -> Dict[str, Any]:
        doc = dict(data)
        doc.pop("id", None)
        doc["created_at"] = doc["updated_at"] = _now()
        try:
            result = self.collection.insert_one(doc)
        except DuplicateKeyError as e:
            raise self._duplicate(e, doc) from e
        doc["_id"] = result.inserted_id
        logger.info("Created %s %s", self.name, result.inserted_id)
        return to_public(doc)

    def replace(self, id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        oid = as_object_id(id)
        doc = dict(data)
        doc.pop("id", None)
        doc.pop("_id", None)
        doc["updated_at"] = _now()
        try:
            result = self.collection.replace_one({"_id": oid}, doc)
        except DuplicateKeyError as e:
            raise self._duplicate(e, doc, oid) from e
        if not result.matched_count:
            raise NotFound(self.name.capitalize(), id)
        doc["_id"] = oid
        logger.info("Updated %s %s", self.name, oid)
        return to_public(doc)

    def delete_one(self, filter: Dict[str, Any]) -> int:
        deleted = self.collection.delete_one(filter).deleted_count
        if deleted:
            logger.info("Deleted %s matching %s", self.name, filter)
        return deleted

    def delete_many(self, filter: Dict[str, Any]) -> int:
        deleted = self.collection.delete_many(filter).deleted_count
        logger.info("Deleted %d %s document(s)", deleted, self.name)
        return deleted

    def _duplicate(self, error: DuplicateKeyError, doc: Dict[str, Any], oid: Optional[ObjectId] = None) -> DuplicateKey:
        key_value = (error.details or {}).get("keyValue")
        if key_value:
            return DuplicateKey(sorted(key_value))
        # the driver did not say which index fired; look for the colliding value
        fields = []
        for field in self.unique_fields:
            query: Dict[str, Any] = {field: doc.get(field)}
            if oid is not None:
                query["_id"] = {"$ne": oid}
            if self.collection.find_one(query) is not None:
                fields.append(field)
        return DuplicateKey(fields or list(self.unique_fields))


class Catalog:
    """The catalog's collections, each behind a DocumentStore."""

    def __init__(self, database):
        self.products = DocumentStore(database["product"], unique_fields=("slug",))
        self.attributes = DocumentStore(database["attribute"], unique_fields=("code",))
        self.categories = DocumentStore(database["category"], unique_fields=("name", "slug"))
        self.banners = DocumentStore(database["banner"])

    def ensure_indexes(self) -> None:
        for store in (self.products, self.attributes, self.categories, self.banners):
            store.ensure_indexes()
