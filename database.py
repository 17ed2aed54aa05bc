"""
MongoDB access layer.

``get_database`` opens the (lazy) pymongo client. ``PortfolioStore`` and
``UserStore`` are the durable stores used by the services; both translate
pymongo failures into the API error taxonomy. All calls are blocking and are
run off the event loop by the callers.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pymongo import MongoClient
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError, PyMongoError

from config import Settings
from errors import UpstreamFailure, ValidationError
from logging_config import get_logger

logger = get_logger(__name__)

PORTFOLIO_COLLECTION = "portfolio"
USER_COLLECTION = "users"


def get_database(settings: Settings) -> Database:
    client = MongoClient(settings.database_url, serverSelectionTimeoutMS=5000, connect=False)
    return client[settings.database_name]


def _strip_id(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if doc is None:
        return None
    d = dict(doc)
    d.pop("_id", None)
    return d


class PortfolioStore:
    """Durable portfolio documents, one per ownerId."""

    def __init__(self, db: Database):
        self.collection = db[PORTFOLIO_COLLECTION]

    def ensure_indexes(self) -> None:
        try:
            self.collection.create_index("ownerId", unique=True)
        except PyMongoError as e:
            raise UpstreamFailure(f"Database not available: {e}") from e

    def create(self, document: Dict[str, Any]) -> Dict[str, Any]:
        data = {**document, "created_at": datetime.utcnow(), "updated_at": datetime.utcnow()}
        try:
            self.collection.insert_one(data)
        except DuplicateKeyError as e:
            raise ValidationError("Portfolio already exists") from e
        except PyMongoError as e:
            raise UpstreamFailure(f"Database not available: {e}") from e
        return dict(document)

    def list_all(self) -> List[Dict[str, Any]]:
        try:
            docs = list(self.collection.find({}, {"_id": 0, "created_at": 0, "updated_at": 0}))
        except PyMongoError as e:
            raise UpstreamFailure(f"Database not available: {e}") from e
        return docs

    def update(self, owner_id: str, fields: Dict[str, Any]) -> None:
        """Write-through of top-level fields; creates the document if missing."""
        fields = {k: v for k, v in fields.items() if k != "ownerId"}
        try:
            self.collection.update_one(
                {"ownerId": owner_id},
                {"$set": {**fields, "updated_at": datetime.utcnow()}, "$setOnInsert": {"created_at": datetime.utcnow()}},
                upsert=True,
            )
        except PyMongoError as e:
            raise UpstreamFailure(f"Database not available: {e}") from e

    def delete(self, owner_id: str) -> bool:
        try:
            res = self.collection.delete_one({"ownerId": owner_id})
        except PyMongoError as e:
            raise UpstreamFailure(f"Database not available: {e}") from e
        return res.deleted_count > 0


class UserStore:
    """Registered users, keyed by lower-cased email."""

    def __init__(self, db: Database):
        self.collection = db[USER_COLLECTION]

    def ensure_indexes(self) -> None:
        try:
            self.collection.create_index("email", unique=True)
            self.collection.create_index("username", unique=True)
        except PyMongoError as e:
            raise UpstreamFailure(f"Database not available: {e}") from e

    def count(self) -> int:
        try:
            return self.collection.count_documents({})
        except PyMongoError as e:
            raise UpstreamFailure(f"Database not available: {e}") from e

    def create(self, user: Dict[str, Any]) -> Dict[str, Any]:
        try:
            res = self.collection.insert_one(dict(user))
        except DuplicateKeyError as e:
            raise ValidationError("User already exists") from e
        except PyMongoError as e:
            raise UpstreamFailure(f"Database not available: {e}") from e
        return {**user, "id": str(res.inserted_id)}

    def find_by_email(self, email: str) -> Optional[Dict[str, Any]]:
        try:
            doc = self.collection.find_one({"email": email.lower()})
        except PyMongoError as e:
            raise UpstreamFailure(f"Database not available: {e}") from e
        return self._serialize(doc)

    def find_by_email_or_username(self, email: str, username: str) -> Optional[Dict[str, Any]]:
        try:
            doc = self.collection.find_one({"$or": [{"email": email.lower()}, {"username": username}]})
        except PyMongoError as e:
            raise UpstreamFailure(f"Database not available: {e}") from e
        return self._serialize(doc)

    @staticmethod
    def _serialize(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
        if doc is None:
            return None
        d = _strip_id(doc)
        d["id"] = str(doc.get("_id"))
        return d


def database_status(db: Optional[Database]) -> Dict[str, Any]:
    ok = db is not None
    collections: List[str] = []
    if ok:
        try:
            collections = db.list_collection_names()
        except PyMongoError as e:
            logger.warning("database status check failed", error=str(e))
            ok = False
    return {"database": "connected" if ok else "not-available", "collections": collections[:10]}

