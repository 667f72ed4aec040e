"""
MongoDB access for Agility.

DocumentStore is the only code that talks to pymongo. It exposes the small
document-collection API the rest of the core relies on and turns driver
exceptions into core error kinds.
"""
import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from functools import lru_cache
from typing import Any, Dict, Iterable, List, Optional, Union

from bson import ObjectId
from pydantic import BaseModel
from pymongo import ASCENDING, MongoClient
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError, PyMongoError

from config import settings
from errors import Conflict, InvalidID, StoreError

logger = logging.getLogger(__name__)

USERS = "users"
PROJECTS = "projects"
TEAM = "team"
SPRINTS = "sprints"
TASKS = "tasks"


def object_id(value: str, resource: str = "document") -> ObjectId:
    """Parse a string id, raising InvalidID if it is not an ObjectId."""
    if isinstance(value, ObjectId):
        return value
    if not isinstance(value, str) or not ObjectId.is_valid(value):
        raise InvalidID(resource, value)
    return ObjectId(value)


@contextmanager
def _store_errors(operation: str, collection: str):
    try:
        yield
    except DuplicateKeyError as e:
        raise Conflict(f"Duplicate key in {collection}") from e
    except PyMongoError as e:
        logger.error(f"Store {operation} on {collection} failed: {e}")
        raise StoreError(f"{operation} on {collection} failed") from e


class DocumentStore:
    """Thin wrapper over a pymongo Database."""

    def __init__(self, database: Database):
        self.db = database

    def find(self, collection: str, filter_dict: Optional[Dict[str, Any]] = None) -> List[dict]:
        with _store_errors("find", collection):
            return list(self.db[collection].find(filter_dict or {}))

    def find_one(self, collection: str, filter_dict: Dict[str, Any]) -> Optional[dict]:
        with _store_errors("find_one", collection):
            return self.db[collection].find_one(filter_dict)

    def insert_one(self, collection: str, document: dict) -> Any:
        with _store_errors("insert_one", collection):
            return self.db[collection].insert_one(document).inserted_id

    def insert_many(self, collection: str, documents: Iterable[dict]) -> List[Any]:
        documents = list(documents)
        if not documents:
            return []
        with _store_errors("insert_many", collection):
            return list(self.db[collection].insert_many(documents).inserted_ids)

    def update_one(self, collection: str, filter_dict: Dict[str, Any], fields: Dict[str, Any]) -> int:
        """Set fields on the first match. Returns the matched count."""
        with _store_errors("update_one", collection):
            return self.db[collection].update_one(filter_dict, {"$set": fields}).matched_count

    def delete_one(self, collection: str, filter_dict: Dict[str, Any]) -> int:
        with _store_errors("delete_one", collection):
            return self.db[collection].delete_one(filter_dict).deleted_count

    def delete_many(self, collection: str, filter_dict: Dict[str, Any]) -> int:
        with _store_errors("delete_many", collection):
            return self.db[collection].delete_many(filter_dict).deleted_count

    def create_document(self, collection: str, data: Union[BaseModel, dict]) -> str:
        """Insert a model or dict stamped with created/updated times. Returns the id as str."""
        if isinstance(data, BaseModel):
            data_dict = data.model_dump()
        else:
            data_dict = dict(data)
        now = datetime.now(timezone.utc)
        data_dict["created_at"] = now
        data_dict["updated_at"] = now
        return str(self.insert_one(collection, data_dict))

    def ensure_indexes(self) -> None:
        """Create the indexes the core relies on. Safe to call repeatedly."""
        with _store_errors("create_index", TEAM):
            self.db[TEAM].create_index(
                [("project_id", ASCENDING), ("user_id", ASCENDING)],
                unique=True,
                name="team_project_user_unique",
            )
            self.db[TEAM].create_index([("user_id", ASCENDING)], name="team_user")
        with _store_errors("create_index", USERS):
            self.db[USERS].create_index([("email", ASCENDING)], name="users_email")
        with _store_errors("create_index", SPRINTS):
            self.db[SPRINTS].create_index([("project_id", ASCENDING)], name="sprints_project")
        with _store_errors("create_index", TASKS):
            self.db[TASKS].create_index([("sprint_id", ASCENDING)], name="tasks_sprint")


@lru_cache
def get_client() -> MongoClient:
    return MongoClient(settings.database_url, tz_aware=True)


@lru_cache
def get_store() -> DocumentStore:
    """Process-wide store over the configured database."""
    return DocumentStore(get_client()[settings.database_name])
