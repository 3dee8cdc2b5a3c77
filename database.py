"""
Database helpers

MongoDB connection plus the small set of helpers the model layer builds on.
When DATABASE_URL / DATABASE_NAME are not configured ``db`` stays ``None``
and every helper raises.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Optional, Union

from bson import ObjectId
from bson.errors import InvalidId
from pydantic import BaseModel
from pymongo import ASCENDING, DESCENDING, GEOSPHERE, MongoClient

import config

logger = logging.getLogger(__name__)

_client = None
db = None

if config.DATABASE_URL and config.DATABASE_NAME:
    _client = MongoClient(config.DATABASE_URL)
    db = _client[config.DATABASE_NAME]
    logger.info("Database client configured for %s", config.DATABASE_NAME)
else:
    logger.warning("DATABASE_URL / DATABASE_NAME not set; database unavailable")


class DatabaseUnavailable(RuntimeError):
    pass


class CastError(ValueError):
    """A value could not be cast to the type a field expects."""

    def __init__(self, path: str, value: Any):
        self.path = path
        self.value = value
        super().__init__(f"Cast to ObjectId failed for value \"{value}\" at path \"{path}\"")


def get_db():
    if db is None:
        raise DatabaseUnavailable(
            "Database not available. Check DATABASE_URL and DATABASE_NAME environment variables."
        )
    return db


def collection(name: str):
    return get_db()[name]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Stored datetimes come back naive (UTC); make them comparable with aware ones."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def object_id(value: Any, path: str = "_id") -> ObjectId:
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(str(value))
    except (InvalidId, TypeError):
        raise CastError(path, value)


def create_document(collection_name: str, data: Union[BaseModel, dict]) -> str:
    """Insert a single document with timestamps and version key"""
    if isinstance(data, BaseModel):
        data_dict = data.model_dump()
    else:
        data_dict = data.copy()
    now = utcnow()
    data_dict.setdefault("created_at", now)
    data_dict["updated_at"] = now
    data_dict.setdefault("__v", 0)
    result = collection(collection_name).insert_one(data_dict)
    return str(result.inserted_id)


def ensure_indexes() -> None:
    tours = collection("tour")
    tours.create_index("name", unique=True)
    tours.create_index([("price", ASCENDING), ("ratings_average", DESCENDING)])
    tours.create_index("slug")
    tours.create_index([("start_location", GEOSPHERE)])
    collection("user").create_index("email", unique=True)
    collection("review").create_index("tour")
    collection("booking").create_index("checkout_session_id", unique=True, sparse=True)
