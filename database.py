"""
MongoDB access for the StayFinder API.

Collections:
- "user"          -> accounts
- "listing"       -> properties published by hosts
- "booking"       -> reservations
- "booking_night" -> one claim per reserved night, unique per listing
"""

import os
from datetime import date, datetime, time, timezone
from enum import Enum
from typing import Optional

from bson import ObjectId
from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.database import Database

from errors import InvalidIdentifier

DATABASE_URL = os.getenv("DATABASE_URL", "mongodb://localhost:27017")
DATABASE_NAME = os.getenv("DATABASE_NAME", "stayfinder")
DATABASE_TIMEOUT_MS = int(os.getenv("DATABASE_TIMEOUT_MS", "5000"))

# MongoClient connects lazily, so importing this module never blocks
client = MongoClient(
    DATABASE_URL,
    serverSelectionTimeoutMS=DATABASE_TIMEOUT_MS,
    connectTimeoutMS=DATABASE_TIMEOUT_MS,
    socketTimeoutMS=DATABASE_TIMEOUT_MS,
)
db = client[DATABASE_NAME]


def get_db() -> Database:
    return db


def ensure_indexes(database: Database) -> None:
    database["user"].create_index([("email", ASCENDING)], unique=True)
    database["listing"].create_index([("location.city", ASCENDING), ("location.state", ASCENDING)])
    database["listing"].create_index([("price", ASCENDING)])
    database["listing"].create_index([("property_type", ASCENDING)])
    database["listing"].create_index([("max_guests", ASCENDING)])
    database["listing"].create_index([("host_id", ASCENDING), ("created_at", DESCENDING)])
    database["booking"].create_index([("listing_id", ASCENDING), ("status", ASCENDING)])
    database["booking"].create_index([("guest_id", ASCENDING), ("created_at", DESCENDING)])
    database["booking_night"].create_index(
        [("listing_id", ASCENDING), ("night", ASCENDING)], unique=True
    )
    database["booking_night"].create_index([("booking_id", ASCENDING)])


def create_document(database: Database, collection_name: str, data: dict) -> str:
    """Insert a document stamped with created_at/updated_at and return its id.

    The dict is modified in place: it receives the timestamps and its _id.
    """
    now = datetime.now(timezone.utc)
    data.setdefault("created_at", now)
    data["updated_at"] = now
    result = database[collection_name].insert_one(data)
    return str(result.inserted_id)


def to_object_id(value: str, label: str) -> ObjectId:
    """Parse a path/body identifier, rejecting malformed ones before any lookup."""
    if isinstance(value, ObjectId):
        return value
    if not value or not ObjectId.is_valid(value):
        raise InvalidIdentifier(f"Invalid {label} ID")
    return ObjectId(value)


def day_to_datetime(day: Optional[date]) -> Optional[datetime]:
    # BSON has no date type: calendar days are stored as naive UTC midnight
    if day is None:
        return None
    return datetime.combine(day, time.min)


def datetime_to_day(value: Optional[datetime]) -> Optional[date]:
    if value is None:
        return None
    return value.date()


def isoformat(value) -> Optional[str]:
    if value is None:
        return None
    return value.isoformat()


def to_storage(value):
    """Convert pydantic ``model_dump()`` output into BSON-encodable values."""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {key: to_storage(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_storage(item) for item in value]
    if isinstance(value, date) and not isinstance(value, datetime):
        return day_to_datetime(value)
    return value
