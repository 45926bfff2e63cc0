"""
MongoDB access for the cake storefront.

``db`` is None when DATABASE_URL / DATABASE_NAME are not set; routes obtain the
database through ``get_db`` so tests can swap in another one.
"""
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from bson import ObjectId
from fastapi import HTTPException
from pydantic import BaseModel
from pymongo import ASCENDING, MongoClient

from config import Config
from errors import ShopError

client: Optional[MongoClient] = None
db = None

if Config.DATABASE_URL and Config.DATABASE_NAME:
    client = MongoClient(Config.DATABASE_URL)
    db = client[Config.DATABASE_NAME]

# Collections holding a uniquely named record
NAMED_COLLECTIONS = [
    "category",
    "flavor",
    "size",
    "tag",
    "spongetype",
    "shape",
    "availability",
    "deliveryoption",
    "dietarypreference",
    "cake",
]


def get_db():
    if db is None:
        raise HTTPException(status_code=500, detail="Database not configured")
    return db


def ensure_indexes(database) -> None:
    for name in NAMED_COLLECTIONS:
        database[name].create_index([("name", ASCENDING)], unique=True)
    database["user"].create_index([("email", ASCENDING)], unique=True)
    database["profile"].create_index([("user_id", ASCENDING)], unique=True)
    database["cart"].create_index([("user_id", ASCENDING)], unique=True)
    database["coupon"].create_index([("code", ASCENDING)], unique=True)
    database["order"].create_index([("user_id", ASCENDING), ("created_at", ASCENDING)])


def utcnow() -> datetime:
    """Server-side 'now' in UTC (naive, as pymongo hands dates back)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def parse_object_id(value: Any, label: str) -> ObjectId:
    if isinstance(value, ObjectId):
        return value
    if not isinstance(value, str) or not ObjectId.is_valid(value):
        raise ShopError(f"Invalid {label} ID format")
    return ObjectId(value)


def oid_str(oid):
    return str(oid) if isinstance(oid, ObjectId) else oid


def serialize_doc(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Copy of ``doc`` with ``_id`` renamed to ``id`` and ObjectIds stringified."""
    if doc is None:
        return None
    out: Dict[str, Any] = {}
    for key, value in doc.items():
        if key == "_id":
            out["id"] = oid_str(value)
        elif isinstance(value, ObjectId):
            out[key] = str(value)
        elif isinstance(value, dict):
            out[key] = serialize_doc(value)
        elif isinstance(value, list):
            out[key] = [
                serialize_doc(v) if isinstance(v, dict) else oid_str(v)
                for v in value
            ]
        else:
            out[key] = value
    return out


def create_document(database, collection_name: str, data: Union[BaseModel, dict]) -> str:
    """Insert a document with created_at/updated_at stamps and return its id."""
    payload = data.model_dump() if isinstance(data, BaseModel) else dict(data)
    now = utcnow()
    payload.setdefault("created_at", now)
    payload["updated_at"] = now
    result = database[collection_name].insert_one(payload)
    return str(result.inserted_id)


def get_documents(database, collection_name: str, filter_dict: Optional[dict] = None,
                  limit: Optional[int] = None, sort: Optional[list] = None) -> List[dict]:
    cursor = database[collection_name].find(filter_dict or {})
    if sort:
        cursor = cursor.sort(sort)
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)
