"""
MongoDB access helpers.

The connection is configured from DATABASE_URL and DATABASE_NAME. When either
is missing ``db`` stays ``None`` and the API reports the database as not
configured.
"""
import logging
import os
from datetime import datetime, timezone
from typing import Any, Optional, Union

from bson import ObjectId
from bson.errors import InvalidId
from pydantic import BaseModel
from pymongo import ASCENDING, DESCENDING, MongoClient

from errors import ValidationError

logger = logging.getLogger(__name__)

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME")

client: Optional[MongoClient] = None
db = None

if DATABASE_URL and DATABASE_NAME:
    client = MongoClient(DATABASE_URL)
    db = client[DATABASE_NAME]
else:
    logger.warning("DATABASE_URL or DATABASE_NAME not set, database disabled")


def utcnow() -> datetime:
    """Naive UTC timestamp, matching what pymongo hands back."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_object_id(value: Any, label: str = "id") -> ObjectId:
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(str(value))
    except (InvalidId, TypeError):
        raise ValidationError(f"Invalid {label}: {value}")


def serialize_doc(doc: Any) -> Any:
    """Make a document JSON friendly: ``_id`` becomes ``id`` and ObjectIds become strings."""
    if isinstance(doc, ObjectId):
        return str(doc)
    if isinstance(doc, list):
        return [serialize_doc(v) for v in doc]
    if not isinstance(doc, dict):
        return doc
    d = {}
    for k, v in doc.items():
        if k == "_id":
            d["id"] = serialize_doc(v)
        else:
            d[k] = serialize_doc(v)
    return d


def create_document(database, collection_name: str, data: Union[BaseModel, dict]) -> str:
    """Insert a document, stamping created_at/updated_at. Returns the new id."""
    if isinstance(data, BaseModel):
        doc = data.model_dump()
    else:
        doc = dict(data)
    now = utcnow()
    doc.setdefault("created_at", now)
    doc["updated_at"] = now
    result = database[collection_name].insert_one(doc)
    return str(result.inserted_id)


def get_documents(database, collection_name: str, filter_dict: Optional[dict] = None, limit: Optional[int] = None) -> list:
    cursor = database[collection_name].find(filter_dict or {})
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def paginate(cursor, total: int, page: int, limit: int) -> tuple[list, dict]:
    """Apply skip/limit to a cursor and build the pagination block."""
    page = max(page, 1)
    limit = max(limit, 1)
    docs = list(cursor.skip((page - 1) * limit).limit(limit))
    pages = (total + limit - 1) // limit
    return docs, {"total": total, "page": page, "pages": pages}


def parse_sort(sort_by: str) -> list[tuple[str, int]]:
    """Translate ``-created_at`` style sort strings into pymongo sort specs."""
    if sort_by.startswith("-"):
        return [(sort_by[1:], DESCENDING)]
    return [(sort_by, ASCENDING)]


def ensure_indexes(database) -> None:
    database["order"].create_index("order_number", unique=True)
    database["order"].create_index([("user_id", ASCENDING), ("created_at", DESCENDING)])
    database["promotion"].create_index("code", unique=True)
    database["promotion"].create_index([("valid_from", ASCENDING), ("valid_until", ASCENDING)])
    database["analytics"].create_index("date", unique=True)
    database["wishlist"].create_index("user_id", unique=True)
    database["review"].create_index([("product_id", ASCENDING), ("user_id", ASCENDING)], unique=True)
    database["review"].create_index([("product_id", ASCENDING), ("status", ASCENDING)])
