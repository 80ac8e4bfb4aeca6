"""
Database Helper Functions

MongoDB connection and helper functions used by the API endpoints.
Collection names are the lowercase schema class names (User -> "user").
"""

import math
import os
from datetime import datetime, timezone
from typing import Union, Optional, Dict, Any, List, Tuple

from bson import ObjectId
from bson.errors import InvalidId
from dotenv import load_dotenv
from pydantic import BaseModel
from pymongo import ASCENDING, DESCENDING, MongoClient, ReturnDocument

from errors import DatabaseUnavailableError, NotFoundError

# Load environment variables from .env file
load_dotenv()

_client = None
db = None

database_url = os.getenv("DATABASE_URL")
database_name = os.getenv("DATABASE_NAME")

if database_url and database_name:
    _client = MongoClient(database_url)
    db = _client[database_name]


def get_db():
    """FastAPI dependency returning the configured database."""
    if db is None:
        raise DatabaseUnavailableError()
    return db


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _to_dict(data: Union[BaseModel, dict]) -> dict:
    if isinstance(data, BaseModel):
        return data.model_dump()
    return dict(data)


def to_object_id(value: Union[str, ObjectId], what: str = "Document") -> ObjectId:
    """Parse an id from a path or body. Malformed ids are reported as missing."""
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        raise NotFoundError(what, str(value))


# CRUD helpers

def create_document(database, collection_name: str, data: Union[BaseModel, dict]) -> dict:
    payload = _to_dict(data)
    now = utcnow()
    payload["created_at"] = now
    payload["updated_at"] = now
    result = database[collection_name].insert_one(payload)
    payload["_id"] = result.inserted_id
    return payload


def get_document_by_id(database, collection_name: str, _id: Union[str, ObjectId]) -> Optional[dict]:
    try:
        oid = to_object_id(_id)
    except NotFoundError:
        return None
    return database[collection_name].find_one({"_id": oid})


def update_document(database, collection_name: str, _id: Union[str, ObjectId], update_data: Dict[str, Any]) -> Optional[dict]:
    update = {"$set": _to_dict(update_data)}
    update["$set"]["updated_at"] = utcnow()
    return database[collection_name].find_one_and_update(
        {"_id": to_object_id(_id)},
        update,
        return_document=ReturnDocument.AFTER,
    )


def paginate(
    database,
    collection_name: str,
    query: dict,
    page: int = 1,
    limit: int = 10,
    sort: Optional[List[Tuple[str, int]]] = None,
    projection: Optional[dict] = None,
) -> Tuple[List[dict], dict]:
    """Return one page of documents plus the total_pages/current_page/total block."""
    collection = database[collection_name]
    cursor = collection.find(query, projection)
    if sort:
        cursor = cursor.sort(sort)
    docs = list(cursor.skip((page - 1) * limit).limit(limit))
    total = collection.count_documents(query)
    meta = {
        "total_pages": math.ceil(total / limit) if limit else 0,
        "current_page": page,
        "total": total,
    }
    return docs, meta


def ensure_indexes(database) -> None:
    database["user"].create_index("email", unique=True)
    database["service"].create_index("name", unique=True)
    database["service"].create_index("category")
    database["order"].create_index([("user", ASCENDING), ("created_at", DESCENDING)])
    database["order"].create_index("status")
    database["order"].create_index("is_paid")
    database["feedback"].create_index(
        [("user", ASCENDING), ("order", ASCENDING)],
        unique=True,
        partialFilterExpression={"order": {"$exists": True}},
    )
    database["feedback"].create_index([("is_approved", ASCENDING), ("is_public", ASCENDING)])
    database["contact"].create_index("status")
    database["contact"].create_index("is_read")
    database["contact"].create_index([("created_at", DESCENDING)])


# Utility

def serialize_doc(doc: Any) -> Any:
    """Make a document JSON friendly: ObjectIds become strings, recursively."""
    if doc is None:
        return None
    if isinstance(doc, ObjectId):
        return str(doc)
    if isinstance(doc, dict):
        return {k: serialize_doc(v) for k, v in doc.items()}
    if isinstance(doc, list):
        return [serialize_doc(v) for v in doc]
    return doc
