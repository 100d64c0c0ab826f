"""Editable site copy, stored as a single well-known record."""
from pymongo import ReturnDocument

from database import serialize_doc, utcnow
from schemas import SiteSettings

SINGLETON_KEY = "site_settings"
PROTECTED_FIELDS = {"_id", "id", "singleton_key", "created_at", "updated_at"}


def get_site_settings(db) -> dict:
    now = utcnow()
    defaults = SiteSettings().model_dump()
    defaults.pop("singleton_key")
    settings = db["site_settings"].find_one_and_update(
        {"singleton_key": SINGLETON_KEY},
        {"$setOnInsert": {**defaults, "created_at": now, "updated_at": now}},
        upsert=True,
        return_document=ReturnDocument.AFTER,
    )
    return serialize_doc(settings)


def update_site_settings(db, changes: dict) -> dict:
    get_site_settings(db)
    updates = {
        k: v for k, v in changes.items()
        if k in SiteSettings.model_fields and k not in PROTECTED_FIELDS
    }
    updates["updated_at"] = utcnow()
    settings = db["site_settings"].find_one_and_update(
        {"singleton_key": SINGLETON_KEY},
        {"$set": updates},
        return_document=ReturnDocument.AFTER,
    )
    return serialize_doc(settings)


def reset_site_settings(db) -> dict:
    db["site_settings"].delete_many({})
    return get_site_settings(db)
