"""Product catalog: lookups, admin CRUD and stock reservation."""
import logging
import os
import re
from typing import Any, Optional

from pymongo import ASCENDING, DESCENDING, ReturnDocument

from database import create_document, to_object_id, utcnow
from errors import NotFoundError
from schemas import Product

logger = logging.getLogger(__name__)

LOW_STOCK_THRESHOLD = int(os.getenv("LOW_STOCK_THRESHOLD", 10))

PRODUCT_SORTS = {
    "price-asc": [("price", ASCENDING)],
    "price-desc": [("price", DESCENDING)],
    "name": [("name", ASCENDING)],
    "newest": [("created_at", DESCENDING)],
}


def find_product(db, product_id: Any) -> Optional[dict]:
    return db["product"].find_one({"_id": to_object_id(product_id, "product id")})


def get_product(db, product_id: Any) -> dict:
    product = find_product(db, product_id)
    if not product:
        raise NotFoundError("Product", str(product_id))
    return product


def list_products(
    db,
    category: Optional[str] = None,
    search: Optional[str] = None,
    featured: Optional[bool] = None,
    sort: Optional[str] = None,
    include_unavailable: bool = False,
) -> list:
    query: dict[str, Any] = {}
    if not include_unavailable:
        query["is_available"] = True
    if category and category != "all":
        query["category"] = category
    if search:
        pattern = re.escape(search)
        query["$or"] = [
            {"name": {"$regex": pattern, "$options": "i"}},
            {"description": {"$regex": pattern, "$options": "i"}},
        ]
    if featured:
        query["featured"] = True
    return list(db["product"].find(query).sort(PRODUCT_SORTS.get(sort, [("name", ASCENDING)])))


def create_product(db, payload: Product) -> dict:
    product_id = create_document(db, "product", payload)
    logger.info("Created product %s (%s)", product_id, payload.name)
    return get_product(db, product_id)


def update_product(db, product_id: Any, payload: Product) -> dict:
    data = payload.model_dump()
    data["updated_at"] = utcnow()
    res = db["product"].find_one_and_update(
        {"_id": to_object_id(product_id, "product id")},
        {"$set": data},
        return_document=ReturnDocument.AFTER,
    )
    if not res:
        raise NotFoundError("Product", str(product_id))
    return res


def delete_product(db, product_id: Any) -> None:
    res = db["product"].delete_one({"_id": to_object_id(product_id, "product id")})
    if res.deleted_count == 0:
        raise NotFoundError("Product", str(product_id))


def reserve_stock(db, product_id: Any, quantity: int) -> Optional[dict]:
    """Atomically take ``quantity`` units from stock.

    Returns the updated product, or None when there isn't enough stock left.
    """
    product = db["product"].find_one_and_update(
        {"_id": to_object_id(product_id, "product id"), "stock": {"$gte": quantity}},
        {"$inc": {"stock": -quantity}, "$set": {"updated_at": utcnow()}},
        return_document=ReturnDocument.AFTER,
    )
    if product and product["stock"] <= LOW_STOCK_THRESHOLD:
        logger.warning("Low stock for %s: %d left", product.get("name"), product["stock"])
    return product


def release_stock(db, product_id: Any, quantity: int) -> bool:
    """Put ``quantity`` units back. Returns False if the product no longer exists."""
    res = db["product"].update_one(
        {"_id": to_object_id(product_id, "product id")},
        {"$inc": {"stock": quantity}, "$set": {"updated_at": utcnow()}},
    )
    if res.matched_count == 0:
        logger.warning("Cannot restore %d units: product %s is gone", quantity, product_id)
        return False
    return True
