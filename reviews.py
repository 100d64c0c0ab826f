"""Product reviews with moderation (pending -> approved | rejected)."""
import logging
from typing import Any, Optional

from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from auth import CurrentUser
from catalog import find_product
from database import create_document, paginate, parse_sort, serialize_doc, to_object_id, utcnow
from errors import AuthorizationError, NotFoundError, ValidationError
from schemas import Review

logger = logging.getLogger(__name__)


def _load_review(db, review_id: Any) -> dict:
    review = db["review"].find_one({"_id": to_object_id(review_id, "review id")})
    if not review:
        raise NotFoundError("Review", str(review_id))
    return review


def _is_verified_purchase(db, order_id: Optional[str], user_id: str) -> bool:
    if not order_id:
        return False
    order = db["order"].find_one({"_id": to_object_id(order_id, "order id")})
    return bool(order and order["user_id"] == user_id and order["status"] == "delivered")


def create_review(
    db,
    user: CurrentUser,
    product_id: str,
    rating: int,
    title: str,
    comment: str,
    order_id: Optional[str] = None,
    images: Optional[list] = None,
) -> dict:
    if not 1 <= rating <= 5:
        raise ValidationError("Rating must be between 1 and 5")
    if not find_product(db, product_id):
        raise NotFoundError("Product", product_id)
    if db["review"].find_one({"product_id": product_id, "user_id": user.id}):
        raise ValidationError("You have already reviewed this product")

    review = Review(
        product_id=product_id,
        user_id=user.id,
        order_id=order_id,
        rating=rating,
        title=title,
        comment=comment,
        images=images or [],
        verified=_is_verified_purchase(db, order_id, user.id),
        status="pending",
    )
    try:
        review_id = create_document(db, "review", review)
    except DuplicateKeyError:
        raise ValidationError("You have already reviewed this product")
    return serialize_doc(_load_review(db, review_id))


def rating_summary(db, product_id: str) -> dict:
    """Average and distribution over a product's approved reviews."""
    rows = list(db["review"].aggregate([
        {"$match": {"product_id": product_id, "status": "approved"}},
        {"$group": {"_id": "$rating", "count": {"$sum": 1}}},
        {"$sort": {"_id": -1}},
    ]))
    total = sum(r["count"] for r in rows)
    average = round(sum(r["_id"] * r["count"] for r in rows) / total, 1) if total else 0
    return {
        "average_rating": average,
        "total_reviews": total,
        "rating_distribution": [{"rating": r["_id"], "count": r["count"]} for r in rows],
    }


def list_product_reviews(db, product_id: str, sort_by: str = "-created_at", limit: int = 10, page: int = 1) -> dict:
    query = {"product_id": product_id, "status": "approved"}
    total = db["review"].count_documents(query)
    docs, pagination = paginate(db["review"].find(query).sort(parse_sort(sort_by)), total, page, limit)
    return {
        "reviews": serialize_doc(docs),
        "stats": rating_summary(db, product_id),
        "pagination": pagination,
    }


def list_user_reviews(db, user_id: str, limit: int = 20, page: int = 1) -> dict:
    query = {"user_id": user_id}
    total = db["review"].count_documents(query)
    docs, pagination = paginate(db["review"].find(query).sort("created_at", -1), total, page, limit)
    return {"reviews": serialize_doc(docs), "pagination": pagination}


def list_reviews(db, status: Optional[str] = None, limit: int = 20, page: int = 1) -> dict:
    query = {"status": status} if status else {}
    total = db["review"].count_documents(query)
    docs, pagination = paginate(db["review"].find(query).sort("created_at", -1), total, page, limit)
    return {"reviews": serialize_doc(docs), "pagination": pagination}


def update_review(db, review_id: Any, user: CurrentUser, changes: dict) -> dict:
    review = _load_review(db, review_id)
    if review["user_id"] != user.id:
        raise AuthorizationError()
    rating = changes.get("rating")
    if rating is not None and not 1 <= rating <= 5:
        raise ValidationError("Rating must be between 1 and 5")

    updates = {k: v for k, v in changes.items() if k in ("rating", "title", "comment", "images") and v}
    # Edited reviews go back through moderation.
    updates.update({"status": "pending", "updated_at": utcnow()})
    res = db["review"].find_one_and_update(
        {"_id": review["_id"]}, {"$set": updates}, return_document=ReturnDocument.AFTER
    )
    return serialize_doc(res)


def delete_review(db, review_id: Any, user: CurrentUser) -> None:
    review = _load_review(db, review_id)
    if not user.can_access(review["user_id"]):
        raise AuthorizationError()
    db["review"].delete_one({"_id": review["_id"]})


def set_review_status(db, review_id: Any, status: str) -> dict:
    res = db["review"].find_one_and_update(
        {"_id": to_object_id(review_id, "review id")},
        {"$set": {"status": status, "updated_at": utcnow()}},
        return_document=ReturnDocument.AFTER,
    )
    if not res:
        raise NotFoundError("Review", str(review_id))
    logger.info("Review %s %s", review_id, status)
    return serialize_doc(res)


def mark_helpful(db, review_id: Any, helpful: bool) -> dict:
    field = "helpful" if helpful else "unhelpful"
    res = db["review"].find_one_and_update(
        {"_id": to_object_id(review_id, "review id")},
        {"$inc": {field: 1}},
        return_document=ReturnDocument.AFTER,
    )
    if not res:
        raise NotFoundError("Review", str(review_id))
    return serialize_doc(res)
