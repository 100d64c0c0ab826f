"""
Promotion codes.

``validate_promotion`` is a read-only preview used by the cart UI. The actual
redemption goes through ``redeem_promotion``, which re-checks the limits and
records the use in a single conditional update so concurrent checkouts can't
push a code past its usage limits.
"""
import logging
from datetime import datetime
from typing import Any, Iterable, Optional

from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from auth import CurrentUser
from database import create_document, paginate, serialize_doc, to_object_id, utcnow
from errors import (
    AuthorizationError,
    BelowMinimumError,
    InvalidPromotionError,
    InvalidStateError,
    NotApplicableError,
    NotFoundError,
    PerCustomerLimitExceededError,
    PromotionError,
    UsageLimitExceededError,
    ValidationError,
)
from orders import apply_discount, populate_order
from schemas import Promotion

logger = logging.getLogger(__name__)

REDEEM_ATTEMPTS = 5


def _active_query(code: str, now: datetime) -> dict:
    return {
        "code": code.strip().upper(),
        "active": True,
        "valid_from": {"$lte": now},
        "valid_until": {"$gte": now},
    }


def _find_valid(db, code: str) -> dict:
    promotion = db["promotion"].find_one(_active_query(code, utcnow()))
    if not promotion:
        raise InvalidPromotionError(code)
    return promotion


def _user_usage(promotion: dict, user_id: str) -> int:
    return sum(1 for u in promotion.get("used_by", []) if str(u.get("user_id")) == str(user_id))


def _check_usage_limit(promotion: dict) -> None:
    limit = promotion.get("usage_limit")
    if limit and promotion.get("usage_count", 0) >= limit:
        raise UsageLimitExceededError(promotion["code"])


def _check_customer_limit(promotion: dict, user_id: Optional[str]) -> None:
    per_customer = promotion.get("usage_per_customer") or 1
    if user_id and _user_usage(promotion, user_id) >= per_customer:
        raise PerCustomerLimitExceededError(per_customer)


def _check_applicable(promotion: dict, product_ids: Iterable[str], categories: Iterable[str]) -> None:
    applicable_products = [str(p) for p in promotion.get("applicable_products", [])]
    applicable_categories = promotion.get("applicable_categories", [])
    if not applicable_products and not applicable_categories:
        return
    wanted = {str(p) for p in product_ids}
    if any(p in wanted for p in applicable_products):
        return
    if any(c in applicable_categories for c in categories if c):
        return
    raise NotApplicableError()


def calculate_discount(promotion: dict, order_total: float) -> float:
    if promotion["discount_type"] == "percentage":
        amount = order_total * promotion["discount_value"] / 100
        if promotion.get("max_discount"):
            amount = min(amount, promotion["max_discount"])
    else:
        amount = promotion["discount_value"]
    # A discount never exceeds the total it applies to.
    return round(min(amount, order_total), 2)


def check_promotion(
    promotion: dict,
    order_total: float,
    user_id: Optional[str],
    product_ids: Iterable[str],
    categories: Iterable[str],
) -> float:
    """Run every eligibility rule against a promotion and return its discount."""
    _check_usage_limit(promotion)
    if order_total < promotion.get("minimum_order_value", 0):
        raise BelowMinimumError(promotion["minimum_order_value"])
    _check_applicable(promotion, product_ids, categories)
    _check_customer_limit(promotion, user_id)
    return calculate_discount(promotion, order_total)


def validate_promotion(
    db,
    code: str,
    order_total: float,
    user_id: Optional[str] = None,
    product_ids: Optional[list] = None,
    category: Optional[str] = None,
) -> dict:
    promotion = _find_valid(db, code)
    discount = check_promotion(promotion, order_total, user_id, product_ids or [], [category])
    return {
        "valid": True,
        "promotion": {
            "code": promotion["code"],
            "description": promotion.get("description"),
            "discount_type": promotion["discount_type"],
            "discount_value": promotion["discount_value"],
            "discount_amount": discount,
            "final_total": round(order_total - discount, 2),
        },
    }


def redeem_promotion(db, code: str, order_id: str, user_id: str) -> dict:
    """Record one use of a promotion by ``user_id`` for ``order_id``.

    The update only lands if ``usage_count`` is unchanged since the limits were
    checked, so ``usage_count == len(used_by)`` holds and neither limit can be
    exceeded by racing redemptions.
    """
    for _ in range(REDEEM_ATTEMPTS):
        promotion = db["promotion"].find_one({"code": code.strip().upper(), "active": True})
        if not promotion:
            raise NotFoundError("Promotion", code)
        _check_usage_limit(promotion)
        _check_customer_limit(promotion, user_id)

        count = promotion.get("usage_count", 0)
        res = db["promotion"].find_one_and_update(
            {"_id": promotion["_id"], "usage_count": count},
            {
                "$inc": {"usage_count": 1},
                "$push": {"used_by": {"user_id": str(user_id), "order_id": str(order_id), "used_at": utcnow()}},
                "$set": {"updated_at": utcnow()},
            },
            return_document=ReturnDocument.AFTER,
        )
        if res is not None:
            logger.info("Promotion %s redeemed by %s on order %s", res["code"], user_id, order_id)
            return res
        logger.debug("Promotion %s redemption raced, retrying", code)
    raise PromotionError("Promotion is busy, please try again")


def _release_redemption(db, promotion_id, order_id: str) -> None:
    """Undo a redemption whose order could not take the discount."""
    db["promotion"].update_one(
        {"_id": promotion_id, "used_by.order_id": order_id},
        {"$inc": {"usage_count": -1}, "$pull": {"used_by": {"order_id": order_id}}},
    )
    logger.warning("Rolled back redemption of promotion %s for order %s", promotion_id, order_id)


def apply_promotion(db, code: str, order_id: Any, user: CurrentUser, user_id: Optional[str] = None) -> dict:
    """Validate a code against a placed order, redeem it, and discount the order."""
    order = db["order"].find_one({"_id": to_object_id(order_id, "order id")})
    if not order:
        raise NotFoundError("Order", str(order_id))
    if not user.can_access(order["user_id"]):
        raise AuthorizationError()
    if order.get("discount_code"):
        raise InvalidStateError("Order already has a promotion applied")
    if order["status"] in ("cancelled", "refunded"):
        raise InvalidStateError(f"Cannot apply a promotion to a {order['status']} order")

    redeemer = user_id or order["user_id"]
    promotion = _find_valid(db, code)
    discount = check_promotion(
        promotion,
        order["subtotal"],
        redeemer,
        [line["product_id"] for line in order["items"]],
        [line.get("category") for line in order["items"]],
    )
    promotion = redeem_promotion(db, promotion["code"], str(order["_id"]), redeemer)
    try:
        updated = apply_discount(db, order, promotion["code"], discount)
    except InvalidStateError:
        _release_redemption(db, promotion["_id"], str(order["_id"]))
        raise
    return {
        "message": "Promotion applied successfully",
        "promotion": serialize_doc(promotion),
        "order": populate_order(db, updated),
    }


# ---------------
# Administration
# ---------------

def _load_promotion(db, promotion_id: Any) -> dict:
    promotion = db["promotion"].find_one({"_id": to_object_id(promotion_id, "promotion id")})
    if not promotion:
        raise NotFoundError("Promotion", str(promotion_id))
    return promotion


def create_promotion(db, payload: Promotion) -> dict:
    if payload.valid_from >= payload.valid_until:
        raise ValidationError("Valid from date must be before valid until date")
    data = payload.model_dump()
    data.update({"code": payload.code.strip().upper(), "usage_count": 0, "used_by": [], "active": True})
    try:
        promotion_id = create_document(db, "promotion", data)
    except DuplicateKeyError:
        raise ValidationError(f"Promotion code {data['code']} already exists")
    logger.info("Created promotion %s", data["code"])
    return _load_promotion(db, promotion_id)


def list_promotions(db, active: Optional[bool] = True, limit: int = 20, page: int = 1) -> dict:
    query: dict[str, Any] = {}
    if active is not None:
        now = utcnow()
        query = {"active": active, "valid_from": {"$lte": now}, "valid_until": {"$gte": now}}
    total = db["promotion"].count_documents(query)
    docs, pagination = paginate(db["promotion"].find(query).sort("created_at", -1), total, page, limit)
    return {"promotions": [serialize_doc(d) for d in docs], "pagination": pagination}


def get_promotion(db, promotion_id: Any) -> dict:
    return _load_promotion(db, promotion_id)


def update_promotion(db, promotion_id: Any, changes: dict) -> dict:
    allowed = {"description", "active", "usage_limit", "valid_until"}
    updates = {k: v for k, v in changes.items() if k in allowed and v is not None}
    promotion = _load_promotion(db, promotion_id)

    if "valid_until" in updates and updates["valid_until"] <= promotion["valid_from"]:
        raise ValidationError("Valid from date must be before valid until date")
    filter_dict = {"_id": promotion["_id"]}
    if "usage_limit" in updates:
        if updates["usage_limit"] < promotion.get("usage_count", 0):
            raise ValidationError("Usage limit cannot be below the current usage count")
        # Reject if a redemption lands between the check and the write.
        filter_dict["usage_count"] = {"$lte": updates["usage_limit"]}

    updates["updated_at"] = utcnow()
    res = db["promotion"].find_one_and_update(
        filter_dict,
        {"$set": updates},
        return_document=ReturnDocument.AFTER,
    )
    if not res:
        if "usage_limit" in updates:
            raise ValidationError("Usage limit cannot be below the current usage count")
        raise NotFoundError("Promotion", str(promotion_id))
    return res


def delete_promotion(db, promotion_id: Any) -> None:
    res = db["promotion"].delete_one({"_id": to_object_id(promotion_id, "promotion id")})
    if res.deleted_count == 0:
        raise NotFoundError("Promotion", str(promotion_id))


def get_promotion_stats(db) -> dict:
    totals = list(db["promotion"].aggregate([
        {"$group": {"_id": None, "total_promotions": {"$sum": 1}, "total_usage": {"$sum": "$usage_count"}}},
    ]))
    fixed = db["promotion"].find({"discount_type": "fixed_amount"}, {"discount_value": 1, "usage_count": 1})
    row = totals[0] if totals else {}
    return {
        "total_promotions": row.get("total_promotions", 0),
        "active_promotions": db["promotion"].count_documents({"active": True}),
        "total_usage": row.get("total_usage", 0),
        "total_discount_given": round(sum(p["discount_value"] * p.get("usage_count", 0) for p in fixed), 2),
    }
