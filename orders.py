"""
Order lifecycle.

Orders are created in ``pending``, move forward through the fulfilment
workflow, and end ``delivered``, ``cancelled`` or ``refunded``. Invoice orders
hold product stock from creation until they are cancelled or refunded; quote
orders never touch stock.

Money fields always satisfy::

    subtotal == sum(line.unit_price * line.quantity)
    total == subtotal + tax + shipping_cost - discount
"""
import logging
import math
from datetime import datetime
from typing import Any, Optional

from pymongo import DESCENDING, ReturnDocument

from auth import CurrentUser
from catalog import find_product, release_stock, reserve_stock
from database import create_document, paginate, parse_sort, serialize_doc, to_object_id, utcnow
from errors import (
    AuthorizationError,
    InsufficientStockError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from schemas import ORDER_STATUSES, PAYMENT_STATUSES, Order

logger = logging.getLogger(__name__)

ORDER_NUMBER_PREFIX = "ORD-"
ORDER_NUMBER_COUNTER = "order_number"

# Moves allowed through update_order_status. Cancelled and refunded are only
# reachable through cancel_order/refund_order, which put stock back.
ALLOWED_TRANSITIONS = {
    "pending": {"confirmed", "processing"},
    "confirmed": {"processing", "packed"},
    "processing": {"packed", "shipped"},
    "packed": {"shipped", "out_for_delivery", "delivered"},
    "shipped": {"out_for_delivery", "delivered"},
    "out_for_delivery": {"delivered"},
    "delivered": set(),
    "cancelled": set(),
    "refunded": set(),
}
NOT_CANCELLABLE = ("delivered", "cancelled", "refunded")


def compute_subtotal(lines: list) -> float:
    return round(sum(float(line["unit_price"]) * int(line["quantity"]) for line in lines), 2)


def compute_total(subtotal: float, tax: float, shipping_cost: float, discount: float) -> float:
    return round(subtotal + tax + shipping_cost - discount, 2)


def _history_entry(status: str, notes: Optional[str], actor: Optional[str], timestamp: datetime) -> dict:
    return {"status": status, "timestamp": timestamp, "notes": notes, "updated_by": actor}


def _finite(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        v = float(value)
    except (TypeError, ValueError):
        return None
    return v if math.isfinite(v) else None


# ---------------
# Order numbers
# ---------------

def _last_order_sequence(db) -> int:
    last = db["order"].find_one({}, sort=[("order_number", DESCENDING)])
    if not last:
        return 0
    try:
        return int(str(last["order_number"]).replace(ORDER_NUMBER_PREFIX, ""))
    except ValueError:
        logger.warning("Unparseable order number %r, starting sequence at 0", last["order_number"])
        return 0


def next_order_number(db) -> str:
    """Allocate the next ``ORD-000123`` number from an atomic counter.

    The counter is seeded once from the highest existing order number so
    numbering continues across data created before the counter existed.
    """
    counters = db["counter"]
    if counters.find_one({"_id": ORDER_NUMBER_COUNTER}) is None:
        counters.update_one(
            {"_id": ORDER_NUMBER_COUNTER},
            {"$setOnInsert": {"seq": _last_order_sequence(db)}},
            upsert=True,
        )
    counter = counters.find_one_and_update(
        {"_id": ORDER_NUMBER_COUNTER},
        {"$inc": {"seq": 1}},
        upsert=True,
        return_document=ReturnDocument.AFTER,
    )
    return f"{ORDER_NUMBER_PREFIX}{counter['seq']:06d}"


# ---------------
# Stock
# ---------------

def _reserve_lines(db, lines: list) -> None:
    """Take stock for every line, or for none of them."""
    reserved = []
    for line in lines:
        if reserve_stock(db, line["product_id"], line["quantity"]) is None:
            _release_lines(db, reserved)
            product = find_product(db, line["product_id"])
            available = product.get("stock", 0) if product else 0
            raise InsufficientStockError(line["product_name"], available, line["quantity"])
        reserved.append(line)


def _release_lines(db, lines: list) -> None:
    for line in lines:
        release_stock(db, line["product_id"], line["quantity"])


# ---------------
# Reads
# ---------------

def _load_order(db, order_id: Any) -> dict:
    order = db["order"].find_one({"_id": to_object_id(order_id, "order id")})
    if not order:
        raise NotFoundError("Order", str(order_id))
    return order


def populate_order(db, order: dict) -> dict:
    """Serialize an order with each line's product reference resolved."""
    ids = [to_object_id(line["product_id"]) for line in order.get("items", [])]
    products = {str(p["_id"]): p for p in db["product"].find({"_id": {"$in": ids}})}
    out = serialize_doc(order)
    for line in out.get("items", []):
        product = products.get(str(line["product_id"]))
        line["product"] = None
        if product:
            line["product"] = {
                "id": str(product["_id"]),
                "name": product.get("name"),
                "price": product.get("price"),
                "category": product.get("category"),
                "images": product.get("images", []),
            }
    return out


def get_order(db, order_id: Any, user: CurrentUser) -> dict:
    order = _load_order(db, order_id)
    if not user.can_access(order["user_id"]):
        raise AuthorizationError()
    return populate_order(db, order)


def get_order_by_number(db, order_number: str) -> dict:
    order = db["order"].find_one({"order_number": order_number})
    if not order:
        raise NotFoundError("Order", order_number)
    return populate_order(db, order)


def list_user_orders(
    db,
    user_id: str,
    user: CurrentUser,
    status: Optional[str] = None,
    sort_by: str = "-created_at",
    limit: int = 10,
    page: int = 1,
) -> dict:
    if not user.can_access(user_id):
        raise AuthorizationError()
    query: dict[str, Any] = {"user_id": user_id}
    if status:
        query["status"] = status
    total = db["order"].count_documents(query)
    docs, pagination = paginate(db["order"].find(query).sort(parse_sort(sort_by)), total, page, limit)
    return {"orders": [populate_order(db, d) for d in docs], "pagination": pagination}


def list_orders(
    db,
    status: Optional[str] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    sort_by: str = "-created_at",
    limit: int = 50,
    page: int = 1,
) -> dict:
    query: dict[str, Any] = {}
    if status:
        query["status"] = status
    if start_date or end_date:
        query["created_at"] = {}
        if start_date:
            query["created_at"]["$gte"] = start_date
        if end_date:
            query["created_at"]["$lte"] = end_date
    total = db["order"].count_documents(query)
    docs, pagination = paginate(db["order"].find(query).sort(parse_sort(sort_by)), total, page, limit)
    return {"orders": [serialize_doc(d) for d in docs], "pagination": pagination}


# ---------------
# Mutations
# ---------------

def create_order(
    db,
    user: CurrentUser,
    items: list,
    delivery_method: str,
    customer_name: str,
    customer_email: str,
    customer_phone: str,
    shipping_address: Optional[dict] = None,
    notes: str = "",
    request_type: str = "invoice",
    payment_method: str = "bank_transfer",
    estimated_delivery: Optional[datetime] = None,
) -> dict:
    if not items:
        raise ValidationError("Order must contain at least one item")

    normalized = []
    for item in items:
        product_id = item.get("product_id") or item.get("id")
        quantity = item.get("quantity")
        if not product_id or isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
            raise ValidationError("Invalid items payload")
        normalized.append((product_id, quantity))

    is_quote = request_type == "quote"

    lines = []
    for product_id, quantity in normalized:
        product = find_product(db, product_id)
        if not product:
            raise NotFoundError("Product", str(product_id))
        # Quotes may ask for more than is on hand.
        if not is_quote and product.get("stock", 0) < quantity:
            raise InsufficientStockError(product["name"], product.get("stock", 0), quantity)
        lines.append({
            "product_id": str(product["_id"]),
            "quantity": quantity,
            "product_name": product["name"],
            "unit_price": float(product.get("price") or 0),
            "category": product.get("category"),
        })

    if not is_quote:
        _reserve_lines(db, lines)

    subtotal = compute_subtotal(lines)
    tax = 0.0
    shipping_cost = 0.0
    discount = 0.0
    now = utcnow()

    try:
        order = Order(
            order_number=next_order_number(db),
            user_id=user.id,
            items=lines,
            subtotal=subtotal,
            discount=discount,
            tax=tax,
            shipping_cost=shipping_cost,
            total=compute_total(subtotal, tax, shipping_cost, discount),
            status="pending",
            status_history=[
                _history_entry("pending", "Quote requested" if is_quote else "Invoice requested", user.email, now)
            ],
            delivery_method=delivery_method,
            estimated_delivery=estimated_delivery,
            shipping_address=shipping_address,
            customer_name=customer_name,
            customer_email=customer_email,
            customer_phone=customer_phone,
            payment_method=payment_method,
            payment_status="pending",
            request_type="quote" if is_quote else "invoice",
            stock_reserved=not is_quote,
            notes=notes or "",
        )
        order_id = create_document(db, "order", order)
    except Exception:
        if not is_quote:
            _release_lines(db, lines)
        raise

    logger.info("Created %s order %s for user %s", order.request_type, order.order_number, user.id)
    return populate_order(db, _load_order(db, order_id))


def update_order_status(
    db,
    order_id: Any,
    status: str,
    notes: Optional[str] = None,
    tracking_number: Optional[str] = None,
    estimated_delivery: Optional[datetime] = None,
    actor: Optional[str] = None,
) -> dict:
    if status not in ORDER_STATUSES:
        raise ValidationError(f"Invalid status: {status}")
    order = _load_order(db, order_id)
    old_status = order["status"]

    if status in ("cancelled", "refunded"):
        action = "cancel" if status == "cancelled" else "refund"
        raise InvalidStateError(f"Use the {action} endpoint to mark an order {status}")
    if status != old_status and status not in ALLOWED_TRANSITIONS.get(old_status, set()):
        raise InvalidStateError(f"Cannot change status from {old_status} to {status}")

    now = utcnow()
    updates: dict[str, Any] = {"status": status, "updated_at": now}
    if tracking_number:
        updates["tracking_number"] = tracking_number
    if estimated_delivery:
        updates["estimated_delivery"] = estimated_delivery
    if status == "delivered" and old_status != "delivered":
        updates["actual_delivery"] = now

    update: dict[str, Any] = {"$set": updates}
    if status != old_status or notes:
        entry = _history_entry(status, notes or f"Status changed from {old_status} to {status}", actor, now)
        update["$push"] = {"status_history": entry}

    res = db["order"].find_one_and_update(
        {"_id": order["_id"], "status": old_status},
        update,
        return_document=ReturnDocument.AFTER,
    )
    if res is None:
        raise InvalidStateError("Order status changed concurrently, reload and retry")
    logger.info("Order %s: %s -> %s", order["order_number"], old_status, status)
    return populate_order(db, res)


def update_payment_status(db, order_id: Any, payment_status: str) -> dict:
    if payment_status not in PAYMENT_STATUSES:
        raise ValidationError(f"Invalid payment status: {payment_status}")
    res = db["order"].find_one_and_update(
        {"_id": to_object_id(order_id, "order id")},
        {"$set": {"payment_status": payment_status, "updated_at": utcnow()}},
        return_document=ReturnDocument.AFTER,
    )
    if not res:
        raise NotFoundError("Order", str(order_id))
    return populate_order(db, res)


def update_order_financials(
    db,
    order_id: Any,
    items: Optional[list] = None,
    shipping_cost: Any = None,
    tax: Any = None,
    discount: Any = None,
    admin_notes: Optional[str] = None,
) -> dict:
    """Admin edit of line prices/quantities and charges; totals are recomputed.

    Incoming lines only update existing lines with the same product id, and
    only when the quantity is a whole number >= 1 and the price is finite and
    >= 0. Lines can't be added or removed here.
    """
    order = _load_order(db, order_id)
    if items is not None and not isinstance(items, list):
        raise ValidationError("items must be an array")

    lines = order["items"]
    if items:
        incoming = {}
        for i in items:
            if isinstance(i, dict) and (i.get("product_id") or i.get("id")):
                incoming[str(i.get("product_id") or i.get("id"))] = i
        for line in lines:
            change = incoming.get(str(line["product_id"]))
            if change is None:
                continue
            qty = _finite(change.get("quantity"))
            price = _finite(change.get("unit_price"))
            if qty is None or qty < 1 or qty != int(qty):
                continue
            if price is None or price < 0:
                continue
            line["quantity"] = int(qty)
            line["unit_price"] = price

    charges = {"shipping_cost": shipping_cost, "tax": tax, "discount": discount}
    updates: dict[str, Any] = {}
    for field, raw in charges.items():
        if raw is None:
            continue
        v = _finite(raw)
        if v is None or v < 0:
            raise ValidationError(f"{field} must be a finite number >= 0")
        updates[field] = v
    if isinstance(admin_notes, str):
        updates["admin_notes"] = admin_notes

    subtotal = compute_subtotal(lines)
    total = compute_total(
        subtotal,
        updates.get("tax", order.get("tax", 0)),
        updates.get("shipping_cost", order.get("shipping_cost", 0)),
        updates.get("discount", order.get("discount", 0)),
    )
    updates.update({"items": lines, "subtotal": subtotal, "total": total, "updated_at": utcnow()})

    res = db["order"].find_one_and_update(
        {"_id": order["_id"]},
        {"$set": updates},
        return_document=ReturnDocument.AFTER,
    )
    logger.info("Order %s financials updated, total %.2f", order["order_number"], total)
    return populate_order(db, res)


def apply_discount(db, order: dict, code: str, discount: float) -> dict:
    """Record a promotion discount on an order that doesn't have one yet."""
    total = compute_total(order["subtotal"], order.get("tax", 0), order.get("shipping_cost", 0), discount)
    res = db["order"].find_one_and_update(
        {"_id": order["_id"], "discount_code": None},
        {"$set": {"discount": discount, "discount_code": code, "total": total, "updated_at": utcnow()}},
        return_document=ReturnDocument.AFTER,
    )
    if res is None:
        raise InvalidStateError("Order already has a promotion applied")
    return res


def _restore_stock(db, order: dict) -> None:
    if not order.get("stock_reserved"):
        return
    _release_lines(db, order["items"])
    logger.info("Restored stock for order %s", order["order_number"])


def cancel_order(db, order_id: Any, user: CurrentUser, reason: Optional[str] = None) -> dict:
    order = _load_order(db, order_id)
    if not user.can_access(order["user_id"]):
        raise AuthorizationError()
    if order["status"] in NOT_CANCELLABLE:
        raise InvalidStateError(f"Cannot cancel order with status: {order['status']}")

    now = utcnow()
    # Claim the transition first so stock is restored at most once.
    before = db["order"].find_one_and_update(
        {"_id": order["_id"], "status": {"$nin": list(NOT_CANCELLABLE)}},
        {
            "$set": {"status": "cancelled", "stock_reserved": False, "updated_at": now},
            "$push": {"status_history": _history_entry("cancelled", reason or "Order cancelled", user.email, now)},
        },
        return_document=ReturnDocument.BEFORE,
    )
    if before is None:
        raise InvalidStateError("Order status changed concurrently, reload and retry")
    _restore_stock(db, before)
    return populate_order(db, _load_order(db, order_id))


def refund_order(db, order_id: Any, reason: Optional[str] = None, actor: Optional[str] = None) -> dict:
    order = _load_order(db, order_id)
    if order["status"] == "refunded":
        raise InvalidStateError("Order has already been refunded")

    now = utcnow()
    before = db["order"].find_one_and_update(
        {"_id": order["_id"], "status": {"$ne": "refunded"}},
        {
            "$set": {
                "status": "refunded",
                "payment_status": "refunded",
                "stock_reserved": False,
                "updated_at": now,
            },
            "$push": {"status_history": _history_entry("refunded", reason or "Order refunded", actor, now)},
        },
        return_document=ReturnDocument.BEFORE,
    )
    if before is None:
        raise InvalidStateError("Order has already been refunded")
    _restore_stock(db, before)
    return populate_order(db, _load_order(db, order_id))


def get_order_stats(db) -> dict:
    rows = list(db["order"].aggregate([
        {"$group": {"_id": "$status", "count": {"$sum": 1}, "total_revenue": {"$sum": "$total"}}},
        {"$sort": {"_id": 1}},
    ]))
    by_status = [
        {"status": row["_id"], "count": row["count"], "total_revenue": round(row["total_revenue"], 2)}
        for row in rows
    ]
    return {
        "total_orders": db["order"].count_documents({}),
        "total_revenue": round(sum(row["total_revenue"] for row in rows), 2),
        "by_status": by_status,
        "status_breakdown": {row["status"]: row["count"] for row in by_status},
        "payment_pending": db["order"].count_documents({"payment_status": "pending"}),
    }
