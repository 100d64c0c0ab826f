"""
Daily sales rollups.

One ``analytics`` document per calendar day, derived entirely from that day's
orders. Regenerating a day replaces the document, so rebuilding is always
safe.
"""
import logging
from datetime import date, datetime, time
from typing import Optional, Union

from pymongo import ASCENDING, DESCENDING, ReturnDocument

from database import get_documents, serialize_doc, to_object_id, utcnow
from schemas import DELIVERY_METHODS, ORDER_STATUSES

logger = logging.getLogger(__name__)

Day = Union[date, datetime]


def day_bounds(day: Day) -> tuple[datetime, datetime]:
    """Start (00:00:00.000) and end (23:59:59.999) of the day containing ``day``."""
    if isinstance(day, datetime):
        day = day.date()
    return datetime.combine(day, time.min), datetime.combine(day, time(23, 59, 59, 999000))


def _date_range_query(start_date: Optional[Day], end_date: Optional[Day]) -> dict:
    if not start_date and not end_date:
        return {}
    bounds = {}
    if start_date:
        bounds["$gte"] = day_bounds(start_date)[0]
    if end_date:
        bounds["$lte"] = day_bounds(end_date)[1]
    return {"date": bounds}


def _product_rollup(db, orders: list) -> list:
    products: dict[str, dict] = {}
    for order in orders:
        for line in order.get("items", []):
            pid = str(line["product_id"])
            entry = products.setdefault(pid, {
                "product_id": pid,
                "name": line.get("product_name"),
                "category": line.get("category"),
                "units_sold": 0,
                "revenue": 0.0,
            })
            entry["units_sold"] += line["quantity"]
            # Priced at what the customer was charged, not today's catalog price.
            entry["revenue"] += line["quantity"] * line.get("unit_price", 0)

    # Older lines may lack name/category snapshots; take them from the catalog.
    incomplete = [to_object_id(pid) for pid, p in products.items() if not p["name"] or not p["category"]]
    if incomplete:
        for product in db["product"].find({"_id": {"$in": incomplete}}):
            entry = products[str(product["_id"])]
            entry["name"] = entry["name"] or product.get("name")
            entry["category"] = entry["category"] or product.get("category")

    ranked = sorted(products.values(), key=lambda p: p["revenue"], reverse=True)
    for rank, entry in enumerate(ranked, start=1):
        entry["revenue"] = round(entry["revenue"], 2)
        entry["rank"] = rank
    return ranked


def _category_rollup(ranked_products: list) -> list:
    categories: dict[str, dict] = {}
    for product in ranked_products:
        category = product.get("category")
        if not category:
            continue
        entry = categories.setdefault(category, {"category": category, "units_sold": 0, "revenue": 0.0})
        entry["units_sold"] += product["units_sold"]
        entry["revenue"] = round(entry["revenue"] + product["revenue"], 2)
    return list(categories.values())


def _payment_rollup(orders: list) -> list:
    methods: dict[str, dict] = {}
    for order in orders:
        method = order.get("payment_method")
        entry = methods.setdefault(method, {"method": method, "count": 0, "total_amount": 0.0})
        entry["count"] += 1
        entry["total_amount"] = round(entry["total_amount"] + order["total"], 2)
    return list(methods.values())


def _delivery_rollup(orders: list) -> dict:
    delivery = {m: {"count": 0, "revenue": 0.0} for m in DELIVERY_METHODS}
    for order in orders:
        entry = delivery.get(order.get("delivery_method"))
        if entry is not None:
            entry["count"] += 1
            entry["revenue"] = round(entry["revenue"] + order["total"], 2)
    return delivery


def generate_daily_analytics(db, day: Optional[Day] = None) -> dict:
    """Rebuild and upsert the rollup for one day. Returns the stored document."""
    start, end = day_bounds(day or utcnow())
    window = {"created_at": {"$gte": start, "$lte": end}}

    orders = get_documents(db, "order", {**window, "payment_status": "completed"})
    total_orders = len(orders)
    total_revenue = round(sum(o["total"] for o in orders), 2)
    unique_customers = len({str(o["user_id"]) for o in orders})

    product_metrics = _product_rollup(db, orders)

    # Status counts cover every order placed that day, paid or not.
    status_breakdown = {s: 0 for s in ORDER_STATUSES}
    for order in db["order"].find(window, {"status": 1}):
        if order.get("status") in status_breakdown:
            status_breakdown[order["status"]] += 1

    now = utcnow()
    doc = {
        "date": start,
        "metrics": {
            "total_orders": total_orders,
            "total_revenue": total_revenue,
            "average_order_value": round(total_revenue / total_orders, 2) if total_orders else 0,
            "total_discounts": round(sum(o.get("discount", 0) for o in orders), 2),
            "unique_customers": unique_customers,
            # new_customers mirrors unique_customers; repeats and conversion are not tracked.
            "new_customers": unique_customers,
            "repeat_customers": 0,
            "conversion_rate": 0,
        },
        "product_metrics": product_metrics,
        "category_metrics": _category_rollup(product_metrics),
        "payment_metrics": _payment_rollup(orders),
        "delivery_metrics": _delivery_rollup(orders),
        "orders_status_breakdown": status_breakdown,
        "updated_at": now,
    }
    analytics = db["analytics"].find_one_and_update(
        {"date": start},
        {"$set": doc, "$setOnInsert": {"created_at": now}},
        upsert=True,
        return_document=ReturnDocument.AFTER,
    )
    logger.info("Analytics for %s: %d orders, revenue %.2f", start.date(), total_orders, total_revenue)
    return serialize_doc(analytics)


def get_daily_analytics(db, day: Optional[Day] = None) -> dict:
    start, _ = day_bounds(day or utcnow())
    analytics = db["analytics"].find_one({"date": start})
    if not analytics:
        return generate_daily_analytics(db, start)
    return serialize_doc(analytics)


def list_analytics(db, start_date: Optional[Day] = None, end_date: Optional[Day] = None) -> dict:
    records = list(db["analytics"].find(_date_range_query(start_date, end_date)).sort("date", DESCENDING))
    totals = {"total_orders": 0, "total_revenue": 0.0, "total_discounts": 0.0}
    for record in records:
        metrics = record.get("metrics", {})
        totals["total_orders"] += metrics.get("total_orders", 0)
        totals["total_revenue"] += metrics.get("total_revenue", 0)
        totals["total_discounts"] += metrics.get("total_discounts", 0)
    totals["total_revenue"] = round(totals["total_revenue"], 2)
    totals["total_discounts"] = round(totals["total_discounts"], 2)
    return {"analytics": serialize_doc(records), "totals": totals}


def top_products(db, start_date: Optional[Day] = None, end_date: Optional[Day] = None, limit: int = 10) -> list:
    rows = db["analytics"].aggregate([
        {"$match": _date_range_query(start_date, end_date)},
        {"$unwind": "$product_metrics"},
        {"$group": {
            "_id": "$product_metrics.product_id",
            "name": {"$first": "$product_metrics.name"},
            "units_sold": {"$sum": "$product_metrics.units_sold"},
            "revenue": {"$sum": "$product_metrics.revenue"},
        }},
        {"$sort": {"revenue": -1}},
        {"$limit": limit},
    ])
    return [
        {"product_id": r["_id"], "name": r["name"], "units_sold": r["units_sold"], "revenue": round(r["revenue"], 2)}
        for r in rows
    ]


def category_analytics(db, start_date: Optional[Day] = None, end_date: Optional[Day] = None) -> list:
    rows = db["analytics"].aggregate([
        {"$match": _date_range_query(start_date, end_date)},
        {"$unwind": "$category_metrics"},
        {"$group": {
            "_id": "$category_metrics.category",
            "units_sold": {"$sum": "$category_metrics.units_sold"},
            "revenue": {"$sum": "$category_metrics.revenue"},
        }},
        {"$sort": {"revenue": -1}},
    ])
    return [
        {"category": r["_id"], "units_sold": r["units_sold"], "revenue": round(r["revenue"], 2)}
        for r in rows
    ]


def payment_method_analytics(db, start_date: Optional[Day] = None, end_date: Optional[Day] = None) -> list:
    rows = db["analytics"].aggregate([
        {"$match": _date_range_query(start_date, end_date)},
        {"$unwind": "$payment_metrics"},
        {"$group": {
            "_id": "$payment_metrics.method",
            "count": {"$sum": "$payment_metrics.count"},
            "total_amount": {"$sum": "$payment_metrics.total_amount"},
        }},
        {"$sort": {"_id": 1}},
    ])
    return [
        {"method": r["_id"], "count": r["count"], "total_amount": round(r["total_amount"], 2)}
        for r in rows
    ]


def revenue_chart(db, start_date: Optional[Day] = None, end_date: Optional[Day] = None) -> list:
    records = db["analytics"].find(
        _date_range_query(start_date, end_date),
        {"date": 1, "metrics.total_revenue": 1, "metrics.total_orders": 1},
    ).sort("date", ASCENDING)
    return [
        {
            "date": r["date"],
            "total_revenue": r["metrics"]["total_revenue"],
            "total_orders": r["metrics"]["total_orders"],
        }
        for r in records
    ]
