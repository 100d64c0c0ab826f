"""Catalog search: filtered listing, filter options, similar products, suggestions."""
import math
import re
from typing import Any, Optional

from pymongo import ASCENDING, DESCENDING

from catalog import get_product
from database import paginate, serialize_doc

SEARCH_SORTS = {
    "price-asc": [("price", ASCENDING)],
    "price-desc": [("price", DESCENDING)],
    "name": [("name", ASCENDING)],
    "newest": [("created_at", DESCENDING)],
    "bestselling": [("featured", DESCENDING)],
}


def _one_or_many(values: Optional[list]) -> Any:
    if len(values) == 1:
        return values[0]
    return {"$in": values}


def _ratings(db, product_ids: list) -> dict:
    rows = db["review"].aggregate([
        {"$match": {"product_id": {"$in": product_ids}, "status": "approved"}},
        {"$group": {"_id": "$product_id", "average_rating": {"$avg": "$rating"}, "count": {"$sum": 1}}},
    ])
    return {r["_id"]: r for r in rows}


def advanced_search(
    db,
    search: Optional[str] = None,
    category: Optional[list] = None,
    wood_type: Optional[list] = None,
    color: Optional[list] = None,
    price_min: Optional[float] = None,
    price_max: Optional[float] = None,
    min_rating: Optional[float] = None,
    tags: Optional[list] = None,
    featured: bool = False,
    in_stock: bool = False,
    sort_by: str = "newest",
    limit: int = 20,
    page: int = 1,
) -> dict:
    query: dict[str, Any] = {"is_available": True}
    if search:
        pattern = re.escape(search)
        query["$or"] = [
            {"name": {"$regex": pattern, "$options": "i"}},
            {"description": {"$regex": pattern, "$options": "i"}},
            {"tags": {"$regex": pattern, "$options": "i"}},
            {"product_type": {"$regex": pattern, "$options": "i"}},
        ]
    if category:
        query["category"] = _one_or_many(category)
    if wood_type:
        query["wood_type"] = _one_or_many(wood_type)
    if color:
        query["color"] = _one_or_many(color)
    if price_min is not None or price_max is not None:
        query["price"] = {}
        if price_min is not None:
            query["price"]["$gte"] = price_min
        if price_max is not None:
            query["price"]["$lte"] = price_max
    if tags:
        query["tags"] = {"$in": tags}
    if featured:
        query["featured"] = True
    if in_stock:
        query["stock"] = {"$gt": 0}

    total = db["product"].count_documents(query)
    cursor = db["product"].find(query).sort(SEARCH_SORTS.get(sort_by, SEARCH_SORTS["newest"]))
    products, pagination = paginate(cursor, total, page, limit)

    ratings = _ratings(db, [str(p["_id"]) for p in products])
    results = []
    for product in products:
        rating = ratings.get(str(product["_id"]), {})
        average = round(rating.get("average_rating", 0), 1)
        if min_rating is not None and average < min_rating:
            continue
        out = serialize_doc(product)
        out["review_count"] = rating.get("count", 0)
        out["average_rating"] = average
        results.append(out)

    pagination["limit"] = limit
    return {
        "products": results,
        "pagination": pagination,
        "applied_filters": {
            "search": search,
            "category": category,
            "wood_type": wood_type,
            "color": color,
            "price_range": {"min": price_min, "max": price_max} if price_min is not None or price_max is not None else None,
            "min_rating": min_rating,
            "tags": tags,
            "featured": featured,
            "in_stock": in_stock,
            "sort_by": sort_by,
        },
    }


def filter_options(db) -> dict:
    available = {"is_available": True}
    prices = list(db["product"].aggregate([
        {"$match": available},
        {"$group": {"_id": None, "min_price": {"$min": "$price"}, "max_price": {"$max": "$price"}, "avg_price": {"$avg": "$price"}}},
    ]))
    price = prices[0] if prices else {"min_price": 0, "max_price": 0, "avg_price": 0}
    distribution = db["review"].aggregate([
        {"$match": {"status": "approved"}},
        {"$group": {"_id": "$rating", "count": {"$sum": 1}}},
        {"$sort": {"_id": -1}},
    ])
    return {
        "categories": sorted(db["product"].distinct("category", available)),
        "wood_types": sorted(db["product"].distinct("wood_type", available)),
        "colors": sorted(db["product"].distinct("color", available)),
        "tags": sorted(db["product"].distinct("tags", available)),
        "price_range": {
            "min": math.floor(price["min_price"] or 0),
            "max": math.ceil(price["max_price"] or 0),
            "average": round(price["avg_price"] or 0),
        },
        "rating_options": [1, 2, 3, 4, 5],
        "rating_distribution": [{"rating": d["_id"], "count": d["count"]} for d in distribution],
    }


def similar_products(db, product_id: str, limit: int = 5) -> list:
    """Same category and wood type first, topped up from the same category."""
    product = get_product(db, product_id)
    base = {"_id": {"$ne": product["_id"]}, "category": product["category"], "is_available": True}
    similar = list(db["product"].find({**base, "wood_type": product["wood_type"]}).limit(limit))
    if len(similar) < limit:
        seen = [p["_id"] for p in similar] + [product["_id"]]
        extra = db["product"].find({**base, "_id": {"$nin": seen}}).limit(limit - len(similar))
        similar.extend(extra)
    return serialize_doc(similar)


def suggestions(db, q: Optional[str], limit: int = 5) -> dict:
    if not q or len(q) < 2:
        return {"suggestions": [], "count": 0}
    pattern = re.escape(q)
    docs = db["product"].find(
        {
            "$or": [
                {"name": {"$regex": pattern, "$options": "i"}},
                {"description": {"$regex": pattern, "$options": "i"}},
                {"tags": {"$regex": pattern, "$options": "i"}},
            ],
            "is_available": True,
        },
        {"name": 1, "category": 1},
    ).limit(limit)
    names = list(dict.fromkeys(d["name"] for d in docs))
    return {"suggestions": names, "count": len(names)}
