"""Per-user wishlists. One document per user, created on first access."""
from typing import Optional

from pymongo import ReturnDocument

from auth import CurrentUser
from catalog import find_product
from database import serialize_doc, to_object_id, utcnow
from errors import AuthorizationError, NotFoundError, ValidationError
from schemas import Wishlist, WishlistItem

WISHLIST_PRODUCT_FIELDS = ("name", "price", "images", "category", "description", "stock")


def _check_owner(user: CurrentUser, user_id: str) -> None:
    if not user.can_access(user_id):
        raise AuthorizationError()


def _populate(db, wishlist: dict) -> dict:
    ids = [to_object_id(item["product_id"]) for item in wishlist.get("items", [])]
    products = {str(p["_id"]): p for p in db["product"].find({"_id": {"$in": ids}})}
    out = serialize_doc(wishlist)
    for item in out.get("items", []):
        product = products.get(item["product_id"])
        item["product"] = None
        if product:
            item["product"] = {"id": str(product["_id"]), **{f: product.get(f) for f in WISHLIST_PRODUCT_FIELDS}}
    out["item_count"] = len(out.get("items", []))
    return out


def _get_or_create(db, user_id: str) -> dict:
    now = utcnow()
    fresh = Wishlist(user_id=user_id).model_dump(exclude={"user_id"})
    return db["wishlist"].find_one_and_update(
        {"user_id": user_id},
        {"$setOnInsert": {**fresh, "created_at": now, "updated_at": now}},
        upsert=True,
        return_document=ReturnDocument.AFTER,
    )


def _load(db, user_id: str) -> dict:
    wishlist = db["wishlist"].find_one({"user_id": user_id})
    if not wishlist:
        raise NotFoundError("Wishlist")
    return wishlist


def get_wishlist(db, user_id: str, user: CurrentUser) -> dict:
    _check_owner(user, user_id)
    return _populate(db, _get_or_create(db, user_id))


def add_item(db, user_id: str, user: CurrentUser, product_id: str, notes: Optional[str] = None) -> dict:
    _check_owner(user, user_id)
    if not find_product(db, product_id):
        raise NotFoundError("Product", product_id)
    _get_or_create(db, user_id)
    item = WishlistItem(product_id=product_id, added_at=utcnow(), notes=notes).model_dump()
    res = db["wishlist"].find_one_and_update(
        {"user_id": user_id, "items.product_id": {"$ne": product_id}},
        {"$push": {"items": item}, "$set": {"updated_at": utcnow()}},
        return_document=ReturnDocument.AFTER,
    )
    if res is None:
        raise ValidationError("Product already in wishlist")
    return _populate(db, res)


def remove_item(db, user_id: str, user: CurrentUser, product_id: str) -> dict:
    _check_owner(user, user_id)
    _load(db, user_id)
    res = db["wishlist"].find_one_and_update(
        {"user_id": user_id},
        {"$pull": {"items": {"product_id": product_id}}, "$set": {"updated_at": utcnow()}},
        return_document=ReturnDocument.AFTER,
    )
    return _populate(db, res)


def update_item(db, user_id: str, user: CurrentUser, product_id: str, notes: Optional[str]) -> dict:
    _check_owner(user, user_id)
    wishlist = _load(db, user_id)
    items = wishlist.get("items", [])
    for item in items:
        if item["product_id"] == product_id:
            item["notes"] = notes
            break
    else:
        raise NotFoundError("Item in wishlist")
    res = db["wishlist"].find_one_and_update(
        {"_id": wishlist["_id"]},
        {"$set": {"items": items, "updated_at": utcnow()}},
        return_document=ReturnDocument.AFTER,
    )
    return _populate(db, res)


def clear_wishlist(db, user_id: str, user: CurrentUser) -> dict:
    _check_owner(user, user_id)
    _get_or_create(db, user_id)
    res = db["wishlist"].find_one_and_update(
        {"user_id": user_id},
        {"$set": {"items": [], "updated_at": utcnow()}},
        return_document=ReturnDocument.AFTER,
    )
    return _populate(db, res)


def share_wishlist(db, user_id: str, user: CurrentUser, is_public: bool) -> dict:
    _check_owner(user, user_id)
    _get_or_create(db, user_id)
    res = db["wishlist"].find_one_and_update(
        {"user_id": user_id},
        {"$set": {"is_public": is_public, "updated_at": utcnow()}},
        return_document=ReturnDocument.AFTER,
    )
    return _populate(db, res)


def get_public_wishlist(db, user_id: str) -> dict:
    wishlist = db["wishlist"].find_one({"user_id": user_id, "is_public": True})
    if not wishlist:
        raise NotFoundError("Public wishlist")
    populated = _populate(db, wishlist)
    return {"wishlist": {"items": populated["items"], "item_count": populated["item_count"]}}
