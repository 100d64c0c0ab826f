import logging
import os
from datetime import date, datetime
from typing import List, Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, EmailStr, Field, field_validator
from starlette.exceptions import HTTPException as StarletteHTTPException

import analytics
import catalog
import database
import orders
import promotions
import reviews
import search
import site_settings
import wishlist
from auth import CurrentUser, get_current_user, require_admin
from database import ensure_indexes, serialize_doc
from errors import SawmillError
from schemas import (
    DeliveryMethod,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
    Product as ProductSchema,
    Promotion as PromotionSchema,
    RequestType,
    ShippingAddress,
    as_naive_utc,
)

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("sawmill")

CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]

app = FastAPI(title="3D's Sawmill API", version="1.0.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def get_db():
    if database.db is None:
        raise HTTPException(status_code=500, detail="Database not configured")
    return database.db


@app.on_event("startup")
def on_startup():
    if database.db is not None:
        ensure_indexes(database.db)
        logger.info("Indexes ensured on %s", database.db.name)


# -----------------
# Error handling
# -----------------
@app.exception_handler(SawmillError)
async def sawmill_error_handler(request: Request, exc: SawmillError):
    return JSONResponse(status_code=exc.status_code, content={"error": str(exc)})


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=400,
        content={"error": "Invalid request", "details": jsonable_encoder(exc.errors())},
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"error": str(exc)})


# -----------------
# Request bodies
# -----------------
class OrderItemIn(BaseModel):
    product_id: str
    quantity: int = Field(..., ge=1)


class OrderCreate(BaseModel):
    items: List[OrderItemIn] = Field(..., min_length=1)
    delivery_method: DeliveryMethod
    shipping_address: Optional[ShippingAddress] = None
    customer_name: str
    customer_email: EmailStr
    customer_phone: str
    notes: str = ""
    request_type: RequestType = "invoice"
    payment_method: PaymentMethod = "bank_transfer"
    estimated_delivery: Optional[datetime] = None


class StatusUpdate(BaseModel):
    status: OrderStatus
    notes: Optional[str] = None
    tracking_number: Optional[str] = None
    estimated_delivery: Optional[datetime] = None


class PaymentStatusUpdate(BaseModel):
    payment_status: PaymentStatus


class ReasonBody(BaseModel):
    reason: Optional[str] = None


class FinancialLineIn(BaseModel):
    product_id: str
    quantity: Optional[float] = None
    unit_price: Optional[float] = None


class FinancialsUpdate(BaseModel):
    items: Optional[List[FinancialLineIn]] = None
    shipping_cost: Optional[float] = None
    tax: Optional[float] = None
    discount: Optional[float] = None
    admin_notes: Optional[str] = None


class PromotionValidateRequest(BaseModel):
    code: str
    order_total: float = Field(..., ge=0)
    user_id: Optional[str] = None
    product_ids: List[str] = Field(default_factory=list)
    category: Optional[str] = None


class PromotionApplyRequest(BaseModel):
    code: str
    order_id: str
    user_id: Optional[str] = None


class PromotionUpdate(BaseModel):
    description: Optional[str] = None
    active: Optional[bool] = None
    usage_limit: Optional[int] = Field(None, ge=1)
    valid_until: Optional[datetime] = None

    @field_validator("valid_until")
    @classmethod
    def naive_utc_until(cls, value: Optional[datetime]) -> Optional[datetime]:
        return as_naive_utc(value)


class ReviewCreate(BaseModel):
    product_id: str
    rating: int
    title: str = Field(..., max_length=100)
    comment: str = Field(..., max_length=1000)
    order_id: Optional[str] = None
    images: List[str] = Field(default_factory=list)


class ReviewUpdate(BaseModel):
    rating: Optional[int] = None
    title: Optional[str] = Field(None, max_length=100)
    comment: Optional[str] = Field(None, max_length=1000)
    images: Optional[List[str]] = None


class HelpfulVote(BaseModel):
    helpful: bool = True


class WishlistItemIn(BaseModel):
    product_id: str
    notes: Optional[str] = None


class WishlistNotes(BaseModel):
    notes: Optional[str] = None


class WishlistShare(BaseModel):
    is_public: bool


@app.get("/")
def root():
    return {"name": "3D's Sawmill API", "status": "ok"}


@app.get("/api/health")
def health():
    return {"message": "Server is running"}


@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": "❌ Not Set",
        "database_name": "❌ Not Set",
        "collections": []
    }
    try:
        if database.db is not None:
            response["database"] = "✅ Connected"
            response["database_url"] = "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set"
            response["database_name"] = database.db.name
            response["collections"] = database.db.list_collection_names()
        else:
            response["database"] = "❌ Not Available"
    except Exception as e:
        response["database"] = f"⚠️ {str(e)[:80]}"
    return response


# -----------------
# Products Endpoints
# -----------------
@app.get("/api/products")
def list_products(
    category: Optional[str] = None,
    q: Optional[str] = Query(default=None, alias="search", description="Search query"),
    featured: Optional[bool] = None,
    sort: Optional[str] = None,
    db=Depends(get_db),
):
    return serialize_doc(catalog.list_products(db, category, q, featured, sort))


@app.get("/api/products/admin/all")
def list_all_products(_: CurrentUser = Depends(require_admin), db=Depends(get_db)):
    return serialize_doc(catalog.list_products(db, include_unavailable=True))


@app.get("/api/products/{product_id}")
def get_product(product_id: str, db=Depends(get_db)):
    return serialize_doc(catalog.get_product(db, product_id))


@app.post("/api/products", status_code=201)
def create_product(payload: ProductSchema, _: CurrentUser = Depends(require_admin), db=Depends(get_db)):
    return serialize_doc(catalog.create_product(db, payload))


@app.put("/api/products/{product_id}")
def update_product(
    product_id: str, payload: ProductSchema, _: CurrentUser = Depends(require_admin), db=Depends(get_db)
):
    return serialize_doc(catalog.update_product(db, product_id, payload))


@app.delete("/api/products/{product_id}")
def delete_product(product_id: str, _: CurrentUser = Depends(require_admin), db=Depends(get_db)):
    catalog.delete_product(db, product_id)
    return {"deleted": True}


# --------------
# Orders Endpoints
# --------------
@app.post("/api/orders", status_code=201)
def create_order(payload: OrderCreate, user: CurrentUser = Depends(get_current_user), db=Depends(get_db)):
    return orders.create_order(
        db,
        user,
        items=[item.model_dump() for item in payload.items],
        delivery_method=payload.delivery_method,
        customer_name=payload.customer_name,
        customer_email=payload.customer_email,
        customer_phone=payload.customer_phone,
        shipping_address=payload.shipping_address.model_dump() if payload.shipping_address else None,
        notes=payload.notes,
        request_type=payload.request_type,
        payment_method=payload.payment_method,
        estimated_delivery=payload.estimated_delivery,
    )


@app.get("/api/orders")
def list_orders(
    status: Optional[str] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    sort_by: str = "-created_at",
    limit: int = Query(50, ge=1, le=200),
    page: int = Query(1, ge=1),
    _: CurrentUser = Depends(require_admin),
    db=Depends(get_db),
):
    return orders.list_orders(db, status, start_date, end_date, sort_by, limit, page)


@app.get("/api/orders/stats/overview")
def order_stats(_: CurrentUser = Depends(require_admin), db=Depends(get_db)):
    return orders.get_order_stats(db)


@app.get("/api/orders/number/{order_number}")
def get_order_by_number(order_number: str, db=Depends(get_db)):
    return orders.get_order_by_number(db, order_number)


@app.get("/api/orders/user/{user_id}")
def list_user_orders(
    user_id: str,
    status: Optional[str] = None,
    sort_by: str = "-created_at",
    limit: int = Query(10, ge=1, le=100),
    page: int = Query(1, ge=1),
    user: CurrentUser = Depends(get_current_user),
    db=Depends(get_db),
):
    return orders.list_user_orders(db, user_id, user, status, sort_by, limit, page)


@app.get("/api/orders/{order_id}")
def get_order(order_id: str, user: CurrentUser = Depends(get_current_user), db=Depends(get_db)):
    return orders.get_order(db, order_id, user)


@app.patch("/api/orders/{order_id}/status")
def update_order_status(
    order_id: str, payload: StatusUpdate, user: CurrentUser = Depends(require_admin), db=Depends(get_db)
):
    return orders.update_order_status(
        db,
        order_id,
        payload.status,
        notes=payload.notes,
        tracking_number=payload.tracking_number,
        estimated_delivery=payload.estimated_delivery,
        actor=user.email,
    )


@app.patch("/api/orders/{order_id}/payment-status")
def update_payment_status(
    order_id: str, payload: PaymentStatusUpdate, _: CurrentUser = Depends(require_admin), db=Depends(get_db)
):
    return orders.update_payment_status(db, order_id, payload.payment_status)


@app.patch("/api/orders/{order_id}/financials")
def update_order_financials(
    order_id: str, payload: FinancialsUpdate, _: CurrentUser = Depends(require_admin), db=Depends(get_db)
):
    items = None
    if payload.items is not None:
        items = [line.model_dump() for line in payload.items]
    return orders.update_order_financials(
        db,
        order_id,
        items=items,
        shipping_cost=payload.shipping_cost,
        tax=payload.tax,
        discount=payload.discount,
        admin_notes=payload.admin_notes,
    )


@app.patch("/api/orders/{order_id}/cancel")
def cancel_order(
    order_id: str,
    payload: Optional[ReasonBody] = None,
    user: CurrentUser = Depends(get_current_user),
    db=Depends(get_db),
):
    return orders.cancel_order(db, order_id, user, payload.reason if payload else None)


@app.patch("/api/orders/{order_id}/refund")
def refund_order(
    order_id: str,
    payload: Optional[ReasonBody] = None,
    user: CurrentUser = Depends(require_admin),
    db=Depends(get_db),
):
    return orders.refund_order(db, order_id, payload.reason if payload else None, actor=user.email)


# -----------------
# Promotions Endpoints
# -----------------
@app.post("/api/promotions/validate")
def validate_promotion(payload: PromotionValidateRequest, db=Depends(get_db)):
    return promotions.validate_promotion(
        db, payload.code, payload.order_total, payload.user_id, payload.product_ids, payload.category
    )


@app.post("/api/promotions/apply")
def apply_promotion(payload: PromotionApplyRequest, user: CurrentUser = Depends(get_current_user), db=Depends(get_db)):
    user_id = payload.user_id if user.is_admin else user.id
    return promotions.apply_promotion(db, payload.code, payload.order_id, user, user_id)


@app.get("/api/promotions")
def list_promotions(
    active: Optional[bool] = True,
    limit: int = Query(20, ge=1, le=100),
    page: int = Query(1, ge=1),
    db=Depends(get_db),
):
    return promotions.list_promotions(db, active, limit, page)


@app.post("/api/promotions", status_code=201)
def create_promotion(payload: PromotionSchema, _: CurrentUser = Depends(require_admin), db=Depends(get_db)):
    return serialize_doc(promotions.create_promotion(db, payload))


@app.get("/api/promotions/stats")
def promotion_stats(_: CurrentUser = Depends(require_admin), db=Depends(get_db)):
    return promotions.get_promotion_stats(db)


@app.get("/api/promotions/{promotion_id}")
def get_promotion(promotion_id: str, _: CurrentUser = Depends(require_admin), db=Depends(get_db)):
    return serialize_doc(promotions.get_promotion(db, promotion_id))


@app.put("/api/promotions/{promotion_id}")
@app.patch("/api/promotions/{promotion_id}")
def update_promotion(
    promotion_id: str, payload: PromotionUpdate, _: CurrentUser = Depends(require_admin), db=Depends(get_db)
):
    return serialize_doc(promotions.update_promotion(db, promotion_id, payload.model_dump(exclude_unset=True)))


@app.delete("/api/promotions/{promotion_id}")
def delete_promotion(promotion_id: str, _: CurrentUser = Depends(require_admin), db=Depends(get_db)):
    promotions.delete_promotion(db, promotion_id)
    return {"message": "Promotion deleted"}


# -----------------
# Specials Endpoints
# -----------------
@app.get("/api/specials")
def list_specials(
    active: Optional[bool] = None,
    limit: int = Query(20, ge=1, le=100),
    page: int = Query(1, ge=1),
    _: CurrentUser = Depends(require_admin),
    db=Depends(get_db),
):
    return promotions.list_promotions(db, active, limit, page)


@app.get("/api/specials/{special_id}")
def get_special(special_id: str, _: CurrentUser = Depends(require_admin), db=Depends(get_db)):
    return serialize_doc(promotions.get_promotion(db, special_id))


@app.post("/api/specials", status_code=201)
def create_special(payload: PromotionSchema, _: CurrentUser = Depends(require_admin), db=Depends(get_db)):
    return serialize_doc(promotions.create_promotion(db, payload))


@app.put("/api/specials/{special_id}")
@app.patch("/api/specials/{special_id}")
def update_special(
    special_id: str, payload: PromotionUpdate, _: CurrentUser = Depends(require_admin), db=Depends(get_db)
):
    return serialize_doc(promotions.update_promotion(db, special_id, payload.model_dump(exclude_unset=True)))


@app.delete("/api/specials/{special_id}")
def delete_special(special_id: str, _: CurrentUser = Depends(require_admin), db=Depends(get_db)):
    promotions.delete_promotion(db, special_id)
    return {"message": "Promotion deleted"}


# -----------------
# Analytics Endpoints
# -----------------
@app.get("/api/analytics")
def list_analytics(
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    _: CurrentUser = Depends(require_admin),
    db=Depends(get_db),
):
    return analytics.list_analytics(db, start_date, end_date)


@app.get("/api/analytics/daily")
def daily_analytics(
    day: Optional[date] = Query(None, alias="date"),
    _: CurrentUser = Depends(require_admin),
    db=Depends(get_db),
):
    return analytics.get_daily_analytics(db, day)


@app.post("/api/analytics/generate")
def generate_analytics(
    day: Optional[date] = Query(None, alias="date"),
    _: CurrentUser = Depends(require_admin),
    db=Depends(get_db),
):
    return analytics.generate_daily_analytics(db, day)


@app.get("/api/analytics/top-products")
def top_products(
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    limit: int = Query(10, ge=1, le=100),
    _: CurrentUser = Depends(require_admin),
    db=Depends(get_db),
):
    return analytics.top_products(db, start_date, end_date, limit)


@app.get("/api/analytics/revenue-chart")
def revenue_chart(
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    _: CurrentUser = Depends(require_admin),
    db=Depends(get_db),
):
    return analytics.revenue_chart(db, start_date, end_date)


@app.get("/api/analytics/categories")
def category_analytics(
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    _: CurrentUser = Depends(require_admin),
    db=Depends(get_db),
):
    return analytics.category_analytics(db, start_date, end_date)


@app.get("/api/analytics/payment-methods")
def payment_method_analytics(
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    _: CurrentUser = Depends(require_admin),
    db=Depends(get_db),
):
    return analytics.payment_method_analytics(db, start_date, end_date)


# -----------------
# Reviews Endpoints
# -----------------
@app.post("/api/reviews", status_code=201)
def create_review(payload: ReviewCreate, user: CurrentUser = Depends(get_current_user), db=Depends(get_db)):
    return reviews.create_review(
        db, user, payload.product_id, payload.rating, payload.title, payload.comment,
        order_id=payload.order_id, images=payload.images,
    )


@app.get("/api/reviews")
def list_reviews(
    status: Optional[str] = None,
    limit: int = Query(20, ge=1, le=100),
    page: int = Query(1, ge=1),
    _: CurrentUser = Depends(require_admin),
    db=Depends(get_db),
):
    return reviews.list_reviews(db, status, limit, page)


@app.get("/api/reviews/admin/pending")
def pending_reviews(
    limit: int = Query(20, ge=1, le=100),
    page: int = Query(1, ge=1),
    _: CurrentUser = Depends(require_admin),
    db=Depends(get_db),
):
    return reviews.list_reviews(db, "pending", limit, page)


@app.get("/api/reviews/product/{product_id}")
def product_reviews(
    product_id: str,
    sort_by: str = "-created_at",
    limit: int = Query(10, ge=1, le=100),
    page: int = Query(1, ge=1),
    db=Depends(get_db),
):
    return reviews.list_product_reviews(db, product_id, sort_by, limit, page)


@app.get("/api/reviews/user/{user_id}")
def user_reviews(
    user_id: str,
    limit: int = Query(20, ge=1, le=100),
    page: int = Query(1, ge=1),
    _: CurrentUser = Depends(get_current_user),
    db=Depends(get_db),
):
    return reviews.list_user_reviews(db, user_id, limit, page)


@app.patch("/api/reviews/{review_id}")
def update_review(
    review_id: str, payload: ReviewUpdate, user: CurrentUser = Depends(get_current_user), db=Depends(get_db)
):
    return reviews.update_review(db, review_id, user, payload.model_dump(exclude_unset=True))


@app.delete("/api/reviews/{review_id}")
def delete_review(review_id: str, user: CurrentUser = Depends(get_current_user), db=Depends(get_db)):
    reviews.delete_review(db, review_id, user)
    return {"message": "Review deleted"}


@app.post("/api/reviews/{review_id}/helpful")
def mark_review_helpful(
    review_id: str, payload: HelpfulVote, _: CurrentUser = Depends(get_current_user), db=Depends(get_db)
):
    return reviews.mark_helpful(db, review_id, payload.helpful)


@app.patch("/api/reviews/{review_id}/approve")
def approve_review(review_id: str, _: CurrentUser = Depends(require_admin), db=Depends(get_db)):
    return reviews.set_review_status(db, review_id, "approved")


@app.patch("/api/reviews/{review_id}/reject")
def reject_review(review_id: str, _: CurrentUser = Depends(require_admin), db=Depends(get_db)):
    return reviews.set_review_status(db, review_id, "rejected")


# -----------------
# Wishlist Endpoints
# -----------------
@app.get("/api/wishlist/public/{user_id}")
def public_wishlist(user_id: str, db=Depends(get_db)):
    return wishlist.get_public_wishlist(db, user_id)


@app.get("/api/wishlist/{user_id}")
def get_wishlist(user_id: str, user: CurrentUser = Depends(get_current_user), db=Depends(get_db)):
    return wishlist.get_wishlist(db, user_id, user)


@app.post("/api/wishlist/{user_id}/items")
def add_wishlist_item(
    user_id: str, payload: WishlistItemIn, user: CurrentUser = Depends(get_current_user), db=Depends(get_db)
):
    return wishlist.add_item(db, user_id, user, payload.product_id, payload.notes)


@app.patch("/api/wishlist/{user_id}/items/{product_id}")
def update_wishlist_item(
    user_id: str,
    product_id: str,
    payload: WishlistNotes,
    user: CurrentUser = Depends(get_current_user),
    db=Depends(get_db),
):
    return wishlist.update_item(db, user_id, user, product_id, payload.notes)


@app.delete("/api/wishlist/{user_id}/items/{product_id}")
def remove_wishlist_item(
    user_id: str, product_id: str, user: CurrentUser = Depends(get_current_user), db=Depends(get_db)
):
    return wishlist.remove_item(db, user_id, user, product_id)


@app.delete("/api/wishlist/{user_id}/clear")
def clear_wishlist(user_id: str, user: CurrentUser = Depends(get_current_user), db=Depends(get_db)):
    return wishlist.clear_wishlist(db, user_id, user)


@app.patch("/api/wishlist/{user_id}/share")
def share_wishlist(
    user_id: str, payload: WishlistShare, user: CurrentUser = Depends(get_current_user), db=Depends(get_db)
):
    return wishlist.share_wishlist(db, user_id, user, payload.is_public)


# -----------------
# Search Endpoints
# -----------------
@app.get("/api/search/advanced")
def advanced_search(
    q: Optional[str] = Query(None, alias="search"),
    category: Optional[List[str]] = Query(None),
    wood_type: Optional[List[str]] = Query(None),
    color: Optional[List[str]] = Query(None),
    price_min: Optional[float] = None,
    price_max: Optional[float] = None,
    min_rating: Optional[float] = None,
    tags: Optional[str] = Query(None, description="Comma separated"),
    featured: bool = False,
    in_stock: bool = False,
    sort_by: str = "newest",
    limit: int = Query(20, ge=1, le=100),
    page: int = Query(1, ge=1),
    db=Depends(get_db),
):
    tag_list = [t.strip() for t in tags.split(",") if t.strip()] if tags else None
    return search.advanced_search(
        db, search=q, category=category, wood_type=wood_type, color=color,
        price_min=price_min, price_max=price_max, min_rating=min_rating, tags=tag_list,
        featured=featured, in_stock=in_stock, sort_by=sort_by, limit=limit, page=page,
    )


@app.get("/api/search/filters")
def search_filters(db=Depends(get_db)):
    return search.filter_options(db)


@app.get("/api/search/similar/{product_id}")
def similar_products(product_id: str, limit: int = Query(5, ge=1, le=50), db=Depends(get_db)):
    return search.similar_products(db, product_id, limit)


@app.get("/api/search/suggestions")
def search_suggestions(q: Optional[str] = None, limit: int = Query(5, ge=1, le=20), db=Depends(get_db)):
    return search.suggestions(db, q, limit)


# -----------------
# Site Settings Endpoints
# -----------------
@app.get("/api/site-settings")
def get_site_settings(db=Depends(get_db)):
    return site_settings.get_site_settings(db)


@app.put("/api/site-settings")
def update_site_settings(changes: dict, _: CurrentUser = Depends(require_admin), db=Depends(get_db)):
    return {
        "message": "Site settings updated successfully",
        "settings": site_settings.update_site_settings(db, changes),
    }


@app.post("/api/site-settings/reset")
def reset_site_settings(_: CurrentUser = Depends(require_admin), db=Depends(get_db)):
    return {
        "message": "Site settings reset to defaults",
        "settings": site_settings.reset_site_settings(db),
    }


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
