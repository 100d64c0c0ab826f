"""
Database Schemas for the 3D's Sawmill store

Each Pydantic model represents a MongoDB collection. The collection name is the
lowercased class name (e.g., Product -> "product", SiteSettings -> "site_settings").
"""
from datetime import datetime, timezone
from typing import List, Literal, Optional

from pydantic import BaseModel, EmailStr, Field, field_validator


CATEGORIES = (
    "Plywood", "4x4 Timber", "Boards", "Doors",
    "Window Frames", "Pillars", "Custom Cuts", "Other",
)
WOOD_TYPES = (
    "Pine", "Meranti", "Kiaat", "Yellowwood", "Stinkwood", "Teak", "Mahogany", "Oak",
    "Softwood", "Hardwood", "Engineered Wood", "MDF", "Plywood", "Composite", "Laminate", "Other",
)

# Workflow order matters: analytics reports statuses in this order.
ORDER_STATUSES = (
    "pending", "confirmed", "processing", "packed", "shipped",
    "out_for_delivery", "delivered", "cancelled", "refunded",
)
PAYMENT_STATUSES = ("pending", "completed", "failed", "refunded")
PAYMENT_METHODS = ("credit_card", "debit_card", "bank_transfer", "cash", "payfast")
DELIVERY_METHODS = ("pickup", "delivery")
REQUEST_TYPES = ("invoice", "quote")
DISCOUNT_TYPES = ("percentage", "fixed_amount")
REVIEW_STATUSES = ("pending", "approved", "rejected")

Category = Literal[CATEGORIES]
WoodType = Literal[WOOD_TYPES]
OrderStatus = Literal[ORDER_STATUSES]
PaymentStatus = Literal[PAYMENT_STATUSES]
PaymentMethod = Literal[PAYMENT_METHODS]
DeliveryMethod = Literal[DELIVERY_METHODS]
RequestType = Literal[REQUEST_TYPES]
DiscountType = Literal[DISCOUNT_TYPES]


def as_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Stored timestamps are naive UTC; convert offset-aware input to match."""
    if value is not None and value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


class BulkPricingTier(BaseModel):
    min_quantity: int = Field(..., ge=1)
    max_quantity: Optional[int] = None
    discount_price: float = Field(..., ge=0)
    discount_percentage: Optional[float] = Field(None, ge=0, le=100)


class Dimensions(BaseModel):
    length: float
    width: Optional[float] = None
    height: Optional[float] = None
    unit: Literal["mm", "cm", "m", "inches", "feet"] = "mm"


class Weight(BaseModel):
    value: float
    unit: Literal["kg", "lbs", "g"] = "kg"


class ProductImage(BaseModel):
    url: str
    alt: Optional[str] = None
    is_primary: bool = False


class LeadTime(BaseModel):
    value: int = 1
    unit: Literal["days", "weeks"] = "days"


class Product(BaseModel):
    """Timber product schema"""
    name: str = Field(..., description="Product name (e.g., 'Premium Pine Plywood')")
    description: str = Field(..., description="Detailed description")
    category: Category
    product_type: str = Field(..., description="Specific product type (e.g., 'Standard Panel')")
    wood_type: WoodType
    color: str
    price: float = Field(..., ge=0, description="Price in ZAR")
    stock: int = Field(0, ge=0, description="Units in stock")
    dimensions: Optional[Dimensions] = None
    weight: Optional[Weight] = None
    images: List[ProductImage] = Field(default_factory=list)
    is_available: bool = True
    featured: bool = Field(False, description="Showcase on home page")
    bulk_pricing: List[BulkPricingTier] = Field(default_factory=list)
    specifications: dict = Field(default_factory=dict)
    tags: List[str] = Field(default_factory=list)
    minimum_order_quantity: int = Field(1, ge=1)
    lead_time: LeadTime = Field(default_factory=LeadTime)


class ShippingAddress(BaseModel):
    street: Optional[str] = None
    city: Optional[str] = None
    province: Optional[str] = None
    postal_code: Optional[str] = None
    country: Optional[str] = None


class OrderItem(BaseModel):
    product_id: str = Field(..., description="Mongo ObjectId of product as string")
    quantity: int = Field(..., ge=1)
    product_name: str = ""
    unit_price: float = Field(0, ge=0)
    category: Optional[str] = None


class StatusHistoryEntry(BaseModel):
    status: OrderStatus
    timestamp: datetime
    notes: Optional[str] = None
    updated_by: Optional[str] = None


class Order(BaseModel):
    order_number: str
    user_id: str
    items: List[OrderItem]
    subtotal: float = Field(..., ge=0)
    discount: float = Field(0, ge=0)
    discount_code: Optional[str] = None
    tax: float = Field(0, ge=0)
    shipping_cost: float = Field(0, ge=0)
    total: float
    status: OrderStatus = "pending"
    status_history: List[StatusHistoryEntry] = Field(default_factory=list)
    delivery_method: DeliveryMethod
    estimated_delivery: Optional[datetime] = None
    actual_delivery: Optional[datetime] = None
    tracking_number: Optional[str] = None
    shipping_address: Optional[ShippingAddress] = None
    customer_name: str
    customer_email: EmailStr
    customer_phone: str
    payment_method: PaymentMethod = "bank_transfer"
    payment_status: PaymentStatus = "pending"
    request_type: RequestType = "invoice"
    stock_reserved: bool = Field(False, description="True while the order holds product stock")
    notes: str = ""
    admin_notes: str = ""


class PromotionUsage(BaseModel):
    user_id: str
    order_id: str
    used_at: datetime


class Promotion(BaseModel):
    code: str = Field(..., description="Unique uppercase code")
    description: str
    discount_type: DiscountType
    discount_value: float = Field(..., ge=0)
    max_discount: Optional[float] = Field(None, ge=0, description="Cap for percentage discounts")
    minimum_order_value: float = Field(0, ge=0)
    applicable_products: List[str] = Field(default_factory=list)
    applicable_categories: List[str] = Field(default_factory=list)
    usage_limit: Optional[int] = Field(None, ge=1, description="Total uses allowed, None for unlimited")
    usage_per_customer: int = Field(1, ge=1)
    usage_count: int = 0
    valid_from: datetime
    valid_until: datetime
    active: bool = True
    used_by: List[PromotionUsage] = Field(default_factory=list)

    @field_validator("valid_from", "valid_until")
    @classmethod
    def naive_utc_window(cls, value: datetime) -> datetime:
        return as_naive_utc(value)


class Review(BaseModel):
    product_id: str
    user_id: str
    order_id: Optional[str] = None
    rating: int = Field(..., ge=1, le=5)
    title: str = Field(..., max_length=100)
    comment: str = Field(..., max_length=1000)
    verified: bool = Field(False, description="Reviewer purchased and received the product")
    helpful: int = 0
    unhelpful: int = 0
    images: List[str] = Field(default_factory=list)
    status: Literal[REVIEW_STATUSES] = "pending"


class WishlistItem(BaseModel):
    product_id: str
    added_at: datetime
    notes: Optional[str] = None


class Wishlist(BaseModel):
    user_id: str
    items: List[WishlistItem] = Field(default_factory=list)
    is_public: bool = False


class HeroFeature(BaseModel):
    text: str
    icon: Optional[str] = None


class SiteSettings(BaseModel):
    """Singleton record holding the editable site copy"""
    hero_title: str = "3D'S SAWMILL"
    hero_subtitle: str = "Premium Structural & Industrial Timber"
    hero_description: str = (
        "Delivering superior timber solutions with sustainable practices and cutting-edge technology."
    )
    hero_badge_text: str = "Nationwide Delivery Available"
    hero_features: List[HeroFeature] = Field(default_factory=list)
    about_title: str = "About 3D'S SAWMILL"
    about_subtitle: str = "For all structural and industrial timber"
    about_description: str = (
        "We're here to help you find the perfect timber solution for your project."
    )
    about_mission: str = (
        "Our mission is to provide high-quality timber products while maintaining "
        "sustainable practices and exceptional customer service."
    )
    about_vision: str = (
        "To be South Africa's leading timber supplier, known for quality, reliability, and innovation."
    )
    contact_phone: str = "072 504 9184"
    contact_email: str = "info@3dsawmill.co.za"
    contact_address: str = "Bergvliet, Cape Town, South Africa"
    whatsapp_number: str = "27725049184"
    business_hours: str = (
        "Monday - Friday: 7:00 AM - 5:00 PM\nSaturday: 8:00 AM - 1:00 PM\nSunday: Closed"
    )
    facebook_url: Optional[str] = None
    instagram_url: Optional[str] = None
    linkedin_url: Optional[str] = None
    meta_title: str = "3D'S SAWMILL - Premium Timber Solutions"
    meta_description: str = (
        "South Africa's trusted timber supplier for structural and industrial wood products."
    )
    singleton_key: str = "site_settings"
