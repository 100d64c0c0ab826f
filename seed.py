"""Load sample timber products, a launch promotion and default site settings.

Usage: DATABASE_URL=... DATABASE_NAME=... python seed.py
"""
import logging
from datetime import timedelta

import database
from database import create_document, ensure_indexes, utcnow
from promotions import create_promotion
from schemas import Product, Promotion
from site_settings import get_site_settings

logger = logging.getLogger("sawmill.seed")

SAMPLE_PRODUCTS = [
    {
        "name": "Premium Pine Plywood",
        "description": "18mm structural pine plywood sheet, sanded both sides.",
        "category": "Plywood",
        "product_type": "Standard Panel",
        "wood_type": "Pine",
        "color": "Natural",
        "price": 450,
        "stock": 120,
        "featured": True,
        "dimensions": {"length": 2440, "width": 1220, "height": 18, "unit": "mm"},
        "bulk_pricing": [{"min_quantity": 20, "discount_price": 420}],
        "tags": ["structural", "sheet"],
    },
    {
        "name": "Treated Pine 4x4 Post",
        "description": "CCA treated pine post for decks, pergolas and fencing.",
        "category": "4x4 Timber",
        "product_type": "Post",
        "wood_type": "Pine",
        "color": "Green",
        "price": 180,
        "stock": 300,
        "dimensions": {"length": 3, "width": 0.1, "height": 0.1, "unit": "m"},
        "tags": ["treated", "outdoor"],
    },
    {
        "name": "Meranti Shelving Board",
        "description": "Planed all round meranti board for shelving and joinery.",
        "category": "Boards",
        "product_type": "PAR Board",
        "wood_type": "Meranti",
        "color": "Red Brown",
        "price": 265,
        "stock": 80,
        "tags": ["joinery", "indoor"],
    },
    {
        "name": "Kiaat Front Door",
        "description": "Solid kiaat ledged and braced front door.",
        "category": "Doors",
        "product_type": "Exterior Door",
        "wood_type": "Kiaat",
        "color": "Golden Brown",
        "price": 6850,
        "stock": 6,
        "featured": True,
        "lead_time": {"value": 2, "unit": "weeks"},
        "tags": ["exterior", "solid wood"],
    },
]


def seed(db) -> None:
    ensure_indexes(db)
    if db["product"].count_documents({}) == 0:
        for data in SAMPLE_PRODUCTS:
            create_document(db, "product", Product(**data))
        logger.info("Inserted %d products", len(SAMPLE_PRODUCTS))
    else:
        logger.info("Products already present, skipping")

    if not db["promotion"].find_one({"code": "SAVE10"}):
        now = utcnow()
        create_promotion(db, Promotion(
            code="SAVE10",
            description="10% off orders over R500",
            discount_type="percentage",
            discount_value=10,
            max_discount=1000,
            minimum_order_value=500,
            valid_from=now,
            valid_until=now + timedelta(days=90),
        ))

    get_site_settings(db)


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    if database.db is None:
        raise SystemExit("DATABASE_URL and DATABASE_NAME must be set")
    seed(database.db)
