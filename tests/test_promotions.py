"""Tests for promotion validation, redemption and administration."""

from datetime import datetime, timedelta

import pytest

import orders
import promotions
from database import utcnow
from errors import (
    AuthorizationError,
    BelowMinimumError,
    InvalidPromotionError,
    InvalidStateError,
    NotApplicableError,
    PerCustomerLimitExceededError,
    UsageLimitExceededError,
    ValidationError,
)
from schemas import Promotion


class TestValidatePromotion:
    def test_percentage_capped(self, mongo, make_promotion):
        make_promotion(max_discount=50)
        result = promotions.validate_promotion(mongo, "SAVE10", 1000)

        assert result["valid"] is True
        assert result["promotion"]["discount_amount"] == pytest.approx(50)
        assert result["promotion"]["final_total"] == pytest.approx(950)

    def test_percentage_under_cap(self, mongo, make_promotion):
        make_promotion(max_discount=50)
        result = promotions.validate_promotion(mongo, "SAVE10", 300)
        assert result["promotion"]["discount_amount"] == pytest.approx(30)

    def test_fixed_amount(self, mongo, make_promotion):
        make_promotion(code="TIMBER100", discount_type="fixed_amount", discount_value=100)
        result = promotions.validate_promotion(mongo, "TIMBER100", 640)
        assert result["promotion"]["discount_amount"] == pytest.approx(100)
        assert result["promotion"]["final_total"] == pytest.approx(540)

    def test_fixed_amount_larger_than_total(self, mongo, make_promotion):
        make_promotion(code="TIMBER500", discount_type="fixed_amount", discount_value=500)
        result = promotions.validate_promotion(mongo, "TIMBER500", 180)
        assert result["promotion"]["discount_amount"] == pytest.approx(180)
        assert result["promotion"]["final_total"] == pytest.approx(0)

    def test_code_is_case_insensitive(self, mongo, make_promotion):
        make_promotion()
        assert promotions.validate_promotion(mongo, " save10 ", 200)["promotion"]["code"] == "SAVE10"

    def test_unknown_code(self, mongo):
        with pytest.raises(InvalidPromotionError) as exc_info:
            promotions.validate_promotion(mongo, "NOPE", 100)
        assert str(exc_info.value) == "Invalid or expired promotion code"

    def test_expired(self, mongo, make_promotion):
        now = utcnow()
        make_promotion(valid_from=now - timedelta(days=10), valid_until=now - timedelta(days=1))
        with pytest.raises(InvalidPromotionError):
            promotions.validate_promotion(mongo, "SAVE10", 100)

    def test_not_started(self, mongo, make_promotion):
        now = utcnow()
        make_promotion(valid_from=now + timedelta(days=1), valid_until=now + timedelta(days=5))
        with pytest.raises(InvalidPromotionError):
            promotions.validate_promotion(mongo, "SAVE10", 100)

    def test_inactive(self, mongo, make_promotion):
        promotion = make_promotion()
        promotions.update_promotion(mongo, promotion["_id"], {"active": False})
        with pytest.raises(InvalidPromotionError):
            promotions.validate_promotion(mongo, "SAVE10", 100)

    def test_below_minimum(self, mongo, make_promotion):
        make_promotion(minimum_order_value=500)
        with pytest.raises(BelowMinimumError) as exc_info:
            promotions.validate_promotion(mongo, "SAVE10", 499.99)
        assert "500" in str(exc_info.value)

    def test_category_restriction(self, mongo, make_promotion):
        make_promotion(applicable_categories=["Doors"])
        with pytest.raises(NotApplicableError):
            promotions.validate_promotion(mongo, "SAVE10", 1000, category="Plywood")
        result = promotions.validate_promotion(mongo, "SAVE10", 1000, category="Doors")
        assert result["valid"] is True

    def test_product_restriction(self, mongo, make_promotion, plywood, post):
        make_promotion(applicable_products=[str(plywood["_id"])])
        with pytest.raises(NotApplicableError):
            promotions.validate_promotion(mongo, "SAVE10", 1000, product_ids=[str(post["_id"])])
        result = promotions.validate_promotion(
            mongo, "SAVE10", 1000, product_ids=[str(post["_id"]), str(plywood["_id"])]
        )
        assert result["valid"] is True

    def test_validate_does_not_redeem(self, mongo, make_promotion):
        promotion = make_promotion()
        promotions.validate_promotion(mongo, "SAVE10", 1000, user_id="user-1")
        stored = mongo["promotion"].find_one({"_id": promotion["_id"]})
        assert stored["usage_count"] == 0
        assert stored["used_by"] == []


class TestRedeemPromotion:
    def test_usage_limit(self, mongo, make_promotion):
        make_promotion(usage_limit=2)
        promotions.redeem_promotion(mongo, "SAVE10", "order-1", "user-1")
        promotions.redeem_promotion(mongo, "SAVE10", "order-2", "user-2")

        with pytest.raises(UsageLimitExceededError):
            promotions.redeem_promotion(mongo, "SAVE10", "order-3", "user-3")

        stored = mongo["promotion"].find_one({"code": "SAVE10"})
        assert stored["usage_count"] == 2
        assert len(stored["used_by"]) == 2

    def test_per_customer_limit(self, mongo, make_promotion):
        make_promotion(usage_per_customer=2)
        promotions.redeem_promotion(mongo, "SAVE10", "order-1", "user-1")
        promotions.redeem_promotion(mongo, "SAVE10", "order-2", "user-1")

        with pytest.raises(PerCustomerLimitExceededError):
            promotions.redeem_promotion(mongo, "SAVE10", "order-3", "user-1")
        with pytest.raises(PerCustomerLimitExceededError):
            promotions.validate_promotion(mongo, "SAVE10", 100, user_id="user-1")

        stored = mongo["promotion"].find_one({"code": "SAVE10"})
        assert stored["usage_count"] == len(stored["used_by"]) == 2

    def test_records_usage(self, mongo, make_promotion):
        make_promotion()
        promotion = promotions.redeem_promotion(mongo, "save10", "order-9", "user-4")
        assert promotion["used_by"][0]["order_id"] == "order-9"
        assert promotion["used_by"][0]["user_id"] == "user-4"


class TestApplyPromotion:
    def test_discount_written_to_order(self, mongo, make_promotion, make_order, plywood, post, customer):
        make_promotion(max_discount=50)
        order = make_order((plywood, 2), (post, 1))

        result = promotions.apply_promotion(mongo, "SAVE10", order["id"], customer)

        assert result["order"]["discount"] == pytest.approx(50)
        assert result["order"]["discount_code"] == "SAVE10"
        assert result["order"]["total"] == pytest.approx(1030)
        assert result["promotion"]["usage_count"] == 1

    def test_second_code_rejected(self, mongo, make_promotion, make_order, plywood, customer):
        make_promotion()
        make_promotion(code="TIMBER100", discount_type="fixed_amount", discount_value=100)
        order = make_order((plywood, 2))
        promotions.apply_promotion(mongo, "SAVE10", order["id"], customer)

        with pytest.raises(InvalidStateError):
            promotions.apply_promotion(mongo, "TIMBER100", order["id"], customer)
        assert mongo["promotion"].find_one({"code": "TIMBER100"})["usage_count"] == 0

    def test_discount_race_rolls_back_redemption(
        self, mongo, make_promotion, make_order, plywood, customer, monkeypatch
    ):
        make_promotion()
        order = make_order((plywood, 2))

        def already_discounted(*args, **kwargs):
            raise InvalidStateError("Order already has a promotion applied")

        monkeypatch.setattr(promotions, "apply_discount", already_discounted)

        with pytest.raises(InvalidStateError):
            promotions.apply_promotion(mongo, "SAVE10", order["id"], customer)
        stored = mongo["promotion"].find_one({"code": "SAVE10"})
        assert stored["usage_count"] == 0
        assert stored["used_by"] == []

    def test_cancelled_order(self, mongo, make_promotion, make_order, plywood, customer):
        make_promotion()
        order = make_order((plywood, 1))
        orders.cancel_order(mongo, order["id"], customer)
        with pytest.raises(InvalidStateError):
            promotions.apply_promotion(mongo, "SAVE10", order["id"], customer)

    def test_other_customers_order(self, mongo, make_promotion, make_order, plywood, other_customer):
        make_promotion()
        order = make_order((plywood, 1))
        with pytest.raises(AuthorizationError):
            promotions.apply_promotion(mongo, "SAVE10", order["id"], other_customer)

    def test_minimum_checked_against_subtotal(self, mongo, make_promotion, make_order, post, customer):
        make_promotion(minimum_order_value=500)
        order = make_order((post, 1))
        with pytest.raises(BelowMinimumError):
            promotions.apply_promotion(mongo, "SAVE10", order["id"], customer)

    def test_fixed_amount_capped_at_subtotal(self, mongo, make_promotion, make_order, post, customer):
        make_promotion(code="TIMBER500", discount_type="fixed_amount", discount_value=500)
        order = make_order((post, 1))

        result = promotions.apply_promotion(mongo, "TIMBER500", order["id"], customer)

        assert result["order"]["discount"] == pytest.approx(180)
        assert result["order"]["total"] == pytest.approx(0)


class TestPromotionAdmin:
    def test_code_uppercased(self, mongo, make_promotion):
        promotion = make_promotion(code="winter25")
        assert promotion["code"] == "WINTER25"
        assert promotion["usage_count"] == 0

    def test_duplicate_code(self, mongo, make_promotion):
        make_promotion()
        with pytest.raises(ValidationError):
            make_promotion(code="save10")

    def test_window_must_be_ordered(self, mongo):
        now = utcnow()
        payload = Promotion(
            code="BACKWARDS",
            description="bad window",
            discount_type="percentage",
            discount_value=5,
            valid_from=now,
            valid_until=now - timedelta(days=1),
        )
        with pytest.raises(ValidationError):
            promotions.create_promotion(mongo, payload)

    def test_update_ignores_unknown_fields(self, mongo, make_promotion):
        promotion = make_promotion()
        updated = promotions.update_promotion(
            mongo, promotion["_id"], {"description": "Spring sale", "usage_count": 99}
        )
        assert updated["description"] == "Spring sale"
        assert updated["usage_count"] == 0

    def test_update_keeps_window_ordered(self, mongo, make_promotion):
        promotion = make_promotion()
        with pytest.raises(ValidationError):
            promotions.update_promotion(
                mongo, promotion["_id"], {"valid_until": promotion["valid_from"] - timedelta(hours=1)}
            )
        stored = mongo["promotion"].find_one({"_id": promotion["_id"]})
        assert stored["valid_until"] == promotion["valid_until"]

    def test_usage_limit_not_below_usage(self, mongo, make_promotion):
        promotion = make_promotion(usage_limit=5)
        promotions.redeem_promotion(mongo, "SAVE10", "order-1", "user-1")
        promotions.redeem_promotion(mongo, "SAVE10", "order-2", "user-2")

        with pytest.raises(ValidationError):
            promotions.update_promotion(mongo, promotion["_id"], {"usage_limit": 1})
        updated = promotions.update_promotion(mongo, promotion["_id"], {"usage_limit": 2})
        assert updated["usage_limit"] == 2

    def test_offset_window_stored_as_utc(self):
        payload = Promotion(
            code="EARLYBIRD",
            description="New year",
            discount_type="percentage",
            discount_value=5,
            valid_from="2026-01-01T02:00:00+02:00",
            valid_until="2027-01-01T00:00:00",
        )
        assert payload.valid_from == datetime(2026, 1, 1)
        assert payload.valid_from.tzinfo is None

    def test_list_only_current(self, mongo, make_promotion):
        now = utcnow()
        make_promotion()
        make_promotion(code="OLD", valid_from=now - timedelta(days=9), valid_until=now - timedelta(days=2))

        result = promotions.list_promotions(mongo)
        assert [p["code"] for p in result["promotions"]] == ["SAVE10"]
        assert len(promotions.list_promotions(mongo, active=None)["promotions"]) == 2

    def test_stats(self, mongo, make_promotion):
        make_promotion()
        make_promotion(code="TIMBER100", discount_type="fixed_amount", discount_value=100)
        promotions.redeem_promotion(mongo, "TIMBER100", "order-1", "user-1")
        promotions.redeem_promotion(mongo, "TIMBER100", "order-2", "user-2")

        stats = promotions.get_promotion_stats(mongo)
        assert stats["total_promotions"] == 2
        assert stats["active_promotions"] == 2
        assert stats["total_usage"] == 2
        assert stats["total_discount_given"] == pytest.approx(200)
