"""Tests for product reviews and moderation."""

import pytest

import orders
import reviews
from errors import AuthorizationError, NotFoundError, ValidationError


@pytest.fixture
def delivered_order(mongo, make_order, plywood):
    order = make_order((plywood, 1))
    for status in ("confirmed", "packed", "delivered"):
        order = orders.update_order_status(mongo, order["id"], status)
    return order


def write_review(db, user, product, **kwargs):
    params = {"rating": 5, "title": "Solid sheets", "comment": "Flat and well sanded."}
    params.update(kwargs)
    return reviews.create_review(db, user, str(product["_id"]), **params)


class TestCreateReview:
    def test_starts_pending(self, mongo, customer, plywood):
        review = write_review(mongo, customer, plywood)
        assert review["status"] == "pending"
        assert review["verified"] is False
        assert review["helpful"] == 0

    def test_verified_after_delivery(self, mongo, customer, plywood, delivered_order):
        review = write_review(mongo, customer, plywood, order_id=delivered_order["id"])
        assert review["verified"] is True

    def test_not_verified_for_someone_elses_order(self, mongo, other_customer, plywood, delivered_order):
        review = write_review(mongo, other_customer, plywood, order_id=delivered_order["id"])
        assert review["verified"] is False

    def test_one_review_per_product(self, mongo, customer, plywood):
        write_review(mongo, customer, plywood)
        with pytest.raises(ValidationError):
            write_review(mongo, customer, plywood, rating=1)

    @pytest.mark.parametrize("rating", [0, 6])
    def test_rating_range(self, mongo, customer, plywood, rating):
        with pytest.raises(ValidationError):
            write_review(mongo, customer, plywood, rating=rating)

    def test_unknown_product(self, mongo, customer):
        with pytest.raises(NotFoundError):
            reviews.create_review(mongo, customer, "0" * 24, 4, "t", "c")


class TestModeration:
    def test_only_approved_are_listed(self, mongo, customer, other_customer, plywood):
        first = write_review(mongo, customer, plywood, rating=5)
        write_review(mongo, other_customer, plywood, rating=3)
        reviews.set_review_status(mongo, first["id"], "approved")

        result = reviews.list_product_reviews(mongo, str(plywood["_id"]))
        assert [r["id"] for r in result["reviews"]] == [first["id"]]
        assert result["stats"]["average_rating"] == 5
        assert result["stats"]["total_reviews"] == 1

    def test_rating_summary(self, mongo, customer, other_customer, admin, plywood):
        for user, rating in ((customer, 5), (other_customer, 4), (admin, 4)):
            review = write_review(mongo, user, plywood, rating=rating)
            reviews.set_review_status(mongo, review["id"], "approved")

        summary = reviews.rating_summary(mongo, str(plywood["_id"]))
        assert summary["average_rating"] == pytest.approx(4.3)
        assert summary["rating_distribution"] == [{"rating": 5, "count": 1}, {"rating": 4, "count": 2}]

    def test_pending_queue(self, mongo, customer, plywood):
        write_review(mongo, customer, plywood)
        assert len(reviews.list_reviews(mongo, "pending")["reviews"]) == 1
        assert reviews.list_reviews(mongo, "approved")["reviews"] == []


class TestEditReview:
    def test_edit_returns_to_pending(self, mongo, customer, plywood):
        review = write_review(mongo, customer, plywood)
        reviews.set_review_status(mongo, review["id"], "approved")

        updated = reviews.update_review(mongo, review["id"], customer, {"rating": 4, "comment": "Slight warp."})
        assert updated["rating"] == 4
        assert updated["comment"] == "Slight warp."
        assert updated["status"] == "pending"

    def test_only_author_can_edit(self, mongo, customer, admin, plywood):
        review = write_review(mongo, customer, plywood)
        with pytest.raises(AuthorizationError):
            reviews.update_review(mongo, review["id"], admin, {"rating": 1})

    def test_owner_or_admin_can_delete(self, mongo, customer, other_customer, admin, plywood):
        review = write_review(mongo, customer, plywood)
        with pytest.raises(AuthorizationError):
            reviews.delete_review(mongo, review["id"], other_customer)
        reviews.delete_review(mongo, review["id"], admin)
        assert mongo["review"].count_documents({}) == 0

    def test_helpful_votes(self, mongo, customer, plywood):
        review = write_review(mongo, customer, plywood)
        reviews.mark_helpful(mongo, review["id"], True)
        updated = reviews.mark_helpful(mongo, review["id"], False)
        assert (updated["helpful"], updated["unhelpful"]) == (1, 1)
