"""Custom exceptions for the sawmill API.

Each exception carries the HTTP status the API answers with. Services raise
these; ``main.py`` turns them into ``{"error": message}`` responses.
"""


class SawmillError(Exception):
    """Base exception for all sawmill errors."""

    status_code = 500


class ValidationError(SawmillError):
    """Raised for malformed or missing input."""

    status_code = 400


class NotFoundError(SawmillError):
    """Raised when a referenced document doesn't exist."""

    status_code = 404

    def __init__(self, kind: str, ref: str | None = None):
        self.kind = kind
        self.ref = ref
        msg = f"{kind} not found"
        if ref:
            msg = f"{kind} {ref} not found"
        super().__init__(msg)


class AuthorizationError(SawmillError):
    """Raised when the acting user is neither the owner nor an admin."""

    status_code = 403

    def __init__(self, msg: str = "Not authorized"):
        super().__init__(msg)


class InsufficientStockError(SawmillError):
    """Raised when an invoice order asks for more units than are in stock."""

    status_code = 400

    def __init__(self, product_name: str, available: int, requested: int):
        self.product_name = product_name
        self.available = available
        self.requested = requested
        super().__init__(f"Insufficient stock for {product_name}")


class InvalidStateError(SawmillError):
    """Raised for an illegal order status transition."""

    status_code = 400


class PromotionError(SawmillError):
    """Base class for promotion rejections."""

    status_code = 400


class InvalidPromotionError(PromotionError):
    """Raised when no active, in-window promotion matches the code."""

    def __init__(self, code: str):
        self.code = code
        super().__init__("Invalid or expired promotion code")


class UsageLimitExceededError(PromotionError):
    """Raised when a promotion has been redeemed usage_limit times."""

    def __init__(self, code: str):
        self.code = code
        super().__init__("Promotion has reached usage limit")


class BelowMinimumError(PromotionError):
    """Raised when the order total is below the promotion minimum."""

    def __init__(self, minimum: float):
        self.minimum = minimum
        super().__init__(f"Minimum order value of R{minimum:g} required")


class NotApplicableError(PromotionError):
    """Raised when the promotion doesn't cover any item in the order."""

    def __init__(self):
        super().__init__("This promotion is not applicable to your items")


class PerCustomerLimitExceededError(PromotionError):
    """Raised when a customer has used a promotion as often as allowed."""

    def __init__(self, limit: int):
        self.limit = limit
        super().__init__(f"You have already used this promotion {limit} time(s)")
