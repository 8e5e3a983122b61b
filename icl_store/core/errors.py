"""Domain errors raised by the services.

Each error carries the HTTP status and the short ``detail`` code the API
returns, so routers can let them propagate to the handler in ``api.py``.
"""

from __future__ import annotations


class StoreError(Exception):
    status_code: int = 400
    detail: str = "store_error"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.detail)
        self.message = message or self.detail


class InvalidAmount(StoreError):
    detail = "invalid_amount"


class InsufficientBalance(StoreError):
    detail = "insufficient_balance"

    def __init__(self, requested: int, available: int) -> None:
        super().__init__(f"requested {requested} coins, balance is {available}")
        self.requested = requested
        self.available = available


class RedemptionExceedsOrderValue(StoreError):
    detail = "redemption_exceeds_order_value"

    def __init__(self, requested: int, redeemable: int) -> None:
        super().__init__(f"requested {requested} coins, at most {redeemable} can be applied")
        self.requested = requested
        self.redeemable = redeemable


class InvalidRedemption(StoreError):
    detail = "invalid_redemption"


class InvalidTransition(StoreError):
    status_code = 409
    detail = "invalid_transition"

    def __init__(self, current: str, target: str) -> None:
        super().__init__(f"cannot move order from {current} to {target}")
        self.current = current
        self.target = target


class ConcurrentModification(StoreError):
    status_code = 409
    detail = "concurrent_modification"


class TransientError(StoreError):
    status_code = 503
    detail = "transient_error"


class UserNotFound(StoreError):
    status_code = 404
    detail = "user_not_found"


class OrderNotFound(StoreError):
    status_code = 404
    detail = "order_not_found"


class ProductNotFound(StoreError):
    status_code = 404
    detail = "product_not_found"


class EmptyCart(StoreError):
    detail = "cart_empty"


class ProductUnavailable(StoreError):
    detail = "product_unavailable"


class OutOfStock(StoreError):
    detail = "out_of_stock"


class InvalidCoupon(StoreError):
    detail = "invalid_coupon"


class OrderNotCancellable(StoreError):
    detail = "order_not_cancellable"


class InvalidProduct(StoreError):
    detail = "invalid_product"


class CartItemNotFound(StoreError):
    status_code = 404
    detail = "cart_item_not_found"
