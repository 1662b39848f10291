"""Error taxonomy for the order, wallet and settlement services.

Every business failure is a ``ServiceError``: an ``HTTPException`` carrying a
stable machine-readable ``code`` so routers can let it propagate and the
exception handler renders ``{"error": code, "detail": message}``.

``retryable`` marks conflicts that may succeed on a fresh read; everything
else is a final answer and must not be retried.
"""

from typing import Any, Optional

from fastapi import HTTPException, status


class ServiceError(HTTPException):
    """Base class for all domain errors."""

    code: str = "SERVICE_ERROR"
    status_code: int = status.HTTP_400_BAD_REQUEST
    retryable: bool = False
    default_detail: str = "Request could not be completed"

    def __init__(
        self,
        detail: Optional[str] = None,
        *,
        context: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(
            status_code=type(self).status_code,
            detail=detail or self.default_detail,
        )
        self.context = context or {}

    def __str__(self) -> str:
        return f"{self.code}: {self.detail}"


# ---------------------------------------------------------------------------
# Validation (422)
# ---------------------------------------------------------------------------


class ValidationFailed(ServiceError):
    code = "VALIDATION_ERROR"
    status_code = 422
    default_detail = "Invalid request"


class EmptyCart(ValidationFailed):
    code = "EMPTY_CART"
    default_detail = "Cart is empty"


class InvalidQuantity(ValidationFailed):
    code = "INVALID_QUANTITY"
    default_detail = "Quantity must be greater than zero"


class InvalidAmount(ValidationFailed):
    code = "INVALID_AMOUNT"
    default_detail = "Amount must be greater than zero"


# ---------------------------------------------------------------------------
# Not found (404)
# ---------------------------------------------------------------------------


class NotFound(ServiceError):
    code = "NOT_FOUND"
    status_code = status.HTTP_404_NOT_FOUND
    default_detail = "Resource not found"


class OrderNotFound(NotFound):
    code = "ORDER_NOT_FOUND"
    default_detail = "Order not found"


class ProductNotFound(NotFound):
    code = "PRODUCT_NOT_FOUND"
    default_detail = "Product not found"


class CouponNotFound(NotFound):
    code = "COUPON_NOT_FOUND"
    default_detail = "Invalid coupon code"


class AddressNotFound(NotFound):
    code = "ADDRESS_NOT_FOUND"
    default_detail = "Address not found"


class WalletNotFound(NotFound):
    code = "WALLET_NOT_FOUND"
    default_detail = "Wallet not found"


class SettlementNotFound(NotFound):
    code = "SETTLEMENT_NOT_FOUND"
    default_detail = "Settlement not found"


class CartItemNotFound(NotFound):
    code = "CART_ITEM_NOT_FOUND"
    default_detail = "Cart item not found"


# ---------------------------------------------------------------------------
# Authorization (403)
# ---------------------------------------------------------------------------


class NotAuthorized(ServiceError):
    code = "NOT_AUTHORIZED"
    status_code = status.HTTP_403_FORBIDDEN
    default_detail = "You are not allowed to perform this action"


# ---------------------------------------------------------------------------
# Business rules (400 / 402 / 409)
# ---------------------------------------------------------------------------


class BusinessRuleViolation(ServiceError):
    code = "BUSINESS_RULE_VIOLATION"
    status_code = status.HTTP_409_CONFLICT


class ProductUnavailable(BusinessRuleViolation):
    code = "PRODUCT_UNAVAILABLE"
    default_detail = "Product is not available"


class OutOfStock(BusinessRuleViolation):
    code = "OUT_OF_STOCK"
    default_detail = "Not enough stock"


class InsufficientStock(BusinessRuleViolation):
    code = "INSUFFICIENT_STOCK"
    default_detail = "Stock was taken by another order"


class CouponExpired(BusinessRuleViolation):
    code = "COUPON_EXPIRED"
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = "Coupon is not valid at this time"


class CouponInactive(BusinessRuleViolation):
    code = "COUPON_INACTIVE"
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = "Coupon is no longer active"


class CouponMinimumNotMet(BusinessRuleViolation):
    code = "COUPON_MINIMUM_NOT_MET"
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = "Order does not meet the coupon minimum"


class CouponUsageExceeded(BusinessRuleViolation):
    code = "COUPON_USAGE_EXCEEDED"
    default_detail = "Coupon usage limit reached"


class InvalidStatusTransition(BusinessRuleViolation):
    code = "INVALID_STATUS_TRANSITION"
    default_detail = "Invalid status transition"

    def __init__(self, current: str, requested: str) -> None:
        super().__init__(
            f"Cannot change order status from {current} to {requested}",
            context={"current": current, "requested": requested},
        )
        self.current = current
        self.requested = requested


class CannotCancelShippedOrDelivered(BusinessRuleViolation):
    code = "CANNOT_CANCEL_SHIPPED_OR_DELIVERED"
    default_detail = "Orders that have shipped can no longer be cancelled"


class ReturnWindowClosed(BusinessRuleViolation):
    code = "RETURN_WINDOW_CLOSED"
    default_detail = "The return window for this order has closed"


class OrderNotDelivered(BusinessRuleViolation):
    code = "ORDER_NOT_DELIVERED"
    default_detail = "Order has not been delivered"


class InvalidPayoutTransition(BusinessRuleViolation):
    code = "INVALID_PAYOUT_TRANSITION"
    default_detail = "Settlement is not in a state that allows this payout action"


class InsufficientBalance(BusinessRuleViolation):
    code = "INSUFFICIENT_BALANCE"
    status_code = status.HTTP_402_PAYMENT_REQUIRED
    default_detail = "Insufficient wallet balance"


class IdempotencyKeyReused(BusinessRuleViolation):
    code = "IDEMPOTENCY_KEY_REUSED"
    default_detail = "Idempotency key was already used for a different transaction"


class PaymentMethodMismatch(BusinessRuleViolation):
    code = "PAYMENT_METHOD_MISMATCH"
    default_detail = "Order was not placed with this payment method"


# ---------------------------------------------------------------------------
# Concurrency / infrastructure
# ---------------------------------------------------------------------------


class ConcurrencyConflict(ServiceError):
    code = "CONCURRENCY_CONFLICT"
    status_code = status.HTTP_409_CONFLICT
    retryable = True
    default_detail = "The resource was modified concurrently, please retry"


class StoreUnavailable(ServiceError):
    code = "STORE_UNAVAILABLE"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    retryable = True
    default_detail = "Database temporarily unavailable"
