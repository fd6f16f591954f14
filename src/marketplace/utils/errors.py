"""Error taxonomy shared by the cart, checkout and order modules.

Every business failure is a subclass of MarketError so callers (the
terminal screens, or any transport in front of the core) can catch them
uniformly and show ``message`` to the customer. ``to_dict`` gives the
structured form: a stable ``error`` code plus whatever fields identify the
offending line item.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class MarketError(Exception):
    """Base class for all marketplace errors."""

    code = "error"
    retryable = False

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"error": self.code, "message": self.message}
        out.update({k: v for k, v in self.details.items() if v is not None})
        if self.retryable:
            out["retryable"] = True
        return out


class NotFound(MarketError):
    code = "not_found"


class ProductNotFound(NotFound):
    code = "product_not_found"

    def __init__(self, product_id: int) -> None:
        super().__init__(f"Product not found: {product_id}", product_id=product_id)
        self.product_id = product_id


class OutOfStock(MarketError):
    code = "out_of_stock"

    def __init__(self, product_id: int, name: str = "") -> None:
        super().__init__(
            f"Product out of stock: {name or product_id}", product_id=product_id
        )
        self.product_id = product_id


class InsufficientStock(MarketError):
    code = "insufficient_stock"

    def __init__(
        self, product_id: int, requested: int, available: int, name: str = ""
    ) -> None:
        super().__init__(
            f"Insufficient stock for: {name or product_id}. "
            f"Only {available} available.",
            product_id=product_id,
            requested=requested,
            available=available,
        )
        self.product_id = product_id
        self.requested = requested
        self.available = available


class InvalidQuantity(MarketError):
    code = "invalid_quantity"

    def __init__(self, quantity: int) -> None:
        super().__init__(
            f"Quantity must be at least 1, got {quantity}. Remove the item instead.",
            quantity=quantity,
        )
        self.quantity = quantity


class PriceChanged(MarketError):
    code = "price_changed"

    def __init__(
        self, product_id: int, expected: int, actual: int, name: str = ""
    ) -> None:
        super().__init__(
            f"Price has changed for: {name or product_id}. Please refresh your cart.",
            product_id=product_id,
            expected=expected,
            actual=actual,
        )
        self.product_id = product_id
        self.expected = expected
        self.actual = actual


class PaymentMethodNotAllowed(MarketError):
    code = "payment_method_not_allowed"

    def __init__(self, method: str, total: int, ceiling: int) -> None:
        super().__init__(
            f"Payment method '{method}' is only available for orders up to "
            f"{ceiling}; this order totals {total}.",
            payment_method=method,
            total=total,
            ceiling=ceiling,
        )
        self.method = method
        self.total = total
        self.ceiling = ceiling


class ValidationFailed(MarketError):
    code = "validation_failed"

    def __init__(self, message: str, field: Optional[str] = None, **details: Any):
        super().__init__(message, field=field, **details)
        self.field = field


class TotalMismatch(ValidationFailed):
    code = "total_mismatch"

    def __init__(self, submitted: int, computed: int) -> None:
        super().__init__(
            f"Submitted total {submitted} does not match computed total {computed}.",
            field="total",
            submitted=submitted,
            computed=computed,
        )
        self.submitted = submitted
        self.computed = computed


class InvalidStatusTransition(MarketError):
    code = "invalid_status_transition"

    def __init__(self, current: str, requested: str) -> None:
        super().__init__(
            f"Cannot move an order from {current} to {requested}.",
            current=current,
            requested=requested,
        )


class TransactionConflict(MarketError):
    """The write lock could not be obtained; safe to retry."""

    code = "transaction_conflict"
    retryable = True

    def __init__(self, message: str = "Checkout is busy, please try again.") -> None:
        super().__init__(message)


class StorageUnavailable(MarketError):
    """Infrastructure failure. Never to be read as a successful order."""

    code = "storage_unavailable"
    retryable = True

    def __init__(self, message: str = "Something went wrong, please try again.") -> None:
        super().__init__(message)
