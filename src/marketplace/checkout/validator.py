"""Server-side checks run immediately before an order is committed.

Nothing the client sends about money is trusted: every line is compared
with the catalog as it is now, and subtotal, shipping and total are
recomputed here. Any failing check raises and aborts the whole checkout
before a single row is written.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field, replace
from typing import Dict, List, Optional

from marketplace.checkout.shipping import DISTRICTS, get_carrier, shipping_cost
from marketplace.db.catalog import get_products
from marketplace.db.models import LineItem, ShippingAddress, ValidatedLine
from marketplace.utils.errors import (
    InsufficientStock,
    OutOfStock,
    PaymentMethodNotAllowed,
    PriceChanged,
    ProductNotFound,
    TotalMismatch,
    ValidationFailed,
)

PAYMENT_METHODS: Dict[str, str] = {
    "card": "Credit/Debit Card",
    "mobile": "Mobile Money",
    "cod": "Cash on Delivery",
}

# highest order total each method accepts; methods not listed have no cap
PAYMENT_CEILINGS: Dict[str, int] = {
    "cod": 50000,
}

# integer currency, so totals must agree exactly
TOTAL_TOLERANCE = 0

_PHONE_RE = re.compile(r"^\+?[0-9][0-9 \-]{6,14}[0-9]$")


@dataclass(frozen=True)
class CheckoutRequest:
    lines: List[LineItem]
    shipping: ShippingAddress
    shipping_method: str
    payment_method: str
    client_total: Optional[int] = None
    idempotency_key: Optional[str] = None


@dataclass(frozen=True)
class CheckoutQuote:
    lines: List[ValidatedLine] = field(default_factory=list)
    subtotal: int = 0
    shipping_cost: int = 0
    total: int = 0
    shipping: Optional[ShippingAddress] = None


def validate_shipping_address(addr: ShippingAddress) -> ShippingAddress:
    """Return a whitespace-trimmed copy, or raise ValidationFailed."""
    cleaned = ShippingAddress(
        full_name=addr.full_name.strip(),
        phone=addr.phone.strip(),
        district=addr.district.strip(),
        address=addr.address.strip(),
        postal_code=(addr.postal_code or "").strip(),
    )
    for name in ("full_name", "phone", "district", "address"):
        if not getattr(cleaned, name):
            label = name.replace("_", " ")
            raise ValidationFailed(f"{label.capitalize()} is required.", field=name)
    if cleaned.district not in DISTRICTS:
        raise ValidationFailed(
            f"Unknown district: {cleaned.district}", field="district"
        )
    if not _PHONE_RE.match(cleaned.phone):
        raise ValidationFailed(
            f"Invalid phone number: {cleaned.phone}", field="phone"
        )
    return cleaned


def check_payment_method(method: str, total: int) -> None:
    if method not in PAYMENT_METHODS:
        raise ValidationFailed(
            f"Unknown payment method: {method}", field="payment_method"
        )
    ceiling = PAYMENT_CEILINGS.get(method)
    if ceiling is not None and total > ceiling:
        raise PaymentMethodNotAllowed(method, total, ceiling)


def _check_line_shape(lines: List[LineItem]) -> None:
    if not lines:
        raise ValidationFailed("No items in order.", field="items")
    seen = set()
    for line in lines:
        if line.qty < 1:
            raise ValidationFailed(
                f"Quantity must be at least 1 for product {line.pid}.",
                field="items",
                product_id=line.pid,
            )
        if line.pid in seen:
            raise ValidationFailed(
                f"Product {line.pid} appears more than once.",
                field="items",
                product_id=line.pid,
            )
        seen.add(line.pid)


async def validate_line_items(lines: List[LineItem]) -> List[ValidatedLine]:
    """Check each submitted line against the current catalog row."""
    _check_line_shape(lines)
    products = await get_products([line.pid for line in lines])

    validated: List[ValidatedLine] = []
    for line in lines:
        prod = products.get(line.pid)
        if prod is None:
            raise ProductNotFound(line.pid)
        if not prod.in_stock:
            raise OutOfStock(prod.pid, prod.name)
        if prod.stock_count < line.qty:
            raise InsufficientStock(prod.pid, line.qty, prod.stock_count, prod.name)
        if prod.price != line.price:
            raise PriceChanged(prod.pid, line.price, prod.price, prod.name)
        validated.append(
            ValidatedLine(
                pid=prod.pid,
                name=prod.name,
                qty=line.qty,
                price=prod.price,
                vid=prod.vid,
            )
        )
    return validated


def quote(lines: List[ValidatedLine], district: str, carrier: str) -> CheckoutQuote:
    subtotal = sum(line.line_total for line in lines)
    fee = shipping_cost(district, carrier, subtotal)
    return CheckoutQuote(
        lines=list(lines), subtotal=subtotal, shipping_cost=fee, total=subtotal + fee
    )


async def validate_checkout(request: CheckoutRequest) -> CheckoutQuote:
    """Run every pre-commit check and return the server-computed quote."""
    get_carrier(request.shipping_method)
    if request.payment_method not in PAYMENT_METHODS:
        raise ValidationFailed(
            f"Unknown payment method: {request.payment_method}",
            field="payment_method",
        )
    shipping = validate_shipping_address(request.shipping)

    lines = await validate_line_items(request.lines)
    result = quote(lines, shipping.district, request.shipping_method)

    if (
        request.client_total is not None
        and abs(request.client_total - result.total) > TOTAL_TOLERANCE
    ):
        raise TotalMismatch(request.client_total, result.total)

    check_payment_method(request.payment_method, result.total)
    return replace(result, shipping=shipping)
