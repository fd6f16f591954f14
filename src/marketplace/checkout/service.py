# checkout entry point: validate against the catalog, then commit the order
from __future__ import annotations

from dataclasses import dataclass
from typing import List

from marketplace.checkout.shipping import get_carrier
from marketplace.checkout.validator import CheckoutRequest, validate_checkout
from marketplace.db import orders
from marketplace.db.cart import list_cart
from marketplace.db.models import LineItem, Order
from marketplace.utils.logger import get_logger

_logger = get_logger(__name__)


@dataclass(frozen=True)
class OrderSummary:
    ono: int
    order_number: str
    status: str
    subtotal: int
    shipping_cost: int
    total: int
    shipping_method: str
    payment_method: str


async def lines_from_cart(cid: int) -> List[LineItem]:
    """Checkout lines built from the cart, carrying the prices the customer saw."""
    return [
        LineItem(pid=line.pid, qty=line.qty, price=line.price)
        for line in await list_cart(cid)
    ]


async def submit_checkout(cid: int, request: CheckoutRequest) -> OrderSummary:
    """
    Validate the request against current catalog truth and place the order.

    A request carrying an idempotency key that already produced an order in
    the window gets that order back before any validation, since the first
    attempt may have taken the last units or outlived a price.

    Raises a MarketError subclass naming the offending line or field when the
    checkout cannot go through; in that case nothing was written and the
    cart is exactly as it was.
    """
    if request.idempotency_key:
        existing = await orders.find_replay(cid, request.idempotency_key)
        if existing is not None:
            _logger.info(
                f"Checkout for customer {cid} repeated with key "
                f"{request.idempotency_key}, returning {existing.order_number}"
            )
            return _summarize(existing)

    quote = await validate_checkout(request)
    _logger.debug(
        f"Checkout for customer {cid} validated: subtotal {quote.subtotal}, "
        f"shipping {quote.shipping_cost}, total {quote.total}"
    )
    order = await orders.place_order(
        cid,
        quote.lines,
        quote.shipping,
        get_carrier(request.shipping_method).code,
        request.payment_method,
        quote.shipping_cost,
        idempotency_key=request.idempotency_key,
    )
    return _summarize(order)


def _summarize(order: Order) -> OrderSummary:
    return OrderSummary(
        ono=order.ono,
        order_number=order.order_number,
        status=order.status.value,
        subtotal=order.subtotal,
        shipping_cost=order.shipping_cost,
        total=order.total_amount,
        shipping_method=order.shipping_method,
        payment_method=order.payment_method,
    )
