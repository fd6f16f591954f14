# provide dataclass models
# money fields are integer minor currency units

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import FrozenSet, Mapping


@dataclass(frozen=True)
class Customer:
    cid: int
    name: str
    email: str


@dataclass(frozen=True)
class Product:
    pid: int
    vid: int
    name: str
    category: str
    price: int
    stock_count: int
    in_stock: bool
    descr: str
    image: str


@dataclass(frozen=True)
class CartItem:
    item_id: int
    cid: int
    pid: int
    qty: int


@dataclass(frozen=True)
class CartLine:
    """A cart row joined with the live product and vendor it points at."""

    item_id: int
    cid: int
    pid: int
    qty: int
    name: str
    price: int
    image: str
    stock_count: int
    in_stock: bool
    vid: int
    vendor_name: str

    @property
    def line_total(self) -> int:
        return self.price * self.qty


class OrderStatus(str, Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    PROCESSING = "PROCESSING"
    SHIPPED = "SHIPPED"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"

    def can_transition_to(self, new: "OrderStatus") -> bool:
        return new in ORDER_TRANSITIONS[self]

    @property
    def is_terminal(self) -> bool:
        return not ORDER_TRANSITIONS[self]


ORDER_TRANSITIONS: Mapping[OrderStatus, FrozenSet[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.CONFIRMED, OrderStatus.CANCELLED}),
    OrderStatus.CONFIRMED: frozenset({OrderStatus.PROCESSING, OrderStatus.CANCELLED}),
    OrderStatus.PROCESSING: frozenset({OrderStatus.SHIPPED, OrderStatus.CANCELLED}),
    OrderStatus.SHIPPED: frozenset({OrderStatus.DELIVERED}),
    OrderStatus.DELIVERED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}


@dataclass(frozen=True)
class ShippingAddress:
    full_name: str
    phone: str
    district: str
    address: str
    postal_code: str = ""


@dataclass(frozen=True)
class Order:
    ono: int
    order_number: str
    cid: int
    status: OrderStatus
    subtotal: int
    shipping_cost: int
    total_amount: int
    shipping: ShippingAddress
    shipping_method: str
    payment_method: str
    created_at: datetime
    updated_at: datetime
    idempotency_key: str | None = None


@dataclass(frozen=True)
class OrderItem:
    ono: int
    line_no: int
    pid: int
    qty: int
    price: int  # unit price at time of order

    @property
    def line_total(self) -> int:
        return self.price * self.qty


@dataclass(frozen=True)
class LineItem:
    """A line as the customer submitted it, with the price they were shown."""

    pid: int
    qty: int
    price: int


@dataclass(frozen=True)
class ValidatedLine:
    """A line confirmed against the catalog; price is the catalog price."""

    pid: int
    name: str
    qty: int
    price: int
    vid: int

    @property
    def line_total(self) -> int:
        return self.price * self.qty
