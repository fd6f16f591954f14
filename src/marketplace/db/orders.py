# order creation (the one writer of stock) and order history queries
from __future__ import annotations

import asyncio
from datetime import datetime, timedelta
from sqlite3 import Row
from typing import List, Optional, Tuple

import aiosqlite

from marketplace.db import models
from marketplace.db.catalog import get_product
from marketplace.db.database import connect, transaction
from marketplace.utils.config import settings
from marketplace.utils.errors import (
    InsufficientStock,
    InvalidStatusTransition,
    NotFound,
    PriceChanged,
    ProductNotFound,
    StorageUnavailable,
    TransactionConflict,
    ValidationFailed,
)
from marketplace.utils.logger import get_logger
from marketplace.utils.pure import from_db_ts, to_db_ts, utc_now

_logger = get_logger(__name__)

ORDER_NUMBER_PREFIX = "WH"
ORDER_NUMBER_WIDTH = 6

TX_TIMEOUT = settings.tx_timeout
IDEMPOTENCY_WINDOW = timedelta(seconds=settings.idempotency_window)
MAX_ATTEMPTS = 2
RETRY_BACKOFF = 0.05

ORDER_COLUMNS = """
    ono, order_number, cid, status, subtotal, shipping_cost, total_amount,
    ship_full_name, ship_phone, ship_district, ship_address, ship_postal_code,
    shipping_method, payment_method, idempotency_key, created_at, updated_at
"""


def format_order_number(seq: int) -> str:
    return f"{ORDER_NUMBER_PREFIX}{seq:0{ORDER_NUMBER_WIDTH}d}"


def row_to_order(row: Row) -> models.Order:
    return models.Order(
        ono=row["ono"],
        order_number=row["order_number"],
        cid=row["cid"],
        status=models.OrderStatus(row["status"]),
        subtotal=int(row["subtotal"]),
        shipping_cost=int(row["shipping_cost"]),
        total_amount=int(row["total_amount"]),
        shipping=models.ShippingAddress(
            full_name=row["ship_full_name"],
            phone=row["ship_phone"],
            district=row["ship_district"],
            address=row["ship_address"],
            postal_code=row["ship_postal_code"],
        ),
        shipping_method=row["shipping_method"],
        payment_method=row["payment_method"],
        created_at=from_db_ts(row["created_at"]),
        updated_at=from_db_ts(row["updated_at"]),
        idempotency_key=row["idempotency_key"],
    )


# ---------------------------
# Order Transaction Processor
# ---------------------------


async def _next_order_number(conn: aiosqlite.Connection) -> str:
    """Increment-and-read the order sequence; only valid inside a transaction."""
    cur = await conn.execute(
        """
        INSERT INTO sequences (name, value) VALUES ('order_number', 1)
        ON CONFLICT (name) DO UPDATE SET value = value + 1
        RETURNING value;
        """
    )
    row = await cur.fetchone()
    await cur.close()
    return format_order_number(int(row[0]))


async def _find_replay(
    conn: aiosqlite.Connection, cid: int, key: str, now: datetime
) -> Optional[models.Order]:
    cutoff = to_db_ts(now - IDEMPOTENCY_WINDOW)
    cur = await conn.execute(
        f"""
        SELECT {ORDER_COLUMNS}
        FROM orders
        WHERE cid = ? AND idempotency_key = ? AND created_at >= ?
        ORDER BY ono DESC
        LIMIT 1;
        """,
        (cid, key, cutoff),
    )
    row = await cur.fetchone()
    await cur.close()
    return row_to_order(row) if row else None


async def find_replay(
    cid: int, key: str, now: Optional[datetime] = None
) -> Optional[models.Order]:
    """The order this customer already placed with ``key`` inside the window, if any."""
    async with connect() as conn:
        return await _find_replay(conn, cid, key, now or utc_now())


async def _decrement_stock(
    conn: aiosqlite.Connection, line: models.ValidatedLine
) -> None:
    """Take ``line.qty`` units off the product, or raise and leave it untouched.

    The WHERE clause is the oversell guard: the row only changes if enough
    stock remains and the price is still the one the customer confirmed.
    """
    cur = await conn.execute(
        """
        UPDATE products
        SET stock_count = stock_count - ?,
            in_stock = (stock_count - ?) > 0
        WHERE pid = ? AND stock_count >= ? AND price = ?;
        """,
        (line.qty, line.qty, line.pid, line.qty, line.price),
    )
    changed = cur.rowcount
    await cur.close()
    if changed == 1:
        return

    prod = await get_product(line.pid, conn)
    if prod is None:
        raise ProductNotFound(line.pid)
    if prod.price != line.price:
        raise PriceChanged(prod.pid, line.price, prod.price, prod.name)
    raise InsufficientStock(prod.pid, line.qty, prod.stock_count, prod.name)


async def _place_order_once(
    cid: int,
    lines: List[models.ValidatedLine],
    shipping: models.ShippingAddress,
    shipping_method: str,
    payment_method: str,
    shipping_cost: int,
    idempotency_key: Optional[str],
    now: datetime,
) -> models.Order:
    async with connect() as conn:
        async with transaction(conn):
            # deadline covers the work only; COMMIT is never cut off
            async with asyncio.timeout(TX_TIMEOUT):
                if idempotency_key:
                    existing = await _find_replay(conn, cid, idempotency_key, now)
                    if existing is not None:
                        _logger.info(
                            f"Duplicate checkout for customer {cid} "
                            f"(key {idempotency_key}), returning {existing.order_number}"
                        )
                        return existing

                order_number = await _next_order_number(conn)
                subtotal = sum(line.line_total for line in lines)
                total = subtotal + shipping_cost
                ts = to_db_ts(now)

                cur = await conn.execute(
                    """
                    INSERT INTO orders (
                        order_number, cid, status, subtotal, shipping_cost, total_amount,
                        ship_full_name, ship_phone, ship_district, ship_address,
                        ship_postal_code, shipping_method, payment_method,
                        idempotency_key, created_at, updated_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    RETURNING ono;
                    """,
                    (
                        order_number,
                        cid,
                        models.OrderStatus.PENDING.value,
                        subtotal,
                        shipping_cost,
                        total,
                        shipping.full_name,
                        shipping.phone,
                        shipping.district,
                        shipping.address,
                        shipping.postal_code,
                        shipping_method,
                        payment_method,
                        idempotency_key,
                        ts,
                        ts,
                    ),
                )
                ono = (await cur.fetchone())[0]
                await cur.close()

                for line_no, line in enumerate(lines, start=1):
                    await _decrement_stock(conn, line)
                    await conn.execute(
                        "INSERT INTO order_items (ono, line_no, pid, qty, price) VALUES (?, ?, ?, ?, ?);",
                        (ono, line_no, line.pid, line.qty, line.price),
                    )

                await conn.execute("DELETE FROM cart WHERE cid = ?;", (cid,))

    _logger.info(
        f"Order {order_number} placed by customer {cid}: "
        f"{len(lines)} line(s), total {total}"
    )
    return models.Order(
        ono=ono,
        order_number=order_number,
        cid=cid,
        status=models.OrderStatus.PENDING,
        subtotal=subtotal,
        shipping_cost=shipping_cost,
        total_amount=total,
        shipping=shipping,
        shipping_method=shipping_method,
        payment_method=payment_method,
        created_at=from_db_ts(ts),
        updated_at=from_db_ts(ts),
        idempotency_key=idempotency_key,
    )


async def place_order(
    cid: int,
    lines: List[models.ValidatedLine],
    shipping: models.ShippingAddress,
    shipping_method: str,
    payment_method: str,
    shipping_cost: int,
    idempotency_key: Optional[str] = None,
    now: Optional[datetime] = None,
) -> models.Order:
    """
    Turn validated lines into a PENDING order in one transaction: allocate the
    order number, insert the order and its price-snapshot items, take the
    stock off each product with a guarded update, and empty the cart.

    If any step fails nothing is kept: no order, no stock change, the cart is
    untouched. Lock contention is retried once before surfacing.
    """
    if not lines:
        raise ValidationFailed("No items in order.", field="items")
    if shipping_cost < 0:
        raise ValidationFailed("Shipping cost cannot be negative.", field="shipping_cost")
    now = now or utc_now()

    attempt = 0
    while True:
        attempt += 1
        try:
            return await _place_order_once(
                cid,
                lines,
                shipping,
                shipping_method,
                payment_method,
                shipping_cost,
                idempotency_key,
                now,
            )
        except TransactionConflict:
            if attempt >= MAX_ATTEMPTS:
                _logger.warning(f"Checkout for customer {cid} still locked, giving up")
                raise
            _logger.warning(f"Checkout for customer {cid} hit a locked database, retrying")
            await asyncio.sleep(RETRY_BACKOFF * attempt)
        except TimeoutError:
            # raised before COMMIT, so the transaction was rolled back
            _logger.error(f"Checkout for customer {cid} timed out after {TX_TIMEOUT}s")
            raise StorageUnavailable("Checkout timed out, please try again.") from None
        except InsufficientStock as exc:
            _logger.info(
                f"Checkout for customer {cid} rejected at commit: "
                f"product {exc.product_id} has {exc.available} left"
            )
            raise


async def update_order_status(
    ono: int, new_status: models.OrderStatus, now: Optional[datetime] = None
) -> models.Order:
    """Move an order along its lifecycle; used by vendor/admin tooling only."""
    new_status = models.OrderStatus(new_status)
    ts = to_db_ts(now or utc_now())
    async with connect() as conn:
        async with transaction(conn):
            cur = await conn.execute(
                f"SELECT {ORDER_COLUMNS} FROM orders WHERE ono = ?;", (ono,)
            )
            row = await cur.fetchone()
            await cur.close()
            if not row:
                raise NotFound(f"Order not found: {ono}", order_id=ono)
            current = models.OrderStatus(row["status"])
            if not current.can_transition_to(new_status):
                raise InvalidStatusTransition(current.value, new_status.value)
            await conn.execute(
                "UPDATE orders SET status = ?, updated_at = ? WHERE ono = ? AND status = ?;",
                (new_status.value, ts, ono, current.value),
            )
            cur = await conn.execute(
                f"SELECT {ORDER_COLUMNS} FROM orders WHERE ono = ?;", (ono,)
            )
            row = await cur.fetchone()
            await cur.close()
    _logger.info(f"Order {row['order_number']}: {current.value} -> {new_status.value}")
    return row_to_order(row)


# ---------------------------
# Order queries
# ---------------------------


def _status_clause(status: Optional[models.OrderStatus]) -> Tuple[str, tuple]:
    if status is None:
        return "", ()
    return " AND status = ?", (models.OrderStatus(status).value,)


async def _page_of_orders(
    where: str, params: tuple, page: int, page_size: int
) -> Tuple[List[models.Order], int]:
    if page_size < 1:
        raise ValidationFailed("Page size must be at least 1.", field="page_size")
    async with connect() as conn:
        cur = await conn.execute(f"SELECT COUNT(*) FROM orders WHERE {where};", params)
        total = (await cur.fetchone())[0]
        await cur.close()
        offset = max(page - 1, 0) * page_size
        cur = await conn.execute(
            f"""
            SELECT {ORDER_COLUMNS}
            FROM orders
            WHERE {where}
            ORDER BY created_at DESC, ono DESC
            LIMIT ? OFFSET ?;
            """,
            params + (page_size, offset),
        )
        rows = await cur.fetchall()
        await cur.close()
    return [row_to_order(row) for row in rows], int(total)


async def list_orders(
    cid: int,
    page: int,
    page_size: int = 5,
    status: Optional[models.OrderStatus] = None,
) -> Tuple[List[models.Order], int]:
    """
    List a customer's orders newest first, paginated, optionally by status.
    Return (orders_for_page, total_count).
    """
    clause, extra = _status_clause(status)
    return await _page_of_orders("cid = ?" + clause, (cid,) + extra, page, page_size)


async def list_vendor_orders(
    vid: int,
    page: int,
    page_size: int = 5,
    status: Optional[models.OrderStatus] = None,
) -> Tuple[List[models.Order], int]:
    """Orders containing at least one of the vendor's products, newest first."""
    clause, extra = _status_clause(status)
    where = (
        "ono IN (SELECT oi.ono FROM order_items oi "
        "JOIN products p ON p.pid = oi.pid WHERE p.vid = ?)" + clause
    )
    return await _page_of_orders(where, (vid,) + extra, page, page_size)


async def get_order_detail(
    ono: int, cid: Optional[int] = None
) -> Tuple[Optional[models.Order], List[models.OrderItem]]:
    """
    Return (order, items) for a specific order, or (None, []) if it does not
    exist or, when ``cid`` is given, belongs to someone else.
    """
    async with connect() as conn:
        cur = await conn.execute(
            f"SELECT {ORDER_COLUMNS} FROM orders WHERE ono = ?;", (ono,)
        )
        order_row = await cur.fetchone()
        await cur.close()
        if not order_row or (cid is not None and order_row["cid"] != cid):
            return None, []
        cur = await conn.execute(
            "SELECT ono, line_no, pid, qty, price FROM order_items WHERE ono = ? ORDER BY line_no;",
            (ono,),
        )
        item_rows = await cur.fetchall()
        await cur.close()
    items = [
        models.OrderItem(
            ono=row[0], line_no=row[1], pid=row[2], qty=row[3], price=int(row[4])
        )
        for row in item_rows
    ]
    return row_to_order(order_row), items


async def compute_order_total(ono: int) -> int:
    """Sum of the frozen line prices of an order (its subtotal)."""
    async with connect() as conn:
        cur = await conn.execute(
            "SELECT COALESCE(SUM(qty * price), 0) FROM order_items WHERE ono = ?;",
            (ono,),
        )
        row = await cur.fetchone()
        await cur.close()
    return int(row[0]) if row and row[0] is not None else 0
