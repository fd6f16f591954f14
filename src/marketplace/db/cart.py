# per-customer cart; advisory state, re-validated at checkout
from __future__ import annotations

from typing import List, Optional

from marketplace.db import models
from marketplace.db.catalog import get_product
from marketplace.db.database import connect
from marketplace.utils.errors import (
    InsufficientStock,
    InvalidQuantity,
    NotFound,
    OutOfStock,
    ProductNotFound,
)
from marketplace.utils.logger import get_logger

_logger = get_logger(__name__)


async def list_cart(cid: int) -> List[models.CartLine]:
    """Return the customer's cart lines joined with live product and vendor data.

    Nothing here is cached: price and stock are whatever the catalog says now.
    """
    async with connect() as conn:
        cur = await conn.execute(
            """
            SELECT c.item_id, c.cid, c.pid, c.qty,
                   p.name, p.price, p.image, p.stock_count, p.in_stock,
                   p.vid, COALESCE(v.name, 'Vendor') AS vendor_name
            FROM cart c
            JOIN products p ON p.pid = c.pid
            LEFT JOIN vendors v ON v.vid = p.vid
            WHERE c.cid = ?
            ORDER BY c.item_id;
            """,
            (cid,),
        )
        rows = await cur.fetchall()
        await cur.close()
    return [
        models.CartLine(
            item_id=row["item_id"],
            cid=row["cid"],
            pid=row["pid"],
            qty=row["qty"],
            name=row["name"],
            price=int(row["price"]),
            image=row["image"],
            stock_count=int(row["stock_count"]),
            in_stock=bool(row["in_stock"]),
            vid=row["vid"],
            vendor_name=row["vendor_name"],
        )
        for row in rows
    ]


def cart_subtotal(lines: List[models.CartLine]) -> int:
    return sum(line.line_total for line in lines)


async def get_cart_item_for_product(cid: int, pid: int) -> Optional[models.CartItem]:
    async with connect() as conn:
        cur = await conn.execute(
            "SELECT item_id, cid, pid, qty FROM cart WHERE cid = ? AND pid = ?;",
            (cid, pid),
        )
        row = await cur.fetchone()
        await cur.close()
    if not row:
        return None
    return models.CartItem(item_id=row[0], cid=row[1], pid=row[2], qty=row[3])


async def add_item(cid: int, pid: int, qty: int = 1) -> models.CartItem:
    """
    Add ``qty`` of a product to the cart. Repeated adds of the same product
    increase the quantity on the existing row. The new total may not exceed
    current stock.
    """
    if qty < 1:
        raise InvalidQuantity(qty)
    async with connect() as conn:
        prod = await get_product(pid, conn)
        if prod is None:
            raise ProductNotFound(pid)
        if not prod.in_stock:
            raise OutOfStock(pid, prod.name)

        cur = await conn.execute(
            "SELECT qty FROM cart WHERE cid = ? AND pid = ?;", (cid, pid)
        )
        row = await cur.fetchone()
        await cur.close()
        existing = int(row[0]) if row else 0
        if prod.stock_count < existing + qty:
            raise InsufficientStock(pid, existing + qty, prod.stock_count, prod.name)

        cur = await conn.execute(
            """
            INSERT INTO cart (cid, pid, qty) VALUES (?, ?, ?)
            ON CONFLICT (cid, pid) DO UPDATE SET qty = qty + excluded.qty
            RETURNING item_id, cid, pid, qty;
            """,
            (cid, pid, qty),
        )
        row = await cur.fetchone()
        await cur.close()
    _logger.debug(f"cart {cid}: product {pid} -> qty {row[3]}")
    return models.CartItem(item_id=row[0], cid=row[1], pid=row[2], qty=row[3])


async def update_quantity(cid: int, item_id: int, qty: int) -> models.CartItem:
    """Set the quantity of a cart row. Use remove_item to drop it."""
    if qty < 1:
        raise InvalidQuantity(qty)
    async with connect() as conn:
        cur = await conn.execute(
            """
            SELECT c.pid, p.name, p.stock_count
            FROM cart c JOIN products p ON p.pid = c.pid
            WHERE c.item_id = ? AND c.cid = ?;
            """,
            (item_id, cid),
        )
        row = await cur.fetchone()
        await cur.close()
        if not row:
            raise NotFound(f"Cart item not found: {item_id}", item_id=item_id)
        pid, name, stock = row[0], row[1], int(row[2])
        if qty > stock:
            raise InsufficientStock(pid, qty, stock, name)

        await conn.execute(
            "UPDATE cart SET qty = ? WHERE item_id = ? AND cid = ?;",
            (qty, item_id, cid),
        )
    return models.CartItem(item_id=item_id, cid=cid, pid=pid, qty=qty)


async def remove_item(cid: int, item_id: int) -> None:
    """Remove a single row from the customer's cart. Missing rows are ignored."""
    async with connect() as conn:
        await conn.execute(
            "DELETE FROM cart WHERE item_id = ? AND cid = ?;", (item_id, cid)
        )


async def clear(cid: int) -> None:
    """Remove all items from the customer's cart."""
    async with connect() as conn:
        await conn.execute("DELETE FROM cart WHERE cid = ?;", (cid,))
