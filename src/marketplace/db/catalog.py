# read-only access to the product catalog
from __future__ import annotations

from sqlite3 import Row
from typing import List, Optional, Tuple

import aiosqlite

from marketplace.db import models
from marketplace.db.database import connect

PRODUCT_COLUMNS = "pid, vid, name, category, price, stock_count, in_stock, descr, image"


def row_to_product(row: Row) -> models.Product:
    return models.Product(
        pid=row["pid"],
        vid=row["vid"],
        name=row["name"],
        category=row["category"],
        price=int(row["price"]),
        stock_count=int(row["stock_count"]),
        in_stock=bool(row["in_stock"]),
        descr=row["descr"],
        image=row["image"],
    )


async def _fetch_product(
    conn: aiosqlite.Connection, pid: int
) -> Optional[models.Product]:
    cur = await conn.execute(
        f"SELECT {PRODUCT_COLUMNS} FROM products WHERE pid = ?;", (pid,)
    )
    row = await cur.fetchone()
    await cur.close()
    return row_to_product(row) if row else None


async def get_product(
    pid: int, conn: Optional[aiosqlite.Connection] = None
) -> Optional[models.Product]:
    """Fetch a product by pid.

    Pass ``conn`` to read through an open transaction, so the row reflects
    what that transaction sees rather than a fresh connection's view.
    """
    if conn is not None:
        return await _fetch_product(conn, pid)
    async with connect() as own:
        return await _fetch_product(own, pid)


async def get_products(pids: List[int]) -> dict[int, models.Product]:
    """Fetch several products in one query, keyed by pid. Missing pids are absent."""
    if not pids:
        return {}
    marks = ", ".join("?" for _ in pids)
    async with connect() as conn:
        cur = await conn.execute(
            f"SELECT {PRODUCT_COLUMNS} FROM products WHERE pid IN ({marks});",
            tuple(pids),
        )
        rows = await cur.fetchall()
        await cur.close()
    return {row["pid"]: row_to_product(row) for row in rows}


async def search_products(
    keyword: str, page: int, page_size: int = 5
) -> Tuple[List[models.Product], int]:
    """
    Case-insensitive search over name/descr/category.
    A query with spaces matches the whole phrase or any of its words.
    Empty query lists the whole catalog. Returns (products for page, total_count).
    """
    phrase = (keyword or "").strip().lower()
    terms: List[str] = []
    if phrase:
        terms.append(phrase)
        for w in phrase.split():
            if w not in terms:
                terms.append(w)

    if terms:
        cond = " OR ".join(
            ["(LOWER(name) LIKE ? OR LOWER(descr) LIKE ? OR LOWER(category) LIKE ?)"]
            * len(terms)
        )
        params: List[str | int] = []
        for t in terms:
            like = f"%{t}%"
            params.extend([like, like, like])
    else:
        cond = "1 = 1"
        params = []

    async with connect() as conn:
        cur = await conn.execute(
            f"SELECT COUNT(*) FROM products WHERE {cond};", tuple(params)
        )
        total = (await cur.fetchone())[0]
        await cur.close()

        offset = max(page - 1, 0) * page_size
        cur = await conn.execute(
            f"""
            SELECT {PRODUCT_COLUMNS}
            FROM products
            WHERE {cond}
            ORDER BY pid
            LIMIT ? OFFSET ?;
            """,
            tuple(params + [page_size, offset]),
        )
        rows = await cur.fetchall()
        await cur.close()

    return [row_to_product(row) for row in rows], int(total)


async def get_vendor_name(vid: int) -> Optional[str]:
    async with connect() as conn:
        cur = await conn.execute("SELECT name FROM vendors WHERE vid = ?;", (vid,))
        row = await cur.fetchone()
        await cur.close()
    return row[0] if row else None
