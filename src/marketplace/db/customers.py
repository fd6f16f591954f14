# identity lookups; the core only ever trusts a cid resolved here
from typing import Optional

from marketplace.db import models
from marketplace.db.database import connect


async def login(cid: int, pwd: str) -> Optional[models.Customer]:
    """Return the Customer if cid/pwd match; otherwise None."""
    async with connect() as conn:
        cur = await conn.execute(
            "SELECT cid, name, email FROM customers WHERE cid = ? AND pwd = ?;",
            (cid, pwd),
        )
        row = await cur.fetchone()
        await cur.close()
    if not row:
        return None
    return models.Customer(cid=int(row[0]), name=row[1], email=row[2])


async def get_customer(cid: int) -> Optional[models.Customer]:
    """Return the Customer row for a given cid, or None."""
    async with connect() as conn:
        cur = await conn.execute(
            "SELECT cid, name, email FROM customers WHERE cid = ?;", (cid,)
        )
        row = await cur.fetchone()
        await cur.close()
    if not row:
        return None
    return models.Customer(cid=int(row[0]), name=row[1], email=row[2])
