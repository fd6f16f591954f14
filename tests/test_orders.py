import asyncio
import unittest
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone

from market_case import (
    ALICE,
    BASKET,
    BLANTYRE_TECH,
    BOB,
    CHAMBO,
    CHIKONDI,
    JAM,
    LANTERN,
    LILONGWE_CRAFTS,
    SPEAKER,
    ZOMBA_FRESH,
    MarketTestCase,
    make_address,
)

from marketplace.db import cart, orders
from marketplace.db import database as db_database
from marketplace.db.models import OrderStatus, ValidatedLine
from marketplace.utils.errors import (
    InsufficientStock,
    InvalidStatusTransition,
    NotFound,
    PriceChanged,
    StorageUnavailable,
    TransactionConflict,
    ValidationFailed,
)

T0 = datetime(2025, 11, 1, 12, 0, 0, tzinfo=timezone.utc)

NAMES = {BASKET: "Woven Basket", JAM: "Zomba Strawberry Jam", CHAMBO: "Chambo Fillet",
         LANTERN: "Solar Lantern", SPEAKER: "Bluetooth Speaker"}
PRICES = {BASKET: 4500, JAM: 1200, CHAMBO: 6000, LANTERN: 15000, SPEAKER: 22000}
VENDORS = {BASKET: LILONGWE_CRAFTS, JAM: ZOMBA_FRESH, CHAMBO: ZOMBA_FRESH,
           LANTERN: BLANTYRE_TECH, SPEAKER: BLANTYRE_TECH}


def line(pid: int, qty: int, price=None) -> ValidatedLine:
    return ValidatedLine(
        pid=pid,
        name=NAMES[pid],
        qty=qty,
        price=PRICES[pid] if price is None else price,
        vid=VENDORS[pid],
    )


async def place(cid, lines, shipping_cost=1000, **kwargs):
    return await orders.place_order(
        cid,
        lines,
        make_address(),
        "speed-courier",
        "card",
        shipping_cost,
        **kwargs,
    )


class OrdersTestCase(MarketTestCase):
    # ---------- Placing orders ----------

    async def test_place_order_happy_path(self):
        order = await place(ALICE, [line(BASKET, 1), line(JAM, 2)], now=T0)
        self.assertEqual(order.order_number, "WH000001")
        self.assertEqual(order.status, OrderStatus.PENDING)
        self.assertEqual(order.subtotal, 4500 + 2400)
        self.assertEqual(order.total_amount, 6900 + 1000)
        self.assertEqual(order.created_at, T0)

        self.assertEqual(await self.stock_of(BASKET), 11)
        self.assertEqual(await self.stock_of(JAM), 38)
        self.assertEqual(await cart.list_cart(ALICE), [])

        stored, items = await orders.get_order_detail(order.ono, ALICE)
        self.assertEqual(stored, order)
        self.assertEqual([(i.line_no, i.pid, i.qty, i.price) for i in items],
                         [(1, BASKET, 1, 4500), (2, JAM, 2, 1200)])
        self.assertEqual(await orders.compute_order_total(order.ono), 6900)

    async def test_order_numbers_are_sequential(self):
        numbers = []
        for i in range(3):
            order = await place(BOB, [line(JAM, 1)], now=T0 + timedelta(minutes=i))
            numbers.append(order.order_number)
        self.assertEqual(numbers, ["WH000001", "WH000002", "WH000003"])
        self.assertEqual(orders.format_order_number(1234567), "WH1234567")

    async def test_selling_the_last_item_marks_out_of_stock(self):
        await place(BOB, [line(LANTERN, 3)], shipping_cost=0)
        self.assertEqual(await self.stock_of(LANTERN), 0)
        self.assertEqual(
            await self.scalar("SELECT in_stock FROM products WHERE pid = ?;", (LANTERN,)),
            0,
        )

    async def test_failure_rolls_back_everything(self):
        # second line cannot be filled: nothing from the first line may stick
        with self.assertRaises(InsufficientStock) as ctx:
            await place(ALICE, [line(BASKET, 1), line(LANTERN, 4)])
        self.assertEqual(ctx.exception.product_id, LANTERN)
        self.assertEqual(ctx.exception.available, 3)

        self.assertEqual(await self.stock_of(BASKET), 12)
        self.assertEqual(await self.stock_of(LANTERN), 3)
        self.assertEqual(await self.scalar("SELECT COUNT(*) FROM orders;"), 0)
        self.assertEqual(await self.scalar("SELECT COUNT(*) FROM order_items;"), 0)
        self.assertEqual(len(await cart.list_cart(ALICE)), 2)

        # the rolled back attempt did not burn an order number
        order = await place(ALICE, [line(BASKET, 1)])
        self.assertEqual(order.order_number, "WH000001")

    async def test_price_guard_inside_transaction(self):
        # validated at 6000, vendor repriced before commit
        await self.set_product(CHAMBO, price=6500)
        with self.assertRaises(PriceChanged) as ctx:
            await place(BOB, [line(CHAMBO, 1)])
        self.assertEqual(ctx.exception.actual, 6500)
        self.assertEqual(await self.stock_of(CHAMBO), 5)

    async def test_place_order_input_checks(self):
        with self.assertRaises(ValidationFailed):
            await place(ALICE, [])
        with self.assertRaises(ValidationFailed):
            await place(ALICE, [line(BASKET, 1)], shipping_cost=-1)

    async def test_order_price_survives_catalog_change(self):
        order = await place(BOB, [line(SPEAKER, 1)], shipping_cost=0)
        await self.set_product(SPEAKER, price=1)

        stored, items = await orders.get_order_detail(order.ono)
        self.assertEqual(stored.total_amount, 22000)
        self.assertEqual(items[0].price, 22000)
        self.assertEqual(await orders.compute_order_total(order.ono), 22000)

    # ---------- Concurrency ----------

    async def test_last_unit_race_has_one_winner(self):
        await self.set_product(LANTERN, stock=1)
        await cart.add_item(BOB, LANTERN, 1)
        await cart.add_item(CHIKONDI, LANTERN, 1)

        results = await asyncio.gather(
            place(BOB, [line(LANTERN, 1)], shipping_cost=0),
            place(CHIKONDI, [line(LANTERN, 1)], shipping_cost=0),
            return_exceptions=True,
        )
        winners = [r for r in results if not isinstance(r, BaseException)]
        losers = [r for r in results if isinstance(r, BaseException)]
        self.assertEqual(len(winners), 1)
        self.assertEqual(len(losers), 1)
        self.assertIsInstance(losers[0], InsufficientStock)
        self.assertEqual(losers[0].available, 0)

        self.assertEqual(await self.stock_of(LANTERN), 0)
        self.assertEqual(await self.scalar("SELECT COUNT(*) FROM orders;"), 1)

        # the loser still has the item in their cart
        loser = CHIKONDI if winners[0].cid == BOB else BOB
        self.assertEqual([c.pid for c in await cart.list_cart(loser)], [LANTERN])
        self.assertEqual(await cart.list_cart(winners[0].cid), [])

    async def test_concurrent_orders_never_oversell(self):
        # 5 units, 8 buyers of one each
        buyers = [ALICE, BOB, CHIKONDI] * 3
        results = await asyncio.gather(
            *(place(cid, [line(CHAMBO, 1)]) for cid in buyers[:8]),
            return_exceptions=True,
        )
        placed = [r for r in results if not isinstance(r, BaseException)]
        failed = [r for r in results if isinstance(r, BaseException)]
        self.assertEqual(len(placed), 5)
        self.assertTrue(all(isinstance(e, InsufficientStock) for e in failed))
        self.assertEqual(await self.stock_of(CHAMBO), 0)
        self.assertEqual(
            len({o.order_number for o in placed}), 5, "order numbers must be unique"
        )
        self.assertEqual(
            await self.scalar("SELECT COALESCE(SUM(qty), 0) FROM order_items;"), 5
        )

    async def test_lock_contention_is_retried_then_surfaced(self):
        calls = []

        async def always_locked(*args, **kwargs):
            calls.append(args)
            raise TransactionConflict()

        orig = orders._place_order_once
        orig_backoff = orders.RETRY_BACKOFF
        try:
            orders._place_order_once = always_locked  # type: ignore
            orders.RETRY_BACKOFF = 0
            with self.assertRaises(TransactionConflict) as ctx:
                await place(ALICE, [line(BASKET, 1)])
        finally:
            orders._place_order_once = orig  # restore
            orders.RETRY_BACKOFF = orig_backoff
        self.assertEqual(len(calls), orders.MAX_ATTEMPTS)
        self.assertTrue(ctx.exception.retryable)

    async def test_lock_contention_recovers_on_retry(self):
        attempts = []
        orig = orders._place_order_once

        async def locked_once(*args, **kwargs):
            attempts.append(1)
            if len(attempts) == 1:
                raise TransactionConflict()
            return await orig(*args, **kwargs)

        try:
            orders._place_order_once = locked_once  # type: ignore
            order = await place(ALICE, [line(BASKET, 1)])
        finally:
            orders._place_order_once = orig  # restore
        self.assertEqual(len(attempts), 2)
        self.assertEqual(order.order_number, "WH000001")

    async def test_held_write_lock_maps_to_conflict(self):
        orig_timeout = db_database.BUSY_TIMEOUT
        db_database.BUSY_TIMEOUT = 0.1
        try:
            async with db_database.connect() as holder:
                await holder.execute("BEGIN IMMEDIATE;")
                try:
                    async with db_database.connect() as conn:
                        with self.assertRaises(TransactionConflict):
                            async with db_database.transaction(conn):
                                pass
                finally:
                    await holder.execute("ROLLBACK;")
        finally:
            db_database.BUSY_TIMEOUT = orig_timeout

    async def test_timeout_before_commit_rolls_back(self):
        orig_decrement = orders._decrement_stock
        orig_timeout = orders.TX_TIMEOUT

        async def slow_decrement(conn, validated):
            await asyncio.sleep(1)
            await orig_decrement(conn, validated)

        try:
            orders._decrement_stock = slow_decrement  # type: ignore
            orders.TX_TIMEOUT = 0.1
            with self.assertRaises(StorageUnavailable) as ctx:
                await place(ALICE, [line(BASKET, 1)])
        finally:
            orders._decrement_stock = orig_decrement  # restore
            orders.TX_TIMEOUT = orig_timeout
        self.assertTrue(ctx.exception.retryable)

        self.assertEqual(await self.stock_of(BASKET), 12)
        self.assertEqual(await self.scalar("SELECT COUNT(*) FROM orders;"), 0)
        self.assertEqual(len(await cart.list_cart(ALICE)), 2)

    async def test_slow_commit_is_not_reported_as_failure(self):
        orig_transaction = orders.transaction
        orig_timeout = orders.TX_TIMEOUT

        @asynccontextmanager
        async def slow_to_commit(conn):
            async with orig_transaction(conn):
                yield conn
                # body finished; COMMIT runs after this pause
                await asyncio.sleep(0.3)

        try:
            orders.transaction = slow_to_commit  # type: ignore
            orders.TX_TIMEOUT = 0.1
            order = await place(ALICE, [line(BASKET, 1)])
        finally:
            orders.transaction = orig_transaction  # restore
            orders.TX_TIMEOUT = orig_timeout

        stored, _ = await orders.get_order_detail(order.ono, ALICE)
        self.assertEqual(stored.order_number, order.order_number)
        self.assertEqual(await self.stock_of(BASKET), 11)

    # ---------- Idempotency ----------

    async def test_idempotency_key_replays_order(self):
        first = await place(ALICE, [line(BASKET, 1)], idempotency_key="k-1", now=T0)
        again = await place(
            ALICE, [line(BASKET, 1)], idempotency_key="k-1",
            now=T0 + timedelta(minutes=5),
        )
        self.assertEqual(again.ono, first.ono)
        self.assertEqual(again.order_number, first.order_number)
        self.assertEqual(await self.stock_of(BASKET), 11)
        self.assertEqual(await self.scalar("SELECT COUNT(*) FROM orders;"), 1)

        # same key from another customer is a different order
        other = await place(BOB, [line(BASKET, 1)], idempotency_key="k-1", now=T0)
        self.assertNotEqual(other.ono, first.ono)

    async def test_idempotency_window_expires(self):
        first = await place(ALICE, [line(JAM, 1)], idempotency_key="k-2", now=T0)
        later = await place(
            ALICE, [line(JAM, 1)], idempotency_key="k-2",
            now=T0 + orders.IDEMPOTENCY_WINDOW + timedelta(seconds=1),
        )
        self.assertNotEqual(later.ono, first.ono)
        self.assertEqual(await self.stock_of(JAM), 38)

    # ---------- Status ----------

    async def test_status_transitions(self):
        order = await place(ALICE, [line(BASKET, 1)], now=T0)
        later = T0 + timedelta(hours=1)
        for status in (OrderStatus.CONFIRMED, OrderStatus.PROCESSING, OrderStatus.SHIPPED):
            order = await orders.update_order_status(order.ono, status, now=later)
            self.assertEqual(order.status, status)
        self.assertEqual(order.updated_at, later)
        self.assertEqual(order.created_at, T0)

        with self.assertRaises(InvalidStatusTransition):
            await orders.update_order_status(order.ono, OrderStatus.CANCELLED)
        order = await orders.update_order_status(order.ono, "DELIVERED")
        self.assertTrue(order.status.is_terminal)

        with self.assertRaises(NotFound):
            await orders.update_order_status(999999, OrderStatus.CONFIRMED)

    async def test_cancel_keeps_stock_decremented(self):
        order = await place(ALICE, [line(BASKET, 2)])
        order = await orders.update_order_status(order.ono, OrderStatus.CANCELLED)
        self.assertEqual(order.status, OrderStatus.CANCELLED)
        self.assertEqual(await self.stock_of(BASKET), 10)
        with self.assertRaises(InvalidStatusTransition):
            await orders.update_order_status(order.ono, OrderStatus.CONFIRMED)

    # ---------- Queries ----------

    async def test_list_orders_paginated_newest_first(self):
        placed = []
        for i in range(7):
            placed.append(
                await place(BOB, [line(JAM, 1)], now=T0 + timedelta(minutes=i))
            )
        await place(ALICE, [line(JAM, 1)], now=T0)

        page1, total = await orders.list_orders(BOB, 1, 5)
        self.assertEqual(total, 7)
        self.assertEqual([o.ono for o in page1], [o.ono for o in reversed(placed)][:5])
        page2, _ = await orders.list_orders(BOB, 2, 5)
        self.assertEqual(len(page2), 2)
        self.assertEqual(page2[-1].ono, placed[0].ono)

        empty, total = await orders.list_orders(CHIKONDI, 1)
        self.assertEqual((empty, total), ([], 0))

        with self.assertRaises(ValidationFailed):
            await orders.list_orders(BOB, 1, 0)

    async def test_list_orders_status_filter(self):
        a = await place(BOB, [line(JAM, 1)], now=T0)
        await place(BOB, [line(JAM, 1)], now=T0 + timedelta(minutes=1))
        await orders.update_order_status(a.ono, OrderStatus.CONFIRMED)

        confirmed, total = await orders.list_orders(BOB, 1, 5, OrderStatus.CONFIRMED)
        self.assertEqual(total, 1)
        self.assertEqual(confirmed[0].ono, a.ono)
        pending, total = await orders.list_orders(BOB, 1, 5, OrderStatus.PENDING)
        self.assertEqual(total, 1)
        self.assertNotEqual(pending[0].ono, a.ono)

    async def test_list_vendor_orders(self):
        mixed = await place(ALICE, [line(BASKET, 1), line(JAM, 1)], now=T0)
        tech = await place(BOB, [line(SPEAKER, 1)], now=T0 + timedelta(minutes=1))

        crafts, total = await orders.list_vendor_orders(LILONGWE_CRAFTS, 1)
        self.assertEqual((total, [o.ono for o in crafts]), (1, [mixed.ono]))
        fresh, total = await orders.list_vendor_orders(ZOMBA_FRESH, 1)
        self.assertEqual((total, [o.ono for o in fresh]), (1, [mixed.ono]))
        blantyre, total = await orders.list_vendor_orders(BLANTYRE_TECH, 1)
        self.assertEqual((total, [o.ono for o in blantyre]), (1, [tech.ono]))

        _, total = await orders.list_vendor_orders(
            BLANTYRE_TECH, 1, status=OrderStatus.SHIPPED
        )
        self.assertEqual(total, 0)

    async def test_order_detail_is_private(self):
        order = await place(ALICE, [line(BASKET, 1)])
        self.assertEqual(await orders.get_order_detail(order.ono, BOB), (None, []))
        self.assertEqual(await orders.get_order_detail(999999), (None, []))
        found, items = await orders.get_order_detail(order.ono, ALICE)
        self.assertEqual(found.order_number, order.order_number)
        self.assertEqual(len(items), 1)
        self.assertEqual(await orders.compute_order_total(999999), 0)


if __name__ == "__main__":
    unittest.main()
