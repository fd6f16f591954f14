import asyncio
import unittest
from dataclasses import replace

from market_case import (
    ALICE,
    BASKET,
    BOB,
    CHIKONDI,
    CHITENJE,
    JAM,
    LANTERN,
    SPEAKER,
    MarketTestCase,
    make_address,
)

from marketplace.checkout.service import lines_from_cart, submit_checkout
from marketplace.checkout.validator import CheckoutRequest
from marketplace.db import cart, orders
from marketplace.db.models import LineItem
from marketplace.utils.errors import (
    InsufficientStock,
    MarketError,
    OutOfStock,
    PaymentMethodNotAllowed,
    PriceChanged,
    TotalMismatch,
    ValidationFailed,
)


class CheckoutTestCase(MarketTestCase):
    async def checkout_cart(self, cid, **overrides):
        fields = dict(
            lines=await lines_from_cart(cid),
            shipping=make_address(),
            shipping_method="speed-courier",
            payment_method="card",
        )
        fields.update(overrides)
        return await submit_checkout(cid, CheckoutRequest(**fields))

    async def test_lines_from_cart(self):
        self.assertEqual(
            await lines_from_cart(ALICE),
            [LineItem(BASKET, 1, 4500), LineItem(JAM, 2, 1200)],
        )
        self.assertEqual(await lines_from_cart(BOB), [])

    async def test_checkout_from_cart(self):
        summary = await self.checkout_cart(
            ALICE,
            shipping=make_address(full_name="  Alice Banda  ", district="Blantyre"),
            client_total=6900 + 1000,
            idempotency_key="tab-1",
        )
        self.assertEqual(summary.order_number, "WH000001")
        self.assertEqual(summary.status, "PENDING")
        self.assertEqual((summary.subtotal, summary.shipping_cost, summary.total),
                         (6900, 1000, 7900))

        order, items = await orders.get_order_detail(summary.ono, ALICE)
        # stored address is the validated, trimmed one
        self.assertEqual(order.shipping.full_name, "Alice Banda")
        self.assertEqual(order.shipping.district, "Blantyre")
        self.assertEqual(order.idempotency_key, "tab-1")
        self.assertEqual(len(items), 2)

        self.assertEqual(await cart.list_cart(ALICE), [])
        self.assertEqual(await self.stock_of(BASKET), 11)
        self.assertEqual(await self.stock_of(JAM), 38)

    async def test_free_shipping_and_remote_pickup(self):
        await cart.add_item(BOB, LANTERN, 1)
        summary = await self.checkout_cart(
            BOB, shipping=make_address(district="Likoma"), client_total=15000
        )
        self.assertEqual(summary.shipping_cost, 0)

        await cart.add_item(CHIKONDI, JAM, 1)
        summary = await self.checkout_cart(
            CHIKONDI,
            shipping=make_address(district="Likoma"),
            shipping_method="pickup",
            payment_method="cod",
        )
        self.assertEqual(summary.total, 1200)
        self.assertEqual(summary.payment_method, "cod")

    async def test_price_changed_keeps_cart(self):
        lines = await lines_from_cart(ALICE)
        await self.set_product(BASKET, price=4800)
        with self.assertRaises(PriceChanged) as ctx:
            await self.checkout_cart(ALICE, lines=lines)
        self.assertEqual(ctx.exception.product_id, BASKET)

        self.assertEqual(len(await cart.list_cart(ALICE)), 2)
        self.assertEqual(await self.scalar("SELECT COUNT(*) FROM orders;"), 0)

        # refreshed cart carries the new price and goes through
        summary = await self.checkout_cart(ALICE)
        self.assertEqual(summary.subtotal, 4800 + 2400)

    async def test_stock_gone_since_cart(self):
        await cart.add_item(BOB, LANTERN, 2)
        await self.set_product(LANTERN, stock=1)
        with self.assertRaises(InsufficientStock) as ctx:
            await self.checkout_cart(BOB)
        self.assertIn("Only 1 available", ctx.exception.message)

        await self.set_product(LANTERN, stock=0)
        with self.assertRaises(OutOfStock):
            await self.checkout_cart(BOB)
        self.assertEqual(len(await cart.list_cart(BOB)), 1)

    async def test_cod_over_ceiling(self):
        await cart.add_item(BOB, SPEAKER, 3)
        with self.assertRaises(PaymentMethodNotAllowed):
            await self.checkout_cart(BOB, payment_method="cod")
        self.assertEqual(await self.stock_of(SPEAKER), 8)

        summary = await self.checkout_cart(BOB, payment_method="mobile")
        self.assertEqual(summary.total, 66000)

    async def test_stale_client_total(self):
        with self.assertRaises(TotalMismatch):
            await self.checkout_cart(ALICE, client_total=6900)
        self.assertEqual(len(await cart.list_cart(ALICE)), 2)

    async def test_bad_address(self):
        with self.assertRaises(ValidationFailed) as ctx:
            await self.checkout_cart(ALICE, shipping=make_address(phone="call me"))
        self.assertEqual(ctx.exception.field, "phone")

    async def test_empty_cart(self):
        with self.assertRaises(ValidationFailed):
            await self.checkout_cart(BOB)

    async def test_double_submit_returns_same_order(self):
        first = await self.checkout_cart(ALICE, idempotency_key="tab-2")
        # cart is empty now; the retry resubmits the lines it originally sent
        again = await submit_checkout(
            ALICE,
            CheckoutRequest(
                lines=[LineItem(BASKET, 1, 4500), LineItem(JAM, 2, 1200)],
                shipping=make_address(),
                shipping_method="speed-courier",
                payment_method="card",
                idempotency_key="tab-2",
            ),
        )
        self.assertEqual(again.order_number, first.order_number)
        self.assertEqual(await self.stock_of(BASKET), 11)

    async def test_retry_after_taking_last_unit_returns_same_order(self):
        await self.set_product(LANTERN, stock=1)
        await cart.add_item(BOB, LANTERN, 1)
        req = CheckoutRequest(
            lines=await lines_from_cart(BOB),
            shipping=make_address(),
            shipping_method="speed-courier",
            payment_method="card",
            idempotency_key="dup-1",
        )
        first = await submit_checkout(BOB, req)
        self.assertEqual(await self.stock_of(LANTERN), 0)

        again = await submit_checkout(BOB, req)
        self.assertEqual(again, first)

        # a reprice after the first attempt does not break the replay either
        await self.set_product(LANTERN, price=16000, stock=2)
        again = await submit_checkout(BOB, req)
        self.assertEqual(again.order_number, first.order_number)
        self.assertEqual(await self.stock_of(LANTERN), 2)
        self.assertEqual(await self.scalar("SELECT COUNT(*) FROM orders;"), 1)

        # without the key it is a new checkout and is validated as one
        with self.assertRaises(PriceChanged):
            await submit_checkout(BOB, replace(req, idempotency_key=None))

    async def test_generic_carrier_ids(self):
        await cart.add_item(BOB, CHITENJE, 1)
        await cart.add_item(BOB, JAM, 7)
        # 3500 + 8400 = 11900, over the free shipping threshold
        summary = await self.checkout_cart(
            BOB, shipping_method="standard", client_total=11900
        )
        self.assertEqual(summary.shipping_cost, 0)
        self.assertEqual(summary.total, 11900)
        self.assertEqual(summary.shipping_method, "speed-courier")

        await cart.add_item(CHIKONDI, JAM, 1)
        summary = await self.checkout_cart(CHIKONDI, shipping_method="economy")
        self.assertEqual(summary.shipping_cost, 800)
        self.assertEqual(summary.shipping_method, "cts-courier")

    async def test_concurrent_checkout_of_last_unit(self):
        await self.set_product(LANTERN, stock=1)
        await cart.add_item(BOB, LANTERN, 1)
        await cart.add_item(CHIKONDI, LANTERN, 1)

        results = await asyncio.gather(
            self.checkout_cart(BOB),
            self.checkout_cart(CHIKONDI),
            return_exceptions=True,
        )
        errors = [r for r in results if isinstance(r, BaseException)]
        self.assertEqual(len(errors), 1)
        # depending on timing the loser is stopped before or inside the transaction
        self.assertIsInstance(errors[0], (InsufficientStock, OutOfStock))
        self.assertIsInstance(errors[0], MarketError)
        self.assertEqual(await self.stock_of(LANTERN), 0)
        self.assertEqual(await self.scalar("SELECT COUNT(*) FROM orders;"), 1)


if __name__ == "__main__":
    unittest.main()
