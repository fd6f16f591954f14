import unittest

import market_case  # noqa: F401  (puts src/ on sys.path)

from marketplace.checkout import shipping
from marketplace.checkout.shipping import (
    DISTRICTS,
    FREE_SHIPPING_THRESHOLD,
    REMOTE_DISTRICTS,
    REMOTE_SURCHARGE,
    shipping_cost,
)
from marketplace.utils.errors import ValidationFailed
from marketplace.utils.pure import format_money


class ShippingTestCase(unittest.TestCase):
    def test_base_rates(self):
        self.assertEqual(shipping_cost("Lilongwe", "speed-courier", 5000), 1000)
        self.assertEqual(shipping_cost("Lilongwe", "cts-courier", 5000), 800)
        self.assertEqual(shipping_cost("Lilongwe", "swift-courier", 5000), 1500)
        self.assertEqual(shipping_cost("Lilongwe", "pickup", 5000), 0)

    def test_free_shipping_threshold(self):
        self.assertEqual(shipping_cost("Zomba", "speed-courier", 12000), 0)
        self.assertEqual(
            shipping_cost("Zomba", "speed-courier", FREE_SHIPPING_THRESHOLD), 0
        )
        self.assertEqual(
            shipping_cost("Zomba", "speed-courier", FREE_SHIPPING_THRESHOLD - 1), 1000
        )

    def test_remote_surcharge(self):
        self.assertTrue(REMOTE_DISTRICTS <= set(DISTRICTS))
        self.assertEqual(
            shipping_cost("Likoma", "cts-courier", 5000), 800 + REMOTE_SURCHARGE
        )
        # free shipping wins over the surcharge; pickup never pays it
        self.assertEqual(shipping_cost("Likoma", "cts-courier", 20000), 0)
        self.assertEqual(shipping_cost("Likoma", "pickup", 5000), 0)
        self.assertTrue(shipping.is_remote(" Nsanje "))
        self.assertFalse(shipping.is_remote("Blantyre"))

    def test_deterministic(self):
        results = {shipping_cost("Karonga", "swift-courier", 7777) for _ in range(50)}
        self.assertEqual(results, {1500 + REMOTE_SURCHARGE})

    def test_generic_service_levels(self):
        self.assertEqual(shipping_cost("Lilongwe", "standard", 12000), 0)
        self.assertEqual(shipping_cost("Lilongwe", "standard", 5000), 1000)
        self.assertEqual(shipping_cost("Lilongwe", "express", 5000), 1500)
        self.assertEqual(shipping_cost("Karonga", "economy", 5000), 800 + REMOTE_SURCHARGE)
        self.assertEqual(shipping.get_carrier("express").code, "swift-courier")

    def test_unknown_carrier(self):
        with self.assertRaises(ValidationFailed) as ctx:
            shipping_cost("Lilongwe", "teleport", 1000)
        self.assertEqual(ctx.exception.field, "shipping_method")
        self.assertEqual(ctx.exception.to_dict()["error"], "validation_failed")

    def test_available_carriers(self):
        codes = [c.code for c in shipping.available_carriers()]
        self.assertEqual(codes, ["speed-courier", "cts-courier", "swift-courier", "pickup"])
        self.assertEqual(len(DISTRICTS), 28)

    def test_format_money(self):
        self.assertEqual(format_money(123450), "MWK 1,234.50")
        self.assertEqual(format_money(5), "MWK 0.05")
        self.assertEqual(format_money(-100, "USD"), "-USD 1.00")


if __name__ == "__main__":
    unittest.main()
