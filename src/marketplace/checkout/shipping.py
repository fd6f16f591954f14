"""Shipping fees from a static rate table.

``shipping_cost`` is a pure function of its arguments. The checkout screen
and the server-side validator both call it, and the validator rejects a
submission whose total does not match, so it must never depend on the
clock, randomness or any stored state.
"""

from dataclasses import dataclass
from typing import Dict, FrozenSet, List

from marketplace.utils.errors import ValidationFailed

FREE_SHIPPING_THRESHOLD = 10000
REMOTE_SURCHARGE = 500
PICKUP = "pickup"


@dataclass(frozen=True)
class Carrier:
    code: str
    name: str
    base_rate: int
    delivery: str


CARRIERS: Dict[str, Carrier] = {
    c.code: c
    for c in (
        Carrier("speed-courier", "Speed Courier", 1000, "2-3 business days"),
        Carrier("cts-courier", "CTS Courier", 800, "3-4 business days"),
        Carrier("swift-courier", "SWIFT Courier", 1500, "1-2 business days"),
        Carrier(PICKUP, "Store Pickup", 0, "Ready in 24 hours"),
    )
}

# generic service levels accepted in place of a courier code
CARRIER_ALIASES: Dict[str, str] = {
    "standard": "speed-courier",
    "express": "swift-courier",
    "economy": "cts-courier",
}

DISTRICTS: List[str] = [
    "Balaka", "Blantyre", "Chikwawa", "Chiradzulu", "Chitipa", "Dedza",
    "Dowa", "Karonga", "Kasungu", "Likoma", "Lilongwe", "Machinga",
    "Mangochi", "Mchinji", "Mulanje", "Mwanza", "Mzimba", "Neno",
    "Nkhata Bay", "Nkhotakota", "Nsanje", "Ntcheu", "Ntchisi", "Phalombe",
    "Rumphi", "Salima", "Thyolo", "Zomba",
]

REMOTE_DISTRICTS: FrozenSet[str] = frozenset(
    {"Chitipa", "Likoma", "Nsanje", "Karonga", "Chikwawa"}
)


def get_carrier(code: str) -> Carrier:
    try:
        return CARRIERS[CARRIER_ALIASES.get(code, code)]
    except KeyError:
        raise ValidationFailed(
            f"Unknown shipping method: {code}", field="shipping_method"
        ) from None


def available_carriers() -> List[Carrier]:
    return list(CARRIERS.values())


def is_remote(district: str) -> bool:
    return district.strip() in REMOTE_DISTRICTS


def shipping_cost(district: str, carrier: str, subtotal: int) -> int:
    """Fee for sending an order of ``subtotal`` to ``district`` with ``carrier``.

    1. subtotal at or above FREE_SHIPPING_THRESHOLD ships free, except pickup
    2. otherwise the carrier's base rate
    3. remote districts add REMOTE_SURCHARGE, except pickup
    """
    c = get_carrier(carrier)
    if subtotal >= FREE_SHIPPING_THRESHOLD and c.code != PICKUP:
        return 0
    cost = c.base_rate
    if c.code != PICKUP and is_remote(district):
        cost += REMOTE_SURCHARGE
    return cost
