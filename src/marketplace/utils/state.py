from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from marketplace.db import customers


@dataclass
class GlobalState:
    """
    Centralized application state shared by screens.

    Fields:
      - cid: customers.cid of the logged-in customer, resolved by login
      - name: display name of that customer
    """

    cid: Optional[int] = None
    name: Optional[str] = None

    @property
    def logged_in(self) -> bool:
        return self.cid is not None

    async def login(self, cid: int, pwd: str) -> bool:
        """Resolve the customer from credentials. Returns True on success."""
        customer = await customers.login(cid, pwd)
        if customer is None:
            return False
        self.cid = customer.cid
        self.name = customer.name
        return True

    def logout(self) -> None:
        self.cid = None
        self.name = None
