import uuid
from typing import List, Optional

from textual import events, on, work
from textual.app import ComposeResult
from textual.containers import Horizontal, Vertical, VerticalScroll
from textual.screen import ModalScreen
from textual.widgets import Button, Input, Label, MarkdownViewer, Select

from marketplace.checkout.service import submit_checkout
from marketplace.checkout.shipping import DISTRICTS, available_carriers, shipping_cost
from marketplace.checkout.validator import PAYMENT_CEILINGS, PAYMENT_METHODS, CheckoutRequest
from marketplace.db import cart
from marketplace.db.models import CartLine, LineItem, ShippingAddress
from marketplace.utils.errors import (
    MarketError,
    PaymentMethodNotAllowed,
    ValidationFailed,
)
from marketplace.utils.pure import format_money, generate_markdown_table
from marketplace.views.modal_dialog import DialogModal, ErrorDialogModal

ADDRESS_INPUTS = {
    "full_name": "#input-full-name",
    "phone": "#input-phone",
    "address": "#input-address-line",
    "postal_code": "#input-postal-code",
}


class CheckoutModal(ModalScreen[Optional[str]]):
    """
    Order summary, shipping address, carrier and payment method.
    Dismisses with the new order number, or None if nothing was ordered.
    """

    def __init__(self):
        super().__init__()
        self._lines: List[CartLine] = []
        # one key per opened checkout, so a double submit returns the same order
        self._idempotency_key = uuid.uuid4().hex

    def compose(self) -> ComposeResult:
        with VerticalScroll():
            yield MarkdownViewer("", show_table_of_contents=False, id="md-summary")
            with Vertical(id="div-address"):
                yield Label("Full Name")
                yield Input(placeholder="Jane Banda", id="input-full-name")
                yield Label("Phone")
                yield Input(placeholder="+265 991 234 567", id="input-phone")
                yield Label("District")
                yield Select(
                    [(d, d) for d in DISTRICTS], prompt="Select your district", id="select-district"
                )
                yield Label("Street Address")
                yield Input(placeholder="Area 47, Sector 3", id="input-address-line")
                yield Label("Postal Code (optional)")
                yield Input(id="input-postal-code")
                yield Label("Shipping Method")
                yield Select(
                    [(f"{c.name} ({c.delivery})", c.code) for c in available_carriers()],
                    value="speed-courier",
                    allow_blank=False,
                    id="select-carrier",
                )
                yield Label("Payment Method")
                yield Select(
                    [(name, code) for code, name in PAYMENT_METHODS.items()],
                    value="card",
                    allow_blank=False,
                    id="select-payment",
                )
            yield Label("", id="label-quote")
            with Horizontal():
                yield Button("Go Back", id="btn-quit")
                yield Button("Place Order", id="btn-submit", variant="primary")

    async def on_mount(self):
        # these are the prices the customer confirms; checkout re-checks them
        self._lines = await cart.list_cart(self.app.state.cid)
        headers = ["Product", "Vendor", "Unit Price", "Quantity", "Total"]
        rows = [
            [
                line.name,
                line.vendor_name,
                format_money(line.price),
                line.qty,
                format_money(line.line_total),
            ]
            for line in self._lines
        ]
        md = "### Order Summary\n\n" + generate_markdown_table(
            headers, rows, ["l", "l", "r", "c", "r"]
        )
        md += f"\n\n**Subtotal:** {format_money(self._subtotal())}"
        await self.query_one("#md-summary", MarkdownViewer).document.update(md)
        self._update_quote()
        self.query_one("#input-full-name").focus()

    def _subtotal(self) -> int:
        return cart.cart_subtotal(self._lines)

    def _district(self) -> str:
        value = self.query_one("#select-district", Select).value
        return value if isinstance(value, str) else ""

    def _quote_total(self) -> int:
        carrier = self.query_one("#select-carrier", Select).value
        return self._subtotal() + shipping_cost(self._district(), carrier, self._subtotal())

    @on(Select.Changed)
    def _update_quote(self) -> None:
        subtotal = self._subtotal()
        total = self._quote_total()
        fee = total - subtotal
        text = (
            f"Subtotal {format_money(subtotal)}  +  Shipping "
            f"{'FREE' if fee == 0 else format_money(fee)}  =  Total {format_money(total)}"
        )
        payment = self.query_one("#select-payment", Select).value
        ceiling = PAYMENT_CEILINGS.get(payment)
        if ceiling is not None and total > ceiling:
            text += f"\n{PAYMENT_METHODS[payment]} is only available up to {format_money(ceiling)}."
        self.query_one("#label-quote", Label).content = text

    def on_key(self, event: events.Key) -> None:
        if event.key == "escape":
            self.dismiss(None)

    def _build_request(self) -> CheckoutRequest:
        values = {
            name: self.query_one(sel, Input).value for name, sel in ADDRESS_INPUTS.items()
        }
        return CheckoutRequest(
            lines=[
                LineItem(pid=line.pid, qty=line.qty, price=line.price)
                for line in self._lines
            ],
            shipping=ShippingAddress(district=self._district(), **values),
            shipping_method=self.query_one("#select-carrier", Select).value,
            payment_method=self.query_one("#select-payment", Select).value,
            client_total=self._quote_total(),
            idempotency_key=self._idempotency_key,
        )

    @on(Button.Pressed, "#btn-submit")
    @work(exclusive=True)
    async def handle_submit(self):
        request = self._build_request()
        if not await self.app.push_screen_wait(
            DialogModal(
                f"Place order for {format_money(request.client_total)}? This cannot be undone.",
                primary_text="Yes",
                secondary_text="No",
                tone="positive",
            )
        ):
            return

        try:
            summary = await submit_checkout(self.app.state.cid, request)
        except PaymentMethodNotAllowed as exc:
            self.notify(exc.message, severity="error")
            self.query_one("#select-payment", Select).focus()
            return
        except ValidationFailed as exc:
            # fixable in this form; keep it open
            if exc.field in ADDRESS_INPUTS:
                widget = self.query_one(ADDRESS_INPUTS[exc.field], Input)
                widget.add_class("-invalid")
                widget.focus()
            self.notify(exc.message, severity="error")
            return
        except MarketError as exc:
            # the cart needs attention (price, stock) or storage was busy
            await self.app.push_screen_wait(ErrorDialogModal(exc, "Order not placed"))
            self.dismiss(None)
            return

        self.notify(f"Order placed. Your order number is {summary.order_number}.")
        self.dismiss(summary.order_number)

    @on(Button.Pressed, "#btn-quit")
    def handle_quit(self):
        self.dismiss(None)
