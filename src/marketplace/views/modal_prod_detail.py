from textual import events, on, work
from textual.app import ComposeResult
from textual.containers import Horizontal, Vertical
from textual.reactive import reactive
from textual.screen import ModalScreen
from textual.validation import Number
from textual.widgets import Button, Input, Label, MarkdownViewer

from marketplace.db import cart, catalog
from marketplace.db.models import CartItem, Product
from marketplace.utils.errors import MarketError
from marketplace.utils.pure import format_money, generate_markdown_table


class ProdDetailModal(ModalScreen[bool]):
    """
    product detail with add-to-cart / update-quantity
    returns True if the cart changed
    """

    order_qty = reactive(1)

    def __init__(self, pid: int) -> None:
        super().__init__()

        self._pid = pid
        self._prod: Product | None = None
        self._existing_cart_item: CartItem | None = None

    def compose(self) -> ComposeResult:
        with Horizontal(id="hort-prod-detail"):
            yield MarkdownViewer("", show_table_of_contents=False)
            with Vertical():
                yield Label("Quantity")
                with Horizontal():
                    yield Button("-", id="btn-sub-qty")
                    yield Input(value="1", id="input-order-qty", type="integer")
                    yield Button("+", id="btn-add-qty")
                with Horizontal():
                    yield Button("Go Back", id="btn-quit")
                    yield Button("Add to Cart", id="btn-addcart", variant="primary")

    async def on_mount(self):
        self._prod = await catalog.get_product(self._pid)
        if self._prod is None:
            self.notify("This product is no longer available.", severity="error")
            self.dismiss(False)
            return
        vendor = await catalog.get_vendor_name(self._prod.vid)

        rows = [
            ["Name", self._prod.name],
            ["Sold by", vendor or "Vendor"],
            ["Category", self._prod.category],
            ["Price", format_money(self._prod.price)],
            ["In stock", self._prod.stock_count],
            ["Description", self._prod.descr],
        ]
        md = f"### {self._prod.name}\n\n" + generate_markdown_table(
            ["Attribute", "Value"], rows, ["l", "l"]
        )
        await self.query_one(MarkdownViewer).document.update(md)

        btn_addcart = self.query_one("#btn-addcart", Button)
        if not self._prod.in_stock:
            btn_addcart.label = "Out of Stock"
            btn_addcart.disabled = True
            btn_addcart.variant = "warning"

        self.query_one("#input-order-qty").validators = [
            Number(minimum=1, maximum=max(self._prod.stock_count, 1))
        ]

        self._existing_cart_item = await cart.get_cart_item_for_product(
            self.app.state.cid, self._pid
        )
        if self._existing_cart_item:
            self.order_qty = self._existing_cart_item.qty
            btn_addcart.label = "Update Cart"

        self.query_one("#input-order-qty").focus()

    def on_key(self, event: events.Key) -> None:
        if event.key == "escape":
            self.dismiss(False)

    async def on_input_changed(self, message: Input.Changed) -> None:
        if (
            message.input.id == "input-order-qty"
            and message.input.is_valid
            and self.focused == message.input
        ):
            self.order_qty = int(message.value)

    def watch_order_qty(self, qty: int):
        stock = self._prod.stock_count if self._prod else 1
        self.query_one("#btn-sub-qty").disabled = qty <= 1
        self.query_one("#btn-add-qty").disabled = qty >= stock
        self.query_one("#input-order-qty").value = str(qty)

    @on(Button.Pressed, "#btn-add-qty")
    def handle_add_qty(self):
        self.order_qty += 1

    @on(Button.Pressed, "#btn-sub-qty")
    def handle_sub_qty(self):
        self.order_qty -= 1

    @on(Button.Pressed, "#btn-quit")
    def handle_quit(self):
        self.dismiss(False)

    @on(Button.Pressed, "#btn-addcart")
    @work(exclusive=True)
    async def handle_addcart(self):
        try:
            if self._existing_cart_item is None:
                await cart.add_item(self.app.state.cid, self._pid, self.order_qty)
                self.app.notify("Item added to cart.")
            else:
                await cart.update_quantity(
                    self.app.state.cid,
                    self._existing_cart_item.item_id,
                    self.order_qty,
                )
                self.app.notify("Updated cart item quantity.")
        except MarketError as exc:
            self.app.notify(exc.message, severity="error")
            return

        self.dismiss(True)
