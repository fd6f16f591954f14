from textual import on, work
from textual.app import ComposeResult
from textual.containers import Container, Horizontal, HorizontalGroup, VerticalScroll
from textual.events import ScreenResume
from textual.message import Message
from textual.widgets import Button, Label, Rule

from marketplace.db import cart
from marketplace.db.models import CartLine
from marketplace.utils.messages import CartChangedMessage, ModeSwitchedMessage, NewOrderMessage
from marketplace.utils.pure import format_money
from marketplace.views.base_screen import BaseScreen
from marketplace.views.modal_checkout import CheckoutModal
from marketplace.views.modal_dialog import DialogModal
from marketplace.views.modal_prod_detail import ProdDetailModal


class CartItemActionEditMessage(Message):
    bubble = True


class CartItemActionRemoveMessage(Message):
    bubble = True


class CartItemActionLabel(Label):
    def action_edit(self):
        self.post_message(CartItemActionEditMessage())

    def action_remove(self):
        self.post_message(CartItemActionRemoveMessage())


class CartItemWidget(HorizontalGroup):
    def __init__(self, line: CartLine):
        super().__init__()
        self.line = line

    def compose(self):
        line = self.line
        stock_note = "" if line.qty <= line.stock_count else f" (only {line.stock_count} left)"
        with Container(id="div-cart-item-group"):
            with Container(id="div-item"):
                yield Label(content=line.name, id="label-item-name")
                yield Label(content=line.vendor_name, id="label-item-vendor")
                yield Label(content=f"x{line.qty}{stock_note}", id="label-item-qty")
                yield Label(content=format_money(line.line_total), id="label-item-price")
            with Container(id="div-actions"):
                yield CartItemActionLabel(
                    content="[@click=edit()]Edit[/]", id="link-item-edit"
                )
                yield CartItemActionLabel(
                    content="[@click=remove()]Remove[/]", id="link-item-remove"
                )

    @on(CartItemActionEditMessage)
    @work()
    async def handle_edit_item(self):
        if await self.app.push_screen_wait(ProdDetailModal(self.line.pid)):
            self.post_message(CartChangedMessage())

    @on(CartItemActionRemoveMessage)
    @work()
    async def handle_remove_item(self):
        remove_confirmed = await self.app.push_screen_wait(
            DialogModal(
                f"Remove {self.line.name} from your cart?",
                primary_text="Yes",
                secondary_text="No",
                tone="warning",
            )
        )
        if remove_confirmed:
            await cart.remove_item(self.app.state.cid, self.line.item_id)
            self.post_message(CartChangedMessage())
            self.notify("Item removed from cart.", severity="information")


class CartScreen(BaseScreen):
    """
    cart lines with live prices, plus the way into checkout
    """

    def compose(self) -> ComposeResult:
        yield from super().compose()
        yield VerticalScroll(id="vertscroll-content")
        yield Label("Subtotal: -", id="label-cart-total")
        yield Rule(line_style="dashed")
        with Horizontal(id="hort-buttons"):
            yield Button("Clear Cart", id="btn-clear-cart")
            yield Button("Refresh", id="btn-refresh")
            yield Button("Checkout", id="btn-checkout", variant="primary")

    async def on_mount(self):
        self.handle_cart_change()

    @on(CartChangedMessage)
    @on(ModeSwitchedMessage)
    @on(ScreenResume)
    @on(Button.Pressed, "#btn-refresh")
    @work(exclusive=True)  # overlapping refreshes would mount duplicate rows
    async def handle_cart_change(self):
        lines = await cart.list_cart(self.app.state.cid)

        content = self.query_one("#vertscroll-content")
        if [c.line for c in content.children] == lines:
            return

        await content.remove_children()
        await content.mount_all([CartItemWidget(line) for line in lines])
        content.set_class(not lines, "no-items")

        self.query_one("#label-cart-total", Label).content = (
            f"Subtotal: {format_money(cart.cart_subtotal(lines))}"
        )
        self.refresh()

    @on(Button.Pressed, "#btn-clear-cart")
    @work()
    async def handle_clear_cart(self) -> None:
        if not await cart.list_cart(self.app.state.cid):
            self.app.notify("Cart is empty.", severity="warning")
            return

        if await self.app.push_screen_wait(
            DialogModal(
                "Do you really want to remove all items from cart?",
                primary_text="Yes",
                secondary_text="No",
                tone="error",
            )
        ):
            await cart.clear(self.app.state.cid)
            self.post_message(CartChangedMessage())

    @on(Button.Pressed, "#btn-checkout")
    @work()
    async def handle_checkout(self) -> None:
        if not await cart.list_cart(self.app.state.cid):
            self.app.notify("Cart is empty.", severity="warning")
            return

        order_number = await self.app.push_screen_wait(CheckoutModal())
        if order_number:
            self.app.post_message(NewOrderMessage(order_number))
        self.post_message(CartChangedMessage())
