from math import ceil
from typing import List, Optional

from textual import on, work
from textual.app import ComposeResult
from textual.binding import Binding
from textual.containers import Horizontal, Vertical
from textual.events import ScreenResume
from textual.reactive import reactive
from textual.validation import Number
from textual.widgets import Button, DataTable, Input, Label, MarkdownViewer, Select

from marketplace.checkout.shipping import CARRIERS
from marketplace.checkout.validator import PAYMENT_METHODS
from marketplace.db import catalog, orders
from marketplace.db.models import Order, OrderItem, OrderStatus
from marketplace.utils.messages import ModeSwitchedMessage, NewOrderMessage
from marketplace.utils.logger import get_logger
from marketplace.utils.pure import format_money
from marketplace.views.base_screen import BaseScreen

_logger = get_logger(__name__)

PAGE_SIZE = 5


class PastOrdersScreen(BaseScreen):
    """
    Customers browse their orders with pagination and a status filter.

    Layout:
    - Markdown detail view at the top, showing the highlighted order.
    - Orders table below (newest first), 5 per page with Prev/Next.
    """

    # only here to be displayed in footer
    BINDINGS = [
        Binding("enter", "noop", "View Order Detail", show=True, key_display="⏎"),
    ]

    page_idx = reactive(1)
    page_cnt = reactive(1)
    status_filter = reactive[Optional[OrderStatus]](None)

    def __init__(self) -> None:
        super().__init__()
        self._orders: List[Order] = []

    def compose(self) -> ComposeResult:
        yield from super().compose()
        with Vertical():
            yield MarkdownViewer(id="md-order-detail", show_table_of_contents=False)
            yield DataTable(id="table-orders")
        with Horizontal(id="hort-table-control"):
            yield Select(
                [(s.value.title(), s) for s in OrderStatus],
                prompt="All statuses",
                id="select-status",
            )
            yield Button("Refresh", id="btn-refresh")
            yield Button("<", id="btn-prev")
            yield Input("1", id="input-page", type="integer")
            yield Label(" / 1", id="label-total-page-cnt")
            yield Button(">", id="btn-next")

    def on_mount(self) -> None:
        table = self.query_one(DataTable)
        table.cursor_type = "row"
        table.zebra_stripes = True
        table.add_columns("Order No", "Date", "Status", "Items", "Total")

    def action_noop(self) -> None:
        pass

    @on(Button.Pressed, "#btn-refresh")
    @on(ModeSwitchedMessage)
    @on(ScreenResume)
    @on(NewOrderMessage)
    def handle_refresh(self):
        self._load_orders(self.page_idx)

    @on(Select.Changed, "#select-status")
    def handle_status_changed(self, event: Select.Changed) -> None:
        self.status_filter = event.value if isinstance(event.value, OrderStatus) else None
        if self.page_idx == 1:
            self._load_orders(1)
        else:
            self.page_idx = 1

    @on(DataTable.RowHighlighted)
    def handle_row_highlight(self, event: DataTable.RowHighlighted) -> None:
        if 0 <= event.cursor_row < len(self._orders):
            self._load_and_render_detail(self._orders[event.cursor_row].ono)

    def watch_page_idx(self, old: int, new: int) -> None:
        self.query_one("#input-page", Input).value = str(new)
        self._refresh_buttons()
        self._load_orders(new)

    def _refresh_buttons(self) -> None:
        self.query_one("#btn-prev", Button).disabled = self.page_idx <= 1
        self.query_one("#btn-next", Button).disabled = self.page_idx >= self.page_cnt
        self.query_one("#input-page", Input).validators = [
            Number(minimum=1, maximum=self.page_cnt)
        ]

    @on(Button.Pressed, "#btn-prev")
    def handle_prev(self) -> None:
        if self.page_idx > 1:
            self.page_idx -= 1

    @on(Button.Pressed, "#btn-next")
    def handle_next(self) -> None:
        if self.page_idx < self.page_cnt:
            self.page_idx += 1

    @on(Input.Changed, "#input-page")
    def handle_page_input(self, ev: Input.Changed) -> None:
        if ev.value and ev.value.isdigit():
            new_idx = max(1, min(int(ev.value), self.page_cnt))
            if new_idx != self.page_idx:
                self.page_idx = new_idx

    @work(exclusive=True, group="orders")
    async def _load_orders(self, page: int) -> None:
        page_orders, total = await orders.list_orders(
            self.app.state.cid, page, PAGE_SIZE, self.status_filter
        )
        table = self.query_one(DataTable)
        table.clear()
        for o in page_orders:
            _, items = await orders.get_order_detail(o.ono, self.app.state.cid)
            table.add_row(
                o.order_number,
                o.created_at.strftime("%Y-%m-%d %H:%M"),
                o.status.value,
                sum(i.qty for i in items),
                format_money(o.total_amount),
            )
        self._orders = page_orders
        self.page_cnt = max(ceil(total / PAGE_SIZE), 1)
        self.query_one("#label-total-page-cnt", Label).content = f" / {self.page_cnt}"
        self._refresh_buttons()
        if page_orders:
            table.move_cursor(row=0)
            self._load_and_render_detail(page_orders[0].ono)
        else:
            await self._render_detail(None, [])

    @work(exclusive=True, group="detail")
    async def _load_and_render_detail(self, ono: int) -> None:
        order, items = await orders.get_order_detail(ono, self.app.state.cid)
        if order and await orders.compute_order_total(ono) != order.subtotal:
            _logger.warning(f"Order {order.order_number}: items do not add up to subtotal")
            self.notify("This order's items do not add up to its subtotal.", severity="warning")
        names = {}
        for item in items:
            prod = await catalog.get_product(item.pid)
            names[item.pid] = prod.name if prod else f"Product {item.pid}"
        await self._render_detail(order, items, names)

    async def _render_detail(
        self,
        order: Optional[Order],
        items: List[OrderItem],
        names: Optional[dict] = None,
    ) -> None:
        viewer = self.query_one("#md-order-detail", MarkdownViewer)
        if not order:
            await viewer.document.update("### Select an order to view its details.")
            return

        names = names or {}
        carrier = CARRIERS.get(order.shipping_method)
        ship = order.shipping
        header = (
            f"### Order {order.order_number} ({order.status.value})\n"
            f"Placed: {order.created_at:%Y-%m-%d %H:%M} UTC  \n"
            f"Ship to: {ship.full_name}, {ship.address}, {ship.district} "
            f"{ship.postal_code}  \n"
            f"Contact: {ship.phone}  \n"
            f"Shipping: {carrier.name if carrier else order.shipping_method}  \n"
            f"Payment: {PAYMENT_METHODS.get(order.payment_method, order.payment_method)}\n\n"
        )
        # prices below are the ones frozen at purchase time
        rows = [
            "| Product | Qty | Unit Price | Line Total |",
            "|---|---:|---:|---:|",
        ]
        for item in items:
            rows.append(
                f"| {names.get(item.pid, item.pid)} | {item.qty} | "
                f"{format_money(item.price)} | {format_money(item.line_total)} |"
            )
        footer = (
            f"\n\n**Subtotal:** {format_money(order.subtotal)}  \n"
            f"**Shipping:** {format_money(order.shipping_cost)}  \n"
            f"**Total:** {format_money(order.total_amount)}"
        )
        await viewer.document.update(header + "\n".join(rows) + footer)
