from math import ceil

from textual import events, work
from textual.app import ComposeResult
from textual.binding import Binding
from textual.containers import Horizontal
from textual.reactive import reactive
from textual.validation import Number
from textual.widgets import DataTable, Input, Label

from marketplace.db import catalog
from marketplace.utils.messages import CartChangedMessage
from marketplace.utils.pure import format_money
from marketplace.views.base_screen import BaseScreen
from marketplace.views.modal_prod_detail import ProdDetailModal

PAGE_SIZE = 10


class ProdSearchScreen(BaseScreen):
    """
    catalog browsing; empty query lists everything
    """

    # only here to be displayed in footer
    BINDINGS = [
        Binding("enter", "noop", "View Product", show=True, key_display="⏎"),
    ]

    page_idx = reactive(1)
    page_cnt = reactive(1)
    query_str = reactive("")

    def compose(self) -> ComposeResult:
        yield from super().compose()
        yield Input(id="input-search", placeholder="Search products...")
        yield DataTable(id="table-search-result")
        with Horizontal(id="hort-table-control"):
            yield Input("1", id="input-page", type="integer")
            yield Label(" / 1", id="label-total-page-cnt")

    def on_mount(self):
        table = self.query_one(DataTable)
        table.cursor_type = "row"
        table.zebra_stripes = True
        table.add_columns("ID", "Name", "Category", "Price", "Stock")

        self.query_one("#input-search").focus()
        self.update_search_result(self.query_str, 1)

    def action_noop(self) -> None:
        pass

    async def on_input_changed(self, message: Input.Changed) -> None:
        if message.input.id == "input-search":
            self.query_str = message.value
            self.page_idx = 1
            self.update_search_result(self.query_str, 1)
        if message.input.id == "input-page" and message.value.isdigit():
            self.page_idx = int(message.value)

    async def on_key(self, event: events.Key) -> None:
        table = self.query_one(DataTable)
        if event.key == "enter" and self.focused == table and table.row_count:
            pid = int(table.get_row_at(table.cursor_row)[0])
            self.open_detail(pid)

    @work()
    async def open_detail(self, pid: int) -> None:
        if await self.app.push_screen_wait(ProdDetailModal(pid)):
            self.app.post_message(CartChangedMessage())
            self.update_search_result(self.query_str, self.page_idx)

    def validate_page_idx(self, page_idx):
        return max(1, min(page_idx, self.page_cnt))

    def watch_page_idx(self, _, new_page_idx):
        self.query_one("#input-page").value = str(new_page_idx)
        self.update_search_result(self.query_str, new_page_idx)

    @work(exclusive=True)
    async def update_search_result(self, query: str, page: int) -> None:
        products, total = await catalog.search_products(query, page, PAGE_SIZE)

        table = self.query_one(DataTable)
        table.clear()
        table.add_rows(
            [
                (
                    p.pid,
                    p.name,
                    p.category,
                    format_money(p.price),
                    p.stock_count if p.in_stock else "out of stock",
                )
                for p in products
            ]
        )
        self.page_cnt = max(ceil(total / PAGE_SIZE), 1)
        self.query_one("#label-total-page-cnt").content = f" / {self.page_cnt}"
        self.query_one("#input-page").validators = [
            Number(minimum=1, maximum=self.page_cnt)
        ]
