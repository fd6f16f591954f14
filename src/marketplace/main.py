from textual import on, work
from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.widgets import LoadingIndicator

from marketplace.utils.messages import (
    ModeSwitchedMessage,
    QuitRequestedMessage,
    UserLogoutMessage,
)
from marketplace.utils.state import GlobalState
from marketplace.views.scr_cart import CartScreen
from marketplace.views.scr_login import LoginScreen
from marketplace.views.scr_past_orders import PastOrdersScreen
from marketplace.views.scr_prod_search import ProdSearchScreen


class MarketApp(App):
    BINDINGS = [
        Binding("ctrl+t", "switch_light", "Toggle Theme", show=True),
    ]

    MODES = {
        "prod_search": ProdSearchScreen,
        "cart": CartScreen,
        "past_orders": PastOrdersScreen,
    }

    CUSTOMER_MODES = {
        "prod_search": "Shop",
        "cart": "Cart",
        "past_orders": "My Orders",
    }

    CSS_PATH = "views/styles/market.tcss"

    state: GlobalState

    def __init__(self):
        super().__init__()
        self.state = GlobalState()

    def compose(self) -> ComposeResult:
        yield LoadingIndicator()

    async def on_mount(self) -> None:
        self.main_flow()

    def action_switch_light(self):
        if self.theme == "textual-dark":
            self.theme = "solarized-light"
        else:
            self.theme = "textual-dark"
        self.notify(f"Theme changed to {self.theme}")

    @on(UserLogoutMessage)
    @work
    async def handle_user_logout(self):
        self.state.logout()
        self.notify("Logout successful.")
        self.main_flow()

    @on(QuitRequestedMessage)
    def handle_quit(self):
        self.exit()

    @work
    async def main_flow(self):
        await self.push_screen_wait(LoginScreen())
        if self.state.logged_in:
            self.app.post_message(
                ModeSwitchedMessage(self.app.current_mode, "prod_search")
            )
            await self.switch_mode("prod_search")


def run() -> None:
    MarketApp().run()


if __name__ == "__main__":
    run()
