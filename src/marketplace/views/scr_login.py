from textual import on, work
from textual.app import ComposeResult
from textual.containers import Horizontal, Vertical
from textual.events import Key
from textual.widgets import Button, Input, Label

from marketplace.utils.messages import UserLoginMessage
from marketplace.views.base_screen import BaseScreen
from marketplace.views.modal_dialog import QuitDialogModal


class LoginScreen(BaseScreen):
    """
    Resolves the customer id every later screen acts for.
    Dismissed once app.state holds a logged-in customer.
    """

    def __init__(self):
        super().__init__()
        self.configure(header_sub_title="Login", show_sidebar=False)

    def compose(self) -> ComposeResult:
        yield from super().compose()
        with Vertical(id="div-login"):
            yield Label("Customer ID")
            yield Input(placeholder="1001", id="input-login-cid", type="integer")
            yield Label("Password")
            yield Input(placeholder="*********", password=True, id="input-login-pwd")
            with Horizontal(id="div-login-btns"):
                yield Button("Quit", id="btn-quit")
                yield Button("Login", id="btn-login", variant="primary")

    def on_mount(self):
        self.query_one("#input-login-cid").focus()

    def on_key(self, event: Key) -> None:
        if event.key == "enter" and self.focused == self.query_one("#input-login-pwd"):
            self.handle_login_submit()

    @on(Button.Pressed, "#btn-login")
    @work(exclusive=True)
    async def handle_login_submit(self) -> None:
        cid = self.query_one("#input-login-cid", Input).value.strip()
        pwd = self.query_one("#input-login-pwd", Input).value.strip()

        if not cid or not pwd:
            self.notify("Customer ID or password cannot be empty!", severity="error")
            return

        if await self.app.state.login(int(cid), pwd):
            self.notify(f"Hello {self.app.state.name}!")
            self.app.post_message(UserLoginMessage())
            self.dismiss()
            return

        self.notify("Invalid customer ID or password.", severity="error")
        input_login_pwd = self.query_one("#input-login-pwd", Input)
        input_login_pwd.value = ""
        input_login_pwd.focus()
        input_login_pwd.add_class("-invalid")

    @on(Button.Pressed, "#btn-quit")
    def handle_quit_(self) -> None:
        self.app.push_screen(QuitDialogModal())
