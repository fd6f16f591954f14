from textual.message import Message


class QuitRequestedMessage(Message):
    """
    broadcasted when the app is about to quit
    """

    bubble = True


class UserLogoutMessage(Message):
    """
    broadcasted when the customer logs out
    """

    bubble = True


class UserLoginMessage(Message):
    """
    Fired when a customer logged in, so the screen can refresh
    """

    bubble = True


class CartChangedMessage(Message):
    """
    Fired by the product detail modal or a cart line when the cart changed.
    Triggers a refresh of the cart screen. Post at App level from outside CartScreen.
    """

    bubble = True


class NewOrderMessage(Message):
    """
    Fired when checkout created an order. Listened to by past orders.
    """

    bubble = True

    def __init__(self, order_number: str) -> None:
        super().__init__()
        self.order_number = order_number


class ModeSwitchedMessage(Message):
    """
    fired whenever switch_mode is called
    must be fired from app level
    """

    bubble = True

    def __init__(self, old_mode: str, new_mode: str) -> None:
        super().__init__()
        self.old_mode = old_mode
        self.new_mode = new_mode
