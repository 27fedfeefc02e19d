from .checkout_session import CheckoutSession, CheckoutStatus
from .purchased_activity import PurchasedActivity
from .cart import Cart
from .sent_receipt import SentReceipt

__all__ = [
    "CheckoutSession",
    "CheckoutStatus",
    "PurchasedActivity",
    "Cart",
    "SentReceipt",
]
