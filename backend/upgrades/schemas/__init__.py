from .checkout import (
    CartItem,
    CheckoutRequest,
    CheckoutResponse,
    ReceiptEmailRequest,
    ReceiptEmailResponse,
    VerifyPaymentRequest,
)

__all__ = [
    "CartItem",
    "CheckoutRequest",
    "CheckoutResponse",
    "ReceiptEmailRequest",
    "ReceiptEmailResponse",
    "VerifyPaymentRequest",
]
