from .errors import (
    CheckoutError,
    DeliveryError,
    RenderError,
    UpstreamError,
    ValidationError,
    error_body,
)
from .email import send_html_email

__all__ = [
    "CheckoutError",
    "DeliveryError",
    "RenderError",
    "UpstreamError",
    "ValidationError",
    "error_body",
    "send_html_email",
]
