import logging

from fastapi import status

logger = logging.getLogger(__name__)


class CheckoutError(Exception):
    """Base for errors that map onto an HTTP ``{error}`` body."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(CheckoutError):
    """Missing or malformed required input. Never retried automatically."""

    status_code = status.HTTP_400_BAD_REQUEST


class UpstreamError(CheckoutError):
    """The payment gateway or the document store failed or refused a call."""

    status_code = status.HTTP_502_BAD_GATEWAY

    def __init__(self, message: str, source: str = "gateway"):
        super().__init__(message)
        self.source = source


class RenderError(CheckoutError):
    """Receipt document assembly failed."""


class DeliveryError(CheckoutError):
    """The email transport rejected a send."""

    status_code = status.HTTP_502_BAD_GATEWAY


def error_body(exc: CheckoutError) -> dict:
    """Return the wire body for ``exc`` and log it at a level matching its class."""
    if exc.status_code >= 500:
        logger.error("%s: %s", type(exc).__name__, exc.message)
    else:
        logger.warning("%s: %s", type(exc).__name__, exc.message)
    return {"error": exc.message}
