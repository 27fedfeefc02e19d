"""Browser pages the gateway redirects customers back to."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import HTMLResponse, PlainTextResponse

from ..core.capabilities import Capabilities
from ..core.config import settings
from ..templating import render_template
from .dependencies import get_capabilities

logger = logging.getLogger(__name__)

router = APIRouter(tags=["pages"])


def _page(name: str, **context) -> HTMLResponse:
    context.setdefault("business_name", settings.BUSINESS_NAME)
    context.setdefault("home_url", f"{settings.FRONTEND_URL.rstrip('/')}/login")
    return HTMLResponse(render_template(name, **context))


@router.get("/", response_class=HTMLResponse)
def index(caps: Capabilities = Depends(get_capabilities)):
    return _page("index.html", integrations=caps.describe())


@router.get("/payment-success", response_class=HTMLResponse)
def payment_success(
    session_id: Optional[str] = Query(None),
    checkout_id: Optional[str] = Query(None),
    user_id: Optional[str] = Query(None, alias="userId"),
):
    if not session_id:
        return PlainTextResponse("Missing session ID", status_code=status.HTTP_400_BAD_REQUEST)
    logger.info("Payment success page for session %s user=%s", session_id, user_id)
    return _page(
        "payment_success.html",
        params={"sessionId": session_id, "checkoutId": checkout_id or ""},
    )


@router.get("/payment-cancelled", response_class=HTMLResponse)
def payment_cancelled(user_id: Optional[str] = Query(None, alias="userId")):
    logger.info("Payment cancelled user=%s", user_id)
    return _page("payment_cancelled.html")
