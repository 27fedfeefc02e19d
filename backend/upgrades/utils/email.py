import asyncio
import logging
import re
from email.message import EmailMessage
from html import unescape
from typing import Iterable, Optional

import aiosmtplib

from ..core.config import settings
from .errors import DeliveryError

logger = logging.getLogger(__name__)

_TAG_RE = re.compile(r"<[^>]+>")
_BLANK_RUN_RE = re.compile(r"\n\s*\n+")


def html_to_text(html: str) -> str:
    """Crude plain-text alternative for clients that refuse HTML."""
    text = re.sub(r"(?is)<(style|script)[^>]*>.*?</\1>", "", html)
    text = _TAG_RE.sub("", text)
    return _BLANK_RUN_RE.sub("\n\n", unescape(text)).strip()


async def _send_async(msg: EmailMessage) -> None:
    await aiosmtplib.send(
        msg,
        hostname=settings.SMTP_HOST,
        port=settings.SMTP_PORT,
        username=settings.SMTP_USERNAME or None,
        password=settings.SMTP_PASSWORD or None,
        start_tls=bool(settings.SMTP_USERNAME),
        timeout=30,
    )


def send_html_email(
    recipients: Iterable[str],
    subject: str,
    html: str,
    text: Optional[str] = None,
) -> None:
    """Send ``html`` to ``recipients`` through the configured SMTP relay.

    Callers check ``Capabilities.email`` first. Raises DeliveryError when no
    recipient is given or the relay rejects the message.
    """
    to = [r.strip() for r in recipients if r and r.strip()]
    if not to:
        raise DeliveryError("No email recipients")

    msg = EmailMessage()
    msg["From"] = settings.SMTP_FROM
    msg["To"] = ", ".join(to)
    msg["Subject"] = subject
    msg.set_content(text or html_to_text(html))
    msg.add_alternative(html, subtype="html")
    try:
        asyncio.run(_send_async(msg))
    except Exception as exc:
        logger.error("Failed to send email to %s: %s", to, exc)
        raise DeliveryError(f"Email delivery failed: {exc}") from exc
    logger.info("Sent email %r to %s", subject, to)
