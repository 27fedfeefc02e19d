"""Booking emails: the customer receipt and the internal admin notice.

Neither function guards against repeats; callers decide whether a send is
due (see ``reconciler.notify_admins_once``). Both refuse to send when the
``Capabilities`` passed in report email as disabled.
"""

import logging
from typing import Optional, Sequence

from ..core.capabilities import Capabilities
from ..core.config import settings
from ..services.identifiers import resolve_booking_id
from ..services.receipt_document import BookingData, render_receipt_html
from ..utils.email import send_html_email
from ..utils.errors import DeliveryError, ValidationError

logger = logging.getLogger(__name__)


def _require_email(capabilities: Capabilities) -> None:
    if not capabilities.email:
        raise DeliveryError("Email service not configured")


def send_admin_notification(
    booking: BookingData,
    items: Sequence,
    *,
    capabilities: Capabilities,
    recipients: Optional[Sequence[str]] = None,
) -> None:
    _require_email(capabilities)
    recipients = list(recipients) if recipients is not None else settings.admin_recipients
    if not recipients:
        raise DeliveryError("No admin recipients configured")
    receipt = resolve_booking_id(booking.booking_id, booking.receipt_number)
    booking.receipt_number = booking.receipt_number or receipt
    html = render_receipt_html(booking, items, audience="admin")
    package = booking.package_name or "Safari Package"
    send_html_email(recipients, f"New Booking: {package} - {receipt}", html)
    logger.info("Admin notification for %s sent to %s recipient(s)", receipt, len(recipients))


def send_receipt_email(
    recipient_email: str,
    booking: BookingData,
    items: Sequence,
    *,
    capabilities: Capabilities,
) -> None:
    if not recipient_email or not recipient_email.strip():
        raise ValidationError("Email is required")
    _require_email(capabilities)
    receipt = resolve_booking_id(booking.booking_id, booking.receipt_number)
    booking.receipt_number = booking.receipt_number or receipt
    html = render_receipt_html(booking, items, audience="customer")
    send_html_email([recipient_email], f"Your Booking Receipt - {receipt}", html)
    logger.info("Receipt %s emailed to %s", receipt, recipient_email)
