from __future__ import annotations

import base64
import json
import logging
from decimal import Decimal
from io import BytesIO
from typing import Any
from urllib.parse import quote

import qrcode
from qrcode.image.pure import PyPNGImage

logger = logging.getLogger(__name__)

REMOTE_RENDERER = "https://api.qrserver.com/v1/create-qr-code/?size=120x120&data="

PAYLOAD_FIELDS = (
    "receiptNumber",
    "bookingId",
    "packageName",
    "amount",
    "finalAmount",
    "discount",
    "couponCode",
    "date",
    "userId",
)


def _plain(value: Any) -> Any:
    if isinstance(value, Decimal):
        return float(value)
    return value


def build_qr_payload(**fields: Any) -> str:
    """Serialise the verification fields as canonical JSON.

    Unknown keys are dropped and missing ones are emitted as ``null`` so the
    payload always carries the same field set.
    """
    data = {name: _plain(fields.get(name)) for name in PAYLOAD_FIELDS}
    return json.dumps(data, sort_keys=True, separators=(",", ":"), default=str)


def remote_qr_url(payload: str) -> str:
    return REMOTE_RENDERER + quote(payload, safe="")


def render_qr_image(payload: str) -> str:
    """Return an inline PNG data URI for ``payload``.

    Falls back to the remote renderer URL when local encoding fails.
    """
    try:
        image = qrcode.make(payload, image_factory=PyPNGImage, box_size=4, border=2)
        buffer = BytesIO()
        image.save(buffer)
        encoded = base64.b64encode(buffer.getvalue()).decode("ascii")
        return f"data:image/png;base64,{encoded}"
    except Exception as exc:
        logger.error("QR generation failed, using remote renderer: %s", exc)
        try:
            return remote_qr_url(payload)
        except Exception:
            return REMOTE_RENDERER
