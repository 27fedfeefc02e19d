"""Receipt / booking identifiers.

A purchase gets exactly one identifier. It is generated once when checkout
starts, written into gateway metadata and the store, and every later step
resolves it through :func:`resolve_identifier` rather than minting a new one.
"""

from __future__ import annotations

import secrets
from typing import Callable, Iterable, Optional

from ..core.config import settings

_BASE36 = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ"
CODE_LENGTH = 6
SESSION_PREFIX_LENGTH = 8


def generate_receipt_code(prefix: Optional[str] = None) -> str:
    """Return ``<prefix>-XXXXXX`` with six random uppercase base36 characters."""
    prefix = prefix or settings.RECEIPT_PREFIX
    code = "".join(secrets.choice(_BASE36) for _ in range(CODE_LENGTH))
    return f"{prefix}-{code}"


def session_prefix(session_id: Optional[str], length: int = SESSION_PREFIX_LENGTH) -> Optional[str]:
    if not session_id or not str(session_id).strip():
        return None
    return str(session_id).strip()[:length]


def resolve_identifier(
    candidates: Iterable[Optional[str]],
    fallback: Callable[[], str],
) -> str:
    """Return the first non-blank candidate, else ``fallback()``."""
    for candidate in candidates:
        if candidate is None:
            continue
        text = str(candidate).strip()
        if text:
            return text
    return fallback()


def resolve_booking_id(
    booking_id: Optional[str] = None,
    receipt_number: Optional[str] = None,
    session_id: Optional[str] = None,
    prefix: Optional[str] = None,
) -> str:
    return resolve_identifier(
        [booking_id, receipt_number, session_prefix(session_id)],
        lambda: generate_receipt_code(prefix),
    )
