"""Optional integrations resolved once at startup.

Components receive a ``Capabilities`` value instead of probing globals, so a
missing store or mail relay degrades the matching feature only.
"""

from __future__ import annotations

from dataclasses import dataclass

from .config import Settings


@dataclass(frozen=True)
class Capabilities:
    gateway: bool = False
    store: bool = False
    email: bool = False

    @classmethod
    def from_settings(cls, settings: Settings, *, store_ready: bool) -> "Capabilities":
        return cls(
            gateway=bool(settings.STRIPE_SECRET_KEY),
            store=bool(store_ready),
            email=bool(settings.SMTP_HOST),
        )

    def describe(self) -> dict[str, str]:
        return {
            "gateway": "configured" if self.gateway else "not configured",
            "store": "connected" if self.store else "disabled",
            "email": "configured" if self.email else "not configured",
        }
