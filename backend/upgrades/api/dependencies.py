from fastapi import Request

from ..core.capabilities import Capabilities
from ..database import get_db  # noqa: F401  re-exported for routers and test overrides
from ..services.gateway import StripeGateway


def get_capabilities(request: Request) -> Capabilities:
    caps = getattr(request.app.state, "capabilities", None)
    return caps if caps is not None else Capabilities()


def get_gateway() -> StripeGateway:
    return StripeGateway()
