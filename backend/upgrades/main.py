import logging

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .api import api_checkout, api_pages
from .api.dependencies import get_capabilities
from .core.capabilities import Capabilities
from .core.config import settings
from .core.observability import setup_logging
from .database import init_store
from .utils.errors import CheckoutError, error_body

setup_logging()
logger = logging.getLogger(__name__)

app = FastAPI(title="Activity Upgrades Payment API", default_response_class=ORJSONResponse)

# Optional integrations are resolved once; a missing store or mail relay
# only disables its own feature.
app.state.capabilities = Capabilities.from_settings(settings, store_ready=init_store())

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def catch_exceptions(request: Request, call_next):
    """Answer unexpected failures with a JSON ``{error}`` body."""
    try:
        return await call_next(request)
    except StarletteHTTPException as exc:
        logger.error("HTTP error %s at %s: %s", exc.status_code, request.url.path, exc.detail)
        return ORJSONResponse(status_code=exc.status_code, content={"error": str(exc.detail)})
    except Exception as exc:  # pragma: no cover - generic handler
        logger.exception("Unhandled error at %s: %s", request.url.path, exc)
        return ORJSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "Internal Server Error"},
        )


@app.exception_handler(CheckoutError)
async def checkout_error_handler(request: Request, exc: CheckoutError):
    return ORJSONResponse(status_code=exc.status_code, content=error_body(exc))


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    logger.warning("Validation error at %s: %s", request.url.path, errors)
    first = errors[0] if errors else {}
    field = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
    message = first.get("msg", "Invalid request")
    return ORJSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"error": f"{field}: {message}" if field else message},
    )


@app.get("/health", tags=["health"])
def health(request: Request):
    caps = get_capabilities(request)
    return {
        "status": "healthy",
        "message": "Activity upgrades payment server is running",
        **caps.describe(),
    }


app.include_router(api_checkout.router)
app.include_router(api_pages.router)


@app.on_event("startup")
def log_integrations() -> None:
    caps = app.state.capabilities
    logger.info("Integrations: %s", caps.describe())
    if not caps.gateway:
        logger.warning("STRIPE_SECRET_KEY is empty; checkout and verification will fail")
    if caps.email and not settings.admin_recipients:
        logger.warning("ADMIN_EMAILS is empty; admin booking notifications are disabled")
