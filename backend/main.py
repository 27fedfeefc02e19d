import os

from dotenv import load_dotenv
from fastapi.openapi.utils import get_openapi

# Settings are read at import time, so .env must be loaded first
load_dotenv()

from upgrades.main import app  # noqa: E402


def custom_openapi() -> dict:
    """Return OpenAPI schema with project metadata."""
    if app.openapi_schema:
        return app.openapi_schema
    app.openapi_schema = get_openapi(
        title="Activity Upgrades Payment API",
        version="1.0.0",
        description="Checkout, payment verification and booking receipts for safari activity upgrades.",
        contact={"name": "KenyaOnABudget Safaris", "email": "info@kenyaonabudgetsafaris.co.uk"},
        routes=app.routes,
    )
    return app.openapi_schema


app.openapi = custom_openapi

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "upgrades.main:app",
        host="0.0.0.0",
        port=int(os.getenv("PORT", "8000")),
        reload=os.getenv("UVICORN_RELOAD", "0") == "1",
        workers=int(os.getenv("UVICORN_WORKERS", "1")),
        timeout_keep_alive=int(os.getenv("UVICORN_KEEPALIVE", "65")),
    )
