from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict
from pydantic import field_validator
from typing import Annotated, Any
import json
from pathlib import Path
import os


class Settings(BaseSettings):
    model_config = SettingsConfigDict(extra="ignore", case_sensitive=True)

    # Stripe credentials. An empty key disables checkout creation and
    # verification; the rest of the service still boots.
    STRIPE_SECRET_KEY: str = ""
    STRIPE_API_BASE: str = "https://api.stripe.com/v1"
    GATEWAY_TIMEOUT_SECONDS: float = 10.0
    CURRENCY: str = "gbp"

    # Document store. Empty means "run without persistence".
    STORE_DATABASE_URL: str = ""

    # SMTP email settings. Empty host disables outbound email.
    SMTP_HOST: str = ""
    SMTP_PORT: int = 587
    SMTP_USERNAME: str = ""
    SMTP_PASSWORD: str = ""
    SMTP_FROM: str = "no-reply@localhost"

    # Comma separated; kept as a plain string so dotenv files stay simple.
    ADMIN_EMAILS: str = ""

    # Public base URL of this service, used for gateway return URLs
    SERVER_URL: str = "http://localhost:8000"
    # Storefront the success/cancel pages link back to
    FRONTEND_URL: str = "https://www.kenyaonabudgetsafaris.co.uk"

    # NoDecode hands the raw env string to split_origins
    CORS_ORIGINS: Annotated[list[str], NoDecode] = ["*"]

    # Receipt presentation
    RECEIPT_PREFIX: str = "KOB"
    PAYMENT_METHOD_LABEL: str = "Credit Card (Stripe)"
    BUSINESS_NAME: str = "KenyaOnABudget Safaris"
    BUSINESS_TAGLINE: str = "Kenya On Your Terms: Smart Or Grand We Make it Happen!"
    BUSINESS_ADDRESS: str = "FARINGDON (SN7), SHELLINGFORD, FERNHAM ROAD, UNITED KINGDOM"
    SUPPORT_EMAIL: str = "info@kenyaonabudgetsafaris.co.uk"
    SUPPORT_PHONE: str = "+44 7376 642 148"

    LOG_LEVEL: str = "INFO"

    @field_validator("CORS_ORIGINS", mode="before")
    def split_origins(cls, v: Any) -> list[str]:
        """Parse comma-separated or JSON list of origins from environment."""
        if isinstance(v, str):
            try:
                parsed = json.loads(v)
                if isinstance(parsed, list):
                    return parsed
            except json.JSONDecodeError:
                pass
            return [s.strip() for s in v.split(",") if s.strip()]
        return v

    @field_validator(
        "STRIPE_SECRET_KEY",
        "STORE_DATABASE_URL",
        "SMTP_HOST",
        "ADMIN_EMAILS",
        "SERVER_URL",
        "FRONTEND_URL",
        mode="before",
    )
    def strip_whitespace(cls, v: Any) -> Any:
        if isinstance(v, str):
            return v.strip()
        return v

    @property
    def admin_recipients(self) -> list[str]:
        return [e.strip() for e in self.ADMIN_EMAILS.split(",") if e.strip()]

    @property
    def server_url(self) -> str:
        return self.SERVER_URL.rstrip("/")


def _env_file() -> str:
    return os.getenv("ENV_FILE", str(Path(__file__).resolve().parents[3] / ".env"))


def load_settings() -> "Settings":
    return Settings(_env_file=_env_file())


settings = load_settings()
