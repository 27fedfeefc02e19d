from decimal import Decimal
from typing import Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from ..services.amounts import MAX_CHARGE


class CamelModel(BaseModel):
    """Wire models use the storefront's camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class CartItem(CamelModel):
    title: Optional[str] = None
    price: Decimal = Field(Decimal("0"), ge=0, le=MAX_CHARGE)
    quantity: int = Field(1, gt=0)
    activity_id: Optional[str] = None


class CheckoutRequest(CamelModel):
    user_id: Optional[str] = None
    items: Optional[list[CartItem]] = None
    amount: Optional[Decimal] = Field(None, ge=0, le=MAX_CHARGE)
    original_amount: Optional[Decimal] = Field(None, ge=0, le=MAX_CHARGE)
    discount_amount: Optional[Decimal] = Field(None, ge=0, le=MAX_CHARGE)
    coupon_code: Optional[str] = None
    type: Optional[str] = None
    checkout_session_id: Optional[str] = None
    package_id: Optional[str] = None
    package_name: Optional[str] = None


class CheckoutResponse(CamelModel):
    id: str
    url: Optional[str] = None
    timestamp: int
    booking_id: str
    calculated_amount: float


class VerifyPaymentRequest(CamelModel):
    session_id: Optional[str] = None
    # The hosted success page posts ``checkoutId``
    checkout_session_id: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("checkoutSessionId", "checkoutId", "checkout_session_id"),
    )


class ReceiptEmailRequest(CamelModel):
    email: Optional[str] = None
    name: Optional[str] = None
    session_id: Optional[str] = None
    checkout_id: Optional[str] = None


class ReceiptEmailResponse(CamelModel):
    success: bool
    error: Optional[str] = None
    booking_id: Optional[str] = None
