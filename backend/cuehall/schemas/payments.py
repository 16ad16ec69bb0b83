"""Payment schemas."""

from pydantic import BaseModel, ConfigDict, Field

from cuehall.schemas.common import BaseSchema


class TokenPurchaseRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    amount_cents: int = Field(..., alias="amountCents", gt=0, description="Charge in minor currency units")


class PaymentIntentResponse(BaseSchema):
    """Client-side handle for completing a card payment."""

    payment_intent_id: str = Field(..., alias="paymentIntentId")
    client_secret: str | None = Field(None, alias="clientSecret")
    amount: int
    currency: str
    session_id: str = Field(..., alias="sessionId")
    tokens: int | None = None


class WebhookAck(BaseModel):
    received: bool = True
