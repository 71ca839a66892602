"""
Gateway notification payloads.

The webhook body is ``{"type": ..., "obj": {...}}``. Only TRANSACTION
notifications drive payment state; ``obj`` is parsed into
``TransactionObject`` once the envelope says so.
"""
from pydantic import AliasChoices, BaseModel, ConfigDict, Field

TRANSACTION_TYPE = "TRANSACTION"
DEFAULT_PAYMENT_METHOD = "CARD"


class WebhookEnvelope(BaseModel):
    type: str = Field(min_length=1)
    obj: dict


class GatewayOrder(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: int | None = None
    merchant_order_id: str = Field(min_length=1)


class SourceData(BaseModel):
    model_config = ConfigDict(extra="allow")

    type: str | None = None
    sub_type: str | None = None
    pan: str | None = None


class TransactionObject(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: int
    amount_cents: int
    currency: str = Field(min_length=1)
    success: bool
    pending: bool = False
    refunded: bool = Field(default=False, validation_alias=AliasChoices("refunded", "is_refunded"))
    order: GatewayOrder
    source_data: SourceData | None = None


class TransactionNotification(BaseModel):
    """Typed notification handed to the reconciliation engine."""
    merchant_order_id: str
    transaction_id: int
    amount_cents: int
    currency: str
    success: bool
    pending: bool = False
    refunded: bool = False
    payment_method: str = DEFAULT_PAYMENT_METHOD

    @classmethod
    def from_transaction(cls, transaction: TransactionObject) -> "TransactionNotification":
        source_type = transaction.source_data.type if transaction.source_data else None
        return cls(
            merchant_order_id=transaction.order.merchant_order_id,
            transaction_id=transaction.id,
            amount_cents=transaction.amount_cents,
            currency=transaction.currency.upper(),
            success=transaction.success,
            pending=transaction.pending,
            refunded=transaction.refunded,
            payment_method=source_type.upper() if source_type else DEFAULT_PAYMENT_METHOD,
        )
