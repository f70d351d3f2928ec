"""
Checkout handoff models: phases, the pending-checkout record that survives the
gateway redirect, gateway return payloads, and the checkout graph state.
"""

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Dict, List, Literal, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from .api import Order
from .cart import CartLine


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class CheckoutPhase(str, Enum):
    IDLE = "IDLE"
    LOGIN_REQUIRED = "LOGIN_REQUIRED"
    INITIATING = "INITIATING"
    REDIRECTED = "REDIRECTED"
    RETURNED_SUCCESS = "RETURNED_SUCCESS"
    RETURNED_FAILURE = "RETURNED_FAILURE"
    RETURN_UNREADABLE = "RETURN_UNREADABLE"
    VERIFYING = "VERIFYING"
    ORDER_CREATED = "ORDER_CREATED"
    VERIFY_FAILED = "VERIFY_FAILED"


class PendingCheckout(BaseModel):
    """One-shot handoff record bridging the gateway redirect."""
    snapshot_lines: List[CartLine]
    transaction_ref: Optional[str] = None
    redirect_url: str
    total_amount: Optional[Decimal] = None
    product_code: Optional[str] = None
    phase: CheckoutPhase = CheckoutPhase.REDIRECTED
    created_at: datetime = Field(default_factory=utc_now)
    payment_status: Optional[str] = None
    last_error: Optional[str] = None

    @field_validator("created_at")
    @classmethod
    def assume_utc(cls, value: datetime) -> datetime:
        # records written before timestamps carried a zone are UTC
        return value.replace(tzinfo=timezone.utc) if value.tzinfo is None else value

    def is_stale(self, max_age, now: Optional[datetime] = None) -> bool:
        return (now or utc_now()) - self.created_at > max_age


class GatewayReturn(BaseModel):
    """
    Decoded success-URL payload sent back by the payment gateway.

    Accepts the gateway's own names (transaction_uuid, total_amount) as well
    as the backend's (transactionRef, amount).
    """
    transaction_ref: str = Field(
        validation_alias=AliasChoices("transaction_uuid", "transactionRef", "transaction_ref")
    )
    status: str
    total_amount: Decimal = Field(
        validation_alias=AliasChoices("total_amount", "amount", "totalAmount")
    )
    transaction_code: Optional[str] = None
    product_code: Optional[str] = None
    signed_field_names: Optional[str] = None
    signature: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True)

    @property
    def is_complete(self) -> bool:
        return self.status == "COMPLETE"


class GatewayFailure(BaseModel):
    """Plain query parameters on the failure URL."""
    transaction_ref: Optional[str] = Field(default=None, alias="transaction_uuid")
    product_code: Optional[str] = None
    total_amount: Optional[Decimal] = None
    error_message: Optional[str] = None
    status: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True)


CheckoutAction = Literal["begin", "success_return", "failure_return", "verify", "confirm"]


class CheckoutState(BaseModel):
    """State carried through one invocation of the checkout graph."""
    action: CheckoutAction
    phase: CheckoutPhase = CheckoutPhase.IDLE
    authenticated: bool = True
    encoded_payload: Optional[str] = None
    failure_params: Dict[str, str] = Field(default_factory=dict)
    transaction_ref: Optional[str] = None
    amount: Optional[Decimal] = None
    product_code: Optional[str] = None
    redirect_url: Optional[str] = None
    login_url: Optional[str] = None
    payment_status: Optional[str] = None
    gateway_return: Optional[GatewayReturn] = None
    gateway_failure: Optional[GatewayFailure] = None
    order: Optional[Order] = None
    error: Optional[str] = None
    retryable: bool = False
    messages_to_user: List[str] = Field(default_factory=list)

    model_config = ConfigDict(validate_assignment=True)

    @property
    def succeeded(self) -> bool:
        return self.phase == CheckoutPhase.ORDER_CREATED
