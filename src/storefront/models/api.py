"""
Backend request/response models.
Wire names are camelCase; Python attributes are snake_case.
"""

from datetime import datetime
from decimal import Decimal
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

PaymentStatusValue = Literal["PENDING", "COMPLETE", "FAILED", "CANCELED", "AMBIGUOUS"]
PAYMENT_STATUSES = ("PENDING", "COMPLETE", "FAILED", "CANCELED", "AMBIGUOUS")


class WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class LineItem(WireModel):
    """Line item as sent to the payment initiation endpoint."""
    product_id: str = Field(alias="productId")
    seller_id: str = Field(alias="sellerId")
    quantity: int = Field(gt=0)
    price: float
    name: str


class PaymentSession(WireModel):
    """Gateway redirect issued by the backend for one checkout attempt."""
    url: str
    transaction_ref: Optional[str] = Field(default=None, alias="transactionRef")
    total_amount: Optional[Decimal] = Field(default=None, alias="totalAmount")


class PaymentStatusResult(WireModel):
    status: PaymentStatusValue
    ref_id: Optional[str] = Field(default=None, alias="refId")
    transaction_ref: Optional[str] = Field(default=None, alias="transactionRef")
    total_amount: Optional[Decimal] = Field(default=None, alias="totalAmount")

    @property
    def is_complete(self) -> bool:
        return self.status == "COMPLETE"


class OrderProduct(WireModel):
    product_id: str = Field(alias="productId")
    quantity: int
    price: Decimal
    seller_id: Optional[str] = Field(default=None, alias="sellerId")


class Order(WireModel):
    id: str
    user_id: Optional[str] = Field(default=None, alias="userId")
    amount: Decimal
    products: List[OrderProduct] = Field(default_factory=list)
    transaction_id: str = Field(alias="transactionId")
    status: str
    created_at: Optional[datetime] = Field(default=None, alias="createdAt")
    updated_at: Optional[datetime] = Field(default=None, alias="updatedAt")


class Product(WireModel):
    """Catalog entry as listed by the backend."""
    id: str
    name: str
    price: Decimal
    seller_id: str = Field(alias="sellerId")
    category: Optional[str] = None
    brand: Optional[str] = None
    discount: Optional[Decimal] = None
    image: Optional[str] = None
    rating: Optional[float] = None
    stock: Optional[int] = None
