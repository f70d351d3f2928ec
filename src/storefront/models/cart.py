"""
Shopping cart models.
"""

from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

NO_CATEGORY = "no-category"
NO_BRAND = "no-brand"
KEY_SEPARATOR = "|"


def _escape(part: str) -> str:
    # keeps the joined key unambiguous when a part contains the separator
    return part.replace("\\", "\\\\").replace(KEY_SEPARATOR, "\\" + KEY_SEPARATOR)


def make_variant_key(category: Optional[str], brand: Optional[str]) -> str:
    """Combine category and brand, substituting sentinels for missing values."""
    return KEY_SEPARATOR.join((_escape(category or NO_CATEGORY), _escape(brand or NO_BRAND)))


def make_line_id(product_id: str, seller_id: str, variant_key: str) -> str:
    return KEY_SEPARATOR.join((_escape(product_id), _escape(seller_id), variant_key))


class DisplayMeta(BaseModel):
    """Informational fields shown next to a cart row; never part of identity or pricing."""
    name: str
    image: Optional[str] = None
    category: Optional[str] = None
    brand: Optional[str] = None
    rating: Optional[float] = None


class CartCandidate(BaseModel):
    """Item the shopper asked to add to the cart."""
    product_id: str
    seller_id: str
    quantity: int = 1
    unit_price: Decimal = Field(ge=0)
    discount_percent: Optional[Decimal] = Field(default=None, ge=0, le=100)
    display_meta: DisplayMeta
    category: Optional[str] = None
    brand: Optional[str] = None

    @property
    def variant_key(self) -> str:
        return make_variant_key(self.category, self.brand)

    @property
    def line_id(self) -> str:
        return make_line_id(self.product_id, self.seller_id, self.variant_key)


class CartLine(BaseModel):
    """One row in the cart, identified by product + seller + variant."""
    product_id: str
    seller_id: str
    variant_key: str
    quantity: int = Field(ge=1)
    unit_price: Decimal = Field(ge=0)
    discount_percent: Optional[Decimal] = Field(default=None, ge=0, le=100)
    display_meta: DisplayMeta

    model_config = ConfigDict(validate_assignment=True)

    @property
    def line_id(self) -> str:
        return make_line_id(self.product_id, self.seller_id, self.variant_key)

    @property
    def effective_unit_price(self) -> Decimal:
        if self.discount_percent:
            return self.unit_price * (1 - self.discount_percent / 100)
        return self.unit_price

    @property
    def subtotal(self) -> Decimal:
        """Unrounded line contribution to the cart total."""
        return self.effective_unit_price * self.quantity

    @classmethod
    def from_candidate(cls, candidate: CartCandidate) -> "CartLine":
        return cls(
            product_id=candidate.product_id,
            seller_id=candidate.seller_id,
            variant_key=candidate.variant_key,
            quantity=candidate.quantity,
            unit_price=candidate.unit_price,
            discount_percent=candidate.discount_percent,
            display_meta=candidate.display_meta,
        )
