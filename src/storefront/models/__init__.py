"""
Models package - all data validation schemas for the storefront client.
"""

# Cart models
from .cart import CartCandidate, CartLine, DisplayMeta, make_line_id, make_variant_key

# Backend API models
from .api import LineItem, PaymentSession, PaymentStatusResult, Order, OrderProduct, Product

# Checkout models
from .checkout import (
    CheckoutPhase, CheckoutState, PendingCheckout, GatewayReturn, GatewayFailure
)

__all__ = [
    # Cart
    "CartCandidate",
    "CartLine",
    "DisplayMeta",
    "make_line_id",
    "make_variant_key",
    # API
    "LineItem",
    "PaymentSession",
    "PaymentStatusResult",
    "Order",
    "OrderProduct",
    "Product",
    # Checkout
    "CheckoutPhase",
    "CheckoutState",
    "PendingCheckout",
    "GatewayReturn",
    "GatewayFailure",
]
