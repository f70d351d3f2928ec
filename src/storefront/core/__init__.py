"""
Core module initialization.
"""

from .errors import (
    StorefrontError,
    InvalidQuantityError,
    EmptyCartError,
    AuthenticationError,
    PaymentDecodeError,
    APIError,
    TransientError,
    PermanentError,
)

from .retry_utils import retry_with_backoff, RetryConfig, APIResponseValidator

from .db import get_db_connection, init_database

from .storage import KeyValueStore, InMemoryStore, SQLiteStore

from .cart_store import CartStore, CART_IN_FLIGHT, CART_CLEARED

from .gateway import decode_success_payload, parse_failure_params, transaction_ref_from_return

from .checkout_flow import CheckoutFlow

__all__ = [
    # Errors
    "StorefrontError",
    "InvalidQuantityError",
    "EmptyCartError",
    "AuthenticationError",
    "PaymentDecodeError",
    "APIError",
    "TransientError",
    "PermanentError",
    # Retry and validation
    "retry_with_backoff",
    "RetryConfig",
    "APIResponseValidator",
    # Database and storage
    "get_db_connection",
    "init_database",
    "KeyValueStore",
    "InMemoryStore",
    "SQLiteStore",
    # Cart and checkout
    "CartStore",
    "CART_IN_FLIGHT",
    "CART_CLEARED",
    "decode_success_payload",
    "parse_failure_params",
    "transaction_ref_from_return",
    "CheckoutFlow",
]
