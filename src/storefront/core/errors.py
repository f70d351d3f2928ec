"""
Exception hierarchy for cart and checkout operations.
"""


class StorefrontError(Exception):
    """Base exception for the storefront client."""


class InvalidQuantityError(StorefrontError, ValueError):
    """Quantity outside the accepted range for a cart operation."""


class EmptyCartError(StorefrontError):
    """Checkout attempted with nothing in the cart."""


class AuthenticationError(StorefrontError):
    """No session credential, or the backend rejected it."""


class PaymentDecodeError(StorefrontError):
    """Gateway return payload could not be decoded or is incomplete."""


class APIError(StorefrontError):
    """Base exception for backend API errors."""

    def __init__(self, message: str, endpoint: str, retry_possible: bool = True):
        self.message = message
        self.endpoint = endpoint
        self.retry_possible = retry_possible
        super().__init__(self.message)


class TransientError(APIError):
    """Error that might be transient (temporary)."""
    pass


class PermanentError(APIError):
    """Error that won't be resolved by retrying."""

    def __init__(self, message: str, endpoint: str):
        super().__init__(message, endpoint, retry_possible=False)
