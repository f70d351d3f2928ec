"""
Storefront client - persisted shopping cart and payment-gateway checkout handoff.
"""

__version__ = "0.1.0"
