"""
Shared fixtures for the storefront test suite.
"""
from decimal import Decimal

import pytest

from storefront.core.cart_store import CartStore
from storefront.core.checkout_flow import CheckoutFlow
from storefront.core.errors import TransientError
from storefront.core.storage import InMemoryStore
from storefront.models.api import Order, OrderProduct, PaymentSession, PaymentStatusResult
from storefront.models.cart import CartCandidate, DisplayMeta


def make_candidate(
    product_id="A",
    seller_id="S1",
    quantity=1,
    unit_price="50",
    discount_percent=None,
    category=None,
    brand=None,
    name=None,
):
    return CartCandidate(
        product_id=product_id,
        seller_id=seller_id,
        quantity=quantity,
        unit_price=Decimal(unit_price),
        discount_percent=Decimal(discount_percent) if discount_percent is not None else None,
        category=category,
        brand=brand,
        display_meta=DisplayMeta(
            name=name or f"Product {product_id}",
            category=category,
            brand=brand,
        ),
    )


class FakeBackend:
    """
    Stand-in for BackendClient that records calls and returns canned results.

    ``on_confirm`` runs before confirm_payment answers, so tests can inspect
    client state while the backend is still "working".
    """

    authenticated = True

    def __init__(self):
        self.calls = []
        self.transaction_ref = "tx-1"
        self.initiate_error = None
        self.status = "COMPLETE"
        self.status_error = None
        self.confirm_error = None
        self.on_confirm = None

    def initiate_payment(self, line_items):
        self.calls.append(("initiate_payment", line_items))
        if self.initiate_error:
            raise self.initiate_error
        return PaymentSession(
            url=f"https://gateway.test/pay?transaction_uuid={self.transaction_ref}",
            transaction_ref=self.transaction_ref,
        )

    def check_payment_status(self, transaction_ref, amount, product_code=None):
        self.calls.append(("check_payment_status", transaction_ref, amount, product_code))
        if self.status_error:
            raise self.status_error
        return PaymentStatusResult(status=self.status, transaction_ref=transaction_ref)

    def confirm_payment(self, transaction_ref):
        self.calls.append(("confirm_payment", transaction_ref))
        if self.on_confirm:
            self.on_confirm(transaction_ref)
        if self.confirm_error:
            raise self.confirm_error
        return Order(
            id="order-1",
            amount=Decimal("250"),
            products=[OrderProduct(product_id="A", quantity=5, price=Decimal("50"))],
            transaction_id=transaction_ref,
            status="PLACED",
        )

    def call_names(self):
        return [c[0] for c in self.calls]


@pytest.fixture
def cart_storage():
    return InMemoryStore()


@pytest.fixture
def pending_storage():
    return InMemoryStore()


@pytest.fixture
def cart(cart_storage):
    return CartStore(cart_storage).load()


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def flow(cart, pending_storage, backend):
    return CheckoutFlow(cart, pending_storage, backend)


@pytest.fixture
def transient_error():
    return TransientError("backend unavailable", "test")
