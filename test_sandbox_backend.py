"""
Tests for the sandbox backend, and a full checkout driven through it.
"""
from decimal import Decimal
from urllib.parse import parse_qs, urlsplit

import pytest
from fastapi.testclient import TestClient

from storefront.api.backend_client import BackendClient
from storefront.api.sandbox_backend import create_app
from storefront.core.cart_store import CartStore
from storefront.core.checkout_flow import CheckoutFlow
from storefront.core.gateway import decode_success_payload
from storefront.core.retry_utils import RetryConfig
from storefront.core.storage import InMemoryStore
from storefront.models.cart import CartCandidate, DisplayMeta
from storefront.models.checkout import CheckoutPhase

AUTH = {"Cookie": "user_token=user-1"}
FRONTEND_URL = "http://shop.test"


@pytest.fixture
def api(tmp_path):
    app = create_app(
        db_path=tmp_path / "sandbox.db",
        public_url="http://testserver",
        frontend_url=FRONTEND_URL,
    )
    return TestClient(app)


def path_of(url):
    parts = urlsplit(url)
    return f"{parts.path}?{parts.query}"


def open_payment(api, line_items=None):
    response = api.post("/payment/initiate", headers=AUTH, json={"lineItems": line_items or [
        {"productId": "p-101", "sellerId": "seller-1", "quantity": 2, "price": 1.0, "name": "Keyboard"},
    ]})
    assert response.status_code == 200
    return response.json()


def pay(api, url, outcome="complete"):
    response = api.get(path_of(url) + f"&outcome={outcome}", follow_redirects=False)
    assert response.status_code == 302
    return response.headers["location"]


class TestSandboxEndpoints:

    def test_health(self, api):
        assert api.get("/health").json()["status"] == "healthy"

    def test_products_listed(self, api):
        body = api.get("/products").json()
        assert body["success"] is True
        assert [p["id"] for p in body["products"]] == ["p-100", "p-101", "p-200", "p-201"]

    def test_initiate_requires_cookie(self, api):
        response = api.post("/payment/initiate", json={"lineItems": [
            {"productId": "p-101", "sellerId": "seller-1", "quantity": 1, "price": 1.0, "name": "Keyboard"},
        ]})
        assert response.status_code == 401
        assert response.json() == {"success": False, "error": "User not authenticated"}

    def test_initiate_prices_from_catalog(self, api):
        body = open_payment(api, [
            {"productId": "p-101", "sellerId": "seller-1", "quantity": 2, "price": 1.0, "name": "Keyboard"},
            {"productId": "p-200", "sellerId": "seller-2", "quantity": 1, "price": 1.0, "name": "T-Shirt"},
        ])

        # 2 x 120.00 + 15.50 less 20%
        assert Decimal(str(body["totalAmount"])) == Decimal("252")
        assert body["url"].startswith("http://testserver/gateway/pay?transaction_uuid=")
        assert body["transactionRef"] in body["url"]

    @pytest.mark.parametrize("item", [
        {"productId": "p-999", "sellerId": "seller-1", "quantity": 1, "price": 1.0, "name": "Ghost"},
        {"productId": "p-101", "sellerId": "seller-2", "quantity": 1, "price": 1.0, "name": "Keyboard"},
    ])
    def test_initiate_rejects_bad_lines(self, api, item):
        response = api.post("/payment/initiate", headers=AUTH, json={"lineItems": [item]})
        assert response.status_code == 400
        assert response.json()["success"] is False

    def test_gateway_page_offers_pay_and_cancel(self, api):
        body = open_payment(api)
        page = api.get(path_of(body["url"]))
        assert page.status_code == 200
        assert "outcome=complete" in page.text
        assert "outcome=cancel" in page.text

    def test_completed_payment_redirects_with_payload(self, api):
        body = open_payment(api)

        location = pay(api, body["url"])

        assert location.startswith(FRONTEND_URL)
        query = parse_qs(urlsplit(location).query)
        assert query["page"] == ["payment_success"]
        payload = decode_success_payload(query["data"][0])
        assert payload.transaction_ref == body["transactionRef"]
        assert payload.is_complete
        assert payload.total_amount == Decimal("240")

    def test_cancelled_payment_redirects_with_params(self, api):
        body = open_payment(api)

        location = pay(api, body["url"], outcome="cancel")

        query = parse_qs(urlsplit(location).query)
        assert query["page"] == ["payment_failed"]
        assert query["transaction_uuid"] == [body["transactionRef"]]
        assert query["status"] == ["CANCELED"]

        status = api.get("/payment/status", headers=AUTH,
                         params={"transactionRef": body["transactionRef"]}).json()
        assert status["data"]["status"] == "CANCELED"

    def test_status_flags_amount_mismatch(self, api):
        body = open_payment(api)
        pay(api, body["url"])
        ref = body["transactionRef"]

        ok = api.get("/payment/status", headers=AUTH, params={"transactionRef": ref, "amount": "240"})
        off = api.get("/payment/status", headers=AUTH, params={"transactionRef": ref, "amount": "239"})

        assert ok.json()["data"]["status"] == "COMPLETE"
        assert off.json()["data"]["status"] == "AMBIGUOUS"

    def test_status_of_unknown_transaction(self, api):
        response = api.get("/payment/status", headers=AUTH, params={"transactionRef": "nope"})
        assert response.status_code == 404

    def test_status_is_scoped_to_user(self, api):
        body = open_payment(api)
        response = api.get("/payment/status", headers={"Cookie": "user_token=user-2"},
                           params={"transactionRef": body["transactionRef"]})
        assert response.status_code == 404

    def test_confirm_requires_completed_payment(self, api):
        body = open_payment(api)
        response = api.post("/payment/confirm", headers=AUTH,
                            json={"transactionRef": body["transactionRef"]})
        assert response.status_code == 409
        assert "PENDING" in response.json()["error"]

    def test_confirm_is_idempotent(self, api):
        body = open_payment(api)
        pay(api, body["url"])
        request = {"transactionRef": body["transactionRef"]}

        first = api.post("/payment/confirm", headers=AUTH, json=request).json()
        second = api.post("/payment/confirm", headers=AUTH, json=request).json()

        assert first["order"]["id"] == second["order"]["id"]
        assert first["order"]["status"] == "PLACED"
        assert first["order"]["createdAt"].endswith("+00:00")
        orders = api.get("/orders", headers=AUTH).json()["orders"]
        assert len(orders) == 1

    def test_cancel_order(self, api):
        body = open_payment(api)
        pay(api, body["url"])
        order = api.post("/payment/confirm", headers=AUTH,
                         json={"transactionRef": body["transactionRef"]}).json()["order"]

        assert api.delete(f"/orders/{order['id']}", headers=AUTH).status_code == 200
        assert api.delete(f"/orders/{order['id']}", headers=AUTH).status_code == 404
        assert api.get("/orders", headers=AUTH).json()["orders"][0]["status"] == "CANCELLED"


class SandboxSession:
    """Lets BackendClient talk to the in-process app through TestClient."""

    def __init__(self, api):
        self.api = api

    def request(self, method, url, cookies=None, timeout=None, **kwargs):
        headers = {"Cookie": "; ".join(f"{k}={v}" for k, v in (cookies or {}).items())}
        return self.api.request(method, url, headers=headers, **kwargs)

    def get(self, url, timeout=None):
        return self.api.get(url)


def test_full_checkout_against_sandbox(api):
    backend = BackendClient(
        session_token="user-1",
        base_url="http://testserver",
        session=SandboxSession(api),
        retry_config=RetryConfig(max_retries=0),
    )
    cart = CartStore(InMemoryStore()).load()
    flow = CheckoutFlow(cart, InMemoryStore(), backend)

    for product in backend.get_products():
        if product.id in ("p-100", "p-201"):
            cart.add_item(CartCandidate(
                product_id=product.id,
                seller_id=product.seller_id,
                quantity=2,
                unit_price=product.price,
                discount_percent=product.discount,
                category=product.category,
                brand=product.brand,
                display_meta=DisplayMeta(name=product.name),
            ))

    # 2 x 49.99 less 10% + 2 x 85.00
    assert cart.total_price == 260
    assert backend.health() is True

    started = flow.begin_checkout()
    assert started.phase == CheckoutPhase.REDIRECTED
    assert started.amount == Decimal("260")

    location = pay(api, started.redirect_url)
    data = parse_qs(urlsplit(location).query)["data"][0]
    assert cart.total_items == 4

    finished = flow.handle_success_return(data)

    assert finished.phase == CheckoutPhase.ORDER_CREATED
    assert finished.order.amount == Decimal("260")
    assert finished.order.created_at.tzinfo is not None
    assert cart.is_empty()
    assert [o.id for o in backend.get_user_orders()] == [finished.order.id]

    # re-confirming the same transaction does not create a second order
    again = flow.confirm_order(started.transaction_ref)
    assert again.order.id == finished.order.id
