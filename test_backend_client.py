"""
Tests for the backend HTTP client with a mocked requests session.
"""
from decimal import Decimal
from unittest.mock import MagicMock

import pytest
import requests

from storefront.api.backend_client import BackendClient
from storefront.core.errors import AuthenticationError, PermanentError, TransientError
from storefront.core.retry_utils import RetryConfig

BASE_URL = "http://backend.test"

LINE_ITEMS = [{"productId": "p-101", "sellerId": "seller-1", "quantity": 2, "price": 120.0, "name": "Keyboard"}]

ORDER = {
    "id": "order-1",
    "userId": "user-1",
    "amount": 240,
    "products": [{"productId": "p-101", "sellerId": "seller-1", "quantity": 2, "price": "120.00"}],
    "transactionId": "tx-1",
    "status": "PLACED",
    "createdAt": "2025-06-10T16:24:13",
    "updatedAt": "2025-06-10T16:24:13",
}


def make_response(status_code=200, body=None):
    response = MagicMock()
    response.status_code = status_code
    if body is None:
        response.json.side_effect = ValueError("No JSON object could be decoded")
    else:
        response.json.return_value = body
    return response


@pytest.fixture
def session():
    return MagicMock()


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def client(session, sleeps):
    return BackendClient(
        session_token="user-1",
        base_url=BASE_URL + "/",
        timeout=5,
        session=session,
        retry_config=RetryConfig(max_retries=2, jitter=False),
        sleep=sleeps.append,
    )


class TestPaymentCalls:

    def test_initiate_sends_line_items_and_cookie(self, client, session):
        session.request.return_value = make_response(body={
            "success": True,
            "url": "http://gateway.test/pay?transaction_uuid=tx-1",
            "transactionRef": "tx-1",
            "totalAmount": 240,
        })

        payment = client.initiate_payment(LINE_ITEMS)

        session.request.assert_called_once_with(
            "POST",
            "http://backend.test/payment/initiate",
            cookies={"user_token": "user-1"},
            timeout=5,
            json={"lineItems": LINE_ITEMS},
        )
        assert payment.url == "http://gateway.test/pay?transaction_uuid=tx-1"
        assert payment.transaction_ref == "tx-1"
        assert payment.total_amount == Decimal("240")

    def test_initiate_is_not_retried(self, client, session, sleeps):
        session.request.return_value = make_response(503, {"success": False, "error": "busy"})

        with pytest.raises(TransientError, match="busy"):
            client.initiate_payment(LINE_ITEMS)

        assert session.request.call_count == 1
        assert sleeps == []

    def test_initiate_without_url_is_rejected(self, client, session):
        session.request.return_value = make_response(body={"success": True})

        with pytest.raises(PermanentError):
            client.initiate_payment(LINE_ITEMS)

    def test_status_passes_query_params(self, client, session):
        session.request.return_value = make_response(body={
            "success": True,
            "data": {"status": "COMPLETE", "refId": "REF1", "transactionRef": "tx-1"},
        })

        result = client.check_payment_status("tx-1", Decimal("240"), "EPAYTEST")

        assert result.is_complete
        assert result.ref_id == "REF1"
        _, kwargs = session.request.call_args
        assert kwargs["params"] == {"transactionRef": "tx-1", "amount": "240", "productCode": "EPAYTEST"}

    def test_status_retries_transient_failures(self, client, session, sleeps):
        session.request.side_effect = [
            make_response(503),
            requests.ConnectionError("connection reset"),
            make_response(body={"success": True, "data": {"status": "PENDING"}}),
        ]

        result = client.check_payment_status("tx-1", Decimal("240"))

        assert result.status == "PENDING"
        assert session.request.call_count == 3
        assert sleeps == [1.0, 2.0]

    def test_status_gives_up_after_max_retries(self, client, session):
        session.request.return_value = make_response(body={"success": False, "error": "gateway timeout"})

        with pytest.raises(TransientError):
            client.check_payment_status("tx-1", Decimal("240"))

        assert session.request.call_count == 3

    def test_confirm_returns_order(self, client, session):
        session.request.return_value = make_response(body={"success": True, "order": ORDER})

        order = client.confirm_payment("tx-1")

        assert order.id == "order-1"
        assert order.amount == Decimal("240")
        assert order.transaction_id == "tx-1"
        assert order.products[0].price == Decimal("120.00")
        _, kwargs = session.request.call_args
        assert kwargs["json"] == {"transactionRef": "tx-1"}

    def test_status_without_amount_omits_it(self, client, session):
        session.request.return_value = make_response(body={"success": True, "data": {"status": "PENDING"}})

        client.check_payment_status("tx-1")

        _, kwargs = session.request.call_args
        assert kwargs["params"] == {"transactionRef": "tx-1"}


class TestMalformedBodies:

    def test_initiate_with_non_string_url(self, client, session):
        session.request.return_value = make_response(body={"success": True, "url": 123})

        with pytest.raises(PermanentError, match="PaymentSession") as exc_info:
            client.initiate_payment(LINE_ITEMS)
        assert exc_info.value.endpoint == "initiate_payment"

    def test_unknown_payment_status_is_not_retried(self, client, session, sleeps):
        session.request.return_value = make_response(body={"success": True, "data": {"status": "NOT_FOUND"}})

        with pytest.raises(PermanentError, match="PaymentStatusResult"):
            client.check_payment_status("tx-1", Decimal("240"))
        assert session.request.call_count == 1
        assert sleeps == []

    def test_confirm_with_incomplete_order(self, client, session):
        session.request.return_value = make_response(body={"success": True, "order": {"id": "o1"}})

        with pytest.raises(PermanentError, match="Order"):
            client.confirm_payment("tx-1")
        assert session.request.call_count == 1

    def test_orders_that_are_not_a_list(self, client, session):
        session.request.return_value = make_response(body={"success": True, "orders": {"id": "o1"}})

        with pytest.raises(PermanentError, match="list of Order"):
            client.get_user_orders()


class TestErrors:

    def test_missing_token_fails_before_request(self, session):
        client = BackendClient(base_url=BASE_URL, session=session)

        assert not client.authenticated
        with pytest.raises(AuthenticationError):
            client.initiate_payment(LINE_ITEMS)
        session.request.assert_not_called()

    def test_unauthorized_is_not_retried(self, client, session):
        session.request.return_value = make_response(401, {"success": False, "error": "User not authenticated"})

        with pytest.raises(AuthenticationError):
            client.confirm_payment("tx-1")
        assert session.request.call_count == 1

    def test_client_error_is_permanent(self, client, session):
        session.request.return_value = make_response(409, {"success": False, "error": "Payment not completed: PENDING"})

        with pytest.raises(PermanentError, match="Payment not completed") as exc_info:
            client.confirm_payment("tx-1")
        assert exc_info.value.retry_possible is False
        assert exc_info.value.endpoint == "confirm_payment"
        assert session.request.call_count == 1

    def test_non_json_body_is_permanent(self, client, session):
        session.request.return_value = make_response(200)

        with pytest.raises(PermanentError):
            client.get_products()

    def test_network_error_becomes_transient(self, client, session):
        session.request.side_effect = requests.Timeout("read timed out")

        with pytest.raises(TransientError):
            client.initiate_payment(LINE_ITEMS)


class TestOrdersAndProducts:

    def test_user_orders(self, client, session):
        session.request.return_value = make_response(body={"success": True, "orders": [ORDER]})

        orders = client.get_user_orders()

        assert [o.id for o in orders] == ["order-1"]
        method, url = session.request.call_args[0]
        assert (method, url) == ("GET", "http://backend.test/orders")

    def test_cancel_order(self, client, session):
        session.request.return_value = make_response(body={"success": True})

        assert client.cancel_order("order-1") is True
        method, url = session.request.call_args[0]
        assert (method, url) == ("DELETE", "http://backend.test/orders/order-1")

    def test_products(self, client, session):
        session.request.return_value = make_response(body={"success": True, "products": [{
            "id": "p-100", "name": "Wireless Mouse", "price": 49.99, "sellerId": "seller-1",
            "category": "Electronics", "brand": "Logi", "discount": 10, "rating": 4.5, "stock": 25,
        }]})

        products = client.get_products()

        assert products[0].seller_id == "seller-1"
        assert products[0].discount == Decimal("10")

    def test_health(self, client, session):
        session.get.return_value = make_response(body={"status": "healthy"})
        assert client.health() is True
        session.get.assert_called_once_with("http://backend.test/health", timeout=2)

    def test_health_when_unreachable(self, client, session):
        session.get.side_effect = requests.ConnectionError("refused")
        assert client.health() is False
