"""
Backend API client - payment, order and product calls with retry logic.

Every request carries the shopper's session credential as the ``user_token``
cookie. The backend is the authority on pricing, availability and payment
state; nothing returned here is re-derived on the client.
"""

import logging
import time
from decimal import Decimal
from typing import Callable, List, Optional, Type, TypeVar

import requests
from pydantic import BaseModel, ValidationError

from ..core.config import settings
from ..core.errors import AuthenticationError, PermanentError, TransientError
from ..core.retry_utils import APIResponseValidator, RetryConfig, retry_with_backoff
from ..models.api import LineItem, Order, PaymentSession, PaymentStatusResult, Product

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S"
)
logger = logging.getLogger(__name__)

SESSION_COOKIE = "user_token"

INITIATE_PATH = "/payment/initiate"
STATUS_PATH = "/payment/status"
CONFIRM_PATH = "/payment/confirm"
ORDERS_PATH = "/orders"
PRODUCTS_PATH = "/products"
HEALTH_PATH = "/health"

M = TypeVar("M", bound=BaseModel)


def parse_model(model: Type[M], data, endpoint: str) -> M:
    """Validate a response body against a model; malformed bodies are permanent errors."""
    try:
        return model.model_validate(data)
    except ValidationError as e:
        logger.error(f"[BACKEND-API] {endpoint} returned a malformed {model.__name__}: {e}")
        raise PermanentError(
            f"Malformed {model.__name__} in {endpoint} response: {e.error_count()} invalid field(s)",
            endpoint
        ) from e


def parse_models(model: Type[M], data, endpoint: str) -> List[M]:
    if not isinstance(data, list):
        raise PermanentError(f"Expected a list of {model.__name__} in {endpoint} response", endpoint)
    return [parse_model(model, item, endpoint) for item in data]


class BackendClient:
    """Thin HTTP client for the storefront backend."""

    def __init__(
        self,
        session_token: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        session: Optional[requests.Session] = None,
        retry_config: Optional[RetryConfig] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.session_token = session_token
        self.base_url = (base_url or settings.backend_url).rstrip("/")
        self.timeout = timeout or settings.request_timeout
        self.session = session or requests.Session()
        self._retry = retry_with_backoff(config=retry_config or RetryConfig(), sleep=sleep)

    @property
    def authenticated(self) -> bool:
        return bool(self.session_token)

    def _request(self, method: str, path: str, endpoint: str, **kwargs) -> dict:
        if not self.session_token:
            raise AuthenticationError("User not authenticated")

        url = f"{self.base_url}{path}"
        try:
            logger.info(f"[BACKEND-API] {method} {url}")
            response = self.session.request(
                method,
                url,
                cookies={SESSION_COOKIE: self.session_token},
                timeout=self.timeout,
                **kwargs
            )
        except requests.RequestException as e:
            logger.error(f"[BACKEND-API] {endpoint} request error: {str(e)}")
            raise TransientError(f"{endpoint} request error: {str(e)}", endpoint)

        try:
            data = response.json()
        except ValueError:
            data = None

        if response.status_code == 401:
            raise AuthenticationError("User not authenticated")

        if response.status_code >= 500 or response.status_code == 429:
            message = (data or {}).get("error") if isinstance(data, dict) else None
            raise TransientError(
                message or f"{endpoint} failed: {response.status_code}", endpoint
            )

        if response.status_code >= 400:
            message = (data or {}).get("error") if isinstance(data, dict) else None
            raise PermanentError(
                message or f"{endpoint} failed: {response.status_code}", endpoint
            )

        if data is None:
            raise PermanentError("Response body is not valid JSON", endpoint)

        return data

    # ------------------------------------------------------------------
    # payment
    # ------------------------------------------------------------------
    def initiate_payment(self, line_items: List[dict]) -> PaymentSession:
        """
        Request a gateway session for the given cart lines.

        Not retried: each call mints a new transaction on the backend.
        """
        items = [LineItem.model_validate(item).model_dump(mode="json", by_alias=True)
                 for item in line_items]

        data = self._request("POST", INITIATE_PATH, "initiate_payment",
                             json={"lineItems": items})
        APIResponseValidator.validate_envelope(data, "initiate_payment", {"url"})

        payment = parse_model(PaymentSession, data, "initiate_payment")
        logger.info(f"[BACKEND-API] Payment session issued, ref={payment.transaction_ref}")
        return payment

    def check_payment_status(
        self,
        transaction_ref: str,
        amount: Optional[Decimal] = None,
        product_code: Optional[str] = None
    ) -> PaymentStatusResult:
        """Ask the backend for the gateway's view of a transaction."""
        params = {"transactionRef": transaction_ref}
        if amount is not None:
            params["amount"] = str(amount)
        if product_code:
            params["productCode"] = product_code

        def fetch():
            data = self._request("GET", STATUS_PATH, "check_payment_status", params=params)
            APIResponseValidator.validate_envelope(data, "check_payment_status", {"data"})
            return parse_model(PaymentStatusResult, data["data"], "check_payment_status")

        result = self._retry(fetch)()
        logger.info(f"[BACKEND-API] Status for {transaction_ref}: {result.status}")
        return result

    def confirm_payment(self, transaction_ref: str) -> Order:
        """Create the order for a confirmed payment. Idempotent per transaction."""
        def confirm():
            data = self._request("POST", CONFIRM_PATH, "confirm_payment",
                                 json={"transactionRef": transaction_ref})
            APIResponseValidator.validate_envelope(data, "confirm_payment", {"order"})
            return parse_model(Order, data["order"], "confirm_payment")

        order = self._retry(confirm)()
        logger.info(f"[BACKEND-API] Order {order.id} confirmed for {transaction_ref}")
        return order

    # ------------------------------------------------------------------
    # orders and products
    # ------------------------------------------------------------------
    def get_user_orders(self) -> List[Order]:
        def fetch():
            data = self._request("GET", ORDERS_PATH, "get_user_orders")
            APIResponseValidator.validate_envelope(data, "get_user_orders", {"orders"})
            return parse_models(Order, data["orders"], "get_user_orders")

        return self._retry(fetch)()

    def cancel_order(self, order_id: str) -> bool:
        data = self._request("DELETE", f"{ORDERS_PATH}/{order_id}", "cancel_order")
        APIResponseValidator.validate_envelope(data, "cancel_order")
        logger.info(f"[BACKEND-API] Order {order_id} cancelled")
        return True

    def get_products(self) -> List[Product]:
        def fetch():
            data = self._request("GET", PRODUCTS_PATH, "get_products")
            APIResponseValidator.validate_envelope(data, "get_products", {"products"})
            return parse_models(Product, data["products"], "get_products")

        return self._retry(fetch)()

    def health(self) -> bool:
        """Unauthenticated liveness check."""
        try:
            response = self.session.get(f"{self.base_url}{HEALTH_PATH}", timeout=2)
            return response.status_code == 200
        except requests.RequestException as e:
            logger.warning(f"[BACKEND-API] Health check failed: {e}")
            return False
