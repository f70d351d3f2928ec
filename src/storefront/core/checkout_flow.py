"""
Checkout handoff - coordinates the cart with a redirect-based payment gateway.

Implemented as a LangGraph state machine. Each public operation invokes the
graph with an action; the graph runs until it needs something from outside
(the gateway redirect or a click) and ends there. Anything that must survive
the redirect lives in the PendingCheckout record, not in memory.

    IDLE -> INITIATING -> REDIRECTED -> RETURNED_SUCCESS | RETURNED_FAILURE
    RETURNED_SUCCESS -> VERIFYING -> ORDER_CREATED | VERIFY_FAILED

The live cart is cleared in exactly one place: after the backend confirms
the order.
"""

import json
import logging
from datetime import timedelta
from decimal import Decimal
from typing import Mapping, Optional
from urllib.parse import quote

from langgraph.graph import StateGraph, END
from pydantic import ValidationError

from ..models.checkout import CheckoutPhase, CheckoutState, PendingCheckout
from .cart_store import CartStore, CART_IN_FLIGHT
from .config import settings
from .errors import AuthenticationError, EmptyCartError, PaymentDecodeError, StorefrontError
from .gateway import decode_success_payload, parse_failure_params
from .storage import KeyValueStore

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S"
)
logger = logging.getLogger(__name__)

PENDING_CHECKOUT_KEY = "pending-checkout"
CHECKOUT_PATH = "/products/checkout"
LOGIN_PATH = "/login"


def login_redirect_url(callback: str = CHECKOUT_PATH) -> str:
    return f"{LOGIN_PATH}?callback={quote(callback, safe='')}"


class CheckoutFlow:
    """
    Checkout state machine over a cart, a pending-checkout store and the backend.

    Args:
        cart: The shopper's cart store
        pending_storage: Store that outlives the page (session scope)
        backend: Object with initiate_payment / check_payment_status /
            confirm_payment, normally a BackendClient
        max_pending_age: Pending checkouts older than this are treated as abandoned
        pending_key: Storage key of the pending checkout record
    """

    def __init__(
        self,
        cart: CartStore,
        pending_storage: KeyValueStore,
        backend,
        max_pending_age: Optional[timedelta] = None,
        pending_key: str = PENDING_CHECKOUT_KEY,
    ):
        self.cart = cart
        self.pending_key = pending_key
        self.pending_storage = pending_storage
        self.backend = backend
        self.max_pending_age = max_pending_age or settings.pending_max_age
        self.in_flight = False
        self.graph = build_checkout_graph(self)

    # ------------------------------------------------------------------
    # pending checkout record
    # ------------------------------------------------------------------
    def pending(self) -> Optional[PendingCheckout]:
        """Current pending checkout, or None if absent, unreadable or stale."""
        raw = self.pending_storage.get(self.pending_key)
        if not raw:
            return None

        try:
            record = PendingCheckout.model_validate(json.loads(raw))
        except (ValueError, ValidationError) as e:
            logger.error(f"[CHECKOUT] Dropping unreadable pending checkout: {e}")
            self.discard_pending()
            return None

        if record.is_stale(self.max_pending_age):
            logger.info(
                f"[CHECKOUT] Pending checkout {record.transaction_ref} from "
                f"{record.created_at.isoformat()} is stale, treating as abandoned"
            )
            self.discard_pending()
            return None

        return record

    def save_pending(self, record: PendingCheckout) -> None:
        self.pending_storage.set(self.pending_key, record.model_dump_json())

    def discard_pending(self) -> None:
        self.pending_storage.delete(self.pending_key)

    def _update_pending(self, **changes) -> None:
        record = self.pending()
        if record is None:
            return
        self.save_pending(record.model_copy(update=changes))

    # ------------------------------------------------------------------
    # operations
    # ------------------------------------------------------------------
    def _run(self, state: CheckoutState) -> CheckoutState:
        self.in_flight = True
        try:
            result = self.graph.invoke(state)
        finally:
            self.in_flight = False

        final_state = CheckoutState.model_validate(result)
        logger.info(
            f"[CHECKOUT] {state.action} finished in {final_state.phase.value}"
            + (f" ({final_state.error})" if final_state.error else "")
        )
        return final_state

    def begin_checkout(self, authenticated: Optional[bool] = None) -> CheckoutState:
        """
        Start a checkout attempt.

        Returns a state in LOGIN_REQUIRED (with login_url), REDIRECTED (with
        redirect_url) or IDLE with a retryable error.

        Raises:
            EmptyCartError: the cart has no lines
        """
        if authenticated is None:
            authenticated = bool(getattr(self.backend, "authenticated", True))

        if authenticated and self.cart.is_empty():
            raise EmptyCartError("Your cart is empty")

        return self._run(CheckoutState(action="begin", authenticated=authenticated))

    def handle_success_return(self, encoded_data: Optional[str]) -> CheckoutState:
        return self._run(CheckoutState(action="success_return", encoded_payload=encoded_data or ""))

    def handle_failure_return(self, params: Mapping[str, str]) -> CheckoutState:
        return self._run(CheckoutState(action="failure_return", failure_params=dict(params)))

    def confirm_order(self, transaction_ref: str) -> CheckoutState:
        return self._run(CheckoutState(action="confirm", transaction_ref=transaction_ref))

    def verify_status(
        self,
        transaction_ref: Optional[str] = None,
        amount: Optional[Decimal] = None,
        product_code: Optional[str] = None,
    ) -> CheckoutState:
        """
        Re-poll the backend for a transaction and create the order if it completed.

        Missing arguments are taken from the pending checkout record.
        """
        record = self.pending()
        if record:
            transaction_ref = transaction_ref or record.transaction_ref
            amount = amount if amount is not None else record.total_amount
            product_code = product_code or record.product_code

        if not transaction_ref or amount is None:
            logger.warning(
                f"[CHECKOUT] Cannot verify: transaction_ref={transaction_ref}, amount={amount}"
            )
            return CheckoutState(
                action="verify",
                transaction_ref=transaction_ref,
                error="No transaction to verify" if not transaction_ref else "No amount to verify",
                messages_to_user=["Payment data incomplete for verification"],
            )

        return self._run(CheckoutState(
            action="verify",
            transaction_ref=transaction_ref,
            amount=amount,
            product_code=product_code,
        ))

    def abandon(self) -> None:
        logger.info("[CHECKOUT] Pending checkout abandoned")
        self.discard_pending()


def route_action(state: CheckoutState) -> str:
    if state.action == "begin":
        return "initiate_payment" if state.authenticated else "require_login"
    if state.action == "success_return":
        return "decode_return"
    if state.action == "failure_return":
        return "record_failure"
    if state.action == "verify":
        return "check_status"
    return "confirm_order"


def route_after_initiate(state: CheckoutState) -> str:
    return END if state.error else "redirect"


def route_to_confirmation(state: CheckoutState) -> str:
    if state.phase == CheckoutPhase.VERIFYING:
        return "confirm_order"
    return END


def build_checkout_graph(flow: CheckoutFlow):
    """
    Build the LangGraph for one checkout flow instance.
    """

    def require_login(state: CheckoutState) -> CheckoutState:
        state.phase = CheckoutPhase.LOGIN_REQUIRED
        state.login_url = login_redirect_url()
        state.messages_to_user.append("Please login to purchase")
        return state

    def initiate_payment(state: CheckoutState) -> CheckoutState:
        state.phase = CheckoutPhase.INITIATING
        snapshot = flow.cart.snapshot()
        total = Decimal(flow.cart.get_total_price())
        logger.info(f"[CHECKOUT] Initiating payment for {len(snapshot)} lines, total {total}")

        try:
            payment = flow.backend.initiate_payment(flow.cart.to_line_items())
        except AuthenticationError as e:
            state.phase = CheckoutPhase.LOGIN_REQUIRED
            state.login_url = login_redirect_url()
            state.error = str(e)
            state.messages_to_user.append("Please login to purchase")
            return state
        except StorefrontError as e:
            logger.error(f"[CHECKOUT] Payment initiation failed: {e}", exc_info=True)
            state.phase = CheckoutPhase.IDLE
            state.error = str(e)
            state.retryable = True
            state.messages_to_user.append("Payment initiation failed")
            return state

        # backend amount is authoritative; the cart total is only a display hint
        amount = payment.total_amount if payment.total_amount is not None else total
        flow.save_pending(PendingCheckout(
            snapshot_lines=snapshot,
            transaction_ref=payment.transaction_ref,
            redirect_url=payment.url,
            total_amount=amount,
        ))
        state.transaction_ref = payment.transaction_ref
        state.redirect_url = payment.url
        state.amount = amount
        return state

    def redirect(state: CheckoutState) -> CheckoutState:
        # the cart stays intact; listeners only learn that it is in flight
        flow.cart.notify(CART_IN_FLIGHT)
        state.phase = CheckoutPhase.REDIRECTED
        state.messages_to_user.append("Redirecting to payment...")
        return state

    def decode_return(state: CheckoutState) -> CheckoutState:
        try:
            payload = decode_success_payload(state.encoded_payload)
        except PaymentDecodeError as e:
            # the payment may still have gone through; keep the pending record for verification
            state.phase = CheckoutPhase.RETURN_UNREADABLE
            state.error = str(e)
            state.retryable = True
            state.messages_to_user.append("Error processing payment data")
            flow._update_pending(phase=CheckoutPhase.RETURN_UNREADABLE, last_error=str(e))
            return state

        state.gateway_return = payload
        state.transaction_ref = payload.transaction_ref
        state.amount = payload.total_amount
        state.product_code = payload.product_code
        state.payment_status = payload.status
        flow._update_pending(
            phase=CheckoutPhase.RETURNED_SUCCESS,
            transaction_ref=payload.transaction_ref,
            total_amount=payload.total_amount,
            product_code=payload.product_code,
            payment_status=payload.status,
        )

        if payload.is_complete:
            state.phase = CheckoutPhase.VERIFYING
        else:
            state.phase = CheckoutPhase.VERIFY_FAILED
            state.messages_to_user.append(f"Payment status: {payload.status}")
            flow._update_pending(phase=CheckoutPhase.VERIFY_FAILED)
        return state

    def check_status(state: CheckoutState) -> CheckoutState:
        state.phase = CheckoutPhase.VERIFYING
        try:
            result = flow.backend.check_payment_status(
                state.transaction_ref, state.amount, state.product_code
            )
        except StorefrontError as e:
            logger.error(f"[CHECKOUT] Status check failed for {state.transaction_ref}: {e}", exc_info=True)
            state.phase = CheckoutPhase.VERIFY_FAILED
            state.error = str(e)
            state.retryable = True
            state.messages_to_user.append("Payment verification failed")
            flow._update_pending(phase=CheckoutPhase.VERIFY_FAILED, last_error=str(e))
            return state

        state.payment_status = result.status
        if result.is_complete:
            state.messages_to_user.append("Payment verified successfully!")
            return state

        state.phase = CheckoutPhase.VERIFY_FAILED
        state.messages_to_user.append(f"Payment status: {result.status}")
        flow._update_pending(phase=CheckoutPhase.VERIFY_FAILED, payment_status=result.status)
        return state

    def confirm_order(state: CheckoutState) -> CheckoutState:
        state.phase = CheckoutPhase.VERIFYING
        if not state.transaction_ref:
            state.phase = CheckoutPhase.VERIFY_FAILED
            state.error = "Transaction reference not found"
            return state

        try:
            order = flow.backend.confirm_payment(state.transaction_ref)
        except StorefrontError as e:
            logger.error(f"[CHECKOUT] Order creation failed for {state.transaction_ref}: {e}", exc_info=True)
            state.phase = CheckoutPhase.VERIFY_FAILED
            state.error = str(e)
            state.retryable = True
            state.messages_to_user.append("Failed to create order")
            flow._update_pending(phase=CheckoutPhase.VERIFY_FAILED, last_error=str(e))
            return state

        # only destructive point of the whole flow
        flow.cart.clear_cart()
        flow.discard_pending()
        state.order = order
        state.phase = CheckoutPhase.ORDER_CREATED
        state.messages_to_user.append("Order created successfully!")
        return state

    def record_failure(state: CheckoutState) -> CheckoutState:
        failure = parse_failure_params(state.failure_params)
        state.gateway_failure = failure
        state.transaction_ref = failure.transaction_ref
        state.payment_status = failure.status
        state.phase = CheckoutPhase.RETURNED_FAILURE
        state.messages_to_user.append(failure.error_message or "Payment was not completed")
        logger.info(f"[CHECKOUT] Gateway reported failure for {failure.transaction_ref}: {failure.status}")
        flow.discard_pending()
        return state

    workflow = StateGraph(CheckoutState)

    workflow.add_node("require_login", require_login)
    workflow.add_node("initiate_payment", initiate_payment)
    workflow.add_node("redirect", redirect)
    workflow.add_node("decode_return", decode_return)
    workflow.add_node("check_status", check_status)
    workflow.add_node("confirm_order", confirm_order)
    workflow.add_node("record_failure", record_failure)

    workflow.set_conditional_entry_point(route_action)

    workflow.add_conditional_edges("initiate_payment", route_after_initiate)
    workflow.add_conditional_edges("decode_return", route_to_confirmation)
    workflow.add_conditional_edges("check_status", route_to_confirmation)

    workflow.add_edge("require_login", END)
    workflow.add_edge("redirect", END)
    workflow.add_edge("confirm_order", END)
    workflow.add_edge("record_failure", END)

    return workflow.compile()
