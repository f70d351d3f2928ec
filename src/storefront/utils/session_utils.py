"""
Session utilities - wire the cart, checkout flow and backend client together.

Everything is built explicitly and handed to the caller; there is no
module-level cart.

The gateway sends the shopper back to a fresh page with no memory of who
started the checkout. Before redirecting, the owner of the transaction is
recorded in session storage so the return page can rebuild the right session.
"""

import json
import logging
from dataclasses import dataclass
from typing import Optional

from ..api.backend_client import BackendClient
from ..core.cart_store import CartStore, CART_STORAGE_KEY
from ..core.checkout_flow import CheckoutFlow, PENDING_CHECKOUT_KEY
from ..core.config import settings
from ..core.db import CART_TABLE, SESSION_TABLE
from ..core.storage import KeyValueStore, SQLiteStore

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S"
)
logger = logging.getLogger(__name__)

CHECKOUT_OWNER_KEY = "checkout-owner"


@dataclass
class StorefrontSession:
    cart: CartStore
    checkout: CheckoutFlow
    backend: BackendClient
    session_token: Optional[str] = None
    shopper_id: Optional[str] = None


def cart_storage_key(shopper_id: Optional[str]) -> str:
    return f"{CART_STORAGE_KEY}:{shopper_id}" if shopper_id else CART_STORAGE_KEY


def pending_checkout_key(shopper_id: Optional[str]) -> str:
    return f"{PENDING_CHECKOUT_KEY}:{shopper_id}" if shopper_id else PENDING_CHECKOUT_KEY


def checkout_owner_key(transaction_ref: str) -> str:
    return f"{CHECKOUT_OWNER_KEY}:{transaction_ref}"


def build_session(
    session_token: Optional[str] = None,
    shopper_id: Optional[str] = None,
    cart_storage: Optional[KeyValueStore] = None,
    pending_storage: Optional[KeyValueStore] = None,
    backend: Optional[BackendClient] = None,
    db_path: Optional[str] = None,
) -> StorefrontSession:
    """
    Build a cart, checkout flow and backend client for one shopper.

    Storage defaults to the SQLite tables under ``db_path`` (or the configured
    database); pass in-memory stores for tests.
    """
    session_token = session_token or settings.session_token
    cart_storage = cart_storage or SQLiteStore(CART_TABLE, db_path)
    pending_storage = pending_storage or SQLiteStore(SESSION_TABLE, db_path)
    backend = backend or BackendClient(session_token=session_token)

    cart = CartStore(cart_storage, storage_key=cart_storage_key(shopper_id)).load()
    checkout = CheckoutFlow(
        cart, pending_storage, backend,
        pending_key=pending_checkout_key(shopper_id),
    )

    logger.info(
        f"[SESSION] Ready for shopper {shopper_id or 'default'}: "
        f"{cart.total_items} items in cart"
    )
    return StorefrontSession(
        cart=cart,
        checkout=checkout,
        backend=backend,
        session_token=session_token,
        shopper_id=shopper_id,
    )


def remember_checkout_owner(session: StorefrontSession, transaction_ref: Optional[str]) -> None:
    """Record who started a checkout so the gateway return can find them again."""
    if not transaction_ref:
        return
    owner = {"session_token": session.session_token, "shopper_id": session.shopper_id}
    session.checkout.pending_storage.set(checkout_owner_key(transaction_ref), json.dumps(owner))
    logger.info(f"[SESSION] Checkout {transaction_ref} belongs to {session.shopper_id or 'default'}")


def forget_checkout_owner(session: StorefrontSession, transaction_ref: Optional[str]) -> None:
    if transaction_ref:
        session.checkout.pending_storage.delete(checkout_owner_key(transaction_ref))


def resume_checkout_session(
    transaction_ref: Optional[str],
    current: Optional[StorefrontSession] = None,
    pending_storage: Optional[KeyValueStore] = None,
    db_path: Optional[str] = None,
    **build_kwargs,
) -> Optional[StorefrontSession]:
    """
    Session for the shopper who started ``transaction_ref``.

    Returns ``current`` when the transaction has no recorded owner or the owner
    is already the current shopper; otherwise builds the owner's session.
    """
    if not transaction_ref:
        return current

    if pending_storage is None:
        pending_storage = current.checkout.pending_storage if current else SQLiteStore(SESSION_TABLE, db_path)

    raw = pending_storage.get(checkout_owner_key(transaction_ref))
    if not raw:
        logger.info(f"[SESSION] No recorded owner for checkout {transaction_ref}")
        return current

    try:
        owner = json.loads(raw)
        session_token = owner.get("session_token")
        shopper_id = owner.get("shopper_id")
    except (ValueError, AttributeError) as e:
        logger.error(f"[SESSION] Unreadable owner record for {transaction_ref}: {e}")
        return current

    if current and current.session_token == session_token and current.shopper_id == shopper_id:
        return current

    logger.info(f"[SESSION] Resuming checkout {transaction_ref} for {shopper_id or 'default'}")
    return build_session(
        session_token=session_token,
        shopper_id=shopper_id,
        pending_storage=pending_storage,
        db_path=db_path,
        **build_kwargs,
    )
