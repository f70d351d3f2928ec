"""
Cart store - single source of truth for what the shopper intends to buy.

Lines are kept in insertion order and persisted after every mutation.
Totals are always recomputed from the lines; nothing derived is cached
or written to storage.
"""

import json
import logging
from decimal import Decimal, ROUND_HALF_UP
from typing import Callable, Dict, Iterable, List, Optional, Union

from pydantic import ValidationError

from ..models.cart import CartCandidate, CartLine
from .errors import InvalidQuantityError
from .storage import KeyValueStore

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S"
)
logger = logging.getLogger(__name__)

CART_STORAGE_KEY = "cart-storage"

CART_IN_FLIGHT = "cart_in_flight"
CART_CLEARED = "cart_cleared"

Listener = Callable[[str], None]


def round_currency(amount: Decimal) -> int:
    """Round an aggregate to whole currency units, half away from zero."""
    return int(Decimal(amount).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def sum_lines(lines: Iterable[CartLine]) -> int:
    return round_currency(sum((line.subtotal for line in lines), Decimal("0")))


class CartStore:
    """Persisted cart; construct once and pass to whatever needs it."""

    def __init__(self, storage: KeyValueStore, storage_key: str = CART_STORAGE_KEY):
        self.storage = storage
        self.storage_key = storage_key
        self._lines: List[CartLine] = []
        self._listeners: List[Listener] = []

    # ------------------------------------------------------------------
    # persistence
    # ------------------------------------------------------------------
    def load(self) -> "CartStore":
        """Restore lines from storage. Unreadable data leaves the cart empty."""
        raw = self.storage.get(self.storage_key)
        if not raw:
            self._lines = []
            return self

        try:
            data = json.loads(raw)
            lines = [CartLine.model_validate(item) for item in data.get("lines", [])]
        except (ValueError, TypeError, AttributeError, ValidationError) as e:
            logger.error(f"[CART] Discarding unreadable cart data: {e}", exc_info=True)
            lines = []

        self._lines = self._dedupe(lines)
        logger.info(f"[CART] Loaded {len(self._lines)} lines from {self.storage_key}")
        return self

    def save(self) -> None:
        payload = {"lines": [line.model_dump(mode="json") for line in self._lines]}
        self.storage.set(self.storage_key, json.dumps(payload))

    @staticmethod
    def _dedupe(lines: List[CartLine]) -> List[CartLine]:
        # a hand-edited or cross-process blob may repeat a line id; merge like add_item
        merged: Dict[str, CartLine] = {}
        for line in lines:
            if line.line_id in merged:
                merged[line.line_id].quantity += line.quantity
            else:
                merged[line.line_id] = line
        return list(merged.values())

    # ------------------------------------------------------------------
    # notifications
    # ------------------------------------------------------------------
    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def notify(self, event: str) -> None:
        """Fire-and-forget: listener failures are logged, never raised."""
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                logger.warning(f"[CART] Listener failed on {event}: {e}", exc_info=True)

    # ------------------------------------------------------------------
    # mutations
    # ------------------------------------------------------------------
    def add_item(self, candidate: Union[CartCandidate, dict]) -> CartLine:
        """
        Add a product to the cart.

        A matching line (same product, seller, category and brand) gets the
        quantities summed and price/discount/display data replaced by the
        candidate's; otherwise a new line is appended.

        Raises:
            InvalidQuantityError: candidate quantity is below 1
        """
        if not isinstance(candidate, CartCandidate):
            candidate = CartCandidate.model_validate(candidate)

        if candidate.quantity < 1:
            raise InvalidQuantityError(
                f"Quantity must be at least 1, got {candidate.quantity}"
            )

        existing = self._find_line(candidate.line_id)
        if existing:
            existing.quantity = existing.quantity + candidate.quantity
            existing.unit_price = candidate.unit_price
            existing.discount_percent = candidate.discount_percent
            existing.display_meta = candidate.display_meta
            line = existing
            logger.info(f"[CART] Merged into {line.line_id}: quantity now {line.quantity}")
        else:
            line = CartLine.from_candidate(candidate)
            self._lines.append(line)
            logger.info(f"[CART] Added {line.line_id} x{line.quantity}")

        self.save()
        return line.model_copy(deep=True)

    def remove_item(self, line_id: str) -> None:
        remaining = [line for line in self._lines if line.line_id != line_id]
        if len(remaining) == len(self._lines):
            logger.debug(f"[CART] Remove ignored, no line {line_id}")
            return

        self._lines = remaining
        logger.info(f"[CART] Removed {line_id}")
        self.save()

    def update_quantity(self, line_id: str, new_quantity: int) -> None:
        """Set a line's quantity exactly; zero or below removes the line."""
        if new_quantity <= 0:
            self.remove_item(line_id)
            return

        line = self._find_line(line_id)
        if not line:
            logger.debug(f"[CART] Update ignored, no line {line_id}")
            return

        line.quantity = new_quantity
        logger.info(f"[CART] Set {line_id} quantity to {new_quantity}")
        self.save()

    def clear_cart(self) -> None:
        self._lines = []
        self.save()
        logger.info("[CART] Cart cleared")
        self.notify(CART_CLEARED)

    # ------------------------------------------------------------------
    # queries
    # ------------------------------------------------------------------
    # Lines handed out are copies; the cart only changes through the mutators above.
    @property
    def lines(self) -> List[CartLine]:
        return self.snapshot()

    def _find_line(self, line_id: str) -> Optional[CartLine]:
        return next((line for line in self._lines if line.line_id == line_id), None)

    def get_line(self, line_id: str) -> Optional[CartLine]:
        line = self._find_line(line_id)
        return line.model_copy(deep=True) if line else None

    def is_empty(self) -> bool:
        return not self._lines

    def get_item_quantity(self, product_id: str, seller_id: Optional[str] = None) -> int:
        """Quantity of a product already in the cart, summed across variants."""
        return sum(
            line.quantity for line in self._lines
            if line.product_id == product_id
            and (seller_id is None or line.seller_id == seller_id)
        )

    def get_total_items(self) -> int:
        return sum(line.quantity for line in self._lines)

    def get_total_price(self) -> int:
        return sum_lines(self._lines)

    @property
    def total_items(self) -> int:
        return self.get_total_items()

    @property
    def total_price(self) -> int:
        return self.get_total_price()

    def get_items_by_seller(self) -> Dict[str, List[CartLine]]:
        groups: Dict[str, List[CartLine]] = {}
        for line in self._lines:
            groups.setdefault(line.seller_id, []).append(line.model_copy(deep=True))
        return groups

    def get_total_price_by_seller(self, seller_id: str) -> int:
        return sum_lines(line for line in self._lines if line.seller_id == seller_id)

    def snapshot(self) -> List[CartLine]:
        return [line.model_copy(deep=True) for line in self._lines]

    def to_line_items(self) -> List[dict]:
        """Lines in the shape the payment initiation endpoint expects."""
        return [
            {
                "productId": line.product_id,
                "sellerId": line.seller_id,
                "quantity": line.quantity,
                "price": float(line.unit_price),
                "name": line.display_meta.name,
            }
            for line in self._lines
        ]
