"""
Payment gateway return handling.

The gateway sends the shopper back to the success URL with a ``data`` query
parameter holding base64-encoded JSON, or to the failure URL with plain
query parameters.
"""

import base64
import binascii
import json
import logging
from typing import Mapping, Optional

from pydantic import ValidationError

from ..models.checkout import GatewayFailure, GatewayReturn
from .errors import PaymentDecodeError

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S"
)
logger = logging.getLogger(__name__)

FAILURE_FIELDS = ("transaction_uuid", "product_code", "total_amount", "error_message", "status")


def _b64decode(encoded: str) -> bytes:
    padded = encoded.strip() + "=" * (-len(encoded.strip()) % 4)
    try:
        return base64.b64decode(padded, validate=True)
    except (binascii.Error, ValueError):
        return base64.urlsafe_b64decode(padded)


def decode_success_payload(encoded: str) -> GatewayReturn:
    """
    Decode the success-URL payload.

    Raises:
        PaymentDecodeError: payload missing, not base64 JSON, or lacking
            transaction_uuid / status / total_amount
    """
    if not encoded:
        raise PaymentDecodeError("Payment data missing from return URL")

    try:
        raw = _b64decode(encoded)
        data = json.loads(raw.decode("utf-8"))
    except (binascii.Error, ValueError, UnicodeDecodeError) as e:
        logger.error(f"[GATEWAY] Could not decode payment data: {e}")
        raise PaymentDecodeError(f"Could not decode payment data: {e}") from e

    if not isinstance(data, dict):
        raise PaymentDecodeError("Payment data is not a JSON object")

    try:
        payload = GatewayReturn.model_validate(data)
    except ValidationError as e:
        logger.error(f"[GATEWAY] Incomplete payment data: {e}")
        raise PaymentDecodeError(f"Incomplete payment data: {e.error_count()} invalid field(s)") from e

    logger.info(f"[GATEWAY] Decoded return for {payload.transaction_ref}: {payload.status}")
    return payload


def encode_success_payload(payload: dict) -> str:
    return base64.b64encode(json.dumps(payload).encode("utf-8")).decode("ascii")


def parse_failure_params(params: Mapping[str, str]) -> GatewayFailure:
    """Pick the known failure fields out of the return URL's query string."""
    data = {k: params[k] for k in FAILURE_FIELDS if params.get(k)}
    try:
        return GatewayFailure.model_validate(data)
    except ValidationError as e:
        # an unparseable amount should not hide the rest of the failure details
        logger.warning(f"[GATEWAY] Ignoring malformed failure field(s): {e}")
        data.pop("total_amount", None)
        return GatewayFailure.model_validate(data)


def transaction_ref_from_return(params: Mapping[str, str]) -> Optional[str]:
    """Transaction ref carried by either return URL, or None if it cannot be read."""
    if params.get("data"):
        try:
            return decode_success_payload(params["data"]).transaction_ref
        except PaymentDecodeError:
            return None
    return params.get("transaction_uuid") or None
