"""
Webhook Signature Verification - HMAC-SHA512 over NOWPayments' canonical JSON.

The gateway signs JSON.stringify of the body with top-level keys sorted.
Verification re-creates that exact string from the raw request bytes.
"""

import hashlib
import hmac
import json
import math
from decimal import Decimal
from typing import Any

from license_billing.exceptions import AuthenticationError
from license_billing.observability import get_logger

logger = get_logger(__name__)

MAX_SAFE_INTEGER = 2**53


def parse_payload(raw_body: bytes) -> Any:
    """Decode a webhook body."""
    return json.loads(raw_body.decode("utf-8"))


def format_js_number(value: int | float) -> str:
    """
    Render a number exactly as JavaScript's Number.prototype.toString does.

    Positional notation for 1e-7 <= |x| < 1e21, exponent form otherwise
    (1e-7, 1.5e+21). Integers beyond 2**53 are rounded to the nearest double
    first, as a JavaScript parser would have done.
    """
    if isinstance(value, int) and abs(value) <= MAX_SAFE_INTEGER:
        return str(value)

    try:
        number = float(value)
    except OverflowError:
        return "null"
    if not math.isfinite(number):
        return "null"
    if number == 0:
        return "0"

    sign = "-" if number < 0 else ""
    # repr gives the shortest round-tripping digits, the same digits JavaScript picks
    _, digit_tuple, exponent = Decimal(repr(abs(number))).as_tuple()
    digits = "".join(str(d) for d in digit_tuple).rstrip("0")
    exponent += len(digit_tuple) - len(digits)
    k = len(digits)
    n = exponent + k

    if k <= n <= 21:
        text = digits + "0" * (n - k)
    elif 0 < n <= 21:
        text = f"{digits[:n]}.{digits[n:]}"
    elif -6 < n <= 0:
        text = "0." + "0" * -n + digits
    else:
        e = n - 1
        mantissa = digits if k == 1 else f"{digits[0]}.{digits[1:]}"
        text = f"{mantissa}e{'+' if e >= 0 else '-'}{abs(e)}"
    return sign + text


def _serialize(value: Any) -> str:
    """JSON.stringify for decoded JSON values, preserving object key order."""
    if value is None:
        return "null"
    if value is True:
        return "true"
    if value is False:
        return "false"
    if isinstance(value, int | float):
        return format_js_number(value)
    if isinstance(value, str):
        return json.dumps(value, ensure_ascii=False)
    if isinstance(value, list):
        return "[" + ",".join(_serialize(item) for item in value) + "]"
    if isinstance(value, dict):
        members = (f"{_serialize(str(k))}:{_serialize(v)}" for k, v in value.items())
        return "{" + ",".join(members) + "}"
    raise TypeError(f"Cannot serialize {type(value).__name__} as JSON")


def canonicalize(payload: dict[str, Any]) -> str:
    """
    Serialize with sorted top-level keys the way the gateway does.

    Keys are ordered by UTF-16 code units as JavaScript's sort() orders them;
    nested objects keep their order.
    """
    ordered = {key: payload[key] for key in sorted(payload, key=lambda k: k.encode("utf-16-be"))}
    return _serialize(ordered)


def sign_payload(payload: dict[str, Any], secret: str) -> str:
    """Compute the hex HMAC-SHA512 signature the gateway would send."""
    digest = hmac.new(
        secret.encode("utf-8"), canonicalize(payload).encode("utf-8"), hashlib.sha512
    )
    return digest.hexdigest()


def verify_signature(raw_body: bytes, signature_header: str | None, secret: str | None) -> bool:
    """
    Verify an x-nowpayments-sig header against the raw request body.

    Never raises. Returns False on a missing secret or header, a body that is
    not a JSON object, or any mismatch.
    """
    if not secret:
        logger.warning("webhook_signature_secret_missing")
        return False

    if not signature_header:
        logger.warning("webhook_signature_header_missing")
        return False

    try:
        payload = parse_payload(raw_body)
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        logger.warning("webhook_signature_body_unparseable", error=str(e))
        return False

    if not isinstance(payload, dict):
        logger.warning("webhook_signature_body_not_object")
        return False

    expected = sign_payload(payload, secret)
    provided = signature_header.strip().lower()

    if len(provided) != len(expected):
        logger.warning("webhook_signature_length_mismatch")
        return False

    if not hmac.compare_digest(expected.encode("ascii"), provided.encode("utf-8")):
        logger.warning("webhook_signature_invalid")
        return False

    return True


def require_valid_signature(
    raw_body: bytes, signature_header: str | None, secret: str | None
) -> None:
    """
    Raise AuthenticationError unless the body carries a valid signature.

    Raises:
        AuthenticationError: If verification fails for any reason
    """
    if not verify_signature(raw_body, signature_header, secret):
        raise AuthenticationError("Invalid signature")
