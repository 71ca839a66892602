"""
Webhook signature verification (HMAC-SHA512, hex encoded).

Two canonical forms are supported:

* ``raw_body``: the request body bytes exactly as received.
* ``paymob_fields``: the gateway's transaction HMAC, computed over the
  concatenation of a fixed, ordered list of ``obj`` fields.

Verification fails closed: an empty secret, a missing or non-hex signature,
or any mismatch returns False.
"""
import hashlib
import hmac
import json
import logging
import re
from course_payments.core.exceptions import SignatureInvalid, WebhookMisconfigured

logger = logging.getLogger(__name__)

RAW_BODY_SCHEME = "raw_body"
PAYMOB_FIELDS_SCHEME = "paymob_fields"

# SHA-512 hex digest as the gateway sends it: 128 lowercase hex chars, no padding
_SIGNATURE_PATTERN = re.compile(r"[0-9a-f]{128}")

PAYMOB_TRANSACTION_FIELDS = [
    "amount_cents",
    "created_at",
    "currency",
    "error_occured",
    "has_parent_transaction",
    "id",
    "integration_id",
    "is_3d_secure",
    "is_auth",
    "is_capture",
    "is_refunded",
    "is_standalone_payment",
    "is_voided",
    "order.id",
    "owner",
    "pending",
    "source_data.pan",
    "source_data.sub_type",
    "source_data.type",
    "success",
]


def canonical_payload(payload: bytes | str | dict) -> bytes:
    if isinstance(payload, bytes):
        return payload
    if isinstance(payload, str):
        return payload.encode()
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False).encode()


def compute_signature(payload: bytes | str | dict, secret: str) -> str:
    return hmac.new(secret.encode(), canonical_payload(payload), hashlib.sha512).hexdigest()


def verify(raw_payload: bytes | str | dict, provided_signature: str | None, secret: str | None) -> bool:
    if not secret or not provided_signature:
        return False
    if not _SIGNATURE_PATTERN.fullmatch(provided_signature):
        return False
    expected = compute_signature(raw_payload, secret)
    return hmac.compare_digest(expected, provided_signature)


def _field_value(obj: dict, dotted_key: str) -> str:
    value = obj
    for part in dotted_key.split("."):
        if not isinstance(value, dict):
            value = None
            break
        value = value.get(part)
    if value is None:
        # the gateway signs absent source_data entries as "false"
        return "false" if dotted_key.startswith("source_data.") else ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def paymob_transaction_string(obj: dict) -> str:
    return "".join(_field_value(obj, key) for key in PAYMOB_TRANSACTION_FIELDS)


class SignatureVerifier:
    def __init__(self, secret: str | None, scheme: str = RAW_BODY_SCHEME):
        if scheme not in (RAW_BODY_SCHEME, PAYMOB_FIELDS_SCHEME):
            raise ValueError(f"unknown webhook signature scheme: {scheme}")
        self.secret = secret
        self.scheme = scheme

    @property
    def configured(self) -> bool:
        return bool(self.secret)

    def ensure_configured(self) -> None:
        if not self.configured:
            logger.critical("webhook HMAC secret is not configured, refusing all gateway notifications")
            raise WebhookMisconfigured()

    def check(self, raw_body: bytes, transaction_obj: dict | None, signature: str | None) -> None:
        """Raise SignatureInvalid unless the signature matches under the configured scheme."""
        self.ensure_configured()
        if self.scheme == PAYMOB_FIELDS_SCHEME:
            payload = paymob_transaction_string(transaction_obj or {})
        else:
            payload = raw_body
        if not verify(payload, signature, self.secret):
            logger.warning("webhook rejected: signature mismatch")
            raise SignatureInvalid()
