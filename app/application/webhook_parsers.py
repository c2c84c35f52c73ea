"""
Payment provider webhook parsing and signature checks.

Each parser turns a provider-specific body into a WebhookEvent (or None for
event types we acknowledge but do not act on). Unknown extra fields are
ignored everywhere.
"""
import hashlib
import hmac
import json
import logging
from dataclasses import dataclass

from app.application.errors import PaymentValidationError, TransactionNotFound
from app.application.payments import OUTCOME_FAILED, OUTCOME_PENDING, OUTCOME_SUCCESS, VALID_OUTCOMES

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WebhookEvent:
    transaction_id: int
    outcome: str
    reference: str | None
    provider: str


def parse_transaction_id(value) -> int:
    """
    Ledger ids travel through providers as strings.

    Raises:
        TransactionNotFound: value cannot be a ledger id
    """
    if isinstance(value, bool):
        raise TransactionNotFound(value)
    try:
        tx_id = int(str(value).strip())
    except (TypeError, ValueError):
        raise TransactionNotFound(value)
    if tx_id <= 0:
        raise TransactionNotFound(value)
    return tx_id


def parse_generic(body: dict, provider: str) -> WebhookEvent:
    """{transactionId, status: success|failed|pending, reference, provider}"""
    status = str(body.get("status", "")).lower()
    if status not in VALID_OUTCOMES:
        raise PaymentValidationError(f"Unknown webhook status: {body.get('status')}")
    return WebhookEvent(
        transaction_id=parse_transaction_id(body.get("transactionId")),
        outcome=status,
        reference=_optional_str(body.get("reference")),
        provider=str(body.get("provider") or provider),
    )


def parse_mpesa_payment(body: dict) -> WebhookEvent:
    """M-Pesa payment confirmation (ResultCode 0 = success)."""
    return WebhookEvent(
        transaction_id=parse_transaction_id(body.get("TransactionID")),
        outcome=OUTCOME_SUCCESS if _result_code(body) == 0 else OUTCOME_FAILED,
        reference=_optional_str(body.get("MpesaReceiptNumber")),
        provider="mpesa",
    )


def parse_mpesa_callback(body: dict) -> WebhookEvent:
    """M-Pesa STK push callback; receipt number lives in CallbackMetadata.Item."""
    metadata = {}
    items = (body.get("CallbackMetadata") or {}).get("Item") or []
    for item in items:
        if isinstance(item, dict) and "Name" in item:
            metadata[item["Name"]] = item.get("Value")

    return WebhookEvent(
        transaction_id=parse_transaction_id(body.get("MerchantRequestID")),
        outcome=OUTCOME_SUCCESS if _result_code(body) == 0 else OUTCOME_FAILED,
        reference=_optional_str(metadata.get("MpesaReceiptNumber")),
        provider="mpesa",
    )


def parse_stripe(body: dict) -> WebhookEvent | None:
    """payment_intent.succeeded / payment_intent.payment_failed; others ignored."""
    event_type = body.get("type")
    if event_type == "payment_intent.succeeded":
        outcome = OUTCOME_SUCCESS
    elif event_type == "payment_intent.payment_failed":
        outcome = OUTCOME_FAILED
    elif event_type == "payment_intent.processing":
        outcome = OUTCOME_PENDING
    else:
        logger.info("Unhandled Stripe event type: %s", event_type)
        return None

    intent = (body.get("data") or {}).get("object") or {}
    metadata = intent.get("metadata") or {}
    return WebhookEvent(
        transaction_id=parse_transaction_id(metadata.get("transactionId")),
        outcome=outcome,
        reference=_optional_str(intent.get("id")),
        provider="card",
    )


def parse_flutterwave(body: dict) -> WebhookEvent | None:
    """charge.completed (+ data.status successful) / charge.failed; others ignored."""
    event = body.get("event")
    data = body.get("data") or {}
    if event == "charge.completed" and data.get("status") == "successful":
        outcome = OUTCOME_SUCCESS
    elif event == "charge.failed" or (event == "charge.completed" and data.get("status") == "failed"):
        outcome = OUTCOME_FAILED
    else:
        logger.info("Unhandled Flutterwave event: %s", event)
        return None

    return WebhookEvent(
        transaction_id=parse_transaction_id(data.get("tx_ref")),
        outcome=outcome,
        reference=_optional_str(data.get("flw_ref")),
        provider="card",
    )


def parse_bank_transfer(body: dict) -> WebhookEvent:
    """Bank transfer notice; status 'completed' is the only success value."""
    return WebhookEvent(
        transaction_id=parse_transaction_id(body.get("transactionId")),
        outcome=OUTCOME_SUCCESS if body.get("status") == "completed" else OUTCOME_FAILED,
        reference=_optional_str(body.get("referenceNumber")),
        provider="bank",
    )


# ---------------------------------------------------------------------------
# Signature checks
# ---------------------------------------------------------------------------

def mpesa_signature(secret: str, raw_body: bytes) -> str:
    return hmac.new(secret.encode(), raw_body, hashlib.sha256).hexdigest()


def verify_mpesa_signature(secret: str, raw_body: bytes, signature: str | None) -> bool:
    if not signature:
        return False
    return hmac.compare_digest(mpesa_signature(secret, raw_body), signature)


def stripe_signature(secret: str, timestamp: str, raw_body: bytes) -> str:
    payload = timestamp.encode() + b"." + raw_body
    return hmac.new(secret.encode(), payload, hashlib.sha256).hexdigest()


def verify_stripe_signature(secret: str, raw_body: bytes, header: str | None) -> bool:
    """Stripe-Signature: t=<unix ts>,v1=<hex hmac>[,v1=...]"""
    if not header:
        return False
    timestamp = None
    candidates = []
    for part in header.split(","):
        key, _, value = part.strip().partition("=")
        if key == "t":
            timestamp = value
        elif key == "v1":
            candidates.append(value)
    if timestamp is None or not candidates:
        return False
    expected = stripe_signature(secret, timestamp, raw_body)
    return any(hmac.compare_digest(expected, c) for c in candidates)


def verify_shared_secret(expected: str, provided: str | None) -> bool:
    """Flutterwave verif-hash / bank x-api-key style static secrets."""
    if not provided:
        return False
    return hmac.compare_digest(expected, provided)


def load_json_body(raw_body: bytes) -> dict:
    """
    Raises:
        PaymentValidationError: body is not a JSON object
    """
    try:
        body = json.loads(raw_body or b"{}")
    except ValueError:
        raise PaymentValidationError("Webhook body is not valid JSON")
    if not isinstance(body, dict):
        raise PaymentValidationError("Webhook body must be a JSON object")
    return body


def _result_code(body: dict) -> int | None:
    try:
        return int(body.get("ResultCode"))
    except (TypeError, ValueError):
        return None


def _optional_str(value) -> str | None:
    if value is None or value == "":
        return None
    return str(value)
