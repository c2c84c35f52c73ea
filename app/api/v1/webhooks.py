"""
Payment provider webhooks

Every route parses the provider body into a WebhookEvent and hands it to
ReconcilePaymentUseCase. Duplicate deliveries answer 200 with
already_reconciled=true; retryable ledger errors answer 404/503 so that the
provider redelivers.
"""
import logging
from typing import Callable

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from app.api.deps import get_db
from app.application.errors import LedgerError
from app.application.notifications import DbAchievementNotifier
from app.application.payments import ReconcilePaymentUseCase, VALID_PROVIDERS
from app.application.webhook_parsers import (
    WebhookEvent,
    load_json_body,
    parse_bank_transfer,
    parse_flutterwave,
    parse_generic,
    parse_mpesa_callback,
    parse_mpesa_payment,
    parse_stripe,
    verify_mpesa_signature,
    verify_shared_secret,
    verify_stripe_signature,
)
from app.config import Settings, get_settings
from app.utils.time import now_utc

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


async def raw_body(request: Request) -> bytes:
    """Signatures are computed over the exact bytes the provider sent"""
    return await request.body()


def _check_signature(settings: Settings, secret: str, verify: Callable[[], bool], provider: str) -> None:
    """
    Empty secret: check skipped unless WEBHOOK_SIGNATURE_REQUIRED.

    Raises:
        HTTPException(401)
    """
    if not secret:
        if settings.WEBHOOK_SIGNATURE_REQUIRED:
            logger.error("Webhook secret for %s is not configured", provider)
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid webhook signature")
        return
    if not verify():
        logger.warning("Rejected %s webhook with invalid signature", provider)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid webhook signature")


def _reconcile(db: Session, event: WebhookEvent) -> dict:
    use_case = ReconcilePaymentUseCase(db, notifier=DbAchievementNotifier(db))
    result = use_case.execute(
        transaction_id=event.transaction_id,
        outcome=event.outcome,
        provider_reference=event.reference,
    )
    return {"success": True, "data": result.to_dict()}


# === Endpoints ===

@router.post("/health")
def webhook_health():
    return {
        "status": "healthy",
        "timestamp": now_utc().isoformat(),
        "message": "Webhook endpoints are operational",
    }


@router.post("/mpesa/payment")
def mpesa_payment(
    request: Request,
    body: bytes = Depends(raw_body),
    settings: Settings = Depends(get_settings),
    db: Session = Depends(get_db),
):
    """M-Pesa payment confirmation"""
    secret = settings.WEBHOOK_SECRET_MPESA
    _check_signature(
        settings, secret,
        lambda: verify_mpesa_signature(secret, body, request.headers.get("signature")),
        "mpesa",
    )
    event = parse_mpesa_payment(load_json_body(body))
    return _reconcile(db, event)


@router.post("/mpesa/callback")
def mpesa_callback(body: bytes = Depends(raw_body), db: Session = Depends(get_db)):
    """
    M-Pesa STK push callback. Answers in Daraja format; failures are reported
    as ResultCode 1, never as an HTTP error.
    """
    try:
        event = parse_mpesa_callback(load_json_body(body))
    except (LedgerError, ValueError) as exc:
        logger.error("M-Pesa callback rejected: %s", exc)
        return {"ResultCode": 1, "ResultDesc": "Failed"}

    try:
        _reconcile(db, event)
    except LedgerError as exc:
        # Daraja is never told to retry, so a retryable failure needs manual follow-up
        log = logger.error if exc.retryable else logger.warning
        log(
            "M-Pesa callback for transaction %s not reconciled: %s (%s, retryable=%s)",
            event.transaction_id, exc.message, exc.code, exc.retryable,
        )
        return {"ResultCode": 1, "ResultDesc": "Failed"}
    except ValueError as exc:
        logger.warning("M-Pesa callback for transaction %s rejected: %s", event.transaction_id, exc)
        return {"ResultCode": 1, "ResultDesc": "Failed"}
    return {"ResultCode": 0, "ResultDesc": "Success"}


@router.post("/card/stripe")
def stripe_webhook(
    request: Request,
    body: bytes = Depends(raw_body),
    settings: Settings = Depends(get_settings),
    db: Session = Depends(get_db),
):
    secret = settings.WEBHOOK_SECRET_STRIPE
    _check_signature(
        settings, secret,
        lambda: verify_stripe_signature(secret, body, request.headers.get("stripe-signature")),
        "stripe",
    )
    event = parse_stripe(load_json_body(body))
    if event is None:
        return {"received": True}
    return _reconcile(db, event)


@router.post("/card/flutterwave")
def flutterwave_webhook(
    request: Request,
    body: bytes = Depends(raw_body),
    settings: Settings = Depends(get_settings),
    db: Session = Depends(get_db),
):
    secret = settings.WEBHOOK_SECRET_FLUTTERWAVE
    _check_signature(
        settings, secret,
        lambda: verify_shared_secret(secret, request.headers.get("verif-hash")),
        "flutterwave",
    )
    event = parse_flutterwave(load_json_body(body))
    if event is None:
        return {"status": "ignored"}
    return _reconcile(db, event)


@router.post("/bank/transfer")
def bank_transfer_webhook(
    request: Request,
    body: bytes = Depends(raw_body),
    settings: Settings = Depends(get_settings),
    db: Session = Depends(get_db),
):
    secret = settings.WEBHOOK_API_KEY_BANK
    _check_signature(
        settings, secret,
        lambda: verify_shared_secret(secret, request.headers.get("x-api-key")),
        "bank",
    )
    event = parse_bank_transfer(load_json_body(body))
    response = _reconcile(db, event)
    response["message"] = "Bank transfer processed successfully"
    return response


@router.post("/{provider}")
def generic_webhook(
    provider: str,
    request: Request,
    body: bytes = Depends(raw_body),
    settings: Settings = Depends(get_settings),
    db: Session = Depends(get_db),
):
    """{transactionId, status: success|failed|pending, reference} for any supported provider"""
    if provider not in VALID_PROVIDERS:
        raise HTTPException(status_code=404, detail=f"Unknown provider: {provider}")
    secret = settings.WEBHOOK_API_KEY
    _check_signature(
        settings, secret,
        lambda: verify_shared_secret(secret, request.headers.get("x-api-key")),
        provider,
    )
    event = parse_generic(load_json_body(body), provider)
    return _reconcile(db, event)
