"""
Payment API endpoints
"""
from datetime import datetime

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, field_validator
from sqlalchemy.orm import Session

from app.api.deps import get_current_user_id, get_db
from app.application.payments import (
    CancelPaymentUseCase,
    InitiatePaymentUseCase,
    get_payment_stats,
    get_user_transaction,
    list_user_transactions,
)
from app.infrastructure.db.models import PaymentTransaction
from app.utils.time import as_utc
from app.utils.validation import parse_amount


router = APIRouter(prefix="/api/v1/payments", tags=["payments"])


# === Request/Response models ===

class InitiatePaymentRequest(BaseModel):
    amount: str
    type: str  # savings_contribution, booking_payment, refund
    provider: str  # mpesa, card, bank
    category: str | None = None
    notes: str | None = None
    saving_id: int | None = None
    booking_id: int | None = None

    @field_validator("amount")
    @classmethod
    def validate_amount(cls, v: str) -> str:
        return str(parse_amount(v))


class TransactionResponse(BaseModel):
    id: int
    amount: str  # Decimal as string
    type: str
    provider: str
    category: str | None
    notes: str | None
    reference: str | None
    status: str
    saving_id: int | None
    booking_id: int | None
    created_at: datetime | None


def _transaction_response(tx: PaymentTransaction) -> TransactionResponse:
    return TransactionResponse(
        id=tx.id,
        amount=str(tx.amount),
        type=tx.type,
        provider=tx.provider,
        category=tx.category,
        notes=tx.notes,
        reference=tx.reference,
        status=tx.status,
        saving_id=tx.saving_id,
        booking_id=tx.booking_id,
        created_at=as_utc(tx.created_at) if tx.created_at else None,
    )


# === Endpoints ===

@router.post("/initiate", status_code=201)
def initiate_payment(
    req: InitiatePaymentRequest,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    """Create a pending transaction; the provider outcome arrives by webhook"""
    tx, provider_response = InitiatePaymentUseCase(db).execute(user_id=user_id, **req.model_dump())
    return {"transaction": _transaction_response(tx), "provider_response": provider_response}


@router.get("")
def list_payments(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    transactions, pagination = list_user_transactions(db, user_id, page, limit)
    return {"transactions": [_transaction_response(tx) for tx in transactions], "pagination": pagination}


@router.get("/stats")
def payment_stats(user_id: int = Depends(get_current_user_id), db: Session = Depends(get_db)):
    stats = get_payment_stats(db, user_id)
    stats["total_amount"] = str(stats["total_amount"])
    return stats


@router.get("/{transaction_id}", response_model=TransactionResponse)
def get_payment(transaction_id: int, user_id: int = Depends(get_current_user_id), db: Session = Depends(get_db)):
    return _transaction_response(get_user_transaction(db, user_id, transaction_id))


@router.post("/{transaction_id}/cancel", response_model=TransactionResponse)
def cancel_payment(transaction_id: int, user_id: int = Depends(get_current_user_id), db: Session = Depends(get_db)):
    """Cancel a payment still waiting for the provider"""
    return _transaction_response(CancelPaymentUseCase(db).execute(user_id, transaction_id))
