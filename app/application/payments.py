"""
Payment use cases - initiation, cancellation and webhook reconciliation.

A transaction moves pending -> completed | failed exactly once. The move is a
single conditional UPDATE (... WHERE status = 'pending'), so concurrent or
repeated webhook deliveries converge on one winner; the others see the
terminal state and write nothing.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy import func, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.application.contributions import ApplyContributionUseCase, validate_amount
from app.application.errors import (
    AlreadyCompleted, Forbidden, GoalNotFound, InvalidAmount, PaymentValidationError,
    StorageUnavailable, TransactionNotFound,
)
from app.application.notifications import AchievementNotifier
from app.domain.achievements import Achievement
from app.infrastructure.db.models import BookingModel, Contribution, PaymentTransaction, SavingsGoal
from app.utils.money import to_money
from app.utils.pagination import paginate
from app.utils.time import now_utc

logger = logging.getLogger(__name__)

TX_PENDING = "pending"
TX_COMPLETED = "completed"
TX_FAILED = "failed"
TERMINAL_STATUSES = frozenset({TX_COMPLETED, TX_FAILED})

TYPE_SAVINGS = "savings_contribution"
TYPE_BOOKING = "booking_payment"
TYPE_REFUND = "refund"
VALID_TYPES = frozenset({TYPE_SAVINGS, TYPE_BOOKING, TYPE_REFUND})

VALID_PROVIDERS = frozenset({"mpesa", "card", "bank"})
VALID_CATEGORIES = frozenset({"savings", "travel", "accommodation"})

OUTCOME_SUCCESS = "success"
OUTCOME_FAILED = "failed"
OUTCOME_PENDING = "pending"
VALID_OUTCOMES = frozenset({OUTCOME_SUCCESS, OUTCOME_FAILED, OUTCOME_PENDING})

SKIP_GOAL_NOT_FOUND = "goal_not_found"
SKIP_GOAL_COMPLETED = "goal_already_completed"

_PROVIDER_RESPONSES = {
    "mpesa": "STK push sent to your phone",
    "card": "Card payment processing",
    "bank": "Bank transfer initiated",
}


@dataclass
class ReconciliationResult:
    transaction_id: int
    status: str
    reference: str | None
    already_reconciled: bool
    goal_id: int | None = None
    contribution_id: int | None = None
    booking_id: int | None = None
    booking_confirmed: bool = False
    skipped_reason: str | None = None
    achievements: list[Achievement] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "transaction_id": self.transaction_id,
            "status": self.status,
            "reference": self.reference,
            "already_reconciled": self.already_reconciled,
            "goal_id": self.goal_id,
            "contribution_id": self.contribution_id,
            "booking_id": self.booking_id,
            "booking_confirmed": self.booking_confirmed,
            "skipped_reason": self.skipped_reason,
            "achievements": [{"title": a.title, "message": a.message} for a in self.achievements],
        }


def claim_transaction(
    db: Session,
    transaction_id: int,
    new_status: str,
    reference: str | None,
    now: datetime,
) -> bool:
    """
    Compare-and-swap pending -> new_status.

    Returns:
        True if this call performed the transition, False if the transaction
        was no longer pending
    """
    values = {"status": new_status, "updated_at": now}
    if reference:
        values["reference"] = reference
    result = db.execute(
        update(PaymentTransaction)
        .where(
            PaymentTransaction.id == transaction_id,
            PaymentTransaction.status == TX_PENDING,
        )
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def confirm_booking_payment(db: Session, booking_id: int) -> bool:
    """
    Mark a booking paid and confirmed. Safe to repeat.

    Returns:
        True if the booking is paid after the call, False if it does not exist
    """
    result = db.execute(
        update(BookingModel)
        .where(BookingModel.id == booking_id, BookingModel.is_paid.is_(False))
        .values(is_paid=True, status="confirmed")
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 1:
        logger.info("Booking %s confirmed by payment", booking_id)
        return True
    booking = db.get(BookingModel, booking_id)
    if booking is None:
        logger.warning("Paid booking %s does not exist", booking_id)
        return False
    return bool(booking.is_paid)


# ============================================================================
# Reconciliation
# ============================================================================


class ReconcilePaymentUseCase:
    """Use case: apply a payment provider outcome to a ledger transaction"""

    def __init__(self, db: Session, notifier: AchievementNotifier | None = None):
        self.db = db
        self.engine = ApplyContributionUseCase(db, notifier=notifier)

    def execute(
        self,
        transaction_id: int,
        outcome: str,
        provider_reference: str | None = None,
        now: datetime | None = None,
    ) -> ReconciliationResult:
        """
        Reconcile one webhook delivery. Safe to call any number of times.

        Args:
            transaction_id: ledger-assigned transaction id
            outcome: success / failed / pending
            provider_reference: provider-assigned id, stored as reference
            now: reconciliation time (default: current UTC time)

        Returns:
            ReconciliationResult; already_reconciled=True when the transaction
            was terminal before this call (nothing written)

        Raises:
            TransactionNotFound: unknown id (retryable, nothing written)
            StorageUnavailable: store failure, everything rolled back (retryable)
        """
        if outcome not in VALID_OUTCOMES:
            raise PaymentValidationError(f"Unknown payment outcome: {outcome}")
        if now is None:
            now = now_utc()

        try:
            tx = self.db.get(PaymentTransaction, transaction_id)
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise StorageUnavailable() from exc
        if tx is None:
            raise TransactionNotFound(transaction_id)

        if tx.status in TERMINAL_STATUSES:
            logger.info("Transaction %s already %s, duplicate delivery ignored", tx.id, tx.status)
            return self.stored_result(tx, already_reconciled=True)
        if outcome == OUTCOME_PENDING:
            return self.stored_result(tx, already_reconciled=False)

        new_status = TX_COMPLETED if outcome == OUTCOME_SUCCESS else TX_FAILED
        staged = None
        skipped_reason = None
        booking_confirmed = False
        try:
            if not claim_transaction(self.db, tx.id, new_status, provider_reference, now):
                # Another delivery won the race
                self.db.rollback()
                self.db.refresh(tx)
                logger.info("Transaction %s claimed concurrently, now %s", tx.id, tx.status)
                return self.stored_result(tx, already_reconciled=True)

            self.db.refresh(tx)
            if new_status == TX_COMPLETED:
                if tx.saving_id is not None:
                    try:
                        staged = self.engine.stage(
                            goal_id=tx.saving_id,
                            amount=tx.amount,
                            method=tx.provider,
                            transaction_id=tx.id,
                            idempotency_key=f"txn:{tx.id}",
                            now=now,
                        )
                    except GoalNotFound:
                        skipped_reason = SKIP_GOAL_NOT_FOUND
                    except AlreadyCompleted:
                        skipped_reason = SKIP_GOAL_COMPLETED
                    if skipped_reason:
                        logger.warning(
                            "Transaction %s paid but not applied to goal %s: %s",
                            tx.id, tx.saving_id, skipped_reason,
                        )
                if tx.booking_id is not None:
                    booking_confirmed = confirm_booking_payment(self.db, tx.booking_id)

            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.error("Reconciliation of transaction %s rolled back: %s", transaction_id, exc)
            raise StorageUnavailable() from exc
        except Exception:
            self.db.rollback()
            raise

        logger.info("Transaction %s reconciled as %s (ref %s)", tx.id, new_status, provider_reference)

        result = ReconciliationResult(
            transaction_id=tx.id,
            status=new_status,
            reference=tx.reference,
            already_reconciled=False,
            goal_id=tx.saving_id,
            booking_id=tx.booking_id,
            booking_confirmed=booking_confirmed,
            skipped_reason=skipped_reason,
        )
        if staged is not None:
            applied = self.engine.finalize(staged)
            result.contribution_id = applied.contribution.id
            result.achievements = applied.achievements
        return result

    def stored_result(self, tx: PaymentTransaction, already_reconciled: bool) -> ReconciliationResult:
        """Rebuild the outcome of an earlier reconciliation from the store."""
        contribution = (
            self.db.query(Contribution)
            .filter(Contribution.transaction_id == tx.id)
            .first()
        )
        skipped_reason = None
        if tx.status == TX_COMPLETED and tx.saving_id is not None and contribution is None:
            goal = self.db.get(SavingsGoal, tx.saving_id)
            skipped_reason = SKIP_GOAL_NOT_FOUND if goal is None else SKIP_GOAL_COMPLETED

        booking_confirmed = False
        if tx.status == TX_COMPLETED and tx.booking_id is not None:
            booking = self.db.get(BookingModel, tx.booking_id)
            booking_confirmed = bool(booking and booking.is_paid)

        return ReconciliationResult(
            transaction_id=tx.id,
            status=tx.status,
            reference=tx.reference,
            already_reconciled=already_reconciled,
            goal_id=tx.saving_id,
            contribution_id=contribution.id if contribution else None,
            booking_id=tx.booking_id,
            booking_confirmed=booking_confirmed,
            skipped_reason=skipped_reason,
        )


# ============================================================================
# Payment lifecycle
# ============================================================================


class InitiatePaymentUseCase:
    """Use case: create a pending transaction and hand it to the provider"""

    def __init__(self, db: Session):
        self.db = db

    def execute(
        self,
        user_id: int,
        amount,
        type: str,
        provider: str,
        category: str | None = None,
        notes: str | None = None,
        saving_id: int | None = None,
        booking_id: int | None = None,
    ) -> tuple[PaymentTransaction, dict]:
        """
        Returns:
            (transaction, provider_response)
        """
        try:
            value = validate_amount(amount)
        except InvalidAmount as exc:
            raise PaymentValidationError(exc.message)
        if type not in VALID_TYPES:
            raise PaymentValidationError(f"Unsupported transaction type: {type}")
        if provider not in VALID_PROVIDERS:
            raise PaymentValidationError("Unsupported payment provider")
        if category is not None and category not in VALID_CATEGORIES:
            raise PaymentValidationError(f"Unsupported category: {category}")

        if type == TYPE_SAVINGS:
            if saving_id is None:
                raise PaymentValidationError("saving_id is required for savings contributions")
            goal = self.db.get(SavingsGoal, saving_id)
            if goal is None:
                raise GoalNotFound(saving_id)
            if goal.user_id != user_id:
                raise Forbidden()
            if goal.is_completed:
                raise AlreadyCompleted(saving_id)
        elif saving_id is not None:
            raise PaymentValidationError("saving_id is only allowed for savings contributions")

        if type == TYPE_BOOKING:
            if booking_id is None:
                raise PaymentValidationError("booking_id is required for booking payments")
            booking = self.db.get(BookingModel, booking_id)
            if booking is None or booking.user_id != user_id:
                raise PaymentValidationError("Booking not found")
            if booking.is_paid:
                raise PaymentValidationError("Booking is already paid")

        tx = PaymentTransaction(
            user_id=user_id,
            amount=value,
            type=type,
            provider=provider,
            category=category,
            notes=notes,
            saving_id=saving_id,
            booking_id=booking_id,
            status=TX_PENDING,
        )
        self.db.add(tx)
        try:
            self.db.flush()
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise StorageUnavailable() from exc

        logger.info("Transaction %s initiated: %s %s via %s", tx.id, type, value, provider)
        provider_response = {
            "provider": provider,
            "status": TX_PENDING,
            "message": _PROVIDER_RESPONSES[provider],
        }
        return tx, provider_response


class CancelPaymentUseCase:
    """Use case: user cancels a payment that is still pending"""

    def __init__(self, db: Session):
        self.db = db

    def execute(self, user_id: int, transaction_id: int, now: datetime | None = None) -> PaymentTransaction:
        tx = get_user_transaction(self.db, user_id, transaction_id)
        if tx.status != TX_PENDING:
            raise PaymentValidationError("Pending transaction not found")
        try:
            claimed = claim_transaction(self.db, tx.id, TX_FAILED, None, now or now_utc())
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise StorageUnavailable() from exc
        self.db.refresh(tx)
        if not claimed:
            raise PaymentValidationError("Pending transaction not found")
        return tx


# ============================================================================
# Queries
# ============================================================================


def get_user_transaction(db: Session, user_id: int, transaction_id: int) -> PaymentTransaction:
    tx = (
        db.query(PaymentTransaction)
        .filter(PaymentTransaction.id == transaction_id, PaymentTransaction.user_id == user_id)
        .first()
    )
    if tx is None:
        raise TransactionNotFound(transaction_id)
    return tx


def list_user_transactions(db: Session, user_id: int, page: int = 1, limit: int = 10):
    query = (
        db.query(PaymentTransaction)
        .filter(PaymentTransaction.user_id == user_id)
        .order_by(PaymentTransaction.created_at.desc(), PaymentTransaction.id.desc())
    )
    return paginate(query, page, limit)


def get_payment_stats(db: Session, user_id: int) -> dict:
    """Counts by status, completed volume, savings vs booking payments."""
    rows = (
        db.query(PaymentTransaction.status, func.count(PaymentTransaction.id))
        .filter(PaymentTransaction.user_id == user_id)
        .group_by(PaymentTransaction.status)
        .all()
    )
    by_status = {status: count for status, count in rows}

    total_amount = (
        db.query(func.coalesce(func.sum(PaymentTransaction.amount), 0))
        .filter(PaymentTransaction.user_id == user_id, PaymentTransaction.status == TX_COMPLETED)
        .scalar()
    )
    by_type = dict(
        db.query(PaymentTransaction.type, func.count(PaymentTransaction.id))
        .filter(PaymentTransaction.user_id == user_id)
        .group_by(PaymentTransaction.type)
        .all()
    )

    return {
        "total_transactions": sum(by_status.values()),
        "successful_payments": by_status.get(TX_COMPLETED, 0),
        "pending_payments": by_status.get(TX_PENDING, 0),
        "failed_payments": by_status.get(TX_FAILED, 0),
        "total_amount": to_money(total_amount),
        "savings_contributions": by_type.get(TYPE_SAVINGS, 0),
        "booking_payments": by_type.get(TYPE_BOOKING, 0),
    }
