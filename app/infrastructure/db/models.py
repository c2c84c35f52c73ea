"""
SQLAlchemy ORM models (savings ledger + payment collaborators)
"""
from decimal import Decimal
from datetime import date as date_type, datetime
from sqlalchemy import (
    String, Integer, Text, TIMESTAMP, Date, func, Boolean, Numeric, ForeignKey,
    Index, CheckConstraint, false,
)
from sqlalchemy.orm import Mapped, mapped_column

from app.infrastructure.db.session import Base


# ============================================================================
# Savings ledger
# ============================================================================


class SavingsGoal(Base):
    """
    Savings goal toward a trip (or any target amount).

    current_amount / progress / is_completed / last_contribution are written
    only by ApplyContributionUseCase.
    """
    __tablename__ = "savings_goals"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)

    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    target_amount: Mapped[Decimal] = mapped_column(Numeric(precision=20, scale=2), nullable=False)
    current_amount: Mapped[Decimal] = mapped_column(
        Numeric(precision=20, scale=2), nullable=False, default=Decimal("0"), server_default="0"
    )
    progress: Mapped[Decimal] = mapped_column(
        Numeric(precision=12, scale=2), nullable=False, default=Decimal("0"), server_default="0"
    )
    is_completed: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=false(), index=True
    )

    # daily / weekly / monthly / custom
    frequency: Mapped[str] = mapped_column(String(16), nullable=False)
    amount_per_frequency: Mapped[Decimal] = mapped_column(
        Numeric(precision=20, scale=2), nullable=False, default=Decimal("0"), server_default="0"
    )
    start_date: Mapped[date_type | None] = mapped_column(Date, nullable=True)
    target_date: Mapped[date_type | None] = mapped_column(Date, nullable=True)
    last_contribution: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True), nullable=True)

    # Foreign reference only, trips live in another service
    trip_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        server_default=func.now(),
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False
    )

    __table_args__ = (
        CheckConstraint("target_amount > 0", name="ck_savings_goals_target_positive"),
    )


class Contribution(Base):
    """One accepted addition of money toward a goal. Immutable once completed."""
    __tablename__ = "contributions"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    saving_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("savings_goals.id", ondelete="CASCADE"), nullable=False
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(precision=20, scale=2), nullable=False)
    method: Mapped[str] = mapped_column(String(32), nullable=False)  # manual / auto-debit / mpesa / card / bank
    status: Mapped[str] = mapped_column(String(16), nullable=False)  # pending / completed / failed
    date: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False, index=True)

    transaction_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("transactions.id"), nullable=True, unique=True
    )
    # auto-debit:<goal>:<period>, txn:<id>, manual:<goal>:<client key>
    idempotency_key: Mapped[str | None] = mapped_column(String(255), nullable=True, unique=True)

    __table_args__ = (
        Index("ix_contributions_saving_status", "saving_id", "status"),
        CheckConstraint("amount > 0", name="ck_contributions_amount_positive"),
    )


class PaymentTransaction(Base):
    """
    Ledger record of money movement, reconciled via provider webhooks.

    pending -> completed | failed, exactly once.
    """
    __tablename__ = "transactions"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(precision=20, scale=2), nullable=False)
    type: Mapped[str] = mapped_column(String(32), nullable=False)  # savings_contribution / booking_payment / refund
    provider: Mapped[str] = mapped_column(String(32), nullable=False)  # mpesa / card / bank
    category: Mapped[str | None] = mapped_column(String(32), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    reference: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending", server_default="pending")

    saving_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("savings_goals.id"), nullable=True, index=True
    )
    booking_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("bookings.id"), nullable=True, index=True
    )

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        server_default=func.now(),
        nullable=False,
        index=True
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False
    )


# ============================================================================
# Collaborators (bookings, in-app notifications)
# ============================================================================


class BookingModel(Base):
    """Trip booking. Only the payment flags are touched by this service."""
    __tablename__ = "bookings"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    trip_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(precision=20, scale=2), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending", server_default="pending")
    is_paid: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=false())

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        server_default=func.now(),
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False
    )


class NotificationModel(Base):
    """In-app notification (achievement celebrations)."""
    __tablename__ = "notifications"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    type: Mapped[str] = mapped_column(String(32), nullable=False)
    code: Mapped[str | None] = mapped_column(String(64), nullable=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    saving_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)
    action_url: Mapped[str | None] = mapped_column(String(255), nullable=True)
    is_read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=false())

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        server_default=func.now(),
        nullable=False
    )

    __table_args__ = (
        Index("ix_notifications_user_created", "user_id", "created_at"),
    )
