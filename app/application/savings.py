"""
Savings goal use cases - goal lifecycle, contribution history, statistics.

Amounts and completion are never written here; only the contribution engine
(app.application.contributions) moves money into a goal.
"""
from collections import defaultdict
from datetime import date, datetime, timedelta
from decimal import Decimal

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.application.errors import (
    Forbidden, GoalNotFound, SavingsValidationError, StorageUnavailable,
)
from app.domain.savings_goal import (
    CONTRIBUTION_COMPLETED, VALID_FREQUENCIES, calculate_savings_plan, compute_progress,
)
from app.infrastructure.db.models import Contribution, PaymentTransaction, SavingsGoal
from app.utils.money import to_money
from app.utils.pagination import paginate
from app.utils.time import as_utc, now_utc

UPDATABLE_FIELDS = frozenset({
    "title", "description", "frequency", "amount_per_frequency", "target_date", "trip_id",
})
TREND_MONTHS = 6


def _validate_frequency(frequency: str) -> None:
    if frequency not in VALID_FREQUENCIES:
        raise SavingsValidationError(
            f"Invalid frequency: {frequency}. Use one of: daily, weekly, monthly, custom"
        )


def _validate_amount_per_frequency(value) -> Decimal:
    amount = to_money(value)
    if amount < 0:
        raise SavingsValidationError("amount_per_frequency cannot be negative")
    return amount


class CreateSavingGoalUseCase:
    """Use case: create a savings goal (current_amount starts at 0)"""

    def __init__(self, db: Session):
        self.db = db

    def execute(
        self,
        user_id: int,
        title: str,
        target_amount,
        frequency: str,
        amount_per_frequency=Decimal("0"),
        start_date: date | None = None,
        target_date: date | None = None,
        trip_id: str | None = None,
        description: str | None = None,
    ) -> SavingsGoal:
        title = (title or "").strip()
        if not title:
            raise SavingsValidationError("Title cannot be empty")

        target = to_money(target_amount)
        if target <= 0:
            raise SavingsValidationError("target_amount must be positive")

        _validate_frequency(frequency)
        per_period = _validate_amount_per_frequency(amount_per_frequency)

        if start_date and target_date and target_date < start_date:
            raise SavingsValidationError("target_date cannot be before start_date")

        goal = SavingsGoal(
            user_id=user_id,
            title=title,
            description=description,
            target_amount=target,
            current_amount=Decimal("0"),
            progress=Decimal("0"),
            is_completed=False,
            frequency=frequency,
            amount_per_frequency=per_period,
            start_date=start_date,
            target_date=target_date,
            trip_id=trip_id,
        )
        self.db.add(goal)
        try:
            self.db.flush()
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise StorageUnavailable() from exc
        return goal


class UpdateSavingGoalUseCase:
    """Use case: edit descriptive / scheduling fields of an open goal"""

    def __init__(self, db: Session):
        self.db = db

    def execute(self, goal_id: int, user_id: int, **changes) -> SavingsGoal:
        unknown = set(changes) - UPDATABLE_FIELDS
        if unknown:
            raise SavingsValidationError(f"Fields cannot be updated: {', '.join(sorted(unknown))}")

        goal = get_user_goal(self.db, user_id, goal_id)
        if goal.is_completed:
            raise SavingsValidationError("Cannot update completed saving goal")

        if "title" in changes:
            title = (changes["title"] or "").strip()
            if not title:
                raise SavingsValidationError("Title cannot be empty")
            goal.title = title
        if "description" in changes:
            goal.description = changes["description"]
        if "frequency" in changes:
            _validate_frequency(changes["frequency"])
            goal.frequency = changes["frequency"]
        if "amount_per_frequency" in changes:
            goal.amount_per_frequency = _validate_amount_per_frequency(changes["amount_per_frequency"])
        if "target_date" in changes:
            target_date = changes["target_date"]
            if target_date and goal.start_date and target_date < goal.start_date:
                raise SavingsValidationError("target_date cannot be before start_date")
            goal.target_date = target_date
        if "trip_id" in changes:
            goal.trip_id = changes["trip_id"]

        try:
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise StorageUnavailable() from exc
        return goal


# ============================================================================
# Queries
# ============================================================================


def get_user_goal(db: Session, user_id: int, goal_id: int) -> SavingsGoal:
    """
    Raises:
        GoalNotFound, Forbidden
    """
    goal = db.get(SavingsGoal, goal_id)
    if goal is None:
        raise GoalNotFound(goal_id)
    if goal.user_id != user_id:
        raise Forbidden()
    return goal


def _ordered_goals(db: Session, user_id: int):
    return (
        db.query(SavingsGoal)
        .filter(SavingsGoal.user_id == user_id)
        .order_by(
            SavingsGoal.is_completed.asc(),
            SavingsGoal.target_date.is_(None),
            SavingsGoal.target_date.asc(),
            SavingsGoal.id.asc(),
        )
    )


def list_user_goals(db: Session, user_id: int, page: int = 1, limit: int = 10):
    """Open goals first, then by nearest target date."""
    return paginate(_ordered_goals(db, user_id), page, limit)


def list_active_goals(db: Session, user_id: int) -> list[SavingsGoal]:
    return _ordered_goals(db, user_id).filter(SavingsGoal.is_completed.is_(False)).all()


def list_completed_goals(db: Session, user_id: int) -> list[SavingsGoal]:
    return (
        db.query(SavingsGoal)
        .filter(SavingsGoal.user_id == user_id, SavingsGoal.is_completed.is_(True))
        .order_by(SavingsGoal.target_date.desc(), SavingsGoal.id.desc())
        .all()
    )


def list_goals_by_trip(db: Session, user_id: int, trip_id: str) -> list[SavingsGoal]:
    return _ordered_goals(db, user_id).filter(SavingsGoal.trip_id == trip_id).all()


def list_contributions(db: Session, user_id: int, goal_id: int, page: int = 1, limit: int = 10):
    """
    Contribution history of one goal, newest first

    Returns:
        ([(Contribution, provider, reference)], pagination)
    """
    get_user_goal(db, user_id, goal_id)
    query = (
        db.query(Contribution, PaymentTransaction.provider, PaymentTransaction.reference)
        .outerjoin(PaymentTransaction, PaymentTransaction.id == Contribution.transaction_id)
        .filter(Contribution.saving_id == goal_id)
        .order_by(Contribution.date.desc(), Contribution.id.desc())
    )
    return paginate(query, page, limit)


def get_savings_stats(db: Session, user_id: int, now: datetime | None = None) -> dict:
    """
    Overview across all goals of a user

    Returns:
        {"overview": {...}, "recent_contributions": [...], "monthly_trend": [...]}
    """
    if now is None:
        now = now_utc()

    goals = db.query(SavingsGoal).filter(SavingsGoal.user_id == user_id).all()
    total_target = sum((g.target_amount for g in goals), Decimal("0"))
    total_saved = sum((g.current_amount for g in goals), Decimal("0"))
    overall = compute_progress(total_saved, total_target).quantize(Decimal("0.01")) if total_target > 0 else Decimal("0")

    contributions_q = (
        db.query(Contribution, SavingsGoal.title)
        .join(SavingsGoal, SavingsGoal.id == Contribution.saving_id)
        .filter(SavingsGoal.user_id == user_id, Contribution.status == CONTRIBUTION_COMPLETED)
    )
    total_contributions = contributions_q.count()
    recent = contributions_q.order_by(Contribution.date.desc(), Contribution.id.desc()).limit(5).all()

    return {
        "overview": {
            "total_goals": len(goals),
            "completed_goals": sum(1 for g in goals if g.is_completed),
            "active_goals": sum(1 for g in goals if not g.is_completed),
            "total_target": to_money(total_target),
            "total_saved": to_money(total_saved),
            "overall_progress": overall,
            "total_contributions": total_contributions,
        },
        "recent_contributions": [
            {
                "id": c.id,
                "saving_id": c.saving_id,
                "saving_title": title,
                "amount": to_money(c.amount),
                "method": c.method,
                "date": as_utc(c.date),
            }
            for c, title in recent
        ],
        "monthly_trend": _monthly_trend(db, user_id, now),
    }


def _monthly_trend(db: Session, user_id: int, now: datetime) -> list[dict]:
    """Completed contributions of the last six months summed per YYYY-MM."""
    since = as_utc(now) - timedelta(days=TREND_MONTHS * 31)
    rows = (
        db.query(Contribution.amount, Contribution.date)
        .join(SavingsGoal, SavingsGoal.id == Contribution.saving_id)
        .filter(
            SavingsGoal.user_id == user_id,
            Contribution.status == CONTRIBUTION_COMPLETED,
            Contribution.date >= since,
        )
        .all()
    )
    totals: dict[str, Decimal] = defaultdict(lambda: Decimal("0"))
    for amount, when in rows:
        totals[as_utc(when).strftime("%Y-%m")] += amount
    return [{"month": month, "amount": to_money(totals[month])} for month in sorted(totals)]


def plan_savings(target_amount, frequency: str, target_date: date, today: date | None = None):
    """
    Savings plan calculator

    Raises:
        SavingsValidationError: the inputs do not give at least one period
    """
    if today is None:
        today = now_utc().date()
    try:
        return calculate_savings_plan(to_money(target_amount), frequency, target_date, today)
    except ValueError as exc:
        raise SavingsValidationError(str(exc)) from exc
