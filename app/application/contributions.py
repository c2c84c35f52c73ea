"""
Contribution engine - the single entry point for every money-in-goal event.

Manual contributions, provider-reconciled payments and recurring auto-debits
all go through ApplyContributionUseCase, so the ledger invariants hold for
every source:

1. goal.current_amount == sum of completed contributions
2. goal.progress is recomputed from current_amount on every write
3. goal.is_completed becomes true exactly when current_amount >= target_amount
   and never reverts
4. one contribution per triggering event (unique transaction_id /
   idempotency_key)

The insert and the goal update happen in one database transaction with the
goal row locked (SELECT ... FOR UPDATE). Achievements are evaluated after the
commit.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, InvalidOperation

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.application.errors import (
    AlreadyCompleted, DuplicateContribution, Forbidden, GoalNotFound, InvalidAmount, NotDue,
    SavingsValidationError, StorageUnavailable,
)
from app.application.notifications import AchievementEvent, AchievementNotifier, dispatch_achievements
from app.domain import achievements as achievement_rules
from app.domain.achievements import Achievement
from app.domain.savings_goal import (
    CONTRIBUTION_COMPLETED, METHOD_MANUAL, VALID_METHODS, compute_progress, is_contribution_due,
    is_goal_reached,
)
from app.infrastructure.db.models import Contribution, SavingsGoal
from app.utils.money import CENT
from app.utils.time import now_utc

logger = logging.getLogger(__name__)


@dataclass
class StagedContribution:
    """Writes flushed inside an open transaction, not yet committed."""
    goal: SavingsGoal
    contribution: Contribution
    progress_before: Decimal
    progress_after: Decimal
    contribution_count: int


@dataclass
class ContributionResult:
    goal: SavingsGoal
    contribution: Contribution
    achievements: list[Achievement] = field(default_factory=list)


def validate_amount(amount) -> Decimal:
    """
    Reject non-positive or non-numeric amounts before touching the store

    Raises:
        InvalidAmount
    """
    try:
        value = amount if isinstance(amount, Decimal) else Decimal(str(amount))
    except (InvalidOperation, ValueError):
        raise InvalidAmount(amount, "must be a number")
    if not value.is_finite() or value <= 0:
        raise InvalidAmount(amount)
    if value != value.quantize(CENT):
        raise InvalidAmount(amount, "must have at most 2 decimal places")
    return value


class ApplyContributionUseCase:
    """Use case: apply one contribution to a savings goal"""

    def __init__(self, db: Session, notifier: AchievementNotifier | None = None):
        self.db = db
        self.notifier = notifier

    def execute(
        self,
        goal_id: int,
        amount,
        method: str = METHOD_MANUAL,
        transaction_id: int | None = None,
        idempotency_key: str | None = None,
        user_id: int | None = None,
        due_frequency: str | None = None,
        now: datetime | None = None,
    ) -> ContributionResult:
        """
        Apply a contribution and commit.

        Args:
            goal_id: savings goal
            amount: positive amount (Decimal or numeric string)
            method: manual / auto-debit / provider name
            transaction_id: ledger transaction that funded it (webhook path)
            idempotency_key: unique label of the triggering event
            user_id: when given, the goal must belong to this user
            due_frequency: when given, the locked goal must still be due for
                this frequency (recurring debits)
            now: contribution timestamp (default: current UTC time)

        Returns:
            ContributionResult with the achievements crossed by this contribution

        Raises:
            InvalidAmount, GoalNotFound, AlreadyCompleted, Forbidden, NotDue,
            DuplicateContribution, StorageUnavailable
        """
        try:
            staged = self.stage(
                goal_id=goal_id,
                amount=amount,
                method=method,
                transaction_id=transaction_id,
                idempotency_key=idempotency_key,
                user_id=user_id,
                due_frequency=due_frequency,
                now=now,
            )
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.error("Contribution to goal %s rolled back: %s", goal_id, exc)
            raise StorageUnavailable() from exc
        except Exception:
            self.db.rollback()
            raise

        return self.finalize(staged)

    def stage(
        self,
        goal_id: int,
        amount,
        method: str = METHOD_MANUAL,
        transaction_id: int | None = None,
        idempotency_key: str | None = None,
        user_id: int | None = None,
        due_frequency: str | None = None,
        now: datetime | None = None,
    ) -> StagedContribution:
        """
        Do the writes inside the caller's open transaction without committing.

        The caller owns commit/rollback and must call finalize() after a
        successful commit.
        """
        value = validate_amount(amount)
        if method not in VALID_METHODS:
            raise SavingsValidationError(f"Unsupported contribution method: {method}")
        if now is None:
            now = now_utc()

        try:
            goal = (
                self.db.query(SavingsGoal)
                .filter(SavingsGoal.id == goal_id)
                .with_for_update()
                .first()
            )
        except SQLAlchemyError as exc:
            raise StorageUnavailable() from exc

        if goal is None:
            raise GoalNotFound(goal_id)
        if user_id is not None and goal.user_id != user_id:
            raise Forbidden()
        if goal.is_completed:
            raise AlreadyCompleted(goal_id)
        # Re-checked on the locked row: a contribution committed since the
        # scheduler snapshot already covers this period
        if due_frequency is not None and not is_contribution_due(due_frequency, goal.last_contribution, now):
            raise NotDue(goal_id)

        target = goal.target_amount
        progress_before = compute_progress(goal.current_amount, target)

        contribution = Contribution(
            saving_id=goal.id,
            amount=value,
            method=method,
            status=CONTRIBUTION_COMPLETED,
            date=now,
            transaction_id=transaction_id,
            idempotency_key=idempotency_key,
        )
        self.db.add(contribution)
        try:
            self.db.flush()
        except IntegrityError as exc:
            raise DuplicateContribution(idempotency_key or f"txn:{transaction_id}") from exc
        except SQLAlchemyError as exc:
            raise StorageUnavailable() from exc

        try:
            total, count = (
                self.db.query(
                    func.coalesce(func.sum(Contribution.amount), 0),
                    func.count(Contribution.id),
                )
                .filter(
                    Contribution.saving_id == goal.id,
                    Contribution.status == CONTRIBUTION_COMPLETED,
                )
                .one()
            )
        except SQLAlchemyError as exc:
            raise StorageUnavailable() from exc

        current_amount = Decimal(total).quantize(CENT)
        progress_after = compute_progress(current_amount, target)

        goal.current_amount = current_amount
        goal.progress = progress_after.quantize(CENT)
        goal.is_completed = is_goal_reached(current_amount, target)
        goal.last_contribution = now
        try:
            self.db.flush()
        except SQLAlchemyError as exc:
            raise StorageUnavailable() from exc

        logger.info(
            "Goal %s: +%s via %s -> %s / %s (%s%%)",
            goal.id, value, method, current_amount, target, goal.progress,
        )

        return StagedContribution(
            goal=goal,
            contribution=contribution,
            progress_before=progress_before,
            progress_after=progress_after,
            contribution_count=count,
        )

    def finalize(self, staged: StagedContribution) -> ContributionResult:
        """Post-commit step: evaluate achievements and hand them to the notifier."""
        goal = staged.goal
        try:
            earned = achievement_rules.evaluate(
                staged.progress_before,
                staged.progress_after,
                staged.contribution_count,
                goal_title=goal.title,
                target_amount=goal.target_amount,
            )
        except Exception:
            logger.exception("Achievement evaluation failed for goal %s", goal.id)
            earned = []

        if earned:
            events = [AchievementEvent(user_id=goal.user_id, goal_id=goal.id, achievement=a) for a in earned]
            dispatch_achievements(self.notifier, events)

        return ContributionResult(goal=goal, contribution=staged.contribution, achievements=earned)
