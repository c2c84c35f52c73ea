"""
Recurring contributions - auto-debit of amount_per_frequency for due goals.

Called once per scheduler tick. A goal is due when its last contribution
(of any kind) falls in an earlier period, see app.domain.savings_goal.
Running twice within the same period debits nothing the second time: the
engine repeats the due check on the locked goal row and updates
last_contribution in the same transaction as the debit, and the per-period
idempotency key rejects a concurrent twin.

One goal's failure never stops the batch.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.application.contributions import ApplyContributionUseCase
from app.application.errors import LedgerError, NotDue, StorageUnavailable
from app.application.notifications import AchievementNotifier
from app.domain.achievements import Achievement
from app.domain.savings_goal import (
    METHOD_AUTO_DEBIT, SCHEDULED_FREQUENCIES, auto_debit_key, is_contribution_due,
)
from app.infrastructure.db.models import SavingsGoal
from app.utils.time import now_utc

logger = logging.getLogger(__name__)

STATUS_APPLIED = "applied"
STATUS_SKIPPED = "skipped"
STATUS_FAILED = "failed"


@dataclass
class ScheduledContributionResult:
    goal_id: int
    status: str
    amount: Decimal | None = None
    contribution_id: int | None = None
    error_code: str | None = None
    error: str | None = None
    achievements: list[Achievement] = field(default_factory=list)


class RunDuePeriodUseCase:
    """Use case: one scheduler tick of recurring auto-debits"""

    def __init__(self, db: Session, notifier: AchievementNotifier | None = None):
        self.db = db
        self.engine = ApplyContributionUseCase(db, notifier=notifier)

    def execute(self, now: datetime | None = None) -> list[ScheduledContributionResult]:
        """
        Auto-debit every due goal.

        Returns:
            One result per due (or skipped) goal; failures are reported here,
            never raised

        Raises:
            StorageUnavailable: the candidate goals could not be loaded
        """
        if now is None:
            now = now_utc()

        try:
            candidates = (
                self.db.query(SavingsGoal.id, SavingsGoal.frequency, SavingsGoal.last_contribution,
                              SavingsGoal.amount_per_frequency)
                .filter(
                    SavingsGoal.is_completed.is_(False),
                    SavingsGoal.frequency.in_(SCHEDULED_FREQUENCIES),
                )
                .order_by(SavingsGoal.id)
                .all()
            )
            # Release the read transaction before per-goal units of work
            self.db.rollback()
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise StorageUnavailable() from exc

        results = []
        for goal_id, frequency, last_contribution, amount in candidates:
            if not is_contribution_due(frequency, last_contribution, now):
                continue
            if amount is None or amount <= 0:
                logger.warning("Goal %s is due but has no amount_per_frequency, skipped", goal_id)
                results.append(ScheduledContributionResult(goal_id=goal_id, status=STATUS_SKIPPED))
                continue
            results.append(self._debit(goal_id, frequency, last_contribution, amount, now))

        applied = sum(1 for r in results if r.status == STATUS_APPLIED)
        failed = sum(1 for r in results if r.status == STATUS_FAILED)
        logger.info(
            "Recurring contributions at %s: %d candidate(s), %d applied, %d failed",
            now.isoformat(), len(candidates), applied, failed,
        )
        return results

    def _debit(
        self,
        goal_id: int,
        frequency: str,
        last_contribution: datetime | None,
        amount: Decimal,
        now: datetime,
    ) -> ScheduledContributionResult:
        try:
            applied = self.engine.execute(
                goal_id=goal_id,
                amount=amount,
                method=METHOD_AUTO_DEBIT,
                idempotency_key=auto_debit_key(goal_id, frequency, last_contribution, now),
                due_frequency=frequency,
                now=now,
            )
        except NotDue:
            logger.info("Goal %s received a contribution since the due check, skipped", goal_id)
            return ScheduledContributionResult(goal_id=goal_id, status=STATUS_SKIPPED, amount=amount)
        except LedgerError as exc:
            logger.warning("Auto-debit for goal %s failed: %s (%s)", goal_id, exc.message, exc.code)
            return ScheduledContributionResult(
                goal_id=goal_id, status=STATUS_FAILED, amount=amount,
                error_code=exc.code, error=exc.message,
            )
        except Exception as exc:
            logger.exception("Auto-debit for goal %s failed unexpectedly", goal_id)
            return ScheduledContributionResult(
                goal_id=goal_id, status=STATUS_FAILED, amount=amount,
                error_code="UNEXPECTED", error=str(exc),
            )

        return ScheduledContributionResult(
            goal_id=goal_id,
            status=STATUS_APPLIED,
            amount=applied.contribution.amount,
            contribution_id=applied.contribution.id,
            achievements=applied.achievements,
        )
