"""
Tests for the contribution engine: ledger invariants, completion, idempotency
"""
from datetime import timedelta
from decimal import Decimal
from unittest.mock import Mock

import pytest
from sqlalchemy.exc import IntegrityError

from app.application.contributions import ApplyContributionUseCase
from app.application.errors import (
    AlreadyCompleted, DuplicateContribution, Forbidden, GoalNotFound, InvalidAmount, NotDue,
    SavingsValidationError,
)
from app.application.notifications import AchievementEvent, DbAchievementNotifier
from app.infrastructure.db.models import Contribution, NotificationModel


def _contribution_count(db_session, goal_id):
    return db_session.query(Contribution).filter(Contribution.saving_id == goal_id).count()


# ============================================================================
# Applying contributions
# ============================================================================


class TestApplyContribution:
    def test_first_contribution_updates_goal(self, db_session, make_goal, now):
        """300 toward 1000: amount, progress, last_contribution"""
        goal = make_goal(target="1000")
        result = ApplyContributionUseCase(db_session).execute(goal.id, "300", now=now)

        db_session.refresh(goal)
        assert goal.current_amount == Decimal("300")
        assert goal.progress == Decimal("30.00")
        assert goal.is_completed is False
        assert goal.last_contribution is not None
        assert result.contribution.amount == Decimal("300")
        assert result.contribution.method == "manual"
        assert result.contribution.status == "completed"
        assert [a.code for a in result.achievements] == ["MILESTONE_25"]

    def test_sequence_reaches_and_overshoots_target(self, db_session, make_goal, now):
        """300 + 300 + 500 on 1000: completed at 110%, milestones once each"""
        goal = make_goal(target="1000")
        engine = ApplyContributionUseCase(db_session)

        r1 = engine.execute(goal.id, "300", now=now)
        r2 = engine.execute(goal.id, "300", now=now + timedelta(days=1))
        r3 = engine.execute(goal.id, "500", now=now + timedelta(days=2))

        assert [a.code for a in r1.achievements] == ["MILESTONE_25"]
        assert [a.code for a in r2.achievements] == ["MILESTONE_50"]
        assert [a.code for a in r3.achievements] == ["MILESTONE_75", "MILESTONE_100"]

        db_session.refresh(goal)
        assert goal.current_amount == Decimal("1100")
        assert goal.progress == Decimal("110.00")
        assert goal.is_completed is True

    def test_current_amount_equals_sum_of_completed(self, db_session, make_goal, now):
        """Failed contributions never count toward the goal"""
        goal = make_goal(target="1000")
        db_session.add(Contribution(
            saving_id=goal.id, amount=Decimal("400"), method="card", status="failed", date=now,
        ))
        db_session.commit()

        ApplyContributionUseCase(db_session).execute(goal.id, "100.50", now=now)

        db_session.refresh(goal)
        assert goal.current_amount == Decimal("100.50")

    def test_completed_goal_rejects_contribution(self, db_session, make_goal, now):
        goal = make_goal(target="100")
        engine = ApplyContributionUseCase(db_session)
        engine.execute(goal.id, "100", now=now)

        with pytest.raises(AlreadyCompleted, match="Cannot add contribution to completed saving goal"):
            engine.execute(goal.id, "10", now=now)

        db_session.refresh(goal)
        assert goal.current_amount == Decimal("100")
        assert _contribution_count(db_session, goal.id) == 1

    def test_progress_stored_rounded_crossing_uses_exact_value(self, db_session, make_goal, now):
        """1 of 3 is 33.33% stored; crossing 25% is detected"""
        goal = make_goal(target="3")
        result = ApplyContributionUseCase(db_session).execute(goal.id, "1", now=now)

        db_session.refresh(goal)
        assert goal.progress == Decimal("33.33")
        assert [a.code for a in result.achievements] == ["MILESTONE_25"]

    def test_fifth_contribution_earns_consistent_saver(self, db_session, make_goal, now):
        goal = make_goal(target="10000")
        engine = ApplyContributionUseCase(db_session)
        results = [engine.execute(goal.id, "10", now=now + timedelta(days=i)) for i in range(6)]

        assert [a.code for a in results[4].achievements] == ["CONSISTENT_SAVER"]
        assert results[5].achievements == []


class TestContributionValidation:
    @pytest.mark.parametrize("amount", ["0", "-5", "abc", "1.001", "NaN"])
    def test_invalid_amount_rejected(self, db_session, make_goal, now, amount):
        goal = make_goal()
        with pytest.raises(InvalidAmount):
            ApplyContributionUseCase(db_session).execute(goal.id, amount, now=now)
        assert _contribution_count(db_session, goal.id) == 0

    @pytest.mark.parametrize("amount, message", [
        ("100.505", "Contribution amount must have at most 2 decimal places, got 100.505"),
        ("abc", "Contribution amount must be a number, got abc"),
        ("-5", "Contribution amount must be positive, got -5"),
    ])
    def test_invalid_amount_message_names_reason(self, db_session, make_goal, now, amount, message):
        goal = make_goal()
        with pytest.raises(InvalidAmount) as exc_info:
            ApplyContributionUseCase(db_session).execute(goal.id, amount, now=now)
        assert exc_info.value.message == message

    def test_unknown_goal(self, db_session, now):
        with pytest.raises(GoalNotFound) as exc_info:
            ApplyContributionUseCase(db_session).execute(999, "10", now=now)
        assert exc_info.value.status_code == 404
        assert exc_info.value.retryable is False

    def test_foreign_goal_forbidden(self, db_session, make_goal, now):
        goal = make_goal(user_id=1)
        with pytest.raises(Forbidden):
            ApplyContributionUseCase(db_session).execute(goal.id, "10", user_id=2, now=now)

    def test_unknown_method_rejected(self, db_session, make_goal, now):
        goal = make_goal()
        with pytest.raises(SavingsValidationError):
            ApplyContributionUseCase(db_session).execute(goal.id, "10", method="cash", now=now)

    def test_store_rejects_non_positive_amount(self, db_session, make_goal, now):
        goal = make_goal()
        db_session.add(Contribution(
            saving_id=goal.id, amount=Decimal("0"), method="manual", status="completed", date=now,
        ))
        with pytest.raises(IntegrityError):
            db_session.commit()
        db_session.rollback()

    def test_store_rejects_non_positive_target(self, make_goal):
        with pytest.raises(IntegrityError):
            make_goal(target="0")


class TestContributionIdempotency:
    def test_same_idempotency_key_applies_once(self, db_session, make_goal, now):
        """A replayed key is rejected and leaves the goal untouched"""
        goal = make_goal(target="1000")
        engine = ApplyContributionUseCase(db_session)
        engine.execute(goal.id, "200", idempotency_key="manual:abc", now=now)

        with pytest.raises(DuplicateContribution) as exc_info:
            engine.execute(goal.id, "200", idempotency_key="manual:abc", now=now)
        assert exc_info.value.key == "manual:abc"

        db_session.refresh(goal)
        assert goal.current_amount == Decimal("200")
        assert _contribution_count(db_session, goal.id) == 1

    def test_without_key_each_call_is_new(self, db_session, make_goal, now):
        goal = make_goal(target="1000")
        engine = ApplyContributionUseCase(db_session)
        engine.execute(goal.id, "200", now=now)
        engine.execute(goal.id, "200", now=now)

        db_session.refresh(goal)
        assert goal.current_amount == Decimal("400")

    def test_due_check_uses_locked_row(self, db_session, make_goal, now):
        """A debit for a period already covered is refused without writing"""
        goal = make_goal(target="1000", frequency="daily")
        engine = ApplyContributionUseCase(db_session)
        engine.execute(goal.id, "50", now=now)

        with pytest.raises(NotDue):
            engine.execute(goal.id, "30", method="auto-debit", due_frequency="daily", now=now + timedelta(hours=1))
        assert _contribution_count(db_session, goal.id) == 1

        engine.execute(goal.id, "30", method="auto-debit", due_frequency="daily", now=now + timedelta(days=1))
        assert _contribution_count(db_session, goal.id) == 2


# ============================================================================
# Achievement hand-off
# ============================================================================


class TestAchievementNotification:
    def test_notifier_receives_events_after_commit(self, db_session, make_goal, now, sample_user_id):
        goal = make_goal(target="1000")
        notifier = Mock()
        ApplyContributionUseCase(db_session, notifier=notifier).execute(goal.id, "500", now=now)

        notifier.notify.assert_called_once()
        events = notifier.notify.call_args[0][0]
        assert [e.achievement.code for e in events] == ["MILESTONE_25", "MILESTONE_50"]
        assert all(isinstance(e, AchievementEvent) for e in events)
        assert events[0].user_id == sample_user_id
        assert events[0].goal_id == goal.id

    def test_notifier_not_called_without_achievements(self, db_session, make_goal, now):
        goal = make_goal(target="1000")
        notifier = Mock()
        ApplyContributionUseCase(db_session, notifier=notifier).execute(goal.id, "10", now=now)
        notifier.notify.assert_not_called()

    def test_notifier_failure_does_not_undo_contribution(self, db_session, make_goal, now):
        goal = make_goal(target="1000")
        notifier = Mock()
        notifier.notify.side_effect = RuntimeError("push service down")

        result = ApplyContributionUseCase(db_session, notifier=notifier).execute(goal.id, "300", now=now)

        assert [a.code for a in result.achievements] == ["MILESTONE_25"]
        db_session.refresh(goal)
        assert goal.current_amount == Decimal("300")
        assert _contribution_count(db_session, goal.id) == 1

    def test_db_notifier_stores_in_app_notification(self, db_session, make_goal, now):
        goal = make_goal(target="1000", title="Bali")
        ApplyContributionUseCase(db_session, notifier=DbAchievementNotifier(db_session)).execute(
            goal.id, "300", now=now
        )

        rows = db_session.query(NotificationModel).all()
        assert len(rows) == 1
        assert rows[0].type == "achievement"
        assert rows[0].code == "MILESTONE_25"
        assert rows[0].title == "Quarter Way There!"
        assert rows[0].action_url == f"/savings/{goal.id}"

    def test_event_payload_shape(self, db_session, make_goal, now):
        goal = make_goal(target="1000")
        notifier = Mock()
        ApplyContributionUseCase(db_session, notifier=notifier).execute(goal.id, "250", now=now)

        payload = notifier.notify.call_args[0][0][0].to_dict()
        assert payload["goal_id"] == goal.id
        assert payload["achievement"]["title"] == "Quarter Way There!"
        assert set(payload["achievement"]) == {"title", "message"}
