"""
Achievement evaluator - milestone and streak detection for savings goals.

A milestone fires only on the contribution that crosses it:
    progress_before < threshold <= progress_after
so later, unrelated contributions never repeat it.
"""
from dataclasses import dataclass
from decimal import Decimal

CONSISTENT_SAVER_COUNT = 5


@dataclass(frozen=True)
class Achievement:
    code: str
    title: str
    message: str


@dataclass(frozen=True)
class _Milestone:
    threshold: Decimal
    code: str
    title: str
    message: str


MILESTONES = (
    _Milestone(
        Decimal(25), "MILESTONE_25", "Quarter Way There!",
        "You've saved 25% of your {target} target for {goal}. Great progress!",
    ),
    _Milestone(
        Decimal(50), "MILESTONE_50", "Halfway There!",
        "Amazing! You're halfway to your {goal} goal. Keep up the great work!",
    ),
    _Milestone(
        Decimal(75), "MILESTONE_75", "Almost There!",
        "You're 75% of the way to {goal}. Your dream trip is within reach!",
    ),
    _Milestone(
        Decimal(100), "MILESTONE_100", "Goal Achieved!",
        "Congratulations! You've successfully saved {target} for {goal}. Time to book your trip!",
    ),
)

_CONSISTENT_SAVER = _Milestone(
    Decimal(0), "CONSISTENT_SAVER", "Consistent Saver!",
    "You've made {count} contributions to {goal}. Your dedication is paying off!",
)


def evaluate(
    progress_before: Decimal,
    progress_after: Decimal,
    contribution_count: int,
    goal_title: str = "your goal",
    target_amount: Decimal | None = None,
) -> list[Achievement]:
    """
    Achievements newly earned by a single contribution.

    Args:
        progress_before: goal progress (percent) before the contribution
        progress_after: goal progress (percent) after the contribution
        contribution_count: completed contributions including this one
        goal_title: used in messages only
        target_amount: used in messages only

    Returns:
        Milestones in ascending threshold order, then the consistent-saver
        achievement when contribution_count is exactly 5
    """
    ctx = {
        "goal": goal_title,
        "target": target_amount if target_amount is not None else "savings",
        "count": contribution_count,
    }
    earned = []
    for milestone in MILESTONES:
        if progress_before < milestone.threshold <= progress_after:
            earned.append(_to_achievement(milestone, ctx))

    if contribution_count == CONSISTENT_SAVER_COUNT:
        earned.append(_to_achievement(_CONSISTENT_SAVER, ctx))

    return earned


def _to_achievement(milestone: _Milestone, ctx: dict) -> Achievement:
    return Achievement(
        code=milestone.code,
        title=milestone.title,
        message=milestone.message.format(**ctx),
    )
