"""
Achievement notifications - hand-off of earned achievements to the user.

Runs strictly after the ledger transaction has committed. Delivery problems
are logged and never reach the caller of the contribution.
"""
import logging
from dataclasses import dataclass

from sqlalchemy.orm import Session

from app.domain.achievements import Achievement
from app.infrastructure.db.models import NotificationModel

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AchievementEvent:
    user_id: int
    goal_id: int
    achievement: Achievement

    def to_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "goal_id": self.goal_id,
            "achievement": {
                "title": self.achievement.title,
                "message": self.achievement.message,
            },
        }


class AchievementNotifier:
    """Notification collaborator contract."""

    def notify(self, events: list[AchievementEvent]) -> None:
        raise NotImplementedError


class DbAchievementNotifier(AchievementNotifier):
    """Stores one in-app notification per achievement, in its own commit."""

    def __init__(self, db: Session):
        self.db = db

    def notify(self, events: list[AchievementEvent]) -> None:
        if not events:
            return
        for event in events:
            self.db.add(NotificationModel(
                user_id=event.user_id,
                type="achievement",
                code=event.achievement.code,
                title=event.achievement.title,
                message=event.achievement.message,
                saving_id=event.goal_id,
                action_url=f"/savings/{event.goal_id}",
            ))
        try:
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        logger.info("Stored %d achievement notification(s)", len(events))


def dispatch_achievements(notifier: AchievementNotifier | None, events: list[AchievementEvent]) -> None:
    """Forward events to the notifier; failures are logged, not raised."""
    if notifier is None or not events:
        return
    try:
        notifier.notify(events)
    except Exception:
        logger.exception("Achievement notification failed for %d event(s)", len(events))
