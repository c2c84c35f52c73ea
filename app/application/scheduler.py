"""
Background scheduler: runs periodic jobs inside the FastAPI process.

Jobs:
  - Recurring contributions (every RECURRING_TICK_HOURS, default 3h)
"""
import logging

from apscheduler.schedulers.background import BackgroundScheduler

from app.config import get_settings

logger = logging.getLogger(__name__)

scheduler = BackgroundScheduler(daemon=True, timezone="UTC")


def _run_recurring_contributions():
    from app.infrastructure.db.session import get_session_factory
    from app.application.notifications import DbAchievementNotifier
    from app.application.recurring import RunDuePeriodUseCase

    Session = get_session_factory()
    db = Session()
    try:
        RunDuePeriodUseCase(db, notifier=DbAchievementNotifier(db)).execute()
    except Exception:
        logger.exception("Recurring contributions job failed")
    finally:
        db.close()


def start_scheduler():
    """Start the background scheduler with all periodic jobs."""
    hours = get_settings().RECURRING_TICK_HOURS

    # One tick never overlaps the previous one
    scheduler.add_job(
        _run_recurring_contributions,
        "interval",
        hours=hours,
        id="recurring_contributions",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )

    scheduler.start()
    logger.info("Scheduler started: recurring_contributions (every %s h)", hours)


def shutdown_scheduler():
    """Gracefully stop the scheduler."""
    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped")
