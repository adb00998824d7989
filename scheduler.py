import logging
from datetime import date
from typing import Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

from config import get_settings
from database import session_scope
from subscriptions import SubscriptionEngine, local_today


logging.basicConfig(level=get_settings().log_level)
logger = logging.getLogger(__name__)


def horizon_years(today: date, horizon_month: int) -> list[int]:
    # Next year's purchases are written once the horizon month is reached.
    years = [today.year]
    if today.month >= horizon_month:
        years.append(today.year + 1)
    return years


class SchedulerManager:
    def __init__(self) -> None:
        settings = get_settings()
        self.horizon_month = settings.horizon_month
        self.scheduler = BackgroundScheduler(timezone=settings.timezone)

    def _run_job(self, source: str = "manual", today: Optional[date] = None) -> int:
        today = today or local_today()
        logger.info(f"scheduler_run: source={source}")
        created = 0
        for year in horizon_years(today, self.horizon_month):
            with session_scope() as session:
                created += SubscriptionEngine(session).extend_horizon(year)
        logger.info(f"scheduler_run: source={source} purchases_created={created}")
        return created

    def start(self) -> None:
        self._run_job("startup")

        trigger = CronTrigger(hour=3, minute=15)
        self.scheduler.add_job(
            self._run_job,
            trigger,
            args=["daily_03:15"],
            id="subscription_horizon_daily",
            replace_existing=True,
            misfire_grace_time=3600,
        )

        self.scheduler.start()
        logger.info("Scheduler started with daily 03:15 horizon extension")

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")
