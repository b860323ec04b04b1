import logging
from datetime import datetime, timedelta
from typing import Callable, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.date import DateTrigger
from apscheduler.triggers.interval import IntervalTrigger
from zoneinfo import ZoneInfo

from config import get_settings
from database import session_scope
from notifications import ThresholdChecker


logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def run_sweep(source: str = "manual", checker_factory: Optional[Callable] = None) -> int:
    factory = checker_factory or ThresholdChecker
    logger.info(f"sweep_run: source={source}")
    with session_scope() as session:
        users = factory(session).check_all_users()
    logger.info(f"sweep_run: source={source} users_checked={users}")
    return users


class SchedulerManager:
    def __init__(self) -> None:
        self.settings = get_settings()
        self.scheduler = BackgroundScheduler(timezone=self.settings.timezone)

    def _run_job(self, source: str = "manual") -> None:
        try:
            run_sweep(source)
        except Exception:
            logger.exception(f"sweep_failed: source={source}")

    def start(self) -> None:
        # First sweep shortly after boot so alerts don't wait for the first tick.
        run_at = datetime.now(ZoneInfo(self.settings.timezone)) + timedelta(
            seconds=self.settings.sweep_startup_delay_secs
        )
        self.scheduler.add_job(
            self._run_job,
            DateTrigger(run_date=run_at),
            args=["startup"],
            id="budget_sweep_startup",
            replace_existing=True,
        )

        trigger = IntervalTrigger(hours=self.settings.sweep_interval_hours)
        self.scheduler.add_job(
            self._run_job,
            trigger,
            args=["interval"],
            id="budget_sweep_interval",
            replace_existing=True,
            misfire_grace_time=3600,
            max_instances=1,
            coalesce=True,
        )

        self.scheduler.start()
        logger.info(
            f"Scheduler started: budget sweep every {self.settings.sweep_interval_hours}h"
        )

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")
