import logging
import time

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

from config import get_settings
from database import session_scope
from recurrence import RecurringEngine


logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

HORIZON_JOB_ID = "recurrence_horizon_daily"


class SchedulerManager:
    def __init__(self) -> None:
        self.settings = get_settings()
        self.scheduler = BackgroundScheduler(timezone=self.settings.timezone)

    def _run_job(self, source: str = "manual") -> int:
        logger.info(f"scheduler_run: source={source}")
        with session_scope() as session:
            generated = RecurringEngine(session).extend_all()
        logger.info(f"scheduler_run: source={source} occurrences_created={generated}")
        return generated

    def start(self) -> None:
        self._run_job("startup")

        hour = self.settings.horizon_cron_hour
        minute = self.settings.horizon_cron_minute
        self.scheduler.add_job(
            self._run_job,
            CronTrigger(hour=hour, minute=minute),
            args=[f"daily_{hour:02d}:{minute:02d}"],
            id=HORIZON_JOB_ID,
            replace_existing=True,
            misfire_grace_time=3600,
        )
        self.scheduler.start()
        logger.info(f"Scheduler started with daily horizon run at {hour:02d}:{minute:02d}")

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")


def main() -> None:
    manager = SchedulerManager()
    manager.start()
    try:
        while True:
            time.sleep(60)
    except (KeyboardInterrupt, SystemExit):
        manager.stop()


if __name__ == "__main__":
    main()
