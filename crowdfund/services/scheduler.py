from typing import Optional

from apscheduler.schedulers.background import BackgroundScheduler
import structlog

from crowdfund.services.donation import DonationService

logger = structlog.get_logger(__name__)

STALE_SWEEP_JOB_ID = "stale_donation_sweep"


class MaintenanceScheduler:
    """Runs the stale-donation sweep on a background thread"""

    def __init__(self, donations: DonationService, interval_minutes: int = 60):
        self.donations = donations
        self.interval_minutes = interval_minutes
        self._scheduler: Optional[BackgroundScheduler] = None

    def run_stale_sweep(self) -> int:
        # a failing sweep is retried on the next tick
        try:
            return self.donations.cleanup_stale_donations()
        except Exception as e:
            logger.error("Stale donation sweep failed", error=str(e), exc_info=True)
            return 0

    def start(self):
        if self._scheduler is not None:
            return
        self._scheduler = BackgroundScheduler(timezone="UTC")
        self._scheduler.add_job(
            self.run_stale_sweep,
            'interval',
            minutes=self.interval_minutes,
            id=STALE_SWEEP_JOB_ID,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        self._scheduler.start()
        logger.info("Maintenance scheduler started", interval_minutes=self.interval_minutes)

    def shutdown(self):
        if self._scheduler is None:
            return
        self._scheduler.shutdown(wait=False)
        self._scheduler = None
        logger.info("Maintenance scheduler stopped")

    @property
    def running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running
