from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session
import structlog

from crowdfund.models.base import utcnow
from crowdfund.models.donation import Donation

logger = structlog.get_logger(__name__)


class FraudCheck:
    """Heuristics applied before any processor call is made"""

    def __init__(self, max_donations_per_ip: int = 5, window_minutes: int = 60, large_amount: float = 10000.0):
        self.max_donations_per_ip = max_donations_per_ip
        self.window = timedelta(minutes=window_minutes)
        self.large_amount = large_amount

    def recent_count_for_ip(self, db: Session, ip_address: str, now: Optional[datetime] = None) -> int:
        since = (now or utcnow()) - self.window
        stmt = select(func.count(Donation.id)).where(
            Donation.donor_ip_address == ip_address,
            Donation.created_at >= since,
        )
        return db.execute(stmt).scalar_one()

    def is_suspicious(self, db: Session, amount: float, ip_address: Optional[str], now: Optional[datetime] = None) -> bool:
        # every attempt that reached the processor counts, whatever its outcome
        if ip_address:
            recent = self.recent_count_for_ip(db, ip_address, now)
            if recent >= self.max_donations_per_ip:
                logger.warning("Too many donations from IP", ip_address=ip_address, recent=recent)
                return True

        if amount > self.large_amount:
            logger.warning("Donation amount needs manual review", amount=amount)
            return True

        return False
