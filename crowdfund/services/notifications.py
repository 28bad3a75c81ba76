"""
Donor and creator notifications.

There is no delivery channel yet: each notification is rendered and logged on
a worker thread so the triggering request never waits on it or fails with it.
"""
from concurrent.futures import ThreadPoolExecutor
from typing import Optional

import structlog

logger = structlog.get_logger(__name__)


class Notifier:
    """Dispatches donation lifecycle notifications off the request path"""

    def __init__(self, max_workers: int = 4, inline: bool = False):
        self.inline = inline
        self._executor: Optional[ThreadPoolExecutor] = None
        if not inline:
            self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="notify")

    def _dispatch(self, kind: str, **fields):
        if self.inline:
            self._deliver(kind, fields)
            return
        try:
            self._executor.submit(self._deliver, kind, fields)
        except RuntimeError as e:
            # executor already shut down
            logger.warning("Notification dropped", kind=kind, error=str(e))

    def _deliver(self, kind: str, fields: dict):
        try:
            logger.info("Notification sent", kind=kind, **fields)
        except Exception as e:
            logger.error("Notification failed", kind=kind, error=str(e))

    def donation_created(self, donation):
        self._dispatch(
            "donation_created",
            donation_id=donation.id,
            campaign_id=donation.campaign_id,
            amount=donation.amount,
            currency=donation.currency,
        )

    def donation_succeeded(self, donation):
        self._dispatch(
            "donation_succeeded",
            donation_id=donation.id,
            campaign_id=donation.campaign_id,
            donor_email=donation.donor_email,
            amount=donation.amount,
        )
        if not donation.is_anonymous and donation.donor_email:
            self._dispatch("donation_receipt", donation_id=donation.id, to=donation.donor_email)

    def donation_failed(self, donation, reason: Optional[str] = None):
        self._dispatch(
            "donation_failed",
            donation_id=donation.id,
            campaign_id=donation.campaign_id,
            reason=reason,
        )

    def donation_refunded(self, donation):
        self._dispatch(
            "donation_refunded",
            donation_id=donation.id,
            campaign_id=donation.campaign_id,
            refund_amount=donation.refund_amount,
        )

    def campaign_moderated(self, campaign):
        self._dispatch(
            "campaign_moderated",
            campaign_id=campaign.id,
            creator_id=campaign.creator_id,
            status=campaign.status,
            reason=campaign.rejection_reason,
        )

    def shutdown(self):
        if self._executor is not None:
            self._executor.shutdown(wait=False)
