"""
Outbox Worker — drains the notification outbox on an interval.

The same ``drain_outbox`` entry point is used by the scheduler and by
request handlers that kick a dispatch right after their response.
"""
import logging
from typing import Dict, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.orm import Session

from wallet_ledger.config import get_settings
from wallet_ledger.database import engine
from wallet_ledger.services.outbox_service import OutboxService

logger = logging.getLogger(__name__)
settings = get_settings()


def drain_outbox(bind=None) -> Dict[str, int]:
    """Dispatch one batch on a private session. Never raises."""
    db = Session(bind=bind or engine, autoflush=False, expire_on_commit=False)
    try:
        return OutboxService.dispatch_pending(db)
    except Exception as e:
        logger.error(f"Outbox drain failed: {e}", exc_info=True)
        return {}
    finally:
        db.close()


class OutboxWorker:
    """APScheduler interval job around ``drain_outbox``."""

    def __init__(self, interval_seconds: Optional[int] = None, bind=None):
        self.interval_seconds = interval_seconds or settings.OUTBOX_POLL_SECONDS
        self.bind = bind
        self.scheduler = BackgroundScheduler(
            job_defaults={
                "coalesce": True,  # Prevent job pileup
                "max_instances": 1,
                "misfire_grace_time": 60,
            },
            timezone="UTC",
        )

    def start(self) -> None:
        if self.scheduler.running:
            return
        self.scheduler.add_job(
            drain_outbox,
            trigger=IntervalTrigger(seconds=self.interval_seconds),
            kwargs={"bind": self.bind},
            id="outbox_drain",
            name="Outbox drain",
            replace_existing=True,
        )
        self.scheduler.start()
        logger.info(f"Outbox worker started (every {self.interval_seconds}s)")

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Outbox worker stopped")

    @property
    def running(self) -> bool:
        return self.scheduler.running
