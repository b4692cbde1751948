"""
Periodic maintenance jobs.

Each job runs independently: a failing job is logged, rolled back and
reported without stopping the others.
"""
import asyncio
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from sqlalchemy.orm import Session

from ..config.database import SessionLocal
from ..config.logging import get_logger
from ..config.settings import get_settings
from .credit_service import CreditService
from .invoice_service import InvoiceService
from .notification_service import NotificationService
from .quote_service import QuoteService
from .standing_order_service import StandingOrderService

logger = get_logger("jobs")
settings = get_settings()

JOB_NAMES = ("standing_orders", "expiring_quotes", "overdue_credit", "overdue_invoices", "missing_invoices")


class JobService:
    def __init__(self, db: Session):
        self.db = db
        self.notifications = NotificationService(db)

    def run_standing_orders(self, now: datetime = None) -> Dict[str, int]:
        now = now or datetime.utcnow()
        return StandingOrderService(self.db, self.notifications).run_due_standing_orders(now.date())

    def run_expiring_quotes(self, now: datetime = None) -> Dict[str, int]:
        return QuoteService(self.db, notifications=self.notifications).check_expiring_quotes(now)

    def run_overdue_credit(self, now: datetime = None) -> Dict[str, int]:
        now = now or datetime.utcnow()
        return CreditService(self.db, self.notifications).detect_overdue_credit(now.date())

    def run_overdue_invoices(self, now: datetime = None) -> Dict[str, int]:
        return {"marked_overdue": InvoiceService(self.db).mark_overdue_invoices()}

    def run_missing_invoices(self, now: datetime = None) -> Dict[str, int]:
        return InvoiceService(self.db).regenerate_missing_invoices()

    def _jobs(self) -> Dict[str, Callable[[Optional[datetime]], Dict[str, int]]]:
        return {
            "standing_orders": self.run_standing_orders,
            "expiring_quotes": self.run_expiring_quotes,
            "overdue_credit": self.run_overdue_credit,
            "overdue_invoices": self.run_overdue_invoices,
            "missing_invoices": self.run_missing_invoices,
        }

    def run_job(self, name: str, now: datetime = None) -> Dict[str, Any]:
        job = self._jobs().get(name)
        if job is None:
            raise KeyError(name)
        try:
            result = job(now)
            return {"status": "ok", "result": result}
        except Exception as e:
            self.db.rollback()
            logger.exception(f"Job {name} failed: {e}")
            return {"status": "failed", "error": str(e)}

    def run_scheduled_jobs(self, now: datetime = None) -> Dict[str, Dict[str, Any]]:
        now = now or datetime.utcnow()
        started = datetime.utcnow()
        results = {name: self.run_job(name, now) for name in JOB_NAMES}
        duration = (datetime.utcnow() - started).total_seconds()
        failed = [name for name, outcome in results.items() if outcome["status"] == "failed"]
        logger.info(f"Scheduled jobs finished in {duration:.2f}s, failed: {failed or 'none'}")
        return results


def run_scheduled_jobs_in_new_session(now: datetime = None) -> Dict[str, Dict[str, Any]]:
    db = SessionLocal()
    try:
        return JobService(db).run_scheduled_jobs(now)
    finally:
        db.close()


async def job_loop(interval_seconds: int = None, stop_event: asyncio.Event = None):
    """Run the scheduled jobs every ``interval_seconds`` until stopped."""
    interval_seconds = interval_seconds or settings.JOB_INTERVAL_SECONDS
    stop_event = stop_event or asyncio.Event()
    logger.info(f"Background jobs running every {interval_seconds}s")
    while not stop_event.is_set():
        try:
            await asyncio.to_thread(run_scheduled_jobs_in_new_session)
        except Exception as e:
            logger.error(f"Background job run failed: {e}")
        try:
            await asyncio.wait_for(stop_event.wait(), timeout=interval_seconds)
        except asyncio.TimeoutError:
            pass
    logger.info("Background jobs stopped")
