"""
Expiry Worker Scheduler

Drives periodic expiry reconciliation cycles using APScheduler.
The job is registered with max_instances=1 so ticks never overlap; the
reconciliation service keeps its own single-flight guard on top of that.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from apscheduler.events import EVENT_JOB_ERROR

from app.core.config import settings
from app.services.expiry_reconciliation_service import (
    CycleResult,
    ExpiryReconciliationService,
    RETRY_NOTE,
)
from app.services.payment_instructions import PaymentInstructionsClient

logger = logging.getLogger(__name__)

EXPIRY_JOB_ID = 'expiry-worker'


class ExpiryWorkerScheduler:
    """Owns the expiry worker timer and its reconciliation service"""

    def __init__(
        self,
        service: Optional[ExpiryReconciliationService] = None,
        client_factory: Callable[[], PaymentInstructionsClient] = PaymentInstructionsClient,
        poll_interval_ms: Optional[int] = None,
    ):
        self.scheduler: Optional[AsyncIOScheduler] = None
        self.service = service or ExpiryReconciliationService()
        self.client_factory = client_factory
        self.poll_interval_ms = poll_interval_ms or settings.EXPIRY_WORKER_POLL_INTERVAL

    @property
    def is_running(self) -> bool:
        return self.scheduler is not None

    def _initialize_payment_client(self) -> Optional[PaymentInstructionsClient]:
        try:
            return self.client_factory()
        except Exception as e:
            logger.warning(
                'Payment instructions client initialization failed',
                extra={"context": {"error": str(e)}}
            )
            return None

    async def start(self) -> bool:
        """
        Start the expiry worker

        Runs one cycle immediately, then one every poll interval.

        Returns:
            True if the worker is running when this returns
        """
        if self.scheduler:
            logger.warning('Expiry worker already started')
            return True

        self.service.payment_client = self._initialize_payment_client()
        if not self.service.payment_client:
            logger.error('Payment instructions client could not be initialized. Expiry worker will not run.')
            await self.stop()
            return False

        if not self.service.free_payment_instruction_id:
            logger.error('FREE_PAYMENT_INSTRUCTION_ID is not configured. Expiry worker will not run.')
            await self.stop()
            return False

        logger.info('Starting expiry worker', extra={"context": self._config_context()})

        poll_seconds = self.poll_interval_ms / 1000
        try:
            self.scheduler = AsyncIOScheduler(
                timezone='UTC',
                job_defaults={
                    'coalesce': True,  # Collapse missed ticks into one run
                    'max_instances': 1,  # Never overlap cycles
                    'misfire_grace_time': max(1, int(poll_seconds))
                }
            )
            self.scheduler.add_listener(self._job_error_listener, EVENT_JOB_ERROR)

            # next_run_time=now fires the first cycle right away
            self.scheduler.add_job(
                func=self._run_cycle_job,
                trigger=IntervalTrigger(seconds=poll_seconds),
                id=EXPIRY_JOB_ID,
                name='Expiry Worker Reconciliation',
                replace_existing=True,
                next_run_time=datetime.now(timezone.utc)
            )
            self.scheduler.start()

        except Exception:
            logger.error('Failed to start expiry worker scheduler', exc_info=True)
            await self.stop()
            return False

        return True

    async def stop(self) -> None:
        """Stop the expiry worker; safe to call at any time"""
        if not self.scheduler:
            return

        scheduler, self.scheduler = self.scheduler, None
        try:
            if scheduler.running:
                scheduler.shutdown(wait=False)
        except Exception:
            logger.error('Error stopping expiry worker scheduler', exc_info=True)
        logger.info('Expiry worker stopped')

    async def trigger(self) -> Optional[CycleResult]:
        """Run one cycle now, outside the timer; None if a cycle is in flight"""
        logger.info('Manually triggered expiry worker cycle')
        return await self.service.run_cycle()

    async def _run_cycle_job(self) -> None:
        try:
            await self.service.run_cycle()
        except Exception:
            logger.error(
                'Error in scheduled expiry worker run',
                exc_info=True,
                extra={"context": {"poll_interval_ms": self.poll_interval_ms, "note": RETRY_NOTE}}
            )

    def _job_error_listener(self, event):
        """Listener for job execution errors"""
        # Exception never reaches here since _run_cycle_job handles it; this
        # reports BaseException escapes such as cancellation
        logger.error(
            f"Job '{event.job_id}' failed: {event.exception}",
            exc_info=event.exception
        )

    def _config_context(self) -> Dict[str, Any]:
        return {
            "poll_interval_ms": self.poll_interval_ms,
            "batch_size": self.service.batch_size,
            "free_piid_configured": bool(self.service.free_payment_instruction_id),
            "payment_client_available": self.service.payment_client is not None,
        }

    def status(self) -> Dict[str, Any]:
        """Snapshot of the worker state for health checks"""
        last_result = self.service.last_result
        return {
            "running": self.is_running,
            "poll_interval_ms": self.poll_interval_ms,
            "batch_size": self.service.batch_size,
            "free_payment_instruction_configured": bool(self.service.free_payment_instruction_id),
            "payment_client_available": self.service.payment_client is not None,
            "last_cycle": last_result.to_dict() if last_result else None,
        }


# Global expiry worker instance
expiry_worker = ExpiryWorkerScheduler()
