"""
Expiry Reconciliation Service

Moves feed entries whose paid access window has elapsed onto the FREE
payment instruction. One cycle:

1. Selects a bounded batch of expired, active, still-paid entries
   (oldest expiry first)
2. Remaps each entry's CID to the FREE payment instruction
3. Marks the entry free and records the new payment instruction id

A failed entry keeps is_free = FALSE, so the next cycle picks it up again.
Only one cycle runs at a time and every cycle is bounded by a timeout.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, asdict
from typing import Any, Callable, Dict, Optional

from app.core.config import settings
from app.core.database import current_epoch
from app.services.feed_entry_store import ExpiredEntry, FeedEntryStore
from app.services.payment_instructions import PaymentInstructionsClient

logger = logging.getLogger(__name__)

RETRY_NOTE = 'Worker will retry in next scheduled cycle'


class ExpiryCycleError(Exception):
    """A cycle failed inside its own work rather than by running out of time"""


@dataclass
class CycleResult:
    """Outcome of one reconciliation cycle"""
    current_epoch: int
    status: str = 'running'  # 'success', 'error', 'timeout'
    found: int = 0
    set_to_free: int = 0
    errors: int = 0
    skipped: int = 0
    duration_ms: float = 0.0
    error_message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class ExpiryReconciliationService:
    """Runs expiry reconciliation cycles against the feed entry store"""

    def __init__(
        self,
        store: Optional[FeedEntryStore] = None,
        payment_client: Optional[PaymentInstructionsClient] = None,
        free_payment_instruction_id: Optional[str] = None,
        batch_size: Optional[int] = None,
        timeout_ms: Optional[int] = None,
        clock: Callable[[], int] = current_epoch,
    ):
        self.store = store or FeedEntryStore()
        self.payment_client = payment_client
        self.free_payment_instruction_id = (
            free_payment_instruction_id
            if free_payment_instruction_id is not None
            else settings.FREE_PAYMENT_INSTRUCTION_ID
        )
        self.batch_size = batch_size or settings.EXPIRY_WORKER_BATCH_SIZE
        self.timeout_ms = timeout_ms or settings.EXPIRY_WORKER_TIMEOUT
        self.clock = clock
        self.is_running = False
        self.last_result: Optional[CycleResult] = None

    async def run_cycle(self) -> Optional[CycleResult]:
        """
        Run one bounded reconciliation cycle

        Returns:
            The cycle result, or None if another cycle was already in flight
        """
        if self.is_running:
            logger.debug('Expiry worker already running, skipping this cycle')
            return None

        self.is_running = True
        start = time.monotonic()
        result = CycleResult(current_epoch=self.clock())

        try:
            await asyncio.wait_for(
                self._run_bounded_work(result),
                timeout=self.timeout_ms / 1000
            )
            result.status = 'success'
        except asyncio.TimeoutError:
            result.status = 'timeout'
            result.error_message = f'Expiry worker exceeded timeout of {self.timeout_ms}ms'
            logger.critical(
                'Critical error in expiry worker cycle',
                extra={"context": {
                    "error": result.error_message,
                    "duration_ms": _elapsed_ms(start),
                    "set_to_free": result.set_to_free,
                    "errors": result.errors,
                    "note": RETRY_NOTE,
                }}
            )
        except Exception as e:
            result.status = 'error'
            result.error_message = str(e)
            logger.critical(
                'Critical error in expiry worker cycle',
                exc_info=True,
                extra={"context": {"duration_ms": _elapsed_ms(start), "note": RETRY_NOTE}}
            )
        finally:
            self.is_running = False

        result.duration_ms = _elapsed_ms(start)
        self.last_result = result
        return result

    def _can_remap(self, entry: ExpiredEntry) -> bool:
        return bool(
            self.free_payment_instruction_id
            and self.payment_client
            and entry.piid
            and entry.cid
        )

    async def _run_bounded_work(self, result: CycleResult) -> None:
        # Only wait_for's own timer may surface as TimeoutError in run_cycle
        try:
            await self._process_expired_entries(result)
        except asyncio.TimeoutError as e:
            raise ExpiryCycleError(str(e) or type(e).__name__) from e

    async def _process_expired_entries(self, result: CycleResult) -> None:
        start = time.monotonic()
        now = result.current_epoch

        logger.debug('Checking for expired entries', extra={"context": {"current_epoch": now}})

        try:
            expired_entries = await self.store.fetch_expired_entries(now, self.batch_size)
        except Exception:
            logger.error(
                'Database query failed while fetching expired entries',
                exc_info=True,
                extra={"context": {"current_epoch": now, "batch_size": self.batch_size}}
            )
            raise

        result.found = len(expired_entries)
        if not expired_entries:
            logger.debug('No expired entries found')
            return

        logger.info(
            'Found expired entries',
            extra={"context": {"count": len(expired_entries), "current_epoch": now}}
        )

        for entry in expired_entries:
            if not self._can_remap(entry):
                # Left paid and untouched; it is selected again next cycle
                result.skipped += 1
                logger.debug(
                    'Skipping expired entry without remap prerequisites',
                    extra={"context": {
                        "entry_id": str(entry.id),
                        "has_piid": bool(entry.piid),
                        "has_cid": bool(entry.cid),
                    }}
                )
                continue

            updated = await self._set_entry_free(entry, now)
            if updated is None:
                result.errors += 1
            elif updated:
                result.set_to_free += 1
            else:
                # Row vanished between the fetch and the update
                result.skipped += 1

        logger.info(
            'Completed expiry worker cycle',
            extra={"context": {
                "duration_ms": _elapsed_ms(start),
                "set_to_free": result.set_to_free,
                "errors": result.errors,
                "skipped": result.skipped,
            }}
        )

    async def _set_entry_free(self, entry: ExpiredEntry, now: int) -> Optional[int]:
        """
        Remap one entry to the FREE payment instruction

        Returns:
            Rows updated (0 if the entry is gone), or None on failure
        """
        free_piid = self.free_payment_instruction_id
        try:
            await self.payment_client.map_cid(free_piid, entry.cid)

            logger.info(
                'Remapped CID to FREE payment instruction',
                extra={"context": {
                    "entry_id": str(entry.id),
                    "cid": entry.cid,
                    "old_piid": entry.piid,
                    "new_piid": free_piid,
                }}
            )

            updated = await self.store.mark_entry_free(entry.id, free_piid, now)
            if not updated:
                return 0

            logger.info(
                'Successfully remapped expired CID to FREE payment instruction',
                extra={"context": {
                    "entry_id": str(entry.id),
                    "feed_id": str(entry.feed_id),
                    "cid": entry.cid,
                    "title": entry.title,
                    "expires_at": entry.expires_at,
                    "expired_seconds_ago": now - entry.expires_at,
                }}
            )
            return updated

        except Exception:
            logger.error(
                'Failed to remap CID to FREE payment instruction',
                exc_info=True,
                extra={"context": {
                    "entry_id": str(entry.id),
                    "feed_id": str(entry.feed_id),
                    "cid": entry.cid,
                    "old_piid": entry.piid,
                    "free_piid": free_piid,
                    "note": 'Entry will remain with original payment instruction',
                }}
            )
            return None


def _elapsed_ms(start: float) -> float:
    return round((time.monotonic() - start) * 1000, 1)
