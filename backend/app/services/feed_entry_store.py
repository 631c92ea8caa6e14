"""
Feed entry persistence used by the expiry worker
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, List, Optional

from sqlalchemy import select, update, and_, asc, true, false
from sqlalchemy.sql import Select

from app.core.database import AsyncSessionLocal
from app.models.feed_entry import FeedEntry

logger = logging.getLogger(__name__)


@dataclass
class ExpiredEntry:
    """Projection of a feed entry whose paid access window has elapsed"""
    id: Any
    feed_id: Any
    cid: Optional[str]
    piid: Optional[str]
    expires_at: int
    title: Optional[str] = None


class FeedEntryStore:
    """Reads expiry candidates and writes the paid-to-free transition"""

    def __init__(self, session_factory: Optional[Callable] = None):
        self.session_factory = session_factory or AsyncSessionLocal

    @staticmethod
    def build_expired_entries_query(now: int, limit: int) -> Select:
        """Active, still-paid entries whose expires_at has passed, oldest first"""
        return (
            select(
                FeedEntry.id,
                FeedEntry.feed_id,
                FeedEntry.cid,
                FeedEntry.piid,
                FeedEntry.expires_at,
                FeedEntry.title,
            )
            .where(
                and_(
                    FeedEntry.expires_at.isnot(None),
                    FeedEntry.expires_at <= now,
                    FeedEntry.is_active == true(),
                    FeedEntry.is_free == false(),
                )
            )
            .order_by(asc(FeedEntry.expires_at))
            .limit(limit)
        )

    async def fetch_expired_entries(self, now: int, limit: int) -> List[ExpiredEntry]:
        async with self.session_factory() as db:
            result = await db.execute(self.build_expired_entries_query(now, limit))
            return [
                ExpiredEntry(
                    id=row.id,
                    feed_id=row.feed_id,
                    cid=row.cid,
                    piid=row.piid,
                    expires_at=row.expires_at,
                    title=row.title,
                )
                for row in result
            ]

    async def mark_entry_free(self, entry_id: Any, free_piid: str, now: int) -> int:
        """
        Rebind an entry to the free payment instruction

        Returns:
            Number of rows updated
        """
        async with self.session_factory() as db:
            try:
                result = await db.execute(
                    update(FeedEntry)
                    .where(FeedEntry.id == entry_id)
                    .values(piid=free_piid, is_free=True, updated_at=now)
                )
                await db.commit()
            except Exception:
                await db.rollback()
                raise
            if result.rowcount == 0:
                logger.warning(
                    "Entry disappeared before it could be marked free",
                    extra={"context": {"entry_id": str(entry_id)}}
                )
            return result.rowcount
