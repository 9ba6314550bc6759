"""Persistent, time-bounded cache of insight batches.

One batch lives per (owner, cache_key). A refresh swaps the whole batch in a
single transaction; individual insights then only move forward through
``active -> dismissed | completed``.
"""
import asyncio
import logging
import weakref
from datetime import datetime, timedelta
from typing import Callable, List, Optional, Sequence, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from kelly.core.config import settings
from kelly.core.errors import StorageFailure, ValidationFailure
from kelly.models.api import Insight, InsightDraft
from kelly.models.base import utcnow
from kelly.models.insight import InsightDB
from kelly.repositories.insight import InsightRepository

logger = logging.getLogger(__name__)

TERMINAL_STATUSES = ("dismissed", "completed")


class InsightCacheStore:
    def __init__(
        self,
        session_maker: async_sessionmaker,
        ttl: Optional[timedelta] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session_maker = session_maker
        self.ttl = ttl or timedelta(minutes=settings.INSIGHT_CACHE_TTL_MINUTES)
        self.clock = clock
        self.repo = InsightRepository()
        # A lock lives only while a replace holds or awaits it
        self._locks: "weakref.WeakValueDictionary[Tuple[str, str], asyncio.Lock]" = weakref.WeakValueDictionary()

    def _lock_for(self, owner_id: str, cache_key: str) -> asyncio.Lock:
        return self._locks.setdefault((owner_id, cache_key), asyncio.Lock())

    async def load_active(
        self,
        owner_id: str,
        cache_key: str,
        stale_after: Optional[timedelta] = None,
    ) -> Optional[List[Insight]]:
        """Current batch, or None when there is nothing servable.

        Without ``stale_after`` only the hard TTL applies. With it, a batch
        whose newest refresh is older than ``stale_after`` counts as absent.
        """
        now = self.clock()
        try:
            async with self.session_maker() as db:
                rows = await self.repo.list_active(db, owner_id, cache_key, now)
                insights = [Insight.model_validate(row) for row in rows]
        except SQLAlchemyError as e:
            logger.error(f"Failed to load insights {owner_id}/{cache_key}: {e}")
            raise StorageFailure(detail=str(e)) from e

        if not insights:
            return None

        if stale_after is not None:
            newest = max(i.last_refresh_at for i in insights)
            if now - newest > stale_after:
                logger.info(f"Insight batch {owner_id}/{cache_key} is stale (refreshed {newest.isoformat()})")
                return None

        return insights

    async def replace(
        self,
        owner_id: str,
        cache_key: str,
        drafts: Sequence[InsightDraft],
        ttl: Optional[timedelta] = None,
    ) -> List[Insight]:
        """Swap the batch for (owner, cache_key) atomically; the old batch survives any failure"""
        async with self._lock_for(owner_id, cache_key):
            now = self.clock()
            expires_at = now + (ttl or self.ttl)
            try:
                async with self.session_maker() as db:
                    async with db.begin():
                        removed = await self.repo.delete_batch(db, owner_id, cache_key)
                        rows = [
                            self._to_row(owner_id, cache_key, draft, position, now, expires_at)
                            for position, draft in enumerate(drafts)
                        ]
                        await self.repo.add_batch(db, rows)
                        insights = [Insight.model_validate(row) for row in rows]
            except SQLAlchemyError as e:
                logger.error(f"Failed to replace insights {owner_id}/{cache_key}: {e}")
                raise StorageFailure(detail=str(e)) from e

        logger.info(f"Replaced insight batch {owner_id}/{cache_key}: {removed} removed, {len(insights)} stored")
        return insights

    async def set_status(self, insight_id: str, status: str, owner_id: Optional[str] = None) -> bool:
        """Move an active insight to a terminal status.

        Returns False when the insight was already terminal (no change).
        """
        if status not in TERMINAL_STATUSES:
            raise ValidationFailure(f"Transition vers '{status}' impossible.")

        try:
            async with self.session_maker() as db:
                changed = await self.repo.mark_terminal(db, insight_id, status, self.clock(), user_id=owner_id)
                if not changed:
                    row = await self.repo.get_by_id(db, insight_id)
                    if row is None or (owner_id is not None and row.user_id != owner_id):
                        raise ValidationFailure("Cette recommandation n'existe plus.")
        except SQLAlchemyError as e:
            logger.error(f"Failed to set insight {insight_id} to {status}: {e}")
            raise StorageFailure(detail=str(e)) from e

        return changed

    async def get(self, insight_id: str, owner_id: Optional[str] = None) -> Optional[Insight]:
        try:
            async with self.session_maker() as db:
                row = await self.repo.get_by_id(db, insight_id)
                if row is None or (owner_id is not None and row.user_id != owner_id):
                    return None
                return Insight.model_validate(row)
        except SQLAlchemyError as e:
            logger.error(f"Failed to read insight {insight_id}: {e}")
            raise StorageFailure(detail=str(e)) from e

    async def purge_expired(self, grace: Optional[timedelta] = None) -> int:
        """Delete records that expired more than ``grace`` ago"""
        grace = grace if grace is not None else timedelta(hours=settings.INSIGHT_PURGE_GRACE_HOURS)
        cutoff = self.clock() - grace
        try:
            async with self.session_maker() as db:
                purged = await self.repo.delete_expired_before(db, cutoff)
        except SQLAlchemyError as e:
            logger.error(f"Failed to purge expired insights: {e}")
            raise StorageFailure(detail=str(e)) from e

        if purged:
            logger.info(f"Purged {purged} expired insight(s)")
        return purged

    @staticmethod
    def _to_row(
        owner_id: str,
        cache_key: str,
        draft: InsightDraft,
        position: int,
        now: datetime,
        expires_at: datetime,
    ) -> InsightDB:
        action = draft.suggested_action
        return InsightDB(
            user_id=owner_id,
            cache_key=cache_key,
            type=draft.type,
            priority=draft.priority,
            title=draft.title,
            message=draft.message,
            action_label=draft.action_label,
            article_ids=list(draft.article_ids),
            article_titles=list(draft.article_titles),
            suggested_action=action.model_dump(mode="json", exclude_none=True) if action is not None else None,
            status="active",
            position=position,
            last_refresh_at=now,
            expires_at=expires_at,
            created_at=now,
            updated_at=now,
        )
