from typing import List, Optional
from datetime import datetime
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update, delete

from ..models.insight import InsightDB
from .base import BaseRepository


class InsightRepository(BaseRepository[InsightDB]):
    """Repository for cached insight batches.

    ``delete_batch`` and ``add_batch`` only flush; the caller owns the
    transaction so a batch swap commits or rolls back as one unit.
    """

    def __init__(self):
        super().__init__(InsightDB)

    async def list_active(self, db: AsyncSession, user_id: str, cache_key: str, now: datetime) -> List[InsightDB]:
        """Active, unexpired insights of one batch, in batch order"""
        result = await db.execute(
            select(InsightDB)
            .where(
                InsightDB.user_id == user_id,
                InsightDB.cache_key == cache_key,
                InsightDB.status == "active",
                InsightDB.expires_at > now,
            )
            .order_by(InsightDB.position)
        )
        return list(result.scalars().all())

    async def delete_batch(self, db: AsyncSession, user_id: str, cache_key: str) -> int:
        """Delete every record of (user, cache_key), whatever its status"""
        result = await db.execute(
            delete(InsightDB).where(InsightDB.user_id == user_id, InsightDB.cache_key == cache_key)
        )
        return result.rowcount

    async def add_batch(self, db: AsyncSession, rows: List[InsightDB]) -> None:
        db.add_all(rows)
        await db.flush()

    async def delete_expired_before(self, db: AsyncSession, cutoff: datetime) -> int:
        result = await db.execute(delete(InsightDB).where(InsightDB.expires_at < cutoff))
        await db.commit()
        return result.rowcount

    async def mark_terminal(
        self,
        db: AsyncSession,
        insight_id: str,
        status: str,
        now: datetime,
        user_id: Optional[str] = None
    ) -> bool:
        """Move an active insight to ``status``; False when it was not active"""
        stamp = {"dismissed": "dismissed_at", "completed": "completed_at"}[status]
        query = update(InsightDB).where(InsightDB.id == insight_id, InsightDB.status == "active")
        if user_id is not None:
            query = query.where(InsightDB.user_id == user_id)
        result = await db.execute(query.values(status=status, updated_at=now, **{stamp: now}))
        await db.commit()
        return result.rowcount > 0
