from typing import List, Optional, Sequence
from datetime import datetime
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, delete

from ..models.inventory import ArticleDB, LotDB, LotItemDB, SellingSuggestionDB, LISTABLE_STATUSES, SOLD_STATUS
from .base import BaseRepository


class ArticleRepository(BaseRepository[ArticleDB]):
    """Repository for article operations"""

    def __init__(self):
        super().__init__(ArticleDB)

    async def get_listable(self, db: AsyncSession, user_id: str, limit: Optional[int] = None) -> List[ArticleDB]:
        """Articles that can still be priced or listed, newest first"""
        query = (
            select(ArticleDB)
            .where(ArticleDB.user_id == user_id, ArticleDB.status.in_(LISTABLE_STATUSES))
            .order_by(ArticleDB.created_at.desc())
        )
        if limit is not None:
            query = query.limit(limit)
        result = await db.execute(query)
        return list(result.scalars().all())

    async def get_recent_sales(self, db: AsyncSession, user_id: str, limit: int = 20) -> List[ArticleDB]:
        """Most recent sold articles that carry a sale price"""
        result = await db.execute(
            select(ArticleDB)
            .where(
                ArticleDB.user_id == user_id,
                ArticleDB.status == SOLD_STATUS,
                ArticleDB.sold_price.is_not(None),
            )
            .order_by(ArticleDB.sold_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def get_sales_since(
        self,
        db: AsyncSession,
        since: datetime,
        limit: int = 500,
        user_id: Optional[str] = None
    ) -> List[ArticleDB]:
        """Completed sales usable for market statistics, most recent first"""
        query = (
            select(ArticleDB)
            .where(
                ArticleDB.status == SOLD_STATUS,
                ArticleDB.sold_at >= since,
                ArticleDB.sold_price.is_not(None),
                ArticleDB.brand.is_not(None),
            )
            .order_by(ArticleDB.sold_at.desc())
            .limit(limit)
        )
        if user_id is not None:
            query = query.where(ArticleDB.user_id == user_id)
        result = await db.execute(query)
        return list(result.scalars().all())

    async def get_by_status(self, db: AsyncSession, user_id: str, status: str) -> List[ArticleDB]:
        result = await db.execute(
            select(ArticleDB).where(ArticleDB.user_id == user_id, ArticleDB.status == status)
        )
        return list(result.scalars().all())

    async def get_titles(self, db: AsyncSession, user_id: str, ids: Sequence[str]) -> List[str]:
        """Titles of the given articles, in the order of ``ids``"""
        articles = {a.id: a.title for a in await self.get_by_ids(db, ids, user_id=user_id)}
        return [articles[i] for i in ids if i in articles]


class LotRepository(BaseRepository[LotDB]):
    """Repository for lot (bundle) operations"""

    def __init__(self):
        super().__init__(LotDB)

    async def get_by_status(self, db: AsyncSession, user_id: str, status: str) -> List[LotDB]:
        result = await db.execute(
            select(LotDB).where(LotDB.user_id == user_id, LotDB.status == status)
        )
        return list(result.scalars().all())


class LotItemRepository(BaseRepository[LotItemDB]):
    """Repository for lot membership rows"""

    def __init__(self):
        super().__init__(LotItemDB)

    async def add_members(self, db: AsyncSession, lot_id: str, article_ids: Sequence[str]) -> List[LotItemDB]:
        """Insert all membership rows in one commit"""
        rows = [LotItemDB(lot_id=lot_id, article_id=article_id) for article_id in article_ids]
        db.add_all(rows)
        await db.commit()
        return rows

    async def articles_in_lots(self, db: AsyncSession, article_ids: Optional[Sequence[str]] = None) -> List[str]:
        """Ids of the articles already belonging to a lot"""
        query = select(LotItemDB.article_id)
        if article_ids is not None:
            query = query.where(LotItemDB.article_id.in_(list(article_ids)))
        result = await db.execute(query)
        return list(result.scalars().all())

    async def delete_for_lot(self, db: AsyncSession, lot_id: str) -> int:
        result = await db.execute(delete(LotItemDB).where(LotItemDB.lot_id == lot_id))
        await db.commit()
        return result.rowcount


class SellingSuggestionRepository(BaseRepository[SellingSuggestionDB]):
    """Repository for scheduling suggestions"""

    def __init__(self):
        super().__init__(SellingSuggestionDB)

    async def get_pending(self, db: AsyncSession, user_id: str) -> List[SellingSuggestionDB]:
        result = await db.execute(
            select(SellingSuggestionDB)
            .where(SellingSuggestionDB.user_id == user_id, SellingSuggestionDB.status == "pending")
            .order_by(SellingSuggestionDB.suggested_date)
        )
        return list(result.scalars().all())

    async def delete_ids(self, db: AsyncSession, ids: Sequence[str]) -> int:
        if not ids:
            return 0
        result = await db.execute(delete(SellingSuggestionDB).where(SellingSuggestionDB.id.in_(list(ids))))
        await db.commit()
        return result.rowcount
