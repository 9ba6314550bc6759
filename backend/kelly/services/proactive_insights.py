import asyncio
import logging
from datetime import datetime, timedelta
from typing import Callable, List, Optional, Sequence

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from kelly.agents.factory import ContentGenerator
from kelly.agents.models import ProactiveInsightBatch
from kelly.agents.prompts import build_proactive_prompt
from kelly.core.config import settings
from kelly.core.errors import StorageFailure
from kelly.models.api import Insight, InsightDraft
from kelly.models.base import utcnow
from kelly.models.inventory import ArticleDB
from kelly.repositories.inventory import ArticleRepository, LotItemRepository
from kelly.services.insight_cache import InsightCacheStore

logger = logging.getLogger(__name__)

PROACTIVE_CACHE_KEY = "default"

# Types whose execution mutates the referenced articles
ACTIONABLE_TYPES = {"ready_to_list", "ready_to_publish", "stale", "price_drop", "bundle", "seo_optimization"}


class ProactiveInsightGenerator:
    """Non-pricing recommendations over the whole inventory"""

    def __init__(self, generator: ContentGenerator):
        self.generator = generator

    async def generate(
        self,
        inventory: Sequence[ArticleDB],
        sold_history: Sequence[ArticleDB],
        current_month: int,
    ) -> List[InsightDraft]:
        if not inventory:
            return []

        known_ids = {a.id for a in inventory}
        prompt = build_proactive_prompt(
            [
                {
                    "id": a.id,
                    "title": a.title,
                    "brand": a.brand,
                    "size": a.size,
                    "condition": a.condition,
                    "price": a.price,
                    "status": a.status,
                    "season": a.season,
                    "has_description": bool(a.description),
                    "photo_count": len(a.photos or []),
                    "has_seo": bool(a.seo_keywords or a.hashtags),
                    "created_at": a.created_at,
                }
                for a in inventory
            ],
            [{"title": s.title, "brand": s.brand, "sold_price": s.sold_price, "sold_at": s.sold_at} for s in sold_history],
            current_month,
        )
        batch = await self.generator.generate(prompt, ProactiveInsightBatch)

        drafts = []
        for draft in batch.insights:
            ids = [i for i in draft.article_ids if i in known_ids]
            if not ids and draft.type in ACTIONABLE_TYPES:
                logger.debug(f"Dropped proactive insight '{draft.title}': no known article")
                continue
            drafts.append(InsightDraft(
                type=draft.type,
                priority=draft.priority,
                title=draft.title,
                message=draft.message,
                action_label=draft.action_label,
                article_ids=ids,
                suggested_action=draft.suggested_action,
            ))
        return drafts


class ProactiveInsightService:
    """Cache-through access to proactive insights (hard TTL plus soft staleness)"""

    def __init__(
        self,
        session_maker: async_sessionmaker,
        cache: InsightCacheStore,
        generator: ProactiveInsightGenerator,
        stale_after: Optional[timedelta] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session_maker = session_maker
        self.cache = cache
        self.generator = generator
        self.stale_after = stale_after or timedelta(minutes=settings.INSIGHT_STALE_AFTER_MINUTES)
        self.clock = clock
        self.articles = ArticleRepository()
        self.lot_items = LotItemRepository()

    async def _titles_for(self, owner_id: str, draft: InsightDraft) -> InsightDraft:
        if not draft.article_ids:
            return draft
        try:
            async with self.session_maker() as db:
                titles = await self.articles.get_titles(db, owner_id, draft.article_ids)
        except SQLAlchemyError as e:
            logger.warning(f"Title lookup failed for insight '{draft.title}', keeping it without titles: {e}")
            titles = []
        return draft.model_copy(update={"article_titles": titles})

    async def enrich_titles(self, owner_id: str, drafts: Sequence[InsightDraft]) -> List[InsightDraft]:
        """Attach article titles; a failed lookup only affects its own insight"""
        return list(await asyncio.gather(*(self._titles_for(owner_id, d) for d in drafts)))

    async def get_insights(self, owner_id: str, force_refresh: bool = False) -> List[Insight]:
        if not force_refresh:
            cached = await self.cache.load_active(owner_id, PROACTIVE_CACHE_KEY, stale_after=self.stale_after)
            if cached:
                return cached

        try:
            async with self.session_maker() as db:
                inventory = await self.articles.get_listable(db, owner_id)
                sold = await self.articles.get_by_status(db, owner_id, "sold")
                in_lots = set(await self.lot_items.articles_in_lots(db, [a.id for a in inventory]))
        except SQLAlchemyError as e:
            logger.error(f"Failed to load inventory for proactive insights ({owner_id}): {e}")
            raise StorageFailure(detail=str(e)) from e

        drafts = await self.generator.generate(inventory, sold, self.clock().month)
        drafts = await self.enrich_titles(owner_id, drafts)

        # Bundle suggestions over articles already in a lot cannot be executed
        drafts = [
            d for d in drafts
            if not (d.type == "bundle" and any(i in in_lots for i in d.article_ids))
        ]

        if not drafts:
            return []
        return await self.cache.replace(owner_id, PROACTIVE_CACHE_KEY, drafts)
