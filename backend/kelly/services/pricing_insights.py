"""Pricing recommendations: reference bands, model call, deterministic priority"""
import logging
from dataclasses import dataclass, asdict
from typing import Dict, List, Optional, Sequence

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from kelly.agents.factory import ContentGenerator
from kelly.agents.models import PricingInsightBatch
from kelly.agents.prompts import build_pricing_prompt
from kelly.core.config import settings
from kelly.core.errors import StorageFailure
from kelly.models.api import (
    AdjustPriceAction,
    CreateBundleAction,
    Insight,
    InsightDraft,
    MarketData,
    MarketStats,
    PRIORITY_ORDER,
    TestPriceAction,
)
from kelly.models.inventory import ArticleDB
from kelly.repositories.inventory import ArticleRepository
from kelly.services.insight_cache import InsightCacheStore
from kelly.services.market_stats import category_from_title, compute_market_stats, index_by_segment, segment_key

logger = logging.getLogger(__name__)

PRICING_CACHE_KEY = "pricing_insights"


@dataclass
class PriceBand:
    avg: float
    min: float
    max: float
    source: str  # 'market' or 'suggested'
    total_sales: Optional[int] = None


def classify_priority(current_price: float, reference_avg: float) -> str:
    """high: gap >= 30% or > 10 units; medium: gap >= 15% or >= 5 units; else low"""
    opportunity = abs(reference_avg - current_price)
    gap = opportunity / reference_avg if reference_avg > 0 else 0.0

    if gap >= 0.30 or opportunity > 10:
        return "high"
    if gap >= 0.15 or opportunity >= 5:
        return "medium"
    return "low"


def _highest(priorities: Sequence[str]) -> str:
    return min(priorities, key=PRIORITY_ORDER.__getitem__) if priorities else "low"


def reference_bands(inventory: Sequence[ArticleDB], stats: Sequence[MarketStats]) -> Dict[str, PriceBand]:
    """Price band per priceable article; articles with no reference are left out"""
    by_segment = index_by_segment(stats)
    bands = {}
    for article in inventory:
        if article.price is None:
            continue

        stat = by_segment.get(segment_key(article)) if article.brand else None
        if stat is not None:
            bands[article.id] = PriceBand(
                avg=stat.avg_sold_price,
                min=stat.min_sold_price,
                max=stat.max_sold_price,
                source="market",
                total_sales=stat.total_sales,
            )
        elif article.suggested_price_min is not None and article.suggested_price_max is not None:
            low, high = sorted((article.suggested_price_min, article.suggested_price_max))
            bands[article.id] = PriceBand(avg=round((low + high) / 2, 2), min=low, max=high, source="suggested")
    return bands


class PricingInsightGenerator:
    def __init__(self, generator: ContentGenerator, max_insights: Optional[int] = None):
        self.generator = generator
        self.max_insights = max_insights or settings.MAX_PRICING_INSIGHTS

    async def generate(
        self,
        inventory: Sequence[ArticleDB],
        sold_history: Sequence[ArticleDB],
        stats: Sequence[MarketStats],
    ) -> List[InsightDraft]:
        bands = reference_bands(inventory, stats)
        articles = {a.id: a for a in inventory if a.id in bands}
        if not articles:
            logger.info(f"No priceable article among {len(inventory)}; skipping generation")
            return []

        prompt = build_pricing_prompt(
            [self._article_payload(a, bands[a.id]) for a in articles.values()],
            [
                {
                    "brand": s.brand,
                    "category": category_from_title(s.title),
                    "condition": s.condition,
                    "sold_price": s.sold_price,
                    "original_price": s.price,
                }
                for s in sold_history
            ],
            [s.model_dump() for s in stats],
        )
        batch = await self.generator.generate(prompt, PricingInsightBatch)

        drafts = []
        for draft in batch.insights:
            normalized = self._normalize(draft, articles, bands)
            if normalized is None:
                logger.debug(f"Dropped pricing insight '{draft.title}': no eligible article")
                continue
            drafts.append(normalized)

        drafts.sort(key=lambda d: PRIORITY_ORDER[d.priority])
        return drafts[:self.max_insights]

    @staticmethod
    def _article_payload(article: ArticleDB, band: PriceBand) -> dict:
        return {
            "id": article.id,
            "title": article.title,
            "brand": article.brand,
            "category": category_from_title(article.title),
            "condition": article.condition,
            "price": article.price,
            "status": article.status,
            "season": article.season,
            "reference": asdict(band),
        }

    @staticmethod
    def _normalize(
        draft: InsightDraft,
        articles: Dict[str, ArticleDB],
        bands: Dict[str, PriceBand],
    ) -> Optional[InsightDraft]:
        ids = [i for i in draft.article_ids if i in articles]
        action = draft.suggested_action

        if isinstance(action, CreateBundleAction):
            members = [i for i in dict.fromkeys(action.article_ids or draft.article_ids) if i in articles]
            if len(members) < settings.BUNDLE_MIN_ARTICLES:
                return None
            ids = members
            action = action.model_copy(update={"article_ids": members})
            priority = classify_priority(
                sum(articles[i].price for i in members),
                sum(bands[i].avg for i in members),
            )
        elif not ids:
            return None
        elif isinstance(action, AdjustPriceAction):
            band = bands[ids[0]]
            action = action.model_copy(update={
                "current_price": articles[ids[0]].price,
                "market_data": MarketData(
                    avg_price=band.avg,
                    min_price=band.min,
                    max_price=band.max,
                    sales_last_30d=band.total_sales,
                ),
            })
            priority = _highest([classify_priority(articles[i].price, bands[i].avg) for i in ids])
        elif isinstance(action, TestPriceAction):
            midpoint = (action.min_price + action.max_price) / 2
            priority = _highest([classify_priority(articles[i].price, midpoint) for i in ids])
        else:
            priority = _highest([classify_priority(articles[i].price, bands[i].avg) for i in ids])

        return InsightDraft(
            type=draft.type,
            priority=priority,
            title=draft.title,
            message=draft.message,
            action_label=draft.action_label,
            article_ids=ids,
            article_titles=[articles[i].title for i in ids],
            suggested_action=action,
        )


class PricingInsightService:
    """Cache-through access to pricing insights (hard TTL only)"""

    def __init__(
        self,
        session_maker: async_sessionmaker,
        cache: InsightCacheStore,
        generator: PricingInsightGenerator,
    ):
        self.session_maker = session_maker
        self.cache = cache
        self.generator = generator
        self.articles = ArticleRepository()

    async def get_insights(self, owner_id: str, force_refresh: bool = False) -> List[Insight]:
        if not force_refresh:
            cached = await self.cache.load_active(owner_id, PRICING_CACHE_KEY)
            if cached:
                return cached

        try:
            async with self.session_maker() as db:
                inventory = await self.articles.get_listable(db, owner_id, limit=settings.PRICING_INVENTORY_LIMIT)
                if not inventory:
                    return []
                sold = await self.articles.get_recent_sales(db, owner_id, limit=settings.PRICING_SOLD_HISTORY_LIMIT)
                stats = await compute_market_stats(db)
        except SQLAlchemyError as e:
            logger.error(f"Failed to load pricing inputs for {owner_id}: {e}")
            raise StorageFailure(detail=str(e)) from e

        drafts = await self.generator.generate(inventory, sold, stats)
        return await self.cache.replace(owner_id, PRICING_CACHE_KEY, drafts)
