"""Per-segment price bands computed from recent completed sales"""
import logging
from collections import OrderedDict
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from kelly.core.config import settings
from kelly.core.errors import StorageFailure
from kelly.models.api import MarketStats
from kelly.models.base import utcnow
from kelly.repositories.inventory import ArticleRepository

logger = logging.getLogger(__name__)

SegmentKey = Tuple[str, str, Optional[str]]


def category_from_title(title: Optional[str]) -> str:
    """First whitespace-separated word of the title, as written"""
    tokens = (title or "").split()
    return tokens[0] if tokens else ""


def segment_key(article) -> SegmentKey:
    return (article.brand, category_from_title(article.title), article.condition)


def aggregate_sales(sales: Iterable, min_sales: int = 3) -> List[MarketStats]:
    """Group sales by segment; segments under ``min_sales`` observations are dropped"""
    groups: "OrderedDict[SegmentKey, List[float]]" = OrderedDict()
    for sale in sales:
        if sale.brand is None or sale.sold_price is None:
            continue
        groups.setdefault(segment_key(sale), []).append(float(sale.sold_price))

    stats = []
    for (brand, category, condition), prices in groups.items():
        if len(prices) < min_sales:
            continue
        stats.append(MarketStats(
            brand=brand,
            category=category,
            condition=condition,
            avg_sold_price=round(sum(prices) / len(prices), 2),
            min_sold_price=min(prices),
            max_sold_price=max(prices),
            total_sales=len(prices),
        ))

    # Stable: equal counts keep most-recent-first order
    stats.sort(key=lambda s: s.total_sales, reverse=True)
    return stats


async def compute_market_stats(
    db: AsyncSession,
    owner_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> List[MarketStats]:
    """Market statistics over the trailing window, most-observed segment first.

    ``owner_id`` restricts the sample to one seller; ``None`` uses every sale.
    """
    since = (now or utcnow()) - timedelta(days=settings.MARKET_STATS_WINDOW_DAYS)
    try:
        sales = await ArticleRepository().get_sales_since(
            db, since, limit=settings.MARKET_STATS_SAMPLE_LIMIT, user_id=owner_id
        )
    except SQLAlchemyError as e:
        logger.error(f"Failed to load sales for market stats: {e}")
        raise StorageFailure(detail=str(e)) from e

    stats = aggregate_sales(sales, min_sales=settings.MARKET_STATS_MIN_SALES)
    logger.debug(f"Market stats: {len(sales)} sales -> {len(stats)} segments")
    return stats


def index_by_segment(stats: Iterable[MarketStats]) -> Dict[SegmentKey, MarketStats]:
    return {(s.brand, s.category, s.condition): s for s in stats}
