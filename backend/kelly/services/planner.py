"""Scheduling suggestions: when to publish each ready article or lot"""
import logging
import random
from datetime import date, datetime, timedelta
from typing import Callable, List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from kelly.core.errors import StorageFailure, ValidationFailure
from kelly.models.api import SellingSuggestion
from kelly.models.base import utcnow
from kelly.models.inventory import SellingSuggestionDB
from kelly.repositories.inventory import ArticleRepository, LotRepository, SellingSuggestionRepository

logger = logging.getLogger(__name__)

# Month (1-12) each season sells best from
SEASON_TARGET_MONTH = {"spring": 3, "summer": 5, "autumn": 8, "winter": 10}

SEASON_REASONS = {
    "spring": "meilleure période de vente en mars-avril",
    "summer": "meilleure période de vente en mai-juin",
    "autumn": "meilleure période de vente en août-septembre",
    "winter": "meilleure période de vente en octobre-novembre",
}

# Item statuses that invalidate any suggestion pointing at them
INVALID_ITEM_STATUSES = ("sold", "vendu_en_lot", "draft", "error", "processing")


def plan_publication(season: Optional[str], today: date, rng: random.Random) -> Tuple[date, str, str]:
    """(suggested_date, priority, reason) for an item of ``season``"""
    target_month = SEASON_TARGET_MONTH.get(season or "")
    if target_month is None:
        target_month = today.month
        reason = "Toutes saisons - peut être publié maintenant"
    else:
        reason = f"Saison {season} - {SEASON_REASONS[season]}"

    month_diff = (target_month - today.month) % 12
    if month_diff <= 1:
        priority = "high"
        reason = f"Période optimale maintenant ! {reason}"
    elif month_diff <= 3:
        priority = "medium"
    else:
        priority = "low"

    if season not in SEASON_TARGET_MONTH or month_diff == 0:
        suggested = today + timedelta(days=rng.randint(1, 7))
    else:
        suggested = date(today.year, target_month, 1)
        if suggested < today:
            suggested = suggested.replace(year=today.year + 1)

    return suggested, priority, reason


class SellingPlanner:
    def __init__(
        self,
        session_maker: async_sessionmaker,
        clock: Callable[[], datetime] = utcnow,
        rng: Optional[random.Random] = None,
    ):
        self.session_maker = session_maker
        self.clock = clock
        self.rng = rng or random.Random()
        self.articles = ArticleRepository()
        self.lots = LotRepository()
        self.suggestions = SellingSuggestionRepository()

    async def generate_suggestions(self, owner_id: str) -> int:
        """Refresh pending suggestions for every ready article and lot; returns the number created"""
        today = self.clock().date()
        try:
            async with self.session_maker() as db:
                await self._drop_invalid(db, owner_id)

                ready_articles = await self.articles.get_by_status(db, owner_id, "ready")
                ready_lots = await self.lots.get_by_status(db, owner_id, "ready")
                pending = await self.suggestions.get_pending(db, owner_id)
                by_article = {s.article_id: s for s in pending if s.article_id}
                by_lot = {s.lot_id: s for s in pending if s.lot_id}

                created = 0
                targets = [("article_id", a, by_article.get(a.id)) for a in ready_articles]
                targets += [("lot_id", lot, by_lot.get(lot.id)) for lot in ready_lots]
                for field, item, existing in targets:
                    suggested, priority, reason = plan_publication(item.season, today, self.rng)
                    values = {"suggested_date": suggested.isoformat(), "priority": priority, "reason": reason}
                    if existing is not None:
                        for key, value in values.items():
                            setattr(existing, key, value)
                    else:
                        db.add(SellingSuggestionDB(user_id=owner_id, status="pending", **{field: item.id}, **values))
                        created += 1

                await db.commit()
        except SQLAlchemyError as e:
            logger.error(f"Failed to generate selling suggestions for {owner_id}: {e}")
            raise StorageFailure(detail=str(e)) from e

        logger.info(f"Selling suggestions for {owner_id}: {created} created, {len(targets) - created} updated")
        return created

    async def _drop_invalid(self, db: AsyncSession, owner_id: str) -> None:
        suggestions = await self.suggestions.get_by_user_id(db, owner_id)
        if not suggestions:
            return
        articles = {a.id: a for a in await self.articles.get_by_ids(db, [s.article_id for s in suggestions if s.article_id])}
        lots = {lot.id: lot for lot in await self.lots.get_by_ids(db, [s.lot_id for s in suggestions if s.lot_id])}

        stale = []
        for suggestion in suggestions:
            item = articles.get(suggestion.article_id) if suggestion.article_id else lots.get(suggestion.lot_id)
            if item is None or item.status in INVALID_ITEM_STATUSES:
                stale.append(suggestion.id)
        if stale:
            await self.suggestions.delete_ids(db, stale)

    async def pending_suggestions(self, owner_id: str) -> List[SellingSuggestion]:
        """Pending suggestions whose item is still ready"""
        try:
            async with self.session_maker() as db:
                pending = await self.suggestions.get_pending(db, owner_id)
                ready_articles = {a.id for a in await self.articles.get_by_status(db, owner_id, "ready")}
                ready_lots = {lot.id for lot in await self.lots.get_by_status(db, owner_id, "ready")}
        except SQLAlchemyError as e:
            logger.error(f"Failed to load selling suggestions for {owner_id}: {e}")
            raise StorageFailure(detail=str(e)) from e

        return [
            SellingSuggestion.model_validate(s)
            for s in pending
            if (s.article_id in ready_articles) or (s.lot_id in ready_lots)
        ]

    async def load(self, owner_id: str) -> List[SellingSuggestion]:
        await self.generate_suggestions(owner_id)
        return await self.pending_suggestions(owner_id)

    async def _pending_for(self, db: AsyncSession, owner_id: str, suggestion_id: str) -> SellingSuggestionDB:
        suggestion = await self.suggestions.get_by_id(db, suggestion_id)
        if suggestion is None or suggestion.user_id != owner_id:
            raise ValidationFailure("Cette suggestion n'existe plus.")
        if suggestion.status != "pending":
            raise ValidationFailure("Cette suggestion a déjà été traitée.")
        return suggestion

    async def accept(
        self,
        owner_id: str,
        suggestion_id: str,
        scheduled_for: Optional[datetime] = None,
    ) -> SellingSuggestion:
        """Schedule the item on the suggested date (or ``scheduled_for``)"""
        try:
            async with self.session_maker() as db:
                suggestion = await self._pending_for(db, owner_id, suggestion_id)
                when = scheduled_for or datetime.fromisoformat(suggestion.suggested_date)

                if suggestion.article_id:
                    item = await self.articles.get_by_id(db, suggestion.article_id)
                else:
                    item = await self.lots.get_by_id(db, suggestion.lot_id)
                if item is None:
                    raise ValidationFailure("L'article de cette suggestion n'existe plus.")

                item.status = "scheduled"
                item.scheduled_for = when
                suggestion.status = "accepted"
                await db.commit()
                return SellingSuggestion.model_validate(suggestion)
        except SQLAlchemyError as e:
            logger.error(f"Failed to accept suggestion {suggestion_id}: {e}")
            raise StorageFailure(detail=str(e)) from e

    async def reject(self, owner_id: str, suggestion_id: str) -> SellingSuggestion:
        try:
            async with self.session_maker() as db:
                suggestion = await self._pending_for(db, owner_id, suggestion_id)
                suggestion.status = "rejected"
                await db.commit()
                return SellingSuggestion.model_validate(suggestion)
        except SQLAlchemyError as e:
            logger.error(f"Failed to reject suggestion {suggestion_id}: {e}")
            raise StorageFailure(detail=str(e)) from e
