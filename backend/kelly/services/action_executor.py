"""Applies the side effects of an accepted insight.

Writes are committed one article at a time, so a failure partway through a
batch leaves earlier articles changed (reported as ``PartialApplyFailure``).
Lot creation is the only operation with a compensation: a lot that could not
receive its members is deleted again.
"""
import asyncio
import logging
from typing import Awaitable, Callable, Dict, List, Optional, Sequence, Set, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from kelly.agents.factory import ContentGenerator
from kelly.agents.models import LotCopy, SeoCopy
from kelly.agents.prompts import build_lot_copy_prompt, build_seo_prompt
from kelly.core.config import settings
from kelly.core.errors import KellyError, PartialApplyFailure, StorageFailure, ValidationFailure
from kelly.models.api import ActionResult, AdjustPriceAction, CreateBundleAction, Insight
from kelly.models.inventory import ArticleDB, LotDB
from kelly.repositories.inventory import ArticleRepository, LotItemRepository, LotRepository
from kelly.services.insight_cache import InsightCacheStore
from kelly.services.saga import CompensatingTransaction

logger = logging.getLogger(__name__)

BUNDLE_TYPES = ("bundle", "bundle_opportunity")
READY_TYPES = ("ready_to_list", "ready_to_publish")
DEFAULT_PRICE_DROP_PERCENT = 10
STALE_PRICE_DROP_PERCENT = 15

RegenerateCallback = Callable[[str], Awaitable[object]]


def _article_payload(article: ArticleDB) -> dict:
    return {
        "title": article.title,
        "description": article.description,
        "brand": article.brand,
        "size": article.size,
        "season": article.season,
        "condition": article.condition,
        "price": article.price,
        "color": article.color,
        "material": article.material,
    }


def _percent(value, default: int) -> float:
    try:
        return float(str(value).rstrip("%")) if value is not None else default
    except ValueError:
        return default


class ActionExecutor:
    def __init__(
        self,
        session_maker: async_sessionmaker,
        cache: InsightCacheStore,
        generator: ContentGenerator,
        on_regenerate: Optional[RegenerateCallback] = None,
        regeneration_delay: Optional[float] = None,
    ):
        self.session_maker = session_maker
        self.cache = cache
        self.generator = generator
        self.on_regenerate = on_regenerate
        self.regeneration_delay = (
            settings.REGENERATION_DELAY_SECONDS if regeneration_delay is None else regeneration_delay
        )
        self.articles = ArticleRepository()
        self.lots = LotRepository()
        self.lot_items = LotItemRepository()
        self._pending_tasks: Set[asyncio.Task] = set()

    async def execute(self, owner_id: str, insight: Insight) -> ActionResult:
        """Apply ``insight`` and mark it completed; informational insights stay active"""
        stored = await self.cache.get(insight.id, owner_id=owner_id)
        if stored is None:
            raise ValidationFailure("Cette recommandation n'existe plus.")
        if stored.status != "active":
            raise ValidationFailure("Cette recommandation n'est plus active.")
        insight = stored

        action = insight.suggested_action
        lot_id = None

        if isinstance(action, AdjustPriceAction):
            applied = await self._adjust_price(owner_id, insight.article_ids, action.suggested_price)
            message = f"Prix ajusté à {action.suggested_price:g}€ sur {len(applied)} article(s)."
        elif isinstance(action, CreateBundleAction) or insight.type in BUNDLE_TYPES:
            members = action.article_ids if isinstance(action, CreateBundleAction) and action.article_ids else insight.article_ids
            lot = await self._create_bundle(owner_id, members)
            applied, lot_id = list(dict.fromkeys(members)), lot.id
            message = f"Lot créé avec succès : {lot.name}"
        elif insight.type in READY_TYPES:
            applied = await self._set_ready(owner_id, insight.article_ids)
            message = f"{len(applied)} article(s) passé(s) en statut \"Prêt\"."
        elif insight.type in ("price_drop", "stale"):
            if insight.type == "stale":
                percentage = STALE_PRICE_DROP_PERCENT
            else:
                percentage = _percent(getattr(action, "value", None), DEFAULT_PRICE_DROP_PERCENT)
            applied = await self._drop_prices(owner_id, insight.article_ids, percentage)
            message = f"Prix baissé de {percentage:g}% sur {len(applied)} article(s)."
        elif insight.type == "seo_optimization":
            applied = await self._optimize_seo(owner_id, insight.article_ids)
            message = f"SEO optimisé pour {len(applied)} article(s)."
        else:
            return ActionResult(
                insight_id=insight.id,
                status="active",
                message="Ouvre l'article pour appliquer ce conseil.",
                navigate_to=insight.article_ids[0] if insight.article_ids else None,
            )

        await self.cache.set_status(insight.id, "completed", owner_id=owner_id)
        logger.info(f"Executed insight {insight.id} ({insight.type}) for {owner_id}: {len(applied)} article(s)")

        return ActionResult(
            insight_id=insight.id,
            status="completed",
            message=message,
            applied_ids=applied,
            lot_id=lot_id,
            regeneration_scheduled=self._schedule_regeneration(owner_id),
        )

    async def _load_all(self, owner_id: str, article_ids: Sequence[str]) -> List[ArticleDB]:
        """Every referenced article, in order; any missing one rejects the action"""
        ids = list(dict.fromkeys(article_ids))
        if not ids:
            raise ValidationFailure("Aucun article associé à cette recommandation.")
        try:
            async with self.session_maker() as db:
                found = {a.id: a for a in await self.articles.get_by_ids(db, ids, user_id=owner_id)}
        except SQLAlchemyError as e:
            logger.error(f"Failed to load articles {ids}: {e}")
            raise StorageFailure(detail=str(e)) from e

        missing = [i for i in ids if i not in found]
        if missing:
            raise ValidationFailure(f"{len(missing)} article(s) de cette recommandation n'existe(nt) plus.")
        return [found[i] for i in ids]

    async def _apply_updates(self, updates: Sequence[Tuple[str, Dict]]) -> List[str]:
        """Write each article's values in its own commit, stopping at the first failure"""
        applied: List[str] = []
        async with self.session_maker() as db:
            for article_id, values in updates:
                try:
                    updated = await self.articles.update(db, article_id, **values)
                except SQLAlchemyError as e:
                    await db.rollback()
                    logger.error(f"Update of article {article_id} failed after {len(applied)} write(s): {e}")
                    if not applied:
                        raise StorageFailure(detail=str(e)) from e
                    raise PartialApplyFailure(applied, article_id, detail=str(e)) from e
                if updated is None:
                    if not applied:
                        raise ValidationFailure("Cet article n'existe plus.")
                    raise PartialApplyFailure(applied, article_id, detail="article deleted")
                applied.append(article_id)
        return applied

    async def _adjust_price(self, owner_id: str, article_ids: Sequence[str], price: float) -> List[str]:
        articles = await self._load_all(owner_id, article_ids)
        return await self._apply_updates([(a.id, {"price": price}) for a in articles])

    async def _drop_prices(self, owner_id: str, article_ids: Sequence[str], percentage: float) -> List[str]:
        articles = await self._load_all(owner_id, article_ids)
        return await self._apply_updates([
            (a.id, {"price": round(a.price * (1 - percentage / 100))})
            for a in articles
            if a.price is not None
        ])

    async def _set_ready(self, owner_id: str, article_ids: Sequence[str]) -> List[str]:
        articles = await self._load_all(owner_id, article_ids)
        return await self._apply_updates([(a.id, {"status": "ready"}) for a in articles])

    async def _optimize_seo(self, owner_id: str, article_ids: Sequence[str]) -> List[str]:
        articles = await self._load_all(owner_id, article_ids)
        updates = []
        # Generate everything first: a generation failure writes nothing
        for article in articles:
            seo = await self.generator.generate(build_seo_prompt(_article_payload(article)), SeoCopy)
            updates.append((article.id, seo.model_dump()))
        return await self._apply_updates(updates)

    async def _create_bundle(self, owner_id: str, article_ids: Sequence[str]) -> LotDB:
        members = list(dict.fromkeys(article_ids))
        if len(members) < settings.BUNDLE_MIN_ARTICLES:
            raise ValidationFailure(f"Un lot doit contenir au moins {settings.BUNDLE_MIN_ARTICLES} articles.")

        articles = await self._load_all(owner_id, members)
        try:
            async with self.session_maker() as db:
                already_bundled = set(await self.lot_items.articles_in_lots(db, members))
        except SQLAlchemyError as e:
            raise StorageFailure(detail=str(e)) from e
        if already_bundled:
            names = ", ".join(a.title for a in articles if a.id in already_bundled)
            raise ValidationFailure(f"Ces articles sont déjà dans un lot : {names}. Retire-les d'abord de leur lot actuel.")

        total = sum(a.price or 0 for a in articles)
        discount = settings.BUNDLE_DISCOUNT_PERCENT
        copy = await self.generator.generate(build_lot_copy_prompt([_article_payload(a) for a in articles]), LotCopy)
        photos = [photo for a in articles for photo in (a.photos or [])]

        async with CompensatingTransaction("create_bundle") as tx:
            try:
                async with self.session_maker() as db:
                    lot = await self.lots.create(
                        db,
                        user_id=owner_id,
                        name=copy.title,
                        description=copy.description,
                        price=round(total * (1 - discount / 100)),
                        original_total_price=total,
                        discount_percentage=discount,
                        cover_photo=photos[0] if photos else None,
                        photos=photos,
                        status="draft",
                        seo_keywords=copy.seo_keywords,
                        hashtags=copy.hashtags,
                        search_terms=copy.search_terms,
                        ai_confidence_score=copy.ai_confidence_score,
                    )
                tx.push("delete lot", lambda: self._delete_lot(lot.id))

                async with self.session_maker() as db:
                    await self.lot_items.add_members(db, lot.id, members)
            except SQLAlchemyError as e:
                logger.error(f"Lot creation failed for {owner_id}: {e}")
                raise StorageFailure("Erreur lors de la création du lot.", detail=str(e)) from e
            tx.commit()

        return lot

    async def _delete_lot(self, lot_id: str) -> None:
        async with self.session_maker() as db:
            await self.lots.delete(db, lot_id)

    def _schedule_regeneration(self, owner_id: str) -> bool:
        if self.on_regenerate is None:
            return False
        task = asyncio.create_task(self._regenerate_later(owner_id))
        self._pending_tasks.add(task)
        task.add_done_callback(self._pending_tasks.discard)
        return True

    async def _regenerate_later(self, owner_id: str) -> None:
        await asyncio.sleep(self.regeneration_delay)
        try:
            await self.on_regenerate(owner_id)
        except KellyError as e:
            logger.warning(f"Delayed regeneration for {owner_id} failed: {e.message}")
