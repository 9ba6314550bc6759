"""Per-seller view over the three recommendation pipelines.

``general`` (proactive insights), ``pricing`` and ``scheduling`` load
concurrently and independently. Each pipeline carries its own in-flight
guard, so a second load while one is running is a no-op. Locally dismissed
titles are hidden at once and reconciled against the next general reload.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Set

from kelly.agents.factory import ContentGenerator
from kelly.core.config import settings
from kelly.core.errors import KellyError, ValidationFailure
from kelly.models.api import ActionResult, Insight, InsightCounts, InsightsResponse
from kelly.models.base import utcnow
from kelly.services.action_executor import ActionExecutor
from kelly.services.insight_cache import InsightCacheStore
from kelly.services.planner import SellingPlanner
from kelly.services.pricing_insights import PricingInsightGenerator, PricingInsightService
from kelly.services.proactive_insights import ProactiveInsightGenerator, ProactiveInsightService

logger = logging.getLogger(__name__)

PIPELINES = ("general", "pricing", "scheduling")


@dataclass
class PipelineState:
    name: str
    in_flight: bool = False
    items: List[Any] = field(default_factory=list)
    error: Optional[str] = None
    last_loaded_at: Optional[datetime] = None


class InsightAggregator:
    def __init__(
        self,
        owner_id: str,
        proactive: ProactiveInsightService,
        pricing: PricingInsightService,
        planner: SellingPlanner,
        cache: InsightCacheStore,
        executor: ActionExecutor,
        on_count_change: Optional[Callable[[InsightCounts], Any]] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.owner_id = owner_id
        self.cache = cache
        self.executor = executor
        self.on_count_change = on_count_change
        self.clock = clock
        self.states: Dict[str, PipelineState] = {name: PipelineState(name) for name in PIPELINES}
        self.dismissed_titles: Set[str] = set()
        self.executing: Set[str] = set()
        self._loaders = {
            "general": lambda force: proactive.get_insights(owner_id, force_refresh=force),
            "pricing": lambda force: pricing.get_insights(owner_id, force_refresh=force),
            "scheduling": lambda force: planner.load(owner_id),
        }
        self._last_counts: Optional[InsightCounts] = None

    async def load_all(self, force_refresh: bool = False) -> Dict[str, bool]:
        """Load every pipeline concurrently; returns which ones actually ran to success"""
        results = await asyncio.gather(*(self._load_pipeline(name, force_refresh) for name in PIPELINES))
        return dict(zip(PIPELINES, results))

    async def refresh(self, force_bypass_cache: bool = False) -> Dict[str, bool]:
        return await self.load_all(force_refresh=force_bypass_cache)

    async def _load_pipeline(self, name: str, force_refresh: bool) -> bool:
        state = self.states[name]
        if state.in_flight:
            logger.debug(f"[{self.owner_id}] {name} load already in flight, skipping")
            return False

        state.in_flight = True
        try:
            items = await self._loaders[name](force_refresh)
        except KellyError as e:
            logger.warning(f"[{self.owner_id}] {name} pipeline failed: {e.message}")
            state.error = e.message
            return False
        except Exception:
            logger.error(f"[{self.owner_id}] {name} pipeline crashed", exc_info=True)
            state.error = KellyError.default_message
            return False
        else:
            state.items = list(items)
            state.error = None
            state.last_loaded_at = self.clock()
            if name == "general":
                self._reconcile_overlay()
            return True
        finally:
            state.in_flight = False
            self._publish_counts()

    def _reconcile_overlay(self) -> None:
        """Forget dismissed titles that are no longer in the active general set"""
        present = {i.title for i in self.states["general"].items if i.status == "active"}
        self.dismissed_titles &= present

    def visible_general(self) -> List[Insight]:
        return [
            i for i in self.states["general"].items
            if i.status == "active" and i.title not in self.dismissed_titles
        ]

    def active_pricing(self) -> List[Insight]:
        return [i for i in self.states["pricing"].items if i.status == "active"]

    def counts(self) -> InsightCounts:
        general = len(self.visible_general())
        pricing = len(self.active_pricing())
        scheduling = len(self.states["scheduling"].items)
        return InsightCounts(
            general=general,
            pricing=pricing,
            scheduling=scheduling,
            total=general + pricing + scheduling,
        )

    def _publish_counts(self) -> None:
        counts = self.counts()
        if counts == self._last_counts:
            return
        self._last_counts = counts
        if self.on_count_change is not None:
            self.on_count_change(counts)

    def _find(self, insight_id: str) -> Optional[Insight]:
        for name in ("general", "pricing"):
            for insight in self.states[name].items:
                if insight.id == insight_id:
                    return insight
        return None

    def _replace_local(self, insight_id: str, **changes) -> None:
        for name in ("general", "pricing"):
            state = self.states[name]
            state.items = [i.model_copy(update=changes) if i.id == insight_id else i for i in state.items]

    def _drop_local(self, insight_id: str) -> None:
        for name in ("general", "pricing"):
            state = self.states[name]
            state.items = [i for i in state.items if i.id != insight_id]

    async def _resolve(self, insight_id: str) -> Insight:
        insight = self._find(insight_id)
        if insight is None:
            insight = await self.cache.get(insight_id, owner_id=self.owner_id)
        if insight is None:
            raise ValidationFailure("Cette recommandation n'existe plus.")
        return insight

    async def dismiss(self, insight_id: str) -> InsightCounts:
        """Hide at once, then persist; the overlay entry is reverted if persisting fails"""
        insight = await self._resolve(insight_id)
        added = insight.title not in self.dismissed_titles
        self.dismissed_titles.add(insight.title)
        self._publish_counts()

        try:
            changed = await self.cache.set_status(insight.id, "dismissed", owner_id=self.owner_id)
        except KellyError:
            if added:
                self.dismissed_titles.discard(insight.title)
            self._publish_counts()
            raise

        if changed:
            self._replace_local(insight.id, status="dismissed")
        else:
            # Already terminal: mirror whatever the store holds
            stored = await self.cache.get(insight.id, owner_id=self.owner_id)
            if stored is not None:
                self._replace_local(insight.id, status=stored.status)
        self._publish_counts()
        return self.counts()

    async def execute(self, insight_id: str) -> ActionResult:
        """Apply an insight; a second call for the same insight while one runs is rejected"""
        if insight_id in self.executing:
            raise ValidationFailure("Cette action est déjà en cours.")

        self.executing.add(insight_id)
        try:
            insight = await self._resolve(insight_id)
            result = await self.executor.execute(self.owner_id, insight)
        finally:
            self.executing.discard(insight_id)

        if result.status == "completed":
            self._drop_local(insight.id)
            self._publish_counts()
        return result

    def is_busy(self) -> bool:
        return bool(self.executing) or any(s.in_flight for s in self.states.values())

    def snapshot(self) -> InsightsResponse:
        return InsightsResponse(
            counts=self.counts(),
            general=self.visible_general(),
            pricing=self.active_pricing(),
            scheduling=list(self.states["scheduling"].items),
            errors={name: s.error for name, s in self.states.items() if s.error},
            in_flight={name: s.in_flight for name, s in self.states.items()},
        )


class AggregatorRegistry:
    """One aggregator per seller, shared by every request of that seller.

    Aggregators untouched for ``idle_after`` and not busy are dropped on the
    next lookup; the seller's next request starts from the persisted cache.
    """

    def __init__(
        self,
        proactive: ProactiveInsightService,
        pricing: PricingInsightService,
        planner: SellingPlanner,
        cache: InsightCacheStore,
        executor: ActionExecutor,
        idle_after: Optional[timedelta] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.proactive = proactive
        self.pricing = pricing
        self.planner = planner
        self.cache = cache
        self.executor = executor
        self.idle_after = idle_after or timedelta(minutes=settings.AGGREGATOR_IDLE_MINUTES)
        self.clock = clock
        self._aggregators: Dict[str, InsightAggregator] = {}
        self._last_used: Dict[str, datetime] = {}

    def for_owner(self, owner_id: str) -> InsightAggregator:
        now = self.clock()
        self.evict_idle(now)
        self._last_used[owner_id] = now
        aggregator = self._aggregators.get(owner_id)
        if aggregator is None:
            aggregator = InsightAggregator(
                owner_id, self.proactive, self.pricing, self.planner, self.cache, self.executor
            )
            self._aggregators[owner_id] = aggregator
        return aggregator

    def evict_idle(self, now: Optional[datetime] = None) -> List[str]:
        now = now or self.clock()
        idle = [
            owner_id for owner_id, last_used in self._last_used.items()
            if now - last_used > self.idle_after
            and not (owner_id in self._aggregators and self._aggregators[owner_id].is_busy())
        ]
        for owner_id in idle:
            self._aggregators.pop(owner_id, None)
            del self._last_used[owner_id]
        if idle:
            logger.debug(f"Evicted {len(idle)} idle aggregator(s)")
        return idle

    async def regenerate(self, owner_id: str) -> Dict[str, bool]:
        """Delayed refresh after an executed action"""
        return await self.for_owner(owner_id).refresh(force_bypass_cache=True)


def build_registry(session_maker, generator: Optional[ContentGenerator] = None) -> AggregatorRegistry:
    """Wire the engine's services around one session factory and content generator"""
    generator = generator or ContentGenerator()
    cache = InsightCacheStore(session_maker)
    executor = ActionExecutor(session_maker, cache, generator)
    registry = AggregatorRegistry(
        proactive=ProactiveInsightService(session_maker, cache, ProactiveInsightGenerator(generator)),
        pricing=PricingInsightService(session_maker, cache, PricingInsightGenerator(generator)),
        planner=SellingPlanner(session_maker),
        cache=cache,
        executor=executor,
    )
    executor.on_regenerate = registry.regenerate
    return registry
