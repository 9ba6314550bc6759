"""Tests for proactive insights: filtering, title enrichment and soft staleness"""
import json
import pytest
from datetime import timedelta
from unittest.mock import AsyncMock, patch
from sqlalchemy.exc import SQLAlchemyError

from kelly.models.inventory import ArticleDB, LotDB, LotItemDB
from kelly.services.insight_cache import InsightCacheStore
from kelly.services.proactive_insights import (
    PROACTIVE_CACHE_KEY,
    ProactiveInsightGenerator,
    ProactiveInsightService,
)
from conftest import FakeGenerator


def article(id, title, status="draft", **kwargs):
    return ArticleDB(id=id, user_id=kwargs.pop("user_id", "seller-1"), title=title, status=status, price=20.0, **kwargs)


def batch(*insights) -> str:
    return json.dumps({"insights": list(insights)})


def insight(type, title, ids=(), **kwargs):
    return {"type": type, "title": title, "message": "...", "article_ids": list(ids), **kwargs}


class TestProactiveInsightGenerator:
    @pytest.mark.asyncio
    async def test_unknown_ids_are_dropped(self):
        generator = FakeGenerator(batch(insight("ready_to_list", "Prêts", ["a1", "ghost"])))
        drafts = await ProactiveInsightGenerator(generator).generate([article("a1", "Robe")], [], 3)
        assert drafts[0].article_ids == ["a1"]

    @pytest.mark.asyncio
    async def test_actionable_insight_without_article_is_dropped(self):
        generator = FakeGenerator(batch(
            insight("stale", "Invendus", ["ghost"]),
            insight("seasonal", "Printemps arrive"),
        ))
        drafts = await ProactiveInsightGenerator(generator).generate([article("a1", "Robe")], [], 3)
        assert [d.title for d in drafts] == ["Printemps arrive"]

    @pytest.mark.asyncio
    async def test_prompt_names_the_month(self):
        generator = FakeGenerator(batch())
        await ProactiveInsightGenerator(generator).generate([article("a1", "Robe")], [], 3)
        assert "mars" in generator.prompts[0]
        assert '"a1"' in generator.prompts[0]

    @pytest.mark.asyncio
    async def test_empty_inventory_skips_the_model(self):
        generator = FakeGenerator(batch(insight("seasonal", "x")))
        assert await ProactiveInsightGenerator(generator).generate([], [], 3) == []
        assert generator.prompts == []


class TestProactiveInsightService:
    @pytest.fixture
    def cache(self, session_maker, clock):
        return InsightCacheStore(session_maker, ttl=timedelta(hours=2), clock=clock)

    def service(self, session_maker, cache, clock, *answers):
        generator = FakeGenerator(*answers)
        service = ProactiveInsightService(
            session_maker, cache, ProactiveInsightGenerator(generator),
            stale_after=timedelta(minutes=30), clock=clock,
        )
        return service, generator

    @pytest.mark.asyncio
    async def test_titles_are_attached_in_order(self, session_maker, cache, clock, add_rows):
        await add_rows(article("a1", "Robe Zara"), article("a2", "Jean Levi's"))
        service, _ = self.service(session_maker, cache, clock, batch(insight("ready_to_list", "Prêts", ["a2", "a1"])))

        insights = await service.get_insights("seller-1")

        assert insights[0].article_titles == ["Jean Levi's", "Robe Zara"]
        assert insights[0].cache_key == PROACTIVE_CACHE_KEY

    @pytest.mark.asyncio
    async def test_title_lookup_failure_keeps_the_insight(self, session_maker, cache, clock, add_rows):
        await add_rows(article("a1", "Robe Zara"))
        service, _ = self.service(session_maker, cache, clock, batch(insight("ready_to_list", "Prêts", ["a1"])))

        with patch.object(service.articles, "get_titles", AsyncMock(side_effect=SQLAlchemyError("boom"))):
            insights = await service.get_insights("seller-1")

        assert [i.title for i in insights] == ["Prêts"]
        assert insights[0].article_titles == []

    @pytest.mark.asyncio
    async def test_bundle_over_lotted_article_is_dropped(self, session_maker, cache, clock, add_rows):
        await add_rows(article("a1", "Robe"), article("a2", "Jupe"), article("a3", "Top"))
        await add_rows(LotDB(id="lot-1", user_id="seller-1", name="Lot été", price=30, original_total_price=35))
        await add_rows(LotItemDB(lot_id="lot-1", article_id="a3"))
        service, _ = self.service(session_maker, cache, clock, batch(
            insight("bundle", "Lot libre", ["a1", "a2"]),
            insight("bundle", "Lot impossible", ["a2", "a3"]),
        ))

        insights = await service.get_insights("seller-1")

        assert [i.title for i in insights] == ["Lot libre"]

    @pytest.mark.asyncio
    async def test_soft_staleness_regenerates(self, session_maker, cache, clock, add_rows):
        await add_rows(article("a1", "Robe"))
        service, generator = self.service(
            session_maker, cache, clock,
            batch(insight("seasonal", "Ancien")),
            batch(insight("seasonal", "Nouveau")),
        )

        await service.get_insights("seller-1")
        clock.advance(minutes=20)
        assert [i.title for i in await service.get_insights("seller-1")] == ["Ancien"]
        assert len(generator.prompts) == 1

        clock.advance(minutes=25)
        assert [i.title for i in await service.get_insights("seller-1")] == ["Nouveau"]
        assert len(generator.prompts) == 2

    @pytest.mark.asyncio
    async def test_empty_batch_is_not_cached(self, session_maker, cache, clock, add_rows):
        await add_rows(article("a1", "Robe"))
        service, generator = self.service(session_maker, cache, clock, batch(insight("stale", "Rien", ["ghost"])))

        assert await service.get_insights("seller-1") == []
        assert await cache.load_active("seller-1", PROACTIVE_CACHE_KEY) is None

        await service.get_insights("seller-1")
        assert len(generator.prompts) == 2

    @pytest.mark.asyncio
    async def test_other_sellers_articles_are_invisible(self, session_maker, cache, clock, add_rows):
        await add_rows(article("a1", "Robe", user_id="seller-2"))
        service, generator = self.service(session_maker, cache, clock, batch(insight("seasonal", "x")))
        assert await service.get_insights("seller-1") == []
        assert generator.prompts == []
