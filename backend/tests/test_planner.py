"""Tests for the selling planner"""
import random
import pytest
from datetime import date, datetime
from sqlalchemy import select

from kelly.core.errors import ValidationFailure
from kelly.models.inventory import ArticleDB, LotDB, SellingSuggestionDB
from kelly.services.planner import SellingPlanner, plan_publication


TODAY = date(2025, 3, 10)


def ready_article(id, season=None, **kwargs):
    return ArticleDB(
        id=id, user_id=kwargs.pop("user_id", "seller-1"), title=f"Article {id}",
        price=20.0, status=kwargs.pop("status", "ready"), season=season, **kwargs
    )


class TestPlanPublication:
    def test_far_season_is_low_priority(self):
        suggested, priority, reason = plan_publication("winter", TODAY, random.Random(0))
        assert suggested == date(2025, 10, 1)
        assert priority == "low"
        assert "winter" in reason

    def test_current_season_is_published_within_a_week(self):
        for seed in range(20):
            suggested, priority, reason = plan_publication("spring", TODAY, random.Random(seed))
            assert 1 <= (suggested - TODAY).days <= 7
            assert priority == "high"
            assert reason.startswith("Période optimale maintenant !")

    def test_upcoming_season_is_medium(self):
        suggested, priority, _ = plan_publication("summer", TODAY, random.Random(0))
        assert suggested == date(2025, 5, 1)
        assert priority == "medium"

    def test_next_month_is_high(self):
        suggested, priority, _ = plan_publication("summer", date(2025, 4, 20), random.Random(0))
        assert suggested == date(2025, 5, 1)
        assert priority == "high"

    def test_past_target_rolls_to_next_year(self):
        suggested, priority, _ = plan_publication("autumn", date(2025, 9, 15), random.Random(0))
        assert suggested == date(2026, 8, 1)
        assert priority == "low"

    def test_no_season(self):
        suggested, priority, reason = plan_publication(None, TODAY, random.Random(0))
        assert priority == "high"
        assert 1 <= (suggested - TODAY).days <= 7
        assert "Toutes saisons" in reason


class TestSellingPlanner:
    @pytest.fixture
    def planner(self, session_maker, clock):
        return SellingPlanner(session_maker, clock=clock, rng=random.Random(42))

    async def all_suggestions(self, session_maker):
        async with session_maker() as db:
            return list((await db.execute(select(SellingSuggestionDB))).scalars().all())

    @pytest.mark.asyncio
    async def test_one_suggestion_per_ready_item(self, planner, session_maker, add_rows):
        await add_rows(
            ready_article("a1", season="winter"),
            ready_article("a2", status="draft"),
            LotDB(id="lot-1", user_id="seller-1", name="Lot", price=30, original_total_price=35, status="ready", season="summer"),
        )

        assert await planner.generate_suggestions("seller-1") == 2
        assert await planner.generate_suggestions("seller-1") == 0

        rows = await self.all_suggestions(session_maker)
        assert len(rows) == 2
        assert {(r.article_id, r.lot_id) for r in rows} == {(None, "lot-1"), ("a1", None)}
        by_item = {r.article_id or r.lot_id: r for r in rows}
        assert by_item["a1"].suggested_date == "2025-10-01"
        assert by_item["lot-1"].priority == "medium"

    @pytest.mark.asyncio
    async def test_suggestions_for_unready_items_are_removed(self, planner, session_maker, add_rows):
        await add_rows(ready_article("a1"), ready_article("a2"))
        await planner.generate_suggestions("seller-1")

        async with session_maker() as db:
            sold = await db.get(ArticleDB, "a1")
            sold.status = "sold"
            await db.commit()
        await planner.generate_suggestions("seller-1")

        assert [r.article_id for r in await self.all_suggestions(session_maker)] == ["a2"]

    @pytest.mark.asyncio
    async def test_load_returns_pending_suggestions(self, planner, add_rows):
        await add_rows(ready_article("a1", season="spring"), ready_article("a2", user_id="seller-2"))

        suggestions = await planner.load("seller-1")

        assert [s.article_id for s in suggestions] == ["a1"]
        assert suggestions[0].status == "pending"

    @pytest.mark.asyncio
    async def test_accept_schedules_the_article(self, planner, session_maker, add_rows):
        await add_rows(ready_article("a1", season="winter"))
        suggestion = (await planner.load("seller-1"))[0]

        accepted = await planner.accept("seller-1", suggestion.id)

        assert accepted.status == "accepted"
        async with session_maker() as db:
            item = await db.get(ArticleDB, "a1")
        assert item.status == "scheduled"
        assert item.scheduled_for == datetime(2025, 10, 1)
        assert await planner.pending_suggestions("seller-1") == []

    @pytest.mark.asyncio
    async def test_accept_with_explicit_date(self, planner, session_maker, add_rows):
        await add_rows(ready_article("a1"))
        suggestion = (await planner.load("seller-1"))[0]

        await planner.accept("seller-1", suggestion.id, scheduled_for=datetime(2025, 4, 2, 18, 0))

        async with session_maker() as db:
            assert (await db.get(ArticleDB, "a1")).scheduled_for == datetime(2025, 4, 2, 18, 0)

    @pytest.mark.asyncio
    async def test_reject_keeps_the_item_ready(self, planner, session_maker, add_rows):
        await add_rows(ready_article("a1"))
        suggestion = (await planner.load("seller-1"))[0]

        rejected = await planner.reject("seller-1", suggestion.id)

        assert rejected.status == "rejected"
        async with session_maker() as db:
            assert (await db.get(ArticleDB, "a1")).status == "ready"

    @pytest.mark.asyncio
    async def test_processed_suggestion_cannot_be_accepted_again(self, planner, add_rows):
        await add_rows(ready_article("a1"))
        suggestion = (await planner.load("seller-1"))[0]
        await planner.accept("seller-1", suggestion.id)

        with pytest.raises(ValidationFailure):
            await planner.accept("seller-1", suggestion.id)

    @pytest.mark.asyncio
    async def test_other_sellers_suggestion(self, planner, add_rows):
        await add_rows(ready_article("a1"))
        suggestion = (await planner.load("seller-1"))[0]

        with pytest.raises(ValidationFailure):
            await planner.reject("seller-2", suggestion.id)
