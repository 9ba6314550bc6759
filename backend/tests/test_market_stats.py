"""Tests for market statistics aggregation"""
import pytest
from datetime import timedelta

from kelly.models.inventory import ArticleDB
from kelly.services.market_stats import (
    aggregate_sales,
    category_from_title,
    compute_market_stats,
    index_by_segment,
)
from conftest import T0


def sale(title="Air Max 90", brand="Nike", condition="very_good", price=27.0, days_ago=1, user_id="seller-1", **kwargs):
    return ArticleDB(
        user_id=user_id,
        title=title,
        brand=brand,
        condition=condition,
        price=price,
        status=kwargs.pop("status", "sold"),
        sold_price=price,
        sold_at=T0 - timedelta(days=days_ago),
        **kwargs
    )


class TestCategoryHeuristic:
    def test_first_word_of_title(self):
        assert category_from_title("Air Max 90 blanche") == "Air"

    def test_no_normalization(self):
        assert category_from_title("air max") == "air"
        assert category_from_title("  Robe   longue") == "Robe"

    def test_empty_title(self):
        assert category_from_title("") == ""
        assert category_from_title(None) == ""


class TestAggregateSales:
    def test_segments_below_three_sales_are_dropped(self):
        sales = [sale(price=20), sale(price=30)]
        assert aggregate_sales(sales) == []

    def test_band_values(self):
        stats = aggregate_sales([sale(price=20), sale(price=30), sale(price=25)])
        assert len(stats) == 1
        s = stats[0]
        assert (s.brand, s.category, s.condition) == ("Nike", "Air", "very_good")
        assert s.avg_sold_price == 25
        assert s.min_sold_price == 20
        assert s.max_sold_price == 30
        assert s.total_sales == 3

    def test_sorted_by_total_sales_descending(self):
        sales = [sale(title="Robe rouge", brand="Zara") for _ in range(3)]
        sales += [sale() for _ in range(5)]
        stats = aggregate_sales(sales)
        assert [s.brand for s in stats] == ["Nike", "Zara"]
        assert [s.total_sales for s in stats] == [5, 3]

    def test_condition_splits_segments(self):
        sales = [sale(condition="good") for _ in range(3)] + [sale(condition="new_with_tags") for _ in range(2)]
        stats = aggregate_sales(sales)
        assert [s.condition for s in stats] == ["good"]

    def test_index_by_segment(self):
        stats = aggregate_sales([sale() for _ in range(3)])
        assert index_by_segment(stats)[("Nike", "Air", "very_good")].total_sales == 3


class TestComputeMarketStats:
    @pytest.mark.asyncio
    async def test_empty_store_yields_empty_list(self, session_maker):
        async with session_maker() as db:
            assert await compute_market_stats(db, now=T0) == []

    @pytest.mark.asyncio
    async def test_scenario_nike_air_segment(self, session_maker, add_rows):
        # 23 sales averaging 27, between 22 and 32
        prices = [22, 32] + [27] * 21
        await add_rows(*[sale(price=p, days_ago=i % 20 + 1) for i, p in enumerate(prices)])

        async with session_maker() as db:
            stats = await compute_market_stats(db, now=T0)

        assert len(stats) == 1
        s = stats[0]
        assert s.avg_sold_price == 27
        assert s.min_sold_price == 22
        assert s.max_sold_price == 32
        assert s.total_sales == 23

    @pytest.mark.asyncio
    async def test_only_recent_complete_sales_count(self, session_maker, add_rows):
        await add_rows(
            sale(days_ago=1),
            sale(days_ago=2),
            sale(days_ago=45),  # outside the window
            sale(brand=None),  # no brand
            sale(status="published"),  # not sold
        )
        async with session_maker() as db:
            assert await compute_market_stats(db, now=T0) == []

        await add_rows(sale(days_ago=3))
        async with session_maker() as db:
            stats = await compute_market_stats(db, now=T0)
        assert stats[0].total_sales == 3

    @pytest.mark.asyncio
    async def test_owner_scope(self, session_maker, add_rows):
        await add_rows(*[sale(user_id="seller-1") for _ in range(3)], *[sale(user_id="seller-2") for _ in range(2)])

        async with session_maker() as db:
            market = await compute_market_stats(db, now=T0)
            mine = await compute_market_stats(db, owner_id="seller-2", now=T0)

        assert market[0].total_sales == 5
        assert mine == []
