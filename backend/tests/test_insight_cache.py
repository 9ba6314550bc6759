"""Tests for the insight cache store: batch swap, TTL, staleness and lifecycle"""
import asyncio
import gc
import pytest
from datetime import timedelta
from unittest.mock import AsyncMock, patch
from sqlalchemy.exc import SQLAlchemyError

from kelly.core.errors import StorageFailure, ValidationFailure
from kelly.models.api import AdjustPriceAction, InformationalAction, InsightDraft
from kelly.services.insight_cache import InsightCacheStore


def drafts(*titles, type="seasonal"):
    return [InsightDraft(type=type, title=t, message=f"{t} message", article_ids=["a1"]) for t in titles]


@pytest.fixture
def store(session_maker, clock):
    return InsightCacheStore(session_maker, clock=clock)


class TestReplaceAndLoad:
    @pytest.mark.asyncio
    async def test_load_returns_exactly_the_batch(self, store):
        stored = await store.replace("seller-1", "default", drafts("A", "B", "C"))
        loaded = await store.load_active("seller-1", "default")

        assert [i.title for i in loaded] == ["A", "B", "C"]
        assert [i.id for i in loaded] == [i.id for i in stored]
        assert all(i.status == "active" and i.cache_key == "default" for i in loaded)

    @pytest.mark.asyncio
    async def test_replace_never_mixes_batches(self, store):
        await store.replace("seller-1", "default", drafts("old 1", "old 2", "old 3"))
        await store.replace("seller-1", "default", drafts("new 1"))

        loaded = await store.load_active("seller-1", "default")
        assert [i.title for i in loaded] == ["new 1"]

    @pytest.mark.asyncio
    async def test_batches_are_partitioned_by_owner_and_key(self, store):
        await store.replace("seller-1", "default", drafts("general"))
        await store.replace("seller-1", "pricing_insights", drafts("pricing", type="underpriced"))
        await store.replace("seller-2", "default", drafts("other seller"))

        assert [i.title for i in await store.load_active("seller-1", "default")] == ["general"]
        assert [i.title for i in await store.load_active("seller-1", "pricing_insights")] == ["pricing"]
        assert [i.title for i in await store.load_active("seller-2", "default")] == ["other seller"]

    @pytest.mark.asyncio
    async def test_empty_cache_loads_none(self, store):
        assert await store.load_active("seller-1", "default") is None

    @pytest.mark.asyncio
    async def test_shared_refresh_timestamp_and_ttl(self, store, clock):
        stored = await store.replace("seller-1", "default", drafts("A", "B"))
        assert {i.last_refresh_at for i in stored} == {clock.now}
        assert {i.expires_at for i in stored} == {clock.now + timedelta(minutes=30)}

    @pytest.mark.asyncio
    async def test_suggested_action_survives_storage(self, store):
        batch = [
            InsightDraft(
                type="underpriced",
                title="Nike sous-évaluée",
                article_ids=["a1"],
                suggested_action=AdjustPriceAction(suggested_price=25, confidence=0.8),
            ),
            InsightDraft(type="seasonal", title="Saison", suggested_action={"type": "highlight", "value": "spring"}),
        ]
        await store.replace("seller-1", "pricing_insights", batch)
        loaded = await store.load_active("seller-1", "pricing_insights")

        assert isinstance(loaded[0].suggested_action, AdjustPriceAction)
        assert loaded[0].suggested_action.suggested_price == 25
        assert isinstance(loaded[1].suggested_action, InformationalAction)
        assert loaded[1].suggested_action.value == "spring"

    @pytest.mark.asyncio
    async def test_failed_replace_keeps_previous_batch(self, store):
        await store.replace("seller-1", "default", drafts("kept"))

        with patch.object(store.repo, "add_batch", AsyncMock(side_effect=SQLAlchemyError("disk full"))):
            with pytest.raises(StorageFailure):
                await store.replace("seller-1", "default", drafts("lost"))

        assert [i.title for i in await store.load_active("seller-1", "default")] == ["kept"]

    @pytest.mark.asyncio
    async def test_concurrent_replaces_leave_one_batch(self, store):
        first, second = drafts("a1", "a2"), drafts("b1", "b2", "b3")
        await asyncio.gather(
            store.replace("seller-1", "default", first),
            store.replace("seller-1", "default", second),
        )

        titles = [i.title for i in await store.load_active("seller-1", "default")]
        assert titles in (["a1", "a2"], ["b1", "b2", "b3"])

    @pytest.mark.asyncio
    async def test_locks_are_released_after_use(self, store):
        await store.replace("seller-1", "default", drafts("a1"))
        await store.replace("seller-2", "pricing_insights", drafts("b1"))

        gc.collect()
        assert len(store._locks) == 0


class TestExpiry:
    @pytest.mark.asyncio
    async def test_hard_ttl_expiry(self, store, clock):
        await store.replace("seller-1", "default", drafts("A"))

        clock.advance(minutes=29)
        assert await store.load_active("seller-1", "default") is not None

        clock.advance(minutes=2)
        assert await store.load_active("seller-1", "default") is None

    @pytest.mark.asyncio
    async def test_soft_staleness_before_hard_ttl(self, store, clock):
        await store.replace("seller-1", "default", drafts("A"), ttl=timedelta(hours=2))
        clock.advance(minutes=31)

        assert await store.load_active("seller-1", "default", stale_after=timedelta(minutes=30)) is None
        # Still stored and servable without the freshness rule
        assert len(await store.load_active("seller-1", "default")) == 1

    @pytest.mark.asyncio
    async def test_fresh_batch_passes_staleness_rule(self, store, clock):
        await store.replace("seller-1", "default", drafts("A"))
        clock.advance(minutes=10)
        assert await store.load_active("seller-1", "default", stale_after=timedelta(minutes=30)) is not None

    @pytest.mark.asyncio
    async def test_purge_keeps_rows_inside_grace_window(self, store, clock):
        stored = await store.replace("seller-1", "default", drafts("A"))

        clock.advance(hours=2)
        assert await store.purge_expired(grace=timedelta(hours=24)) == 0
        assert await store.get(stored[0].id) is not None

        clock.advance(hours=23)
        assert await store.purge_expired(grace=timedelta(hours=24)) == 1
        assert await store.get(stored[0].id) is None


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_dismissed_insight_leaves_active_batch(self, store):
        stored = await store.replace("seller-1", "default", drafts("A", "B"))

        assert await store.set_status(stored[0].id, "dismissed") is True

        loaded = await store.load_active("seller-1", "default")
        assert [i.title for i in loaded] == ["B"]
        dismissed = await store.get(stored[0].id)
        assert dismissed.status == "dismissed"

    @pytest.mark.asyncio
    async def test_dismiss_twice_is_a_noop(self, store):
        stored = await store.replace("seller-1", "default", drafts("A"))

        assert await store.set_status(stored[0].id, "dismissed") is True
        assert await store.set_status(stored[0].id, "dismissed") is False
        assert (await store.get(stored[0].id)).status == "dismissed"

    @pytest.mark.asyncio
    async def test_terminal_states_are_final(self, store):
        stored = await store.replace("seller-1", "default", drafts("A", "B"))

        await store.set_status(stored[0].id, "completed")
        assert await store.set_status(stored[0].id, "dismissed") is False
        assert (await store.get(stored[0].id)).status == "completed"

        with pytest.raises(ValidationFailure):
            await store.set_status(stored[0].id, "active")
        assert (await store.get(stored[0].id)).status == "completed"

    @pytest.mark.asyncio
    async def test_unknown_insight(self, store):
        with pytest.raises(ValidationFailure):
            await store.set_status("missing", "dismissed")

    @pytest.mark.asyncio
    async def test_other_owner_cannot_change_status(self, store):
        stored = await store.replace("seller-1", "default", drafts("A"))

        with pytest.raises(ValidationFailure):
            await store.set_status(stored[0].id, "dismissed", owner_id="seller-2")
        assert await store.get(stored[0].id, owner_id="seller-2") is None
        assert (await store.get(stored[0].id, owner_id="seller-1")).status == "active"

    @pytest.mark.asyncio
    async def test_storage_error_is_typed(self, store):
        with patch.object(store.repo, "list_active", AsyncMock(side_effect=SQLAlchemyError("down"))):
            with pytest.raises(StorageFailure):
                await store.load_active("seller-1", "default")
