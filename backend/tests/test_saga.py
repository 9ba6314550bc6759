"""Tests for the compensating transaction helper"""
import pytest
from unittest.mock import AsyncMock

from kelly.services.saga import CompensatingTransaction


class TestCompensatingTransaction:
    @pytest.mark.asyncio
    async def test_compensations_run_newest_first(self):
        calls = []

        async def undo(name):
            calls.append(name)

        with pytest.raises(RuntimeError):
            async with CompensatingTransaction("test") as tx:
                tx.push("first", lambda: undo("first"))
                tx.push("second", lambda: undo("second"))
                raise RuntimeError("step 3 failed")

        assert calls == ["second", "first"]
        assert tx.compensated == ["second", "first"]
        assert tx.pending == []

    @pytest.mark.asyncio
    async def test_commit_forgets_compensations(self):
        undo = AsyncMock()

        async with CompensatingTransaction("test") as tx:
            tx.push("delete", undo)
            tx.commit()

        undo.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_failed_compensation_does_not_stop_unwinding(self):
        first = AsyncMock()
        broken = AsyncMock(side_effect=ConnectionError("gone"))

        with pytest.raises(ValueError):
            async with CompensatingTransaction("test") as tx:
                tx.push("first", first)
                tx.push("broken", broken)
                raise ValueError("boom")

        first.assert_awaited_once()
        assert tx.failed == ["broken"]
        assert tx.compensated == ["first"]
