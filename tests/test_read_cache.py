# tests/test_read_cache.py
import pytest

from conftest import make_assignment
from ridernotify.infra.read_cache import AssignmentReadCache


class _Loader:
    def __init__(self):
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        return [make_assignment(f"ASG-{self.calls}")]


class TestAssignmentReadCache:
    @pytest.mark.asyncio
    async def test_reuses_snapshot_within_ttl(self):
        now = [100.0]
        loader = _Loader()
        cache = AssignmentReadCache(loader, ttl_seconds=30, clock=lambda: now[0])

        first = await cache.list()
        now[0] += 10
        second = await cache.list()

        assert loader.calls == 1
        assert [a.id for a in first] == [a.id for a in second] == ["ASG-1"]

    @pytest.mark.asyncio
    async def test_reloads_after_ttl(self):
        now = [100.0]
        loader = _Loader()
        cache = AssignmentReadCache(loader, ttl_seconds=30, clock=lambda: now[0])

        await cache.list()
        now[0] += 31
        result = await cache.list()

        assert loader.calls == 2
        assert result[0].id == "ASG-2"

    @pytest.mark.asyncio
    async def test_invalidate_forces_reload(self):
        loader = _Loader()
        cache = AssignmentReadCache(loader, ttl_seconds=300, clock=lambda: 0.0)

        await cache.list()
        cache.invalidate()
        await cache.list()

        assert loader.calls == 2
