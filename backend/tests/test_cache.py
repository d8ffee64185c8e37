from examguard.core.cache import CacheManager, acached


async def test_disabled_cache_is_a_permanent_miss():
    disabled = CacheManager(enabled=False)

    assert await disabled.aset("exam_stats", {"active_students": 1}) is False
    assert await disabled.aget("exam_stats") is None
    assert await disabled.adelete("exam_stats") is False
    assert await disabled.ahealth_check() is False
    await disabled.aclose()


async def test_cached_function_runs_every_time_without_cache():
    calls = []

    @acached(ttl=10, key="test_stats")
    async def stats():
        calls.append(1)
        return {"total": len(calls)}

    assert await stats() == {"total": 1}
    assert await stats() == {"total": 2}
