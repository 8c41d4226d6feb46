"""Resolver behavior against a real store and substitute caches."""

import asyncio

import pytest

from shortlink.enums import CacheStatus
from shortlink.resolver import Resolver
from shortlink.store import StoreError


@pytest.mark.asyncio
async def test_resolve_miss_populates_cache(resolver, cache, settings, make_link) -> None:
    link = await make_link("abc123", "https://example.com")

    resolution = await resolver.resolve("abc123")

    assert resolution is not None
    assert resolution.destination == "https://example.com"
    assert resolution.link_id == link.id
    assert resolution.cache_status is CacheStatus.MISS
    assert resolution.visit_count == 1
    assert cache.sets == [("url:abc123", "https://example.com", settings.CACHE_EXPIRY)]


@pytest.mark.asyncio
async def test_resolve_hit_still_reads_store_and_skips_cache_write(resolver, cache, store, make_link) -> None:
    await make_link("abc123", "https://example.com")

    await resolver.resolve("abc123")
    resolution = await resolver.resolve("abc123")

    assert resolution.cache_status is CacheStatus.HIT
    assert resolution.visit_count == 2
    assert store.find_calls == 2
    assert store.append_calls == 2
    assert len(cache.sets) == 1


@pytest.mark.asyncio
async def test_resolve_returns_store_destination_over_stale_cache(resolver, cache, make_link) -> None:
    await make_link("abc123", "https://example.com")
    await cache.set("url:abc123", "https://stale.example.org", 3600)

    resolution = await resolver.resolve("abc123")

    assert resolution.cache_status is CacheStatus.HIT
    assert resolution.destination == "https://example.com"


@pytest.mark.asyncio
async def test_resolve_with_unreachable_cache(store, settings, failing_cache, make_link, count_visits) -> None:
    link = await make_link("abc123", "https://example.com")
    resolver = Resolver(store, failing_cache, settings)

    resolution = await resolver.resolve("abc123")

    assert resolution is not None
    assert resolution.destination == "https://example.com"
    assert resolution.cache_status is CacheStatus.MISS
    # one failed read, one failed population attempt
    assert failing_cache.calls == 2
    assert await count_visits(link.id) == 1


@pytest.mark.asyncio
async def test_unknown_code_is_never_cached(resolver, cache, store) -> None:
    assert await resolver.resolve("doesnotexist") is None
    assert await resolver.resolve("doesnotexist") is None

    assert store.find_calls == 2
    assert store.append_calls == 0
    assert cache.sets == []
    assert cache.entries == {}


@pytest.mark.asyncio
async def test_cache_entry_expires_after_ttl(resolver, cache, clock, settings, make_link) -> None:
    await make_link("abc123", "https://example.com")

    first = await resolver.resolve("abc123")
    clock.advance(settings.CACHE_EXPIRY - 1)
    second = await resolver.resolve("abc123")
    clock.advance(1)
    assert cache.peek("url:abc123") is None
    third = await resolver.resolve("abc123")

    assert [first.cache_status, second.cache_status, third.cache_status] == [
        CacheStatus.MISS,
        CacheStatus.HIT,
        CacheStatus.MISS,
    ]
    assert len(cache.sets) == 2
    assert cache.peek("url:abc123") == "https://example.com"


@pytest.mark.asyncio
async def test_resolve_by_custom_alias(resolver, cache, make_link) -> None:
    link = await make_link("xyz789", "https://example.com/docs", custom_alias="docs")

    resolution = await resolver.resolve("docs")

    assert resolution.link_id == link.id
    assert resolution.destination == "https://example.com/docs"
    assert cache.peek("url:docs") == "https://example.com/docs"


@pytest.mark.asyncio
async def test_resolve_is_case_sensitive(resolver, make_link) -> None:
    await make_link("abc123", "https://example.com")

    assert await resolver.resolve("ABC123") is None


@pytest.mark.asyncio
async def test_visit_count_matches_recorded_visits(resolver, store, make_link, count_visits) -> None:
    link = await make_link("abc123", "https://example.com")

    for _ in range(5):
        await resolver.resolve("abc123", user_agent="curl/8.4.0", client_ip="198.51.100.7")

    refreshed = await store.find_with_visits("abc123")
    assert refreshed.visit_count == 5
    assert len(refreshed.visits) == 5
    assert await count_visits(link.id) == refreshed.visit_count


@pytest.mark.asyncio
async def test_concurrent_resolutions_are_all_counted(resolver, store, make_link, count_visits) -> None:
    link = await make_link("abc123", "https://example.com")
    concurrency = 20

    resolutions = await asyncio.gather(
        *(resolver.resolve("abc123", client_ip=f"203.0.113.{i}") for i in range(concurrency))
    )

    assert all(r is not None for r in resolutions)
    # each writer observed a distinct counter value
    assert sorted(r.visit_count for r in resolutions) == list(range(1, concurrency + 1))

    refreshed = await store.find_with_visits("abc123")
    assert refreshed.visit_count == concurrency
    assert await count_visits(link.id) == concurrency
    assert {v.client_ip for v in refreshed.visits} == {f"203.0.113.{i}" for i in range(concurrency)}


@pytest.mark.asyncio
async def test_resolve_link_deleted_before_visit_write(store, cache, settings, make_link, count_visits) -> None:
    link = await make_link("abc123", "https://example.com")

    class VanishingStore(type(store)):
        async def find_by_code(self, code):
            found = await super().find_by_code(code)
            await self.delete(found.id)
            return found

    resolver = Resolver(VanishingStore(store._sessionmaker), cache, settings)

    assert await resolver.resolve("abc123") is None
    assert await count_visits(link.id) == 0


@pytest.mark.asyncio
async def test_forget_deletes_link_and_evicts_both_keys(resolver, cache, store, make_link) -> None:
    link = await make_link("abc123", "https://example.com", custom_alias="home")
    await resolver.resolve("abc123")
    await resolver.resolve("home")
    assert cache.peek("url:abc123") and cache.peek("url:home")

    assert await resolver.forget(link.id) is True

    assert cache.peek("url:abc123") is None
    assert cache.peek("url:home") is None
    assert await store.find_by_code("abc123") is None
    assert await resolver.forget(link.id) is False


@pytest.mark.asyncio
async def test_forget_tolerates_cache_failure(store, settings, failing_cache, make_link) -> None:
    link = await make_link("abc123", "https://example.com")
    resolver = Resolver(store, failing_cache, settings)

    assert await resolver.forget(link.id) is True
    assert await store.find_by_code("abc123") is None


async def _wait_for(predicate, attempts: int = 200) -> None:
    for _ in range(attempts):
        if await predicate():
            return
        await asyncio.sleep(0.01)


@pytest.mark.asyncio
async def test_visit_write_survives_cancelled_request(store, cache, settings, make_link, count_visits) -> None:
    link = await make_link("abc123", "https://example.com")
    started = asyncio.Event()
    release = asyncio.Event()

    class SlowStore(type(store)):
        async def append_visit(self, link_id, details):
            started.set()
            await release.wait()
            return await super().append_visit(link_id, details)

    resolver = Resolver(SlowStore(store._sessionmaker), cache, settings)
    task = asyncio.create_task(resolver.resolve("abc123"))
    await started.wait()

    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    release.set()

    async def visit_written() -> bool:
        return await count_visits(link.id) == 1

    await _wait_for(visit_written)
    assert await count_visits(link.id) == 1
    assert (await store.find_by_code("abc123")).visit_count == 1


@pytest.mark.asyncio
async def test_failed_write_after_cancelled_request_is_logged(store, cache, settings, make_link, caplog) -> None:
    await make_link("abc123", "https://example.com")
    started = asyncio.Event()
    release = asyncio.Event()

    class FailingWriteStore(type(store)):
        async def append_visit(self, link_id, details):
            started.set()
            await release.wait()
            raise StoreError("disk full")

    resolver = Resolver(FailingWriteStore(store._sessionmaker), cache, settings)
    task = asyncio.create_task(resolver.resolve("abc123"))
    await started.wait()

    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    release.set()

    async def failure_logged() -> bool:
        return "Visit write failed after its request was cancelled" in caplog.text

    await _wait_for(failure_logged)
    assert "Visit write failed after its request was cancelled: disk full" in caplog.text
