"""Short-code resolution with cache-aside lookup and visit recording.

This module answers "where does this code redirect" for every redirect
request and durably records the visit against the canonical record.

Architecture Overview
==================
::
    ┌─────────────────────────────────────────────────────────────┐
    │                         Resolver                            │
    │  ┌──────────────┐ ┌──────────────┐ ┌──────────────────────┐ │
    │  │ Cache Layer  │ │ Record Store │ │ Enricher → Recorder  │ │
    │  │ (best effort)│ │ (canonical)  │ │ (atomic append + inc)│ │
    │  └──────────────┘ └──────────────┘ └──────────────────────┘ │
    └─────────────────────────────────────────────────────────────┘
                │                 │                    │
                ▼                 ▼                    ▼
         ┌────────────┐    ┌────────────┐      ┌────────────┐
         │   Redis    │    │ PostgreSQL │      │ PostgreSQL │
         └────────────┘    └────────────┘      └────────────┘

Redirect Resolution Flow
------------------------
::
    ┌─────────────┐
    │  GET /:code │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ cache.get() │  error ─► counted, treated as MISS
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ Store read  │  (always, even on HIT)
    └──────┬──────┘
    FOUND? │
    ┌─────┴─────┐
    │ NO         │ YES
    ▼            ▼
┌─────────┐  ┌──────────────┐
│ return  │  │ MISS? cache  │
│ None    │  │ destination  │
└─────────┘  └──────┬───────┘
                    ▼
             ┌──────────────┐
             │ enrich visit │
             └──────┬───────┘
                    ▼
             ┌──────────────┐
             │ record visit │  (shielded from cancellation)
             └──────┬───────┘
                    ▼
             ┌──────────────┐
             │ destination  │
             └──────────────┘

Key Behaviours
==============
- The cache only classifies the request as HIT or MISS and decides whether
  to repopulate; the store is read on every resolution because the visit
  must be written to the canonical record.
- Not-found codes are never cached, so repeated misses always reach the store.
- Cache failures never fail a resolution. Store failures always do.
- Per successful resolution: at most one cache write, one store read and one
  store write. A not-found resolution writes nothing.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING

from prometheus_client import Counter, Histogram

from shortlink.analytics import GeoLocator, enrich
from shortlink.cache import CacheLayer, cache_key
from shortlink.config import Settings, get_settings
from shortlink.enums import CacheStatus, ResolveStatus
from shortlink.recorder import ClickRecorder
from shortlink.store import LinkNotFoundError, RecordStore, StoreError

if TYPE_CHECKING:
    from shortlink.dependencies import RequestContext

__all__ = ["Resolution", "Resolver"]


# ============================================================================
# PROMETHEUS METRICS
# ============================================================================

RESOLVE_REQUESTS_TOTAL = Counter(
    "shortlink_resolve_requests_total",
    "Total redirect resolutions",
    ["status", "cache"],
)
RESOLVE_DURATION = Histogram(
    "shortlink_resolve_duration_seconds",
    "Time taken to resolve a code and record the visit",
    buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0],
)
CACHE_HITS_TOTAL = Counter(
    "shortlink_cache_hits_total",
    "Total cache hits for code lookups",
)
CACHE_MISSES_TOTAL = Counter(
    "shortlink_cache_misses_total",
    "Total cache misses for code lookups",
)
CACHE_ERRORS_TOTAL = Counter(
    "shortlink_cache_errors_total",
    "Total cache operations that failed and were ignored",
    ["operation"],
)
DATABASE_READS_TOTAL = Counter(
    "shortlink_database_reads_total",
    "Total database read operations",
)

# Visit writes still running after their request was cancelled.
_DETACHED_WRITES: set[asyncio.Task] = set()


@dataclass(frozen=True, slots=True)
class Resolution:
    destination: str
    link_id: int
    cache_status: CacheStatus
    visit_count: int


class Resolver:
    """Resolves codes to destinations and records each visit.

    The cache, store and geolocator are injected so that tests can substitute
    no-op or fault-injecting implementations.

    Example:
        >>> resolver = Resolver(store, cache, settings, geo=geo)
        >>> resolution = await resolver.resolve("abc123", user_agent=ua, client_ip=ip)
        >>> if resolution:
        ...     print(resolution.destination)
    """

    def __init__(
        self,
        store: RecordStore,
        cache: CacheLayer,
        settings: Settings | None = None,
        *,
        geo: GeoLocator | None = None,
        recorder: ClickRecorder | None = None,
        logger: logging.Logger | logging.LoggerAdapter | None = None,
    ):
        self._store = store
        self._cache = cache
        self._settings = settings or get_settings()
        self._geo = geo
        self._logger = logger or logging.getLogger("shortlink")
        self._recorder = recorder or ClickRecorder(store, self._logger)

    @classmethod
    def from_context(cls, ctx: "RequestContext") -> "Resolver":
        """Build a resolver from the shared resources of a request context."""
        return cls(
            ctx.store,
            ctx.cache,
            ctx.settings,
            geo=ctx.geo,
            logger=ctx.logger,
        )

    async def resolve(
        self,
        code: str,
        *,
        user_agent: str | None = None,
        client_ip: str | None = None,
        referer: str | None = None,
    ) -> Resolution | None:
        """Resolve a code and record the visit.

        Args:
            code: Short code or custom alias, matched case-sensitively.
            user_agent: Raw User-Agent header, if any.
            client_ip: Client address as seen by the server, if any.
            referer: Referer header, if any.

        Returns:
            Optional[Resolution]: The destination and visit bookkeeping, or
            None when no record matches.

        Raises:
            StoreError: If the store read or the visit write failed.
        """
        start_time = time.perf_counter()
        key = cache_key(code)

        cached = await self._cache.get(key)
        if cached.is_error:
            CACHE_ERRORS_TOTAL.labels(operation="get").inc()
            self._logger.warning(f"Cache read failed for {code}, treating as miss: {cached.error}")
        cache_status = CacheStatus.HIT if cached.is_hit else CacheStatus.MISS

        try:
            link = await self._store.find_by_code(code)
        except StoreError as exc:
            self._observe(start_time, ResolveStatus.ERROR, cache_status)
            self._logger.error(f"Store lookup failed for {code}: {exc.__cause__ or exc}")
            raise
        DATABASE_READS_TOTAL.inc()

        if link is None:
            self._observe(start_time, ResolveStatus.NOT_FOUND, cache_status)
            self._logger.info(f"No link matches code: {code}")
            return None

        if cache_status is CacheStatus.HIT:
            CACHE_HITS_TOTAL.inc()
            self._logger.info(f"Cache HIT for: {code}")
        else:
            CACHE_MISSES_TOTAL.inc()
            self._logger.info(f"Cache MISS for: {code}")
            await self._populate_cache(key, link.original_url)

        details = enrich(user_agent, client_ip, referer, self._geo)

        # Visit accounting is not tied to client liveness.
        write = asyncio.ensure_future(self._recorder.record(link.id, details))
        try:
            visit_count = await asyncio.shield(write)
        except asyncio.CancelledError:
            _DETACHED_WRITES.add(write)
            write.add_done_callback(self._detached_write_done)
            raise
        except LinkNotFoundError:
            self._observe(start_time, ResolveStatus.NOT_FOUND, cache_status)
            return None
        except StoreError:
            self._observe(start_time, ResolveStatus.ERROR, cache_status)
            raise

        duration = self._observe(start_time, ResolveStatus.FOUND, cache_status)
        self._logger.debug(f"Resolved {code} -> {link.original_url} in {duration:.3f}s")
        return Resolution(
            destination=link.original_url,
            link_id=link.id,
            cache_status=cache_status,
            visit_count=visit_count,
        )

    async def forget(self, link_id: int) -> bool:
        """Delete a link and evict every cache entry that points at it.

        Args:
            link_id: Primary key of the link to remove.

        Returns:
            bool: True if a link was deleted.
        """
        link = await self._store.delete(link_id)
        if link is None:
            return False

        for code in filter(None, (link.short_code, link.custom_alias)):
            result = await self._cache.delete(cache_key(code))
            if result.is_error:
                CACHE_ERRORS_TOTAL.labels(operation="delete").inc()
                self._logger.warning(f"Cache eviction failed for {code}: {result.error}")

        self._logger.info(f"Link {link_id} deleted")
        return True

    async def _populate_cache(self, key: str, destination: str) -> None:
        result = await self._cache.set(key, destination, self._settings.CACHE_EXPIRY)
        if result.is_error:
            CACHE_ERRORS_TOTAL.labels(operation="set").inc()
            self._logger.warning(f"Cache write failed for {key}: {result.error}")
        else:
            self._logger.debug(f"Cached {key} for {self._settings.CACHE_EXPIRY}s")

    def _detached_write_done(self, write: asyncio.Task) -> None:
        _DETACHED_WRITES.discard(write)
        if write.cancelled():
            return
        exc = write.exception()
        if exc is not None:
            self._logger.error(f"Visit write failed after its request was cancelled: {exc}")

    def _observe(self, start_time: float, status: ResolveStatus, cache_status: CacheStatus) -> float:
        duration = time.perf_counter() - start_time
        RESOLVE_DURATION.observe(duration)
        RESOLVE_REQUESTS_TOTAL.labels(status=status, cache=cache_status).inc()
        return duration
