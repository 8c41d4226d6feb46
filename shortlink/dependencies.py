"""Dependency injection with a shared service manager.

This module provides a centralized way to inject the record store, cache layer
and geolocator into API endpoints, building the shared resources once at
startup to minimize per-request overhead.
"""

import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Optional

from fastapi import Depends, Request

from shortlink.analytics import GeoLocator
from shortlink.cache import CacheLayer, build_cache
from shortlink.config import Settings, get_settings
from shortlink.database import async_session
from shortlink.resolver import Resolver
from shortlink.store import RecordStore

__all__ = [
    "RequestContext",
    "ServiceManager",
    "client_address",
    "get_request_context",
    "get_resolver",
    "get_service_manager",
]


# ============================================================================
# SERVICE MANAGER
# ============================================================================


class ServiceManager:
    """Holder of the resources shared by every request.

    The module-level ``_service_manager`` is the instance the application
    uses; tests build their own and inject it with ``configure``.
    """

    _initialized: bool = False

    async def initialize(self) -> None:
        """Initialize shared resources once at startup."""
        if not self._initialized:
            settings = get_settings()
            self.configure(
                settings=settings,
                cache=build_cache(settings),
                store=RecordStore(async_session),
                geo=GeoLocator(settings.GEOIP_DB_PATH),
            )

    def configure(
        self,
        *,
        settings: Settings,
        cache: CacheLayer,
        store: RecordStore,
        geo: GeoLocator | None = None,
    ) -> "ServiceManager":
        self.settings = settings
        self.logger = self._setup_logger(settings.LOG_LEVEL)
        self.cache = cache
        self.store = store
        self.geo = geo
        self._initialized = True
        return self

    @property
    def initialized(self) -> bool:
        return self._initialized

    def _setup_logger(self, level: str) -> logging.Logger:
        """Setup logger once."""
        logger = logging.getLogger("shortlink")
        if not logger.handlers:
            handler = logging.StreamHandler()
            formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
            handler.setFormatter(formatter)
            logger.addHandler(handler)
        logger.setLevel(level.upper())
        return logger

    async def cleanup(self) -> None:
        """Cleanup shared resources at shutdown."""
        if not self._initialized:
            return
        await self.cache.close()
        if self.geo is not None:
            self.geo.close()
        self._initialized = False


# Global instance
_service_manager = ServiceManager()


# ============================================================================
# REQUEST CONTEXT
# ============================================================================


@dataclass
class RequestContext:
    """Per-request context with the metadata needed for visit analytics.

    Attributes:
        service_manager: Shared resources (store, cache, geolocator, logger)
        request_id: Unique identifier for this request
        trace_id: Correlation ID for distributed tracing
        user_agent: Client user agent string
        client_ip: Client IP address
        referer: Referer header value
        start_time: Request start timestamp
        tags: Request tags for categorization
    """

    service_manager: ServiceManager
    request_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    trace_id: Optional[str] = None
    user_agent: Optional[str] = None
    client_ip: Optional[str] = None
    referer: Optional[str] = None
    start_time: float = field(default_factory=lambda: time.time())
    tags: list[str] = field(default_factory=list)

    @property
    def store(self) -> RecordStore:
        return self.service_manager.store

    @property
    def cache(self) -> CacheLayer:
        return self.service_manager.cache

    @property
    def geo(self) -> GeoLocator | None:
        return self.service_manager.geo

    @property
    def settings(self) -> Settings:
        return self.service_manager.settings

    @property
    def logger(self) -> logging.LoggerAdapter:
        """Get shared logger with request context."""
        return logging.LoggerAdapter(
            self.service_manager.logger,
            {
                "request_id": self.request_id,
                "trace_id": self.trace_id or self.request_id,
                "client_ip": self.client_ip,
                "user_agent": self.user_agent,
                "tags": ",".join(self.tags),
            },
        )

    def add_tag(self, tag: str) -> None:
        """Add a tag to the request context."""
        if tag not in self.tags:
            self.tags.append(tag)

    def get_duration(self) -> float:
        """Get request duration in milliseconds."""
        return (time.time() - self.start_time) * 1000


# ============================================================================
# DEPENDENCY FUNCTIONS
# ============================================================================


def client_address(request: Request, trust_proxy: bool) -> str | None:
    """Return the client address, honouring one trusted proxy hop.

    With ``trust_proxy`` the last X-Forwarded-For entry (the address the
    proxy in front of us saw) wins over the socket peer.
    """
    if trust_proxy:
        forwarded = request.headers.get("x-forwarded-for")
        if forwarded:
            hops = [hop.strip() for hop in forwarded.split(",") if hop.strip()]
            if hops:
                return hops[-1]
    return request.client.host if request.client else None


async def get_service_manager() -> ServiceManager:
    """Get the shared service manager, initializing it on first use."""
    if not _service_manager.initialized:
        await _service_manager.initialize()
    return _service_manager


async def get_request_context(
    request: Request,
    manager: ServiceManager = Depends(get_service_manager),
) -> RequestContext:
    """Build the request context from the incoming request.

    Args:
        request: FastAPI Request object for extracting client info
        manager: Shared service manager

    Returns:
        RequestContext: Context for the request
    """
    return RequestContext(
        service_manager=manager,
        trace_id=request.headers.get("x-trace-id"),
        user_agent=request.headers.get("user-agent"),
        client_ip=client_address(request, manager.settings.TRUST_PROXY),
        referer=request.headers.get("referer"),
    )


def get_resolver(ctx: RequestContext = Depends(get_request_context)) -> Resolver:
    return Resolver.from_context(ctx)
