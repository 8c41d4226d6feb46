"""Request context and client address tests."""

import pytest
from starlette.requests import Request

from shortlink.cache import NullCache
from shortlink.dependencies import ServiceManager, client_address, get_request_context
from shortlink.resolver import Resolver


def _request(headers: dict[str, str] | None = None, client: tuple[str, int] | None = ("10.0.0.1", 52100)) -> Request:
    scope = {
        "type": "http",
        "method": "GET",
        "path": "/abc123",
        "headers": [(k.lower().encode("latin-1"), v.encode("latin-1")) for k, v in (headers or {}).items()],
        "client": client,
    }
    return Request(scope)


def test_client_address_uses_peer_without_proxy_header() -> None:
    assert client_address(_request(), trust_proxy=True) == "10.0.0.1"


def test_client_address_trusts_last_forwarded_hop() -> None:
    request = _request({"X-Forwarded-For": "198.51.100.1, 203.0.113.9"})

    assert client_address(request, trust_proxy=True) == "203.0.113.9"


def test_client_address_ignores_forwarded_header_when_untrusted() -> None:
    request = _request({"X-Forwarded-For": "203.0.113.9"})

    assert client_address(request, trust_proxy=False) == "10.0.0.1"


def test_client_address_without_client() -> None:
    assert client_address(_request(client=None), trust_proxy=False) is None


@pytest.mark.asyncio
async def test_request_context_captures_metadata(store, settings) -> None:
    manager = ServiceManager().configure(settings=settings, cache=NullCache(), store=store)
    request = _request({"User-Agent": "curl/8.4.0", "Referer": "https://ref.example", "X-Trace-Id": "trace-1"})

    ctx = await get_request_context(request, manager)

    assert ctx.user_agent == "curl/8.4.0"
    assert ctx.referer == "https://ref.example"
    assert ctx.trace_id == "trace-1"
    assert ctx.client_ip == "10.0.0.1"
    assert ctx.store is store
    assert isinstance(Resolver.from_context(ctx), Resolver)


@pytest.mark.asyncio
async def test_service_manager_cleanup_closes_cache(store, settings) -> None:
    closed = []

    class ClosingCache(NullCache):
        async def close(self) -> None:
            closed.append(True)

    manager = ServiceManager().configure(settings=settings, cache=ClosingCache(), store=store)

    await manager.cleanup()

    assert closed == [True]
    assert manager.initialized is False
