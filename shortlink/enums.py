"""Shared enums for the short-link resolver.

This module defines all status and state enums used across the codebase.
Using enums instead of string literals provides type safety and prevents typos.
"""

from enum import StrEnum

__all__ = ["CacheStatus", "DeviceType", "HealthStatus", "ResolveStatus"]


class HealthStatus(StrEnum):
    """Health check status values."""

    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"


class CacheStatus(StrEnum):
    """Outcome of a single cache operation."""

    HIT = "hit"
    MISS = "miss"
    OK = "ok"
    ERROR = "error"


class ResolveStatus(StrEnum):
    """Outcome of a redirect resolution, used as a metrics label."""

    FOUND = "found"
    NOT_FOUND = "not_found"
    ERROR = "error"


class DeviceType(StrEnum):
    DESKTOP = "desktop"
    MOBILE = "mobile"
    TABLET = "tablet"
