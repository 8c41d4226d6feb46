"""Pydantic schemas for visit analytics and API responses.

This module defines the structured visit descriptor produced by the analytics
enricher and the models used to serialize API output.

Schema Hierarchy
=================
::
    VisitDetails (enricher output)
    ├─ client_ip: str | None
    ├─ user_agent: str | None
    ├─ referer: str ("Direct")
    ├─ device: DeviceInfo {type, model, vendor}
    ├─ browser: BrowserInfo {name, version}
    ├─ os: OSInfo {name, version}
    └─ location: LocationInfo {country, region, city, timezone}

    VisitResponse (Output)
    └─ VisitDetails + timestamp

    AnalyticsResponse (Output)
    ├─ original_url, short_code, visit_count
    ├─ created_at, qr_code
    └─ visits: list[VisitResponse]

    ErrorResponse (Output)
    └─ error: str

    HealthResponse (Output)
    ├─ status: str
    ├─ database: str
    └─ cache: str

Key Behaviours
===============
- Every analytics field has a default, so a descriptor is always complete.
- All datetime fields are timezone-aware where the store supports it.
- FastAPI automatically generates OpenAPI docs from these schemas.
"""

import datetime
from typing import TYPE_CHECKING

from pydantic import BaseModel, Field

from shortlink.enums import DeviceType, HealthStatus

if TYPE_CHECKING:
    from shortlink.models import Link, Visit

__all__ = [
    "UNKNOWN",
    "DIRECT_REFERER",
    "DeviceInfo",
    "BrowserInfo",
    "OSInfo",
    "LocationInfo",
    "VisitDetails",
    "VisitResponse",
    "AnalyticsResponse",
    "ErrorResponse",
    "HealthResponse",
]

UNKNOWN = "Unknown"
DIRECT_REFERER = "Direct"


class DeviceInfo(BaseModel):
    type: str = DeviceType.DESKTOP
    model: str = UNKNOWN
    vendor: str = UNKNOWN


class BrowserInfo(BaseModel):
    name: str = UNKNOWN
    version: str = UNKNOWN


class OSInfo(BaseModel):
    name: str = UNKNOWN
    version: str = UNKNOWN


class LocationInfo(BaseModel):
    country: str = UNKNOWN
    region: str = UNKNOWN
    city: str = UNKNOWN
    timezone: str = UNKNOWN


class VisitDetails(BaseModel):
    """Analytics captured for a single redirect, before it is timestamped."""

    client_ip: str | None = None
    user_agent: str | None = None
    referer: str = DIRECT_REFERER
    device: DeviceInfo = Field(default_factory=DeviceInfo)
    browser: BrowserInfo = Field(default_factory=BrowserInfo)
    os: OSInfo = Field(default_factory=OSInfo)
    location: LocationInfo = Field(default_factory=LocationInfo)


class VisitResponse(VisitDetails):
    timestamp: datetime.datetime

    @classmethod
    def from_visit(cls, visit: "Visit") -> "VisitResponse":
        return cls(
            timestamp=visit.timestamp,
            client_ip=visit.client_ip,
            user_agent=visit.user_agent,
            referer=visit.referer,
            device=DeviceInfo(type=visit.device_type, model=visit.device_model, vendor=visit.device_vendor),
            browser=BrowserInfo(name=visit.browser_name, version=visit.browser_version),
            os=OSInfo(name=visit.os_name, version=visit.os_version),
            location=LocationInfo(
                country=visit.country,
                region=visit.region,
                city=visit.city,
                timezone=visit.timezone,
            ),
        )


class AnalyticsResponse(BaseModel):
    original_url: str
    short_code: str
    visit_count: int
    created_at: datetime.datetime
    qr_code: str | None = None
    visits: list[VisitResponse]

    @classmethod
    def from_link(cls, link: "Link") -> "AnalyticsResponse":
        return cls(
            original_url=link.original_url,
            short_code=link.public_code,
            visit_count=link.visit_count,
            created_at=link.created_at,
            qr_code=link.qr_code,
            visits=[VisitResponse.from_visit(visit) for visit in link.visits],
        )


class ErrorResponse(BaseModel):
    error: str


class HealthResponse(BaseModel):
    status: HealthStatus
    database: HealthStatus
    cache: HealthStatus
