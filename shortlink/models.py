"""SQLAlchemy ORM models for the short-link resolver.

This module defines the database schema for short links and the visits
recorded against them.

Data Model Layout
=================
::
    links table
    ├─ id (SERIAL PRIMARY KEY)
    ├─ original_url (TEXT NOT NULL)
    ├─ short_code (VARCHAR(20) UNIQUE, INDEXED)
    ├─ custom_alias (VARCHAR(20) UNIQUE NULL, INDEXED)
    ├─ owner_id (VARCHAR(64) NULL)
    ├─ qr_code (TEXT NULL)
    ├─ visit_count (INTEGER DEFAULT 0)
    └─ created_at (TIMESTAMPTZ, DEFAULT NOW())

    visits table
    ├─ id (SERIAL PRIMARY KEY)
    ├─ link_id (FK links.id, INDEXED)
    ├─ timestamp (TIMESTAMPTZ)
    ├─ client_ip, user_agent, referer
    ├─ device_type, device_model, device_vendor
    ├─ browser_name, browser_version
    ├─ os_name, os_version
    └─ country, region, city, timezone

Class Relationship Diagram
=========================
::
    Link 1 ──── * Visit   (ordered by Visit.id, append-only)

How to Use
===========
**Step 1 — Query by code or alias**::
    stmt = select(Link).where(or_(Link.short_code == code, Link.custom_alias == code))

**Step 2 — Record a visit**::
    # Never `link.visit_count += 1`; see RecordStore.append_visit.

Key Behaviours
===============
- short_code and custom_alias are indexed for fast lookups during redirects.
- visit_count equals the number of visit rows after every completed write.
- The visits relationship raises on implicit lazy loads; load it explicitly.

Classes:
    Link:  A short link and its visit counter.
    Visit:  One recorded redirect with its analytics.
"""

import datetime

from sqlalchemy import DateTime, ForeignKey, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from shortlink.database import Base
from shortlink.schemas import VisitDetails

__all__ = ["Link", "Visit"]


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


class Link(Base):
    __tablename__ = "links"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    original_url: Mapped[str] = mapped_column(Text, nullable=False)
    short_code: Mapped[str] = mapped_column(String(20), unique=True, index=True, nullable=False)
    custom_alias: Mapped[str | None] = mapped_column(String(20), unique=True, index=True, nullable=True)
    owner_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    qr_code: Mapped[str | None] = mapped_column(Text, nullable=True)
    visit_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    created_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    visits: Mapped[list["Visit"]] = relationship(
        back_populates="link",
        order_by="Visit.id",
        lazy="raise",
    )

    @property
    def public_code(self) -> str:
        return self.custom_alias or self.short_code

    def __repr__(self) -> str:
        return f"<Link(id={self.id}, short_code='{self.short_code}', visit_count={self.visit_count})>"


class Visit(Base):
    __tablename__ = "visits"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    link_id: Mapped[int] = mapped_column(ForeignKey("links.id", ondelete="CASCADE"), index=True, nullable=False)
    timestamp: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)
    client_ip: Mapped[str | None] = mapped_column(String(64), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(Text, nullable=True)
    referer: Mapped[str] = mapped_column(Text, nullable=False, default="Direct")

    device_type: Mapped[str] = mapped_column(String(32), nullable=False, default="desktop")
    device_model: Mapped[str] = mapped_column(String(128), nullable=False, default="Unknown")
    device_vendor: Mapped[str] = mapped_column(String(128), nullable=False, default="Unknown")
    browser_name: Mapped[str] = mapped_column(String(128), nullable=False, default="Unknown")
    browser_version: Mapped[str] = mapped_column(String(64), nullable=False, default="Unknown")
    os_name: Mapped[str] = mapped_column(String(128), nullable=False, default="Unknown")
    os_version: Mapped[str] = mapped_column(String(64), nullable=False, default="Unknown")

    country: Mapped[str] = mapped_column(String(64), nullable=False, default="Unknown")
    region: Mapped[str] = mapped_column(String(128), nullable=False, default="Unknown")
    city: Mapped[str] = mapped_column(String(128), nullable=False, default="Unknown")
    timezone: Mapped[str] = mapped_column(String(64), nullable=False, default="Unknown")

    link: Mapped[Link] = relationship(back_populates="visits", lazy="raise")

    @classmethod
    def from_details(cls, link_id: int, details: VisitDetails) -> "Visit":
        return cls(
            link_id=link_id,
            client_ip=details.client_ip,
            user_agent=details.user_agent,
            referer=details.referer,
            device_type=details.device.type,
            device_model=details.device.model,
            device_vendor=details.device.vendor,
            browser_name=details.browser.name,
            browser_version=details.browser.version,
            os_name=details.os.name,
            os_version=details.os.version,
            country=details.location.country,
            region=details.location.region,
            city=details.location.city,
            timezone=details.location.timezone,
        )

    def __repr__(self) -> str:
        return f"<Visit(id={self.id}, link_id={self.link_id}, client_ip='{self.client_ip}')>"
