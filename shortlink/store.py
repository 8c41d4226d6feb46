"""Durable record store for short links.

The store is the source of truth for links and their visits. Every operation
opens its own short-lived session from the shared factory, so a read never
holds a transaction open across the cache I/O that follows it.

Flow Diagram — append_visit()
=============================
::
    ┌──────────────────────────────┐
    │ BEGIN                        │
    ├──────────────────────────────┤
    │ UPDATE links                 │
    │   SET visit_count = +1       │
    │   WHERE id = :id             │
    │   RETURNING visit_count      │
    ├──────────────────────────────┤
    │ no row? ── ROLLBACK ─► raise │
    ├──────────────────────────────┤
    │ INSERT INTO visits (...)     │
    ├──────────────────────────────┤
    │ COMMIT                       │
    └──────────────────────────────┘

Key Behaviours
===============
- Lookups match short_code OR custom_alias; a short_code match wins.
- The counter increment is evaluated by the database, never read-modify-write.
- Increment and append commit or roll back together.
- SQLAlchemy and connection-level errors surface as StoreError.
"""

from sqlalchemy import case, delete, or_, select, text, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from shortlink.models import Link, Visit
from shortlink.schemas import VisitDetails

__all__ = ["LinkNotFoundError", "RecordStore", "StoreError"]

# asyncpg raises plain OSError subclasses when the server is unreachable.
_BACKEND_ERRORS = (SQLAlchemyError, OSError)


class StoreError(Exception):
    """The record store could not complete an operation."""


class LinkNotFoundError(StoreError):
    """The targeted link no longer exists."""


def _match_code(code: str):
    return or_(Link.short_code == code, Link.custom_alias == code)


class RecordStore:
    """Async SQLAlchemy access to links and visits."""

    def __init__(self, sessionmaker: async_sessionmaker[AsyncSession]):
        self._sessionmaker = sessionmaker

    async def find_by_code(self, code: str) -> Link | None:
        assert isinstance(code, str) and code, f"code must be a non-empty string, got {code!r}"
        stmt = (
            select(Link)
            .where(_match_code(code))
            .order_by(case((Link.short_code == code, 0), else_=1))
            .limit(1)
        )
        try:
            async with self._sessionmaker() as session:
                result = await session.execute(stmt)
                return result.scalars().first()
        except _BACKEND_ERRORS as exc:
            raise StoreError(f"Lookup failed for code '{code}'") from exc

    async def find_with_visits(self, code: str) -> Link | None:
        assert isinstance(code, str) and code, f"code must be a non-empty string, got {code!r}"
        stmt = (
            select(Link)
            .where(_match_code(code))
            .order_by(case((Link.short_code == code, 0), else_=1))
            .options(selectinload(Link.visits))
            .limit(1)
        )
        try:
            async with self._sessionmaker() as session:
                result = await session.execute(stmt)
                return result.scalars().first()
        except _BACKEND_ERRORS as exc:
            raise StoreError(f"Analytics lookup failed for code '{code}'") from exc

    async def append_visit(self, link_id: int, details: VisitDetails) -> int:
        """Append a visit and increment the counter in one transaction.

        Args:
            link_id: Primary key of the visited link.
            details: Enriched analytics for the visit.

        Returns:
            int: The link's visit_count after this visit.

        Raises:
            LinkNotFoundError: If the link was deleted before the write.
            StoreError: If the transaction failed; nothing was applied.
        """
        stmt = (
            update(Link)
            .where(Link.id == link_id)
            .values(visit_count=Link.visit_count + 1)
            .returning(Link.visit_count)
        )
        try:
            async with self._sessionmaker.begin() as session:
                visit_count = (await session.execute(stmt)).scalar_one_or_none()
                if visit_count is None:
                    raise LinkNotFoundError(f"Link {link_id} no longer exists")
                session.add(Visit.from_details(link_id, details))
        except _BACKEND_ERRORS as exc:
            raise StoreError(f"Recording visit failed for link {link_id}") from exc
        return visit_count

    async def add(self, link: Link) -> Link:
        """Persist a link handed over by the creation collaborator."""
        try:
            async with self._sessionmaker.begin() as session:
                session.add(link)
                await session.flush()
                await session.refresh(link)
        except _BACKEND_ERRORS as exc:
            raise StoreError(f"Storing link '{link.short_code}' failed") from exc
        return link

    async def delete(self, link_id: int) -> Link | None:
        """Delete a link and its visits, returning the removed link."""
        try:
            async with self._sessionmaker.begin() as session:
                link = await session.get(Link, link_id)
                if link is None:
                    return None
                await session.execute(delete(Visit).where(Visit.link_id == link_id))
                await session.execute(delete(Link).where(Link.id == link_id))
        except _BACKEND_ERRORS as exc:
            raise StoreError(f"Deleting link {link_id} failed") from exc
        return link

    async def ping(self) -> bool:
        try:
            async with self._sessionmaker() as session:
                await session.execute(text("SELECT 1"))
        except _BACKEND_ERRORS:
            return False
        return True
