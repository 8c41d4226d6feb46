"""Click recording against the canonical link record."""

import logging

from prometheus_client import Counter

from shortlink.schemas import VisitDetails
from shortlink.store import LinkNotFoundError, RecordStore, StoreError

__all__ = ["ClickRecorder"]

DATABASE_WRITES_TOTAL = Counter(
    "shortlink_database_writes_total",
    "Total database write operations",
)
VISITS_RECORDED_TOTAL = Counter(
    "shortlink_visits_recorded_total",
    "Total visits durably recorded",
)
VISIT_RECORD_FAILURES_TOTAL = Counter(
    "shortlink_visit_record_failures_total",
    "Total visit writes that failed",
)


class ClickRecorder:
    """Appends visits and increments the visit counter as one store update.

    Unlike cache population, recording is not best effort: a store failure
    propagates to the caller and fails the request.
    """

    def __init__(self, store: RecordStore, logger: logging.Logger | logging.LoggerAdapter | None = None):
        self._store = store
        self._logger = logger or logging.getLogger("shortlink")

    async def record(self, link_id: int, details: VisitDetails) -> int:
        """Record one visit.

        Args:
            link_id: Primary key of the resolved link.
            details: Enriched analytics for the visit.

        Returns:
            int: The link's visit_count after this visit.

        Raises:
            LinkNotFoundError: If the link disappeared after it was resolved.
            StoreError: If the store rejected the write.
        """
        try:
            visit_count = await self._store.append_visit(link_id, details)
        except LinkNotFoundError:
            self._logger.warning(f"Visit not recorded, link {link_id} no longer exists")
            raise
        except StoreError as exc:
            VISIT_RECORD_FAILURES_TOTAL.inc()
            self._logger.error(f"Visit recording failed for link {link_id}: {exc.__cause__ or exc}")
            raise

        DATABASE_WRITES_TOTAL.inc()
        VISITS_RECORDED_TOTAL.inc()
        self._logger.debug(f"Visit recorded for link {link_id}, visit_count={visit_count}")
        return visit_count
