"""Cleanup manager - retention for failed requests."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable

from pindeal.interfaces.store import StateStore
from pindeal.models.config import CleanupAction
from pindeal.models.records import CleanupReport

log = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CleanupManager:
    """Archives or deletes failed requests older than the retention window.

    Only failed requests are ever touched; age is measured from their last
    update, i.e. the moment they failed.
    """

    def __init__(
        self,
        store: StateStore,
        retention_days: int = 7,
        action: CleanupAction = CleanupAction.ARCHIVE,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._retention = timedelta(days=retention_days)
        self._action = action
        self._clock = clock

    async def run_pass(self) -> CleanupReport:
        cutoff = (self._clock() - self._retention).isoformat()
        candidates = await self._store.get_failed_before(cutoff)
        report = CleanupReport(cutoff=cutoff, action=self._action.value, matched=len(candidates))

        for request in candidates:
            if self._action == CleanupAction.DELETE:
                if await self._store.delete_request(request.id):
                    report.deleted += 1
            elif await self._store.archive_request(request.id):
                report.archived += 1

        if report.matched:
            await self._store.log_activity(
                "cleanup",
                f"Cleanup ({report.action}): {report.archived} archived, "
                f"{report.deleted} deleted of {report.matched} failed before {cutoff}",
            )
        log.info(
            "Cleanup pass complete: %d matched, %d archived, %d deleted",
            report.matched, report.archived, report.deleted,
        )
        return report
