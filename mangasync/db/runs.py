"""
Persistence of sync run summaries.
"""

from typing import List, Optional

from sqlalchemy import select

from mangasync.db.database import Database
from mangasync.db.models import SyncRun
from mangasync.sync.models import RunStatus, SyncRunReport
from mangasync.utils.dates import isoformat, to_naive_utc
from mangasync.utils.logging import get_logger

logger = get_logger(__name__)


def run_to_dict(run: SyncRun) -> dict:
    return {
        "run_id": run.run_id,
        "user_id": run.user_id,
        "status": run.status,
        "abort_reason": run.abort_reason,
        "started_at": isoformat(run.started_at),
        "completed_at": isoformat(run.completed_at),
        "uploaded": run.uploaded,
        "downloaded": run.downloaded,
        "merged": run.merged,
        "skipped": run.skipped,
        "failed": run.failed,
        "phases": run.phases or [],
    }


class RunRecorder:
    """Stores one row per finished sync run."""

    def __init__(self, database: Database):
        self.database = database

    @staticmethod
    def should_record(report: SyncRunReport) -> bool:
        """Completed and cancelled runs are kept; auth aborts and skips are not."""
        if report.status == RunStatus.COMPLETED:
            return True
        return report.status == RunStatus.ABORTED and report.abort_reason == "cancelled"

    def record(self, report: SyncRunReport, user_id: Optional[str] = None) -> bool:
        """
        Save a run summary.

        Returns:
            True if the run was stored
        """
        if not self.should_record(report):
            logger.debug("Run not recorded", run_id=report.run_id, status=report.status.value)
            return False

        with self.database.session() as session:
            session.add(SyncRun(
                run_id=report.run_id,
                user_id=user_id,
                started_at=to_naive_utc(report.started_at),
                completed_at=to_naive_utc(report.completed_at),
                status=report.status.value,
                abort_reason=report.abort_reason,
                uploaded=report.total("uploaded"),
                downloaded=report.total("downloaded"),
                merged=report.total("merged"),
                skipped=report.total("skipped"),
                failed=report.total("failed"),
                phases=[phase.to_dict() for phase in report.phases],
            ))
        return True

    def latest(self) -> Optional[dict]:
        with self.database.session() as session:
            run = session.scalars(
                select(SyncRun).order_by(SyncRun.started_at.desc(), SyncRun.id.desc())
            ).first()
            return run_to_dict(run) if run else None

    def recent(self, limit: int = 20) -> List[dict]:
        with self.database.session() as session:
            runs = session.scalars(
                select(SyncRun)
                .order_by(SyncRun.started_at.desc(), SyncRun.id.desc())
                .limit(limit)
            ).all()
            return [run_to_dict(run) for run in runs]
