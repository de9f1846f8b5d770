# report_compiler/execution/dao.py
"""Data access for analytics jobs and cached results."""

from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from report_compiler.core.base_dao import BaseDAO
from report_compiler.query.schemas import JobStatus

from .models import ReportAsyncJob, ReportQueryCacheEntry


class ReportJobDAO(BaseDAO[ReportAsyncJob]):
    def __init__(self, db: Session):
        super().__init__(ReportAsyncJob, db)

    def find_active_by_hash(self, query_hash: str) -> Optional[ReportAsyncJob]:
        """Newest queued or running job for the same config."""
        query = (
            select(ReportAsyncJob)
            .where(
                ReportAsyncJob.hash == query_hash,
                ReportAsyncJob.status.in_([JobStatus.QUEUED, JobStatus.RUNNING]),
            )
            .order_by(ReportAsyncJob.queued_at.desc())
        )
        return self.db.execute(query).scalars().first()

    def mark_running(self, job: ReportAsyncJob) -> ReportAsyncJob:
        return self.update(job, status=JobStatus.RUNNING, started_at=datetime.now(), error=None)

    def mark_completed(self, job: ReportAsyncJob, result: Dict[str, Any]) -> ReportAsyncJob:
        return self.update(job, status=JobStatus.COMPLETED, result=result, finished_at=datetime.now())

    def mark_failed(self, job: ReportAsyncJob, error: str) -> ReportAsyncJob:
        return self.update(job, status=JobStatus.FAILED, error=error, finished_at=datetime.now())


class QueryCacheDAO(BaseDAO[ReportQueryCacheEntry]):
    def __init__(self, db: Session):
        super().__init__(ReportQueryCacheEntry, db)

    def get_fresh(self, query_hash: str, now: Optional[datetime] = None) -> Optional[ReportQueryCacheEntry]:
        entry = self.get_by_id(query_hash)
        if entry is None or entry.expires_at <= (now or datetime.now()):
            return None
        return entry

    def store(
        self, query_hash: str, result: Dict[str, Any], ttl_seconds: int, template_id: Optional[str] = None
    ) -> ReportQueryCacheEntry:
        now = datetime.now()
        values = {
            "result": result,
            "template_id": template_id,
            "cached_at": now,
            "expires_at": now + timedelta(seconds=ttl_seconds),
        }
        entry = self.get_by_id(query_hash)
        if entry is None:
            return self.create(hash=query_hash, **values)
        return self.update(entry, **values)

    def purge_expired(self, now: Optional[datetime] = None) -> int:
        outcome = self.db.execute(
            delete(ReportQueryCacheEntry).where(ReportQueryCacheEntry.expires_at <= (now or datetime.now()))
        )
        self.db.commit()
        return outcome.rowcount or 0
