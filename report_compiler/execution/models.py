# report_compiler/execution/models.py
"""Analytics jobs and the query result cache."""

import uuid
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import JSON, DateTime, Enum as SQLEnum, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from report_compiler.core.database import Base
from report_compiler.query.schemas import JobStatus


def _new_id() -> str:
    return str(uuid.uuid4())


class ReportAsyncJob(Base):
    """A background analytics execution, polled by job id."""

    __tablename__ = "report_async_jobs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    hash: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    status: Mapped[JobStatus] = mapped_column(SQLEnum(JobStatus), nullable=False, default=JobStatus.QUEUED)
    template_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    payload: Mapped[Dict[str, Any]] = mapped_column(JSON, nullable=False)
    result: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON, nullable=True)
    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    queued_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.now)
    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    finished_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    def __repr__(self):
        return f"<ReportAsyncJob(id={self.id!r}, status={self.status!r})>"


class ReportQueryCacheEntry(Base):
    """Result of an analytics config, keyed by its hash."""

    __tablename__ = "report_query_cache"

    hash: Mapped[str] = mapped_column(String(64), primary_key=True)
    template_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    result: Mapped[Dict[str, Any]] = mapped_column(JSON, nullable=False)
    cached_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.now)
    expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)
