# report_compiler/execution/service.py
"""
Server side of the async execution protocol.

Analytics configs run synchronously unless async execution is allowed and
either forced or the config spans enough models. Results are cached by config
hash, and a second submission of a config that is already queued or running
returns the existing job instead of starting another.
"""

import logging
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from fastapi import HTTPException
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from report_compiler.core.config import Settings, get_settings
from report_compiler.errors import ReportQueryError
from report_compiler.query.engine import QueryEngine, ensure_derived_fields_current
from report_compiler.query.hashing import compute_query_hash
from report_compiler.query.schemas import (
    ExecutionResponse,
    ImmediateResult,
    JobDescriptor,
    JobStatus,
    PreviewRequest,
    PreviewResult,
    QueryConfig,
    ResultMeta,
)
from report_compiler.schema_registry.registry import SchemaRegistry

from .dao import QueryCacheDAO, ReportJobDAO
from .models import ReportAsyncJob

logger = logging.getLogger(__name__)

JobDispatcher = Callable[[str], None]


def celery_dispatch(job_id: str) -> None:
    """Queue a job on the Celery reports queue."""
    from task_queue.tasks.reports import execute_query_job

    execute_query_job.delay(job_id)


class QueryExecutionService:
    """Runs previews and analytics queries, and manages background jobs."""

    def __init__(
        self,
        config_db: Session,
        dw_db: Session,
        registry: SchemaRegistry,
        settings: Optional[Settings] = None,
        dispatcher: Optional[JobDispatcher] = None,
    ):
        self.settings = settings or get_settings()
        self.engine = QueryEngine(dw_db, registry, max_row_limit=self.settings.max_row_limit)
        self.job_dao = ReportJobDAO(config_db)
        self.cache_dao = QueryCacheDAO(config_db)
        self.dispatcher = dispatcher or celery_dispatch

    def should_run_async(self, config: QueryConfig) -> bool:
        options = config.options
        if not options.allow_async:
            return False
        return options.force_async or len(config.models) >= self.settings.async_model_threshold

    # ===== PREVIEW =====

    def run_preview(self, request: PreviewRequest) -> PreviewResult:
        return self.engine.run_preview(request)

    # ===== ANALYTICS =====

    def run_query(self, config: QueryConfig) -> ExecutionResponse:
        """
        Serve from cache, join an active job, queue a new job, or run now.

        Raises:
            StaleDerivedFieldError: before any lookup or submission when a derived
                field references a model the config does not select.
        """
        ensure_derived_fields_current(config.models, config.derived_fields)
        if config.limit > self.settings.max_row_limit:
            config = config.model_copy(update={"limit": self.settings.max_row_limit})
        query_hash = compute_query_hash(config)

        cached = self.cache_dao.get_fresh(query_hash)
        if cached is not None:
            logger.info("Serving query %s from cache", query_hash[:12])
            return self._result_from_payload(cached.result, cached=True, cached_at=cached.cached_at)

        if self.should_run_async(config):
            active = self.job_dao.find_active_by_hash(query_hash)
            if active is not None:
                logger.info("Query %s already has active job %s", query_hash[:12], active.id)
                return self._descriptor(active)

            job = self.job_dao.create(
                hash=query_hash,
                status=JobStatus.QUEUED,
                template_id=config.options.template_id,
                payload=config.model_dump(mode="json"),
            )
            logger.info("Queued analytics job %s for query %s", job.id, query_hash[:12])
            try:
                self.dispatcher(job.id)
            except Exception as exc:
                logger.exception("Failed to dispatch analytics job %s", job.id)
                job = self.job_dao.mark_failed(job, f"Could not queue job: {exc}")
            return self._descriptor(job)

        payload = self._execute(config, query_hash)
        return self._result_from_payload(payload)

    def get_job(self, job_id: str) -> ExecutionResponse:
        job = self.job_dao.get_by_id(job_id)
        if job is None:
            raise HTTPException(status_code=404, detail="Job not found")
        if job.status == JobStatus.COMPLETED and job.result is not None:
            return self._result_from_payload(job.result)
        return self._descriptor(job)

    def run_job(self, job_id: str) -> JobStatus:
        """
        Worker entry point: queued -> running -> completed | failed.

        Query and database errors are recorded on the job. Anything else is
        recorded and re-raised.
        """
        job = self.job_dao.get_by_id(job_id)
        if job is None:
            raise ReportQueryError(f"Job {job_id} does not exist")
        if job.status.is_terminal:
            logger.info("Job %s already %s", job_id, job.status.value)
            return job.status

        job = self.job_dao.mark_running(job)
        try:
            config = QueryConfig.model_validate(job.payload)
            payload = self._execute(config, job.hash, job_id=job.id)
        except (ReportQueryError, SQLAlchemyError, ValueError) as exc:
            logger.error("Analytics job %s failed: %s", job_id, exc)
            self.engine.dw_session.rollback()
            self.job_dao.mark_failed(job, str(exc))
            return JobStatus.FAILED
        except Exception as exc:
            logger.exception("Unexpected error in analytics job %s", job_id)
            self.job_dao.mark_failed(job, str(exc))
            raise

        self.job_dao.mark_completed(job, payload)
        logger.info("Analytics job %s completed with %d rows", job_id, payload["meta"]["row_count"])
        return JobStatus.COMPLETED

    def _execute(self, config: QueryConfig, query_hash: str, job_id: Optional[str] = None) -> Dict[str, Any]:
        outcome = self.engine.execute(config)
        payload = {
            "columns": outcome["columns"],
            "rows": outcome["rows"],
            "sql": outcome["sql"],
            "meta": {
                "executed_at": datetime.now().isoformat(),
                "hash": query_hash,
                "job_id": job_id,
                "row_count": len(outcome["rows"]),
            },
        }
        ttl_seconds = config.options.cache_ttl_seconds or self.settings.cache_ttl_seconds
        self.cache_dao.store(query_hash, payload, ttl_seconds, template_id=config.options.template_id)
        return payload

    @staticmethod
    def _result_from_payload(
        payload: Dict[str, Any], cached: bool = False, cached_at: Optional[datetime] = None
    ) -> ImmediateResult:
        meta = ResultMeta.model_validate(payload.get("meta") or {})
        if cached:
            meta = meta.model_copy(update={"cached": True, "cached_at": cached_at})
        return ImmediateResult(
            columns=payload["columns"], rows=payload["rows"], sql=payload.get("sql"), meta=meta
        )

    @staticmethod
    def _descriptor(job: ReportAsyncJob) -> JobDescriptor:
        return JobDescriptor(job_id=job.id, hash=job.hash, status=job.status, error=job.error)
