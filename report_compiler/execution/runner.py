# report_compiler/execution/runner.py
"""
Client side of the async execution protocol.

One QueryRunner owns one result slot. Each submission gets a generation
number; starting a new submission or calling cancel() bumps it and cancels
the in-flight task, and any result that arrives for an older generation is
discarded.
"""

import asyncio
import logging
from enum import Enum
from typing import Awaitable, Callable, Iterable, Optional

from report_compiler.core.config import Settings, get_settings
from report_compiler.derived_fields.reconciliation import ensure_not_stale
from report_compiler.derived_fields.schemas import DerivedField
from report_compiler.errors import JobFailedError, JobTimeoutError, ReportQueryError, TransportError
from report_compiler.query.schemas import ImmediateResult, JobDescriptor, JobStatus, QueryConfig

from .transport import QueryTransport

logger = logging.getLogger(__name__)


class RunnerState(str, Enum):
    IDLE = "idle"
    SUBMITTED = "submitted"
    QUEUED = "queued"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class QueryRunner:
    """Submits a QueryConfig and polls its job until a terminal state."""

    def __init__(
        self,
        transport: QueryTransport,
        settings: Optional[Settings] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.transport = transport
        self.settings = settings or get_settings()
        self._sleep = sleep
        self._generation = 0
        self._task: Optional[asyncio.Task] = None
        self.state = RunnerState.IDLE
        self.job: Optional[JobDescriptor] = None
        self.result: Optional[ImmediateResult] = None
        self.error: Optional[ReportQueryError] = None

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def in_flight(self) -> bool:
        return self._task is not None and not self._task.done()

    async def submit(
        self, config: QueryConfig, derived_fields: Iterable[DerivedField] = ()
    ) -> Optional[ImmediateResult]:
        """
        Run ``config`` to completion.

        Returns the result, or None when this submission was superseded or
        cancelled before it finished.

        Raises:
            StaleDerivedFieldError: before any transport call, if a visible
                derived field references a model missing from ``config``.
            JobFailedError: the job failed; the caller may resubmit.
            JobTimeoutError: polling hit its attempt ceiling.
            TransportError: the execution service could not be reached.
        """
        ensure_not_stale(derived_fields, config.models)

        self._cancel_task()
        self._generation += 1
        generation = self._generation
        self.state = RunnerState.SUBMITTED
        self.job = None
        self.result = None
        self.error = None

        task = asyncio.create_task(self._run(config, generation))
        self._task = task
        try:
            await asyncio.wait({task})
        except asyncio.CancelledError:
            task.cancel()
            raise

        if task.cancelled():
            return None
        if generation != self._generation:
            # Retrieve so a late failure is not reported as unhandled.
            task.exception()
            return None
        return task.result()

    def cancel(self) -> None:
        """Abandon the current submission. Safe to call at any time."""
        self._generation += 1
        self._cancel_task()
        if self.state in (RunnerState.SUBMITTED, RunnerState.QUEUED):
            self.state = RunnerState.CANCELLED
            logger.debug("Query submission cancelled")

    async def aclose(self) -> None:
        """Cancel and wait for the in-flight task to unwind."""
        task = self._task
        self.cancel()
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)

    def _cancel_task(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None

    def _is_current(self, generation: int) -> bool:
        return generation == self._generation

    def _complete(self, result: ImmediateResult, generation: int) -> Optional[ImmediateResult]:
        if not self._is_current(generation):
            return None
        self.state = RunnerState.COMPLETED
        self.result = result
        return result

    async def _run(self, config: QueryConfig, generation: int) -> Optional[ImmediateResult]:
        try:
            response = await self.transport.run_query(config)
            if not self._is_current(generation):
                return None
            if isinstance(response, ImmediateResult):
                return self._complete(response, generation)
            self.state = RunnerState.QUEUED
            self.job = response
            return await self._poll(response, generation)
        except ReportQueryError as exc:
            self._fail(exc, generation)
            raise
        except Exception as exc:
            error = TransportError(str(exc))
            self._fail(error, generation)
            raise error from exc

    def _fail(self, error: ReportQueryError, generation: int) -> None:
        if self._is_current(generation):
            self.state = RunnerState.FAILED
            self.error = error

    async def _poll(self, job: JobDescriptor, generation: int) -> Optional[ImmediateResult]:
        if job.status == JobStatus.FAILED:
            raise JobFailedError(job_id=job.job_id)

        interval = self.settings.poll_interval_seconds
        for attempt in range(1, self.settings.poll_max_attempts + 1):
            await self._sleep(interval)
            if not self._is_current(generation):
                return None

            response = await self.transport.get_job(job.job_id)
            if not self._is_current(generation):
                return None
            if isinstance(response, ImmediateResult):
                return self._complete(response, generation)

            self.job = response
            if response.status == JobStatus.FAILED:
                logger.info("Job %s failed: %s", job.job_id, response.error)
                raise JobFailedError(job_id=job.job_id)
            logger.debug("Job %s still %s after poll %d", job.job_id, response.status.value, attempt)
            interval = min(interval * self.settings.poll_backoff, self.settings.poll_max_interval_seconds)

        raise JobTimeoutError(
            f"Query job {job.job_id} did not finish after {self.settings.poll_max_attempts} polls",
            job_id=job.job_id,
        )
