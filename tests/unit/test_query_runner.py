"""Unit tests for the async query runner and its transports"""

import asyncio
from unittest.mock import AsyncMock, Mock

import pytest
import requests

from report_compiler.errors import JobFailedError, JobTimeoutError, StaleDerivedFieldError, TransportError
from report_compiler.execution.runner import QueryRunner, RunnerState
from report_compiler.execution.transport import HttpQueryTransport, LocalQueryTransport
from report_compiler.query.schemas import (
    ImmediateResult,
    JobDescriptor,
    JobStatus,
    MetricSpec,
    QueryConfig,
    QueryOptions,
    parse_execution_response,
)


def make_config(models=("orders",), **options):
    return QueryConfig(
        models=list(models),
        metrics=[MetricSpec(model_id="orders", field_id="total", alias="orders__total_sum")],
        options=QueryOptions(**options),
    )


def make_result(rows=None):
    rows = rows if rows is not None else [{"orders__total_sum": 235.0}]
    return ImmediateResult(columns=["orders__total_sum"], rows=rows)


@pytest.fixture
def transport():
    mock = Mock()
    mock.run_query = AsyncMock()
    mock.get_job = AsyncMock()
    mock.run_preview = AsyncMock()
    return mock


@pytest.fixture
def sleep():
    return AsyncMock()


@pytest.fixture
def runner(transport, settings, sleep):
    return QueryRunner(transport, settings, sleep=sleep)


class TestSubmit:
    """Test cases for QueryRunner.submit()"""

    async def test_stale_field_blocks_before_any_call(self, runner, transport, net_field):
        with pytest.raises(StaleDerivedFieldError) as exc_info:
            await runner.submit(make_config(), [net_field])

        assert exc_info.value.field_ids == ["net"]
        transport.run_query.assert_not_called()
        transport.get_job.assert_not_called()
        assert runner.state == RunnerState.IDLE

    async def test_immediate_result(self, runner, transport):
        transport.run_query.return_value = make_result()

        result = await runner.submit(make_config())

        assert result.rows == [{"orders__total_sum": 235.0}]
        assert runner.state == RunnerState.COMPLETED
        assert runner.result is result
        transport.get_job.assert_not_called()

    async def test_polls_until_completed(self, runner, transport, sleep):
        transport.run_query.return_value = JobDescriptor(job_id="job-1")
        transport.get_job.side_effect = [
            JobDescriptor(job_id="job-1", status=JobStatus.RUNNING),
            JobDescriptor(job_id="job-1", status=JobStatus.RUNNING),
            make_result(),
        ]

        result = await runner.submit(make_config())

        assert result == make_result()
        assert runner.state == RunnerState.COMPLETED
        assert transport.get_job.await_count == 3
        intervals = [call.args[0] for call in sleep.await_args_list]
        assert intervals == [pytest.approx(0.01), pytest.approx(0.02), pytest.approx(0.04)]

    async def test_failed_job_raises(self, runner, transport):
        transport.run_query.return_value = JobDescriptor(job_id="job-2")
        transport.get_job.return_value = JobDescriptor(job_id="job-2", status=JobStatus.FAILED, error="boom")

        with pytest.raises(JobFailedError) as exc_info:
            await runner.submit(make_config())

        assert exc_info.value.job_id == "job-2"
        assert str(exc_info.value) == "Query job failed. Please try again."
        assert runner.state == RunnerState.FAILED
        assert runner.error is exc_info.value

    async def test_unexpected_transport_failure_is_wrapped(self, runner, transport):
        transport.run_query.side_effect = RuntimeError("socket closed")

        with pytest.raises(TransportError, match="socket closed"):
            await runner.submit(make_config())

        assert runner.state == RunnerState.FAILED
        assert isinstance(runner.error, TransportError)

    async def test_job_failed_at_submission(self, runner, transport):
        transport.run_query.return_value = JobDescriptor(job_id="job-3", status=JobStatus.FAILED)

        with pytest.raises(JobFailedError):
            await runner.submit(make_config())

        transport.get_job.assert_not_called()

    async def test_polling_times_out(self, runner, transport, sleep, settings):
        transport.run_query.return_value = JobDescriptor(job_id="job-4")
        transport.get_job.return_value = JobDescriptor(job_id="job-4", status=JobStatus.QUEUED)

        with pytest.raises(JobTimeoutError):
            await runner.submit(make_config())

        assert transport.get_job.await_count == settings.poll_max_attempts
        intervals = [call.args[0] for call in sleep.await_args_list]
        assert max(intervals) == pytest.approx(settings.poll_max_interval_seconds)

    async def test_resubmit_after_failure(self, runner, transport):
        transport.run_query.side_effect = [TransportError("down", status_code=503), make_result()]

        with pytest.raises(TransportError):
            await runner.submit(make_config())
        result = await runner.submit(make_config())

        assert result is not None
        assert runner.state == RunnerState.COMPLETED
        assert runner.error is None


class TestSupersedeAndCancel:
    """Test cases for generation handling"""

    async def test_new_submission_supersedes_old(self, runner, transport):
        release = asyncio.Event()

        async def slow_then_fast(config):
            if config.limit == 1:
                await release.wait()
                return make_result([{"orders__total_sum": 1.0}])
            return make_result([{"orders__total_sum": 2.0}])

        transport.run_query.side_effect = slow_then_fast
        first = asyncio.create_task(runner.submit(make_config().model_copy(update={"limit": 1})))
        await asyncio.sleep(0)
        await asyncio.sleep(0)

        second = await runner.submit(make_config())
        release.set()

        assert await first is None
        assert second.rows == [{"orders__total_sum": 2.0}]
        assert runner.result is second
        assert runner.generation == 2

    async def test_cancel_discards_in_flight_submission(self, runner, transport):
        never = asyncio.Event()

        async def hang(config):
            await never.wait()

        transport.run_query.side_effect = hang
        pending = asyncio.create_task(runner.submit(make_config()))
        await asyncio.sleep(0)
        await asyncio.sleep(0)

        assert runner.in_flight
        runner.cancel()

        assert await pending is None
        assert runner.state == RunnerState.CANCELLED
        assert runner.result is None

    async def test_cancel_when_idle(self, runner):
        runner.cancel()

        assert runner.state == RunnerState.IDLE
        assert runner.generation == 1

    async def test_aclose(self, runner, transport):
        transport.run_query.return_value = make_result()
        await runner.submit(make_config())

        await runner.aclose()

        assert not runner.in_flight


class TestHttpQueryTransport:
    """Test cases for HttpQueryTransport"""

    @staticmethod
    def response(status_code, payload):
        mock = Mock(status_code=status_code, text=str(payload))
        mock.json.return_value = payload
        return mock

    async def test_immediate_response(self):
        session = Mock()
        session.request.return_value = self.response(200, {"columns": ["a"], "rows": [{"a": 1}]})
        transport = HttpQueryTransport("http://reports.local/", session=session)

        result = await transport.run_query(make_config())

        assert isinstance(result, ImmediateResult)
        method, url = session.request.call_args.args
        assert (method, url) == ("POST", "http://reports.local/api/reports/query")
        assert session.request.call_args.kwargs["json"]["models"] == ["orders"]

    async def test_job_descriptor_response(self):
        session = Mock()
        session.request.return_value = self.response(200, {"job_id": "j", "status": "running"})
        transport = HttpQueryTransport("http://reports.local", session=session)

        result = await transport.get_job("j")

        assert result == JobDescriptor(job_id="j", status=JobStatus.RUNNING)
        assert session.request.call_args.args == ("GET", "http://reports.local/api/reports/query/jobs/j")

    async def test_http_error_carries_status(self):
        session = Mock()
        session.request.return_value = self.response(409, {"detail": {"field_ids": ["net"]}})
        transport = HttpQueryTransport("http://reports.local", session=session)

        with pytest.raises(TransportError) as exc_info:
            await transport.run_query(make_config())

        assert exc_info.value.status_code == 409

    async def test_connection_error(self):
        session = Mock()
        session.request.side_effect = requests.ConnectionError("refused")
        transport = HttpQueryTransport("http://reports.local", session=session)

        with pytest.raises(TransportError, match="refused"):
            await transport.get_job("j")

    def test_unrecognized_payload(self):
        with pytest.raises(TransportError):
            parse_execution_response({"status": "ok"})
        with pytest.raises(TransportError):
            parse_execution_response([1, 2])


class TestLocalTransportRoundTrip:
    """Runner against the real execution service, running the job between polls"""

    async def test_async_job_end_to_end(self, execution_service, dispatched_jobs, settings, sample_warehouse):
        async def run_dispatched(_interval):
            for job_id in dispatched_jobs:
                execution_service.run_job(job_id)

        runner = QueryRunner(LocalQueryTransport(lambda: execution_service), settings, sleep=run_dispatched)

        result = await runner.submit(make_config(force_async=True))

        assert len(dispatched_jobs) == 1
        assert result.rows == [{"orders__total_sum": pytest.approx(235.0)}]
        assert result.meta.job_id == dispatched_jobs[0]

    async def test_polling_unknown_job_fails_with_transport_error(self, execution_service, settings, sample_warehouse):
        transport = LocalQueryTransport(lambda: execution_service)
        transport.run_query = AsyncMock(
            return_value=JobDescriptor(job_id="missing", hash="h", status=JobStatus.QUEUED)
        )
        runner = QueryRunner(transport, settings, sleep=AsyncMock())

        with pytest.raises(TransportError, match="Job not found") as exc_info:
            await runner.submit(make_config())

        assert exc_info.value.status_code == 404
        assert runner.state == RunnerState.FAILED
        assert runner.error is exc_info.value
