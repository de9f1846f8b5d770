# report_compiler/execution/transport.py
"""Transports between the query runner and the execution service."""

import asyncio
import logging
from typing import Any, Callable, Dict, Optional, Protocol

import requests
from fastapi import HTTPException

from report_compiler.core.config import get_settings
from report_compiler.errors import TransportError
from report_compiler.query.schemas import (
    ExecutionResponse,
    PreviewRequest,
    PreviewResult,
    QueryConfig,
    parse_execution_response,
)

logger = logging.getLogger(__name__)


class QueryTransport(Protocol):
    async def run_preview(self, request: PreviewRequest) -> PreviewResult: ...

    async def run_query(self, config: QueryConfig) -> ExecutionResponse: ...

    async def get_job(self, job_id: str) -> ExecutionResponse: ...


class HttpQueryTransport:
    """Talks to the ``/api/reports`` endpoints; blocking requests run in a worker thread."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: float = 30.0,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = (base_url or get_settings().api_url).rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    def _request(self, method: str, path: str, payload: Optional[Dict[str, Any]] = None) -> Any:
        url = f"{self.base_url}/api/reports{path}"
        try:
            response = self.session.request(
                method,
                url,
                json=payload,
                headers={"Content-Type": "application/json"},
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            logger.error("Request to %s failed: %s", url, exc)
            raise TransportError(str(exc)) from exc

        if response.status_code >= 400:
            try:
                detail = response.json().get("detail", response.text)
            except ValueError:
                detail = response.text
            raise TransportError(f"{method} {path} failed: {detail}", status_code=response.status_code)

        try:
            return response.json()
        except ValueError as exc:
            raise TransportError(f"{method} {path} returned invalid JSON") from exc

    async def run_preview(self, request: PreviewRequest) -> PreviewResult:
        payload = await asyncio.to_thread(self._request, "POST", "/preview", request.model_dump(mode="json"))
        try:
            return PreviewResult.model_validate(payload)
        except ValueError as exc:
            raise TransportError(f"Malformed preview response: {exc}") from exc

    async def run_query(self, config: QueryConfig) -> ExecutionResponse:
        payload = await asyncio.to_thread(self._request, "POST", "/query", config.model_dump(mode="json"))
        return parse_execution_response(payload)

    async def get_job(self, job_id: str) -> ExecutionResponse:
        payload = await asyncio.to_thread(self._request, "GET", f"/query/jobs/{job_id}")
        return parse_execution_response(payload)


class LocalQueryTransport:
    """
    In-process transport over a QueryExecutionService, for workers and tests.

    HTTP and validation failures raised by the service surface as
    TransportError, the same as over HTTP. Domain errors pass through.
    """

    def __init__(self, service_factory: Callable[[], Any]):
        self.service_factory = service_factory

    def _call(self, operation: str, *args: Any) -> Any:
        try:
            return getattr(self.service_factory(), operation)(*args)
        except HTTPException as exc:
            raise TransportError(f"{operation} failed: {exc.detail}", status_code=exc.status_code) from exc
        except ValueError as exc:
            raise TransportError(f"{operation} failed: {exc}") from exc

    async def run_preview(self, request: PreviewRequest) -> PreviewResult:
        return self._call("run_preview", request)

    async def run_query(self, config: QueryConfig) -> ExecutionResponse:
        return self._call("run_query", config)

    async def get_job(self, job_id: str) -> ExecutionResponse:
        return self._call("get_job", job_id)
