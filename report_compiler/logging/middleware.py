"""Request/response audit logging to the config database."""

import json
import logging
import time
from datetime import datetime
from typing import Callable

from fastapi import Request, Response
from sqlalchemy.exc import SQLAlchemyError
from starlette.background import BackgroundTask
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from report_compiler.core import database
from report_compiler.logging.identity import APPLICATION_ID, HOSTNAME, USERNAME
from report_compiler.logging.models import RequestLog

logger = logging.getLogger(__name__)

EXCLUDED_PATHS = ("/api/health", "/api/docs", "/api/openapi.json", "/api/redoc")


class LoggingMiddleware(BaseHTTPMiddleware):
    def __init__(self, app: ASGIApp):
        super().__init__(app)
        self.username = USERNAME
        self.hostname = HOSTNAME
        self.application_id = APPLICATION_ID
        logger.info(
            "Logging middleware initialized with username: %s on host: %s, App ID: %s",
            self.username,
            self.hostname,
            self.application_id,
        )

    async def dispatch(self, request: Request, call_next: Callable):
        if request.url.path.startswith(EXCLUDED_PATHS):
            return await call_next(request)

        start_time = time.time()

        body_bytes = await request.body()
        request_body = body_bytes.decode("utf-8", errors="ignore")

        # Reconstruct the stream for downstream handlers
        async def receive() -> dict:
            return {"type": "http.request", "body": body_bytes}

        request = Request(request.scope, receive=receive)
        response = await call_next(request)
        duration_ms = (time.time() - start_time) * 1000
        status_code = response.status_code

        response_body = b""
        if isinstance(response, Response) and hasattr(response, "body"):
            response_body = response.body
        elif hasattr(response, "body_iterator"):
            original_iterator = response.body_iterator
            chunks = []

            async def buffer_iterator():
                nonlocal response_body
                async for chunk in original_iterator:
                    chunks.append(chunk)
                    yield chunk
                response_body = b"".join(chunks)

            response.body_iterator = buffer_iterator()

        def log_to_db():
            body_to_log = (
                response_body.decode("utf-8", errors="ignore") if response_body else "[Response body not available]"
            )
            try:
                with database.SessionLocal() as session:
                    session.add(
                        RequestLog(
                            timestamp=datetime.now(),
                            method=request.method,
                            path=str(request.url.path),
                            status_code=status_code,
                            client_ip=request.client.host if request.client else None,
                            request_headers=json.dumps(dict(request.headers)),
                            request_body=request_body,
                            response_body=body_to_log,
                            processing_time=duration_ms,
                            user_agent=request.headers.get("user-agent"),
                            username=self.username,
                            hostname=self.hostname,
                            application_id=self.application_id,
                        )
                    )
                    session.commit()
            except SQLAlchemyError as exc:
                logger.warning("Could not write request log: %s", exc)

        response.background = getattr(response, "background", None) or BackgroundTask(log_to_db)
        return response
