"""Exception handlers that answer with JSON and record the failure in the log table."""

import json
import logging
import traceback
from datetime import datetime
from typing import Any, Optional

from fastapi import HTTPException, Request
from fastapi.exceptions import RequestValidationError, ResponseValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from report_compiler.core import database
from report_compiler.errors import (
    ExpressionSyntaxError,
    FilterCompilationError,
    ReportQueryError,
    StaleDerivedFieldError,
    TransportError,
)
from report_compiler.logging.identity import APPLICATION_ID, HOSTNAME, USERNAME
from report_compiler.logging.models import RequestLog

logger = logging.getLogger(__name__)


def safe_json_dumps(obj: Any) -> str:
    return json.dumps(obj, indent=2, default=str)


def _write_log(
    request: Request,
    status_code: int,
    response_body: Any,
    error_type: Optional[str] = None,
    request_body: Optional[str] = None,
) -> None:
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
                    request_body=request_body or "Request body already consumed",
                    response_body=safe_json_dumps(response_body),
                    processing_time=None,
                    error_type=error_type,
                    user_agent=request.headers.get("user-agent"),
                    username=USERNAME,
                    hostname=HOSTNAME,
                    application_id=APPLICATION_ID,
                )
            )
            session.commit()
    except SQLAlchemyError as log_error:
        logger.warning("Error logging exception: %s", log_error)


def _jsonable(error: Any) -> Any:
    if isinstance(error, dict):
        return {key: _jsonable(value) for key, value in error.items()}
    if isinstance(error, (list, tuple)):
        return [_jsonable(item) for item in error]
    if error is None or isinstance(error, (bool, int, float, str)):
        return error
    return str(error)


def report_error_detail(exc: ReportQueryError) -> Any:
    if isinstance(exc, ExpressionSyntaxError):
        return exc.to_dict()
    if isinstance(exc, StaleDerivedFieldError):
        return {"message": str(exc), "field_ids": exc.field_ids}
    if isinstance(exc, FilterCompilationError):
        return {"message": "One or more filters are invalid.", "errors": exc.errors}
    return str(exc)


def report_error_status(exc: ReportQueryError) -> int:
    if isinstance(exc, StaleDerivedFieldError):
        return 409
    if isinstance(exc, TransportError):
        return 502
    return 400


async def report_query_exception_handler(request: Request, exc: ReportQueryError):
    """Domain errors: 409 for stale derived fields, 502 for transport failures, else 400."""
    status_code = report_error_status(exc)
    detail = report_error_detail(exc)
    _write_log(request, status_code, {"detail": detail}, type(exc).__name__)
    return JSONResponse(status_code=status_code, content={"detail": detail})


async def general_exception_handler(request: Request, exc: Exception):
    """Handle all unhandled exceptions and log them to database."""
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    _write_log(
        request,
        500,
        {"error": str(exc), "traceback": traceback.format_exc()},
        type(exc).__name__,
    )
    return JSONResponse(status_code=500, content={"detail": "Internal Server Error"})


async def response_validation_exception_handler(request: Request, exc: ResponseValidationError):
    _write_log(request, 500, _jsonable(exc.errors()), "ResponseValidationError")
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal Server Error: Response validation failed."},
    )


async def request_validation_exception_handler(request: Request, exc: RequestValidationError):
    """Handle request validation errors."""
    safe_errors = _jsonable(exc.errors())
    _write_log(request, 422, safe_errors, "RequestValidationError")
    return JSONResponse(status_code=422, content={"detail": safe_errors})


async def http_exception_handler(request: Request, exc: HTTPException):
    """Handle HTTP exceptions and log 4xx/5xx errors."""
    if exc.status_code >= 400:
        _write_log(request, exc.status_code, {"detail": exc.detail}, "HTTPException")
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail},
        headers=getattr(exc, "headers", None),
    )
