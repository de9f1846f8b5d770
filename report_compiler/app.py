"""FastAPI application factory for the report compiler service."""

from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError, ResponseValidationError
from fastapi.middleware.cors import CORSMiddleware

from report_compiler.core.database import init_db
from report_compiler.core.router import register_routes
from report_compiler.errors import ReportQueryError
from report_compiler.logging.exception_handlers import (
    general_exception_handler,
    http_exception_handler,
    report_query_exception_handler,
    request_validation_exception_handler,
    response_validation_exception_handler,
)
from report_compiler.logging.middleware import LoggingMiddleware


def create_app() -> FastAPI:
    app = FastAPI(
        title="Report Query Compiler",
        docs_url="/api/docs",
        redoc_url="/api/redoc",
        openapi_url="/api/openapi.json",
    )
    init_db()

    # Add request logger middleware
    app.add_middleware(LoggingMiddleware)

    app.add_exception_handler(ResponseValidationError, response_validation_exception_handler)
    app.add_exception_handler(RequestValidationError, request_validation_exception_handler)
    app.add_exception_handler(ReportQueryError, report_query_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # In production, replace with specific origins
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_routes(app)
    return app
