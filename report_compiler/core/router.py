"""
Route registration for the report compiler API.
"""

from fastapi import APIRouter, FastAPI

from report_compiler.reporting.router import router as report_router

API_PREFIX = "/api"

health_router = APIRouter(tags=["health"])


@health_router.get("/health")
def health() -> dict:
    return {"status": "ok"}


def register_routes(app: FastAPI) -> None:
    """
    Mount the reporting endpoints and the health probe under ``API_PREFIX``.

    Args:
        app (FastAPI): The FastAPI application instance.
    """
    app.include_router(health_router, prefix=API_PREFIX)
    app.include_router(report_router, prefix=API_PREFIX)
