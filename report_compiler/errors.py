# report_compiler/errors.py
"""Exception hierarchy for the report query compiler.

Parsing and clause-compilation problems are normally returned as data so every
problem can be shown at once; these exceptions are raised where a single
blocking error prevents any result.
"""

from typing import Iterable, List, Optional


class ReportQueryError(Exception):
    """Base class for report compiler errors."""


class ExpressionSyntaxError(ReportQueryError):
    """Malformed derived-field expression."""

    def __init__(self, message: str, position: int):
        self.message = message
        self.position = position
        super().__init__(f"{message} at position {position}")

    def to_dict(self) -> dict:
        return {"message": self.message, "position": self.position}


class StaleDerivedFieldError(ReportQueryError):
    """One or more derived fields reference models missing from the query."""

    def __init__(self, field_ids: Iterable[str]):
        self.field_ids: List[str] = sorted(set(field_ids))
        super().__init__(
            "Resolve stale derived fields before running the query: " + ", ".join(self.field_ids)
        )


class FilterCompilationError(ReportQueryError):
    """Raised by callers that cannot proceed after filter compilation reported errors."""

    def __init__(self, errors: Iterable[str]):
        self.errors: List[str] = list(errors)
        super().__init__("; ".join(self.errors) or "Filter compilation failed")


class QueryCompilationError(ReportQueryError):
    """A query configuration cannot be turned into SQL against the schema."""


class JobFailedError(ReportQueryError):
    """An analytics job finished in the failed state. The caller may resubmit."""

    def __init__(self, message: str = "Query job failed. Please try again.", job_id: Optional[str] = None):
        self.job_id = job_id
        super().__init__(message)


class JobTimeoutError(JobFailedError):
    """Polling gave up before the job reached a terminal state."""


class TransportError(ReportQueryError):
    """Network or HTTP failure talking to the execution service."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)
