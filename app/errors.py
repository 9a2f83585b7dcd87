"""Domain exception hierarchy for IssueSmith.

Services raise these instead of bare ``ValueError`` so that the global
exception handler in ``main.py`` can map them to the correct HTTP status
code without fragile string matching.
"""


class AppError(Exception):
    """Base for all service-level exceptions."""

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        *,
        status_code: int = 500,
        detail: dict | None = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.detail = detail or {}


class BadRequestError(AppError):
    """Client sent an invalid request (400)."""

    def __init__(self, message: str = "Bad request"):
        super().__init__(message, status_code=400)


class TaskError(AppError):
    """A task failed fatally; no branch was pushed (502 by default).

    ``step`` names where it failed (``prepare``, ``generate``, ``push``...)
    so the caller can diagnose without re-running speculatively.
    """

    def __init__(
        self,
        message: str = "Task failed",
        *,
        step: str = "",
        status_code: int = 502,
        detail: dict | None = None,
    ):
        merged = {"step": step, **(detail or {})} if step else dict(detail or {})
        super().__init__(message, status_code=status_code, detail=merged)
        self.step = step


class TaskTimeoutError(TaskError):
    """The task exceeded ``TASK_TIMEOUT_SECONDS`` (504)."""

    def __init__(self, message: str = "Task timed out", *, step: str = "generate"):
        super().__init__(message, step=step, status_code=504)


def format_error_response(
    *,
    error: str,
    detail: object = None,
    request_id: str = "",
) -> dict:
    """Build a structured error response dict.

    Parameters
    ----------
    error : str
        Short error title (e.g. ``"Internal Server Error"``).
    detail : object
        Human-readable detail string, validation error list, or a dict of
        structured fields.
    request_id : str
        The request ID for tracing.

    Returns
    -------
    dict
        ``{"error": ..., "detail": ..., "request_id": ...}``
    """
    return {
        "error": error,
        "detail": detail if detail is not None else error,
        "request_id": request_id,
    }
