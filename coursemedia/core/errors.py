"""Error taxonomy shared by the API layer and the worker pool.

Validation, not-found and state errors are raised by services and rendered
synchronously by the API. Processing errors are raised inside job handlers
and only ever reach the caller through the job's ``error_message``.
"""

from fastapi import Request, status
from fastapi.responses import JSONResponse


class CourseMediaError(Exception):
    """Base class for all domain errors."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(CourseMediaError):
    """Malformed, oversized or wrong-type input. Never retried."""

    status_code = status.HTTP_400_BAD_REQUEST


class AuthenticationError(CourseMediaError):
    status_code = status.HTTP_401_UNAUTHORIZED


class PermissionDeniedError(CourseMediaError):
    status_code = status.HTTP_403_FORBIDDEN


class NotFoundError(CourseMediaError):
    status_code = status.HTTP_404_NOT_FOUND


class InvalidStateError(CourseMediaError):
    """Operation is not legal for the entity's current state."""

    status_code = status.HTTP_409_CONFLICT


class InvalidTransitionError(InvalidStateError):
    """Workflow status change not allowed by the transition table."""


class ProcessingError(CourseMediaError):
    """Failure inside a job handler; drives the retry policy."""

    error_kind = "processing"


class TransientInfraError(ProcessingError):
    """Infrastructure hiccup (storage, network). Same retry path, separate alerting."""

    error_kind = "transient_infra"


class JobCancelled(Exception):
    """Raised at a cancellation checkpoint when the running job was cancelled."""

    def __init__(self, job_id):
        super().__init__(f"Job {job_id} was cancelled")
        self.job_id = job_id


async def course_media_error_handler(request: Request, exc: CourseMediaError) -> JSONResponse:
    headers = None
    if isinstance(exc, AuthenticationError):
        headers = {"WWW-Authenticate": "Bearer"}
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message},
        headers=headers,
    )
