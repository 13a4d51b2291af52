"""Pipeline exception taxonomy and conversion to user-facing ErrorInfo.

Cancellation is deliberately not a subclass of PipelineError: callers that
catch pipeline failures must never catch a cancellation by accident.
"""

import asyncio
from typing import Optional

from talkpipe.schemas.machine import ErrorInfo

RATE_LIMITED_MESSAGE = "Too many requests. Please wait a moment before trying again."
CONNECTIVITY_MESSAGE = "Failed to connect to the server. Is the backend running?"
UNEXPECTED_MESSAGE = "An unexpected error occurred"


class PipelineError(Exception):
    """Base class for failures that stop a run at a stage."""


class PipelineValidationError(PipelineError):
    """Input rejected before any network call was made."""


class ServiceError(PipelineError):
    """Non-2xx response from a collaborator service.

    The message is opaque failure text taken from the response envelope;
    the code is opaque and only logged.
    """

    def __init__(
        self,
        status_code: int,
        message: str,
        *,
        code: Optional[str] = None,
        details: Optional[str] = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.details = details

    @property
    def rate_limited(self) -> bool:
        return self.status_code == 429


class ConnectivityError(PipelineError):
    """The request never produced an HTTP response."""

    def __init__(self, message: str = CONNECTIVITY_MESSAGE):
        super().__init__(message)


class JobFailedError(PipelineError):
    """The asynchronous batch job reported a failed status."""

    def __init__(self, job_id: str, message: str = "Image generation failed"):
        super().__init__(message)
        self.job_id = job_id


class LostConnectionError(PipelineError):
    """Status polling hit the consecutive-failure limit."""

    def __init__(self, job_id: str, failures: int):
        super().__init__("Lost connection to server during image generation")
        self.job_id = job_id
        self.failures = failures


class InvalidResumeError(ValueError):
    """resume_from does not name the stage that failed last."""


class PipelineCancelled(Exception):
    """Raised when work belongs to a cancellation epoch that is no longer current."""

    def __init__(self, epoch: int, current: int):
        super().__init__(f"Epoch {epoch} superseded by {current}")
        self.epoch = epoch
        self.current = current


def is_cancellation(exc: BaseException) -> bool:
    """Return True for both flavours of the cancellation signal."""
    return isinstance(exc, (PipelineCancelled, asyncio.CancelledError))


def error_info_from_exception(exc: BaseException, stage: Optional[str] = None) -> ErrorInfo:
    """Convert a stage failure into the ErrorInfo stored on the run."""
    if isinstance(exc, ServiceError) and exc.rate_limited:
        return ErrorInfo(
            message=RATE_LIMITED_MESSAGE,
            type="warning",
            code=exc.code,
            stage=stage,
            rate_limited=True,
        )
    if isinstance(exc, ServiceError):
        return ErrorInfo(message=str(exc) or UNEXPECTED_MESSAGE, code=exc.code, stage=stage)
    if isinstance(exc, PipelineValidationError):
        return ErrorInfo(message=str(exc), type="warning", stage=stage)
    if isinstance(exc, ConnectivityError):
        return ErrorInfo(message=str(exc), stage=stage, code="CONNECTIVITY")
    return ErrorInfo(message=str(exc) or UNEXPECTED_MESSAGE, stage=stage)
