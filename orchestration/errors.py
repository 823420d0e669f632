# orchestration/errors.py
from typing import Optional


class FeedbackError(Exception):
    """Base exception for everything the feedback flow raises."""

    retryable = False

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ConfigurationError(FeedbackError):
    """Settings are missing or invalid at process start."""


class InvalidRequest(FeedbackError):
    """Webhook request is missing required transport fields or is malformed."""


class Unauthorized(FeedbackError):
    """Webhook signature does not match the shared secret."""


class ConfigAbsent(FeedbackError):
    """Repository has no CI configuration file on the requested ref."""


class PipelineNotFound(FeedbackError):
    """No pipeline triggered by the commit has registered with CircleCI yet."""

    retryable = True


class UpstreamUnavailable(FeedbackError):
    """A call to CircleCI or GitHub failed."""

    retryable = True

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)

    def __str__(self) -> str:
        if self.status_code is None:
            return self.message
        return f"{self.status_code}: {self.message}"


class ReportingFailed(FeedbackError):
    """A failure report could not be built or published."""
