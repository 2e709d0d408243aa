"""
Narrative pipeline error taxonomy

Provider errors carry the HTTP-like status the external service answered with;
only 429 and 503 are worth another attempt.
"""
from typing import Optional

RETRIABLE_STATUS_CODES = (429, 503)


class PipelineError(Exception):
    """Base class for every error raised by the pipeline"""


class ValidationRejected(PipelineError):
    """A candidate failed a filter rule. A normal outcome, not a failure."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class ProviderError(PipelineError):
    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code

    @property
    def is_retriable(self) -> bool:
        return self.status_code in RETRIABLE_STATUS_CODES


class ProviderAuthFailure(ProviderError):
    pass


class ProviderRateLimited(ProviderError):
    def __init__(self, message: str, status_code: int = 429):
        super().__init__(message, status_code)


class ProviderUnavailable(ProviderError):
    def __init__(self, message: str, status_code: int = 503):
        super().__init__(message, status_code)


class NoCredentialsError(ProviderError):
    pass


class ProviderCallFailed(ProviderError):
    """Raised once the retry controller gives up on an operation"""

    def __init__(self, message: str, attempts: int, context: str = "", status_code: Optional[int] = None):
        super().__init__(f"{message} (attempts: {attempts}, article: \"{context}\")", status_code)
        self.attempts = attempts
        self.context = context
        self.last_message = message


class ResponseBlocked(PipelineError):
    """The provider refused to answer (safety filter or no candidates)"""


class ResponseMalformed(PipelineError):
    def __init__(self, message: str, truncated: bool = False):
        super().__init__(message)
        self.truncated = truncated


class StoreUnavailable(PipelineError):
    pass


class ClusterLookupFailure(PipelineError):
    pass


def provider_error_for_status(message: str, status_code: Optional[int]) -> ProviderError:
    """Map a status code onto the matching provider error class"""
    if status_code == 429:
        return ProviderRateLimited(message)
    if status_code == 503:
        return ProviderUnavailable(message)
    if status_code in (401, 403):
        return ProviderAuthFailure(message, status_code)
    return ProviderError(message, status_code)
