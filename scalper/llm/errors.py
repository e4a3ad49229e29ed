"""
LLM advisory failure classification
"""
from typing import Optional


class LLMError(Exception):
    """Base class for advisory-service failures"""
    retryable = False


class LLMTimeoutError(LLMError):
    retryable = True


class LLMServiceError(LLMError):
    """Connection failure or 5xx from the provider"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code
        self.retryable = status_code is None or status_code >= 500


class LLMRateLimitError(LLMError):
    def __init__(self, message: str, retry_after: Optional[float] = None):
        super().__init__(message)
        self.retry_after = retry_after


class LLMValidationError(LLMError):
    """Response could not be parsed into an advisory answer"""


class LLMCircuitOpenError(LLMError):
    def __init__(self, message: str, retry_in: float = 0.0):
        super().__init__(message)
        self.retry_in = retry_in
