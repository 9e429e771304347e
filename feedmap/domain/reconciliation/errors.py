"""
Error taxonomy for the AI mapping path

Permanent errors stop a whole orchestration run; transient ones are retried
by RetryPolicy. The fuzzy matcher never raises any of these.
"""
from typing import Optional


class ReconciliationError(Exception):
    """Base class for AI mapping failures"""

    permanent = False
    retryable = False

    def __init__(self, message: str, model: Optional[str] = None):
        super().__init__(message)
        self.model = model


class NotConfiguredError(ReconciliationError):
    """No credential configured or no catalog loaded - fails before any network call"""
    permanent = True


class InvalidCredentialError(ReconciliationError):
    """API key rejected"""
    permanent = True


class QuotaExceededError(ReconciliationError):
    """Account quota or credit balance exhausted"""
    permanent = True


class AccessDeniedError(ReconciliationError):
    """Key is valid but not allowed to use the model/resource"""
    permanent = True


class TransientServiceError(ReconciliationError):
    """Overload, rate limit, 5xx or connection problem - worth retrying"""
    retryable = True


class RetryExhaustedError(TransientServiceError):
    """Transient failures persisted through every allowed attempt"""

    def __init__(self, message: str, attempts: int, model: Optional[str] = None):
        super().__init__(message, model=model)
        self.attempts = attempts


class MalformedResponseError(ReconciliationError):
    """Model reply was not valid mapping JSON after fence stripping"""

    def __init__(self, message: str, raw_response: str = "", model: Optional[str] = None):
        super().__init__(message, model=model)
        self.raw_response = raw_response
