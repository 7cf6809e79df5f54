"""Error types shared across the dispatch pipeline."""
from typing import Optional


class NotificationError(Exception):
    """Classified failure raised by the pipeline and channel providers.

    Args:
        message: Human readable description
        code: Stable machine readable error code
        retryable: Whether the retry protocol should try the send again
    """

    def __init__(self, message: str, code: str = "NOTIFICATION_ERROR", retryable: bool = False):
        super().__init__(message)
        self.message = message
        self.code = code
        self.retryable = retryable

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(code={self.code!r}, retryable={self.retryable}, message={self.message!r})"


class ValidationError(NotificationError):
    """Bad input shape or unknown channel. Never retried."""

    def __init__(self, message: str, code: str = "INVALID_REQUEST"):
        super().__init__(message, code, retryable=False)


class ConfigurationError(NotificationError):
    """Channel configuration is present but unusable. Never retried."""

    def __init__(self, message: str, code: str = "INVALID_CONFIG"):
        super().__init__(message, code, retryable=False)


def classify_exception(error: Exception, default_code: str = "SEND_ERROR") -> NotificationError:
    """Wrap an arbitrary exception as a retryable NotificationError.

    Already classified errors pass through unchanged.
    """
    if isinstance(error, NotificationError):
        return error
    message: Optional[str] = str(error) or error.__class__.__name__
    return NotificationError(message, default_code, retryable=True)
