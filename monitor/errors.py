"""
Exception types raised by the check pipeline.

Every error carries a short ``code`` that is forwarded to connected
dashboard clients in the realtime ``error`` event.
"""


class MonitorError(Exception):
    """Base class for pipeline errors."""

    code = "CHECK_FAILED"


class AuthenticationError(MonitorError):
    """Login navigation, form interaction or verification failed."""

    code = "AUTH_FAILED"


class ContentNotFoundError(MonitorError):
    """The listings container is missing from the loaded page."""

    code = "CONTENT_NOT_FOUND"


class TransportError(MonitorError):
    """The notification transport could not deliver a message."""

    code = "TRANSPORT_FAILED"


class CheckAlreadyRunning(MonitorError):
    """A check was requested while another one is still in flight."""

    code = "CHECK_RUNNING"


def error_code(exc: BaseException) -> str:
    return getattr(exc, "code", MonitorError.code)
