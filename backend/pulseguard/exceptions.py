"""Errors raised inside the monitoring core.

Probe failures never surface as exceptions; they become offline/timeout
results. Persistence failures are plain SQLAlchemyError instances.
"""


class PulseGuardError(Exception):
    """Base class for errors raised by the monitoring core."""


class ConfigurationError(PulseGuardError):
    """Stored JSON or a pattern could not be parsed.

    Callers catch this locally, log it and carry on as if nothing was
    configured.
    """

    def __init__(self, message: str, source: str | None = None):
        super().__init__(message)
        self.source = source


class DeliveryError(PulseGuardError):
    """A notification channel could not be reached or rejected the request."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code
