"""Error types raised by the services and converted to JSON at the API boundary."""
from typing import Optional


class AppError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(AppError):
    """Missing or malformed required input."""
    status_code = 400


class NotFound(AppError):
    """Entity is absent or not owned by the caller."""
    status_code = 404


class UpstreamFormatError(AppError):
    """The completion reply did not match the structured-output contract."""
    status_code = 500

    def __init__(self, message: str, raw: Optional[str] = None):
        super().__init__(message)
        self.raw = raw


class UpstreamError(AppError):
    """Transport or auth failure talking to the completion endpoint."""
    status_code = 500
