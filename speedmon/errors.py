"""Application errors mapped to HTTP status codes by the API error handler."""

from __future__ import annotations


class AppError(Exception):
    """Base class for errors surfaced to API clients."""

    status_code: int = 500

    def __init__(self, message: str = "Internal server error", status_code: int | None = None) -> None:
        if status_code is not None:
            self.status_code = status_code
        self.message = message
        super().__init__(message)

    @property
    def code(self) -> str:
        return type(self).__name__


class NotFoundError(AppError):
    status_code = 404

    def __init__(self, message: str = "Not Found") -> None:
        super().__init__(message)


class ValidationError(AppError):
    status_code = 400

    def __init__(self, message: str = "Validation Error") -> None:
        super().__init__(message)
