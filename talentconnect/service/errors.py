from __future__ import annotations

from typing import Optional


class ServiceError(Exception):
    """A failure the API reports to the client as an error envelope.

    ``status_code`` and ``error_code`` default per subclass; a call site passes
    ``error_code`` when clients must tell apart failures sharing a status
    (``USER_EXISTS`` vs ``CONFLICT``, ``WEAK_PASSWORD`` vs ``VALIDATION_ERROR``).
    """

    status_code: int = 400
    error_code: str = "VALIDATION_ERROR"

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        detail: Optional[dict | list] = None,
        error_code: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.detail = detail
        if status_code is not None:
            self.status_code = status_code
        if error_code is not None:
            self.error_code = error_code

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.error_code}, {self.message!r})"


class ValidationError(ServiceError):
    """Input was well-formed JSON but broke a business rule."""


class AuthenticationError(ServiceError):
    """No identity could be established from the request."""

    status_code = 401
    error_code = "UNAUTHORIZED"


class ForbiddenError(ServiceError):
    """The caller is known but may not act on this resource."""

    status_code = 403
    error_code = "FORBIDDEN"


class NotFoundError(ServiceError):
    status_code = 404
    error_code = "NOT_FOUND"


class ConflictError(ServiceError):
    status_code = 409
    error_code = "CONFLICT"


class RateLimitedError(ServiceError):
    """The client used up its window; ``retry_after`` is seconds to reset."""

    status_code = 429
    error_code = "RATE_LIMIT_EXCEEDED"

    def __init__(
        self, message: str, *, retry_after: int, limit: Optional[int] = None, **kwargs
    ) -> None:
        super().__init__(message, **kwargs)
        self.retry_after = max(int(retry_after), 1)
        self.limit = limit


class ServerError(ServiceError):
    status_code = 500
    error_code = "INTERNAL_SERVER_ERROR"
