"""Application error taxonomy.

Every error carries the HTTP status, a machine-readable code and a message that
is safe to return to the caller. Internal detail belongs in the server log, never
in ``message``.
"""

from fastapi import Request
from fastapi.responses import JSONResponse


class FieldPostError(Exception):
    """Base exception for errors surfaced to API callers."""

    status_code: int = 500
    code: str = "INTERNAL_ERROR"
    message: str = "Internal server error"

    def __init__(
        self,
        message: str | None = None,
        *,
        code: str | None = None,
        headers: dict[str, str] | None = None,
    ):
        self.message = message or self.message
        self.code = code or self.code
        self.headers = headers or {}
        super().__init__(self.message)

    def body(self) -> dict:
        return {"detail": self.message, "code": self.code}


class AuthenticationRequired(FieldPostError):
    """No valid session."""

    status_code = 401
    code = "AUTH_REQUIRED"
    message = "Authentication required"


class AuthorizationDenied(FieldPostError):
    """Valid session without the required role or ownership."""

    status_code = 403
    code = "ACCESS_DENIED"
    message = "Access denied"


class BotDetected(FieldPostError):
    """Request blocked by bot detection (tagged apart from authorization)."""

    status_code = 403
    code = "BOT_DETECTED"
    message = "Access denied"

    def __init__(self):
        super().__init__(headers={"X-Bot-Blocked": "true"})


class RateLimited(FieldPostError):
    """Too many requests for the current window."""

    status_code = 429
    code = "RATE_LIMIT_EXCEEDED"
    message = "Too many requests. Please try again later."

    def __init__(self, message: str | None = None, *, retry_after: int = 0, headers=None):
        self.retry_after = retry_after
        super().__init__(message, headers=headers)

    def body(self) -> dict:
        return {**super().body(), "retry_after": self.retry_after}


class ValidationFailed(FieldPostError):
    """Malformed or missing input."""

    status_code = 400
    code = "VALIDATION_FAILED"
    message = "Invalid request"


class NotFound(FieldPostError):
    """Referenced resource does not exist."""

    status_code = 404
    code = "NOT_FOUND"
    message = "Not found"


class InvalidTransition(FieldPostError):
    """Submission is not in a state that allows the requested action."""

    status_code = 409
    code = "INVALID_TRANSITION"
    message = "Submission is not in a valid state for this action"


class ConfigurationError(FieldPostError):
    """Required server secret or setting is missing or malformed."""

    status_code = 500
    code = "CONFIGURATION_ERROR"
    message = "Server configuration error"


class UpstreamFailure(FieldPostError):
    """AI, email or social provider failed."""

    status_code = 500
    code = "UPSTREAM_FAILURE"
    message = "An upstream service failed"


class PersistenceError(FieldPostError):
    """The datastore could not be reached or rejected the write."""

    status_code = 500
    code = "PERSISTENCE_ERROR"
    message = "Failed to persist data"


async def fieldpost_error_handler(request: Request, exc: FieldPostError) -> JSONResponse:
    """Render a FieldPostError as a JSON response."""
    return JSONResponse(status_code=exc.status_code, content=exc.body(), headers=exc.headers)
