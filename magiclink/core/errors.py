"""API error classes.

HTTP status codes and machine-readable error codes for the auth endpoints.

WHY CUSTOM ERROR CLASSES:
- Consistent error response format across all endpoints
- Easy to map to HTTP status codes in exception handlers
- Domain rejections are translated here, never rendered directly
"""


class APIError(Exception):
    """Base class for API errors.

    All API errors have a code, message, and HTTP status.
    Subclasses set default status_code.

    Attributes:
        code: Machine-readable error code (e.g., "VALIDATION_ERROR").
        message: Human-readable error message.
        status_code: HTTP status code to return.
        details: Optional list of additional error details.
        headers: Optional extra response headers (e.g., Retry-After).
    """

    def __init__(
        self,
        code: str,
        message: str,
        status_code: int = 500,
        details: list[dict] | None = None,
        headers: dict[str, str] | None = None,
    ) -> None:
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details
        self.headers = headers
        super().__init__(message)


class ValidationError(APIError):
    """Field validation failed (400).

    Also used for every rejected magic link so the response never reveals
    which check failed.
    """

    def __init__(
        self,
        message: str,
        details: list[dict] | None = None,
    ) -> None:
        super().__init__(
            code="VALIDATION_ERROR",
            message=message,
            status_code=400,
            details=details,
        )


class ServiceUnavailableError(APIError):
    """Transient infrastructure failure (503).

    The only error class a client may retry. Carries a Retry-After hint.
    """

    def __init__(
        self,
        message: str = "Service temporarily unavailable",
        retry_after_seconds: int = 5,
    ) -> None:
        super().__init__(
            code="SERVICE_UNAVAILABLE",
            message=message,
            status_code=503,
            headers={"Retry-After": str(retry_after_seconds)},
        )
