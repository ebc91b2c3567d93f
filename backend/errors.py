"""Error types shared across the backend."""

from typing import Optional


class PioneerError(Exception):
    """Base error carrying a machine-readable code and an HTTP status."""

    code = "internal_error"
    status_code = 500

    def __init__(self, message: str = "", code: Optional[str] = None):
        super().__init__(message or self.code)
        if code:
            self.code = code


class RequestParseError(PioneerError):
    code = "invalid_request"
    status_code = 400


class LLMError(PioneerError):
    code = "llm_error"
    status_code = 502


class LLMAuthError(LLMError):
    """Credentials rejected; retrying cannot help."""

    code = "llm_auth_error"


class LLMRequestError(LLMError):
    """The provider rejected the request shape; retrying cannot help."""

    code = "llm_request_error"


class LLMTransientError(LLMError):
    """Rate limit, overload or network failure after retries ran out."""

    code = "llm_unavailable"
    status_code = 503


class LateApiError(PioneerError):
    code = "late_api_error"
    status_code = 502

    def __init__(self, message: str, status: int, body: str = "", retry_after: Optional[float] = None):
        super().__init__(message)
        self.status = status
        self.body = body
        self.retry_after = retry_after
