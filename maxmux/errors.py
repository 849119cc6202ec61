"""Error taxonomy for the gateway.

Request-scoped errors are mapped to Anthropic-style JSON envelopes so client
tooling built against the upstream's error format keeps working.
"""

from fastapi.responses import JSONResponse


class MaxmuxError(Exception):
    """Base class for all gateway errors."""


class ConfigurationError(MaxmuxError):
    """Settings could not be loaded. Fatal at startup."""


class AuthenticationError(MaxmuxError):
    """Presented virtual key is missing or not accepted."""

    status_code = 401
    message = "invalid virtual key"
    error_type = "authentication_error"


class UpstreamError(MaxmuxError):
    """No response could be obtained from the upstream."""

    status_code = 502
    message = "upstream error"
    error_type = "proxy_error"


class StreamingInterruptionError(MaxmuxError):
    """Upstream dropped after response headers were committed to the caller."""


def error_envelope(message: str, error_type: str) -> dict:
    return {"error": {"message": message, "type": error_type}}


def error_response(status_code: int, message: str, error_type: str) -> JSONResponse:
    """Build the compact JSON error body returned for rejected or failed requests."""
    return JSONResponse(status_code=status_code, content=error_envelope(message, error_type))
