"""Shared error definitions for the completion gateway.

Every failure that can reach a caller is a ``GatewayError`` subclass carrying
its HTTP status, error type and (optionally) the provider tag. The HTTP layer
turns these into the JSON error envelope::

    {"error": {"message": ..., "type": ..., "provider": ..., "code": ...}}
"""

from __future__ import annotations

from typing import Any

# Error type mapping from upstream status to OpenAI-style error type
ERROR_TYPE_MAP = {
    400: "invalid_request_error",
    401: "authentication_error",
    403: "permission_error",
    404: "not_found_error",
    429: "rate_limit_error",
    500: "api_error",
    502: "api_error",
    503: "api_error",
    504: "api_error",
}

EXPERIMENTAL_PROVIDER_TAG = "volces-experimental"
ALL_FAILED_PROVIDER_TAG = "all_failed"


class GatewayError(Exception):
    """Base class for errors surfaced to gateway callers."""

    status_code: int = 500
    error_type: str = "api_error"

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        error_type: str | None = None,
        provider: str | None = None,
        code: str | None = None,
    ):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if error_type is not None:
            self.error_type = error_type
        self.provider = provider
        self.code = code

    def to_dict(self) -> dict[str, Any]:
        """Return the JSON error envelope for this error."""
        error: dict[str, Any] = {"message": self.message, "type": self.error_type}
        if self.provider:
            error["provider"] = self.provider
        if self.code:
            error["code"] = self.code
        return {"error": error}


class InvalidRequestError(GatewayError):
    """Request body failed validation."""

    status_code = 400
    error_type = "invalid_request_error"


class ConfigurationError(GatewayError):
    """No provider could be resolved for the request."""

    status_code = 500
    error_type = "config_error"


class MissingCredentialError(GatewayError):
    """Experimental route called without a usable credential."""

    status_code = 401
    error_type = "authentication_error"

    def __init__(self, message: str = "Missing API key for experimental model"):
        super().__init__(message, provider=EXPERIMENTAL_PROVIDER_TAG)


class IneligibleModelError(GatewayError):
    """Model id is not on the experimental allow-list."""

    status_code = 400
    error_type = "invalid_request_error"

    def __init__(self, model: str):
        super().__init__(
            f"Model {model} is not marked as experimental",
            provider=EXPERIMENTAL_PROVIDER_TAG,
            code="model_not_experimental",
        )
        self.model = model


class CircuitOpenError(GatewayError):
    """Experimental model temporarily blocked by its circuit breaker."""

    status_code = 503
    error_type = "api_error"

    def __init__(self, model: str):
        super().__init__(
            f"Experimental model {model} is temporarily circuit-open, retry later",
            provider=EXPERIMENTAL_PROVIDER_TAG,
            code="circuit_open",
        )
        self.model = model


class ExperimentalCallError(GatewayError):
    """Upstream failure on the experimental route (never retried)."""

    def __init__(self, message: str, status_code: int | None = None):
        status = status_code or 500
        super().__init__(
            message,
            status_code=status,
            error_type=ERROR_TYPE_MAP.get(status, "api_error"),
            provider=EXPERIMENTAL_PROVIDER_TAG,
        )


class AllProvidersFailedError(GatewayError):
    """Every provider in the failover chain failed.

    Only the last observed failure is surfaced; ``attempted`` lists the
    provider ids in the order they were tried.
    """

    def __init__(self, message: str, status_code: int | None = None, attempted: list[str] | None = None):
        status = status_code or 500
        super().__init__(
            message,
            status_code=status,
            error_type=ERROR_TYPE_MAP.get(status, "api_error"),
            provider=ALL_FAILED_PROVIDER_TAG,
        )
        self.attempted = attempted or []
