"""
Error taxonomy shared by the stores, provider clients and the orchestrator.

Provider clients translate their own error shapes into these classes, so
nothing provider-specific crosses the orchestrator boundary.
"""

from typing import Optional


class GatewayError(Exception):
    """Base class. `code` is the stable name reported on failed jobs."""

    code = "GatewayError"
    http_status = 500

    def __init__(self, message: str, provider: Optional[str] = None, status_code: Optional[int] = None):
        self.message = message
        self.provider = provider
        self.status_code = status_code
        super().__init__(message)

    def to_dict(self) -> dict:
        data = {"code": self.code, "message": self.message}
        if self.provider:
            data["provider"] = self.provider
        if self.status_code is not None:
            data["statusCode"] = self.status_code
        return data


class ValidationError(GatewayError):
    """Missing or malformed request fields, detected before any network call."""

    code = "ValidationError"
    http_status = 400


class NotFound(GatewayError):
    code = "NotFound"
    http_status = 404


class AuthError(GatewayError):
    """Credential exchange failed."""

    code = "AuthError"
    http_status = 502


class ProviderError(GatewayError):
    """Non-2xx response or a failure reported by the provider itself."""

    code = "ProviderError"
    http_status = 502


class ProviderTimeout(GatewayError):
    code = "ProviderTimeout"
    http_status = 504


class MissingArtifact(GatewayError):
    """2xx response without the field we asked for."""

    code = "MissingArtifact"
    http_status = 502


class InvalidTransition(GatewayError):
    code = "InvalidTransition"
    http_status = 409
