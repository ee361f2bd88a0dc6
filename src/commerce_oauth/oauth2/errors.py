# OAuth2 error taxonomy.
# Created: 2026-10-12
#
# Service operations return (result, error) pairs; exactly one side is None.
# The HTTP layer turns an OAuthError into {error, error_description} with the
# status code attached to its kind.

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class OAuthErrorCode(str, Enum):
    """Error codes from RFC 6749 / 7009 / 7662, plus the authorize-time kinds."""

    INVALID_REQUEST = "invalid_request"
    INVALID_CLIENT = "invalid_client"
    INVALID_GRANT = "invalid_grant"
    INVALID_SCOPE = "invalid_scope"
    UNSUPPORTED_GRANT_TYPE = "unsupported_grant_type"
    UNKNOWN_CLIENT = "unknown_client"
    REDIRECT_URI_NOT_ALLOWED = "redirect_uri_not_allowed"
    ACCESS_DENIED = "access_denied"
    SERVER_ERROR = "server_error"


_STATUS_CODES: dict[OAuthErrorCode, int] = {
    OAuthErrorCode.INVALID_CLIENT: 401,
    OAuthErrorCode.ACCESS_DENIED: 403,
    OAuthErrorCode.SERVER_ERROR: 500,
}


@dataclass(frozen=True)
class OAuthError:
    """A protocol violation returned to the caller."""

    code: OAuthErrorCode
    description: str

    @property
    def status_code(self) -> int:
        return _STATUS_CODES.get(self.code, 400)

    def to_dict(self) -> dict[str, str]:
        return {"error": self.code.value, "error_description": self.description}

    def __str__(self) -> str:
        return f"{self.code.value}: {self.description}"


def invalid_client() -> OAuthError:
    return OAuthError(OAuthErrorCode.INVALID_CLIENT, "Client authentication failed")


def invalid_code() -> OAuthError:
    return OAuthError(OAuthErrorCode.INVALID_GRANT, "Authorization code is invalid or expired")


def invalid_refresh_token() -> OAuthError:
    return OAuthError(OAuthErrorCode.INVALID_GRANT, "Refresh token is invalid or expired")
