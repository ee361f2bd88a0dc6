# OAuth2 schemas.
# Created: 2026-10-12

from __future__ import annotations

from pydantic import BaseModel


class TokenRequest(BaseModel):
    """Token endpoint parameters (form or JSON body)."""

    grant_type: str | None = None
    code: str | None = None
    redirect_uri: str | None = None
    code_verifier: str | None = None
    refresh_token: str | None = None
    scope: str | None = None
    client_id: str | None = None
    client_secret: str | None = None


class TokenRequestWithToken(BaseModel):
    """Revocation / introspection request."""

    token: str | None = None
    token_type_hint: str | None = None
    client_id: str | None = None
    client_secret: str | None = None


class TokenResponse(BaseModel):
    """OAuth2 token response."""

    access_token: str
    refresh_token: str
    token_type: str = "Bearer"
    expires_in: int
    scope: str


class IntrospectionResponse(BaseModel):
    """RFC 7662 response; only `active` is present for inactive tokens."""

    active: bool
    scope: str | None = None
    client_id: str | None = None
    token_type: str | None = None
    exp: int | None = None
    iat: int | None = None


class OAuthErrorResponse(BaseModel):
    error: str
    error_description: str


class ConsentClient(BaseModel):
    name: str
    description: str = ""
    website: str = ""


class ConsentScope(BaseModel):
    scope: str
    description: str
    category: str


class ConsentResponse(BaseModel):
    """What a consent screen needs to render an authorization request."""

    client: ConsentClient
    scopes: list[ConsentScope]
    redirect_uri: str
    state: str | None = None
    code_challenge_method: str | None = None


class ScopesResponse(BaseModel):
    scopes: dict[str, ConsentScope]
    grouped: dict[str, dict]
    presets: dict[str, dict]


class ServerMetadata(BaseModel):
    """RFC 8414 authorization server metadata."""

    issuer: str
    authorization_endpoint: str
    token_endpoint: str
    revocation_endpoint: str
    introspection_endpoint: str
    scopes_supported: list[str]
    response_types_supported: list[str]
    grant_types_supported: list[str]
    token_endpoint_auth_methods_supported: list[str]
    revocation_endpoint_auth_methods_supported: list[str]
    introspection_endpoint_auth_methods_supported: list[str]
    code_challenge_methods_supported: list[str]
