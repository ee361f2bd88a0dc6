# OAuth2 router: discovery, authorize, token, revoke and introspect endpoints.
# Created: 2026-10-12
#
# Thin HTTP mapping over AuthorizationServer. Each OAuthError becomes
# {error, error_description} with the status code of its kind.

from __future__ import annotations

import base64
import binascii
import logging
from urllib.parse import unquote_plus, urlencode

from fastapi import APIRouter, Query, Request
from fastapi.responses import JSONResponse, RedirectResponse
from pydantic import ValidationError

from commerce_oauth.api.v1.schemas.oauth2 import (
    ConsentResponse,
    IntrospectionResponse,
    OAuthErrorResponse,
    ScopesResponse,
    ServerMetadata,
    TokenRequest,
    TokenRequestWithToken,
    TokenResponse,
)
from commerce_oauth.oauth2.errors import OAuthError, OAuthErrorCode

logger = logging.getLogger(__name__)

router = APIRouter(tags=["OAuth2"])

_NO_STORE = {"Cache-Control": "no-store", "Pragma": "no-cache"}
_ERROR_RESPONSES = {
    400: {"model": OAuthErrorResponse},
    401: {"model": OAuthErrorResponse},
}
# Errors that mean the redirect URI itself cannot be trusted
_NO_REDIRECT_ERRORS = {OAuthErrorCode.UNKNOWN_CLIENT, OAuthErrorCode.REDIRECT_URI_NOT_ALLOWED}


def _error_response(error: OAuthError, basic_auth: bool = False) -> JSONResponse:
    headers = dict(_NO_STORE)
    if error.code is OAuthErrorCode.INVALID_CLIENT and basic_auth:
        headers["WWW-Authenticate"] = 'Basic realm="oauth"'
    return JSONResponse(status_code=error.status_code, content=error.to_dict(), headers=headers)


def _invalid_request(description: str) -> JSONResponse:
    return _error_response(OAuthError(OAuthErrorCode.INVALID_REQUEST, description))


def _redirect(redirect_uri: str, params: dict[str, str]) -> RedirectResponse:
    sep = "&" if "?" in redirect_uri else "?"
    return RedirectResponse(f"{redirect_uri}{sep}{urlencode(params)}", status_code=302)


async def _read_params(request: Request) -> dict[str, str] | None:
    """Request parameters from a form-encoded or JSON body. None if unreadable."""
    content_type = request.headers.get("content-type", "")
    if content_type.startswith("application/json"):
        try:
            data = await request.json()
        except ValueError:
            return None
        if not isinstance(data, dict):
            return None
        return {k: v for k, v in data.items() if v is not None}
    form = await request.form()
    return {k: v for k, v in form.items() if isinstance(v, str)}


def _basic_credentials(request: Request) -> tuple[str, str] | None:
    """Decode HTTP Basic client credentials (RFC 6749 §2.3.1)."""
    authorization = request.headers.get("authorization", "")
    scheme, _, encoded = authorization.partition(" ")
    if scheme.lower() != "basic" or not encoded:
        return None
    try:
        decoded = base64.b64decode(encoded.strip(), validate=True).decode()
    except (binascii.Error, UnicodeDecodeError):
        return None
    client_id, sep, client_secret = decoded.partition(":")
    if not sep:
        return None
    # RFC 6749 §2.3.1: both parts are form-urlencoded before base64
    return unquote_plus(client_id), unquote_plus(client_secret)


def _client_credentials(
    request: Request, body: TokenRequest | TokenRequestWithToken
) -> tuple[str | None, str | None, bool]:
    """Client credentials from HTTP Basic (preferred) or the body.

    Returns (client_id, client_secret, basic_attempted).
    """
    basic_attempted = request.headers.get("authorization", "").lower().startswith("basic")
    basic = _basic_credentials(request)
    if basic is not None:
        return basic[0], basic[1], True
    if basic_attempted:
        return None, None, True
    return body.client_id, body.client_secret, False


def _get_server():
    from commerce_oauth.oauth2.server import get_oauth_server

    return get_oauth_server()


# ---------------------------------------------------------------------------
# Discovery
# ---------------------------------------------------------------------------


@router.get("/.well-known/oauth-authorization-server", response_model=ServerMetadata)
async def server_metadata():
    """OAuth 2.0 authorization server metadata (RFC 8414)."""
    from commerce_oauth.config import get_settings

    return _get_server().metadata(get_settings().issuer)


@router.get("/oauth/scopes", response_model=ScopesResponse)
async def list_scopes():
    """All registered scopes, grouped by category, plus presets."""
    return _get_server().scopes_document()


# ---------------------------------------------------------------------------
# Authorization endpoint
# ---------------------------------------------------------------------------


@router.get("/oauth/authorize", response_model=ConsentResponse, responses=_ERROR_RESPONSES)
async def authorize(
    client_id: str = Query(...),
    redirect_uri: str = Query(...),
    response_type: str = Query("code"),
    scope: str = Query(""),
    state: str | None = Query(None, max_length=512),
    code_challenge: str | None = Query(None),
    code_challenge_method: str | None = Query(None),
):
    """Validate an authorization request and return the data for a consent screen."""
    request, error = _get_server().preview_authorization(
        client_id=client_id,
        redirect_uri=redirect_uri,
        scope=scope,
        code_challenge=code_challenge,
        code_challenge_method=code_challenge_method,
        state=state,
    )
    if error:
        return _error_response(error)
    if response_type != "code":
        return _invalid_request("response_type must be 'code'")

    server = _get_server()
    return ConsentResponse(
        client=request.client.consent_view(),
        scopes=server.registry.describe(request.scopes),
        redirect_uri=request.redirect_uri,
        state=state,
        code_challenge_method=request.pkce_method.value if request.pkce_challenge else None,
    )


@router.post("/oauth/authorize", responses=_ERROR_RESPONSES)
async def authorize_decision(request: Request):
    """Process the consent decision and redirect back to the client.

    Unknown clients and unregistered redirect URIs are answered with a JSON
    error and never redirected to.
    """
    params = await _read_params(request)
    if params is None:
        return _invalid_request("Malformed request body")

    client_id = params.get("client_id", "")
    redirect_uri = params.get("redirect_uri", "")
    scope = params.get("scope", "")
    state = params.get("state") or None
    code_challenge = params.get("code_challenge") or None
    code_challenge_method = params.get("code_challenge_method") or None
    tenant_id = params.get("tenant_id") or request.headers.get("x-tenant-id", "")
    decision = params.get("decision", "deny")

    server = _get_server()
    _, error = server.preview_authorization(
        client_id=client_id,
        redirect_uri=redirect_uri,
        scope=scope,
        code_challenge=code_challenge,
        code_challenge_method=code_challenge_method,
        state=state,
    )
    if error and error.code in _NO_REDIRECT_ERRORS:
        return _error_response(error)

    def _redirect_error(err: OAuthError) -> RedirectResponse:
        out = err.to_dict()
        if state:
            out["state"] = state
        return _redirect(redirect_uri, out)

    if error:
        return _redirect_error(error)

    if decision != "approve":
        return _redirect_error(
            OAuthError(OAuthErrorCode.ACCESS_DENIED, "User denied the authorization request")
        )

    result, error = server.authorize(
        client_id=client_id,
        redirect_uri=redirect_uri,
        scope=scope,
        tenant_id=tenant_id,
        code_challenge=code_challenge,
        code_challenge_method=code_challenge_method,
        state=state,
    )
    if error:
        return _redirect_error(error)

    out = {"code": result.code}
    if state:
        out["state"] = state
    return _redirect(redirect_uri, out)


# ---------------------------------------------------------------------------
# Token endpoint
# ---------------------------------------------------------------------------


@router.post(
    "/oauth/token",
    responses={200: {"model": TokenResponse}, **_ERROR_RESPONSES},
)
async def token(request: Request):
    """Exchange an authorization code or refresh token for a new token pair."""
    params = await _read_params(request)
    if params is None:
        return _invalid_request("Malformed request body")
    try:
        body = TokenRequest.model_validate(params)
    except ValidationError:
        return _invalid_request("Malformed token request")

    if not body.grant_type:
        return _invalid_request("grant_type is required")
    if body.grant_type not in ("authorization_code", "refresh_token"):
        return _error_response(
            OAuthError(
                OAuthErrorCode.UNSUPPORTED_GRANT_TYPE,
                f"Grant type '{body.grant_type}' is not supported",
            )
        )

    client_id, client_secret, basic = _client_credentials(request, body)
    server = _get_server()

    if body.grant_type == "authorization_code":
        if not body.code:
            return _invalid_request("code is required")
        if not body.redirect_uri:
            return _invalid_request("redirect_uri is required")
        result, error = server.exchange_code(
            code=body.code,
            client_id=client_id,
            client_secret=client_secret,
            redirect_uri=body.redirect_uri,
            code_verifier=body.code_verifier,
        )
    else:
        if not body.refresh_token:
            return _invalid_request("refresh_token is required")
        result, error = server.refresh_token(
            refresh_token=body.refresh_token,
            client_id=client_id,
            client_secret=client_secret,
            scope=body.scope,
        )

    if error:
        logger.info("Token request (%s) rejected: %s", body.grant_type, error.code.value)
        return _error_response(error, basic_auth=basic)
    return JSONResponse(content=TokenResponse(**result).model_dump(), headers=_NO_STORE)


# ---------------------------------------------------------------------------
# Revocation and introspection
# ---------------------------------------------------------------------------


async def _token_body(request: Request) -> TokenRequestWithToken | JSONResponse:
    params = await _read_params(request)
    if params is None:
        return _invalid_request("Malformed request body")
    try:
        body = TokenRequestWithToken.model_validate(params)
    except ValidationError:
        return _invalid_request("Malformed request")
    if not body.token:
        return _invalid_request("token is required")
    return body


@router.post("/oauth/revoke", responses=_ERROR_RESPONSES)
async def revoke(request: Request):
    """Revoke a token (RFC 7009). Always 200 once the client is authenticated."""
    body = await _token_body(request)
    if isinstance(body, JSONResponse):
        return body

    client_id, client_secret, basic = _client_credentials(request, body)
    error = _get_server().revoke(
        token=body.token,
        client_id=client_id,
        client_secret=client_secret,
        token_type_hint=body.token_type_hint,
    )
    if error:
        return _error_response(error, basic_auth=basic)
    return JSONResponse(content={}, status_code=200)


@router.post(
    "/oauth/introspect",
    responses={200: {"model": IntrospectionResponse}, **_ERROR_RESPONSES},
)
async def introspect(request: Request):
    """Introspect a token (RFC 7662)."""
    body = await _token_body(request)
    if isinstance(body, JSONResponse):
        return body

    client_id, client_secret, basic = _client_credentials(request, body)
    result, error = _get_server().introspect(
        token=body.token,
        client_id=client_id,
        client_secret=client_secret,
        token_type_hint=body.token_type_hint,
    )
    if error:
        return _error_response(error, basic_auth=basic)
    content = IntrospectionResponse(**result).model_dump(exclude_none=True)
    return JSONResponse(content=content, headers=_NO_STORE)
