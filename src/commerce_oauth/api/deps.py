# Shared FastAPI dependencies for resource endpoints.
# Created: 2026-10-12

from __future__ import annotations

from fastapi import HTTPException, Request


def _bearer_error(status_code: int, error: str, description: str) -> HTTPException:
    return HTTPException(
        status_code=status_code,
        detail={"error": error, "error_description": description},
        headers={"WWW-Authenticate": f'Bearer error="{error}"'},
    )


def require_oauth_scope(*scopes: str):
    """FastAPI dependency that checks an OAuth access token's scopes.

    Usage::

        @router.get("/orders", dependencies=[Depends(require_oauth_scope("orders.read"))])
        async def list_orders(...): ...

    The token must be active and grant at least one of *scopes*, taking
    implication (``orders.manage``, ``read_all``, ``manage_all``) into account.
    The token record is exposed as ``request.state.oauth_token``.
    """

    async def _check(request: Request) -> None:
        from commerce_oauth.oauth2.server import get_oauth_server

        server = get_oauth_server()
        token = server.validate_token(request.headers.get("authorization"))
        if token is None:
            raise _bearer_error(401, "invalid_token", "Access token is missing or invalid")

        if scopes and not any(server.token_has_scope(token, s) for s in scopes):
            raise _bearer_error(
                403,
                "insufficient_scope",
                f"Token missing required scope: {' or '.join(sorted(scopes))}",
            )
        request.state.oauth_token = token

    return _check
