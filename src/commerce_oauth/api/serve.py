"""API server for ``commerce-oauth serve``.

Builds the FastAPI application exposing the authorization, token, revocation
and introspection endpoints plus server metadata.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

logger = logging.getLogger(__name__)


@asynccontextmanager
async def _lifespan(app):
    from commerce_oauth.oauth2.server import get_oauth_server

    # Drop codes and tokens that expired while the server was down
    get_oauth_server().cleanup_expired()
    yield


def create_api_app():
    """Build the FastAPI application."""
    from fastapi import FastAPI
    from fastapi.middleware.cors import CORSMiddleware

    from commerce_oauth import __version__
    from commerce_oauth.api.v1 import mount_v1_routers
    from commerce_oauth.config import get_settings

    app = FastAPI(
        title="Commerce OAuth",
        description="OAuth 2.0 authorization server for third-party commerce apps.",
        version=__version__,
        lifespan=_lifespan,
    )

    # --- CORS -----------------------------------------------------------
    origins = get_settings().cors_allowed_origins
    if origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=origins,
            allow_credentials=False,
            allow_methods=["GET", "POST", "OPTIONS"],
            allow_headers=["Authorization", "Content-Type", "X-Tenant-Id"],
        )

    mount_v1_routers(app)

    return app


def run_api_server(
    host: str = "127.0.0.1",
    port: int = 8080,
    dev: bool = False,
) -> None:
    """Start the authorization server."""
    import uvicorn

    logger.info("Authorization server listening on http://%s:%d", host, port)
    logger.info("API docs: http://%s:%d/docs", host, port)

    if dev:
        import pathlib

        src_dir = str(pathlib.Path(__file__).resolve().parent.parent)
        uvicorn.run(
            "commerce_oauth.api.serve:create_api_app",
            factory=True,
            host=host,
            port=port,
            reload=True,
            reload_dirs=[src_dir],
            reload_includes=["*.py"],
            log_level="debug",
        )
    else:
        app = create_api_app()
        uvicorn.run(app, host=host, port=port)
