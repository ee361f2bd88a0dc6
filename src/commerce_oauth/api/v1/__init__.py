# API v1 router aggregation.
# Created: 2026-10-12
#
# mount_v1_routers(app) registers the protocol routers. OAuth endpoints live
# at the server root (/oauth/*, /.well-known/*) because clients discover them
# through RFC 8414 metadata rather than a versioned prefix.

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from fastapi import FastAPI

logger = logging.getLogger(__name__)

# Routers are imported lazily inside mount_v1_routers() to avoid circular imports.
_V1_ROUTERS: list[tuple[str, str, str]] = [
    # (module_path, attr_name, prefix)
    ("commerce_oauth.api.v1.oauth2", "router", ""),
]


def mount_v1_routers(app: FastAPI) -> None:
    """Mount all v1 routers on *app*. Import failures propagate."""
    import importlib

    from fastapi import APIRouter

    for module_path, attr_name, prefix in _V1_ROUTERS:
        mod = importlib.import_module(module_path)
        router: APIRouter = getattr(mod, attr_name)
        app.include_router(router, prefix=prefix)
        logger.debug("Mounted v1 router: %s", module_path)
