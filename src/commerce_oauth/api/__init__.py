# HTTP layer for the authorization server.
# Created: 2026-10-12
#
# FastAPI routers live under api/v1/; deps.py holds the resource-server
# dependency that gates endpoints on OAuth scopes.
