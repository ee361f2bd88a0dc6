# OAuth 2.0 authorization server core.
# Created: 2026-10-12
#
# Scope registry, client/code/token stores and the AuthorizationServer that
# enforces the protocol rules on top of them. Nothing here knows about HTTP.
