# commerce-oauth: OAuth 2.0 authorization server for the commerce platform.
# Created: 2026-10-12

__version__ = "0.1.0"
