"""Commerce OAuth entry point.

Changes:
  - 2026-10-16: Added `cleanup` and `scopes` subcommands.
  - 2026-10-14: Client administration subcommands (create-client, rotate-secret,
    suspend, activate).
  - 2026-10-12: `serve` starts the authorization server with Rich logging.
"""

import argparse
import logging
import sys
from importlib.metadata import PackageNotFoundError
from importlib.metadata import version as get_version

from commerce_oauth.config import get_settings
from commerce_oauth.logging_setup import setup_logging

logger = logging.getLogger(__name__)


def _package_version() -> str:
    try:
        return get_version("commerce-oauth")
    except PackageNotFoundError:
        from commerce_oauth import __version__

        return __version__


def _cmd_serve(args: argparse.Namespace) -> int:
    from commerce_oauth.api.serve import run_api_server

    settings = get_settings()
    run_api_server(
        host=args.host or settings.host,
        port=args.port or settings.port,
        dev=args.dev,
    )
    return 0


def _cmd_create_client(args: argparse.Namespace) -> int:
    from commerce_oauth.oauth2.server import get_oauth_server

    server = get_oauth_server()
    try:
        client, secret = server.clients.create(
            name=args.name,
            redirect_uris=args.redirect_uri,
            allowed_scopes=args.scope,
            description=args.description,
            website=args.website,
        )
    except ValueError as exc:
        logger.error("Could not register client: %s", exc)
        return 2

    print(f"client_id:     {client.client_id}")
    print(f"client_secret: {secret}")
    print("Store the secret now. It cannot be shown again.")
    return 0


def _cmd_rotate_secret(args: argparse.Namespace) -> int:
    from commerce_oauth.oauth2.server import get_oauth_server

    server = get_oauth_server()
    secret = server.clients.rotate_secret(args.client_id)
    if secret is None:
        logger.error("Unknown client: %s", args.client_id)
        return 1
    server.audit.log_oauth_event(
        action="secret_rotated", client_id=args.client_id, target=f"client:{args.client_id}"
    )
    print(f"client_secret: {secret}")
    print("The previous secret no longer works.")
    return 0


def _cmd_set_status(args: argparse.Namespace) -> int:
    from commerce_oauth.oauth2.models import ClientStatus
    from commerce_oauth.oauth2.server import get_oauth_server

    status = ClientStatus.SUSPENDED if args.command == "suspend" else ClientStatus.ACTIVE
    server = get_oauth_server()
    client = server.clients.set_status(args.client_id, status)
    if client is None:
        logger.error("Unknown client: %s", args.client_id)
        return 1
    server.audit.log_oauth_event(
        action=f"client_{status.value}",
        client_id=args.client_id,
        target=f"client:{args.client_id}",
    )
    print(f"{client.client_id} is now {client.status.value}")
    return 0


def _cmd_scopes(args: argparse.Namespace) -> int:
    from rich.console import Console
    from rich.table import Table

    from commerce_oauth.oauth2.scopes import default_registry

    registry = default_registry()
    table = Table(title="Scopes")
    table.add_column("Scope")
    table.add_column("Category")
    table.add_column("Description")
    for row in registry.all().values():
        table.add_row(row["scope"], row["category"], row["description"])
    Console().print(table)
    return 0


def _cmd_cleanup(args: argparse.Namespace) -> int:
    from commerce_oauth.oauth2.server import get_oauth_server

    get_oauth_server().cleanup_expired()
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="commerce-oauth",
        description="OAuth 2.0 authorization server for commerce apps",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  commerce-oauth serve                         Start the authorization server
  commerce-oauth create-client "My App" \\
      --redirect-uri https://app.example/cb --scope orders.read
  commerce-oauth rotate-secret app_0123abcd    Issue a new client secret
  commerce-oauth suspend app_0123abcd          Block a client
""",
    )
    parser.add_argument(
        "--version", "-v", action="version", version=f"%(prog)s {_package_version()}"
    )
    parser.add_argument("--log-level", default=None, help="Override the configured log level")
    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Run the authorization server")
    serve.add_argument("--host", default=None, help="Host to bind (default from settings)")
    serve.add_argument("--port", "-p", type=int, default=None, help="Port to bind")
    serve.add_argument("--dev", action="store_true", help="Development mode with auto-reload")
    serve.set_defaults(func=_cmd_serve)

    create = sub.add_parser("create-client", help="Register a client application")
    create.add_argument("name")
    create.add_argument(
        "--redirect-uri", action="append", required=True, help="Allowed redirect URI"
    )
    create.add_argument("--scope", action="append", required=True, help="Allowed scope")
    create.add_argument("--description", default="")
    create.add_argument("--website", default="")
    create.set_defaults(func=_cmd_create_client)

    rotate = sub.add_parser("rotate-secret", help="Replace a client's secret")
    rotate.add_argument("client_id")
    rotate.set_defaults(func=_cmd_rotate_secret)

    for name, help_text in (("suspend", "Suspend a client"), ("activate", "Reactivate a client")):
        p = sub.add_parser(name, help=help_text)
        p.add_argument("client_id")
        p.set_defaults(func=_cmd_set_status)

    sub.add_parser("scopes", help="List registered scopes").set_defaults(func=_cmd_scopes)
    sub.add_parser("cleanup", help="Remove expired codes and tokens").set_defaults(
        func=_cmd_cleanup
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)
    setup_logging(level=args.log_level or get_settings().log_level)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
