import datetime
import logging
import sys
from typing import Any

import click
import uvicorn
from dotenv import load_dotenv
from mcp.server.auth.middleware.auth_context import AuthContextMiddleware, get_access_token
from mcp.server.auth.middleware.bearer_auth import BearerAuthBackend
from mcp.server.auth.provider import AccessToken, TokenVerifier
from mcp.server.fastmcp.server import FastMCP
from mcp.server.transport_security import TransportSecuritySettings
from pydantic import ValidationError
from starlette.middleware.authentication import AuthenticationMiddleware
from starlette.middleware.cors import CORSMiddleware
from starlette.types import ASGIApp

from .metadata import metadata_routes
from .middleware import BearerChallengeMiddleware, NormalizePathMiddleware, create_logging_middleware
from .settings import ResourceServerSettings
from .token_verifier import IntrospectionTokenVerifier

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def describe_access_token(access_token: AccessToken | None) -> dict[str, Any]:
    """Summarize the caller's access token for the whoami tool."""
    if access_token is None:
        return {"authenticated": False}
    return {
        "authenticated": True,
        "client_id": access_token.client_id,
        "scopes": list(access_token.scopes),
        "expires_at": access_token.expires_at,
        "resource": access_token.resource,
    }


def create_resource_server(settings: ResourceServerSettings) -> FastMCP:
    """
    Create the Todo MCP server with its public discovery routes.

    Authentication is not configured on FastMCP itself; the challenge for
    unauthenticated requests is issued by the middleware stack built in
    ``create_app``.
    """
    app = FastMCP(
        name=settings.resource_name,
        instructions="Todo MCP Server with OAuth-protected tools",
        host=settings.host,
        port=settings.port,
        streamable_http_path=settings.mcp_path,
        transport_security=TransportSecuritySettings(
            enable_dns_rebinding_protection=bool(settings.allowed_hosts),
            allowed_hosts=settings.allowed_hosts,
        ),
    )

    # Discovery document, exempt from the auth gate
    for route in metadata_routes(settings):
        app.custom_route(route.path, methods=["GET"])(route.endpoint)

    @app.tool()
    async def get_time() -> dict[str, Any]:
        """Get the current server time."""
        now = datetime.datetime.now(datetime.timezone.utc)
        return {
            "current_time": now.isoformat(),
            "timezone": "UTC",
            "timestamp": now.timestamp(),
            "formatted": now.strftime("%Y-%m-%d %H:%M:%S"),
        }

    @app.tool()
    async def whoami() -> dict[str, Any]:
        """Return the OAuth client and scopes of the access token used for this call."""
        return describe_access_token(get_access_token())

    return app


def create_token_verifier(settings: ResourceServerSettings) -> IntrospectionTokenVerifier:
    return IntrospectionTokenVerifier(
        introspection_endpoint=settings.introspection_url,
        server_url=settings.mcp_url or "",
        validate_resource=settings.validate_resource,
    )


def create_app(
    settings: ResourceServerSettings, token_verifier: TokenVerifier, app: ASGIApp
) -> ASGIApp:
    """
    Wrap ``app`` with the middleware stack, outermost last:

    path normalization, optional request logging, CORS, bearer authentication,
    the 401 challenge gate, and the auth context used by tools.
    """
    app = AuthContextMiddleware(app)
    app = BearerChallengeMiddleware(
        app,
        public_paths=settings.resource_metadata_paths,
        strict=settings.strict_challenge,
    )
    app = AuthenticationMiddleware(app, backend=BearerAuthBackend(token_verifier))
    # Browser-based MCP clients must be able to read the challenge header
    app = CORSMiddleware(
        app,
        allow_origins=settings.cors_allow_origins,
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=["WWW-Authenticate", "Mcp-Session-Id"],
    )
    if settings.log_requests:
        app = create_logging_middleware(app)
    return NormalizePathMiddleware(app)


def configure_logging(level: str) -> None:
    """Configure logging with timestamps for all loggers including uvicorn."""
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT)

    for logger_name in ["uvicorn", "uvicorn.error", "uvicorn.access"]:
        uv_logger = logging.getLogger(logger_name)
        uv_logger.handlers = []
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        uv_logger.addHandler(handler)


@click.command()
@click.option("--host", help="Interface to bind (env MCP_HOST)")
@click.option("--port", type=int, help="Port to listen on (env MCP_PORT)")
@click.option("--auth-server", help="Authorization Server base URL (env MCP_AUTH_SERVER)")
@click.option("--mcp-url", help="Fixed public URL of the MCP endpoint (env MCP_MCP_URL)")
@click.option(
    "--resource-url-mode",
    type=click.Choice(["dynamic", "static"]),
    help="Derive the resource URL per request or use --mcp-url (env MCP_RESOURCE_URL_MODE)",
)
@click.option(
    "--strict-challenge",
    is_flag=True,
    help="Answer rejected tokens with invalid_token instead of invalid_request",
)
@click.option("--log-requests", is_flag=True, help="Log every incoming request")
@click.option("--log-level", help="Logging level (env MCP_LOG_LEVEL)")
def main(**options: Any) -> None:
    """Run the Todo MCP resource server."""
    load_dotenv()
    # Unset options and unset flags fall back to the environment
    overrides = {
        name: value for name, value in options.items() if value is not None and value is not False
    }

    try:
        settings = ResourceServerSettings(**overrides)
    except ValidationError as e:
        configure_logging("INFO")
        logger.error(f"Configuration error: {e}")
        logger.error("Make sure MCP_AUTH_SERVER (or --auth-server) is set")
        sys.exit(1)

    configure_logging(settings.log_level)

    mcp_server = create_resource_server(settings)
    app = create_app(settings, create_token_verifier(settings), mcp_server.streamable_http_app())

    logger.info("=" * 60)
    logger.info(f"MCP Resource Server listening on {settings.host}:{settings.port}")
    logger.info(f"Authorization Server: {settings.auth_server}")
    logger.info(f"Resource URL mode: {settings.resource_url_mode}")
    if settings.mcp_url:
        logger.info(f"Configured MCP URL: {settings.mcp_url}")
    logger.info("=" * 60)

    try:
        # Forwarded headers are interpreted by the base URL resolver, not uvicorn
        uvicorn.run(
            app,
            host=settings.host,
            port=settings.port,
            log_level=settings.log_level.lower(),
            proxy_headers=False,
            access_log=True,
        )
    except Exception as e:
        logger.error(f"Server error: {e}")
        logger.exception("Exception details:")
        sys.exit(1)
    logger.info("Server stopped")


if __name__ == "__main__":
    main()
