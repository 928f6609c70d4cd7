import logging
from collections.abc import Callable, Iterable
from typing import Any

from mcp.server.auth.middleware.bearer_auth import AuthenticatedUser
from starlette import status
from starlette.requests import HTTPConnection
from starlette.types import ASGIApp, Receive, Scope, Send
from starlette.websockets import WebSocketClose

from .challenge import challenge_response

logger = logging.getLogger(__name__)


class NormalizePathMiddleware:
    """ASGI middleware to normalize paths so /mcp and /mcp/ work identically.

    Strips trailing slashes from all paths (except root) before routing.
    """

    def __init__(self, app: Any) -> None:
        self.app = app

    async def __call__(self, scope: dict[str, Any], receive: Any, send: Any) -> Any:
        if scope["type"] == "http":
            path = scope.get("path", "/")
            # Normalize: strip trailing slash if path is not just "/"
            if path != "/" and path.endswith("/"):
                scope = dict(scope)
                scope["path"] = path.rstrip("/")
        await self.app(scope, receive, send)


class BearerChallengeMiddleware:
    """Answer unauthenticated HTTP requests with a 401 bearer challenge.

    Expects an authentication middleware in front of it (the mcp SDK's
    ``BearerAuthBackend`` under Starlette's ``AuthenticationMiddleware``) to
    have set ``scope["user"]``. Requests to ``public_paths`` are never
    challenged.
    Unauthenticated websocket handshakes are closed with code 1008 instead.
    """

    def __init__(
        self,
        app: ASGIApp,
        public_paths: Iterable[str],
        strict: bool = False,
    ) -> None:
        self.app = app
        self.public_paths = frozenset(p.rstrip("/") or "/" for p in public_paths)
        self.strict = strict

    def is_public(self, path: str) -> bool:
        return (path.rstrip("/") or "/") in self.public_paths

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] not in ("http", "websocket") or self.is_public(scope.get("path", "/")):
            await self.app(scope, receive, send)
            return

        if isinstance(scope.get("user"), AuthenticatedUser):
            await self.app(scope, receive, send)
            return

        if scope["type"] == "websocket":
            # Policy violation; the handshake is refused before accept
            logger.debug(f"Closing unauthenticated websocket on {scope.get('path', '/')}")
            await WebSocketClose(code=status.WS_1008_POLICY_VIOLATION)(scope, receive, send)
            return

        response = challenge_response(HTTPConnection(scope), strict=self.strict)
        await response(scope, receive, send)


def create_logging_middleware(app: Any) -> Callable[[dict[str, Any], Any, Any], Any]:
    """Create ASGI middleware to log request information for debugging discovery.

    Uses raw ASGI interface to avoid interfering with request body or streaming.
    """

    async def middleware(scope: dict[str, Any], receive: Any, send: Any) -> Any:
        if scope["type"] != "http":
            await app(scope, receive, send)
            return

        method = scope.get("method", "UNKNOWN")
        path = scope.get("path", "/")
        headers = {k.decode("latin-1"): v.decode("latin-1") for k, v in scope.get("headers", [])}

        logger.info(f"=== Incoming Request: {method} {path} ===")
        logger.info(f"Client: {scope.get('client')}")
        for name, value in headers.items():
            # Mask authorization header value for security
            if name.lower() == "authorization":
                logger.debug(f"  {name}: Bearer ***")
            else:
                logger.debug(f"  {name}: {value}")

        # Headers that decide the externally visible base URL
        logger.info(f"  Host: {headers.get('host', 'NOT SET')}")
        logger.info(f"  X-Forwarded-Proto: {headers.get('x-forwarded-proto', 'NOT SET')}")
        logger.info(f"  X-Forwarded-For: {headers.get('x-forwarded-for', 'NOT SET')}")
        logger.info(f"  Mcp-Session-Id: {headers.get('mcp-session-id', 'NOT SET')}")

        async def send_wrapper(message: dict[str, Any]) -> Any:
            if message["type"] == "http.response.start":
                status = message.get("status")
                logger.info(f"=== Response: {status} for {method} {path} ===")
                if status == 401:
                    response_headers = {
                        k.decode("latin-1"): v.decode("latin-1")
                        for k, v in message.get("headers", [])
                    }
                    logger.info(
                        f"WWW-Authenticate: {response_headers.get('www-authenticate', 'NOT SET')}"
                    )
            await send(message)

        await app(scope, receive, send_wrapper)

    return middleware
