"""Unit tests for ASGI middleware."""

import json
import logging
from typing import Any
from unittest.mock import AsyncMock

import pytest
from mcp.server.auth.middleware.bearer_auth import AuthenticatedUser
from mcp.server.auth.provider import AccessToken
from starlette.authentication import UnauthenticatedUser

from todo_mcp.middleware import (
    BearerChallengeMiddleware,
    NormalizePathMiddleware,
    create_logging_middleware,
)

PUBLIC_PATHS = [
    "/.well-known/oauth-protected-resource",
    "/.well-known/oauth-protected-resource/mcp",
]


def http_scope(path: str, headers: dict[str, str] | None = None, **extra: Any) -> dict[str, Any]:
    scope: dict[str, Any] = {
        "type": "http",
        "method": "GET",
        "path": path,
        "query_string": b"",
        "scheme": "http",
        "server": ("todo-server", 8080),
        "headers": [(k.encode(), v.encode()) for k, v in (headers or {}).items()],
    }
    scope.update(extra)
    return scope


class ResponseRecorder:
    """Collects ASGI messages sent by the app under test."""

    def __init__(self) -> None:
        self.messages: list[dict[str, Any]] = []

    async def __call__(self, message: dict[str, Any]) -> None:
        self.messages.append(message)

    @property
    def status(self) -> int:
        return self.messages[0]["status"]

    @property
    def headers(self) -> dict[str, str]:
        return {k.decode(): v.decode() for k, v in self.messages[0]["headers"]}

    @property
    def body(self) -> dict[str, Any]:
        return json.loads(b"".join(m.get("body", b"") for m in self.messages[1:]))


class TestNormalizePathMiddleware:
    """Tests for the NormalizePathMiddleware ASGI middleware."""

    @pytest.fixture
    def mock_app(self) -> AsyncMock:
        """Create a mock ASGI app."""
        return AsyncMock()

    @pytest.fixture
    def middleware(self, mock_app: AsyncMock) -> NormalizePathMiddleware:
        return NormalizePathMiddleware(mock_app)

    @pytest.mark.asyncio
    async def test_strips_trailing_slash_from_path(self, middleware, mock_app):
        """Test that /mcp/ is routed as /mcp."""
        await middleware({"type": "http", "path": "/mcp/"}, AsyncMock(), AsyncMock())

        modified_scope = mock_app.call_args[0][0]
        assert modified_scope["path"] == "/mcp"

    @pytest.mark.asyncio
    async def test_strips_trailing_slash_from_well_known_path(self, middleware, mock_app):
        await middleware(
            {"type": "http", "path": "/.well-known/oauth-protected-resource/"},
            AsyncMock(),
            AsyncMock(),
        )

        assert mock_app.call_args[0][0]["path"] == "/.well-known/oauth-protected-resource"

    @pytest.mark.asyncio
    async def test_preserves_root_path(self, middleware, mock_app):
        await middleware({"type": "http", "path": "/"}, AsyncMock(), AsyncMock())

        assert mock_app.call_args[0][0]["path"] == "/"

    @pytest.mark.asyncio
    async def test_passes_through_non_http_requests(self, middleware, mock_app):
        """Test that lifespan and websocket scopes pass through unchanged."""
        await middleware({"type": "websocket", "path": "/ws/"}, AsyncMock(), AsyncMock())

        assert mock_app.call_args[0][0]["path"] == "/ws/"

    @pytest.mark.asyncio
    async def test_does_not_modify_original_scope(self, middleware):
        original_scope: dict[str, Any] = {"type": "http", "path": "/mcp/"}

        await middleware(original_scope, AsyncMock(), AsyncMock())

        assert original_scope["path"] == "/mcp/"


class TestBearerChallengeMiddleware:
    """Tests for the 401 challenge gate."""

    @pytest.fixture
    def mock_app(self) -> AsyncMock:
        return AsyncMock()

    @pytest.fixture
    def middleware(self, mock_app):
        return BearerChallengeMiddleware(mock_app, public_paths=PUBLIC_PATHS)

    @pytest.mark.asyncio
    async def test_unauthenticated_request_is_challenged(self, middleware, mock_app):
        """Test that a request without a verified user never reaches the app."""
        scope = http_scope("/mcp", {"host": "localhost:8080"}, user=UnauthenticatedUser())
        send = ResponseRecorder()

        await middleware(scope, AsyncMock(), send)

        mock_app.assert_not_called()
        assert send.status == 401
        assert send.headers["content-type"] == "application/json"
        assert send.headers["www-authenticate"] == (
            'Bearer error="invalid_request", '
            'error_description="No access token was provided in this request", '
            'resource_metadata="http://localhost:8080/.well-known/oauth-protected-resource"'
        )
        assert send.body["resource_metadata"] == (
            "http://localhost:8080/.well-known/oauth-protected-resource"
        )

    @pytest.mark.asyncio
    async def test_missing_user_is_challenged(self, middleware, mock_app):
        """Test that the gate fails closed without an authentication middleware."""
        send = ResponseRecorder()

        await middleware(http_scope("/mcp", {"host": "localhost:8080"}), AsyncMock(), send)

        mock_app.assert_not_called()
        assert send.status == 401

    @pytest.mark.asyncio
    async def test_authenticated_request_passes_through(self, middleware, mock_app):
        user = AuthenticatedUser(AccessToken(token="t", client_id="client123", scopes=["read:email"]))
        scope = http_scope("/mcp", {"host": "localhost:8080"}, user=user)
        receive = AsyncMock()
        send = AsyncMock()

        await middleware(scope, receive, send)

        mock_app.assert_called_once_with(scope, receive, send)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("path", PUBLIC_PATHS)
    async def test_public_paths_are_not_challenged(self, middleware, mock_app, path):
        scope = http_scope(path, {"host": "localhost:8080"}, user=UnauthenticatedUser())

        await middleware(scope, AsyncMock(), AsyncMock())

        mock_app.assert_called_once()

    @pytest.mark.asyncio
    async def test_public_prefix_does_not_leak(self, middleware, mock_app):
        """Test that only exact public paths are exempt."""
        scope = http_scope(
            "/.well-known/oauth-protected-resource/admin", user=UnauthenticatedUser()
        )
        send = ResponseRecorder()

        await middleware(scope, AsyncMock(), send)

        mock_app.assert_not_called()
        assert send.status == 401

    @pytest.mark.asyncio
    async def test_lifespan_passes_through(self, middleware, mock_app):
        await middleware({"type": "lifespan"}, AsyncMock(), AsyncMock())

        mock_app.assert_called_once()

    @pytest.mark.asyncio
    async def test_unauthenticated_websocket_is_closed(self, middleware, mock_app):
        """Test that websocket scopes are gated like HTTP requests."""
        scope = {"type": "websocket", "path": "/mcp", "headers": [], "user": UnauthenticatedUser()}
        send = ResponseRecorder()

        await middleware(scope, AsyncMock(), send)

        mock_app.assert_not_called()
        assert send.messages[0]["type"] == "websocket.close"
        assert send.messages[0]["code"] == 1008

    @pytest.mark.asyncio
    async def test_authenticated_websocket_passes_through(self, middleware, mock_app):
        user = AuthenticatedUser(AccessToken(token="t", client_id="client123", scopes=[]))
        scope = {"type": "websocket", "path": "/mcp", "headers": [], "user": user}

        await middleware(scope, AsyncMock(), AsyncMock())

        mock_app.assert_called_once()

    @pytest.mark.asyncio
    async def test_strict_mode_reports_invalid_token(self, mock_app):
        middleware = BearerChallengeMiddleware(mock_app, public_paths=PUBLIC_PATHS, strict=True)
        scope = http_scope(
            "/mcp",
            {"host": "localhost:8080", "authorization": "Bearer expired-token"},
            user=UnauthenticatedUser(),
        )
        send = ResponseRecorder()

        await middleware(scope, AsyncMock(), send)

        assert send.status == 401
        assert send.body["error"] == "invalid_token"
        assert 'error="invalid_token"' in send.headers["www-authenticate"]


class TestLoggingMiddleware:
    """Tests for the request logging middleware."""

    @pytest.mark.asyncio
    async def test_masks_authorization_header(self, caplog: pytest.LogCaptureFixture) -> None:
        app = AsyncMock()
        middleware = create_logging_middleware(app)
        scope = http_scope("/mcp", {"host": "localhost:8080", "authorization": "Bearer secret"})

        with caplog.at_level(logging.DEBUG, logger="todo_mcp.middleware"):
            await middleware(scope, AsyncMock(), AsyncMock())

        assert "secret" not in caplog.text
        assert "Bearer ***" in caplog.text
        assert "Host: localhost:8080" in caplog.text
        app.assert_called_once()

    @pytest.mark.asyncio
    async def test_logs_challenge_header(self, caplog: pytest.LogCaptureFixture) -> None:
        gate = BearerChallengeMiddleware(AsyncMock(), public_paths=PUBLIC_PATHS)
        middleware = create_logging_middleware(gate)
        scope = http_scope("/mcp", {"host": "localhost:8080"})

        with caplog.at_level(logging.INFO, logger="todo_mcp.middleware"):
            await middleware(scope, AsyncMock(), AsyncMock())

        assert "=== Response: 401 for GET /mcp ===" in caplog.text
        assert "WWW-Authenticate: Bearer error=\"invalid_request\"" in caplog.text

    @pytest.mark.asyncio
    async def test_passes_through_non_http(self):
        app = AsyncMock()
        middleware = create_logging_middleware(app)
        scope = {"type": "lifespan"}

        await middleware(scope, AsyncMock(), AsyncMock())

        app.assert_called_once()
