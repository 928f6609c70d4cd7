"""Token verifier using OAuth 2.0 Token Introspection (RFC 7662)."""

import logging
from typing import Any

import httpx
from mcp.server.auth.provider import AccessToken, TokenVerifier
from mcp.shared.auth_utils import check_resource_allowed, resource_url_from_server_url
from pydantic import ValidationError

logger = logging.getLogger(__name__)

SAFE_ENDPOINT_PREFIXES = ("https://", "http://localhost", "http://127.0.0.1")


class IntrospectionTokenVerifier(TokenVerifier):
    """Verify bearer tokens by asking the authorization server about them.

    Any failure (unsafe endpoint, transport error, non-200 status, inactive
    token, malformed response, audience mismatch) yields ``None``, which the
    auth gate turns into the standard 401 challenge.
    """

    def __init__(
        self,
        introspection_endpoint: str,
        server_url: str,
        validate_resource: bool = False,
    ):
        self.introspection_endpoint = introspection_endpoint
        self.server_url = server_url
        self.validate_resource = validate_resource
        self.resource_url = resource_url_from_server_url(server_url) if server_url else ""

    async def verify_token(self, token: str) -> AccessToken | None:
        """Verify token via introspection endpoint."""
        # Validate URL to prevent SSRF attacks
        if not self.introspection_endpoint.startswith(SAFE_ENDPOINT_PREFIXES):
            logger.warning(
                f"Rejecting introspection endpoint with unsafe scheme: {self.introspection_endpoint}"
            )
            return None

        timeout = httpx.Timeout(10.0, connect=5.0)
        limits = httpx.Limits(max_connections=10, max_keepalive_connections=5)

        async with httpx.AsyncClient(timeout=timeout, limits=limits, verify=True) as client:
            try:
                response = await client.post(
                    self.introspection_endpoint,
                    data={"token": token},
                    headers={"Content-Type": "application/x-www-form-urlencoded"},
                )
            except httpx.HTTPError as e:
                logger.warning(f"Token introspection failed: {e}")
                return None

        if response.status_code != 200:
            logger.debug(f"Token introspection returned status {response.status_code}")
            return None

        # Malformed introspection responses reject the token
        try:
            data = response.json()
            if not data.get("active", False):
                logger.debug("Token introspection reported an inactive token")
                return None

            if self.validate_resource and not self._validate_resource(data):
                logger.warning(f"Token audience does not include {self.resource_url}")
                return None

            return AccessToken(
                token=token,
                client_id=data.get("client_id", "unknown"),
                scopes=data.get("scope", "").split() if data.get("scope") else [],
                expires_at=data.get("exp"),
                resource=self._first_audience(data),
            )
        except (ValueError, TypeError, AttributeError, ValidationError) as e:
            logger.warning(f"Invalid token introspection response: {e}")
            return None

    @staticmethod
    def _first_audience(token_data: dict[str, Any]) -> str | None:
        aud = token_data.get("aud")
        if isinstance(aud, list):
            return aud[0] if aud else None
        return aud

    def _validate_resource(self, token_data: dict[str, Any]) -> bool:
        """Check the token audience against this server (RFC 8707)."""
        if not self.server_url or not self.resource_url:
            return False

        aud: list[str] | str | None = token_data.get("aud")
        if isinstance(aud, list):
            return any(self._is_valid_resource(a) for a in aud)
        if aud:
            return self._is_valid_resource(aud)
        return False

    def _is_valid_resource(self, resource: str) -> bool:
        if not self.resource_url:
            return False
        return check_resource_allowed(
            requested_resource=self.resource_url, configured_resource=resource
        )
