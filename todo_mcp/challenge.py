"""
Bearer token challenge for unauthenticated requests.

Builds the 401 response described by RFC 6750, extended with the
``resource_metadata`` parameter (RFC 9728) so that MCP clients can discover
the authorization server from the challenge alone.
"""

import logging
from dataclasses import dataclass
from typing import Any

from starlette.requests import HTTPConnection
from starlette.responses import JSONResponse

from .base_url import ResolvedBaseUrl, resolve_base_url
from .settings import RESOURCE_METADATA_PATH

logger = logging.getLogger(__name__)

INVALID_REQUEST = "invalid_request"
INVALID_REQUEST_DESCRIPTION = "No access token was provided in this request"

INVALID_TOKEN = "invalid_token"
INVALID_TOKEN_DESCRIPTION = "The access token is invalid or expired"


@dataclass(frozen=True)
class ChallengeResponse:
    """A 401 challenge; resource_metadata is shared by the header and the body."""

    resource_metadata: str
    error: str = INVALID_REQUEST
    error_description: str = INVALID_REQUEST_DESCRIPTION
    http_status: int = 401

    @property
    def www_authenticate_header(self) -> str:
        return (
            f'Bearer error="{self.error}", '
            f'error_description="{self.error_description}", '
            f'resource_metadata="{self.resource_metadata}"'
        )

    @property
    def body(self) -> dict[str, Any]:
        return {
            "error": self.error,
            "error_description": self.error_description,
            "resource_metadata": self.resource_metadata,
        }

    def to_response(self) -> JSONResponse:
        return JSONResponse(
            self.body,
            status_code=self.http_status,
            headers={"WWW-Authenticate": self.www_authenticate_header},
        )


def resource_metadata_url(base_url: ResolvedBaseUrl | str) -> str:
    return f"{base_url}{RESOURCE_METADATA_PATH}"


def build_challenge(
    base_url: ResolvedBaseUrl | str,
    token_presented: bool = False,
    strict: bool = False,
) -> ChallengeResponse:
    """
    Build the challenge for a request that failed authentication.

    By default every failure (missing, expired, malformed or rejected token)
    produces the same ``invalid_request`` challenge. With ``strict`` enabled, a
    request that did present a bearer token gets ``invalid_token`` instead.
    """
    url = resource_metadata_url(base_url)
    if strict and token_presented:
        return ChallengeResponse(
            resource_metadata=url,
            error=INVALID_TOKEN,
            error_description=INVALID_TOKEN_DESCRIPTION,
        )
    return ChallengeResponse(resource_metadata=url)


def has_bearer_token(conn: HTTPConnection) -> bool:
    auth_header = conn.headers.get("authorization", "")
    return auth_header.lower().startswith("bearer ") and auth_header[7:].strip() != ""


def challenge_response(conn: HTTPConnection, strict: bool = False) -> JSONResponse:
    """Resolve the base URL for ``conn`` and return the 401 challenge response."""
    base_url = resolve_base_url(conn)
    challenge = build_challenge(base_url, token_presented=has_bearer_token(conn), strict=strict)

    logger.info(
        f"Authentication required: path={conn.url.path} error={challenge.error} "
        f"resource_metadata={challenge.resource_metadata}"
    )
    return challenge.to_response()
