"""Todo MCP Server Package.

OAuth-protected MCP resource server: protected resource metadata discovery
and bearer token challenges for clients behind reverse proxies.
"""

from todo_mcp.base_url import ResolvedBaseUrl, resolve_base_url
from todo_mcp.challenge import ChallengeResponse, build_challenge, challenge_response
from todo_mcp.metadata import ResourceMetadataDocument, build_resource_metadata
from todo_mcp.settings import ResourceServerSettings
from todo_mcp.token_verifier import IntrospectionTokenVerifier

__all__ = [
    "ChallengeResponse",
    "IntrospectionTokenVerifier",
    "ResolvedBaseUrl",
    "ResourceMetadataDocument",
    "ResourceServerSettings",
    "build_challenge",
    "build_resource_metadata",
    "challenge_response",
    "resolve_base_url",
]

__version__ = "0.1.0"
