"""
Process-wide configuration for the Todo MCP resource server.

Settings are read once at startup from the environment (``MCP_`` prefix) and
an optional ``.env`` file, then shared read-only by every request handler.
"""

from typing import Literal

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

RESOURCE_METADATA_PATH = "/.well-known/oauth-protected-resource"


class ResourceServerSettings(BaseSettings):
    """
    Settings for the OAuth-protected MCP resource server.

    List values (scopes, bearer methods, hosts, origins) are given as JSON
    arrays in the environment, e.g. ``MCP_SCOPES_SUPPORTED='["read:email"]'``.
    """

    model_config = SettingsConfigDict(env_prefix="MCP_", frozen=True, extra="ignore")

    # Authorization server advertised in the metadata document (required)
    auth_server: str
    # Token introspection endpoint; defaults to {auth_server}/introspect
    introspection_endpoint: str | None = None

    # Protected resource description
    resource_name: str = "Todo MCP Server"
    mcp_path: str = "/mcp"
    mcp_url: str | None = None
    # "dynamic": resource URL derived per request from the resolved base URL
    # "static": resource URL fixed to mcp_url at startup
    resource_url_mode: Literal["dynamic", "static"] = "dynamic"
    scopes_supported: list[str] = ["read:email"]
    bearer_methods_supported: list[str] = ["header"]

    # Challenge behaviour
    strict_challenge: bool = False
    # RFC 8707 audience validation of introspected tokens
    validate_resource: bool = False

    # HTTP server
    host: str = "0.0.0.0"  # noqa: S104
    port: int = 8080
    allowed_hosts: list[str] = []
    cors_allow_origins: list[str] = ["*"]

    # Logging
    log_level: str = "INFO"
    log_requests: bool = False

    @field_validator("auth_server", "mcp_url", "introspection_endpoint")
    @classmethod
    def strip_trailing_slash(cls, value: str | None) -> str | None:
        # OAuth metadata URLs are compared as strings by clients
        if value is None:
            return None
        return value.rstrip("/")

    @field_validator("mcp_path")
    @classmethod
    def normalize_mcp_path(cls, value: str) -> str:
        return "/" + value.strip("/")

    @field_validator("auth_server")
    @classmethod
    def require_auth_server(cls, value: str) -> str:
        if not value:
            raise ValueError("auth_server must not be empty")
        return value

    @model_validator(mode="after")
    def check_resource_url_mode(self) -> "ResourceServerSettings":
        if self.resource_url_mode == "static" and not self.mcp_url:
            raise ValueError("mcp_url is required when resource_url_mode is 'static'")
        if self.validate_resource and not self.mcp_url:
            raise ValueError("mcp_url is required when validate_resource is enabled")
        return self

    @property
    def authorization_servers(self) -> list[str]:
        return [self.auth_server]

    @property
    def introspection_url(self) -> str:
        return self.introspection_endpoint or f"{self.auth_server}/introspect"

    @property
    def resource_metadata_paths(self) -> list[str]:
        """Paths serving the metadata document; all are exempt from authentication."""
        return [RESOURCE_METADATA_PATH, f"{RESOURCE_METADATA_PATH}{self.mcp_path}"]
