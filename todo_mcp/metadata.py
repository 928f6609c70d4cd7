"""OAuth 2.0 Protected Resource Metadata (RFC 9728) for the MCP endpoint."""

import logging

from pydantic import BaseModel, ConfigDict, Field
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route

from .base_url import ResolvedBaseUrl, resolve_base_url
from .settings import ResourceServerSettings

logger = logging.getLogger(__name__)


class ResourceMetadataDocument(BaseModel):
    """Discovery document describing this server as a protected resource."""

    model_config = ConfigDict(frozen=True)

    resource_name: str
    resource: str
    authorization_servers: list[str] = Field(min_length=1)
    bearer_methods_supported: list[str]
    scopes_supported: list[str]


def resource_url(settings: ResourceServerSettings, base_url: ResolvedBaseUrl | str) -> str:
    """Absolute URL of the protected MCP endpoint for the configured mode."""
    if settings.resource_url_mode == "static":
        # Validated at startup: static mode always carries mcp_url
        return str(settings.mcp_url)
    return f"{base_url}{settings.mcp_path}"


def build_resource_metadata(
    settings: ResourceServerSettings, base_url: ResolvedBaseUrl | str
) -> ResourceMetadataDocument:
    return ResourceMetadataDocument(
        resource_name=settings.resource_name,
        resource=resource_url(settings, base_url),
        authorization_servers=settings.authorization_servers,
        bearer_methods_supported=settings.bearer_methods_supported,
        scopes_supported=settings.scopes_supported,
    )


def create_metadata_endpoint(settings: ResourceServerSettings):
    """Create the Starlette handler serving the metadata document."""

    async def oauth_protected_resource(request: Request) -> JSONResponse:
        """OAuth 2.0 Protected Resource Metadata (RFC 9728)"""
        base_url = resolve_base_url(request)
        document = build_resource_metadata(settings, base_url)

        logger.info(
            f"Protected resource metadata requested: path={request.url.path} "
            f"resource={document.resource} mode={settings.resource_url_mode}"
        )
        return JSONResponse(document.model_dump())

    return oauth_protected_resource


def metadata_routes(settings: ResourceServerSettings) -> list[Route]:
    """Route table entries for every path serving the metadata document."""
    endpoint = create_metadata_endpoint(settings)
    return [
        Route(path, endpoint=endpoint, methods=["GET"])
        for path in settings.resource_metadata_paths
    ]
