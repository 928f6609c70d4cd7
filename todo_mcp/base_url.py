"""
External base URL resolution for requests arriving through reverse proxies.

Handles the deployment scenarios the server runs in:
- Local development (plain connection, host header with port)
- Cloud load balancers and serverless ingress (x-forwarded-proto, host)
- Direct TLS termination at this process
"""

import logging
from dataclasses import dataclass

from starlette.requests import HTTPConnection

logger = logging.getLogger(__name__)

DEFAULT_PORTS = (80, 443)


@dataclass(frozen=True)
class ResolvedBaseUrl:
    """Externally visible scheme and host of a single request."""

    scheme: str
    host: str
    scheme_source: str = "default"
    host_source: str = "host header"

    @property
    def url(self) -> str:
        return f"{self.scheme}://{self.host}"

    def __str__(self) -> str:
        return self.url


def _has_text(value: str | None) -> bool:
    return value is not None and value.strip() != ""


def resolve_base_url(conn: HTTPConnection) -> ResolvedBaseUrl:
    """
    Resolve the canonical ``scheme://host[:port]`` for the current request.

    Precedence is first match wins. Scheme comes from ``x-forwarded-proto``,
    then from the connection itself being TLS, then defaults to ``http``.
    Host comes from the ``host`` header verbatim, then from the server's bound
    address with the port appended unless it is 80 or 443.

    Never raises: missing headers degrade to defaults so that a 401 challenge
    can always be built.
    """
    forwarded_proto = conn.headers.get("x-forwarded-proto")
    if _has_text(forwarded_proto):
        scheme = forwarded_proto
        scheme_source = "x-forwarded-proto header"
    elif conn.scope.get("scheme") in ("https", "wss"):
        scheme = "https"
        scheme_source = "tls connection"
    else:
        scheme = "http"
        scheme_source = "default"

    host_header = conn.headers.get("host")
    if _has_text(host_header):
        host = host_header
        host_source = "host header"
    else:
        server_name, server_port = conn.scope.get("server") or ("localhost", None)
        host = server_name
        host_source = "server name + port"
        if server_port is not None and server_port not in DEFAULT_PORTS:
            host = f"{host}:{server_port}"

    resolved = ResolvedBaseUrl(
        scheme=scheme,
        host=host,
        scheme_source=scheme_source,
        host_source=host_source,
    )
    logger.debug(
        f"Resolved base URL: base_url={resolved.url} scheme={scheme} "
        f"scheme_source={scheme_source!r} host={host} host_source={host_source!r}"
    )
    return resolved
