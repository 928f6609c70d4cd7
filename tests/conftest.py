"""Pytest configuration and fixtures for tests."""

import os

import pytest

# Set required environment variables before any imports
# ResourceServerSettings requires an authorization server URL
os.environ.setdefault("MCP_AUTH_SERVER", "http://localhost:9000")

from todo_mcp.settings import ResourceServerSettings  # noqa: E402


@pytest.fixture
def settings() -> ResourceServerSettings:
    """Default settings matching a local development deployment."""
    return ResourceServerSettings(auth_server="http://localhost:9000")
