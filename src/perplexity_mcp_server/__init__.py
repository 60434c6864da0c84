"""Perplexity MCP Server package."""

__version__ = "0.5.1"

from .client import PerplexityClient
from .config import EnvironmentSettings, ServerConfig, load_server_config
from .errors import (
    ConfigError,
    InvalidResponseError,
    NetworkError,
    PerplexityError,
    RequestTimeoutError,
    ResponseParseError,
    ShapeError,
    UpstreamError,
)
from .formatting import format_search_results, strip_thinking_tokens
from .server import McpServer, create_server
from .transport import ProxyAwareTransport, resolve_proxy_url
from .validation import Message, validate_messages

__all__ = [
    "PerplexityClient",
    "EnvironmentSettings",
    "ServerConfig",
    "load_server_config",
    "PerplexityError",
    "ConfigError",
    "ShapeError",
    "RequestTimeoutError",
    "NetworkError",
    "UpstreamError",
    "InvalidResponseError",
    "ResponseParseError",
    "format_search_results",
    "strip_thinking_tokens",
    "McpServer",
    "create_server",
    "ProxyAwareTransport",
    "resolve_proxy_url",
    "Message",
    "validate_messages",
]
