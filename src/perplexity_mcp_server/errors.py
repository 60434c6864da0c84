"""Error taxonomy for the Perplexity MCP server."""

from __future__ import annotations

from typing import Optional


class PerplexityError(Exception):
    """Base class for every failure a tool call can surface to a client."""


class ConfigError(PerplexityError):
    """Required configuration (the API credential) is missing."""


class ShapeError(PerplexityError, ValueError):
    """Caller supplied malformed tool arguments."""


class RequestTimeoutError(PerplexityError, TimeoutError):
    """Upstream did not answer within the configured budget."""

    def __init__(self, message: str, timeout_ms: int):
        super().__init__(message)
        self.timeout_ms = timeout_ms


class NetworkError(PerplexityError):
    """Transport-level failure below HTTP semantics."""


class UpstreamError(PerplexityError):
    """Upstream answered with a non-2xx status."""

    def __init__(self, message: str, status_code: int, reason: str = "", body: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.reason = reason
        self.body = body


class InvalidResponseError(PerplexityError):
    """Upstream answered 2xx with a body that is missing required fields."""


class ResponseParseError(PerplexityError):
    """Upstream answered 2xx with a body that could not be decoded."""


class SessionLookupError(LookupError):
    """An HTTP request addressed a session that is absent or unknown."""
