"""Outbound HTTP with optional forward-proxy routing."""

from __future__ import annotations

import logging
from typing import Any, Mapping, Optional

import httpx

from .config import EnvironmentSettings

logger = logging.getLogger("perplexity_mcp_server.transport")


def resolve_proxy_url(env: Optional[Mapping[str, str]] = None) -> Optional[str]:
    """Return the first of PERPLEXITY_PROXY, HTTPS_PROXY, HTTP_PROXY that is set."""
    return EnvironmentSettings(env).proxy_url()


class ProxyAwareTransport:
    """Issues one request per call, through a proxy when one is configured.

    The proxy is resolved on every dispatch. ``transport`` replaces the network
    layer entirely (tests pass an ``httpx.MockTransport``).
    """

    def __init__(
        self,
        settings: Optional[EnvironmentSettings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.settings = settings or EnvironmentSettings()
        self._transport = transport

    def resolve_proxy(self) -> Optional[str]:
        return self.settings.proxy_url()

    def client_kwargs(self, timeout: float, proxy_url: Optional[str] = None) -> dict[str, Any]:
        # trust_env is off so only our own proxy precedence applies.
        kwargs: dict[str, Any] = {"timeout": httpx.Timeout(timeout), "trust_env": False}
        if self._transport is not None:
            kwargs["transport"] = self._transport
        elif proxy_url:
            kwargs["proxy"] = proxy_url
        return kwargs

    async def dispatch(self, method: str, url: str, *, timeout: float, **request_kwargs: Any) -> httpx.Response:
        proxy_url = self.resolve_proxy()
        if proxy_url:
            logger.debug("Routing %s %s through proxy", method, url)
        async with httpx.AsyncClient(**self.client_kwargs(timeout, proxy_url)) as client:
            return await client.request(method, url, **request_kwargs)
