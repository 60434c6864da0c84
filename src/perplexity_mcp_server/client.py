"""Completion and search calls against the Perplexity API."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Iterable, Optional, Union

import httpx

from .config import EnvironmentSettings
from .errors import (
    ConfigError,
    InvalidResponseError,
    NetworkError,
    RequestTimeoutError,
    ResponseParseError,
    UpstreamError,
)
from .formatting import append_citations, format_search_results, strip_thinking_tokens
from .transport import ProxyAwareTransport
from .validation import NOT_AN_OBJECT, Message, parse_chat_completion

logger = logging.getLogger("perplexity_mcp_server.client")

API_BASE_URL = "https://api.perplexity.ai"
CHAT_COMPLETIONS_PATH = "/chat/completions"
SEARCH_PATH = "/search"

CHAT_API_LABEL = "Perplexity API"
SEARCH_API_LABEL = "Perplexity Search API"

DEFAULT_MODEL = "sonar-pro"
DEFAULT_MAX_RESULTS = 10
DEFAULT_MAX_TOKENS_PER_PAGE = 1024
UNREADABLE_ERROR_BODY = "Unable to parse error response"


class PerplexityClient:
    """Single-attempt calls to the chat-completion and search endpoints."""

    def __init__(
        self,
        settings: Optional[EnvironmentSettings] = None,
        transport: Optional[ProxyAwareTransport] = None,
        base_url: str = API_BASE_URL,
    ):
        self.settings = settings or EnvironmentSettings()
        self.transport = transport or ProxyAwareTransport(self.settings)
        self.base_url = base_url.rstrip("/")

    async def _post(self, api_label: str, path: str, body: dict[str, Any]) -> httpx.Response:
        api_key = self.settings.api_key()
        if not api_key:
            raise ConfigError("PERPLEXITY_API_KEY environment variable is required")

        timeout_ms = self.settings.timeout_ms()
        timeout_s = timeout_ms / 1000.0
        url = f"{self.base_url}{path}"
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {api_key}",
        }

        started = time.monotonic()
        try:
            response = await asyncio.wait_for(
                self.transport.dispatch("POST", url, timeout=timeout_s, headers=headers, json=body),
                timeout=timeout_s,
            )
        except (asyncio.TimeoutError, httpx.TimeoutException) as exc:
            raise RequestTimeoutError(
                f"Request timeout: {api_label} did not respond within {timeout_ms}ms. "
                "Consider increasing PERPLEXITY_TIMEOUT_MS.",
                timeout_ms,
            ) from exc
        except (httpx.HTTPError, httpx.InvalidURL, OSError, ValueError) as exc:
            # ValueError covers a proxy URL httpx refuses while building the client.
            raise NetworkError(f"Network error while calling {api_label}: {exc}") from exc

        logger.debug(
            "%s POST %s -> %d in %.0fms",
            api_label,
            path,
            response.status_code,
            (time.monotonic() - started) * 1000.0,
        )

        if not response.is_success:
            try:
                error_text = response.text
            except (httpx.HTTPError, UnicodeDecodeError, LookupError):
                error_text = UNREADABLE_ERROR_BODY
            raise UpstreamError(
                f"{api_label} error: {response.status_code} {response.reason_phrase}\n{error_text}",
                status_code=response.status_code,
                reason=response.reason_phrase,
                body=error_text,
            )
        return response

    @staticmethod
    def _decode_json(response: httpx.Response, api_label: str) -> Any:
        try:
            return response.json()
        except ValueError as exc:
            raise ResponseParseError(f"Failed to parse JSON response from {api_label}: {exc}") from exc

    async def chat_completion(
        self,
        messages: Iterable[Union[Message, dict[str, Any]]],
        model: str = DEFAULT_MODEL,
        strip_thinking: bool = False,
    ) -> str:
        """Run one chat completion; citations are appended to the returned text."""
        body = {
            "model": model,
            "messages": [m.to_dict() if isinstance(m, Message) else dict(m) for m in messages],
        }
        response = await self._post(CHAT_API_LABEL, CHAT_COMPLETIONS_PATH, body)
        data = self._decode_json(response, CHAT_API_LABEL)

        parsed = parse_chat_completion(data)
        if parsed.failure == NOT_AN_OBJECT:
            raise ResponseParseError(f"Failed to parse JSON response from {CHAT_API_LABEL}: {parsed.failure}")
        if not parsed.ok:
            raise InvalidResponseError(f"Invalid API response: {parsed.failure}")
        completion = parsed.value

        content = completion.choices[0].content
        if strip_thinking:
            content = strip_thinking_tokens(content)
        return append_citations(content, completion.citations)

    async def search(
        self,
        query: str,
        max_results: Union[int, float] = DEFAULT_MAX_RESULTS,
        max_tokens_per_page: Union[int, float] = DEFAULT_MAX_TOKENS_PER_PAGE,
        country: Optional[str] = None,
    ) -> str:
        body: dict[str, Any] = {
            "query": query,
            "max_results": max_results,
            "max_tokens_per_page": max_tokens_per_page,
        }
        if country:
            body["country"] = country
        response = await self._post(SEARCH_API_LABEL, SEARCH_PATH, body)
        return format_search_results(self._decode_json(response, SEARCH_API_LABEL))
