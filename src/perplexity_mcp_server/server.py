"""Transport-agnostic MCP server: JSON-RPC dispatch and the Perplexity tool catalog."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional

from . import __version__
from .client import DEFAULT_MAX_RESULTS, DEFAULT_MAX_TOKENS_PER_PAGE, PerplexityClient
from .config import EnvironmentSettings
from .errors import PerplexityError, ShapeError
from .validation import validate_messages

logger = logging.getLogger("perplexity_mcp_server.server")

SERVER_NAME = "io.github.perplexityai/mcp-server"
SUPPORTED_PROTOCOL_VERSIONS = ("2025-06-18", "2025-03-26", "2024-11-05")

PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603

MAX_RESULTS_RANGE = (1, 20)
MAX_TOKENS_PER_PAGE_RANGE = (256, 2048)

ToolHandler = Callable[[dict[str, Any]], Awaitable[str]]


class JsonRpcError(Exception):
    def __init__(self, code: int, message: str):
        super().__init__(message)
        self.code = code
        self.message = message


@dataclass
class ProtocolState:
    """Per-connection protocol bookkeeping (one per channel or stdio stream)."""

    protocol_version: Optional[str] = None
    client_info: dict[str, Any] = field(default_factory=dict)
    client_capabilities: dict[str, Any] = field(default_factory=dict)
    initialized: bool = False


@dataclass
class ToolSpec:
    name: str
    title: str
    description: str
    input_schema: dict[str, Any]
    output_key: str
    output_description: str
    handler: ToolHandler
    annotations: dict[str, Any] = field(
        default_factory=lambda: {"readOnlyHint": True, "openWorldHint": True}
    )

    def definition(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "title": self.title,
            "description": self.description,
            "inputSchema": self.input_schema,
            "outputSchema": {
                "type": "object",
                "properties": {
                    self.output_key: {"type": "string", "description": self.output_description},
                },
                "required": [self.output_key],
            },
            "annotations": dict(self.annotations),
        }


def make_response(req_id: Any, result: Any) -> dict[str, Any]:
    return {"jsonrpc": "2.0", "id": req_id, "result": result}


def make_error(req_id: Any, code: int, message: str) -> dict[str, Any]:
    return {"jsonrpc": "2.0", "id": req_id, "error": {"code": code, "message": message}}


def is_request(message: Any) -> bool:
    return isinstance(message, dict) and isinstance(message.get("method"), str) and "id" in message


def is_initialize_request(message: Any) -> bool:
    return is_request(message) and message["method"] == "initialize"


def _error_result(text: str) -> dict[str, Any]:
    return {"content": [{"type": "text", "text": text}], "isError": True}


def _optional_number(
    arguments: dict[str, Any],
    key: str,
    default: int,
    bounds: tuple[int, int],
    tool_name: str,
) -> int | float:
    value = arguments.get(key)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return default
    low, high = bounds
    if not math.isfinite(value) or value < low or value > high:
        raise ShapeError(f"Invalid arguments for {tool_name}: '{key}' must be between {low} and {high}")
    return value


_MESSAGES_SCHEMA = {
    "type": "array",
    "description": "Array of conversation messages",
    "items": {
        "type": "object",
        "properties": {
            "role": {
                "type": "string",
                "description": "Role of the message (e.g., system, user, assistant)",
            },
            "content": {"type": "string", "description": "The content of the message"},
        },
        "required": ["role", "content"],
    },
}

_STRIP_THINKING_SCHEMA = {
    "type": "boolean",
    "description": (
        "If true, removes <think>...</think> tags and their content from the response "
        "to save context tokens. Default is false."
    ),
}


class McpServer:
    """Routes MCP JSON-RPC messages to registered tools.

    The same instance is shared by every transport host; all per-connection
    state lives in the ``ProtocolState`` passed to ``handle_message``.
    """

    def __init__(self, name: str = SERVER_NAME, version: str = __version__):
        self.name = name
        self.version = version
        self._tools: dict[str, ToolSpec] = {}
        self._methods: dict[str, Callable[[Any, ProtocolState], Awaitable[Any]]] = {
            "initialize": self._initialize,
            "ping": self._ping,
            "tools/list": self._list_tools,
            "tools/call": self._call_tool_request,
        }

    def register_tool(self, tool: ToolSpec) -> None:
        if tool.name in self._tools:
            raise ValueError(f"Tool already registered: {tool.name}")
        self._tools[tool.name] = tool

    @property
    def tool_names(self) -> list[str]:
        return list(self._tools)

    def list_tools(self) -> list[dict[str, Any]]:
        return [tool.definition() for tool in self._tools.values()]

    async def call_tool(self, name: Any, arguments: Any) -> dict[str, Any]:
        """Run a tool; failures come back as ``isError`` results, never as exceptions."""
        tool = self._tools.get(name) if isinstance(name, str) else None
        if tool is None:
            logger.warning("Unknown tool requested: %r", name)
            return _error_result(f"Tool {name} not found")
        if not isinstance(arguments, dict):
            arguments = {}
        try:
            text = await tool.handler(arguments)
        except PerplexityError as exc:
            logger.warning("Tool %s failed: %s", name, exc)
            return _error_result(str(exc))
        except Exception as exc:
            logger.exception("Tool %s raised unexpectedly", name)
            return _error_result(f"Internal error in {name}: {exc}")
        return {
            "content": [{"type": "text", "text": text}],
            "structuredContent": {tool.output_key: text},
        }

    async def handle_message(self, message: Any, state: ProtocolState) -> Optional[dict[str, Any]]:
        """Handle one inbound JSON-RPC message; returns the response or None for notifications."""
        if not isinstance(message, dict) or message.get("jsonrpc") != "2.0":
            req_id = message.get("id") if isinstance(message, dict) else None
            return make_error(req_id, INVALID_REQUEST, "Invalid Request")

        method = message.get("method")
        if method is None:
            # Response to a server-initiated request; none are outstanding.
            return None
        if not isinstance(method, str):
            return make_error(message.get("id"), INVALID_REQUEST, "Invalid Request")

        if "id" not in message:
            self._handle_notification(method, state)
            return None

        req_id = message["id"]
        handler = self._methods.get(method)
        if handler is None:
            return make_error(req_id, METHOD_NOT_FOUND, f"Method not found: {method}")
        try:
            result = await handler(message.get("params") or {}, state)
        except JsonRpcError as exc:
            return make_error(req_id, exc.code, exc.message)
        except Exception:
            logger.exception("Unhandled error while serving %s", method)
            return make_error(req_id, INTERNAL_ERROR, "Internal error")
        return make_response(req_id, result)

    def _handle_notification(self, method: str, state: ProtocolState) -> None:
        if method == "notifications/initialized":
            state.initialized = True
        else:
            logger.debug("Ignoring notification %s", method)

    async def _initialize(self, params: Any, state: ProtocolState) -> dict[str, Any]:
        if not isinstance(params, dict):
            raise JsonRpcError(INVALID_PARAMS, "Invalid params")
        requested = params.get("protocolVersion")
        version = requested if requested in SUPPORTED_PROTOCOL_VERSIONS else SUPPORTED_PROTOCOL_VERSIONS[0]
        state.protocol_version = version
        client_info = params.get("clientInfo")
        state.client_info = dict(client_info) if isinstance(client_info, dict) else {}
        caps = params.get("capabilities")
        state.client_capabilities = dict(caps) if isinstance(caps, dict) else {}
        logger.info(
            "Client initialized: %s (protocol %s)",
            state.client_info.get("name", "unknown"),
            version,
        )
        return {
            "protocolVersion": version,
            "capabilities": {"tools": {"listChanged": False}},
            "serverInfo": {"name": self.name, "version": self.version},
        }

    async def _ping(self, params: Any, state: ProtocolState) -> dict[str, Any]:
        return {}

    async def _list_tools(self, params: Any, state: ProtocolState) -> dict[str, Any]:
        return {"tools": self.list_tools()}

    async def _call_tool_request(self, params: Any, state: ProtocolState) -> dict[str, Any]:
        if not isinstance(params, dict):
            raise JsonRpcError(INVALID_PARAMS, "Invalid params")
        return await self.call_tool(params.get("name"), params.get("arguments"))


def _register_perplexity_tools(server: McpServer, client: PerplexityClient) -> None:
    def completion_tool(tool_name: str, model: str, allow_strip: bool) -> ToolHandler:
        async def handler(arguments: dict[str, Any]) -> str:
            messages = validate_messages(arguments.get("messages"), tool_name)
            strip = arguments.get("strip_thinking")
            strip_thinking = strip if allow_strip and isinstance(strip, bool) else False
            return await client.chat_completion(messages, model=model, strip_thinking=strip_thinking)

        return handler

    async def search_handler(arguments: dict[str, Any]) -> str:
        query = arguments.get("query")
        if not isinstance(query, str):
            raise ShapeError("Invalid arguments for perplexity_search: 'query' must be a string")
        max_results = _optional_number(
            arguments, "max_results", DEFAULT_MAX_RESULTS, MAX_RESULTS_RANGE, "perplexity_search"
        )
        max_tokens = _optional_number(
            arguments,
            "max_tokens_per_page",
            DEFAULT_MAX_TOKENS_PER_PAGE,
            MAX_TOKENS_PER_PAGE_RANGE,
            "perplexity_search",
        )
        country = arguments.get("country")
        country_code = country if isinstance(country, str) and country else None
        return await client.search(query, max_results, max_tokens, country_code)

    conversation_schema = {
        "type": "object",
        "properties": {"messages": _MESSAGES_SCHEMA},
        "required": ["messages"],
    }
    strippable_schema = {
        "type": "object",
        "properties": {"messages": _MESSAGES_SCHEMA, "strip_thinking": _STRIP_THINKING_SCHEMA},
        "required": ["messages"],
    }

    server.register_tool(
        ToolSpec(
            name="perplexity_ask",
            title="Ask Perplexity",
            description=(
                "Engages in a conversation using the Sonar API. "
                "Accepts an array of messages (each with a role and content) "
                "and returns a chat completion response from the Perplexity model."
            ),
            input_schema=conversation_schema,
            output_key="response",
            output_description="The chat completion response",
            handler=completion_tool("perplexity_ask", "sonar-pro", allow_strip=False),
        )
    )
    server.register_tool(
        ToolSpec(
            name="perplexity_research",
            title="Deep Research",
            description=(
                "Performs deep research using the Perplexity API. "
                "Accepts an array of messages (each with a role and content) "
                "and returns a comprehensive research response with citations."
            ),
            input_schema=strippable_schema,
            output_key="response",
            output_description="The research response",
            handler=completion_tool("perplexity_research", "sonar-deep-research", allow_strip=True),
        )
    )
    server.register_tool(
        ToolSpec(
            name="perplexity_reason",
            title="Advanced Reasoning",
            description=(
                "Performs reasoning tasks using the Perplexity API. "
                "Accepts an array of messages (each with a role and content) "
                "and returns a well-reasoned response using the sonar-reasoning-pro model."
            ),
            input_schema=strippable_schema,
            output_key="response",
            output_description="The reasoning response",
            handler=completion_tool("perplexity_reason", "sonar-reasoning-pro", allow_strip=True),
        )
    )
    server.register_tool(
        ToolSpec(
            name="perplexity_search",
            title="Search the Web",
            description=(
                "Performs web search using the Perplexity Search API. "
                "Returns ranked search results with titles, URLs, snippets, and metadata. "
                "Perfect for finding up-to-date facts, news, or specific information."
            ),
            input_schema={
                "type": "object",
                "properties": {
                    "query": {"type": "string", "description": "Search query string"},
                    "max_results": {
                        "type": "number",
                        "minimum": MAX_RESULTS_RANGE[0],
                        "maximum": MAX_RESULTS_RANGE[1],
                        "description": "Maximum number of results to return (1-20, default: 10)",
                    },
                    "max_tokens_per_page": {
                        "type": "number",
                        "minimum": MAX_TOKENS_PER_PAGE_RANGE[0],
                        "maximum": MAX_TOKENS_PER_PAGE_RANGE[1],
                        "description": "Maximum tokens to extract per webpage (default: 1024)",
                    },
                    "country": {
                        "type": "string",
                        "description": "ISO 3166-1 alpha-2 country code for regional results (e.g., 'US', 'GB')",
                    },
                },
                "required": ["query"],
            },
            output_key="results",
            output_description="Formatted search results",
            handler=search_handler,
        )
    )


def create_server(
    client: Optional[PerplexityClient] = None,
    settings: Optional[EnvironmentSettings] = None,
) -> McpServer:
    """Build the MCP server with every Perplexity tool registered."""
    server = McpServer()
    _register_perplexity_tools(server, client or PerplexityClient(settings=settings))
    return server
