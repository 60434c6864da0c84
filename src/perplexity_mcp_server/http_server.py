"""Streamable HTTP host: one /mcp endpoint multiplexing client sessions."""

from __future__ import annotations

import asyncio
import json
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse, Response, StreamingResponse

from .config import ServerConfig
from .errors import SessionLookupError
from .server import (
    INTERNAL_ERROR,
    INVALID_REQUEST,
    PARSE_ERROR,
    McpServer,
    create_server,
    is_initialize_request,
    make_error,
)
from .sessions import Channel, SessionManager

logger = logging.getLogger("perplexity_mcp_server.http")

SESSION_HEADER = "mcp-session-id"
PROTOCOL_HEADER = "mcp-protocol-version"
SERVICE_NAME = "perplexity-mcp-server"
DISCONNECT_POLL_INTERVAL = 0.5
CLIENT_CLOSED_REQUEST = 499


def _rpc_error(status_code: int, code: int, message: str, headers: Optional[dict[str, str]] = None) -> JSONResponse:
    return JSONResponse(make_error(None, code, message), status_code=status_code, headers=headers)


def _accepts(request: Request, *media_types: str) -> bool:
    accept = request.headers.get("accept", "")
    return all(media_type in accept for media_type in media_types)


async def _dispatch(channel: Channel, messages: list[Any]) -> list[dict[str, Any]]:
    results = await asyncio.gather(*(channel.handle(message) for message in messages))
    return [result for result in results if result is not None]


def _reply(responses: list[dict[str, Any]], is_batch: bool, headers: dict[str, str]) -> Response:
    if not responses:
        return Response(status_code=202, headers=headers)
    payload: Any = responses if is_batch else responses[0]
    return JSONResponse(payload, headers=headers)


async def _event_stream(channel: Channel) -> AsyncIterator[str]:
    try:
        while True:
            message = await channel.next_outbound()
            if message is None:
                break
            yield f"event: message\ndata: {json.dumps(message, ensure_ascii=False)}\n\n"
    except Exception:
        # Headers are already on the wire; nothing more can be sent.
        logger.exception("SSE stream failed for session %s", channel.session_id)
    finally:
        channel.stream_attached = False
        # Peer disconnect or server close: either way the session ends here.
        channel.close()


async def _dispatch_until_disconnect(
    request: Request,
    channel: Channel,
    messages: list[Any],
    poll_interval: float = DISCONNECT_POLL_INTERVAL,
) -> Optional[list[dict[str, Any]]]:
    """Dispatch while watching the peer; None if it went away first.

    On disconnect the in-flight work is cancelled and the channel closed, so
    an abandoned request does not keep its upstream call running.
    """
    task = asyncio.create_task(_dispatch(channel, messages))
    try:
        while True:
            done, _ = await asyncio.wait({task}, timeout=poll_interval)
            if done:
                return task.result()
            if await request.is_disconnected():
                logger.info("Client disconnected, cancelling stateless request")
                return None
    finally:
        if not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
        channel.close()


def _open_stream(channel: Channel) -> Response:
    if channel.stream_attached:
        return _rpc_error(409, -32000, "Conflict: Only one SSE stream is allowed per session")
    # Claimed before the first chunk so a concurrent GET sees the conflict.
    channel.stream_attached = True
    return StreamingResponse(
        _event_stream(channel),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "Mcp-Session-Id": channel.session_id},
    )


def create_app(config: Optional[ServerConfig] = None, server: Optional[McpServer] = None) -> FastAPI:
    """Build the FastAPI app serving MCP over streamable HTTP."""
    cfg = config or ServerConfig()
    mcp_server = server or create_server()
    sessions = SessionManager(mcp_server)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        logger.info("Shutting down, closing %d session(s)", len(sessions))
        sessions.close_all()

    app = FastAPI(title=SERVICE_NAME, lifespan=lifespan)
    app.state.config = cfg
    app.state.mcp_server = mcp_server
    app.state.sessions = sessions

    app.add_middleware(
        CORSMiddleware,
        allow_origins=cfg.allowed_origins,
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Accept", "Authorization", SESSION_HEADER, PROTOCOL_HEADER],
        expose_headers=["Mcp-Session-Id", PROTOCOL_HEADER],
    )

    async def _read_messages(request: Request) -> tuple[Optional[list[Any]], bool, Optional[Response]]:
        if not _accepts(request, "application/json", "text/event-stream"):
            return None, False, _rpc_error(
                406, -32000, "Not Acceptable: Client must accept both application/json and text/event-stream"
            )
        if "application/json" not in request.headers.get("content-type", ""):
            return None, False, _rpc_error(415, -32000, "Unsupported Media Type: Content-Type must be application/json")
        try:
            body = json.loads(await request.body())
        except (ValueError, UnicodeDecodeError):
            return None, False, _rpc_error(400, PARSE_ERROR, "Parse error")
        is_batch = isinstance(body, list)
        messages = body if is_batch else [body]
        if not messages:
            return None, is_batch, _rpc_error(400, INVALID_REQUEST, "Invalid Request")
        return messages, is_batch, None

    async def _post_stateless(request: Request, messages: list[Any], is_batch: bool) -> Response:
        responses = await _dispatch_until_disconnect(request, sessions.open_ephemeral(), messages)
        if responses is None:
            return Response(status_code=CLIENT_CLOSED_REQUEST)
        return _reply(responses, is_batch, {})

    async def _post_session(request: Request, messages: list[Any], is_batch: bool) -> Response:
        session_id = request.headers.get(SESSION_HEADER)
        channel = sessions.get(session_id)

        if channel is not None:
            if any(is_initialize_request(m) for m in messages):
                return _rpc_error(400, INVALID_REQUEST, "Invalid Request: Server already initialized")
            responses = await _dispatch(channel, messages)
            return _reply(responses, is_batch, {"Mcp-Session-Id": channel.session_id})

        if not any(is_initialize_request(m) for m in messages):
            if session_id:
                logger.warning("POST for unknown session %s", session_id)
            return _rpc_error(400, -32000, "Bad Request: Server not initialized")
        if len(messages) > 1:
            return _rpc_error(400, INVALID_REQUEST, "Invalid Request: Only one initialization request is allowed")

        channel = sessions.open_channel()
        responses = await _dispatch(channel, messages)
        if not responses or "result" not in responses[0]:
            channel.close()
            return _reply(responses, is_batch, {})
        new_id = sessions.register(channel)
        return _reply(responses, is_batch, {"Mcp-Session-Id": new_id})

    @app.post("/mcp")
    async def handle_post(request: Request) -> Response:
        try:
            messages, is_batch, rejection = await _read_messages(request)
            if rejection is not None:
                return rejection
            if cfg.stateless:
                return await _post_stateless(request, messages, is_batch)
            return await _post_session(request, messages, is_batch)
        except Exception:
            logger.exception("Error handling MCP POST request")
            return _rpc_error(500, INTERNAL_ERROR, "Internal server error")

    @app.get("/mcp")
    async def handle_get(request: Request) -> Response:
        if cfg.stateless:
            return _rpc_error(405, -32000, "Method not allowed.", headers={"Allow": "POST"})
        session_id = request.headers.get(SESSION_HEADER)
        logger.debug("GET /mcp session=%s live=%s", session_id, sessions.session_ids)
        try:
            channel = sessions.require(session_id)
        except SessionLookupError as exc:
            logger.warning("GET /mcp rejected: %s", exc)
            return PlainTextResponse(str(exc), status_code=400)
        if not _accepts(request, "text/event-stream"):
            return _rpc_error(406, -32000, "Not Acceptable: Client must accept text/event-stream")
        return _open_stream(channel)

    @app.delete("/mcp")
    async def handle_delete(request: Request) -> Response:
        if cfg.stateless:
            return _rpc_error(405, -32000, "Method not allowed.", headers={"Allow": "POST"})
        session_id = request.headers.get(SESSION_HEADER)
        if not session_id:
            return PlainTextResponse("Missing mcp-session-id header", status_code=400)
        channel = sessions.get(session_id)
        if channel is None:
            return PlainTextResponse(f"Session not found: {session_id}", status_code=404)
        channel.close()
        return Response(status_code=200)

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok", "service": SERVICE_NAME}

    return app


def run_http(config: ServerConfig, server: Optional[McpServer] = None) -> None:
    app = create_app(config, server)
    mode = "stateless" if config.stateless else "session"
    logger.info("Perplexity MCP Server listening on http://%s:%d/mcp (%s mode)", config.host, config.port, mode)
    uvicorn.run(
        app,
        host=config.host,
        port=config.port,
        log_level=logging.getLevelName(config.effective_log_level()).lower(),
    )
