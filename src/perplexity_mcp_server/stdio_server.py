"""Stdio host: newline-delimited JSON-RPC on stdin/stdout for a single client."""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from typing import Any, Callable, Optional

from .config import ServerConfig
from .server import McpServer, ProtocolState

logger = logging.getLogger("perplexity_mcp_server.stdio")


def _write_jsonrpc_stdout(msg: dict):
    data = json.dumps(msg, separators=(",", ":"), ensure_ascii=False) + "\n"
    sys.stdout.buffer.write(data.encode("utf-8"))
    sys.stdout.buffer.flush()


def _read_jsonrpc_stdin_sync() -> Optional[Any]:
    while True:
        line = sys.stdin.buffer.readline()
        if not line:
            return None
        line = line.strip()
        if not line:
            continue
        try:
            return json.loads(line)
        except json.JSONDecodeError:
            logger.warning("Skipping non-JSON line from stdin: %s", line[:100])
            continue


def _trace(trace_rpc: bool, direction: str, msg: Any) -> None:
    """Log JSON-RPC frames to stderr."""
    if not trace_rpc or not isinstance(msg, dict):
        return
    method = msg.get("method")
    id_part = f" id={msg['id']}" if msg.get("id") is not None else ""
    if method:
        kind = "request" if msg.get("id") is not None else "notification"
        sys.stderr.write(f"[perplexity-mcp-server] rpc{direction} {kind} {method}{id_part}\n")
    else:
        status = "result" if "result" in msg else "error" if "error" in msg else "?"
        sys.stderr.write(f"[perplexity-mcp-server] rpc{direction} response{id_part} status={status}\n")
    sys.stderr.flush()


async def run_stdio(
    server: McpServer,
    config: Optional[ServerConfig] = None,
    *,
    read_message: Callable[[], Optional[Any]] = _read_jsonrpc_stdin_sync,
    write_message: Callable[[dict], None] = _write_jsonrpc_stdout,
):
    """Serve one client until stdin reaches EOF.

    Each request runs as its own task so a slow tool call does not hold up
    pings or other calls; writes are serialized.
    """
    cfg = config or ServerConfig()
    trace_rpc = cfg.trace_rpc
    state = ProtocolState()
    write_lock = asyncio.Lock()
    inflight: set[asyncio.Task] = set()

    if trace_rpc:
        sys.stderr.write("[perplexity-mcp-server] trace-rpc enabled\n")
        sys.stderr.flush()

    async def send_to_client(msg: dict):
        _trace(trace_rpc, "<-", msg)
        async with write_lock:
            await asyncio.to_thread(write_message, msg)

    async def serve(msg: Any):
        try:
            response = await server.handle_message(msg, state)
            if response is not None:
                await send_to_client(response)
        except Exception as exc:
            logger.error("Failed to serve message: %s", exc)

    logger.info("Perplexity MCP Server running on stdio")
    try:
        while True:
            msg = await asyncio.to_thread(read_message)
            if msg is None:
                logger.info("Client EOF, shutting down")
                return
            _trace(trace_rpc, "->", msg)
            task = asyncio.create_task(serve(msg))
            inflight.add(task)
            task.add_done_callback(inflight.discard)
    finally:
        if inflight:
            await asyncio.gather(*inflight, return_exceptions=True)
