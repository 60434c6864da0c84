"""Tests for the stdio host loop."""

import asyncio
import io
import json

from perplexity_mcp_server.config import ServerConfig
from perplexity_mcp_server.server import create_server
from perplexity_mcp_server.stdio_server import _read_jsonrpc_stdin_sync, _trace, run_stdio
from tests.fakes import FakeClient


def _serve(messages, config=None):
    inbound = iter(list(messages) + [None])
    written = []
    server = create_server(client=FakeClient())
    asyncio.run(
        run_stdio(
            server,
            config,
            read_message=lambda: next(inbound),
            write_message=written.append,
        )
    )
    return written


def test_serves_requests_until_eof():
    written = _serve(
        [
            {"jsonrpc": "2.0", "id": 1, "method": "initialize", "params": {"protocolVersion": "2025-06-18"}},
            {"jsonrpc": "2.0", "method": "notifications/initialized"},
            {"jsonrpc": "2.0", "id": 2, "method": "tools/list"},
            {
                "jsonrpc": "2.0",
                "id": 3,
                "method": "tools/call",
                "params": {"name": "perplexity_ask", "arguments": {"messages": [{"role": "user", "content": "q"}]}},
            },
        ]
    )
    by_id = {msg["id"]: msg for msg in written}
    assert set(by_id) == {1, 2, 3}
    assert by_id[1]["result"]["protocolVersion"] == "2025-06-18"
    assert len(by_id[2]["result"]["tools"]) == 4
    assert by_id[3]["result"]["content"][0]["text"] == "fake reply"


def test_eof_with_no_messages_exits_cleanly():
    assert _serve([]) == []


def test_errors_are_answered_not_raised():
    written = _serve([{"jsonrpc": "2.0", "id": 7, "method": "nope"}, {"id": 8}])
    by_id = {msg["id"]: msg for msg in written}
    assert by_id[7]["error"]["code"] == -32601
    assert by_id[8]["error"]["code"] == -32600


def test_trace_rpc_writes_frames_to_stderr(capsys):
    _serve([{"jsonrpc": "2.0", "id": 1, "method": "ping"}], ServerConfig(trace_rpc=True))
    err = capsys.readouterr().err
    assert "trace-rpc enabled" in err
    assert "rpc-> request ping id=1" in err
    assert "rpc<- response id=1 status=result" in err


def test_trace_is_silent_when_disabled(capsys):
    _trace(False, "->", {"jsonrpc": "2.0", "id": 1, "method": "ping"})
    assert capsys.readouterr().err == ""


def test_stdin_reader_skips_blank_and_non_json_lines(monkeypatch):
    payload = b'\n  \nnot json\n{"jsonrpc": "2.0", "id": 1, "method": "ping"}\n'

    class FakeStdin:
        buffer = io.BytesIO(payload)

    monkeypatch.setattr("sys.stdin", FakeStdin)
    assert _read_jsonrpc_stdin_sync() == {"jsonrpc": "2.0", "id": 1, "method": "ping"}
    assert _read_jsonrpc_stdin_sync() is None


def test_responses_are_compact_json_lines(monkeypatch):
    from perplexity_mcp_server import stdio_server

    class FakeStdout:
        buffer = io.BytesIO()

    monkeypatch.setattr("sys.stdout", FakeStdout)
    stdio_server._write_jsonrpc_stdout({"jsonrpc": "2.0", "id": 1, "result": {"text": "héllo"}})
    line = FakeStdout.buffer.getvalue().decode("utf-8")
    assert line.endswith("\n")
    assert json.loads(line) == {"jsonrpc": "2.0", "id": 1, "result": {"text": "héllo"}}
    assert ", " not in line
