"""CLI entry point for the Perplexity MCP server."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys

from .config import EnvironmentSettings, load_server_config


def _add_common_arguments(parser: argparse.ArgumentParser):
    parser.add_argument("--config", help="Path to server config (JSON or YAML)")
    parser.add_argument("--verbose", "-v", action="store_true", default=None, help="Enable debug logging")
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARN", "ERROR"],
        type=str.upper,
        help="Log verbosity threshold (default: ERROR)",
    )
    parser.add_argument("--dump-effective-config", action="store_true", help="Print resolved config to stderr")


def main():
    parser = argparse.ArgumentParser(
        prog="perplexity-mcp-server",
        description="Perplexity MCP Server - expose the Perplexity API as MCP tools",
    )
    sub = parser.add_subparsers(dest="command")

    p_stdio = sub.add_parser("stdio", help="Serve a single client over stdin/stdout")
    _add_common_arguments(p_stdio)
    p_stdio.add_argument("--trace-rpc", action="store_true", default=None, help="Log JSON-RPC frames to stderr")

    p_http = sub.add_parser("http", help="Serve multiple clients over streamable HTTP")
    _add_common_arguments(p_http)
    p_http.add_argument("--host", help="Bind address (default: 127.0.0.1, use 0.0.0.0 in containers)")
    p_http.add_argument("--port", type=int, help="Bind port (default: 8080)")
    p_http.add_argument("--allowed-origins", help="Comma-separated CORS origins, or *")
    p_http.add_argument(
        "--stateless",
        action="store_true",
        default=None,
        help="Give every request its own ephemeral channel instead of tracking sessions",
    )

    args = parser.parse_args()

    if args.command not in {"stdio", "http"}:
        parser.print_help()
        sys.exit(1)

    if not EnvironmentSettings().api_key():
        print("Error: PERPLEXITY_API_KEY environment variable is required", file=sys.stderr)
        sys.exit(1)

    cli_overrides = {
        "verbose": args.verbose,
        "log_level": args.log_level,
        "config_path": args.config,
        "trace_rpc": getattr(args, "trace_rpc", None),
        "host": getattr(args, "host", None),
        "port": getattr(args, "port", None),
        "allowed_origins": getattr(args, "allowed_origins", None),
        "stateless": getattr(args, "stateless", None),
    }
    try:
        config = load_server_config(config_path=args.config, cli_overrides=cli_overrides)
    except (OSError, ValueError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(1)

    logging.basicConfig(
        level=config.effective_log_level(),
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        stream=sys.stderr,
    )

    if args.dump_effective_config:
        print(json.dumps(config.as_dict(), indent=2), file=sys.stderr)

    from .server import create_server

    server = create_server()

    if args.command == "stdio":
        from .stdio_server import run_stdio

        try:
            asyncio.run(run_stdio(server, config))
        except KeyboardInterrupt:
            pass
    else:
        from .http_server import run_http

        run_http(config, server)


if __name__ == "__main__":
    main()
