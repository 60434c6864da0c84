"""Runtime configuration for the Perplexity MCP server."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping, Optional

import yaml

logger = logging.getLogger("perplexity_mcp_server.config")

DEFAULT_TIMEOUT_MS = 300000
DEFAULT_PORT = 8080
DEFAULT_HOST = "127.0.0.1"
DEFAULT_LOG_LEVEL = "ERROR"
PROXY_ENV_VARS = ("PERPLEXITY_PROXY", "HTTPS_PROXY", "HTTP_PROXY")
LOG_LEVELS = {"DEBUG", "INFO", "WARN", "WARNING", "ERROR"}


def _parse_bool(value: Any, default: Optional[bool] = None) -> Optional[bool]:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return bool(value)
    text = str(value).strip().lower()
    if text in {"1", "true", "yes", "y", "on"}:
        return True
    if text in {"0", "false", "no", "n", "off"}:
        return False
    return default


def _parse_origins(value: Any) -> Optional[list[str]]:
    if isinstance(value, list):
        items = [str(v).strip() for v in value]
    elif isinstance(value, str):
        items = [part.strip() for part in value.split(",")]
    else:
        return None
    items = [item for item in items if item]
    return items or None


def _read_config_file(path: str) -> dict[str, Any]:
    data = Path(path).read_text(encoding="utf-8")
    suffix = Path(path).suffix.lower()
    if suffix in {".yml", ".yaml"}:
        try:
            parsed = yaml.safe_load(data) or {}
        except yaml.YAMLError as exc:
            raise ValueError(f"Invalid YAML in {path}: {exc}") from exc
    else:
        parsed = json.loads(data)
    if not isinstance(parsed, dict):
        raise ValueError("Server config must be a mapping object")
    return parsed


class EnvironmentSettings:
    """Per-call settings read from the live environment on every access.

    Nothing here is cached, so an operator can change the credential, the
    timeout or the proxy between two tool calls without a restart.
    """

    def __init__(self, env: Optional[Mapping[str, str]] = None):
        self._env = env

    @property
    def env(self) -> Mapping[str, str]:
        return os.environ if self._env is None else self._env

    def api_key(self) -> Optional[str]:
        return self.env.get("PERPLEXITY_API_KEY") or None

    def timeout_ms(self) -> int:
        raw = self.env.get("PERPLEXITY_TIMEOUT_MS")
        if not raw:
            return DEFAULT_TIMEOUT_MS
        try:
            value = int(str(raw).strip())
        except ValueError:
            logger.warning("Ignoring invalid PERPLEXITY_TIMEOUT_MS=%r", raw)
            return DEFAULT_TIMEOUT_MS
        if value <= 0:
            logger.warning("Ignoring non-positive PERPLEXITY_TIMEOUT_MS=%r", raw)
            return DEFAULT_TIMEOUT_MS
        return value

    def proxy_url(self) -> Optional[str]:
        env = self.env
        for name in PROXY_ENV_VARS:
            value = env.get(name)
            if value:
                return value
        return None


@dataclass
class ServerConfig:
    """Resolved process config after file/env/CLI merge."""

    verbose: bool = False
    log_level: str = DEFAULT_LOG_LEVEL
    trace_rpc: bool = False

    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    allowed_origins: list[str] = field(default_factory=lambda: ["*"])
    stateless: bool = False

    source_path: Optional[str] = None

    def effective_log_level(self) -> int:
        if self.verbose:
            return logging.DEBUG
        name = self.log_level.upper()
        if name == "WARN":
            name = "WARNING"
        return logging.getLevelName(name)

    def as_dict(self) -> dict[str, Any]:
        return {
            "verbose": self.verbose,
            "log_level": self.log_level,
            "trace_rpc": self.trace_rpc,
            "host": self.host,
            "port": self.port,
            "allowed_origins": list(self.allowed_origins),
            "stateless": self.stateless,
            "source_path": self.source_path,
        }


def _apply_file_config(cfg: ServerConfig, config_data: dict) -> ServerConfig:
    server = config_data.get("server", {})
    if isinstance(server, dict):
        if _parse_bool(server.get("verbose")) is not None:
            cfg.verbose = bool(_parse_bool(server.get("verbose")))
        if _parse_bool(server.get("trace_rpc")) is not None:
            cfg.trace_rpc = bool(_parse_bool(server.get("trace_rpc")))

    http = config_data.get("http", {})
    if isinstance(http, dict):
        if isinstance(http.get("host"), str) and http["host"]:
            cfg.host = http["host"]
        if isinstance(http.get("port"), int) and not isinstance(http["port"], bool):
            cfg.port = http["port"]
        origins = _parse_origins(http.get("allowed_origins"))
        if origins:
            cfg.allowed_origins = origins
        if _parse_bool(http.get("stateless")) is not None:
            cfg.stateless = bool(_parse_bool(http.get("stateless")))

    logging_cfg = config_data.get("logging", {})
    if isinstance(logging_cfg, dict):
        if isinstance(logging_cfg.get("level"), str) and logging_cfg["level"]:
            cfg.log_level = logging_cfg["level"].upper()

    return cfg


def _apply_env(cfg: ServerConfig, env: Mapping[str, str]) -> ServerConfig:
    if _parse_bool(env.get("PERPLEXITY_MCP_VERBOSE")) is not None:
        cfg.verbose = bool(_parse_bool(env.get("PERPLEXITY_MCP_VERBOSE")))
    if _parse_bool(env.get("PERPLEXITY_MCP_TRACE_RPC")) is not None:
        cfg.trace_rpc = bool(_parse_bool(env.get("PERPLEXITY_MCP_TRACE_RPC")))
    if env.get("PERPLEXITY_LOG_LEVEL"):
        cfg.log_level = env["PERPLEXITY_LOG_LEVEL"].strip().upper()

    if env.get("BIND_ADDRESS"):
        cfg.host = env["BIND_ADDRESS"].strip()
    if env.get("PORT"):
        try:
            cfg.port = int(env["PORT"])
        except ValueError:
            logger.warning("Ignoring invalid PORT=%r", env["PORT"])
    origins = _parse_origins(env.get("ALLOWED_ORIGINS"))
    if origins:
        cfg.allowed_origins = origins
    if _parse_bool(env.get("PERPLEXITY_MCP_STATELESS")) is not None:
        cfg.stateless = bool(_parse_bool(env.get("PERPLEXITY_MCP_STATELESS")))
    return cfg


def _apply_cli_overrides(cfg: ServerConfig, cli: Mapping[str, Any]) -> ServerConfig:
    def _set_bool(name: str, target_attr: str):
        value = cli.get(name)
        if value is not None:
            setattr(cfg, target_attr, bool(value))

    _set_bool("verbose", "verbose")
    _set_bool("trace_rpc", "trace_rpc")
    _set_bool("stateless", "stateless")

    if cli.get("host"):
        cfg.host = str(cli["host"])
    if cli.get("port") is not None:
        cfg.port = int(cli["port"])
    origins = _parse_origins(cli.get("allowed_origins"))
    if origins:
        cfg.allowed_origins = origins
    if cli.get("log_level"):
        cfg.log_level = str(cli["log_level"]).upper()
    return cfg


def load_server_config(
    config_path: Optional[str] = None,
    cli_overrides: Optional[Mapping[str, Any]] = None,
    env: Optional[Mapping[str, str]] = None,
) -> ServerConfig:
    """Resolve server config from defaults + file + env + CLI."""
    env_map = os.environ if env is None else env
    cli = dict(cli_overrides or {})
    cfg = ServerConfig()

    resolved_path = config_path or cli.get("config_path") or env_map.get("PERPLEXITY_MCP_CONFIG")
    if resolved_path:
        config_data = _read_config_file(resolved_path)
        cfg = _apply_file_config(cfg, config_data)
        cfg.source_path = resolved_path

    cfg = _apply_env(cfg, env_map)
    cfg = _apply_cli_overrides(cfg, cli)

    if cfg.log_level not in LOG_LEVELS:
        raise ValueError(f"Invalid log level: {cfg.log_level}")
    if not 0 <= cfg.port <= 65535:
        raise ValueError(f"Invalid port: {cfg.port}")
    return cfg
