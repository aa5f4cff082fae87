from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

from turnloop.engine import DEFAULT_MAX_SESSIONS, DEFAULT_MAX_TURNS, DEFAULT_SENTINEL_NAMES
from turnloop.tool_invoker import DEFAULT_LOOP_THRESHOLD

_PROVIDER_ENV_VARS = {
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
}


@dataclass
class RuntimeEnv:
    provider_api_key: str
    provider_env_var: str


@dataclass
class AppConfig:
    provider_name: str
    model: str
    max_tokens: int
    temperature: float
    max_turns: int
    loop_threshold: int
    working_directory: str | None
    log_level: str
    sentinel_tool_names: list[str] = field(default_factory=lambda: list(DEFAULT_SENTINEL_NAMES))
    client_tools: list[dict] = field(default_factory=list)
    mcp_server_configs: dict = field(default_factory=dict)
    log_consumers: list | None = None
    system_prompt: str | None = None
    max_sessions: int = DEFAULT_MAX_SESSIONS


def load_json_config(path: str | Path | None = None) -> dict:
    config_path = Path(path) if path is not None else Path.cwd() / "config.json"
    if config_path.exists():
        with open(config_path, encoding="utf-8") as f:
            return json.load(f)
    return {}


def parse_app_config(config: dict) -> AppConfig:
    provider_name = str(config.get("Provider", "anthropic")).strip().lower()
    if provider_name not in _PROVIDER_ENV_VARS:
        raise ValueError(f"Unknown provider: {provider_name!r}. Supported: 'anthropic', 'openai'")

    max_turns = int(config.get("MaxTurns", DEFAULT_MAX_TURNS))
    if max_turns < 1:
        raise ValueError(f"MaxTurns must be at least 1, got {max_turns}")
    loop_threshold = int(config.get("LoopThreshold", DEFAULT_LOOP_THRESHOLD))
    if loop_threshold < 2:
        raise ValueError(f"LoopThreshold must be at least 2, got {loop_threshold}")
    max_sessions = int(config.get("MaxSessions", DEFAULT_MAX_SESSIONS))
    if max_sessions < 1:
        raise ValueError(f"MaxSessions must be at least 1, got {max_sessions}")

    return AppConfig(
        provider_name=provider_name,
        model=config.get("Model", "claude-sonnet-4-5-20250929"),
        max_tokens=int(config.get("MaxTokens", 8192)),
        temperature=float(config.get("Temperature", 1.0)),
        max_turns=max_turns,
        loop_threshold=loop_threshold,
        working_directory=config.get("WorkingDirectory"),
        log_level=config.get("LogLevel", "INFO"),
        sentinel_tool_names=list(config.get("SentinelToolNames", DEFAULT_SENTINEL_NAMES)),
        client_tools=list(config.get("ClientTools", [])),
        mcp_server_configs=config.get("McpServers", {}),
        log_consumers=config.get("LogConsumers"),
        system_prompt=config.get("SystemPrompt") or None,
        max_sessions=max_sessions,
    )


def resolve_runtime_env(provider_name: str, *, dotenv_path: str | Path | None = None) -> RuntimeEnv:
    """Read the provider key from the environment, after loading a .env file if present.

    Variables already set in the process environment win over the file.
    """
    load_dotenv(dotenv_path)
    env_var = _PROVIDER_ENV_VARS.get(provider_name, "ANTHROPIC_API_KEY")
    return RuntimeEnv(
        provider_api_key=os.environ.get(env_var, ""),
        provider_env_var=env_var,
    )
