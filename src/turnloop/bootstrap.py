from __future__ import annotations

from dataclasses import dataclass

from loguru import logger

from turnloop.app_config import AppConfig, RuntimeEnv
from turnloop.engine import GenerationEngine
from turnloop.logging_config import setup_logging
from turnloop.mcp.mcp_manager import McpManager
from turnloop.persistence import InMemoryMessageStore, MessageStore
from turnloop.provider import ModelStreamSource, create_stream_source
from turnloop.system_prompt import build_system_prompt
from turnloop.tool import Tool
from turnloop.tool_registry import ToolRegistry, get_builtin_tools


@dataclass
class EngineRuntime:
    engine: GenerationEngine
    registry: ToolRegistry
    store: MessageStore
    mcp_manager: McpManager | None
    builtin_tools: list[Tool]
    mcp_tools: list[Tool]
    log_descriptions: list[str]

    async def close(self) -> None:
        if self.mcp_manager is not None:
            await self.mcp_manager.close()


async def bootstrap_runtime(
    app: AppConfig,
    env: RuntimeEnv,
    *,
    store: MessageStore | None = None,
    source: ModelStreamSource | None = None,
) -> EngineRuntime:
    log_descriptions = setup_logging(level=app.log_level, consumers=app.log_consumers)

    builtin_tools = get_builtin_tools(app.working_directory, app.client_tools)

    mcp_manager: McpManager | None = None
    mcp_tools: list[Tool] = []
    if app.mcp_server_configs:
        mcp_manager = McpManager(app.mcp_server_configs)
        mcp_tools = await mcp_manager.connect_all()

    registry = ToolRegistry(builtin_tools + mcp_tools)

    if source is None:
        if not env.provider_api_key:
            raise ValueError(f"{env.provider_env_var} environment variable is required.")
        source = create_stream_source(
            app.provider_name,
            env.provider_api_key,
            app.model,
            max_tokens=app.max_tokens,
            temperature=app.temperature,
        )

    system_prompt = app.system_prompt or build_system_prompt(app.working_directory, registry.descriptors())
    engine = GenerationEngine(
        source,
        registry,
        store if store is not None else InMemoryMessageStore(),
        system_prompt=system_prompt,
        model=app.model,
        max_turns=app.max_turns,
        loop_threshold=app.loop_threshold,
        sentinel_names=app.sentinel_tool_names,
        max_sessions=app.max_sessions,
    )
    logger.info(f"Engine ready: provider={app.provider_name}, model={app.model}, tools={len(registry)}")

    return EngineRuntime(
        engine=engine,
        registry=registry,
        store=engine.store,
        mcp_manager=mcp_manager,
        builtin_tools=builtin_tools,
        mcp_tools=mcp_tools,
        log_descriptions=log_descriptions,
    )
