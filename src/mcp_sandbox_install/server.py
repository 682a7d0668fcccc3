"""MCP server implementation."""
import asyncio
import json
from pathlib import Path
from typing import Any, Dict, List

import mcp.types as types
from mcp.server.lowlevel import Server
from mcp.server.models import InitializationOptions
from mcp.server import stdio

from mcp_sandbox_install import __version__
from mcp_sandbox_install.config import InstallerConfig
from mcp_sandbox_install.environments.environment import (
    cleanup_environment,
    create_environment_from_path,
    require_environment,
)
from mcp_sandbox_install.errors import InstallerError, log_error
from mcp_sandbox_install.installs.orchestrator import collect_install_events
from mcp_sandbox_install.logging import configure_logging, get_logger

logger = get_logger("server")

SERVER_NAME = "mcp-sandbox-install"

tools = [
    types.Tool(
        name="local_dev_from_filesystem",
        description="Create a new local development environment from a filesystem path",
        inputSchema={
            "type": "object",
            "properties": {
                "path": {"type": "string", "description": "Local filesystem path"}
            },
            "required": ["path"],
        },
    ),
    types.Tool(
        name="local_dev_install_packages",
        description=(
            "Install npm packages into a local development environment and "
            "restart its dev server, returning the ordered progress events"
        ),
        inputSchema={
            "type": "object",
            "properties": {
                "env_id": {"type": "string", "description": "Environment identifier"},
                "packages": {
                    "type": "array",
                    "items": {"type": "string"},
                    "description": "Package identifiers, optionally with @version",
                },
            },
            "required": ["env_id", "packages"],
        },
    ),
    types.Tool(
        name="local_dev_cleanup",
        description="Stop the dev server and clean up a local development environment",
        inputSchema={
            "type": "object",
            "properties": {
                "env_id": {"type": "string", "description": "Environment identifier"}
            },
            "required": ["env_id"],
        },
    ),
]


def _response(payload: Dict[str, Any]) -> List[types.TextContent]:
    return [types.TextContent(type="text", text=json.dumps(payload))]


async def handle_tool(name: str, arguments: Dict[str, Any]) -> List[types.TextContent]:
    """Dispatch a tool call and wrap the outcome as a JSON text result."""
    try:
        logger.debug("tool_call_received", tool=name, arguments=arguments)

        if name == "local_dev_from_filesystem":
            env = await create_environment_from_path(Path(arguments["path"]))
            return _response({
                "success": True,
                "data": {
                    "id": env.id,
                    "working_dir": str(env.work_dir),
                    "created_at": env.created_at.isoformat(),
                    "package_manager": env.package_manager.name.value,
                }
            })

        elif name == "local_dev_install_packages":
            env = require_environment(arguments["env_id"])
            events = await collect_install_events(
                env, arguments.get("packages"), InstallerConfig.from_env()
            )
            return _response({
                "success": True,
                "data": {
                    "env_id": env.id,
                    "events": [event.to_dict() for event in events],
                }
            })

        elif name == "local_dev_cleanup":
            env = require_environment(arguments["env_id"])
            cleanup_environment(env, InstallerConfig.from_env())
            return _response({
                "success": True,
                "data": {"message": "Environment cleaned up successfully"}
            })

        return _response({"success": False, "error": f"Unknown tool: {name}"})

    except InstallerError as e:
        log_error(e, {"tool": name}, logger)
        error = e.to_error_data()
        return _response({
            "success": False,
            "error": error.message,
            "code": error.code,
            "details": error.data,
        })
    except Exception as e:
        log_error(e, {"tool": name}, logger)
        return _response({"success": False, "error": str(e)})


async def init_server() -> Server:
    logger.info("tools_registered", tools=[t.name for t in tools])

    server = Server(SERVER_NAME)

    @server.list_tools()
    async def list_tools() -> List[types.Tool]:
        logger.debug("tools_requested")
        return tools

    @server.call_tool()
    async def call_tool(
        name: str, arguments: Dict[str, Any]
    ) -> list[types.TextContent | types.ImageContent | types.EmbeddedResource]:
        return await handle_tool(name, arguments or {})

    return server


async def serve() -> None:
    configure_logging()
    logger.info("server_starting", version=__version__)
    server = await init_server()
    async with stdio.stdio_server() as (read_stream, write_stream):
        init_options = InitializationOptions(
            server_name=SERVER_NAME,
            server_version=__version__,
            capabilities=types.ServerCapabilities(
                tools=types.ToolsCapability(listChanged=False),
                logging=types.LoggingCapability(),
            ),
        )
        await server.run(read_stream, write_stream, init_options)


def main() -> None:
    """Run the MCP server."""
    asyncio.run(serve())
