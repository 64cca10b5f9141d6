"""
mcpbridge command line.

Connects to the configured MCP servers, runs one command, and disconnects.
"""

import argparse
import asyncio
import json
from typing import Any, Dict, List, Optional

from loguru import logger
from rich.console import Console
from rich.table import Table
from rich.text import Text

from mcpbridge import __version__
from mcpbridge.config.manager import ConfigManager
from mcpbridge.core.log import setup_logging
from mcpbridge.mcp.errors import MCPError
from mcpbridge.mcp.manager import MCPManager
from mcpbridge.mcp.session import MCPServerSession
from mcpbridge.mcp.types import TextContent
from mcpbridge.tools.registry import ToolRegistry


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mcpbridge",
        description="mcpbridge - Model Context Protocol client",
    )
    parser.add_argument(
        "--config",
        type=str,
        default="mcpbridge.yaml",
        help="Path to configuration file (YAML or JSON)"
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging"
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"mcpbridge {__version__}"
    )

    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("servers", help="Connect to every server and show its status")
    sub.add_parser("tools", help="List tools from every connected server")

    call = sub.add_parser("call", help="Call a tool by its namespaced name")
    call.add_argument("tool", help="Tool name, e.g. myserver__echo")
    call.add_argument("--args", default="{}", help="Tool arguments as a JSON object")

    resources = sub.add_parser("resources", help="List resources of a server")
    resources.add_argument("server")

    read = sub.add_parser("read", help="Read a resource")
    read.add_argument("server")
    read.add_argument("uri")

    prompts = sub.add_parser("prompts", help="List prompts of a server")
    prompts.add_argument("server")

    prompt = sub.add_parser("prompt", help="Render a prompt")
    prompt.add_argument("server")
    prompt.add_argument("name")
    prompt.add_argument("--args", default="{}", help="Prompt arguments as a JSON object")

    return parser


def _parse_json_object(raw: str) -> Dict[str, Any]:
    value = json.loads(raw or "{}")
    if not isinstance(value, dict):
        raise ValueError("arguments must be a JSON object")
    return value


def _require_server(manager: MCPManager, name: str) -> MCPServerSession:
    session = manager.get_server(name)
    if session is None:
        raise ValueError(f"MCP server not connected: {name}")
    return session


async def run(args: argparse.Namespace, console: Optional[Console] = None) -> int:
    console = console or Console()

    config = ConfigManager(args.config)
    try:
        await config.load()
    except ValueError as e:
        _print_error(console, e)
        return 1

    debug = args.debug or bool(config.get("app.debug"))
    setup_logging(
        level="DEBUG" if debug else str(config.get("logging.level", "WARNING")),
        log_file=config.get("logging.file"),
    )

    registry = ToolRegistry()
    manager = MCPManager(
        config.get_server_configs(),
        registry,
        timeouts=config.get_timeouts(),
        protocol_version=config.get_protocol_version(),
    )
    await manager.initialize()

    try:
        return await _dispatch(args, manager, registry, console)
    except (ValueError, MCPError) as e:
        _print_error(console, e)
        return 1
    finally:
        await manager.shutdown()


def _print_error(console: Console, error: Exception) -> None:
    console.print(Text.assemble(("Error:", "red"), " ", str(error)))


async def _dispatch(
    args: argparse.Namespace,
    manager: MCPManager,
    registry: ToolRegistry,
    console: Console,
) -> int:
    # Server-supplied strings are wrapped in Text so rich never parses them as markup.
    if args.command == "servers":
        table = Table(title="MCP servers")
        table.add_column("Name")
        table.add_column("State")
        table.add_column("Server")
        table.add_column("Protocol")
        table.add_column("Tools", justify="right")
        for session in manager.get_all_servers():
            info = session.info
            table.add_row(
                Text(session.name),
                session.state.value,
                Text(f"{info.name} {info.version}") if info else "-",
                Text(info.protocol_version) if info else "-",
                str(len(manager.get_server_tools(session.name))),
            )
        console.print(table)
        return 0

    if args.command == "tools":
        table = Table(title="MCP tools")
        table.add_column("Name")
        table.add_column("Description")
        for definition in registry.list_tools():
            table.add_row(Text(definition.name), Text(definition.description))
        console.print(table)
        return 0

    if args.command == "call":
        result = await registry.execute(args.tool, _parse_json_object(args.args))
        if result.success:
            console.print(Text(result.content))
            return 0
        console.print(Text(result.content, style="red"))
        return 1

    session = _require_server(manager, args.server)

    if args.command == "resources":
        table = Table(title=Text(f"Resources of {session.name}"))
        table.add_column("URI")
        table.add_column("Name")
        table.add_column("MIME type")
        for resource in await session.list_resources():
            table.add_row(Text(resource.uri), Text(resource.name), Text(resource.mime_type or ""))
        console.print(table)
        return 0

    if args.command == "read":
        for contents in await session.read_resource(args.uri):
            text = contents.text if contents.text is not None else f"[binary {contents.mime_type or 'data'}]"
            console.print(Text(text))
        return 0

    if args.command == "prompts":
        table = Table(title=Text(f"Prompts of {session.name}"))
        table.add_column("Name")
        table.add_column("Description")
        table.add_column("Arguments")
        for p in await session.list_prompts():
            table.add_row(
                Text(p.name),
                Text(p.description or ""),
                Text(", ".join(a.name for a in p.arguments)),
            )
        console.print(table)
        return 0

    if args.command == "prompt":
        messages = await session.get_prompt(args.name, _parse_json_object(args.args))
        for message in messages:
            text = message.content.text if isinstance(message.content, TextContent) else f"[{message.content.type}]"
            console.print(Text.assemble((f"{message.role}:", "bold"), " ", text))
        return 0

    raise ValueError(f"Unknown command: {args.command}")


def main(argv: Optional[List[str]] = None) -> int:
    """CLI entry point."""
    args = build_parser().parse_args(argv)
    setup_logging(level="DEBUG" if args.debug else "WARNING")
    try:
        return asyncio.run(run(args))
    except KeyboardInterrupt:
        logger.info("Interrupted")
        return 130
