"""MCP database adapter server - read-only access to registered SQL databases."""

import asyncio
import logging
import sys
from pathlib import Path
from typing import Optional
from urllib.parse import quote, unquote

import mcp.server.stdio
import mcp.types as types
from mcp.server import Server
from mcp.server.lowlevel import NotificationOptions
from mcp.server.lowlevel.helper_types import ReadResourceContents
from mcp.server.models import InitializationOptions
from pydantic import AnyUrl

from .constants import DEFAULT_STATE_DIR, EXIT_FAILURE, EXIT_SUCCESS, SERVER_NAME, SERVER_VERSION
from .errors import DatabaseAdapterError
from .registry import ConnectionRegistry
from .storage import RegistryStorage
from .tool_definitions import ToolDescriptions
from .tools import TOOL_NAMES, DatabaseTools

SCHEMA_URI_PREFIX = "schema://"

# Set up logger with flushing
logger = logging.getLogger("mcp_db_adapter")
logger.setLevel(logging.INFO)
handler = logging.StreamHandler(sys.stderr)
handler.setFormatter(logging.Formatter("%(levelname)s: %(message)s"))
handler.flush = lambda: sys.stderr.flush()  # Force flush after each log
logger.addHandler(handler)


class DatabaseAdapterServer(Server):
    """Extended MCP Server that owns the database tools."""

    def __init__(self, name: str, tools: DatabaseTools):
        super().__init__(name)
        self.tools = tools


def schema_uri(name: str) -> str:
    return f"{SCHEMA_URI_PREFIX}{quote(name, safe='')}"


def database_name_from_uri(uri: str) -> str:
    if not uri.startswith(SCHEMA_URI_PREFIX):
        raise ValueError(f"Unsupported resource URI: {uri}")
    return unquote(uri[len(SCHEMA_URI_PREFIX):].rstrip("/"))


def check_databases(registry: ConnectionRegistry) -> bool:
    """Probe every registered database.

    Returns:
        True if all databases answered, False otherwise
    """
    names = registry.list()
    print()
    if not names:
        print("No databases configured")
        return True

    all_reachable = True
    for name in names:
        database = registry.require(name)
        adapter = registry.adapter_for(database)
        reachable = adapter.check_reachability(database.config)
        all_reachable = all_reachable and reachable
        status = "[PASSED]" if reachable else "[FAILED]"
        print(f"{status} {name} ({database.engine}): {database.config.dsn}")
    return all_reachable


def create_server(registry: ConnectionRegistry) -> DatabaseAdapterServer:
    """Build the server and register its MCP handlers."""
    server = DatabaseAdapterServer(SERVER_NAME, DatabaseTools(registry))

    @server.list_resources()
    async def list_resources() -> list[types.Resource]:
        """Cached schemas of registered databases."""
        return [
            types.Resource(
                uri=AnyUrl(schema_uri(name)),
                name=f"{name} schema",
                description=f"Cached schema snapshot of database '{name}'",
                mimeType="application/json",
            )
            for name in server.tools.cached_schema_names()
        ]

    @server.read_resource()
    async def read_resource(uri: AnyUrl) -> list[ReadResourceContents]:
        name = database_name_from_uri(str(uri))
        text = server.tools.read_cached_schema(name)
        return [ReadResourceContents(content=text, mime_type="application/json")]

    @server.list_prompts()
    async def list_prompts() -> list[types.Prompt]:
        """List available prompts (none for this server)."""
        return []

    @server.list_tools()
    async def list_tools() -> list[types.Tool]:
        descriptions = ToolDescriptions.get_descriptions()
        input_schemas = ToolDescriptions.get_input_schemas()
        return [
            types.Tool(name=name, description=descriptions[name], inputSchema=input_schemas[name])
            for name in TOOL_NAMES
        ]

    @server.call_tool()
    async def call_tool(name: str, arguments: dict) -> list[types.TextContent]:
        """Handle tool calls on a worker thread; raised errors become error results."""
        try:
            result = await asyncio.to_thread(server.tools.call, name, arguments)
        except DatabaseAdapterError as e:
            logger.error(f"Error in {name}: {type(e).__name__}: {e}")
            raise
        return [types.TextContent(type="text", text=result)]

    return server


def parse_args(args: list[str]) -> tuple[Optional[Path], bool, bool]:
    """Parse ``[--state-dir <dir>] [--in-memory] [--check]``."""
    state_dir: Optional[Path] = None
    in_memory = False
    check_mode = False

    i = 0
    while i < len(args):
        if args[i] == "--check":
            check_mode = True
            i += 1
        elif args[i] == "--in-memory":
            in_memory = True
            i += 1
        elif args[i] == "--state-dir":
            if i + 1 >= len(args):
                sys.stderr.write("Error: --state-dir requires a value\n")
                sys.exit(EXIT_FAILURE)
            state_dir = Path(args[i + 1]).expanduser()
            i += 2
        else:
            sys.stderr.write(f"Error: Unknown argument '{args[i]}'\n")
            sys.stderr.write("Usage: mcp-db-adapter [--state-dir <dir>] [--in-memory] [--check]\n")
            sys.stderr.write("\n")
            sys.stderr.write("Optional Flags:\n")
            sys.stderr.write(f"  --state-dir <dir>  - Directory of the encrypted registry (default: {DEFAULT_STATE_DIR})\n")
            sys.stderr.write("  --in-memory        - Keep registered databases for this process only\n")
            sys.stderr.write("  --check            - Probe every registered database and exit\n")
            sys.exit(EXIT_FAILURE)

    return state_dir, in_memory, check_mode


async def main():
    """Parse command line arguments and run the server."""
    state_dir, in_memory, check_mode = parse_args(sys.argv[1:])

    try:
        storage = None if in_memory else RegistryStorage(state_dir)
        registry = ConnectionRegistry(storage=storage)
    except DatabaseAdapterError as e:
        sys.stderr.write(f"Error: {e}\n")
        sys.exit(EXIT_FAILURE)

    if check_mode:
        success = await asyncio.to_thread(check_databases, registry)
        sys.exit(EXIT_SUCCESS if success else EXIT_FAILURE)

    server = create_server(registry)

    logger.info("Starting MCP database adapter server")
    if storage is None:
        logger.info("Registry: in-memory (not persisted)")
    else:
        logger.info(f"Registry: {storage.registry_path}")
    logger.info(f"Registered databases: {len(registry.list())}")

    async with mcp.server.stdio.stdio_server() as (read_stream, write_stream):
        init_options = InitializationOptions(
            server_name=SERVER_NAME,
            server_version=SERVER_VERSION,
            capabilities=server.get_capabilities(
                notification_options=NotificationOptions(),
                experimental_capabilities={},
            ),
            instructions=(
                "Register databases with add_database, then use introspect_schema before "
                "writing queries. Only single read-only SELECT statements are executed."
            ),
        )
        await server.run(read_stream, write_stream, init_options)


def run():
    """Entry point for the mcp-db-adapter command."""
    asyncio.run(main())


if __name__ == "__main__":
    run()
