from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional

from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.types import TextContent, Tool

import reconciler
from errors import CustomResourceError
from k8s_resource import load_cluster_clients
from manifest import dump_config, equivalent
from settings import Settings

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("mcp-k8s-custom")

server = Server("mcp-k8s-custom")


def _document_schema(*extra: str) -> Dict[str, Any]:
    props = {
        "json": {
            "type": "string",
            "description": "JSON (or YAML) document of one API object: apiVersion, kind, metadata.name",
        },
    }
    for key in extra:
        props[key] = {"type": "string"}
    return {
        "type": "object",
        "properties": props,
        "required": ["json"],
        "additionalProperties": False,
    }


@server.list_tools()
async def list_tools() -> List[Tool]:
    return [
        Tool(
            name="custom_create",
            description="Create one object of any kind. Returns its id ('name' or 'namespace/name') and live state.",
            inputSchema=_document_schema(),
        ),
        Tool(
            name="custom_read",
            description="Read the live state of one object, without server-managed fields.",
            inputSchema=_document_schema(),
        ),
        Tool(
            name="custom_update",
            description="Replace one object. Skipped when previous_json is given and equivalent to json.",
            inputSchema=_document_schema("previous_json"),
        ),
        Tool(
            name="custom_delete",
            description="Delete one object.",
            inputSchema=_document_schema(),
        ),
        Tool(
            name="custom_diff",
            description="Tell whether two documents differ outside server-managed fields.",
            inputSchema={
                "type": "object",
                "properties": {
                    "old_json": {"type": "string"},
                    "new_json": {"type": "string"},
                },
                "required": ["old_json", "new_json"],
                "additionalProperties": False,
            },
        ),
        Tool(
            name="custom_import",
            description="Read an existing object by id ('name' or 'namespace/name') so it can be tracked.",
            inputSchema={
                "type": "object",
                "properties": {
                    "id": {"type": "string"},
                    "apiVersion": {"type": "string"},
                    "kind": {"type": "string"},
                },
                "required": ["id", "apiVersion", "kind"],
                "additionalProperties": False,
            },
        ),
    ]


# -------------------------------------------------------------------
# Tool bodies (blocking, run in a worker thread)
# -------------------------------------------------------------------

def _with_clients(settings: Settings, fn: Callable[..., Any]) -> Any:
    clients = load_cluster_clients(settings)
    try:
        return fn(clients)
    finally:
        clients.close()


def _options(settings: Settings, verb: str) -> Dict[str, Any]:
    return {
        "default_namespace": settings.default_namespace,
        "request_timeout": settings.timeout_for(verb),
    }


def _create(settings: Settings, arguments: Dict[str, Any]) -> Dict[str, Any]:
    def run(clients):
        ident = reconciler.create(clients, arguments["json"], **_options(settings, "create"))
        state = reconciler.read(clients, arguments["json"], **_options(settings, "read"))
        return {"id": ident, "json": state}

    return _with_clients(settings, run)


def _read(settings: Settings, arguments: Dict[str, Any]) -> Dict[str, Any]:
    def run(clients):
        return {"json": reconciler.read(clients, arguments["json"], **_options(settings, "read"))}

    return _with_clients(settings, run)


def _update(settings: Settings, arguments: Dict[str, Any]) -> Dict[str, Any]:
    def run(clients):
        updated = reconciler.update(
            clients,
            arguments["json"],
            previous=arguments.get("previous_json"),
            **_options(settings, "update"),
        )
        state = reconciler.read(clients, arguments["json"], **_options(settings, "read"))
        return {"updated": updated, "json": state}

    return _with_clients(settings, run)


def _delete(settings: Settings, arguments: Dict[str, Any]) -> Dict[str, Any]:
    def run(clients):
        reconciler.delete(clients, arguments["json"], **_options(settings, "delete"))
        return {"deleted": True}

    return _with_clients(settings, run)


def _import(settings: Settings, arguments: Dict[str, Any]) -> Dict[str, Any]:
    def run(clients):
        state = reconciler.import_resource(
            clients,
            arguments["id"],
            arguments["apiVersion"],
            arguments["kind"],
            **_options(settings, "read"),
        )
        return {"id": arguments["id"], "json": state}

    return _with_clients(settings, run)


_OPERATIONS = {
    "custom_create": ("create", _create),
    "custom_read": ("read", _read),
    "custom_update": ("update", _update),
    "custom_delete": ("delete", _delete),
    "custom_import": ("read", _import),
}


async def run_tool(name: str, arguments: Dict[str, Any], settings: Optional[Settings] = None) -> str:
    settings = settings or Settings.from_env()
    args = arguments or {}

    if name == "custom_diff":
        same = equivalent(args.get("old_json", ""), args.get("new_json", ""))
        return dump_config({"equivalent": same})

    if name not in _OPERATIONS:
        raise ValueError(f"Unknown tool: {name}")

    verb, body = _OPERATIONS[name]
    out = await asyncio.wait_for(
        asyncio.to_thread(body, settings, args),
        timeout=settings.timeout_for(verb),
    )
    return dump_config(out)


async def _safe_call(coro):
    try:
        return await coro
    except CustomResourceError as e:
        logger.warning("%s", e)
        return f"ERROR: {type(e).__name__}: {e}"
    except asyncio.TimeoutError:
        logger.warning("Operation timed out, its outcome on the cluster is unknown")
        return "ERROR: TimeoutError: operation timed out; it may still be applied on the cluster, read the object before retrying"
    except Exception as e:
        logger.exception("Unexpected tool failure")
        return f"ERROR: {type(e).__name__}: {e}"


@server.call_tool()
async def call_tool(name: str, arguments: dict):
    text = await _safe_call(run_tool(name, arguments))
    return [TextContent(type="text", text=text)]


async def main() -> None:
    logger.info("mcp-k8s-custom started | generic custom resource CRUD over stdio")
    async with stdio_server() as (read_stream, write_stream):
        await server.run(
            read_stream=read_stream,
            write_stream=write_stream,
            initialization_options=server.create_initialization_options(),
        )


if __name__ == "__main__":
    asyncio.run(main())
