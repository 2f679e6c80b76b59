"""
Tests del Transporte MCP
==========================

Tests del adaptador ClientProvider y del manejo de notificaciones del
wrapper de cliente MCP, con un cliente simulado y con un servidor stdio
real lanzado como subprocess.

Autor: Ainsophic Team
"""

import asyncio
import sys
from pathlib import Path

import pytest

from mcp import types

from mcp_workspace_hub.core.capabilities import (
    CallerContext,
    Capabilities,
    PromptDescriptor,
    ResourceDescriptor,
    ServerStatus,
    ToolDescriptor,
)
from mcp_workspace_hub.core.config import HubConfig, ServerConfig
from mcp_workspace_hub.core.errors import NotConnectedError
from mcp_workspace_hub.core.registry import CapabilityRegistry
from mcp_workspace_hub.transport.client import MCPClientWrapper, MCPConnectionError, ServerInfo
from mcp_workspace_hub.transport.provider import ClientProvider


MUTABLE_SERVER = Path(__file__).parent / "servers" / "mutable_server.py"


class FakeClient:
    """
    Cliente MCP simulado con las mismas operaciones que MCPClientWrapper.
    """

    def __init__(self, fail_connect=False):
        self.fail_connect = fail_connect
        self.is_initialized = False
        self.prompt_args = None
        self.discovered = Capabilities(
            tools=[ToolDescriptor(name="query")],
            resources=[ResourceDescriptor(uri="db://tables")],
            prompts=[PromptDescriptor(name="explain")],
        )

    async def connect(self):
        if self.fail_connect:
            raise MCPConnectionError("Fallo al conectar: command not found")
        return self

    async def initialize(self):
        self.is_initialized = True
        return ServerInfo(name="sqlite", version="1.2.0", discovered=self.discovered)

    async def disconnect(self):
        self.is_initialized = False

    async def discover(self):
        return Capabilities(tools=[ToolDescriptor(name="query"), ToolDescriptor(name="vacuum")])

    async def call_tool(self, name, arguments):
        return types.CallToolResult(content=[types.TextContent(type="text", text=f"{name}:{arguments}")])

    async def read_resource(self, uri):
        return types.ReadResourceResult(
            contents=[types.TextResourceContents(uri=uri, text="users", mimeType="text/plain")]
        )

    async def get_prompt(self, name, arguments):
        self.prompt_args = arguments
        return types.GetPromptResult(messages=[
            types.PromptMessage(role="user", content=types.TextContent(type="text", text="explica"))
        ])


@pytest.fixture
def server_config():
    return ServerConfig.from_dict("sqlite", {"command": "python", "args": ["-m", "mcp.server.sqlite"]})


def test_wrapper_requires_command_or_url():
    with pytest.raises(ValueError):
        MCPClientWrapper()

    assert MCPClientWrapper(url="http://localhost:9000/sse").target == "http://localhost:9000/sse"
    assert MCPClientWrapper(command="python", args=["-m", "srv"]).target == "python -m srv"


@pytest.mark.asyncio
async def test_list_changed_notification_invokes_callback():
    """
    Test: Una notificación de cambio de lista llama al callback con su tipo.
    """
    kinds = []

    async def on_list_changed(kind):
        kinds.append(kind)

    wrapper = MCPClientWrapper(command="python", on_list_changed=on_list_changed)

    await wrapper._handle_message(types.ServerNotification(
        types.ToolListChangedNotification(method="notifications/tools/list_changed")
    ))
    await wrapper._handle_message(types.ServerNotification(
        types.PromptListChangedNotification(method="notifications/prompts/list_changed")
    ))
    await wrapper._handle_message(RuntimeError("stream error"))
    await asyncio.gather(*list(wrapper._background_tasks))

    assert kinds == ["tools", "prompts"]


@pytest.mark.asyncio
async def test_list_changed_callback_runs_outside_handler():
    """
    Test: El handler de mensajes retorna sin esperar al callback de refresco.
    """
    release = asyncio.Event()
    done = []

    async def on_list_changed(kind):
        await release.wait()
        done.append(kind)

    wrapper = MCPClientWrapper(command="python", on_list_changed=on_list_changed)

    await asyncio.wait_for(wrapper._handle_message(types.ServerNotification(
        types.ToolListChangedNotification(method="notifications/tools/list_changed")
    )), timeout=1)
    assert done == []
    assert len(wrapper._background_tasks) == 1

    release.set()
    await asyncio.gather(*list(wrapper._background_tasks))
    assert done == ["tools"]
    assert wrapper._background_tasks == set()


@pytest.mark.asyncio
async def test_list_changed_from_stdio_server():
    """
    Test: Un servidor stdio real que notifica cambios de herramientas sigue
    respondiendo y el registro recibe la herramienta nueva.
    """
    registry = CapabilityRegistry(HubConfig.from_dict({}))
    config = ServerConfig(name="mutable", command=sys.executable, args=[str(MUTABLE_SERVER)])
    provider = registry.register(ClientProvider(config, timeout=10.0, registry=registry))
    await registry.start_server("mutable")
    assert provider.is_connected

    try:
        result = await provider.execute_tool(provider.find_tool("mutate"), {}, CallerContext())
        assert result["content"][0]["text"] == "mutate"

        for _ in range(100):
            if provider.find_tool("added") is not None:
                break
            await asyncio.sleep(0.05)
        assert provider.find_tool("added") is not None

        result = await provider.execute_tool(provider.find_tool("ping"), {}, CallerContext())
        assert result["content"][0]["text"] == "ping"
    finally:
        await registry.shutdown()


@pytest.mark.asyncio
async def test_start_discovers_capabilities(server_config):
    """
    Test: Al iniciar, el proveedor toma las capacidades descubiertas.
    """
    provider = ClientProvider(server_config, client=FakeClient())

    await provider.start()

    assert provider.status == ServerStatus.CONNECTED
    assert [tool.name for tool in provider.capabilities.tools] == ["query"]
    assert provider.description == "python -m mcp.server.sqlite"


@pytest.mark.asyncio
async def test_start_failure_through_registry(server_config):
    """
    Test: Un servidor que no arranca queda en ``error`` con el motivo.
    """
    registry = CapabilityRegistry()
    registry.register(ClientProvider(server_config, client=FakeClient(fail_connect=True)))

    provider = await registry.start_server("sqlite")

    assert provider.status == ServerStatus.ERROR
    assert "command not found" in provider.error


def test_disabled_config_starts_disabled():
    config = ServerConfig.from_dict("old", {"command": "old-mcp", "disabled": True})

    assert ClientProvider(config, client=FakeClient()).status == ServerStatus.DISABLED


@pytest.mark.asyncio
async def test_results_are_plain_dicts(server_config):
    """
    Test: Los resultados del SDK se convierten a diccionarios JSON.
    """
    provider = ClientProvider(server_config, client=FakeClient())
    await provider.start()

    tool_result = await provider.execute_tool(provider.find_tool("query"), {"sql": "SELECT 1"}, CallerContext())
    resource, params = provider.find_matching_resource("db://tables")
    resource_result = await provider.read_resource(resource, "db://tables", params, CallerContext())

    assert tool_result["content"][0]["text"] == "query:{'sql': 'SELECT 1'}"
    assert tool_result["isError"] is False
    assert resource_result["contents"][0]["text"] == "users"


@pytest.mark.asyncio
async def test_prompt_arguments_are_strings(server_config):
    client = FakeClient()
    provider = ClientProvider(server_config, client=client)
    await provider.start()

    await provider.render_prompt(provider.find_prompt("explain"), {"table": "users", "limit": 5}, CallerContext())

    assert client.prompt_args == {"table": "users", "limit": "5"}


@pytest.mark.asyncio
async def test_list_changed_refreshes_registry(server_config):
    """
    Test: Una notificación del servidor reemplaza sus listas en el registro.
    """
    registry = CapabilityRegistry(HubConfig.from_dict({}))
    provider = registry.register(ClientProvider(server_config, registry=registry, client=FakeClient()))
    await registry.start_server("sqlite")

    await provider._on_list_changed("tools")

    assert [tool.name for tool in provider.capabilities.tools] == ["query", "vacuum"]


@pytest.mark.asyncio
async def test_stop_clears_capabilities(server_config):
    provider = ClientProvider(server_config, client=FakeClient())
    await provider.start()

    await provider.stop(disable=True)

    assert provider.status == ServerStatus.DISABLED
    assert provider.capabilities.tools == []
    with pytest.raises(NotConnectedError):
        await provider.refresh_capabilities()
