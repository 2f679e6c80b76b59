"""
Tests del Proxy Bridge
========================

Tests del bridge stdio contra un hub en proceso: listados frescos,
reenvío de llamadas y traducción de errores a McpError.

Autor: Ainsophic Team
"""

import pytest

from mcp.shared.exceptions import McpError

from mcp_workspace_hub.bridge.cli import build_parser
from mcp_workspace_hub.bridge.proxy import PROXY_CALLER, ProxyBridge
from mcp_workspace_hub.core.approval import ApprovalEngine
from mcp_workspace_hub.core.capabilities import CallerContext
from mcp_workspace_hub.core.config import HubConfig
from mcp_workspace_hub.core.errors import HubConnectionError, HubError
from mcp_workspace_hub.core.registry import CapabilityRegistry
from mcp_workspace_hub.core.router import CallOptions, DispatchRouter
from mcp_workspace_hub.native.server import NativeProvider


class InProcessRPC:
    """
    Sustituto del cliente RPC que habla directamente con un router,
    aplicando el mismo sobre ``{"error": msg}`` que la API de control.
    """

    def __init__(self, router):
        self.router = router
        self.calls = []
        self.fail_listing = False

    async def _envelope(self, operation):
        try:
            return await operation
        except HubError as e:
            return {"error": e.message}

    async def get_all_servers(self):
        if self.fail_listing:
            raise HubConnectionError("Cannot reach hub")
        return self.router.list_servers()

    async def call_tool(self, server_name, tool_name, params):
        self.calls.append(("tool", server_name, tool_name, params))
        opts = CallOptions(caller=CallerContext.from_dict(params.get("caller")))
        return await self._envelope(self.router.call_tool(server_name, tool_name, params.get("arguments"), opts))

    async def access_resource(self, server_name, uri, params):
        self.calls.append(("resource", server_name, uri, params))
        return await self._envelope(self.router.access_resource(server_name, uri))

    async def get_prompt(self, server_name, prompt_name, params):
        return await self._envelope(self.router.get_prompt(server_name, prompt_name, params.get("arguments")))


@pytest.fixture
def registry():
    registry = CapabilityRegistry(HubConfig.from_dict({"hub": {"auto_approve": True}}))
    weather = NativeProvider("weather")
    weather.add_tool(
        "get_weather",
        lambda req, res: res.text(f"Soleado en {req.params['city']}").send(),
        description="Clima actual",
        input_schema={"type": "object", "properties": {"city": {"type": "string"}}},
    )
    weather.add_tool("fails", lambda req, res: res.error("Sin datos"))
    weather.add_resource_template(
        "weather://forecast/{city}",
        lambda req, res: res.text(f"Pronóstico {req.params['city']}").send(),
    )
    weather.add_prompt("brief", lambda req, res: res.user().text(f"Resumen {req.params.get('city')}").send())
    registry.register(weather)
    return registry


@pytest.fixture
def rpc(registry):
    return InProcessRPC(DispatchRouter(registry, ApprovalEngine(registry.config)))


@pytest.fixture
def bridge(rpc):
    return ProxyBridge(rpc)


@pytest.mark.asyncio
async def test_list_tools_is_fresh(bridge, registry):
    """
    Test: Cada listado refleja el estado actual del hub.
    """
    names = [tool.name for tool in await bridge.list_tools()]
    assert names == ["weather__get_weather", "weather__fails"]

    registry.remove_capability("weather", "tools", "fails")

    names = [tool.name for tool in await bridge.list_tools()]
    assert names == ["weather__get_weather"]


@pytest.mark.asyncio
async def test_list_when_hub_unreachable(bridge, rpc):
    """
    Test: Si el hub no responde, los listados quedan vacíos sin error.
    """
    rpc.fail_listing = True

    assert await bridge.list_tools() == []
    assert await bridge.list_prompts() == []


@pytest.mark.asyncio
async def test_list_prompts_and_templates(bridge):
    prompts = await bridge.list_prompts()
    templates = await bridge.list_resource_templates()

    assert [prompt.name for prompt in prompts] == ["weather__brief"]
    assert [template.uriTemplate for template in templates] == ["weather://weather://forecast/{city}"]


@pytest.mark.asyncio
async def test_call_tool_forwards_with_proxy_caller(bridge, rpc):
    """
    Test: La llamada se reenvía desnamespaced y con el llamante del proxy.
    """
    content = await bridge.call_tool("weather__get_weather", {"city": "Lima"})

    assert content[0].text == "Soleado en Lima"
    assert rpc.calls[0] == ("tool", "weather", "get_weather", {"arguments": {"city": "Lima"}, "caller": PROXY_CALLER})


@pytest.mark.asyncio
async def test_call_tool_errors_become_mcp_errors(bridge):
    """
    Test: Sobre de error, resultado ``isError`` y nombre inválido se traducen a McpError.
    """
    with pytest.raises(McpError, match="not found"):
        await bridge.call_tool("weather__missing", {})

    with pytest.raises(McpError, match="Sin datos"):
        await bridge.call_tool("weather__fails", {})

    with pytest.raises(McpError):
        await bridge.call_tool("no_separator", {})


@pytest.mark.asyncio
async def test_transport_error_becomes_mcp_error(bridge, rpc):
    """
    Test: Un fallo de transporte también llega como McpError.
    """
    async def unreachable(*args):
        raise HubConnectionError("Cannot reach hub")

    rpc.call_tool = unreachable

    with pytest.raises(McpError, match="Cannot reach hub"):
        await bridge.call_tool("weather__get_weather", {"city": "Lima"})


@pytest.mark.asyncio
async def test_empty_response_is_an_error(bridge, rpc):
    async def empty(*args):
        return {}

    rpc.get_prompt = empty

    with pytest.raises(McpError, match="No result"):
        await bridge.get_prompt("weather__brief", {})


@pytest.mark.asyncio
async def test_read_resource(bridge, rpc):
    """
    Test: El URI namespaced se separa y se reenvía el URI original.
    """
    contents = await bridge.read_resource("weather://weather://forecast/Lima")

    assert contents[0].content == "Pronóstico Lima"
    assert rpc.calls[0][1:3] == ("weather", "weather://forecast/Lima")


@pytest.mark.asyncio
async def test_read_resource_error_becomes_mcp_error(bridge, registry):
    """
    Test: Un recurso que responde con error llega como McpError y no como contenido.
    """
    registry.get("weather").add_resource(
        "weather://broken",
        lambda req, res: res.error("Estación fuera de línea"),
    )

    with pytest.raises(McpError, match="Estación fuera de línea"):
        await bridge.read_resource("weather://weather://broken")


@pytest.mark.asyncio
async def test_get_prompt(bridge):
    result = await bridge.get_prompt("weather__brief", {"city": "Lima"})

    assert result.messages[0].role == "user"
    assert result.messages[0].content.text == "Resumen Lima"


@pytest.mark.parametrize("uri, expected", [
    ("weather://weather://forecast/Lima", ("weather", "weather://forecast/Lima")),
    ("weather://weather//forecast/Lima", ("weather", "weather://forecast/Lima")),
    ("files://file:///tmp/a.txt", ("files", "file:///tmp/a.txt")),
    ("mcphub://servers", ("mcphub", "servers")),
])
def test_split_uri_normalization(uri, expected):
    """
    Test: Se recupera el ``://`` que la validación de URLs pudo perder.
    """
    assert ProxyBridge._split_uri(uri) == expected


def test_split_uri_invalid():
    with pytest.raises(McpError):
        ProxyBridge._split_uri("plain-uri")


def test_build_server():
    """
    Test: El servidor MCP del bridge se construye con el nombre del proxy.
    """
    server = ProxyBridge(InProcessRPC(None)).build_server()

    assert server.name == "mcphub-proxy"


def test_cli_parser_requires_one_target():
    """
    Test: El bridge exige exactamente uno de ``--socket`` o ``--url``.
    """
    parser = build_parser()

    args = parser.parse_args(["-s", "/tmp/mcphub.sock", "-t", "1000"])
    assert args.socket == "/tmp/mcphub.sock"
    assert args.rpc_call_timeout == 1000
    assert args.connection_timeout == 5000

    with pytest.raises(SystemExit):
        parser.parse_args([])
    with pytest.raises(SystemExit):
        parser.parse_args(["-s", "/tmp/a.sock", "-u", "http://localhost:37373"])
