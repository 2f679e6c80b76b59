"""
Tests del Cliente RPC del Hub
===============================

Tests del cliente httpx de la API de control usando un transporte simulado.

Autor: Ainsophic Team
"""

import json

import httpx
import pytest

from mcp_workspace_hub.bridge.rpc import UDS_BASE_URL, HubRPCClient
from mcp_workspace_hub.core.errors import HubConnectionError, TransportTimeoutError


def make_client(handler, **kwargs):
    """
    Crea un cliente RPC cuyo transporte HTTP es ``handler``.
    """
    rpc = HubRPCClient(socket_path="/tmp/mcphub-test.sock", **kwargs)
    rpc._client = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url=UDS_BASE_URL)
    return rpc


def test_requires_socket_or_url():
    with pytest.raises(ValueError):
        HubRPCClient()


def test_timeouts_are_converted_to_seconds():
    rpc = HubRPCClient(url="http://localhost:37373/", rpc_call_timeout=1500, connection_timeout=250)

    assert rpc.url == "http://localhost:37373"
    assert rpc.rpc_call_timeout == 1.5
    assert rpc.connection_timeout == 0.25
    assert rpc.target == "http://localhost:37373"


@pytest.mark.asyncio
async def test_connect_and_list_servers():
    """
    Test: ``/health`` verifica la conexión y ``/api/servers`` lista servidores.
    """
    def handler(request):
        if request.url.path == "/health":
            return httpx.Response(200, json={"status": "ok"})
        return httpx.Response(200, json={"servers": [{"name": "weather", "status": "connected"}]})

    rpc = make_client(handler)

    assert (await rpc.connect())["status"] == "ok"
    assert (await rpc.get_all_servers())[0]["name"] == "weather"
    await rpc.close()


@pytest.mark.asyncio
async def test_call_payloads():
    """
    Test: Los cuerpos POST llevan servidor, capacidad y parámetros.
    """
    seen = []

    def handler(request):
        seen.append((request.url.path, json.loads(request.content)))
        return httpx.Response(200, json={"content": []})

    rpc = make_client(handler)
    params = {"arguments": {"city": "Lima"}, "caller": {"type": "external", "source": "proxy"}}

    await rpc.call_tool("weather", "get_weather", params)
    await rpc.access_resource("weather", "weather://forecast/Lima", {"caller": params["caller"]})
    await rpc.get_prompt("weather", "brief", params)

    assert seen[0] == ("/api/servers/tools", {"server_name": "weather", "tool": "get_weather", "params": params})
    assert seen[1][1]["uri"] == "weather://forecast/Lima"
    assert seen[2][0] == "/api/servers/prompts"
    assert seen[2][1]["prompt"] == "brief"


@pytest.mark.asyncio
async def test_error_envelope_is_returned():
    """
    Test: El sobre ``{"error": msg}`` llega intacto al llamante.
    """
    rpc = make_client(lambda request: httpx.Response(200, json={"error": "Server 'x' not found"}))

    assert await rpc.call_tool("x", "y", {}) == {"error": "Server 'x' not found"}


@pytest.mark.asyncio
async def test_timeout_maps_to_transport_timeout():
    def handler(request):
        raise httpx.ReadTimeout("timed out", request=request)

    rpc = make_client(handler)

    with pytest.raises(TransportTimeoutError):
        await rpc.call_tool("weather", "slow", {})


@pytest.mark.asyncio
async def test_transport_failures_map_to_connection_error():
    """
    Test: Estados HTTP de error, fallos de conexión y JSON inválido son HubConnectionError.
    """
    def refused(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(HubConnectionError, match="500"):
        await make_client(lambda request: httpx.Response(500)).get_all_servers()

    with pytest.raises(HubConnectionError, match="Cannot reach hub"):
        await make_client(refused).connect()

    with pytest.raises(HubConnectionError):
        await make_client(lambda request: httpx.Response(200, content=b"not json")).get_all_servers()
