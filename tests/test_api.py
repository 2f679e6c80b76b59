"""
Tests de la API de Control
============================

Tests de los endpoints FastAPI que consume el bridge, con un registro
nativo inyectado (sin subprocess).

Autor: Ainsophic Team
"""

import pytest
from fastapi.testclient import TestClient

from mcp_workspace_hub import __version__
from mcp_workspace_hub.core.config import HubConfig
from mcp_workspace_hub.main import build_registry, create_app
from mcp_workspace_hub.native.server import NativeProvider


@pytest.fixture
def registry():
    config = HubConfig.from_dict({"hub": {"auto_approve": True}})
    registry = build_registry(config)
    weather = NativeProvider("weather")
    weather.add_tool("get_weather", lambda req, res: res.text(f"Soleado en {req.params['city']}").send())
    weather.add_resource_template(
        "weather://forecast/{city}",
        lambda req, res: res.text(f"Pronóstico {req.params['city']}").send(),
    )
    weather.add_prompt("brief", lambda req, res: res.user().text("Resumen").send())
    registry.register(weather)
    return registry


@pytest.fixture
def client(registry):
    """
    Fixture que levanta la aplicación con su lifespan.
    """
    with TestClient(create_app(registry=registry)) as client:
        yield client


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "ok"
    assert response.json()["version"] == __version__
    assert response.json()["servers"] == 2


def test_list_servers(client):
    """
    Test: La lista incluye el servidor de introspección y el nativo registrado.
    """
    servers = client.get("/api/servers").json()["servers"]

    assert [server["name"] for server in servers] == ["mcphub", "weather"]
    assert servers[1]["capabilities"]["tools"][0]["name"] == "get_weather"


def test_call_tool(client):
    response = client.post("/api/servers/tools", json={
        "server_name": "weather",
        "tool": "get_weather",
        "params": {"arguments": {"city": "Lima"}, "caller": {"type": "external", "source": "proxy"}},
    })

    assert response.json() == {"content": [{"type": "text", "text": "Soleado en Lima"}]}


def test_errors_use_envelope(client):
    """
    Test: Los errores viajan como ``{"error": msg}`` con estado 200.
    """
    response = client.post("/api/servers/tools", json={"server_name": "nope", "tool": "x", "params": {}})

    assert response.status_code == 200
    assert response.json() == {"error": "Server 'nope' not found"}


def test_access_resource_and_prompt(client):
    resource = client.post("/api/servers/resources", json={
        "server_name": "weather",
        "uri": "weather://forecast/Quito",
        "params": {},
    })
    prompt = client.post("/api/servers/prompts", json={
        "server_name": "weather",
        "prompt": "brief",
        "params": {"arguments": {}},
    })

    assert resource.json()["contents"][0]["text"] == "Pronóstico Quito"
    assert prompt.json()["messages"][0]["content"]["text"] == "Resumen"


def test_builtin_server_tool(client):
    """
    Test: ``mcphub__get_current_servers`` describe los servidores del hub.
    """
    response = client.post("/api/servers/tools", json={
        "server_name": "mcphub",
        "tool": "get_current_servers",
        "params": {"arguments": {}},
    })

    assert '"weather"' in response.json()["content"][0]["text"]


def test_stop_and_start_server(client):
    """
    Test: Detener con ``disable`` deja el servidor deshabilitado y fuera de las llamadas.
    """
    stopped = client.post("/api/servers/stop", params={"disable": "true"}, json={"server_name": "weather"})
    assert stopped.json()["server"]["status"] == "disabled"

    denied = client.post("/api/servers/tools", json={
        "server_name": "weather", "tool": "get_weather", "params": {"arguments": {"city": "Lima"}},
    })
    assert "not connected" in denied.json()["error"]

    started = client.post("/api/servers/start", json={"server_name": "weather"})
    assert started.json()["server"]["status"] == "connected"

    missing = client.post("/api/servers/start", json={"server_name": "nope"})
    assert missing.json() == {"error": "Server 'nope' not found"}
