"""
Tests de Configuración
========================

Tests unitarios para la carga de configuración del hub.

Autor: Ainsophic Team
"""

import pytest
import json
import tempfile
from pathlib import Path

from mcp_workspace_hub.core.config import (
    DEFAULT_LOOK_FOR,
    HubConfig,
    ServerConfig,
)


@pytest.fixture
def sample_config():
    """
    Fixture que retorna una configuración de ejemplo.
    """
    return {
        "mcpServers": {
            "weather-api": {
                "command": "python",
                "args": ["-m", "weather_mcp"],
                "env": {"API_KEY": "secret"},
                "autoApprove": ["get_weather"],
                "disabled_tools": ["delete_cache"],
                "disabled_resourceTemplates": ["weather://raw/{id}"],
            },
            "remote": {
                "url": "http://localhost:9000/sse",
                "disabled": True,
            },
        },
        "hub": {
            "port": 37000,
            "auto_approve": False,
            "mcp_request_timeout": 30000,
        },
        "workspace": {
            "look_for": [".mcphub/servers.json"],
            "port_range": {"min": 45000, "max": 45010},
        },
        "logging": {
            "level": "DEBUG",
        },
    }


@pytest.fixture
def config_file(sample_config):
    """
    Fixture que crea un archivo de configuración temporal.
    """
    with tempfile.NamedTemporaryFile(mode='w', suffix='.json', delete=False) as f:
        json.dump(sample_config, f)
        config_path = f.name

    yield config_path

    # Cleanup
    Path(config_path).unlink(missing_ok=True)


def test_server_config_from_dict():
    """
    Test: Creación de ServerConfig desde diccionario.
    """
    server = ServerConfig.from_dict("files", {
        "command": "npx",
        "args": ["-y", "files-mcp"],
        "autoApprove": True,
    })

    assert server.name == "files"
    assert server.transport == "stdio"
    assert server.get_full_command() == ["npx", "-y", "files-mcp"]
    assert server.auto_approve is True
    assert server.get_disabled() == {"tools": [], "resources": [], "resource_templates": [], "prompts": []}


def test_remote_server_uses_sse():
    """
    Test: Un servidor con ``url`` usa transporte sse y no tiene comando.
    """
    server = ServerConfig.from_dict("remote", {"url": "http://localhost:9000/sse"})

    assert server.transport == "sse"
    assert server.get_full_command() == []


def test_defaults():
    """
    Test: Una configuración vacía usa los valores por defecto.
    """
    config = HubConfig.from_dict({})

    assert config.servers == {}
    assert config.hub.auto_approve is False
    assert config.hub.mcp_request_timeout == 60000
    assert config.workspace.enabled is True
    assert config.workspace.look_for == DEFAULT_LOOK_FOR
    assert (config.workspace.port_range.min, config.workspace.port_range.max) == (40000, 41000)
    assert config.logging.level == "INFO"


def test_load_config(config_file):
    """
    Test: Carga de configuración desde archivo.
    """
    config = HubConfig.load(config_file)

    assert set(config.servers) == {"weather-api", "remote"}
    assert config.hub.port == 37000
    assert config.hub.mcp_request_timeout == 30000
    assert config.workspace.port_range.min == 45000
    assert config.logging.level == "DEBUG"
    assert config.config_path == Path(config_file)


def test_disabled_capabilities(config_file):
    """
    Test: Las listas de capacidades deshabilitadas se agrupan por tipo.
    """
    config = HubConfig.load(config_file)
    disabled = config.get_server_config("weather-api").get_disabled()

    assert disabled["tools"] == ["delete_cache"]
    assert disabled["resource_templates"] == ["weather://raw/{id}"]


def test_get_server_config_by_sanitized_name(config_file):
    """
    Test: El servidor se encuentra también por su nombre saneado.
    """
    config = HubConfig.load(config_file)

    assert config.get_server_config("weather_api").name == "weather-api"
    assert config.get_server_config("missing") is None


def test_loads_are_independent(config_file, sample_config, tmp_path):
    """
    Test: Cada carga produce una instancia propia sin estado compartido.
    """
    sample_config["hub"]["port"] = 38000
    other_file = tmp_path / "other.json"
    other_file.write_text(json.dumps(sample_config))

    first = HubConfig.load(config_file)
    second = HubConfig.load(str(other_file))

    assert first is not second
    assert first.hub.port == 37000
    assert second.hub.port == 38000
    assert first.config_path == Path(config_file)


def test_missing_config_file():
    """
    Test: Error cuando el archivo no existe.
    """
    with pytest.raises(FileNotFoundError):
        HubConfig.load("/nonexistent/servers.json")
