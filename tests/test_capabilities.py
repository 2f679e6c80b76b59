"""
Tests del Modelo de Capacidades
=================================

Tests unitarios para las reglas de nombres namespaced, la resolución de
recursos por URI y el formato de cable de los servidores.

Autor: Ainsophic Team
"""

import pytest

from mcp_workspace_hub.core.capabilities import (
    CallerContext,
    CapabilityProvider,
    PromptArgument,
    PromptDescriptor,
    ResourceDescriptor,
    ResourceTemplateDescriptor,
    ToolDescriptor,
    namespace_resource,
    namespace_tool,
    sanitize,
    split_namespaced,
    split_resource_uri,
)


@pytest.fixture
def weather_provider():
    """
    Fixture con un servidor que declara un recurso fijo y dos plantillas.
    """
    provider = CapabilityProvider("weather")
    provider.capabilities.tools.append(ToolDescriptor(name="get_weather", description="Clima actual"))
    provider.capabilities.resources.append(ResourceDescriptor(uri="weather://forecast/default"))
    provider.capabilities.resource_templates.extend([
        ResourceTemplateDescriptor(uri_template="weather://forecast/{city}"),
        ResourceTemplateDescriptor(uri_template="weather://{kind}/{city}"),
    ])
    return provider


@pytest.mark.parametrize("name", [
    "my-server",
    "a__b",
    "weather://x",
    "___",
    "ñandú server.v2",
    "plain",
])
def test_sanitize_is_idempotent_and_separator_free(name):
    """
    Test: sanitize es idempotente y nunca produce separadores.
    """
    once = sanitize(name)

    assert sanitize(once) == once
    assert "__" not in once
    assert "://" not in once


def test_sanitize_examples():
    """
    Test: Caracteres no alfanuméricos se convierten en un único guion bajo.
    """
    assert sanitize("my-server") == "my_server"
    assert sanitize("a..b--c") == "a_b_c"
    assert sanitize("_lead") == "_lead"


def test_namespace_round_trip():
    """
    Test: Componer y separar un nombre namespaced devuelve las partes originales.
    """
    server = sanitize("my server")
    name = namespace_tool(server, "read__file")

    assert name == "my_server__read__file"
    assert split_namespaced(name) == ("my_server", "read__file")

    uri = namespace_resource(server, "file:///tmp/a.txt")
    assert split_resource_uri(uri) == ("my_server", "file:///tmp/a.txt")


def test_split_without_separator_raises():
    """
    Test: Un nombre sin separador es inválido.
    """
    with pytest.raises(ValueError):
        split_namespaced("no_separator")

    with pytest.raises(ValueError):
        split_resource_uri("plain-uri")


def test_template_match_captures_single_segment():
    """
    Test: Un placeholder captura exactamente un segmento de ruta.
    """
    template = ResourceTemplateDescriptor(uri_template="weather://forecast/{city}")

    assert template.match("weather://forecast/Lima") == {"city": "Lima"}
    assert template.match("weather://forecast/Lima/extra") is None
    assert template.match("xweather://forecast/Lima") is None


def test_template_escapes_literal_characters():
    """
    Test: Los caracteres especiales de la plantilla se tratan como literales.
    """
    template = ResourceTemplateDescriptor(uri_template="docs://v1.0/{page}")

    assert template.match("docs://v1.0/intro") == {"page": "intro"}
    assert template.match("docs://v1x0/intro") is None


def test_fixed_uri_wins_over_template(weather_provider):
    """
    Test: El URI fijo se resuelve antes que cualquier plantilla.
    """
    resource, params = weather_provider.find_matching_resource("weather://forecast/default")

    assert isinstance(resource, ResourceDescriptor)
    assert params == {}


def test_template_capture(weather_provider):
    """
    Test: Un URI no fijo se resuelve por plantilla con sus parámetros.
    """
    resource, params = weather_provider.find_matching_resource("weather://forecast/Paris")

    assert resource.uri_template == "weather://forecast/{city}"
    assert params == {"city": "Paris"}


def test_first_declared_template_wins(weather_provider):
    """
    Test: Ante dos plantillas que coinciden gana la declarada primero.
    """
    resource, params = weather_provider.find_matching_resource("weather://forecast/Quito")
    assert resource.uri_template == "weather://forecast/{city}"

    resource, params = weather_provider.find_matching_resource("weather://alerts/Quito")
    assert resource.uri_template == "weather://{kind}/{city}"
    assert params == {"kind": "alerts", "city": "Quito"}


def test_excluded_resources_do_not_match(weather_provider):
    """
    Test: Recursos y plantillas deshabilitados no participan en la resolución.
    """
    resource, params = weather_provider.find_matching_resource(
        "weather://forecast/default",
        exclude={"resources": ["weather://forecast/default"]},
    )
    assert resource.uri_template == "weather://forecast/{city}"
    assert params == {"city": "default"}

    resource, _ = weather_provider.find_matching_resource(
        "weather://forecast/Lima",
        exclude={"resource_templates": ["weather://forecast/{city}", "weather://{kind}/{city}"]},
    )
    assert resource is None


def test_wire_shape(weather_provider):
    """
    Test: La representación de cable no incluye handlers y usa nombres camelCase.
    """
    weather_provider.capabilities.prompts.append(PromptDescriptor(
        name="forecast",
        description=lambda: "Generado",
        arguments=lambda: [PromptArgument(name="city", required=True)],
        handler=lambda req, res: None,
    ))

    data = weather_provider.to_dict(exclude={"tools": ["get_weather"]})

    assert data["name"] == "weather"
    assert data["status"] == "disconnected"
    assert data["capabilities"]["tools"] == []
    assert data["capabilities"]["resourceTemplates"][0]["uriTemplate"] == "weather://forecast/{city}"
    assert data["capabilities"]["prompts"] == [{
        "name": "forecast",
        "description": "Generado",
        "arguments": [{"name": "city", "description": "", "required": True}],
    }]
    assert "handler" not in str(data)


def test_caller_context_from_dict():
    """
    Test: El contexto del llamante remoto es ``external`` por defecto.
    """
    caller = CallerContext.from_dict({"source": "proxy"})

    assert caller.type == "external"
    assert str(caller) == "external:proxy"
    assert str(CallerContext()) == "ui"
