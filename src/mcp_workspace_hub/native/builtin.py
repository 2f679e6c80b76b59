"""
Servidor nativo ``mcphub``: introspección del propio hub.

Expone el estado de los servidores registrados como herramienta y como
recursos, para que un cliente pueda descubrir qué hay conectado.
"""

import json

from mcp_workspace_hub.core.registry import CapabilityRegistry
from mcp_workspace_hub.native.server import NativeProvider


BUILTIN_SERVER_NAME = "mcphub"


def create_hub_server(registry: CapabilityRegistry) -> NativeProvider:
    """
    Crea el servidor nativo de introspección sobre un registro.
    """

    def _summary(server):
        caps = server["capabilities"]
        return {
            "name": server["name"],
            "displayName": server["displayName"],
            "status": server["status"],
            "tools": [tool["name"] for tool in caps["tools"]],
            "resources": [resource["uri"] for resource in caps["resources"]],
            "resourceTemplates": [template["uriTemplate"] for template in caps["resourceTemplates"]],
            "prompts": [prompt["name"] for prompt in caps["prompts"]],
        }

    def get_current_servers(req, res):
        include_disabled = bool(req.params.get("include_disabled", False))
        servers = [
            _summary(server) for server in registry.get_all_servers()
            if include_disabled or server["status"] != "disabled"
        ]
        return res.text(json.dumps(servers, indent=2)).send()

    def servers_resource(req, res):
        servers = [_summary(server) for server in registry.get_all_servers()]
        return res.text(json.dumps(servers, indent=2), "application/json").send()

    def server_resource(req, res):
        name = req.params["name"]
        for server in registry.get_all_servers():
            if server["name"] == name:
                return res.text(json.dumps(_summary(server), indent=2), "application/json").send()
        return res.error(f"Server '{name}' not found")

    hub = NativeProvider(
        BUILTIN_SERVER_NAME,
        display_name="MCP Hub",
        description="Introspección de los servidores conectados al hub",
    )
    hub.add_tool(
        "get_current_servers",
        get_current_servers,
        description="Lista los servidores del hub con su estado y capacidades",
        input_schema={
            "type": "object",
            "properties": {
                "include_disabled": {
                    "type": "boolean",
                    "description": "Incluir servidores deshabilitados (default: false)",
                },
            },
        },
        auto_approve=True,
    )
    hub.add_resource(
        "mcphub://servers",
        servers_resource,
        name="Servidores del hub",
        description="Estado y capacidades de todos los servidores",
        mime_type="application/json",
    )
    hub.add_resource_template(
        "mcphub://servers/{name}",
        server_resource,
        name="Servidor del hub por nombre",
        description="Estado y capacidades de un servidor",
        mime_type="application/json",
    )
    return hub
