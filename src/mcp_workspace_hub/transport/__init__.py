"""
Módulo Transport - Conexiones a Servidores MCP
================================================

Este paquete contiene los componentes para hablar con servidores MCP externos:
- MCPClientWrapper: Cliente MCP sobre stdio (subprocess) o SSE (remoto)
- ClientProvider: Adaptador del cliente al contrato de servidor de capacidades
"""

from mcp_workspace_hub.transport.client import MCPClientWrapper
from mcp_workspace_hub.transport.provider import ClientProvider

__all__ = [
    "MCPClientWrapper",
    "ClientProvider",
]
