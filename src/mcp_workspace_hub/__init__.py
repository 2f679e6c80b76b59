"""
MCP Workspace Hub - Hub de Servidores MCP por Workspace
=========================================================

Este módulo proporciona la funcionalidad principal del hub, incluyendo:
- Registro y despacho de herramientas, recursos y prompts de múltiples servidores
- Motor de aprobación automática de llamadas
- Descubrimiento y coordinación de hubs por workspace
- Bridge stdio para clientes MCP externos
- Servidores nativos con handlers en proceso

Autor: Ainsophic Team
Licencia: MIT
"""

__version__ = "0.1.0"
__author__ = "Ainsophic"
__license__ = "MIT"

from mcp_workspace_hub.core.approval import ApprovalEngine
from mcp_workspace_hub.core.config import HubConfig
from mcp_workspace_hub.core.registry import CapabilityRegistry
from mcp_workspace_hub.core.router import CallOptions, DispatchRouter
from mcp_workspace_hub.native.server import NativeProvider

__all__ = [
    "ApprovalEngine",
    "HubConfig",
    "CapabilityRegistry",
    "CallOptions",
    "DispatchRouter",
    "NativeProvider",
]
