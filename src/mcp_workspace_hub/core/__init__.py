"""
Módulo Core - Componentes Fundamentales del Hub
=================================================

Este paquete contiene los componentes fundamentales del hub:
- Capabilities: Modelo de capacidades y reglas de nombres
- Config: Configuración del hub y de cada servidor
- Registry: Registro de servidores y su ciclo de vida
- Router: Despacho de llamadas con aprobación
- Approval: Motor de decisión de aprobación
- Workspace: Descubrimiento y coordinación de hubs por workspace
"""

from mcp_workspace_hub.core.approval import ApprovalDecision, ApprovalEngine
from mcp_workspace_hub.core.config import HubConfig
from mcp_workspace_hub.core.registry import CapabilityRegistry
from mcp_workspace_hub.core.router import DispatchRouter

__all__ = [
    "ApprovalDecision",
    "ApprovalEngine",
    "HubConfig",
    "CapabilityRegistry",
    "DispatchRouter",
]
