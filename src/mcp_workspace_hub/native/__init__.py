"""
Módulo Native - Servidores de Capacidades en Proceso
======================================================

Handlers ``(req, res)`` ejecutados dentro del proceso del hub.
"""

from mcp_workspace_hub.native.server import NativeProvider

__all__ = [
    "NativeProvider",
]
