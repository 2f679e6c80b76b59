"""
Módulo Bridge - Proxy MCP Stdio hacia el Hub
==============================================

Expone un hub en ejecución como un único servidor MCP por stdio.
"""

from mcp_workspace_hub.bridge.proxy import ProxyBridge
from mcp_workspace_hub.bridge.rpc import HubRPCClient

__all__ = [
    "ProxyBridge",
    "HubRPCClient",
]
