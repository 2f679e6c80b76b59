"""
Objetos de petición para handlers nativos.

Cada petición agrupa los parámetros resueltos, una referencia al servidor
propietario y el descriptor que coincidió.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from mcp_workspace_hub.core.capabilities import (
    CallerContext,
    CapabilityProvider,
    PromptDescriptor,
    ToolDescriptor,
)


@dataclass
class BaseRequest:
    server: CapabilityProvider
    params: Dict[str, Any] = field(default_factory=dict)
    caller: CallerContext = field(default_factory=CallerContext)
    context: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ToolRequest(BaseRequest):
    """Petición de herramienta: ``params`` son los argumentos de la llamada."""
    tool: Optional[ToolDescriptor] = None


@dataclass
class ResourceRequest(BaseRequest):
    """Petición de recurso: ``params`` son las capturas de la plantilla."""
    resource: Any = None
    uri: str = ""
    uri_template: Optional[str] = None


@dataclass
class PromptRequest(BaseRequest):
    prompt: Optional[PromptDescriptor] = None
