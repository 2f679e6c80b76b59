"""
Capabilities - Modelo de Capacidades MCP
==========================================

Este módulo define el modelo de datos compartido por todos los componentes
del hub:

- Descriptores de herramientas, recursos, plantillas de recursos y prompts
- La clase base CapabilityProvider (servidor nativo, subprocess o remoto)
- El contexto del llamante y las peticiones de llamada
- Las reglas de nombres namespaced (``server__tool`` y ``server://uri``)

Patrones de Diseño Utilizados:
- Template Method: CapabilityProvider define el contrato que cada tipo
  de servidor implementa

Autor: Ainsophic Team
"""

import re
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple, Union


TOOL_SEPARATOR = "__"
RESOURCE_SEPARATOR = "://"

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9]")
_UNDERSCORE_RUNS = re.compile(r"_{2,}")
_PLACEHOLDER = re.compile(r"\{([^}]+)\}")


def sanitize(name: str) -> str:
    """
    Normaliza un nombre de servidor o capacidad para componer nombres namespaced.

    Todo carácter no alfanumérico se convierte en ``_`` y las secuencias
    de guiones bajos se colapsan a uno solo, de modo que el resultado
    nunca contiene ``__`` ni ``://``.

    Args:
        name: Nombre original

    Returns:
        Nombre saneado (idempotente)
    """
    return _UNDERSCORE_RUNS.sub("_", _UNSAFE_CHARS.sub("_", name))


def namespace_tool(server_name: str, tool_name: str) -> str:
    """Compone ``server__tool`` (también usado para prompts)."""
    return f"{server_name}{TOOL_SEPARATOR}{tool_name}"


def namespace_resource(server_name: str, uri: str) -> str:
    """Compone ``server://uri``."""
    return f"{server_name}{RESOURCE_SEPARATOR}{uri}"


def split_namespaced(name: str) -> Tuple[str, str]:
    """
    Separa un nombre ``server__capability`` en la primera aparición del separador.

    Raises:
        ValueError: Si el nombre no contiene el separador
    """
    server_name, sep, capability = name.partition(TOOL_SEPARATOR)
    if not sep or not server_name:
        raise ValueError(f"Nombre namespaced inválido: {name}")
    return server_name, capability


def split_resource_uri(uri: str) -> Tuple[str, str]:
    """
    Separa un URI ``server://uri`` en la primera aparición de ``://``.

    Raises:
        ValueError: Si el URI no contiene el separador
    """
    server_name, sep, original = uri.partition(RESOURCE_SEPARATOR)
    if not sep or not server_name or not original:
        raise ValueError(f"URI de recurso inválido: {uri}")
    return server_name, original


def _resolve(value: Any, default: Any = None) -> Any:
    # Los servidores nativos pueden declarar descripciones y schemas como funciones
    if callable(value):
        value = value()
    return default if value is None else value


class ServerStatus(str, Enum):
    """
    Estados posibles de un servidor de capacidades.
    """
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    DISABLED = "disabled"
    CONNECTING = "connecting"
    ERROR = "error"


@dataclass
class ToolDescriptor:
    """
    Descriptor de una herramienta.

    Atributos:
        name: Nombre único dentro del servidor
        description: Descripción (texto o función que la genera)
        input_schema: Schema JSON de los argumentos (dict o función)
        handler: Función que ejecuta la herramienta (solo servidores nativos)
        auto_approve: Aprobación automática declarada por la herramienta
    """
    name: str
    description: Union[str, Callable[[], str]] = ""
    input_schema: Union[Dict[str, Any], Callable[[], Dict[str, Any]]] = field(
        default_factory=lambda: {"type": "object", "properties": {}}
    )
    handler: Optional[Callable] = None
    auto_approve: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "description": _resolve(self.description, ""),
            "inputSchema": _resolve(self.input_schema, {"type": "object", "properties": {}}),
        }


@dataclass
class ResourceDescriptor:
    """
    Descriptor de un recurso con URI fijo.
    """
    uri: str
    name: str = ""
    description: Union[str, Callable[[], str]] = ""
    mime_type: Optional[str] = None
    handler: Optional[Callable] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "uri": self.uri,
            "name": self.name or self.uri,
            "description": _resolve(self.description, ""),
            "mimeType": self.mime_type,
        }


@dataclass
class ResourceTemplateDescriptor:
    """
    Descriptor de una plantilla de recurso (``weather://forecast/{city}``).

    Cada placeholder ``{nombre}`` captura exactamente un segmento de ruta
    y el URI completo debe coincidir con la plantilla.
    """
    uri_template: str
    name: str = ""
    description: Union[str, Callable[[], str]] = ""
    mime_type: Optional[str] = None
    handler: Optional[Callable] = None
    _pattern: Optional["re.Pattern[str]"] = field(default=None, init=False, repr=False, compare=False)
    _names: List[str] = field(default_factory=list, init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        parts = []
        position = 0
        for match in _PLACEHOLDER.finditer(self.uri_template):
            parts.append(re.escape(self.uri_template[position:match.start()]))
            parts.append("([^/]+)")
            self._names.append(match.group(1))
            position = match.end()
        parts.append(re.escape(self.uri_template[position:]))
        self._pattern = re.compile("".join(parts))

    def match(self, uri: str) -> Optional[Dict[str, str]]:
        """
        Intenta emparejar un URI con la plantilla.

        Returns:
            Diccionario con los valores capturados o None si no coincide
        """
        found = self._pattern.fullmatch(uri)
        if found is None:
            return None
        return dict(zip(self._names, found.groups()))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "uriTemplate": self.uri_template,
            "name": self.name or self.uri_template,
            "description": _resolve(self.description, ""),
            "mimeType": self.mime_type,
        }


@dataclass
class PromptArgument:
    name: str
    description: str = ""
    required: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "description": self.description, "required": self.required}


@dataclass
class PromptDescriptor:
    """
    Descriptor de un prompt parametrizado.

    Atributos:
        name: Nombre del prompt
        description: Descripción (texto o función)
        arguments: Lista de argumentos o función que la produce al momento de la llamada
        handler: Función que construye los mensajes (solo servidores nativos)
    """
    name: str
    description: Union[str, Callable[[], str]] = ""
    arguments: Union[List[PromptArgument], Callable[[], List[PromptArgument]]] = field(default_factory=list)
    handler: Optional[Callable] = None

    def resolve_arguments(self) -> List[PromptArgument]:
        return list(_resolve(self.arguments, []))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "description": _resolve(self.description, ""),
            "arguments": [arg.to_dict() for arg in self.resolve_arguments()],
        }


@dataclass
class Capabilities:
    """
    Conjunto de capacidades expuestas por un servidor.
    """
    tools: List[ToolDescriptor] = field(default_factory=list)
    resources: List[ResourceDescriptor] = field(default_factory=list)
    resource_templates: List[ResourceTemplateDescriptor] = field(default_factory=list)
    prompts: List[PromptDescriptor] = field(default_factory=list)

    KINDS = ("tools", "resources", "resource_templates", "prompts")


@dataclass
class CallerContext:
    """
    Contexto del llamante. Solo se usa para atribución y logging.

    Atributos:
        type: Origen de la llamada (ui, external, chat, ...)
        source: Identificador adicional del origen (p.ej. "proxy")
        meta: Metadatos libres
    """
    type: str = "ui"
    source: Optional[str] = None
    meta: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "CallerContext":
        data = data or {}
        return cls(
            type=data.get("type", "external"),
            source=data.get("source"),
            meta=data.get("meta", {}),
        )

    def __str__(self) -> str:
        return f"{self.type}:{self.source}" if self.source else self.type


class CallAction(str, Enum):
    USE_TOOL = "use_tool"
    ACCESS_RESOURCE = "access_resource"


@dataclass
class CallRequest:
    """
    Petición transitoria de llamada, evaluada por el motor de aprobación.
    """
    action: CallAction
    server: str
    tool: Optional[str] = None
    uri: Optional[str] = None
    arguments: Dict[str, Any] = field(default_factory=dict)
    caller: CallerContext = field(default_factory=CallerContext)


class CapabilityProvider:
    """
    Clase base de todo servidor de capacidades registrado en el hub.

    Las subclases implementan la ejecución real (``execute_tool``,
    ``read_resource``, ``render_prompt``) y el ciclo de vida
    (``start``/``stop``). La resolución de nombres, los estados y el
    formato de cable son comunes y viven aquí.
    """

    def __init__(
        self,
        name: str,
        display_name: Optional[str] = None,
        description: str = "",
        capabilities: Optional[Capabilities] = None,
    ):
        self.name = name
        self.display_name = display_name or name
        self.description = description
        self.status: ServerStatus = ServerStatus.DISCONNECTED
        self.capabilities = capabilities or Capabilities()
        self.last_started: Optional[float] = None
        self.error: Optional[str] = None

    # -- Resolución ---------------------------------------------------------

    def find_tool(self, tool_name: str) -> Optional[ToolDescriptor]:
        for tool in self.capabilities.tools:
            if tool.name == tool_name:
                return tool
        return None

    def find_prompt(self, prompt_name: str) -> Optional[PromptDescriptor]:
        for prompt in self.capabilities.prompts:
            if prompt.name == prompt_name:
                return prompt
        return None

    def find_matching_resource(
        self, uri: str, exclude: Optional[Dict[str, List[str]]] = None
    ) -> Tuple[Optional[Union[ResourceDescriptor, ResourceTemplateDescriptor]], Dict[str, str]]:
        """
        Resuelve un URI en dos pasadas: primero URIs fijos, luego plantillas.

        Las plantillas se prueban en orden de declaración y gana la primera
        que coincida.

        Args:
            uri: URI original (sin prefijo de servidor)
            exclude: Recursos y plantillas deshabilitados, que no participan

        Returns:
            Tupla (descriptor, parámetros capturados); (None, {}) si no hay coincidencia
        """
        exclude = exclude or {}
        disabled_resources = exclude.get("resources", [])
        disabled_templates = exclude.get("resource_templates", [])

        for resource in self.capabilities.resources:
            if resource.uri == uri and resource.uri not in disabled_resources:
                return resource, {}

        for template in self.capabilities.resource_templates:
            if template.uri_template in disabled_templates:
                continue
            params = template.match(uri)
            if params is not None:
                return template, params

        return None, {}

    # -- Ciclo de vida ------------------------------------------------------

    async def start(self) -> None:
        self.status = ServerStatus.CONNECTED
        self.last_started = time.time()
        self.error = None

    async def stop(self, disable: bool = False) -> None:
        self.status = ServerStatus.DISABLED if disable else ServerStatus.DISCONNECTED

    @property
    def is_connected(self) -> bool:
        return self.status == ServerStatus.CONNECTED

    # -- Ejecución ----------------------------------------------------------

    async def execute_tool(
        self, tool: ToolDescriptor, arguments: Dict[str, Any], caller: CallerContext
    ) -> Dict[str, Any]:
        raise NotImplementedError

    async def read_resource(
        self,
        resource: Union[ResourceDescriptor, ResourceTemplateDescriptor],
        uri: str,
        params: Dict[str, str],
        caller: CallerContext,
    ) -> Dict[str, Any]:
        raise NotImplementedError

    async def render_prompt(
        self, prompt: PromptDescriptor, arguments: Dict[str, Any], caller: CallerContext
    ) -> Dict[str, Any]:
        raise NotImplementedError

    async def refresh_capabilities(self) -> Optional[Capabilities]:
        """Vuelve a consultar las listas de capacidades; None si no aplica."""
        return None

    # -- Formato de cable ---------------------------------------------------

    def to_dict(self, exclude: Optional[Dict[str, List[str]]] = None) -> Dict[str, Any]:
        """
        Representación sin handlers usada por ``get_all_servers``.

        Args:
            exclude: Capacidades deshabilitadas por configuración, por tipo
        """
        exclude = exclude or {}
        caps = self.capabilities
        return {
            "name": self.name,
            "displayName": self.display_name,
            "description": _resolve(self.description, ""),
            "status": self.status.value,
            "lastStarted": self.last_started,
            "error": self.error,
            "capabilities": {
                "tools": [
                    t.to_dict() for t in caps.tools
                    if t.name not in exclude.get("tools", [])
                ],
                "resources": [
                    r.to_dict() for r in caps.resources
                    if r.uri not in exclude.get("resources", [])
                ],
                "resourceTemplates": [
                    r.to_dict() for r in caps.resource_templates
                    if r.uri_template not in exclude.get("resource_templates", [])
                ],
                "prompts": [
                    p.to_dict() for p in caps.prompts
                    if p.name not in exclude.get("prompts", [])
                ],
            },
        }

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name} ({self.status.value})>"
