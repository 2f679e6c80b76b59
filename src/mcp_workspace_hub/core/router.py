"""
Dispatch Router - Enrutamiento de Llamadas a Servidores de Capacidades
========================================================================

Este módulo implementa el router del hub, permitiendo:
- Resolver un servidor y una capacidad (herramienta, recurso o prompt)
- Consultar al motor de aprobación antes de ejecutar herramientas
- Entregar el resultado una única vez (retorno directo o callback)
- Agregar las capacidades de todos los servidores con nombres namespaced

Los nombres namespaced siguen el formato ``server__tool`` para
herramientas y prompts, y ``server://uri`` para recursos.

Patrones de Diseño Utilizados:
- Proxy: Para interceptar y enrutar llamadas
- Chain of Responsibility: Resolución y aprobación antes de la ejecución

Autor: Ainsophic Team
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from mcp_workspace_hub.core.approval import ApprovalEngine, DecisionFunction
from mcp_workspace_hub.core.capabilities import (
    CallAction,
    CallerContext,
    CallRequest,
    CapabilityProvider,
    namespace_resource,
    namespace_tool,
)
from mcp_workspace_hub.core.errors import (
    ApprovalDeniedError,
    ApprovalTimeoutError,
    HandlerError,
    HubError,
    InvalidArgumentsError,
    NotConnectedError,
    NotFoundError,
    TransportTimeoutError,
)
from mcp_workspace_hub.core.registry import CapabilityRegistry
from mcp_workspace_hub.native.response import CompletionToken


logger = logging.getLogger(__name__)


ResultCallback = Callable[[Optional[Dict[str, Any]], Optional[str]], None]


@dataclass
class CallOptions:
    """
    Opciones de una llamada.

    Atributos:
        caller: Contexto del llamante (atribución y logging)
        callback: ``callback(result, error)``; si se define, el router entrega
            por aquí exactamente una vez y retorna None
        auto_approve: True si la aprobación ya se decidió aguas arriba, o una
            función de decisión específica de esta llamada
        timeout: Segundos máximos de ejecución (por defecto, el del router)
    """
    caller: CallerContext = field(default_factory=CallerContext)
    callback: Optional[ResultCallback] = None
    auto_approve: Union[bool, DecisionFunction, None] = None
    timeout: Optional[float] = None


def _coerce_arguments(arguments: Any) -> Dict[str, Any]:
    # Algunos clientes envían [] en lugar de {} para "sin argumentos"
    if arguments is None:
        return {}
    if isinstance(arguments, list):
        if arguments:
            raise InvalidArgumentsError("Arguments must be an object, got a non-empty list")
        return {}
    if not isinstance(arguments, dict):
        raise InvalidArgumentsError(f"Arguments must be an object, got {type(arguments).__name__}")
    return arguments


def _connected(servers: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return [server for server in servers if server.get("status") == "connected"]


def aggregate_tools(servers: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """
    Agrega las herramientas de los servidores conectados con nombres ``server__tool``.

    Los nombres duplicados se omiten con un warning.

    Args:
        servers: Servidores en formato de cable (``get_all_servers``)
    """
    seen = set()
    tools = []
    for server in _connected(servers):
        for tool in server.get("capabilities", {}).get("tools", []):
            name = namespace_tool(server["name"], tool["name"])
            if name in seen:
                logger.warning(f"Herramienta duplicada omitida: {name}")
                continue
            seen.add(name)
            tools.append({
                "name": name,
                "description": tool.get("description") or "",
                "inputSchema": tool.get("inputSchema") or {"type": "object", "properties": {}},
            })
    return tools


def aggregate_resources(servers: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Agrega recursos fijos con URIs ``server://uri``."""
    seen = set()
    resources = []
    for server in _connected(servers):
        for resource in server.get("capabilities", {}).get("resources", []):
            uri = namespace_resource(server["name"], resource["uri"])
            if uri in seen:
                logger.warning(f"Recurso duplicado omitido: {uri}")
                continue
            seen.add(uri)
            resources.append({**resource, "uri": uri})
    return resources


def aggregate_resource_templates(servers: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    seen = set()
    templates = []
    for server in _connected(servers):
        for template in server.get("capabilities", {}).get("resourceTemplates", []):
            uri_template = namespace_resource(server["name"], template["uriTemplate"])
            if uri_template in seen:
                logger.warning(f"Plantilla duplicada omitida: {uri_template}")
                continue
            seen.add(uri_template)
            templates.append({**template, "uriTemplate": uri_template})
    return templates


def aggregate_prompts(servers: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Agrega prompts con nombres ``server__prompt``."""
    seen = set()
    prompts = []
    for server in _connected(servers):
        for prompt in server.get("capabilities", {}).get("prompts", []):
            name = namespace_tool(server["name"], prompt["name"])
            if name in seen:
                logger.warning(f"Prompt duplicado omitido: {name}")
                continue
            seen.add(name)
            prompts.append({**prompt, "name": name})
    return prompts


class DispatchRouter:
    """
    Router de llamadas del hub.

    Todas las operaciones resuelven primero el servidor: si no existe se
    levanta NotFoundError, y si no está conectado NotConnectedError.

    Ejemplo de uso:
        >>> router = DispatchRouter(registry, ApprovalEngine(config))
        >>> result = await router.call_tool("weather", "get_weather", {"city": "Lima"})
        >>> await router.access_resource("weather", "weather://forecast/Lima")
    """

    def __init__(
        self,
        registry: CapabilityRegistry,
        approval: Optional[ApprovalEngine] = None,
        timeout: Optional[float] = None,
    ):
        """
        Inicializa el router.

        Args:
            registry: Registro de servidores
            approval: Motor de aprobación (por defecto, uno basado en la configuración del registro)
            timeout: Timeout por llamada en segundos
        """
        self.registry = registry
        self.approval = approval or ApprovalEngine(registry.config)
        if timeout is None:
            timeout = registry.config.hub.mcp_request_timeout / 1000 if registry.config else 60.0
        self.timeout = timeout

        logger.info("DispatchRouter inicializado")

    # -- Resolución ---------------------------------------------------------

    def _resolve_provider(self, server_name: str) -> CapabilityProvider:
        provider = self.registry.get(server_name)
        if provider is None:
            raise NotFoundError(f"Server '{server_name}' not found")
        if not provider.is_connected:
            raise NotConnectedError(
                f"Server '{server_name}' is not connected (status: {provider.status.value})"
            )
        return provider

    async def _execute(self, operation: Awaitable[Dict[str, Any]], label: str, timeout: Optional[float]) -> Dict[str, Any]:
        try:
            return await asyncio.wait_for(operation, timeout=timeout or self.timeout)
        except asyncio.TimeoutError:
            raise TransportTimeoutError(f"{label} timed out after {timeout or self.timeout}s")
        except HubError:
            raise
        except Exception as e:
            logger.error(f"Error ejecutando {label}: {e}")
            raise HandlerError(str(e)) from e

    async def _deliver(self, operation: Awaitable[Dict[str, Any]], opts: CallOptions) -> Optional[Dict[str, Any]]:
        """
        Envuelve la operación en un token de entrega única.

        Sin callback el resultado se retorna (o se levanta el error); con
        callback se entrega por él una sola vez y se retorna None.
        """
        token = CompletionToken(on_deliver=opts.callback)
        try:
            result = await operation
        except HubError as e:
            if opts.callback is None:
                raise
            token.deliver(None, e.message)
            return None

        if opts.callback is None:
            return result
        token.deliver(result)
        return None

    # -- Herramientas -------------------------------------------------------

    async def call_tool(
        self,
        server_name: str,
        tool_name: str,
        arguments: Any = None,
        opts: Optional[CallOptions] = None,
    ) -> Optional[Dict[str, Any]]:
        """
        Ejecuta una herramienta de un servidor.

        Raises:
            NotFoundError: Servidor o herramienta inexistente (o deshabilitada)
            NotConnectedError: El servidor no está conectado
            ApprovalDeniedError: La llamada fue denegada
            ApprovalTimeoutError: La confirmación no llegó a tiempo
            HandlerError: El handler falló
        """
        opts = opts or CallOptions()
        return await self._deliver(self._call_tool(server_name, tool_name, arguments, opts), opts)

    async def _call_tool(
        self, server_name: str, tool_name: str, arguments: Any, opts: CallOptions
    ) -> Dict[str, Any]:
        arguments = _coerce_arguments(arguments)
        provider = self._resolve_provider(server_name)

        tool = provider.find_tool(tool_name)
        if tool is None or self.registry.is_disabled(provider.name, "tools", tool_name):
            raise NotFoundError(f"Tool '{tool_name}' not found on server '{server_name}'")

        if opts.auto_approve is not True:
            request = CallRequest(
                action=CallAction.USE_TOOL,
                server=provider.name,
                tool=tool_name,
                arguments=arguments,
                caller=opts.caller,
            )
            decision_fn = opts.auto_approve if callable(opts.auto_approve) else None
            decision = await self.approval.decide(request, tool, decision_fn)
            if not decision.approve:
                logger.info(f"Llamada denegada {server_name}/{tool_name}: {decision.error}")
                if decision.timed_out:
                    raise ApprovalTimeoutError(decision.error)
                raise ApprovalDeniedError(decision.error)

        logger.debug(f"Llamando a herramienta: {server_name}/{tool_name} (caller: {opts.caller})")
        self.registry.notify("tool_start", {"server": provider.name, "tool": tool_name})
        success = False
        try:
            result = await self._execute(
                provider.execute_tool(tool, arguments, opts.caller),
                f"tool '{tool_name}'",
                opts.timeout,
            )
            success = not result.get("isError", False)
            return result
        finally:
            self.registry.notify("tool_end", {"server": provider.name, "tool": tool_name, "success": success})

    # -- Recursos -----------------------------------------------------------

    async def access_resource(
        self,
        server_name: str,
        uri: str,
        opts: Optional[CallOptions] = None,
    ) -> Optional[Dict[str, Any]]:
        """
        Lee un recurso por URI: primero URIs fijos, luego plantillas en orden.

        El acceso a recursos no requiere aprobación.
        """
        opts = opts or CallOptions()
        return await self._deliver(self._access_resource(server_name, uri, opts), opts)

    async def _access_resource(self, server_name: str, uri: str, opts: CallOptions) -> Dict[str, Any]:
        provider = self._resolve_provider(server_name)
        resource, params = provider.find_matching_resource(uri, exclude=self.registry.get_disabled(provider.name))
        if resource is None:
            raise NotFoundError(f"Resource '{uri}' not found on server '{server_name}'")

        logger.debug(f"Accediendo a recurso: {server_name}/{uri} (caller: {opts.caller})")
        self.registry.notify("resource_start", {"server": provider.name, "uri": uri})
        success = False
        try:
            result = await self._execute(
                provider.read_resource(resource, uri, params, opts.caller),
                f"resource '{uri}'",
                opts.timeout,
            )
            success = not result.get("isError", False)
            return result
        finally:
            self.registry.notify("resource_end", {"server": provider.name, "uri": uri, "success": success})

    # -- Prompts ------------------------------------------------------------

    async def get_prompt(
        self,
        server_name: str,
        prompt_name: str,
        arguments: Any = None,
        opts: Optional[CallOptions] = None,
    ) -> Optional[Dict[str, Any]]:
        """Renderiza un prompt de un servidor."""
        opts = opts or CallOptions()
        return await self._deliver(self._get_prompt(server_name, prompt_name, arguments, opts), opts)

    async def _get_prompt(
        self, server_name: str, prompt_name: str, arguments: Any, opts: CallOptions
    ) -> Dict[str, Any]:
        arguments = _coerce_arguments(arguments)
        provider = self._resolve_provider(server_name)

        prompt = provider.find_prompt(prompt_name)
        if prompt is None or self.registry.is_disabled(provider.name, "prompts", prompt_name):
            raise NotFoundError(f"Prompt '{prompt_name}' not found on server '{server_name}'")

        self.registry.notify("prompt_start", {"server": provider.name, "prompt": prompt_name})
        success = False
        try:
            result = await self._execute(
                provider.render_prompt(prompt, arguments, opts.caller),
                f"prompt '{prompt_name}'",
                opts.timeout,
            )
            success = not result.get("isError", False)
            return result
        finally:
            self.registry.notify("prompt_end", {"server": provider.name, "prompt": prompt_name, "success": success})

    # -- Listados -----------------------------------------------------------

    def list_servers(self) -> List[Dict[str, Any]]:
        """Servidores en formato de cable, tal como los consume el bridge."""
        return self.registry.get_all_servers()

    def aggregate_tools(self) -> List[Dict[str, Any]]:
        return aggregate_tools(self.list_servers())

    def aggregate_resources(self) -> List[Dict[str, Any]]:
        return aggregate_resources(self.list_servers())

    def aggregate_resource_templates(self) -> List[Dict[str, Any]]:
        return aggregate_resource_templates(self.list_servers())

    def aggregate_prompts(self) -> List[Dict[str, Any]]:
        return aggregate_prompts(self.list_servers())
