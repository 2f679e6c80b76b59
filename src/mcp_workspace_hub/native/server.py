"""
Native Server - Servidores de Capacidades en Proceso
======================================================

Este módulo implementa los servidores nativos: conjuntos de herramientas,
recursos y prompts cuyos handlers se ejecutan dentro del proceso del hub.

Cada handler recibe ``(req, res)``:
- ``req`` contiene los parámetros resueltos y el descriptor que coincidió
- ``res`` acumula contenido y se finaliza con ``send`` o ``error``

Un handler puede finalizar antes de retornar (camino síncrono), retornar
un diccionario de resultado, o guardar ``res`` y enviarlo más tarde
(camino asíncrono). Las excepciones se convierten en respuestas de error.

Autor: Ainsophic Team
"""

import inspect
import logging
from typing import Any, Callable, Dict, Optional, Union

from mcp_workspace_hub.core.capabilities import (
    CallerContext,
    Capabilities,
    CapabilityProvider,
    PromptArgument,
    PromptDescriptor,
    ResourceDescriptor,
    ResourceTemplateDescriptor,
    ServerStatus,
    ToolDescriptor,
)
from mcp_workspace_hub.core.errors import HandlerError
from mcp_workspace_hub.native.request import PromptRequest, ResourceRequest, ToolRequest
from mcp_workspace_hub.native.response import (
    BaseResponse,
    CompletionToken,
    PromptResponse,
    ResourceResponse,
    ToolResponse,
)


logger = logging.getLogger(__name__)


class NativeProvider(CapabilityProvider):
    """
    Servidor de capacidades en proceso.

    Ejemplo de uso:
        >>> weather = NativeProvider("weather")
        >>> weather.add_tool(
        ...     "get_weather",
        ...     lambda req, res: res.text(f"Soleado en {req.params['city']}").send(),
        ...     description="Clima actual",
        ... )
    """

    def __init__(
        self,
        name: str,
        display_name: Optional[str] = None,
        description: str = "",
        capabilities: Optional[Capabilities] = None,
    ):
        super().__init__(name, display_name, description, capabilities)
        self.status = ServerStatus.CONNECTED

    # -- Definición ---------------------------------------------------------

    def add_tool(
        self,
        name: str,
        handler: Callable,
        description: Union[str, Callable[[], str]] = "",
        input_schema: Optional[Dict[str, Any]] = None,
        auto_approve: bool = False,
    ) -> "NativeProvider":
        self.capabilities.tools.append(ToolDescriptor(
            name=name,
            description=description,
            input_schema=input_schema or {"type": "object", "properties": {}},
            handler=handler,
            auto_approve=auto_approve,
        ))
        return self

    def add_resource(
        self,
        uri: str,
        handler: Callable,
        name: str = "",
        description: str = "",
        mime_type: Optional[str] = None,
    ) -> "NativeProvider":
        self.capabilities.resources.append(ResourceDescriptor(
            uri=uri, name=name, description=description, mime_type=mime_type, handler=handler
        ))
        return self

    def add_resource_template(
        self,
        uri_template: str,
        handler: Callable,
        name: str = "",
        description: str = "",
        mime_type: Optional[str] = None,
    ) -> "NativeProvider":
        self.capabilities.resource_templates.append(ResourceTemplateDescriptor(
            uri_template=uri_template, name=name, description=description,
            mime_type=mime_type, handler=handler,
        ))
        return self

    def add_prompt(
        self,
        name: str,
        handler: Callable,
        description: str = "",
        arguments: Any = None,
    ) -> "NativeProvider":
        if isinstance(arguments, list):
            arguments = [
                arg if isinstance(arg, PromptArgument) else PromptArgument(**arg)
                for arg in arguments
            ]
        self.capabilities.prompts.append(PromptDescriptor(
            name=name, description=description, arguments=arguments or [], handler=handler
        ))
        return self

    # -- Ejecución ----------------------------------------------------------

    async def _run_handler(self, label: str, handler: Callable, req: Any, res: BaseResponse) -> Dict[str, Any]:
        """
        Ejecuta un handler y espera la entrega única de su respuesta.
        """
        try:
            returned = handler(req, res)
            if inspect.isawaitable(returned):
                returned = await returned
        except Exception as e:
            logger.warning(f"Fallo ejecutando {label} en servidor '{self.name}': {e}")
            res.error(str(e))
        else:
            if returned is not None and returned is not res and not res.sent:
                if isinstance(returned, dict):
                    res.send(returned)
                elif isinstance(returned, str):
                    res.text(returned).send()
                else:
                    res.token.deliver(None, f"{label} devolvió un resultado inválido: {type(returned).__name__}")

        result, error = await res.token.wait()
        if error:
            raise HandlerError(error)
        return result

    async def execute_tool(
        self, tool: ToolDescriptor, arguments: Dict[str, Any], caller: CallerContext
    ) -> Dict[str, Any]:
        if tool.handler is None:
            raise HandlerError(f"Tool '{tool.name}' has no handler")

        req = ToolRequest(server=self, params=arguments, caller=caller, tool=tool)
        res = ToolResponse(CompletionToken())
        return await self._run_handler(f"tool '{tool.name}'", tool.handler, req, res)

    async def read_resource(
        self,
        resource: Union[ResourceDescriptor, ResourceTemplateDescriptor],
        uri: str,
        params: Dict[str, str],
        caller: CallerContext,
    ) -> Dict[str, Any]:
        if resource.handler is None:
            raise HandlerError("Resource has no handler")

        template = getattr(resource, "uri_template", None)
        req = ResourceRequest(
            server=self, params=params, caller=caller,
            resource=resource, uri=uri, uri_template=template,
        )
        res = ResourceResponse(CompletionToken(), uri, template)
        return await self._run_handler(f"resource '{uri}'", resource.handler, req, res)

    async def render_prompt(
        self, prompt: PromptDescriptor, arguments: Dict[str, Any], caller: CallerContext
    ) -> Dict[str, Any]:
        if prompt.handler is None:
            raise HandlerError(f"Prompt '{prompt.name}' has no handler")

        missing = [
            arg.name for arg in prompt.resolve_arguments()
            if arg.required and arguments.get(arg.name) in (None, "")
        ]
        if missing:
            raise HandlerError(f"Missing required arguments: {', '.join(missing)}")

        req = PromptRequest(server=self, params=arguments, caller=caller, prompt=prompt)
        res = PromptResponse(CompletionToken(), description=prompt.to_dict()["description"])
        return await self._run_handler(f"prompt '{prompt.name}'", prompt.handler, req, res)
