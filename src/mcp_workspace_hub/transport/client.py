"""
MCP Client Wrapper - Cliente MCP con Transporte Stdio o SSE
=============================================================

Este módulo implementa un wrapper sobre el cliente MCP oficial para comunicarse
con servidores MCP locales (subprocess vía stdio) o remotos (SSE). Proporciona
una interfaz simplificada y robusta para interactuar con ellos.

Funcionalidades:
- Inicialización automática de sesiones MCP
- Descubrimiento de herramientas, recursos, plantillas y prompts
- Llamadas a herramientas, lectura de recursos y renderizado de prompts
- Manejo de errores y reintentos por timeout
- Notificaciones de cambio de listas enviadas por el servidor

Patrones de Diseño Utilizados:
- Context Manager: Para gestión segura de recursos
- Facade: Para simplificar la interacción con el SDK MCP

Autor: Ainsophic Team
"""

import asyncio
import inspect
import logging
import os
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

from mcp import ClientSession, StdioServerParameters, types
from mcp.client.sse import sse_client
from mcp.client.stdio import stdio_client

from mcp_workspace_hub.core.capabilities import (
    Capabilities,
    PromptArgument,
    PromptDescriptor,
    ResourceDescriptor,
    ResourceTemplateDescriptor,
    ToolDescriptor,
)


logger = logging.getLogger(__name__)


ListChangedCallback = Callable[[str], Optional[Awaitable[None]]]


@dataclass
class ServerInfo:
    """
    Información sobre un servidor MCP.

    Atributos:
        name: Nombre del servidor
        version: Versión reportada por el servidor
        capabilities: Capacidades declaradas en la inicialización
        discovered: Descriptores descubiertos (herramientas, recursos, prompts)
    """
    name: str
    version: str = "1.0.0"
    capabilities: Optional[types.ServerCapabilities] = None
    discovered: Capabilities = field(default_factory=Capabilities)


class MCPConnectionError(Exception):
    """Excepción levantada cuando falla la conexión a un servidor MCP."""
    pass


class MCPInitializationError(Exception):
    """Excepción levantada cuando falla la inicialización de una sesión MCP."""
    pass


class MCPToolCallError(Exception):
    """Excepción levantada cuando falla una llamada a un servidor MCP."""
    pass


class MCPClientWrapper:
    """
    Wrapper para cliente MCP con transporte stdio o SSE.

    Con ``url`` se usa SSE; en caso contrario se lanza ``command`` como
    subprocess y se habla por stdio.

    Ejemplo de uso:
        >>> wrapper = MCPClientWrapper(command="python", args=["-m", "mcp.server.sqlite"])
        >>> async with wrapper:
        ...     info = wrapper.server_info
        ...     result = await wrapper.call_tool("query", {"sql": "SELECT * FROM users"})

    Nota: Esta clase debe usarse como contexto async (o con connect/disconnect)
    para garantizar la liberación correcta de recursos.
    """

    def __init__(
        self,
        command: Optional[str] = None,
        args: Optional[List[str]] = None,
        env: Optional[Dict[str, str]] = None,
        url: Optional[str] = None,
        timeout: float = 60.0,
        max_retries: int = 3,
        on_list_changed: Optional[ListChangedCallback] = None,
    ):
        """
        Inicializa el wrapper del cliente MCP.

        Args:
            command: Comando para ejecutar el servidor MCP (stdio)
            args: Argumentos del comando
            env: Variables de entorno adicionales para el subprocess
            url: Endpoint SSE del servidor remoto
            timeout: Timeout en segundos para operaciones MCP
            max_retries: Número máximo de intentos ante timeouts
            on_list_changed: Callback ``(kind)`` para notificaciones de cambio de listas
        """
        if not command and not url:
            raise ValueError("Se requiere 'command' o 'url'")

        self.command = command
        self.args = args or []
        self.env = env or {}
        self.url = url
        self.timeout = timeout
        self.max_retries = max_retries
        self.on_list_changed = on_list_changed

        self._session: Optional[ClientSession] = None
        self._transport_context = None
        self._connected = False
        self._initialized = False
        self._server_info: Optional[ServerInfo] = None
        self._background_tasks: Set[asyncio.Future] = set()

        logger.debug(f"MCPClientWrapper inicializado para: {self.target}")

    @property
    def target(self) -> str:
        return self.url or f"{self.command} {' '.join(self.args)}".strip()

    def _get_server_params(self) -> StdioServerParameters:
        # El subprocess hereda el entorno del hub más las variables del servidor
        return StdioServerParameters(
            command=self.command,
            args=self.args,
            env={**os.environ, **self.env},
        )

    async def _handle_message(self, message: Any) -> None:
        if not isinstance(message, types.ServerNotification):
            return

        notification = message.root
        if isinstance(notification, types.ToolListChangedNotification):
            kind = "tools"
        elif isinstance(notification, types.ResourceListChangedNotification):
            kind = "resources"
        elif isinstance(notification, types.PromptListChangedNotification):
            kind = "prompts"
        else:
            return

        logger.debug(f"Notificación de cambio de lista ({kind}) desde {self.target}")
        if self.on_list_changed is None:
            return
        try:
            pending = self.on_list_changed(kind)
        except Exception as e:
            logger.error(f"Error procesando cambio de lista ({kind}): {e}")
            return

        # El SDK espera este handler dentro del bucle de recepción: un refresco
        # que hace peticiones a la sesión debe correr fuera de él
        if inspect.isawaitable(pending):
            task = asyncio.ensure_future(pending)
            self._background_tasks.add(task)
            task.add_done_callback(self._on_background_done)

    def _on_background_done(self, task: asyncio.Future) -> None:
        self._background_tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Error procesando cambio de lista: {error}")

    async def connect(self) -> "MCPClientWrapper":
        """
        Establece conexión con el servidor MCP.

        Raises:
            MCPConnectionError: Si falla la conexión
        """
        if self._connected:
            logger.warning("Ya hay una conexión activa")
            return self

        try:
            if self.url:
                self._transport_context = sse_client(self.url)
            else:
                self._transport_context = stdio_client(self._get_server_params())
            read_stream, write_stream = await self._transport_context.__aenter__()

            self._session = ClientSession(read_stream, write_stream, message_handler=self._handle_message)
            await self._session.__aenter__()

            self._connected = True
            logger.info(f"Conexión establecida con servidor: {self.target}")

            return self

        except Exception as e:
            logger.error(f"Error al conectar con servidor: {e}")
            try:
                await self._close()
            except Exception as close_error:
                logger.debug(f"Error liberando transporte tras fallo de conexión: {close_error}")
            raise MCPConnectionError(f"Fallo al conectar: {e}") from e

    async def initialize(self) -> ServerInfo:
        """
        Inicializa la sesión MCP y descubre capacidades.

        Raises:
            MCPInitializationError: Si falla la inicialización
        """
        if not self._connected:
            raise MCPConnectionError("No hay conexión activa. Usar connect() primero.")

        if self._initialized:
            return self._server_info

        try:
            init_result = await asyncio.wait_for(self._session.initialize(), timeout=self.timeout)

            self._server_info = ServerInfo(
                name=init_result.serverInfo.name,
                version=init_result.serverInfo.version,
                capabilities=init_result.capabilities,
            )
            self._initialized = True
            self._server_info.discovered = await self.discover()

            discovered = self._server_info.discovered
            logger.info(
                f"Sesión inicializada. Servidor: {self._server_info.name}, "
                f"Herramientas: {len(discovered.tools)}, Recursos: {len(discovered.resources)}, "
                f"Plantillas: {len(discovered.resource_templates)}, Prompts: {len(discovered.prompts)}"
            )

            return self._server_info

        except asyncio.TimeoutError:
            error_msg = f"Timeout inicializando sesión ({self.timeout}s)"
            logger.error(error_msg)
            await self.disconnect()
            raise MCPInitializationError(error_msg)

        except Exception as e:
            logger.error(f"Error inicializando sesión: {e}")
            await self.disconnect()
            raise MCPInitializationError(f"Fallo al inicializar: {e}") from e

    def _require_session(self) -> ClientSession:
        if not self._initialized or self._session is None:
            raise MCPConnectionError("Sesión no inicializada. Usar initialize() primero.")
        return self._session

    async def discover(self) -> Capabilities:
        """
        Consulta las listas de capacidades según lo que declara el servidor.

        Returns:
            Capabilities con descriptores sin handler
        """
        session = self._require_session()
        server_caps = self._server_info.capabilities
        discovered = Capabilities()

        if server_caps is None or server_caps.tools is not None:
            response = await self._request("listado de herramientas", session.list_tools, None)
            discovered.tools = [
                ToolDescriptor(
                    name=tool.name,
                    description=tool.description or "",
                    input_schema=tool.inputSchema or {"type": "object", "properties": {}},
                )
                for tool in response.tools
            ]

        if server_caps is None or server_caps.resources is not None:
            resources = await self._request("listado de recursos", session.list_resources, None)
            discovered.resources = [
                ResourceDescriptor(
                    uri=str(resource.uri),
                    name=resource.name,
                    description=resource.description or "",
                    mime_type=resource.mimeType,
                )
                for resource in resources.resources
            ]
            try:
                templates = await self._request(
                    "listado de plantillas", session.list_resource_templates, None
                )
                discovered.resource_templates = [
                    ResourceTemplateDescriptor(
                        uri_template=template.uriTemplate,
                        name=template.name,
                        description=template.description or "",
                        mime_type=template.mimeType,
                    )
                    for template in templates.resourceTemplates
                ]
            except Exception as e:
                logger.warning(f"El servidor no lista plantillas de recursos: {e}")

        if server_caps is None or server_caps.prompts is not None:
            response = await self._request("listado de prompts", session.list_prompts, None)
            discovered.prompts = [
                PromptDescriptor(
                    name=prompt.name,
                    description=prompt.description or "",
                    arguments=[
                        PromptArgument(
                            name=arg.name,
                            description=arg.description or "",
                            required=bool(arg.required),
                        )
                        for arg in (prompt.arguments or [])
                    ],
                )
                for prompt in response.prompts
            ]

        return discovered

    async def _request(self, label: str, factory: Callable[[], Awaitable[Any]], timeout: Optional[float]) -> Any:
        """
        Ejecuta una petición con timeout y reintentos ante timeouts.

        Raises:
            MCPToolCallError: Si la petición falla o agota los reintentos
        """
        timeout = timeout or self.timeout

        try:
            for attempt in range(self.max_retries):
                try:
                    return await asyncio.wait_for(factory(), timeout=timeout)
                except asyncio.TimeoutError:
                    if attempt == self.max_retries - 1:
                        raise
                    logger.warning(f"Timeout en {label} (intentos {attempt + 1}/{self.max_retries})")
                    await asyncio.sleep(1)

        except asyncio.TimeoutError:
            error_msg = f"Timeout en {label} ({timeout}s)"
            logger.error(error_msg)
            raise MCPToolCallError(error_msg)

        except Exception as e:
            error_msg = f"Error en {label}: {e}"
            logger.error(error_msg)
            raise MCPToolCallError(error_msg) from e

    async def call_tool(
        self,
        tool_name: str,
        arguments: Dict[str, Any],
        timeout: Optional[float] = None,
    ) -> types.CallToolResult:
        """
        Ejecuta una llamada a una herramienta MCP.

        Raises:
            MCPToolCallError: Si falla la llamada a la herramienta
            MCPConnectionError: Si no hay conexión inicializada
        """
        session = self._require_session()
        logger.debug(f"Llamando a herramienta: {tool_name} con args: {arguments}")
        return await self._request(
            f"herramienta {tool_name}",
            lambda: session.call_tool(tool_name, arguments),
            timeout,
        )

    async def read_resource(self, uri: str, timeout: Optional[float] = None) -> types.ReadResourceResult:
        session = self._require_session()
        return await self._request(f"recurso {uri}", lambda: session.read_resource(uri), timeout)

    async def get_prompt(
        self,
        prompt_name: str,
        arguments: Optional[Dict[str, str]] = None,
        timeout: Optional[float] = None,
    ) -> types.GetPromptResult:
        session = self._require_session()
        return await self._request(
            f"prompt {prompt_name}",
            lambda: session.get_prompt(prompt_name, arguments or {}),
            timeout,
        )

    async def _close(self) -> None:
        current = asyncio.current_task()
        for task in list(self._background_tasks):
            if task is not current:
                task.cancel()

        if self._session:
            await self._session.__aexit__(None, None, None)
            self._session = None

        if self._transport_context:
            await self._transport_context.__aexit__(None, None, None)
            self._transport_context = None

    async def disconnect(self) -> None:
        """
        Cierra la conexión con el servidor MCP de forma segura.
        """
        if not self._connected:
            return

        try:
            await self._close()
            logger.info("Conexión cerrada exitosamente")
        except Exception as e:
            logger.error(f"Error al cerrar conexión: {e}")
        finally:
            self._connected = False
            self._initialized = False
            self._server_info = None

    async def __aenter__(self):
        await self.connect()
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.disconnect()

    @property
    def is_connected(self) -> bool:
        return self._connected

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    @property
    def server_info(self) -> Optional[ServerInfo]:
        """
        Retorna la información del servidor conectado.

        Returns:
            ServerInfo si está inicializado, None en caso contrario
        """
        return self._server_info
