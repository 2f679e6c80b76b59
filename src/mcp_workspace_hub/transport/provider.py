"""
Client Provider - Servidores MCP Subprocess y Remotos
=======================================================

Adapta un MCPClientWrapper al contrato de CapabilityProvider: el hub
trata igual a un servidor nativo, a uno lanzado como subprocess y a uno
remoto por SSE.

Los resultados del SDK se convierten a diccionarios JSON planos.
"""

import json
import logging
from typing import Any, Dict, Optional, Union

from mcp_workspace_hub.core.capabilities import (
    CallerContext,
    Capabilities,
    CapabilityProvider,
    PromptDescriptor,
    ResourceDescriptor,
    ResourceTemplateDescriptor,
    ServerStatus,
    ToolDescriptor,
)
from mcp_workspace_hub.core.config import ServerConfig
from mcp_workspace_hub.core.errors import NotConnectedError
from mcp_workspace_hub.transport.client import MCPClientWrapper


logger = logging.getLogger(__name__)


def _dump(result: Any) -> Dict[str, Any]:
    if hasattr(result, "model_dump"):
        return result.model_dump(mode="json", exclude_none=True)
    return dict(result)


class ClientProvider(CapabilityProvider):
    """
    Servidor de capacidades respaldado por un cliente MCP.

    Ejemplo de uso:
        >>> provider = ClientProvider(config.get_server_config("sqlite"))
        >>> registry.register(provider)
        >>> await registry.start_server("sqlite")
    """

    def __init__(
        self,
        config: ServerConfig,
        timeout: float = 60.0,
        registry: Any = None,
        client: Optional[MCPClientWrapper] = None,
    ):
        """
        Args:
            config: Configuración del servidor
            timeout: Timeout de las peticiones MCP en segundos
            registry: Registro a refrescar cuando el servidor notifica cambios de listas
            client: Cliente ya construido (por defecto se crea desde la configuración)
        """
        super().__init__(config.name, description=config.url or " ".join(config.get_full_command()))
        self.config = config
        self.registry = registry
        self.client = client or MCPClientWrapper(
            command=config.command,
            args=config.args,
            env=config.env,
            url=config.url,
            timeout=timeout,
            on_list_changed=self._on_list_changed,
        )
        if config.disabled:
            self.status = ServerStatus.DISABLED

    async def _on_list_changed(self, kind: str) -> None:
        if self.registry is None:
            return
        logger.info(f"Servidor {self.name} notificó cambios en {kind}; refrescando")
        await self.registry.refresh(self.name)

    async def start(self) -> None:
        """
        Conecta e inicializa la sesión.

        Raises:
            MCPConnectionError / MCPInitializationError: Si el servidor no arranca
        """
        self.status = ServerStatus.CONNECTING
        try:
            await self.client.connect()
            info = await self.client.initialize()
        except Exception as e:
            self.status = ServerStatus.ERROR
            self.error = str(e)
            raise

        self.capabilities = info.discovered
        await super().start()
        logger.info(f"Servidor {self.name} conectado ({info.name} {info.version})")

    async def stop(self, disable: bool = False) -> None:
        await self.client.disconnect()
        self.capabilities = Capabilities()
        await super().stop(disable)

    async def refresh_capabilities(self) -> Optional[Capabilities]:
        if not self.client.is_initialized:
            raise NotConnectedError(f"Server '{self.name}' is not connected")
        return await self.client.discover()

    async def execute_tool(
        self, tool: ToolDescriptor, arguments: Dict[str, Any], caller: CallerContext
    ) -> Dict[str, Any]:
        return _dump(await self.client.call_tool(tool.name, arguments))

    async def read_resource(
        self,
        resource: Union[ResourceDescriptor, ResourceTemplateDescriptor],
        uri: str,
        params: Dict[str, str],
        caller: CallerContext,
    ) -> Dict[str, Any]:
        return _dump(await self.client.read_resource(uri))

    async def render_prompt(
        self, prompt: PromptDescriptor, arguments: Dict[str, Any], caller: CallerContext
    ) -> Dict[str, Any]:
        # El protocolo solo admite argumentos de prompt como strings
        string_args = {
            key: value if isinstance(value, str) else json.dumps(value)
            for key, value in arguments.items()
        }
        return _dump(await self.client.get_prompt(prompt.name, string_args))
