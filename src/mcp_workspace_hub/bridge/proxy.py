"""
Proxy Bridge - Servidor MCP Stdio que Reexpone el Hub
=======================================================

Este módulo implementa el bridge que permite a clientes MCP externos usar
el hub como si fuera un único servidor MCP:

- Las listas de herramientas, recursos y prompts se piden al hub en cada
  consulta (nunca se cachean)
- Los nombres se exponen namespaced: ``server__tool`` y ``server://uri``
- Las llamadas se reenvían al hub con el llamante ``external/proxy``
- Cualquier error (respuesta con ``error``, timeout, transporte) se
  convierte en un McpError y el proceso sigue vivo

Patrones de Diseño Utilizados:
- Proxy: Para reenviar peticiones MCP a la API de control del hub
- Adapter: Para traducir el formato del hub a los tipos del SDK MCP

Autor: Ainsophic Team
"""

import base64
import logging
from typing import Any, Dict, List, Optional

from mcp import types
from mcp.server.lowlevel import Server
from mcp.server.lowlevel.helper_types import ReadResourceContents
from mcp.server.stdio import stdio_server
from mcp.shared.exceptions import McpError

from mcp_workspace_hub.bridge.rpc import HubRPCClient
from mcp_workspace_hub.core.capabilities import (
    RESOURCE_SEPARATOR,
    split_namespaced,
    split_resource_uri,
)
from mcp_workspace_hub.core.errors import HubError
from mcp_workspace_hub.core.router import (
    aggregate_prompts,
    aggregate_resource_templates,
    aggregate_resources,
    aggregate_tools,
)


logger = logging.getLogger(__name__)


PROXY_NAME = "mcphub-proxy"
PROXY_CALLER = {"type": "external", "source": "proxy"}


def _mcp_error(message: str) -> McpError:
    return McpError(types.ErrorData(code=types.INTERNAL_ERROR, message=message))


def _error_text(result: Dict[str, Any]) -> str:
    texts = [item.get("text", "") for item in result.get("content", []) if item.get("type") == "text"]
    return "\n".join(texts) or "Tool call failed"


class ProxyBridge:
    """
    Bridge entre un cliente MCP por stdio y la API de control del hub.

    Ejemplo de uso:
        >>> bridge = ProxyBridge(HubRPCClient(socket_path="/tmp/mcphub.sock"))
        >>> await bridge.run()
    """

    def __init__(self, rpc: HubRPCClient):
        self.rpc = rpc

    async def _fetch_servers(self) -> List[Dict[str, Any]]:
        try:
            return await self.rpc.get_all_servers()
        except HubError as e:
            logger.error(f"No se pudo obtener la lista de servidores del hub: {e}")
            return []

    async def _forward(self, operation: str, coro) -> Dict[str, Any]:
        """
        Espera una llamada RPC y desenvuelve su sobre de respuesta.

        Raises:
            McpError: Si la respuesta trae ``error``, no trae resultado o la llamada falla
        """
        try:
            response = await coro
        except HubError as e:
            logger.error(f"Fallo en {operation}: {e}")
            raise _mcp_error(str(e))

        if not isinstance(response, dict) or not response:
            raise _mcp_error(f"No result returned from hub for {operation}")
        if response.get("error"):
            raise _mcp_error(str(response["error"]))
        return response

    # -- Listados -----------------------------------------------------------

    async def list_tools(self) -> List[types.Tool]:
        return [
            types.Tool(name=tool["name"], description=tool["description"], inputSchema=tool["inputSchema"])
            for tool in aggregate_tools(await self._fetch_servers())
        ]

    async def list_resources(self) -> List[types.Resource]:
        return [
            types.Resource(
                uri=resource["uri"],
                name=resource.get("name") or resource["uri"],
                description=resource.get("description") or None,
                mimeType=resource.get("mimeType"),
            )
            for resource in aggregate_resources(await self._fetch_servers())
        ]

    async def list_resource_templates(self) -> List[types.ResourceTemplate]:
        return [
            types.ResourceTemplate(
                uriTemplate=template["uriTemplate"],
                name=template.get("name") or template["uriTemplate"],
                description=template.get("description") or None,
                mimeType=template.get("mimeType"),
            )
            for template in aggregate_resource_templates(await self._fetch_servers())
        ]

    async def list_prompts(self) -> List[types.Prompt]:
        return [
            types.Prompt(
                name=prompt["name"],
                description=prompt.get("description") or None,
                arguments=[types.PromptArgument(**arg) for arg in prompt.get("arguments", [])],
            )
            for prompt in aggregate_prompts(await self._fetch_servers())
        ]

    # -- Llamadas -----------------------------------------------------------

    async def call_tool(self, name: str, arguments: Optional[Dict[str, Any]]) -> List[Any]:
        try:
            server_name, tool_name = split_namespaced(name)
        except ValueError as e:
            raise _mcp_error(str(e))

        result = await self._forward(
            f"tool {name}",
            self.rpc.call_tool(server_name, tool_name, {"arguments": arguments or {}, "caller": PROXY_CALLER}),
        )
        if result.get("isError"):
            raise _mcp_error(_error_text(result))
        return types.CallToolResult.model_validate(result).content

    async def read_resource(self, uri: Any) -> List[ReadResourceContents]:
        server_name, original_uri = self._split_uri(str(uri))
        result = await self._forward(
            f"resource {uri}",
            self.rpc.access_resource(server_name, original_uri, {"caller": PROXY_CALLER}),
        )
        if result.get("isError"):
            texts = [item.get("text", "") for item in result.get("contents", []) if "text" in item]
            raise _mcp_error("\n".join(texts) or "Resource read failed")

        contents = []
        for item in result.get("contents", []):
            if "blob" in item:
                contents.append(ReadResourceContents(content=base64.b64decode(item["blob"]), mime_type=item.get("mimeType")))
            else:
                contents.append(ReadResourceContents(content=item.get("text", ""), mime_type=item.get("mimeType")))
        return contents

    async def get_prompt(self, name: str, arguments: Optional[Dict[str, str]]) -> types.GetPromptResult:
        try:
            server_name, prompt_name = split_namespaced(name)
        except ValueError as e:
            raise _mcp_error(str(e))

        result = await self._forward(
            f"prompt {name}",
            self.rpc.get_prompt(server_name, prompt_name, {"arguments": arguments or {}, "caller": PROXY_CALLER}),
        )
        if result.get("isError"):
            messages = result.get("messages", [])
            raise _mcp_error(messages[0]["content"].get("text", "Prompt failed") if messages else "Prompt failed")
        return types.GetPromptResult.model_validate(result)

    @staticmethod
    def _split_uri(uri: str):
        try:
            server_name, original_uri = split_resource_uri(uri)
        except ValueError as e:
            raise _mcp_error(str(e))
        # La validación de URLs del SDK descarta el ':' de un puerto vacío,
        # convirtiendo "server://weather://x" en "server://weather//x"
        if RESOURCE_SEPARATOR not in original_uri and "//" in original_uri:
            original_uri = original_uri.replace("//", RESOURCE_SEPARATOR, 1)
        return server_name, original_uri

    # -- Servidor MCP -------------------------------------------------------

    def build_server(self) -> Server:
        """
        Crea el servidor MCP de bajo nivel con los handlers del bridge.
        """
        server = Server(PROXY_NAME)

        @server.list_tools()
        async def handle_list_tools() -> List[types.Tool]:
            return await self.list_tools()

        @server.call_tool()
        async def handle_call_tool(name: str, arguments: Dict[str, Any]) -> List[Any]:
            return await self.call_tool(name, arguments)

        @server.list_resources()
        async def handle_list_resources() -> List[types.Resource]:
            return await self.list_resources()

        @server.list_resource_templates()
        async def handle_list_resource_templates() -> List[types.ResourceTemplate]:
            return await self.list_resource_templates()

        @server.read_resource()
        async def handle_read_resource(uri: Any) -> List[ReadResourceContents]:
            return await self.read_resource(uri)

        @server.list_prompts()
        async def handle_list_prompts() -> List[types.Prompt]:
            return await self.list_prompts()

        @server.get_prompt()
        async def handle_get_prompt(name: str, arguments: Optional[Dict[str, str]]) -> types.GetPromptResult:
            return await self.get_prompt(name, arguments)

        return server

    async def run(self) -> None:
        """
        Conecta con el hub y sirve MCP por stdio hasta que el cliente cierre.
        """
        await self.rpc.connect()
        server = self.build_server()
        logger.info(f"Bridge {PROXY_NAME} sirviendo por stdio (hub: {self.rpc.target})")
        try:
            async with stdio_server() as (read_stream, write_stream):
                await server.run(read_stream, write_stream, server.create_initialization_options())
        finally:
            await self.rpc.close()
