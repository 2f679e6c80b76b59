"""
Hub RPC Client - Cliente de la API de Control del Hub
=======================================================

Cliente HTTP asíncrono (httpx) para hablar con un hub en ejecución, ya sea
por un socket Unix o por una URL TCP.

Cada llamada está acotada por el timeout de RPC; la conexión inicial se
verifica con ``/health`` acotada por el timeout de conexión.

Autor: Ainsophic Team
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional

import httpx

from mcp_workspace_hub.core.errors import HubConnectionError, TransportTimeoutError


logger = logging.getLogger(__name__)


DEFAULT_RPC_CALL_TIMEOUT_MS = 60000
DEFAULT_CONNECTION_TIMEOUT_MS = 5000
UDS_BASE_URL = "http://mcphub"


class HubRPCClient:
    """
    Cliente de la API de control.

    Ejemplo de uso:
        >>> async with HubRPCClient(socket_path="/tmp/mcphub.sock") as rpc:
        ...     servers = await rpc.get_all_servers()
        ...     result = await rpc.call_tool("weather", "get_weather", {"arguments": {"city": "Lima"}})
    """

    def __init__(
        self,
        socket_path: Optional[str] = None,
        url: Optional[str] = None,
        rpc_call_timeout: int = DEFAULT_RPC_CALL_TIMEOUT_MS,
        connection_timeout: int = DEFAULT_CONNECTION_TIMEOUT_MS,
    ):
        """
        Args:
            socket_path: Ruta del socket Unix del hub
            url: URL base del hub (alternativa al socket)
            rpc_call_timeout: Timeout de cada llamada, en milisegundos
            connection_timeout: Timeout de la conexión inicial, en milisegundos
        """
        if not socket_path and not url:
            raise ValueError("Se requiere 'socket_path' o 'url'")

        self.socket_path = socket_path
        self.url = url.rstrip("/") if url else None
        self.rpc_call_timeout = rpc_call_timeout / 1000
        self.connection_timeout = connection_timeout / 1000
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def target(self) -> str:
        return self.socket_path or self.url

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            if self.socket_path:
                self._client = httpx.AsyncClient(
                    transport=httpx.AsyncHTTPTransport(uds=self.socket_path),
                    base_url=UDS_BASE_URL,
                    timeout=self.rpc_call_timeout,
                )
            else:
                self._client = httpx.AsyncClient(base_url=self.url, timeout=self.rpc_call_timeout)
        return self._client

    async def connect(self) -> Dict[str, Any]:
        """
        Verifica que el hub responde.

        Raises:
            TransportTimeoutError: Si el hub no responde dentro del timeout de conexión
            HubConnectionError: Si la conexión falla
        """
        health = await self._request("GET", "/health", timeout=self.connection_timeout)
        logger.info(f"Conectado al hub en {self.target}")
        return health

    async def close(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()
        self._client = None

    async def __aenter__(self) -> "HubRPCClient":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def _request(
        self,
        method: str,
        path: str,
        payload: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = None,
    ) -> Any:
        timeout = timeout or self.rpc_call_timeout
        client = self._get_client()
        try:
            response = await asyncio.wait_for(
                client.request(method, path, json=payload, timeout=timeout),
                timeout=timeout,
            )
            response.raise_for_status()
            return response.json()
        except (asyncio.TimeoutError, httpx.TimeoutException):
            raise TransportTimeoutError(f"Hub request {method} {path} timed out after {timeout}s")
        except httpx.HTTPStatusError as e:
            raise HubConnectionError(f"Hub request {method} {path} failed: {e.response.status_code}")
        except (httpx.HTTPError, ValueError) as e:
            raise HubConnectionError(f"Cannot reach hub at {self.target}: {e}")

    async def get_all_servers(self) -> List[Dict[str, Any]]:
        data = await self._request("GET", "/api/servers")
        return data.get("servers", [])

    async def call_tool(self, server_name: str, tool_name: str, params: Dict[str, Any]) -> Dict[str, Any]:
        return await self._request("POST", "/api/servers/tools", {
            "server_name": server_name,
            "tool": tool_name,
            "params": params,
        })

    async def access_resource(self, server_name: str, uri: str, params: Dict[str, Any]) -> Dict[str, Any]:
        return await self._request("POST", "/api/servers/resources", {
            "server_name": server_name,
            "uri": uri,
            "params": params,
        })

    async def get_prompt(self, server_name: str, prompt_name: str, params: Dict[str, Any]) -> Dict[str, Any]:
        return await self._request("POST", "/api/servers/prompts", {
            "server_name": server_name,
            "prompt": prompt_name,
            "params": params,
        })
