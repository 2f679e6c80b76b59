"""
MCP Workspace Hub - API de Control con FastAPI
================================================

Este módulo implementa el proceso dueño del hub: carga la configuración,
arranca los servidores MCP, registra el hub en la caché de workspaces y
expone la API de control que consume el bridge.

Componentes:
- Registry: servidores de capacidades y su ciclo de vida
- Router: despacho de herramientas, recursos y prompts con aprobación
- API de control: sobre ``{"error": msg}`` o el resultado crudo

Arquitectura:
- FastAPI: API HTTP de control
- Uvicorn: servidor ASGI sobre TCP o socket Unix (``--uds``)

Autor: Ainsophic Team
"""

import argparse
import logging
import os
import sys
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, Awaitable, Dict, List, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
import uvicorn

from mcp_workspace_hub import __version__
from mcp_workspace_hub.core.approval import ApprovalEngine
from mcp_workspace_hub.core.capabilities import CallerContext
from mcp_workspace_hub.core.config import HubConfig
from mcp_workspace_hub.core.errors import HubError
from mcp_workspace_hub.core.registry import CapabilityRegistry
from mcp_workspace_hub.core.router import CallOptions, DispatchRouter
from mcp_workspace_hub.core.workspace import (
    HubContext,
    register_workspace_hub,
    resolve_hub_context,
    unregister_workspace_hub,
)
from mcp_workspace_hub.native.builtin import create_hub_server
from mcp_workspace_hub.transport.provider import ClientProvider


logger = logging.getLogger(__name__)


CONFIG_ENV_VAR = "MCP_WORKSPACE_HUB_CONFIG"
DEFAULT_CONFIG_PATH = "~/.config/mcphub/servers.json"


def build_registry(config: HubConfig) -> CapabilityRegistry:
    """
    Crea el registro con el servidor nativo ``mcphub`` y un ClientProvider
    por cada servidor configurado.
    """
    registry = CapabilityRegistry(config)
    registry.register(create_hub_server(registry))

    timeout = config.hub.mcp_request_timeout / 1000
    for server_config in config.servers.values():
        registry.register(ClientProvider(server_config, timeout=timeout, registry=registry))

    return registry


def create_app(
    config: Optional[HubConfig] = None,
    registry: Optional[CapabilityRegistry] = None,
    router: Optional[DispatchRouter] = None,
    context: Optional[HubContext] = None,
) -> FastAPI:
    """
    Crea la aplicación FastAPI.

    Si no se inyecta un registro, el lifespan carga la configuración (de
    ``config`` o del archivo indicado por ``MCP_WORKSPACE_HUB_CONFIG``) y
    arranca los servidores.

    Args:
        config: Configuración ya cargada
        registry: Registro ya construido (tests, embebido)
        router: Router ya construido
        context: Contexto de workspace; si se indica, el hub se registra en la caché
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("=" * 60)
        logger.info("MCP Workspace Hub - Iniciando...")
        logger.info("=" * 60)

        owns_registry = app.state.registry is None
        try:
            if owns_registry:
                hub_config = app.state.config
                if hub_config is None:
                    config_path = os.environ.get(CONFIG_ENV_VAR, DEFAULT_CONFIG_PATH)
                    logger.info(f"Cargando configuración desde: {config_path}")
                    hub_config = HubConfig.load(config_path)
                    app.state.config = hub_config
                logging.getLogger().setLevel(hub_config.logging.level)

                app.state.registry = build_registry(hub_config)
                await app.state.registry.start_all()

            if app.state.router is None:
                registry_ = app.state.registry
                app.state.router = DispatchRouter(registry_, ApprovalEngine(registry_.config))

            if app.state.context is not None:
                ctx = app.state.context
                await register_workspace_hub(ctx.port, ctx.cwd, ctx.config_files)

            logger.info("MCP Workspace Hub - Inicialización completada exitosamente")
            yield

        finally:
            logger.info("MCP Workspace Hub - Iniciando shutdown...")
            if app.state.context is not None:
                try:
                    await unregister_workspace_hub(app.state.context.port)
                except OSError as e:
                    logger.error(f"Error eliminando el hub de la caché: {e}")
            if owns_registry and app.state.registry is not None:
                await app.state.registry.shutdown()
            logger.info("MCP Workspace Hub - Shutdown completado")

    app = FastAPI(
        title="MCP Workspace Hub",
        description="Hub de servidores MCP por workspace",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.config = config
    app.state.registry = registry
    app.state.router = router
    app.state.context = context

    async def envelope(operation: Awaitable[Optional[Dict[str, Any]]], label: str) -> JSONResponse:
        # El sobre es el contrato: los errores viajan como {"error": msg} con 200
        try:
            result = await operation
        except HubError as e:
            logger.info(f"{label} falló ({e.code}): {e.message}")
            return JSONResponse(content={"error": e.message})
        except Exception as e:
            logger.error(f"Error inesperado en {label}: {e}")
            return JSONResponse(content={"error": str(e)})
        return JSONResponse(content=result)

    def call_options(params: Dict[str, Any]) -> CallOptions:
        return CallOptions(caller=CallerContext.from_dict(params.get("caller")))

    # ========================================================================
    # Endpoints de Salud y Estado
    # ========================================================================

    @app.get("/health")
    async def health(request: Request) -> JSONResponse:
        """
        Endpoint de salud, usado por el bridge para verificar la conexión.
        """
        state = request.app.state
        ctx = state.context
        return JSONResponse(content={
            "status": "ok",
            "version": __version__,
            "servers": len(state.registry.providers) if state.registry else 0,
            "workspace": {
                "port": ctx.port,
                "cwd": ctx.cwd,
                "config_files": ctx.config_files,
                "is_workspace_mode": ctx.is_workspace_mode,
            } if ctx else None,
        })

    # ========================================================================
    # Endpoints de Servidores
    # ========================================================================

    @app.get("/api/servers")
    async def list_servers(request: Request) -> JSONResponse:
        """
        Lista todos los servidores en formato de cable.
        """
        return JSONResponse(content={"servers": request.app.state.router.list_servers()})

    @app.post("/api/servers/start")
    async def start_server(request: Request) -> JSONResponse:
        body = await request.json()
        registry_: CapabilityRegistry = request.app.state.registry

        async def start() -> Dict[str, Any]:
            provider = await registry_.start_server(body.get("server_name"))
            return {"server": provider.to_dict(exclude=registry_.get_disabled(provider.name))}

        return await envelope(start(), "start_server")

    @app.post("/api/servers/stop")
    async def stop_server(request: Request, disable: bool = False) -> JSONResponse:
        body = await request.json()
        registry_: CapabilityRegistry = request.app.state.registry

        async def stop() -> Dict[str, Any]:
            provider = await registry_.stop_server(body.get("server_name"), disable=disable)
            return {"server": provider.to_dict(exclude=registry_.get_disabled(provider.name))}

        return await envelope(stop(), "stop_server")

    # ========================================================================
    # Endpoints de Llamadas
    # ========================================================================

    @app.post("/api/servers/tools")
    async def call_tool(request: Request) -> JSONResponse:
        """
        Ejecuta una herramienta: ``{server_name, tool, params: {arguments, caller}}``.
        """
        body = await request.json()
        params = body.get("params") or {}
        router_: DispatchRouter = request.app.state.router
        return await envelope(
            router_.call_tool(body.get("server_name"), body.get("tool"), params.get("arguments"), call_options(params)),
            "call_tool",
        )

    @app.post("/api/servers/resources")
    async def access_resource(request: Request) -> JSONResponse:
        """
        Lee un recurso: ``{server_name, uri, params: {caller}}``.
        """
        body = await request.json()
        params = body.get("params") or {}
        router_: DispatchRouter = request.app.state.router
        return await envelope(
            router_.access_resource(body.get("server_name"), body.get("uri"), call_options(params)),
            "access_resource",
        )

    @app.post("/api/servers/prompts")
    async def get_prompt(request: Request) -> JSONResponse:
        body = await request.json()
        params = body.get("params") or {}
        router_: DispatchRouter = request.app.state.router
        return await envelope(
            router_.get_prompt(body.get("server_name"), body.get("prompt"), params.get("arguments"), call_options(params)),
            "get_prompt",
        )

    return app


# ============================================================================
# CLI para iniciar el hub
# ============================================================================

def cli(argv: Optional[List[str]] = None) -> int:
    """
    Entry point para la CLI del hub.
    """
    parser = argparse.ArgumentParser(description="MCP Workspace Hub - Hub de servidores MCP por workspace")
    parser.add_argument(
        "--config",
        type=str,
        default=os.environ.get(CONFIG_ENV_VAR, DEFAULT_CONFIG_PATH),
        help="Ruta al archivo de configuración JSON",
    )
    parser.add_argument("--host", type=str, default=None, help="Host donde escuchar (default: hub.host)")
    parser.add_argument("--port", type=int, default=None, help="Puerto fijo; omite la resolución de workspace")
    parser.add_argument("--uds", type=str, default=None, help="Escuchar en un socket Unix en lugar de TCP")
    parser.add_argument("--cwd", type=str, default=None, help="Directorio desde el que resolver el workspace")

    args = parser.parse_args(argv)

    config = HubConfig.load(args.config)
    logging.basicConfig(level=config.logging.level, format=config.logging.format)

    config_path = str(Path(args.config).expanduser())
    if args.port is not None:
        context = HubContext(port=args.port, cwd=args.cwd or os.getcwd(), config_files=[config_path])
    else:
        context = resolve_hub_context(config, cwd=args.cwd, global_config=config_path)
        if context is None:
            print("No hay puertos disponibles para el hub de workspace", file=sys.stderr)
            return 1

    if context.existing_hub is not None:
        logger.info(f"Ya hay un hub activo en el puerto {context.port} (pid {context.existing_hub.pid})")
        print(context.port)
        return 0

    host = args.host or config.hub.host
    if args.uds:
        logger.info(f"Iniciando MCP Workspace Hub en {args.uds}")
    else:
        logger.info(f"Iniciando MCP Workspace Hub en {host}:{context.port}")

    uvicorn.run(
        create_app(config=config, context=context),
        host=host,
        port=context.port,
        uds=args.uds,
        log_level=config.logging.level.lower(),
    )
    return 0


if __name__ == "__main__":
    sys.exit(cli())
