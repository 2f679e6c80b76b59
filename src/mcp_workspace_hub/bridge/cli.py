"""
CLI del bridge ``mcp-workspace-hub-proxy``.

stdout transporta el protocolo MCP, por lo que los logs solo van a
``--log-file`` (o se descartan si no se indica).
"""

import argparse
import asyncio
import logging
import sys
from typing import List, Optional

from mcp_workspace_hub.bridge.proxy import ProxyBridge
from mcp_workspace_hub.bridge.rpc import (
    DEFAULT_CONNECTION_TIMEOUT_MS,
    DEFAULT_RPC_CALL_TIMEOUT_MS,
    HubRPCClient,
)
from mcp_workspace_hub.core.config import DEFAULT_LOG_FORMAT
from mcp_workspace_hub.core.errors import HubError


logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mcp-workspace-hub-proxy",
        description="Expone un hub en ejecución como un servidor MCP por stdio",
    )
    target = parser.add_mutually_exclusive_group(required=True)
    target.add_argument("--socket", "-s", type=str, help="Socket Unix de la API de control del hub")
    target.add_argument("--url", "-u", type=str, help="URL base de la API de control del hub")
    parser.add_argument(
        "--rpc-call-timeout", "-t",
        type=int,
        default=DEFAULT_RPC_CALL_TIMEOUT_MS,
        help="Timeout de cada llamada al hub, en milisegundos",
    )
    parser.add_argument(
        "--connection-timeout", "-c",
        type=int,
        default=DEFAULT_CONNECTION_TIMEOUT_MS,
        help="Timeout de la conexión inicial, en milisegundos",
    )
    parser.add_argument("--log-file", "-l", type=str, help="Archivo de log")
    parser.add_argument(
        "--log-level", "-v",
        type=str,
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Nivel de logging",
    )
    return parser


def configure_logging(log_file: Optional[str], level: str) -> None:
    handler: logging.Handler
    if log_file:
        handler = logging.FileHandler(log_file, encoding="utf-8")
    else:
        handler = logging.NullHandler()
    handler.setFormatter(logging.Formatter(DEFAULT_LOG_FORMAT))
    logging.basicConfig(level=level, handlers=[handler], force=True)


def main(argv: Optional[List[str]] = None) -> int:
    """
    Entry point del bridge.

    Returns:
        Código de salida del proceso
    """
    args = build_parser().parse_args(argv)
    configure_logging(args.log_file, args.log_level)

    rpc = HubRPCClient(
        socket_path=args.socket,
        url=args.url,
        rpc_call_timeout=args.rpc_call_timeout,
        connection_timeout=args.connection_timeout,
    )

    try:
        asyncio.run(ProxyBridge(rpc).run())
    except HubError as e:
        logger.error(f"No se pudo conectar con el hub: {e}")
        print(f"mcp-workspace-hub-proxy: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        logger.info("Bridge interrumpido")
    return 0


if __name__ == "__main__":
    sys.exit(main())
