"""
Config - Gestión de Configuración del Hub
===========================================

Este módulo implementa la capa de configuración del hub, permitiendo:
- Cargar configuración desde archivos JSON
- Gestionar la configuración de cada servidor MCP (autoApprove, capacidades deshabilitadas)
- Proveer la configuración de workspace, logging y aprobación

El parseo de JSON5 y la vigilancia de archivos quedan fuera de este módulo;
aquí solo se lee JSON estándar.

Patrones de Diseño Utilizados:
- Factory: Para crear instancias de configuración

Autor: Ainsophic Team
"""

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from mcp_workspace_hub.core.capabilities import sanitize

logger = logging.getLogger(__name__)


DEFAULT_LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DEFAULT_LOOK_FOR = [".mcphub/servers.json", ".vscode/mcp.json", ".cursor/mcp.json"]


@dataclass
class ServerConfig:
    """
    Configuración de un servidor MCP.

    Atributos:
        name: Nombre único del servidor
        command: Comando para iniciar el servidor (transporte stdio)
        args: Argumentos del comando
        env: Variables de entorno adicionales
        url: URL del endpoint remoto (transporte sse)
        disabled: Indica si el servidor está deshabilitado
        auto_approve: True para aprobar todo, o lista de herramientas aprobadas
        disabled_tools: Herramientas ocultas
        disabled_resources: Recursos ocultos (por URI)
        disabled_resource_templates: Plantillas ocultas (por uriTemplate)
        disabled_prompts: Prompts ocultos
    """
    name: str
    command: Optional[str] = None
    args: List[str] = field(default_factory=list)
    env: Dict[str, str] = field(default_factory=dict)
    url: Optional[str] = None
    disabled: bool = False
    auto_approve: Union[bool, List[str], None] = None
    disabled_tools: List[str] = field(default_factory=list)
    disabled_resources: List[str] = field(default_factory=list)
    disabled_resource_templates: List[str] = field(default_factory=list)
    disabled_prompts: List[str] = field(default_factory=list)

    @property
    def transport(self) -> str:
        return "sse" if self.url else "stdio"

    def get_full_command(self) -> List[str]:
        """
        Retorna el comando completo con argumentos.

        Returns:
            Lista con el comando y sus argumentos
        """
        return [self.command] + self.args if self.command else []

    def get_disabled(self) -> Dict[str, List[str]]:
        """Capacidades deshabilitadas agrupadas por tipo."""
        return {
            "tools": self.disabled_tools,
            "resources": self.disabled_resources,
            "resource_templates": self.disabled_resource_templates,
            "prompts": self.disabled_prompts,
        }

    @classmethod
    def from_dict(cls, name: str, data: Dict[str, Any]) -> "ServerConfig":
        return cls(
            name=name,
            command=data.get("command"),
            args=data.get("args", []),
            env=data.get("env", {}),
            url=data.get("url"),
            disabled=data.get("disabled", False),
            auto_approve=data.get("autoApprove"),
            disabled_tools=data.get("disabled_tools", []),
            disabled_resources=data.get("disabled_resources", []),
            disabled_resource_templates=data.get("disabled_resourceTemplates", []),
            disabled_prompts=data.get("disabled_prompts", []),
        )


@dataclass
class PortRange:
    min: int = 40000
    max: int = 41000


@dataclass
class WorkspaceConfig:
    """
    Configuración de hubs por workspace.

    Atributos:
        enabled: Activa los hubs por workspace
        look_for: Archivos marcadores a buscar (en orden)
        port_range: Rango de puertos para hubs de workspace
    """
    enabled: bool = True
    look_for: List[str] = field(default_factory=lambda: list(DEFAULT_LOOK_FOR))
    port_range: PortRange = field(default_factory=PortRange)


@dataclass
class HubSettings:
    """
    Configuración general del hub.

    Atributos:
        port: Puerto del hub global
        host: Host donde escucha la API de control
        auto_approve: Interruptor global de aprobación automática
        mcp_request_timeout: Timeout de las llamadas MCP en milisegundos
        approval_timeout: Tiempo máximo de espera de una confirmación, en segundos
    """
    port: int = 37373
    host: str = "127.0.0.1"
    auto_approve: bool = False
    mcp_request_timeout: int = 60000
    approval_timeout: float = 60.0


@dataclass
class LoggingConfig:
    """
    Configuración de logging.

    Atributos:
        level: Nivel de logging (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        format: Formato de los mensajes de log
    """
    level: str = "INFO"
    format: str = DEFAULT_LOG_FORMAT


class HubConfig:
    """
    Configuración centralizada del hub.

    Cada llamada a ``load`` o ``from_dict`` crea una instancia independiente.

    Ejemplo de uso:
        >>> config = HubConfig.load("~/.config/mcphub/servers.json")
        >>> server = config.get_server_config("weather")
        >>> config.workspace.port_range.min
        40000
    """

    def __init__(self):
        self.servers: Dict[str, ServerConfig] = {}
        self.hub: HubSettings = HubSettings()
        self.workspace: WorkspaceConfig = WorkspaceConfig()
        self.logging: LoggingConfig = LoggingConfig()
        self._config_path: Optional[Path] = None

    @classmethod
    def load(cls, config_path: str) -> "HubConfig":
        """
        Carga la configuración desde un archivo JSON.

        Args:
            config_path: Ruta al archivo de configuración JSON

        Returns:
            Instancia de HubConfig con la configuración cargada

        Raises:
            FileNotFoundError: Si el archivo no existe
            json.JSONDecodeError: Si el JSON no es válido
        """
        instance = cls()
        instance._load_from_file(config_path)
        return instance

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "HubConfig":
        """Crea una configuración desde un diccionario."""
        instance = cls()
        instance._parse(data)
        return instance

    @property
    def config_path(self) -> Optional[Path]:
        return self._config_path

    def _load_from_file(self, config_path: str) -> None:
        path = Path(config_path).expanduser()

        if not path.exists():
            raise FileNotFoundError(f"Archivo de configuración no encontrado: {config_path}")

        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)

        self._config_path = path
        self._parse(data)

        logger.info(f"Configuración cargada exitosamente desde {path}")
        logger.info(f"Servidores configurados: {list(self.servers.keys())}")

    def _parse(self, data: Dict[str, Any]) -> None:
        self.servers = {
            name: ServerConfig.from_dict(name, info)
            for name, info in data.get("mcpServers", {}).items()
        }
        self._parse_hub(data.get("hub", {}))
        self._parse_workspace(data.get("workspace", {}))
        self._parse_logging(data.get("logging", {}))

    def _parse_hub(self, hub_data: Dict[str, Any]) -> None:
        self.hub = HubSettings(
            port=hub_data.get("port", 37373),
            host=hub_data.get("host", "127.0.0.1"),
            auto_approve=hub_data.get("auto_approve", False),
            mcp_request_timeout=hub_data.get("mcp_request_timeout", 60000),
            approval_timeout=hub_data.get("approval_timeout", 60.0),
        )

    def _parse_workspace(self, workspace_data: Dict[str, Any]) -> None:
        port_range = workspace_data.get("port_range", {})
        self.workspace = WorkspaceConfig(
            enabled=workspace_data.get("enabled", True),
            look_for=workspace_data.get("look_for", list(DEFAULT_LOOK_FOR)),
            port_range=PortRange(
                min=port_range.get("min", 40000),
                max=port_range.get("max", 41000),
            ),
        )

    def _parse_logging(self, logging_data: Dict[str, Any]) -> None:
        self.logging = LoggingConfig(
            level=logging_data.get("level", "INFO"),
            format=logging_data.get("format", DEFAULT_LOG_FORMAT),
        )

    def get_server_config(self, server_name: str) -> Optional[ServerConfig]:
        """
        Retorna la configuración de un servidor específico.

        Args:
            server_name: Nombre del servidor

        Acepta tanto el nombre original como el nombre saneado con el que
        el servidor queda registrado.

        Returns:
            ServerConfig si existe, None en caso contrario
        """
        server = self.servers.get(server_name)
        if server is not None:
            return server
        for candidate in self.servers.values():
            if sanitize(candidate.name) == server_name:
                return candidate
        return None

