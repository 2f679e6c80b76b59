"""
Workspace - Descubrimiento y Coordinación de Hubs por Workspace
=================================================================

Este módulo permite que varios editores compartan un mismo hub por
proyecto:

- Buscar hacia arriba un archivo marcador de workspace
- Derivar un puerto determinista a partir de la ruta del workspace
- Encontrar un puerto libre con sondeo lineal circular
- Leer la caché global de hubs (clave: puerto) filtrando procesos muertos
- Decidir si se arranca en modo workspace o en modo global

Solo el proceso dueño de un hub escribe su entrada en la caché
(``register_workspace_hub`` / ``unregister_workspace_hub``); el resto solo lee.

Formato de la caché::

    {"40123": {"pid": 4242, "startTime": 1700000000000,
               "cwd": "/ruta/proyecto", "config_files": ["global.json", "proyecto.json"]}}

La clave es el puerto; ``startTime`` son milisegundos desde la época.

Autor: Ainsophic Team
"""

import json
import logging
import os
import random
import socket
import tempfile
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import aiofiles

from mcp_workspace_hub.core.config import HubConfig, PortRange


logger = logging.getLogger(__name__)


HASH_MODULUS = 2147483647
DEFAULT_MAX_ATTEMPTS = 100


@dataclass
class WorkspaceInfo:
    """Raíz del workspace y archivo marcador encontrado."""
    root_dir: str
    config_file: str


@dataclass
class WorkspaceCacheEntry:
    """
    Entrada de la caché de hubs.

    Atributos:
        port: Puerto donde escucha el hub
        pid: PID del proceso dueño
        start_time: Momento de arranque en milisegundos desde la época
        cwd: Raíz del workspace servido
        config_files: Archivos de configuración cargados, en orden
    """
    port: int
    pid: Any
    start_time: Optional[int] = None
    cwd: Optional[str] = None
    config_files: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, port: Any, data: Dict[str, Any]) -> "WorkspaceCacheEntry":
        """Construye la entrada a partir de su clave de puerto y su valor."""
        return cls(
            port=int(port),
            pid=data.get("pid"),
            start_time=data.get("startTime"),
            cwd=data.get("cwd"),
            config_files=data.get("config_files") or [],
        )

    def to_dict(self) -> Dict[str, Any]:
        # El puerto es la clave de la caché, no parte del valor
        return {
            "pid": self.pid,
            "startTime": self.start_time,
            "cwd": self.cwd,
            "config_files": self.config_files,
        }


@dataclass
class HubContext:
    """
    Resultado de la resolución de contexto al arrancar un hub.

    Atributos:
        port: Puerto elegido (o el del hub existente)
        cwd: Directorio de trabajo del hub
        config_files: Archivos de configuración en orden (global primero)
        is_workspace_mode: True si se encontró un marcador de workspace
        workspace_root: Raíz del workspace (solo en modo workspace)
        existing_hub: Hub vivo que ya sirve este contexto, si lo hay
    """
    port: int
    cwd: str
    config_files: List[str]
    is_workspace_mode: bool = False
    workspace_root: Optional[str] = None
    existing_hub: Optional[WorkspaceCacheEntry] = None


def find_workspace_config(look_for: List[str], start_dir: Optional[str] = None) -> Optional[WorkspaceInfo]:
    """
    Busca hacia arriba el primer archivo marcador.

    En cada nivel los patrones se prueban en orden. La búsqueda termina
    cuando un directorio coincide con su padre; la raíz del sistema de
    archivos no se examina.

    Args:
        look_for: Rutas relativas a buscar (``.vscode/mcp.json``, ...)
        start_dir: Directorio inicial (por defecto, el directorio actual)

    Returns:
        WorkspaceInfo o None si no hay marcador
    """
    current = Path(start_dir or os.getcwd()).absolute()
    parent = current.parent

    while current != parent:
        for pattern in look_for:
            candidate = current / pattern
            if candidate.exists():
                return WorkspaceInfo(root_dir=str(current), config_file=str(candidate))
        current = parent
        parent = current.parent

    return None


def generate_workspace_port(workspace_path: str, port_range: PortRange) -> int:
    """
    Deriva un puerto determinista de la ruta del workspace.

    Hash polinomial base 31 sobre los bytes UTF-8, módulo 2147483647,
    proyectado sobre el rango de puertos.
    """
    value = 0
    for byte in workspace_path.encode("utf-8"):
        value = (value * 31 + byte) % HASH_MODULUS

    range_size = port_range.max - port_range.min + 1
    return port_range.min + (value % range_size)


def is_port_available(port: int, host: str = "127.0.0.1") -> bool:
    """Prueba de bind sobre el puerto; el socket se cierra de inmediato."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        try:
            sock.bind((host, port))
        except OSError:
            return False
    return True


def find_available_port(
    port_range: PortRange,
    workspace_path: Optional[str] = None,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
) -> Optional[int]:
    """
    Busca un puerto libre a partir del puerto base del workspace.

    Sin ruta de workspace el puerto base es aleatorio dentro del rango.
    El sondeo es lineal y vuelve al inicio del rango al superar el máximo.

    Returns:
        Puerto disponible o None si se agotaron los intentos
    """
    if workspace_path:
        base_port = generate_workspace_port(workspace_path, port_range)
    else:
        base_port = random.randint(port_range.min, port_range.max)

    for attempt in range(max_attempts):
        port = base_port + attempt
        if port > port_range.max:
            port = port_range.min + (port - port_range.max - 1)
        if is_port_available(port):
            return port

    logger.warning(f"Sin puertos disponibles en {port_range.min}-{port_range.max} tras {max_attempts} intentos")
    return None


def get_workspace_cache_path() -> Path:
    """
    Ruta de la caché de hubs.

    Usa ``~/.mcp-hub/workspaces.json`` si ya existe; si no, la ruta XDG
    ``$XDG_STATE_HOME/mcp-hub/workspaces.json`` (por defecto ``~/.local/state``).
    """
    home = Path.home()
    legacy_path = home / ".mcp-hub" / "workspaces.json"
    if legacy_path.is_file():
        return legacy_path

    state_home = os.environ.get("XDG_STATE_HOME") or str(home / ".local" / "state")
    return Path(state_home) / "mcp-hub" / "workspaces.json"


def read_workspace_cache() -> Dict[str, Dict[str, Any]]:
    """
    Lee la caché completa. Archivo ausente, vacío o inválido equivale a ``{}``.
    """
    cache_path = get_workspace_cache_path()
    if not cache_path.exists():
        return {}

    try:
        content = cache_path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        logger.warning(f"No se pudo leer la caché de workspaces ({cache_path}): {e}")
        return {}
    if not content.strip():
        return {}

    try:
        cache = json.loads(content)
    except json.JSONDecodeError as e:
        logger.warning(f"Caché de workspaces inválida ({cache_path}): {e}")
        return {}

    return cache if isinstance(cache, dict) else {}


def is_process_running(pid: Any) -> bool:
    """
    Comprueba si un proceso existe enviándole la señal 0.

    Un PermissionError indica que el proceso existe pero pertenece a otro
    usuario, por lo que se considera vivo.
    """
    if not isinstance(pid, int) or isinstance(pid, bool):
        return False

    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    except OSError:
        return False
    return True


def get_workspace_hub_info(port: Any) -> Optional[WorkspaceCacheEntry]:
    """
    Entrada de la caché para un puerto, solo si su proceso sigue vivo.
    """
    entry = read_workspace_cache().get(str(port))
    if not entry:
        return None
    if not is_process_running(entry.get("pid")):
        logger.debug(f"Entrada de caché obsoleta para el puerto {port}")
        return None
    return WorkspaceCacheEntry.from_dict(port, entry)


def find_matching_workspace_hub(workspace_path: str, config_files: List[str]) -> Optional[WorkspaceCacheEntry]:
    """
    Busca un hub vivo que sirva el mismo workspace con los mismos archivos
    de configuración (comparación sensible al orden).
    """
    for port, entry in read_workspace_cache().items():
        if entry.get("cwd") != workspace_path:
            continue
        if list(entry.get("config_files") or []) != list(config_files):
            continue
        if is_process_running(entry.get("pid")):
            return WorkspaceCacheEntry.from_dict(port, entry)
    return None


def resolve_hub_context(
    config: HubConfig,
    cwd: Optional[str] = None,
    global_config: Optional[str] = None,
) -> Optional[HubContext]:
    """
    Decide el contexto de arranque del hub.

    En modo workspace (habilitado y con marcador encontrado) los archivos de
    configuración son ``[global, proyecto]``; se reutiliza un hub vivo que
    coincida o se elige un puerto libre. En caso contrario se usa el modo
    global con el puerto configurado.

    Returns:
        HubContext, o None si no hay puertos disponibles para el workspace
    """
    cwd = cwd or os.getcwd()
    if global_config is None:
        global_config = str(config.config_path) if config.config_path else ""

    if config.workspace.enabled:
        info = find_workspace_config(config.workspace.look_for, cwd)
        if info is not None:
            config_files = [global_config, info.config_file]
            existing = find_matching_workspace_hub(info.root_dir, config_files)
            if existing is not None:
                port = existing.port
                logger.info(f"Hub de workspace existente en puerto {port} (pid {existing.pid})")
            else:
                port = find_available_port(config.workspace.port_range, info.root_dir)
                if port is None:
                    logger.error("No hay puertos disponibles para el hub de workspace")
                    return None
                logger.info(f"Puerto generado para workspace {info.root_dir}: {port}")

            return HubContext(
                port=port,
                cwd=info.root_dir,
                config_files=config_files,
                is_workspace_mode=True,
                workspace_root=info.root_dir,
                existing_hub=existing,
            )

        logger.debug("Sin configuración de workspace, usando modo global")

    port = config.hub.port
    return HubContext(
        port=port,
        cwd=cwd,
        config_files=[global_config],
        is_workspace_mode=False,
        existing_hub=get_workspace_hub_info(port),
    )


async def _write_cache(cache: Dict[str, Any]) -> None:
    # Escritura atómica: archivo temporal en el mismo directorio y replace
    cache_path = get_workspace_cache_path()
    cache_path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=".workspaces.", suffix=".tmp", dir=str(cache_path.parent))
    os.close(fd)
    try:
        async with aiofiles.open(tmp_name, "w", encoding="utf-8") as f:
            await f.write(json.dumps(cache, indent=2))
        os.replace(tmp_name, cache_path)
    except Exception:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise


async def register_workspace_hub(
    port: int,
    cwd: str,
    config_files: List[str],
    pid: Optional[int] = None,
) -> WorkspaceCacheEntry:
    """
    Registra el hub del proceso actual en la caché.

    Solo debe llamarlo el proceso dueño del hub.
    """
    entry = WorkspaceCacheEntry(
        port=port,
        pid=pid if pid is not None else os.getpid(),
        start_time=int(time.time() * 1000),
        cwd=cwd,
        config_files=list(config_files),
    )
    cache = read_workspace_cache()
    cache[str(port)] = entry.to_dict()
    await _write_cache(cache)
    logger.info(f"Hub registrado en caché de workspaces: puerto {port}")
    return entry


async def unregister_workspace_hub(port: int) -> bool:
    """
    Elimina la entrada del puerto de la caché.

    Returns:
        True si existía una entrada
    """
    cache = read_workspace_cache()
    if cache.pop(str(port), None) is None:
        return False
    await _write_cache(cache)
    logger.info(f"Hub eliminado de la caché de workspaces: puerto {port}")
    return True
