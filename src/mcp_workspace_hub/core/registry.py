"""
Registry - Registro de Servidores de Capacidades
==================================================

Este módulo implementa el registro central de servidores de capacidades
(nativos, subprocess y remotos). Proporciona funcionalidades para:

- Registrar y eliminar servidores con nombres saneados y únicos
- Iniciar y detener servidores (transiciones de ciclo de vida)
- Reemplazar listas de capacidades cuando un servidor las cambia
- Filtrar capacidades deshabilitadas por configuración
- Notificar cambios a observadores registrados

Eventos emitidos:
- ``servers_updated``: alta, baja o cambio de estado de un servidor
- ``tool_list_changed`` / ``resource_list_changed`` / ``prompt_list_changed``

Las notificaciones son "al menos una vez": los consumidores reconstruyen
sus índices derivados en cada evento.

Patrones de Diseño Utilizados:
- Observer: Para notificar cambios de estado y de capacidades
- Registry: Para mantener el catálogo de servidores

Autor: Ainsophic Team
"""

import logging
from typing import Any, Callable, Dict, List, Optional

from mcp_workspace_hub.core.capabilities import (
    Capabilities,
    CapabilityProvider,
    ServerStatus,
    sanitize,
)
from mcp_workspace_hub.core.config import HubConfig
from mcp_workspace_hub.core.errors import ConfigConflictError, NotFoundError


logger = logging.getLogger(__name__)


KIND_EVENTS = {
    "tools": "tool_list_changed",
    "resources": "resource_list_changed",
    "resource_templates": "resource_list_changed",
    "prompts": "prompt_list_changed",
}

# Clave del tipo de capacidad en la lista de atributos del descriptor
_KIND_KEYS = {
    "tools": "name",
    "resources": "uri",
    "resource_templates": "uri_template",
    "prompts": "name",
}


class CapabilityRegistry:
    """
    Registro de servidores de capacidades.

    Ejemplo de uso:
        >>> registry = CapabilityRegistry(config)
        >>> registry.register(NativeProvider("weather"))
        >>> registry.add_observer(lambda event, data: print(event, data))
        >>> [p.name for p in registry.list_servers()]
        ['weather']
    """

    def __init__(self, config: Optional[HubConfig] = None):
        """
        Inicializa el registro.

        Args:
            config: Configuración del hub (capacidades deshabilitadas por servidor)
        """
        self.config = config
        self.providers: Dict[str, CapabilityProvider] = {}
        self._observers: List[Callable[[str, Dict[str, Any]], None]] = []

        logger.info("CapabilityRegistry inicializado")

    # -- Observadores -------------------------------------------------------

    def add_observer(self, callback: Callable[[str, Dict[str, Any]], None]) -> None:
        """
        Registra un observador para eventos del registro.

        Args:
            callback: Función ``callback(event, data)``
        """
        self._observers.append(callback)
        logger.debug(f"Observador registrado: {getattr(callback, '__name__', callback)}")

    def remove_observer(self, callback: Callable[[str, Dict[str, Any]], None]) -> None:
        if callback in self._observers:
            self._observers.remove(callback)
            logger.debug(f"Observador eliminado: {getattr(callback, '__name__', callback)}")

    def notify(self, event: str, data: Dict[str, Any]) -> None:
        """
        Notifica a todos los observadores sobre un evento.

        Los errores de un observador se registran y nunca se propagan.
        """
        for observer in list(self._observers):
            try:
                observer(event, data)
            except Exception as e:
                logger.error(f"Error en observador {getattr(observer, '__name__', observer)}: {e}")

    # -- Alta y baja --------------------------------------------------------

    def register(self, provider: CapabilityProvider) -> CapabilityProvider:
        """
        Registra un servidor con su nombre saneado.

        Raises:
            ConfigConflictError: Si ya existe un servidor con ese nombre
        """
        name = sanitize(provider.name)
        if name != provider.name:
            logger.debug(f"Nombre de servidor saneado: {provider.name} -> {name}")
            provider.name = name

        if name in self.providers:
            raise ConfigConflictError(f"Server '{name}' is already registered")

        self.providers[name] = provider
        logger.info(f"Servidor registrado: {name} ({provider.status.value})")
        self.notify("servers_updated", {"server": name, "action": "registered"})
        return provider

    def remove(self, name: str) -> CapabilityProvider:
        """
        Elimina un servidor del registro.

        Raises:
            NotFoundError: Si el servidor no existe
        """
        provider = self.require(name)
        del self.providers[provider.name]
        logger.info(f"Servidor eliminado: {provider.name}")
        self.notify("servers_updated", {"server": provider.name, "action": "removed"})
        return provider

    # -- Consulta -----------------------------------------------------------

    def get(self, name: str) -> Optional[CapabilityProvider]:
        return self.providers.get(name)

    def require(self, name: str) -> CapabilityProvider:
        provider = self.providers.get(name)
        if provider is None:
            raise NotFoundError(f"Server '{name}' not found")
        return provider

    def list_servers(self, include_disabled: bool = False) -> List[CapabilityProvider]:
        """
        Lista los servidores registrados, en orden de registro.

        Args:
            include_disabled: Incluir servidores en estado ``disabled``
        """
        return [
            provider for provider in self.providers.values()
            if include_disabled or provider.status != ServerStatus.DISABLED
        ]

    def get_disabled(self, name: str) -> Dict[str, List[str]]:
        """Capacidades deshabilitadas por configuración para un servidor."""
        server_config = self.config.get_server_config(name) if self.config else None
        return server_config.get_disabled() if server_config else {}

    def is_disabled(self, name: str, kind: str, key: str) -> bool:
        return key in self.get_disabled(name).get(kind, [])

    def get_all_servers(self) -> List[Dict[str, Any]]:
        """
        Representación de cable de todos los servidores, sin handlers y sin
        capacidades deshabilitadas.
        """
        return [
            provider.to_dict(exclude=self.get_disabled(provider.name))
            for provider in self.list_servers(include_disabled=True)
        ]

    # -- Capacidades --------------------------------------------------------

    def update_capabilities(self, name: str, kind: str, items: List[Any]) -> None:
        """
        Reemplaza una lista de capacidades completa y emite el evento del tipo.

        Args:
            name: Nombre del servidor
            kind: ``tools``, ``resources``, ``resource_templates`` o ``prompts``
            items: Nueva lista de descriptores
        """
        if kind not in KIND_EVENTS:
            raise ValueError(f"Tipo de capacidad desconocido: {kind}")

        provider = self.require(name)
        setattr(provider.capabilities, kind, list(items))
        logger.debug(f"Capacidades actualizadas: {name}.{kind} ({len(items)})")
        self.notify(KIND_EVENTS[kind], {"server": name, kind: list(items)})

    def add_capability(self, name: str, kind: str, item: Any) -> None:
        """
        Agrega un descriptor a una lista existente.

        Raises:
            ConfigConflictError: Si ya existe un descriptor con la misma clave
        """
        provider = self.require(name)
        key_attr = _KIND_KEYS[kind]
        current = getattr(provider.capabilities, kind)
        key = getattr(item, key_attr)
        if any(getattr(existing, key_attr) == key for existing in current):
            raise ConfigConflictError(f"{kind} '{key}' already exists on server '{name}'")
        self.update_capabilities(name, kind, current + [item])

    def remove_capability(self, name: str, kind: str, key: str) -> bool:
        """
        Elimina un descriptor por su clave (nombre o URI).

        Returns:
            True si se eliminó algo
        """
        provider = self.require(name)
        key_attr = _KIND_KEYS[kind]
        current = getattr(provider.capabilities, kind)
        remaining = [item for item in current if getattr(item, key_attr) != key]
        if len(remaining) == len(current):
            return False
        self.update_capabilities(name, kind, remaining)
        return True

    async def refresh(self, name: str) -> bool:
        """
        Vuelve a consultar las capacidades de un servidor remoto.

        Returns:
            True si el servidor devolvió nuevas listas
        """
        provider = self.require(name)
        capabilities: Optional[Capabilities] = await provider.refresh_capabilities()
        if capabilities is None:
            return False

        for kind in Capabilities.KINDS:
            self.update_capabilities(name, kind, getattr(capabilities, kind))
        return True

    # -- Ciclo de vida ------------------------------------------------------

    async def start_server(self, name: str) -> CapabilityProvider:
        """
        Inicia un servidor. Un fallo deja el estado en ``error``.
        """
        provider = self.require(name)
        if provider.is_connected:
            logger.warning(f"Servidor ya está conectado: {name}")
            return provider

        logger.info(f"Iniciando servidor: {name}")
        try:
            await provider.start()
        except Exception as e:
            provider.status = ServerStatus.ERROR
            provider.error = str(e)
            logger.error(f"Fallo al iniciar servidor {name}: {e}")
        self.notify("servers_updated", {"server": name, "status": provider.status.value})
        return provider

    async def stop_server(self, name: str, disable: bool = False) -> CapabilityProvider:
        """
        Detiene un servidor; con ``disable`` queda en estado ``disabled``.
        """
        provider = self.require(name)
        logger.info(f"Deteniendo servidor: {name} (disable={disable})")
        try:
            await provider.stop(disable=disable)
        except Exception as e:
            provider.status = ServerStatus.DISABLED if disable else ServerStatus.ERROR
            provider.error = str(e)
            logger.error(f"Error deteniendo servidor {name}: {e}")
        self.notify("servers_updated", {"server": name, "status": provider.status.value})
        return provider

    async def start_all(self) -> None:
        for provider in self.list_servers():
            if not provider.is_connected:
                await self.start_server(provider.name)

    async def shutdown(self) -> None:
        """
        Detiene todos los servidores registrados.
        """
        logger.info("Deteniendo todos los servidores")
        for provider in self.list_servers(include_disabled=True):
            if provider.is_connected:
                await self.stop_server(provider.name)
        logger.info("Todos los servidores detenidos")
