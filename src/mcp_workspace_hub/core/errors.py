"""
Errores del Hub - Taxonomía de Excepciones
============================================

Jerarquía de excepciones compartida por el registry, el router, el motor
de aprobación y el bridge.

Cada excepción expone un ``code`` estable para que las capas externas
(API de control, bridge) puedan traducirla sin depender del tipo Python.

Autor: Ainsophic Team
"""

from typing import Any, Dict, Optional


class HubError(Exception):
    """Excepción base para errores del hub."""

    code = "HUB_ERROR"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.message, "code": self.code}


class NotFoundError(HubError):
    """Servidor, capacidad o URI desconocidos."""

    code = "NOT_FOUND"


class NotConnectedError(NotFoundError):
    """El servidor existe pero su estado no es ``connected``."""

    code = "NOT_CONNECTED"


class ApprovalDeniedError(HubError):
    """La llamada fue denegada explícitamente o cancelada por el usuario."""

    code = "APPROVAL_DENIED"


class ApprovalTimeoutError(ApprovalDeniedError):
    """La confirmación interactiva no llegó dentro del tiempo límite."""

    code = "APPROVAL_TIMEOUT"


class TransportTimeoutError(HubError):
    """Se superó el límite de una llamada RPC o de la conexión."""

    code = "TRANSPORT_TIMEOUT"


class HubConnectionError(HubError):
    """Fallo de transporte al hablar con un hub en ejecución."""

    code = "HUB_CONNECTION"


class HandlerError(HubError):
    """El handler de un servidor falló o devolvió una salida inválida."""

    code = "HANDLER_ERROR"


class ConfigConflictError(HubError):
    """Colisión de nombres al registrar o agregar capacidades."""

    code = "CONFIG_CONFLICT"


class InvalidArgumentsError(HubError):
    """Los argumentos de una llamada no son un objeto."""

    code = "INVALID_ARGUMENTS"
