"""
Approval - Motor de Decisión de Aprobación Automática
========================================================

Este módulo decide, para cada llamada, si se ejecuta de inmediato, si
requiere confirmación interactiva o si se deniega.

Orden de prioridad (la primera regla que aplica gana):
1. Función de decisión personalizada (por llamada o global)
2. Interruptor global ``auto_approve = True``
3. ``autoApprove`` del servidor (True o lista de herramientas)
4. Confirmación interactiva

El acceso a recursos siempre se aprueba sin confirmación.

La confirmación interactiva se espera con un límite de tiempo: nunca se
bloquea indefinidamente, y un timeout produce ``Approval timeout``.

Autor: Ainsophic Team
"""

import asyncio
import concurrent.futures
import inspect
import json
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, Union

from mcp_workspace_hub.core.capabilities import CallAction, CallRequest, ToolDescriptor
from mcp_workspace_hub.core.config import HubConfig


logger = logging.getLogger(__name__)


APPROVAL_TIMEOUT_MESSAGE = "Approval timeout"
USER_REJECTED_MESSAGE = "User rejected the operation"
USER_CANCELLED_MESSAGE = "User cancelled the operation"
NO_CONFIRMATION_MESSAGE = "Interactive confirmation is not available"

DecisionResult = Union[bool, str, None]
DecisionFunction = Callable[[Dict[str, Any]], Union[DecisionResult, Awaitable[DecisionResult]]]
ConfirmFunction = Callable[[CallRequest, str], Union[bool, Awaitable[bool]]]


class ApprovalCancelled(Exception):
    """Levantada por un prompt de confirmación cuando el usuario cancela."""
    pass


@dataclass(frozen=True)
class ApprovalDecision:
    """
    Resultado de una evaluación de aprobación.

    Invariante: si ``error`` está definido, ``approve`` es False.
    """
    approve: bool
    error: Optional[str] = None

    def __post_init__(self):
        if self.error is not None and self.approve:
            raise ValueError("Una decisión con error no puede estar aprobada")

    @classmethod
    def approved(cls) -> "ApprovalDecision":
        return cls(approve=True)

    @classmethod
    def denied(cls, reason: str) -> "ApprovalDecision":
        return cls(approve=False, error=reason)

    @property
    def timed_out(self) -> bool:
        return self.error == APPROVAL_TIMEOUT_MESSAGE


def build_confirmation_message(request: CallRequest) -> str:
    """
    Construye el texto que se muestra al usuario para confirmar una llamada.
    """
    if request.action == CallAction.ACCESS_RESOURCE:
        return f"Do you want to access the resource `{request.uri}` on the `{request.server}` server?"

    lines = []
    for key, value in request.arguments.items():
        rendered = value if isinstance(value, str) else json.dumps(value, indent=2, default=str)
        lines.append(f"{key}:\n {rendered}")
    return (
        f"Do you want to run the `{request.tool}` tool on the `{request.server}` mcp server "
        f"with arguments:\n" + "\n".join(lines)
    )


class ApprovalEngine:
    """
    Motor de aprobación de llamadas.

    No guarda estado entre llamadas: cada decisión es función de la
    política global, la política del servidor y los parámetros de la llamada.

    Ejemplo de uso:
        >>> engine = ApprovalEngine(config, confirm=ask_user, timeout=60)
        >>> decision = await engine.decide(request, tool)
        >>> if not decision.approve:
        ...     print(decision.error)
    """

    def __init__(
        self,
        config: Optional[HubConfig] = None,
        auto_approve: Union[bool, DecisionFunction, None] = None,
        confirm: Optional[ConfirmFunction] = None,
        timeout: Optional[float] = None,
    ):
        """
        Args:
            config: Configuración del hub (política global y por servidor)
            auto_approve: Booleano o función de decisión; si es None se toma de la configuración
            confirm: Prompt interactivo; None si el contexto no puede mostrar UI
            timeout: Segundos máximos de espera de la confirmación
        """
        self.config = config
        if auto_approve is None:
            auto_approve = config.hub.auto_approve if config else False
        self.auto_approve = auto_approve
        self.confirm = confirm
        if timeout is None:
            timeout = config.hub.approval_timeout if config else 60.0
        self.timeout = timeout

    def is_auto_approved_in_server(
        self, request: CallRequest, tool: Optional[ToolDescriptor] = None
    ) -> bool:
        """
        Evalúa la política ``autoApprove`` del servidor para una herramienta.
        """
        if tool is not None and tool.auto_approve:
            return True

        server_config = self.config.get_server_config(request.server) if self.config else None
        if server_config is None:
            return False

        policy = server_config.auto_approve
        if policy is True:
            return True
        if isinstance(policy, list) and request.tool is not None:
            return request.tool in policy
        return False

    async def decide(
        self,
        request: CallRequest,
        tool: Optional[ToolDescriptor] = None,
        decision_fn: Optional[DecisionFunction] = None,
    ) -> ApprovalDecision:
        """
        Evalúa la cadena de prioridad para una llamada.

        Args:
            request: Petición a evaluar
            tool: Descriptor de la herramienta, si ya fue resuelto
            decision_fn: Función de decisión específica de esta llamada

        Returns:
            ApprovalDecision resultante
        """
        if request.action == CallAction.ACCESS_RESOURCE:
            return ApprovalDecision.approved()

        in_server = self.is_auto_approved_in_server(request, tool)

        if decision_fn is None and callable(self.auto_approve):
            decision_fn = self.auto_approve

        if decision_fn is not None:
            verdict = await self._run_decision_fn(decision_fn, request, in_server)
            if verdict is True:
                logger.debug(f"Llamada aprobada por función de decisión: {request.server}/{request.tool}")
                return ApprovalDecision.approved()
            if isinstance(verdict, str):
                logger.info(f"Llamada denegada por función de decisión: {verdict}")
                return ApprovalDecision.denied(verdict)
            return await self.request_confirmation(request)

        if self.auto_approve is True:
            return ApprovalDecision.approved()

        if in_server:
            logger.debug(f"Llamada aprobada por autoApprove del servidor: {request.server}/{request.tool}")
            return ApprovalDecision.approved()

        return await self.request_confirmation(request)

    async def _run_decision_fn(
        self, decision_fn: DecisionFunction, request: CallRequest, in_server: bool
    ) -> DecisionResult:
        params = {
            "server_name": request.server,
            "tool_name": request.tool,
            "arguments": request.arguments,
            "action": request.action.value,
            "uri": request.uri,
            "is_auto_approved_in_server": in_server,
        }
        try:
            verdict = decision_fn(params)
            if inspect.isawaitable(verdict):
                verdict = await verdict
        except Exception as e:
            logger.error(f"Error en función de aprobación: {e}")
            return None
        return verdict

    async def request_confirmation(self, request: CallRequest) -> ApprovalDecision:
        """
        Pide confirmación interactiva con un tiempo de espera acotado.

        Los prompts síncronos se ejecutan en un hilo del executor para no
        bloquear el event loop.
        """
        if self.confirm is None:
            logger.warning(
                f"Confirmación requerida sin prompt disponible: {request.server}/{request.tool} "
                f"(caller: {request.caller})"
            )
            return ApprovalDecision.denied(NO_CONFIRMATION_MESSAGE)

        message = build_confirmation_message(request)
        loop = asyncio.get_running_loop()

        if inspect.iscoroutinefunction(self.confirm):
            pending = self.confirm(request, message)
        else:
            pending = loop.run_in_executor(None, self.confirm, request, message)

        try:
            answer = await asyncio.wait_for(pending, timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Timeout esperando confirmación ({self.timeout}s): {request.server}/{request.tool}")
            return ApprovalDecision.denied(APPROVAL_TIMEOUT_MESSAGE)
        except ApprovalCancelled:
            return ApprovalDecision.denied(USER_CANCELLED_MESSAGE)
        except Exception as e:
            logger.error(f"Error en prompt de confirmación: {e}")
            return ApprovalDecision.denied(f"Approval failed: {e}")

        if answer:
            return ApprovalDecision.approved()
        return ApprovalDecision.denied(USER_REJECTED_MESSAGE)

    def decide_threadsafe(
        self,
        request: CallRequest,
        loop: asyncio.AbstractEventLoop,
        tool: Optional[ToolDescriptor] = None,
        decision_fn: Optional[DecisionFunction] = None,
    ) -> ApprovalDecision:
        """
        Programa la decisión en el event loop propietario y espera el resultado.

        Pensado para contextos que no pueden suspenderse (un handler RPC en
        otro hilo). La espera nunca supera el timeout configurado.
        """
        future = asyncio.run_coroutine_threadsafe(self.decide(request, tool, decision_fn), loop)
        try:
            return future.result(timeout=self.timeout)
        except concurrent.futures.TimeoutError:
            future.cancel()
            return ApprovalDecision.denied(APPROVAL_TIMEOUT_MESSAGE)
