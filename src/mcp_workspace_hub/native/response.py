"""
Response - Constructores de Respuesta para Servidores Nativos
===============================================================

Este módulo implementa el protocolo de respuesta de los handlers nativos:

- CompletionToken: entrega única (one-shot) de un resultado o error
- ToolResponse / ResourceResponse / PromptResponse: acumuladores
  encadenables con una única operación terminal ``send``

El mismo API funciona si el handler termina de forma síncrona o si guarda
la respuesta y la envía más tarde desde otro contexto del event loop.
Cualquier entrega posterior a la primera se descarta.

Patrones de Diseño Utilizados:
- Builder: Para acumular contenido antes de finalizar
- Future: Para desacoplar la entrega del retorno del handler

Autor: Ainsophic Team
"""

import asyncio
import json
import logging
from typing import Any, Callable, Dict, List, Optional, Tuple


logger = logging.getLogger(__name__)


def _to_text(value: Any) -> str:
    if isinstance(value, str):
        return value
    return json.dumps(value, indent=2, default=str)


class CompletionToken:
    """
    Token de entrega única.

    La primera llamada a ``deliver`` fija el resultado y notifica al
    callback (si existe); las siguientes se ignoran.

    Ejemplo de uso:
        >>> token = CompletionToken()
        >>> token.deliver({"content": []})
        True
        >>> token.deliver({"content": []})
        False
    """

    def __init__(self, on_deliver: Optional[Callable[[Any, Optional[str]], None]] = None):
        self._on_deliver = on_deliver
        self._delivered = False
        self._result: Any = None
        self._error: Optional[str] = None
        self._event = asyncio.Event()

    @property
    def delivered(self) -> bool:
        return self._delivered

    @property
    def result(self) -> Any:
        return self._result

    @property
    def error(self) -> Optional[str]:
        return self._error

    def deliver(self, result: Any = None, error: Optional[str] = None) -> bool:
        """
        Entrega un resultado o un error.

        Returns:
            True si esta llamada fue la entrega efectiva, False si se descartó
        """
        if self._delivered:
            logger.debug("Entrega duplicada descartada")
            return False

        self._delivered = True
        self._result = result
        self._error = error
        self._event.set()

        if self._on_deliver is not None:
            try:
                self._on_deliver(result, error)
            except Exception as e:
                logger.error(f"Error en callback de entrega: {e}")

        return True

    async def wait(self, timeout: Optional[float] = None) -> Tuple[Any, Optional[str]]:
        """
        Espera la entrega.

        Raises:
            asyncio.TimeoutError: Si no hubo entrega dentro del timeout
        """
        if not self._delivered:
            await asyncio.wait_for(self._event.wait(), timeout=timeout)
        return self._result, self._error


class BaseResponse:
    """
    Acumulador base. ``send`` es la única operación terminal.
    """

    def __init__(self, token: CompletionToken):
        self.token = token
        self.result: Dict[str, Any] = {}

    @property
    def sent(self) -> bool:
        return self.token.delivered

    def send(self, result: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        final_result = result if result is not None else self.result
        self.token.deliver(final_result)
        return final_result


class ToolResponse(BaseResponse):
    """
    Respuesta de herramienta con contenido ``text`` e ``image``.

    Ejemplo de uso:
        >>> res.text("Soleado").text("22°C").send()
    """

    def __init__(self, token: CompletionToken):
        super().__init__(token)
        self.result = {"content": []}

    def text(self, text: Any) -> "ToolResponse":
        self.result["content"].append({"type": "text", "text": _to_text(text)})
        return self

    def image(self, data: str, mime: str = "image/png") -> "ToolResponse":
        self.result["content"].append({"type": "image", "data": data, "mimeType": mime})
        return self

    def error(self, message: Any, details: Any = None) -> Dict[str, Any]:
        """Añade un contenido marcado como error y finaliza la respuesta."""
        content: List[Dict[str, Any]] = [{"type": "text", "text": _to_text(message)}]
        if details is not None:
            content.append({"type": "text", "text": f"Details: {_to_text(details)}"})
        return self.send({"isError": True, "content": content})


class ResourceResponse(BaseResponse):
    """
    Respuesta de recurso con contenidos ``text`` y ``blob``.
    """

    def __init__(self, token: CompletionToken, uri: str, uri_template: Optional[str] = None):
        super().__init__(token)
        self.uri = uri
        self.uri_template = uri_template
        self.result = {"contents": []}

    def text(self, text: Any, mime: str = "text/plain") -> "ResourceResponse":
        self.result["contents"].append({"uri": self.uri, "text": _to_text(text), "mimeType": mime})
        return self

    def blob(self, data: str, mime: str = "application/octet-stream") -> "ResourceResponse":
        self.result["contents"].append({"uri": self.uri, "blob": data, "mimeType": mime})
        return self

    def error(self, message: Any, details: Any = None) -> Dict[str, Any]:
        # Los recursos no tienen isError en el protocolo: el error viaja como texto
        text = _to_text(message)
        if details is not None:
            text += f"\nDetails: {_to_text(details)}"
        return self.send({
            "isError": True,
            "contents": [{"uri": self.uri, "text": text, "mimeType": "text/plain"}],
        })


class PromptResponse(BaseResponse):
    """
    Respuesta de prompt: una secuencia de mensajes con rol.

    Ejemplo de uso:
        >>> res.system().text("Eres un asistente").user().text("Hola").send()
    """

    def __init__(self, token: CompletionToken, description: str = ""):
        super().__init__(token)
        self._role = "user"
        self.result = {"description": description, "messages": []}

    def user(self) -> "PromptResponse":
        self._role = "user"
        return self

    def assistant(self) -> "PromptResponse":
        self._role = "assistant"
        return self

    def system(self) -> "PromptResponse":
        self._role = "system"
        return self

    def text(self, text: Any) -> "PromptResponse":
        self.result["messages"].append({
            "role": self._role,
            "content": {"type": "text", "text": _to_text(text)},
        })
        return self

    def image(self, data: str, mime: str = "image/png") -> "PromptResponse":
        self.result["messages"].append({
            "role": self._role,
            "content": {"type": "image", "data": data, "mimeType": mime},
        })
        return self

    def error(self, message: Any, details: Any = None) -> Dict[str, Any]:
        text = _to_text(message)
        if details is not None:
            text += f"\nDetails: {_to_text(details)}"
        return self.send({
            "isError": True,
            "description": self.result.get("description", ""),
            "messages": [{"role": "assistant", "content": {"type": "text", "text": text}}],
        })
