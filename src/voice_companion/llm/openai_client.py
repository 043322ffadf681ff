"""
Conector entre el orquestador y el LLM (OpenAI).
OpenAICompletionClient.complete: historial completo → una respuesta de texto.
"""
import asyncio
from typing import Any, Dict, List, Optional, Sequence

import openai
from openai import OpenAI

from ..config import CompletionConfig
from ..errors import CompletionServiceError
from ..utils.logging import log_llm


class OpenAICompletionClient:
    """
    Cliente sin estado: cada llamada recibe el snapshot del historial.
    Un solo intento por turno; los errores de OpenAI salen como CompletionServiceError.
    """

    def __init__(
        self,
        client: Optional[OpenAI] = None,
        config: Optional[CompletionConfig] = None,
    ) -> None:
        self._client = client or OpenAI()
        self._config = config or CompletionConfig()

    async def complete(self, history: Sequence[Dict[str, Any]]) -> str:
        messages: List[Dict[str, Any]] = [
            {"role": m["role"], "content": m["content"]} for m in history
        ]

        def call_llm() -> str:
            r = self._client.chat.completions.create(
                model=self._config.model,
                messages=messages,
                temperature=self._config.temperature,
                max_tokens=self._config.max_tokens,
            )
            if not r.choices:
                return ""
            return (r.choices[0].message.content or "").strip()

        loop = asyncio.get_running_loop()
        try:
            response = await loop.run_in_executor(None, call_llm)
        except openai.OpenAIError as e:
            log_llm("Error", f"OpenAI: {e}")
            raise CompletionServiceError(f"OpenAI request failed: {e}", cause=e) from e
        log_llm("AI", response)
        return response
