"""
Estado en tiempo de ejecución de una sesión de conversación.
History, estado del turno, mute, deduplicación de utterances y flags de ciclo de vida.
"""
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Any, Deque, Dict, List, Optional

from .config import build_system_prompt


class Role(str, Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


class TurnState(str, Enum):
    IDLE = "idle"
    LISTENING = "listening"
    PROCESSING = "processing"
    SPEAKING = "speaking"


@dataclass(frozen=True)
class UserIdentity:
    name: str
    descriptor: str

    def __post_init__(self) -> None:
        name = (self.name or "").strip()
        descriptor = (self.descriptor or "").strip()
        if not name:
            raise ValueError("name es obligatorio")
        if not descriptor:
            raise ValueError("descriptor es obligatorio")
        object.__setattr__(self, "name", name)
        object.__setattr__(self, "descriptor", descriptor)


def normalize_utterance(text: str) -> str:
    """Clave de deduplicación: sin espacios en los extremos y en minúsculas."""
    return (text or "").strip().casefold()


class ConversationHistory:
    """
    Historial ordenado de mensajes {"role", "content"}.
    El primer mensaje es el SYSTEM y se fija una sola vez; después solo se añade.
    """

    def __init__(self, system_prompt: str) -> None:
        self._messages: List[Dict[str, Any]] = [
            {"role": Role.SYSTEM.value, "content": system_prompt}
        ]

    def __len__(self) -> int:
        return len(self._messages)

    def append(self, role: Role, content: str) -> None:
        if role is Role.SYSTEM:
            raise ValueError("el mensaje SYSTEM solo se fija al iniciar la sesión")
        self._messages.append({"role": role.value, "content": content})

    def last_assistant_content(self) -> Optional[str]:
        """Contenido del último mensaje del assistant, o None si aún no hay ninguno."""
        for message in reversed(self._messages):
            if message["role"] == Role.ASSISTANT.value:
                return message["content"]
        return None

    def snapshot(self) -> List[Dict[str, Any]]:
        return [dict(m) for m in self._messages]


class Session:
    """Estado compartido de una conversación; solo lo muta el orquestador."""

    def __init__(self, identity: UserIdentity, dedup_window: int = 1) -> None:
        self.identity = identity
        self.history = ConversationHistory(
            build_system_prompt(identity.name, identity.descriptor)
        )
        self.turn_state = TurnState.IDLE
        self.muted = False
        # El usuario quiere el mic abierto (aunque un turno lo tenga suspendido)
        self.listening = False
        # El stream de captura está abierto en el adaptador
        self.capture_started = False
        self.connected = False
        self.greeted = False
        self.closed = False
        # Último transcript final pendiente de procesar
        self.pending_utterance = ""
        # Claves normalizadas de los últimos turnos aceptados
        self.recent_keys: Deque[str] = deque(maxlen=max(1, dedup_window))

    @property
    def busy(self) -> bool:
        return self.turn_state in (TurnState.PROCESSING, TurnState.SPEAKING)

    def is_duplicate(self, key: str) -> bool:
        return key in self.recent_keys

    def remember(self, key: str) -> None:
        self.recent_keys.append(key)
