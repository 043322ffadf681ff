"""
Errores del companion de voz.
Cada fallo de un adaptador se convierte en uno de estos tipos en la frontera del orquestador.
"""
from enum import Enum


class ErrorKind(str, Enum):
    CONNECTION = "connection"
    COMPLETION = "completion"
    SYNTHESIS = "synthesis"
    CAPTURE_STOP = "capture_stop"


class VoiceCompanionError(Exception):
    kind: ErrorKind

    def __init__(self, message: str, *, cause: BaseException | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.cause = cause


class TranscriptionConnectionError(VoiceCompanionError):
    """Fallo del handshake con el servicio de transcripción."""

    kind = ErrorKind.CONNECTION


class CompletionServiceError(VoiceCompanionError):
    """Fallo de red, cuota o modelo al pedir la respuesta del LLM."""

    kind = ErrorKind.COMPLETION


class SynthesisError(VoiceCompanionError):
    kind = ErrorKind.SYNTHESIS


class CaptureStopError(VoiceCompanionError):
    kind = ErrorKind.CAPTURE_STOP
