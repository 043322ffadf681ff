"""
Utilidades de logging para el companion de voz.
Mensajes con etiqueta por etapa ([STT], [LLM], [TTS], [VAD], [TURN]).
"""
import logging
import sys

PIPELINE_LOGGER = logging.getLogger("voice_companion")

_CONSOLE_FORMAT = "%(message)s"


def setup_logging(level: str = "INFO") -> None:
    """Handler de consola con formato plano, igual que los prints de siempre."""
    if not PIPELINE_LOGGER.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(_CONSOLE_FORMAT))
        PIPELINE_LOGGER.addHandler(handler)
    PIPELINE_LOGGER.setLevel(level.upper())
    PIPELINE_LOGGER.propagate = False


def log_vad(tag: str, msg: str) -> None:
    """Log de eventos VAD."""
    PIPELINE_LOGGER.info(f"[VAD][{tag}] {msg}")


def log_stt(tag: str, msg: str, level: int = logging.INFO) -> None:
    """Log de eventos STT."""
    PIPELINE_LOGGER.log(level, f"[STT][{tag}] {msg}")


def log_tts(tag: str, msg: str, level: int = logging.INFO) -> None:
    """Log de eventos TTS."""
    PIPELINE_LOGGER.log(level, f"[TTS][{tag}] {msg}")


def log_llm(tag: str, msg: str, level: int = logging.INFO) -> None:
    """Log de eventos LLM."""
    PIPELINE_LOGGER.log(level, f"[LLM][{tag}] {msg}")


def log_turn(tag: str, msg: str, level: int = logging.INFO) -> None:
    """Log de transiciones del orquestador."""
    PIPELINE_LOGGER.log(level, f"[TURN][{tag}] {msg}")
