"""
Configuración central del companion de voz.
Sample rates, tamaños de chunk, prompts, parámetros de servicios y variables de entorno.
"""
import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

load_dotenv()


# -----------------------------------------------------------------------------
# Audio / Mic
# -----------------------------------------------------------------------------
MIC_SAMPLE_RATE = 16000
CHANNELS = 1

# Silero VAD espera chunks de 512 muestras a 16 kHz (32 ms)
SILERO_WINDOW_SAMPLES = 512
CHUNK_MS = int(1000 * SILERO_WINDOW_SAMPLES / MIC_SAMPLE_RATE)
MIC_CHUNK_FRAMES = SILERO_WINDOW_SAMPLES

# Espera tras parar el mic para recoger los últimos finales de Deepgram
STOP_DRAIN_SECONDS = 0.5

# -----------------------------------------------------------------------------
# TTS (ElevenLabs)
# -----------------------------------------------------------------------------
TTS_SAMPLE_RATE = 16000
TTS_OUTPUT_FORMAT = f"pcm_{TTS_SAMPLE_RATE}"

# -----------------------------------------------------------------------------
# Prompts
# -----------------------------------------------------------------------------
SYSTEM_PROMPT_TEMPLATE = """\
You are a friendly AI companion who speaks naturally and casually, just like a real friend. \
The user's name is {name} and they are {descriptor}.

Your personality traits:
- Warm, enthusiastic, and genuinely interested in conversations
- Use casual language and contractions (like "I'm", "you're", "that's")
- Show empathy and emotional intelligence
- Occasionally use friendly expressions like "Oh!", "Wow!", "That's awesome!", "I see!"
- Keep responses concise and conversational (2-3 sentences usually)
- Ask follow-up questions to keep the conversation flowing
- Be supportive and encouraging
- Use natural speech patterns with occasional filler words when appropriate
- React naturally to what the user says
- Remember context from earlier in the conversation
- Always address the user by their name: {name}

Speak as if you're chatting with a close friend over coffee. Be genuine, relatable, and fun to talk to!"""

GREETING_TEMPLATE = "Hi {name}, how are you?"


def build_system_prompt(name: str, descriptor: str) -> str:
    return SYSTEM_PROMPT_TEMPLATE.format(name=name, descriptor=descriptor)


def build_greeting(name: str) -> str:
    return GREETING_TEMPLATE.format(name=name)


# -----------------------------------------------------------------------------
# Credenciales (validación bajo demanda)
# -----------------------------------------------------------------------------
def get_eleven_api_key() -> str:
    key = os.environ.get("ELEVEN_API_KEY")
    if not key:
        raise RuntimeError("ELEVEN_API_KEY no definido")
    return key


def get_eleven_voice_id() -> str:
    vid = os.environ.get("ELEVEN_VOICE_ID")
    if not vid:
        raise RuntimeError("ELEVEN_VOICE_ID no definido")
    return vid


def get_deepgram_api_key() -> str:
    key = os.environ.get("DEEPGRAM_API_KEY")
    if not key:
        raise RuntimeError("DEEPGRAM_API_KEY no definido")
    return key


def get_openai_api_key() -> str:
    key = os.environ.get("OPENAI_API_KEY")
    if not key:
        raise RuntimeError("OPENAI_API_KEY no definido")
    return key


# -----------------------------------------------------------------------------
# STT (Deepgram live)
# -----------------------------------------------------------------------------
@dataclass(frozen=True)
class DeepgramLiveConfig:
    model: str = "nova-2"
    language: str = "en-US"
    smart_format: bool = True
    # Silencio (ms) tras el cual Deepgram emite UtteranceEnd
    utterance_end_ms: int = 1500
    keepalive: bool = True


# -----------------------------------------------------------------------------
# LLM (OpenAI)
# -----------------------------------------------------------------------------
@dataclass(frozen=True)
class CompletionConfig:
    model: str = os.environ.get("OPENAI_MODEL", "gpt-4o-mini")
    temperature: float = 0.9
    max_tokens: int = 150


# -----------------------------------------------------------------------------
# TTS (ElevenLabs)
# -----------------------------------------------------------------------------
@dataclass(frozen=True)
class TTSConfig:
    model_id: str = os.environ.get("ELEVEN_MODEL_ID", "eleven_multilingual_v2")
    stability: float = 0.5
    similarity_boost: float = 0.75


# -----------------------------------------------------------------------------
# Orquestador de turnos
# -----------------------------------------------------------------------------
@dataclass(frozen=True)
class OrchestratorSettings:
    # Cuántos turnos aceptados previos se comparan para descartar duplicados
    dedup_window: int = 1
    # None = sin límite; el turno espera al LLM indefinidamente
    completion_timeout: Optional[float] = None
    # Pausa entre el fin del saludo y la apertura del mic
    greeting_listen_delay: float = 0.5


# -----------------------------------------------------------------------------
# VAD (Silero) - parámetros opcionales
# -----------------------------------------------------------------------------
@dataclass(frozen=True)
class SileroVADConfig:
    threshold: float = 0.5
    min_silence_duration_ms: int = 1500
    speech_pad_ms: int = 30
