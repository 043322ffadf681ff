"""
Companion de voz conversacional en tiempo real.
  voz input → STT Deepgram → LLM OpenAI → TTS ElevenLabs → voz output
El núcleo es TurnOrchestrator: un turno a la vez, sin duplicados, mic suspendido y reanudado por turno.
"""
from .config import (
    MIC_SAMPLE_RATE,
    MIC_CHUNK_FRAMES,
    OrchestratorSettings,
    SileroVADConfig,
    build_system_prompt,
)
from .errors import (
    CaptureStopError,
    CompletionServiceError,
    ErrorKind,
    SynthesisError,
    TranscriptionConnectionError,
    VoiceCompanionError,
)
from .orchestrator import ConversationCallbacks, TurnOrchestrator
from .state import ConversationHistory, Role, Session, TurnState, UserIdentity

__all__ = [
    "TurnOrchestrator",
    "ConversationCallbacks",
    "ConversationHistory",
    "Role",
    "Session",
    "TurnState",
    "UserIdentity",
    "ErrorKind",
    "VoiceCompanionError",
    "TranscriptionConnectionError",
    "CompletionServiceError",
    "SynthesisError",
    "CaptureStopError",
    "OrchestratorSettings",
    "SileroVADConfig",
    "MIC_SAMPLE_RATE",
    "MIC_CHUNK_FRAMES",
    "build_system_prompt",
]
