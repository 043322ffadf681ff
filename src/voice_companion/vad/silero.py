"""
VAD local con Silero (snakers4/silero-vad), opcional (--pipeline_vad 1).
Marca el fin de un enunciado en local para finalizar el utterance sin esperar a Deepgram.
Requiere el extra "vad" (torch, numpy).
"""
import threading
from typing import Any, Optional

import numpy as np
import torch

from ..config import MIC_SAMPLE_RATE, SILERO_WINDOW_SAMPLES, SileroVADConfig


def load_silero_vad(config: Optional[SileroVADConfig] = None) -> Any:
    """
    Carga el modelo Silero VAD y devuelve un VADIterator para streaming
    (chunks de 512 muestras @ 16 kHz).
    """
    config = config or SileroVADConfig()
    model, utils = torch.hub.load(
        repo_or_dir="snakers4/silero-vad",
        model="silero_vad",
        force_reload=False,
        trust_repo=True,
    )
    (_, _, _, VADIterator, _) = utils
    return VADIterator(
        model,
        threshold=config.threshold,
        sampling_rate=MIC_SAMPLE_RATE,
        min_silence_duration_ms=config.min_silence_duration_ms,
        speech_pad_ms=config.speech_pad_ms,
    )


def pcm16_to_float(chunk: bytes) -> Optional[np.ndarray]:
    """PCM s16le → float32 en [-1, 1]; None si el chunk no tiene el tamaño de ventana de Silero."""
    samples = np.frombuffer(chunk, dtype=np.int16)
    if samples.size != SILERO_WINDOW_SAMPLES:
        return None
    return samples.astype(np.float32) / 32768.0


class SileroEndpointDetector:
    """
    Callable para mic_sender: detector(chunk) -> None | {'start': n} | {'end': n}.
    Corre en el executor; el lock evita dos inferencias a la vez sobre el mismo iterador.
    """

    def __init__(self, vad_iterator: Any) -> None:
        self._vad_iterator = vad_iterator
        self._lock = threading.Lock()

    @classmethod
    def load(cls, config: Optional[SileroVADConfig] = None) -> "SileroEndpointDetector":
        return cls(load_silero_vad(config))

    def __call__(self, chunk: bytes) -> Optional[dict]:
        audio = pcm16_to_float(chunk)
        if audio is None:
            return None
        tensor = torch.from_numpy(audio)
        with self._lock, torch.no_grad():
            return self._vad_iterator(tensor, return_seconds=False)
