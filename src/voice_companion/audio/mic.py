"""
Entrada de audio: micrófono vía sounddevice.
RawInputStream, list_audio_devices, create_input_stream, mic_sender.
"""
import asyncio
from typing import Any, Callable, Optional

import sounddevice as sd

from ..config import MIC_CHUNK_FRAMES, MIC_SAMPLE_RATE
from ..utils.logging import log_stt, log_vad


def list_audio_devices() -> None:
    """Imprime los dispositivos de audio disponibles."""
    print("=== Dispositivos de audio disponibles ===")
    print(sd.query_devices())


def create_input_stream(
    loop: asyncio.AbstractEventLoop,
    mic_queue: asyncio.Queue,
    device: Optional[int] = None,
):
    """
    Crea un RawInputStream que pone cada chunk de audio en mic_queue.
    El callback corre en el hilo de PortAudio; se usa call_soon_threadsafe.
    """
    def callback(indata, frames, time, status):
        if status:
            log_stt("MIC", f"Status: {status}")
        loop.call_soon_threadsafe(mic_queue.put_nowait, bytes(indata))

    return sd.RawInputStream(
        samplerate=MIC_SAMPLE_RATE,
        blocksize=MIC_CHUNK_FRAMES,
        dtype="int16",
        channels=1,
        callback=callback,
        device=device,
    )


async def mic_sender(
    mic_queue: asyncio.Queue,
    send: Callable[[bytes], Any],
    *,
    is_paused: Callable[[], bool],
    vad_detector: Optional[Callable[[bytes], Optional[dict]]] = None,
    on_speech_end: Optional[Callable[[], None]] = None,
) -> None:
    """
    Reenvía chunks del micrófono al STT hasta recibir None.
    Mientras is_paused() sea True los chunks se descartan (mic suspendido durante un turno).
    Con vad_detector (Silero) un evento 'end' llama a on_speech_end.
    """
    loop = asyncio.get_running_loop()
    log_stt("Sender", "iniciado" + (" (con VAD Silero)" if vad_detector else " (sin VAD)"))
    while True:
        chunk = await mic_queue.get()
        if chunk is None:
            break
        if is_paused():
            continue
        if vad_detector is not None:
            try:
                vad_result = await loop.run_in_executor(None, vad_detector, chunk)
            except Exception as e:
                log_vad("Error", f"Silero: {e}")
                vad_result = None
            if vad_result is not None:
                if "start" in vad_result:
                    log_vad("Silero", "Speech started")
                if "end" in vad_result:
                    log_vad("Silero", "Speech ended (fin de enunciado)")
                    if on_speech_end is not None:
                        on_speech_end()
        send(chunk)
