"""
Reproducción de audio: PCM crudo a ffplay por stdin.
Usado por la salida de voz (ElevenLabs) para reproducir en tiempo real.
"""
import asyncio
import subprocess
from typing import AsyncIterator, Callable, Optional

from ..config import TTS_SAMPLE_RATE


def create_ffplay_process():
    """
    Crea un proceso ffplay que lee PCM s16le mono desde stdin.
    Devuelve el Popen; el caller debe escribir chunks y luego cerrar stdin.
    """
    try:
        proc = subprocess.Popen(
            [
                "ffplay",
                "-f", "s16le",
                "-ar", str(TTS_SAMPLE_RATE),
                "-autoexit",
                "-nodisp",
                "-loglevel", "quiet",
                "-",
            ],
            stdin=subprocess.PIPE,
        )
        return proc
    except FileNotFoundError:
        raise RuntimeError("ffplay no encontrado en PATH. Instala ffmpeg.")


async def play_pcm_stream(
    stream: AsyncIterator[bytes],
    cancel_event: asyncio.Event,
    *,
    on_cancel: Optional[Callable[[], None]] = None,
    process_factory: Callable[[], subprocess.Popen] = create_ffplay_process,
) -> bool:
    """
    Reproduce un stream de chunks PCM escribiéndolos al stdin de ffplay.
    Si cancel_event se activa se corta la reproducción y se mata ffplay
    (sin dejar sonar lo que ya tenía en buffer).
    Devuelve True si se reprodujo completo, False si se canceló.
    """
    proc = process_factory()
    completed = False
    try:
        async for chunk in stream:
            if cancel_event.is_set():
                if on_cancel:
                    on_cancel()
                break
            if proc.stdin:
                try:
                    proc.stdin.write(chunk)
                    proc.stdin.flush()
                except BrokenPipeError:
                    break
            await asyncio.sleep(0)
        else:
            completed = True
    finally:
        cancelled = cancel_event.is_set() or not completed
        try:
            if proc.stdin:
                proc.stdin.close()
        except Exception:
            pass
        if cancelled:
            _terminate(proc)
        else:
            try:
                # ffplay sigue sonando lo que tiene en buffer tras cerrar stdin
                await asyncio.get_running_loop().run_in_executor(None, proc.wait)
            except asyncio.CancelledError:
                _terminate(proc)
                raise
            except Exception:
                _terminate(proc)
    return completed


def _terminate(proc) -> None:
    try:
        proc.terminate()
    except Exception:
        pass
