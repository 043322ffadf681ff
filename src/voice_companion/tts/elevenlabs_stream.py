"""
TTS: ElevenLabs streaming PCM (crudo a ffplay).
stream_tts_elevenlabs y ElevenLabsSpeechOutput, que reproduce vía playback y se puede cancelar (mute).
"""
import asyncio
from typing import AsyncIterator, Callable, Optional

import httpx

from ..config import (
    TTS_OUTPUT_FORMAT,
    TTSConfig,
    get_eleven_api_key,
    get_eleven_voice_id,
)
from ..audio.playback import play_pcm_stream
from ..errors import SynthesisError
from ..utils.logging import log_tts


async def stream_tts_elevenlabs(
    text: str,
    config: Optional[TTSConfig] = None,
    *,
    client: Optional[httpx.AsyncClient] = None,
) -> AsyncIterator[bytes]:
    """
    Stream de PCM 16-bit desde ElevenLabs (crudo, sin archivos).
    output_format va como query parameter.
    """
    config = config or TTSConfig()
    url = (
        f"https://api.elevenlabs.io/v1/text-to-speech/{get_eleven_voice_id()}/stream"
        f"?output_format={TTS_OUTPUT_FORMAT}"
    )
    headers = {
        "xi-api-key": get_eleven_api_key(),
        "Content-Type": "application/json",
        "Accept": "audio/pcm",
    }
    payload = {
        "text": text,
        "model_id": config.model_id,
        "voice_settings": {
            "stability": config.stability,
            "similarity_boost": config.similarity_boost,
        },
    }

    owns_client = client is None
    if owns_client:
        client = httpx.AsyncClient(timeout=None)
    try:
        async with client.stream("POST", url, headers=headers, json=payload) as resp:
            resp.raise_for_status()
            async for chunk in resp.aiter_bytes():
                if chunk:
                    yield chunk
    finally:
        if owns_client:
            await client.aclose()


class ElevenLabsSpeechOutput:
    """
    Salida de voz: speak(text, on_complete) reproduce el texto y llama a
    on_complete exactamente una vez (fin natural, cancelación o error).
    cancel() corta la reproducción en curso de inmediato.
    """

    def __init__(
        self,
        config: Optional[TTSConfig] = None,
        *,
        stream_factory: Callable[[str], AsyncIterator[bytes]] = None,
        player: Callable = play_pcm_stream,
    ) -> None:
        self._config = config or TTSConfig()
        self._stream_factory = stream_factory or (
            lambda text: stream_tts_elevenlabs(text, self._config)
        )
        self._player = player
        self._cancel_event = asyncio.Event()
        self._playback: Optional[asyncio.Task] = None

    @property
    def speaking(self) -> bool:
        return self._playback is not None and not self._playback.done()

    async def speak(self, text: str, on_complete: Callable[[], None]) -> None:
        if self.speaking:
            # Una sola locución a la vez
            self.cancel()
        self._cancel_event = asyncio.Event()
        cancel_event = self._cancel_event

        log_tts("TTS-Start", "Enviando texto a ElevenLabs…")
        log_tts("Texto", text)

        def on_cancel():
            log_tts("TTS-Cancel", "Deteniendo TTS (mute)")

        playback = asyncio.create_task(
            self._player(self._stream_factory(text), cancel_event, on_cancel=on_cancel)
        )
        self._playback = playback
        try:
            await playback
        except asyncio.CancelledError:
            if not cancel_event.is_set():
                raise
            log_tts("TTS-Cancel", "Reproducción cancelada")
        except RuntimeError as e:
            self._report(SynthesisError(str(e), cause=e))
        except httpx.HTTPError as e:
            self._report(SynthesisError(f"ElevenLabs: {e}", cause=e))
        except Exception as e:
            self._report(SynthesisError(f"Error durante streaming TTS: {e}", cause=e))
        finally:
            # Una locución más nueva puede haber reemplazado a esta
            if self._playback is playback:
                self._playback = None
            log_tts("TTS-End", "Fin de reproducción")
            on_complete()

    def cancel(self) -> None:
        self._cancel_event.set()
        if self._playback is not None and not self._playback.done():
            self._playback.cancel()

    async def close(self) -> None:
        playback = self._playback
        self.cancel()
        if playback is not None:
            await asyncio.gather(playback, return_exceptions=True)

    @staticmethod
    def _report(error: SynthesisError) -> None:
        # Un fallo de síntesis cuenta como fin de locución; nunca es fatal
        log_tts("Error", error.message)
