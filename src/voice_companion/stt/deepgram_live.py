"""
STT: Deepgram live streaming.
DeepgramTranscriber abre el WebSocket una vez por sesión, captura el mic y
entrega texto interim y un utterance final cuando el usuario hace una pausa
(UtteranceEnd de Deepgram o, con pipeline_vad=1, fin de voz de Silero).
"""
import asyncio
from typing import Any, Callable, Optional

from deepgram import (
    DeepgramClient,
    DeepgramClientOptions,
    LiveOptions,
    LiveTranscriptionEvents,
)

from ..audio.mic import create_input_stream, mic_sender
from ..config import (
    MIC_SAMPLE_RATE,
    STOP_DRAIN_SECONDS,
    DeepgramLiveConfig,
    get_deepgram_api_key,
)
from ..errors import CaptureStopError, TranscriptionConnectionError
from ..utils.logging import log_stt

TextCallback = Callable[[str], Any]


def _event_arg(args, kwargs, key: str):
    """El SDK pasa el payload como kwarg o como último posicional según la versión."""
    value = kwargs.get(key)
    if value is None and args:
        value = args[-1]
    return value


class DeepgramTranscriber:
    def __init__(
        self,
        config: Optional[DeepgramLiveConfig] = None,
        *,
        input_device: Optional[int] = None,
        stream_factory: Callable = create_input_stream,
        vad_detector: Optional[Callable[[bytes], Optional[dict]]] = None,
        client_factory: Optional[Callable[[], DeepgramClient]] = None,
        drain_seconds: float = STOP_DRAIN_SECONDS,
    ) -> None:
        self._config = config or DeepgramLiveConfig()
        self._input_device = input_device
        self._stream_factory = stream_factory
        self._vad_detector = vad_detector
        self._client_factory = client_factory or self._default_client
        self._drain_seconds = drain_seconds

        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._conn = None
        self._mic = None
        self._mic_queue: Optional[asyncio.Queue] = None
        self._sender: Optional[asyncio.Task] = None
        self._paused = False
        # Finales acumulados del segmento de voz actual
        self._transcript = ""
        self._on_interim: Optional[TextCallback] = None
        self._on_final: Optional[TextCallback] = None

    @property
    def connected(self) -> bool:
        return self._conn is not None

    @property
    def capturing(self) -> bool:
        return self._mic is not None

    # ------------------------------------------------------------------
    # Conexión
    # ------------------------------------------------------------------
    def _default_client(self) -> DeepgramClient:
        options = DeepgramClientOptions(
            options={"keepalive": "true"} if self._config.keepalive else {}
        )
        return DeepgramClient(get_deepgram_api_key(), options)

    def _live_options(self) -> LiveOptions:
        return LiveOptions(
            model=self._config.model,
            language=self._config.language,
            smart_format=self._config.smart_format,
            encoding="linear16",
            sample_rate=MIC_SAMPLE_RATE,
            channels=1,
            interim_results=True,
            utterance_end_ms=str(self._config.utterance_end_ms),
            vad_events=True,
        )

    async def initialize(self) -> None:
        """Abre el WebSocket de Deepgram. Lanza TranscriptionConnectionError si falla."""
        self._loop = asyncio.get_running_loop()
        try:
            conn = self._client_factory().listen.websocket.v("1")
            self._register_handlers(conn)
            started = await self._loop.run_in_executor(None, conn.start, self._live_options())
        except Exception as e:
            log_stt("Error", f"No se pudo conectar a Deepgram: {e}")
            raise TranscriptionConnectionError(f"Deepgram connection failed: {e}", cause=e) from e
        if not started:
            log_stt("Error", "Deepgram rechazó la conexión")
            raise TranscriptionConnectionError("Deepgram connection was not started")
        self._conn = conn
        log_stt("Conn", "Conectado a Deepgram")

    def _register_handlers(self, conn) -> None:
        def transcript_handler(*args, **kwargs):
            result = _event_arg(args, kwargs, "result")
            if result is not None:
                self._loop.call_soon_threadsafe(self._handle_transcript, result)

        def utterance_end_handler(*args, **kwargs):
            self._loop.call_soon_threadsafe(self._finalize)

        def error_handler(*args, **kwargs):
            err = _event_arg(args, kwargs, "error")
            self._loop.call_soon_threadsafe(log_stt, "Error", f"WebSocket de Deepgram: {err}")

        def close_handler(*args, **kwargs):
            cl = _event_arg(args, kwargs, "close")
            self._loop.call_soon_threadsafe(log_stt, "Conn", f"WebSocket cerrado: {cl}")

        conn.on(LiveTranscriptionEvents.Transcript, transcript_handler)
        conn.on(LiveTranscriptionEvents.UtteranceEnd, utterance_end_handler)
        conn.on(LiveTranscriptionEvents.Error, error_handler)
        conn.on(LiveTranscriptionEvents.Close, close_handler)

    # ------------------------------------------------------------------
    # Captura
    # ------------------------------------------------------------------
    async def start(self, on_interim: TextCallback, on_final: TextCallback) -> None:
        if self._conn is None:
            raise TranscriptionConnectionError("Deepgram connection is not initialized")
        self._on_interim = on_interim
        self._on_final = on_final
        self._transcript = ""
        self._paused = False
        if self._mic is not None:
            return

        loop = asyncio.get_running_loop()
        self._mic_queue = asyncio.Queue()
        try:
            mic = self._stream_factory(loop, self._mic_queue, self._input_device)
            mic.start()
        except Exception as e:
            log_stt("MIC", f"No se pudo abrir el micrófono: {e}")
            raise TranscriptionConnectionError(f"Microphone unavailable: {e}", cause=e) from e
        self._mic = mic
        self._sender = asyncio.create_task(
            mic_sender(
                self._mic_queue,
                self._conn.send,
                is_paused=lambda: self._paused,
                vad_detector=self._vad_detector,
                on_speech_end=self._finalize,
            )
        )
        log_stt("MIC", "Captura iniciada")

    def pause(self) -> None:
        self._paused = True

    def resume(self) -> None:
        # Lo acumulado antes de la pausa pertenece al turno ya procesado
        self._transcript = ""
        self._paused = False

    async def stop(self) -> str:
        """Para el mic y devuelve lo transcrito hasta ahora. Lanza CaptureStopError si el mic falla al cerrar."""
        mic, sender, queue = self._mic, self._sender, self._mic_queue
        self._mic = None
        self._sender = None
        self._mic_queue = None

        error: Optional[Exception] = None
        if mic is not None:
            try:
                mic.stop()
                mic.close()
            except Exception as e:
                error = e
        if queue is not None:
            queue.put_nowait(None)
        if sender is not None:
            await asyncio.gather(sender, return_exceptions=True)

        if mic is not None and self._drain_seconds:
            # Deepgram puede entregar finales tardíos del audio ya enviado
            await asyncio.sleep(self._drain_seconds)

        text = self._transcript.strip()
        self._transcript = ""
        self._on_interim = None
        self._on_final = None
        self._paused = False
        log_stt("MIC", "Captura detenida")
        if error is not None:
            raise CaptureStopError(f"Failed to stop microphone: {error}", cause=error) from error
        return text

    async def close(self) -> None:
        """Libera mic y WebSocket. Idempotente."""
        try:
            await self.stop()
        except CaptureStopError as e:
            log_stt("Error", e.message)
        conn, self._conn = self._conn, None
        if conn is not None:
            try:
                await asyncio.get_running_loop().run_in_executor(None, conn.finish)
            except Exception as e:
                log_stt("Error", f"Cerrando WebSocket: {e}")

    # ------------------------------------------------------------------
    # Eventos (siempre en el loop)
    # ------------------------------------------------------------------
    def _handle_transcript(self, result) -> None:
        channel = getattr(result, "channel", None)
        if channel is None or not channel.alternatives:
            return
        text = (channel.alternatives[0].transcript or "").strip()
        if not text or self._paused:
            return

        if result.is_final:
            log_stt("STT-Final", text)
            self._transcript = f"{self._transcript} {text}".strip()
            self._emit_interim(self._transcript)
        else:
            log_stt("STT-Interim", text)
            self._emit_interim(f"{self._transcript} {text}".strip())

    def _emit_interim(self, text: str) -> None:
        if self._on_interim is not None:
            self._on_interim(text)

    def _finalize(self) -> None:
        text = self._transcript.strip()
        if not text or self._on_final is None:
            return
        self._transcript = ""
        log_stt("STT-Utterance", text)
        self._on_final(text)
