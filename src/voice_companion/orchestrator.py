"""
Orquestador de turnos de conversación.

Arbitra entre la transcripción continua (STT), el LLM y la salida de voz (TTS)
garantizando un solo turno activo a la vez, sin turnos duplicados, y con el
mic suspendido durante el turno y reanudado al terminar.

Todo corre en un único loop de asyncio: no hay transiciones en paralelo, pero
entre un await y su reanudación pueden llegar otros eventos (un transcript,
un mute). Los guards de submit_utterance y set_muted cubren esos huecos.

    mic → STT → submit_utterance → LLM → TTS → (resume mic)
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence, Set

from .config import OrchestratorSettings, build_greeting
from .errors import (
    CompletionServiceError,
    ErrorKind,
    SynthesisError,
    TranscriptionConnectionError,
    VoiceCompanionError,
)
from .state import Role, Session, TurnState, UserIdentity, normalize_utterance
from .utils.logging import log_llm, log_stt, log_turn

COMPLETION_ERROR_MESSAGE = "Failed to get AI response"
CONNECTION_ERROR_MESSAGE = "Failed to connect to speech services"
LISTEN_ERROR_MESSAGE = "Failed to start listening"


# -----------------------------------------------------------------------------
# Contratos de los colaboradores
# -----------------------------------------------------------------------------
class TranscriptionStream(Protocol):
    async def initialize(self) -> None: ...
    async def start(self, on_interim: Callable[[str], Any], on_final: Callable[[str], Any]) -> None: ...
    async def stop(self) -> str: ...
    def pause(self) -> None: ...
    def resume(self) -> None: ...
    async def close(self) -> None: ...


class CompletionClient(Protocol):
    async def complete(self, history: Sequence[Dict[str, Any]]) -> str: ...


class SpeechOutput(Protocol):
    async def speak(self, text: str, on_complete: Callable[[], None]) -> None: ...
    def cancel(self) -> None: ...
    async def close(self) -> None: ...


def _ignore(*args) -> None:
    return None


@dataclass
class ConversationCallbacks:
    """
    Notificaciones hacia la capa de presentación.
    Pueden ser funciones o corrutinas; las async se lanzan como tareas y teardown las cancela.
    """

    on_user_message: Callable[[str], Any] = _ignore
    on_assistant_message: Callable[[str], Any] = _ignore
    on_turn_complete: Callable[[], Any] = _ignore
    on_connection_state_changed: Callable[[bool], Any] = _ignore
    on_error: Callable[[ErrorKind, str], Any] = _ignore
    on_transcript: Callable[[str], Any] = _ignore


class TurnOrchestrator:
    def __init__(
        self,
        identity: UserIdentity,
        transcriber: TranscriptionStream,
        completion: CompletionClient,
        speech: SpeechOutput,
        callbacks: Optional[ConversationCallbacks] = None,
        settings: Optional[OrchestratorSettings] = None,
    ) -> None:
        self._settings = settings or OrchestratorSettings()
        self.session = Session(identity, dedup_window=self._settings.dedup_window)
        self._transcriber = transcriber
        self._completion = completion
        self._speech = speech
        self._callbacks = callbacks or ConversationCallbacks()

        self._init_task: Optional[asyncio.Task] = None
        self._capture_lock = asyncio.Lock()
        self._speech_done: Optional[asyncio.Future] = None
        self._tasks: Set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # Lectura de estado
    # ------------------------------------------------------------------
    @property
    def turn_state(self) -> TurnState:
        return self.session.turn_state

    @property
    def connected(self) -> bool:
        return self.session.connected

    @property
    def muted(self) -> bool:
        return self.session.muted

    @property
    def history(self) -> List[Dict[str, Any]]:
        return self.session.history.snapshot()

    # ------------------------------------------------------------------
    # Helpers internos
    # ------------------------------------------------------------------
    def _set_state(self, state: TurnState) -> None:
        old = self.session.turn_state
        if state is not old:
            self.session.turn_state = state
            log_turn("State", f"{old.value} → {state.value}", level=logging.DEBUG)

    def _notify(self, name: str, *args) -> None:
        callback = getattr(self._callbacks, name)
        try:
            result = callback(*args)
        except Exception as e:
            log_turn("Callback", f"{name} lanzó {e!r}", level=logging.ERROR)
            return
        if asyncio.iscoroutine(result):
            # Callback async: corre como tarea propia, el turno no lo espera
            task = self._track(asyncio.ensure_future(result))
            task.add_done_callback(lambda t: self._report_callback(name, t))

    def _report_callback(self, name: str, task: asyncio.Task) -> None:
        if not task.cancelled() and task.exception() is not None:
            log_turn("Callback", f"{name} lanzó {task.exception()!r}", level=logging.ERROR)

    def _surface(self, error: VoiceCompanionError, message: str) -> None:
        log_turn("Error", f"{error.kind.value}: {error.message}", level=logging.ERROR)
        self._notify("on_error", error.kind, message)

    def _track(self, task: asyncio.Task) -> asyncio.Task:
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def _suspend_capture(self) -> None:
        if self.session.capture_started:
            self._transcriber.pause()

    # ------------------------------------------------------------------
    # Conexión
    # ------------------------------------------------------------------
    async def initialize(self) -> None:
        """
        Establece la conexión de transcripción una sola vez por sesión.
        Las llamadas concurrentes esperan el mismo intento; si falla, todas
        ven el error y una llamada posterior puede reintentar.
        """
        if self.session.closed:
            raise TranscriptionConnectionError("Session has been torn down")
        if self.session.connected:
            return
        if self._init_task is None:
            self._init_task = asyncio.ensure_future(self._connect())
        attempt = self._init_task
        try:
            await asyncio.shield(attempt)
        except asyncio.CancelledError:
            # teardown cancela el intento en curso; los que esperaban lo ven como fallo de conexión
            if self.session.closed and attempt.cancelled():
                raise TranscriptionConnectionError("Session has been torn down")
            raise

    async def _connect(self) -> None:
        try:
            await self._transcriber.initialize()
        except Exception as e:
            self._init_task = None
            if isinstance(e, TranscriptionConnectionError):
                error = e
            else:
                error = TranscriptionConnectionError(str(e), cause=e)
            self._surface(error, CONNECTION_ERROR_MESSAGE)
            if error is e:
                raise
            raise error from e
        self.session.connected = True
        log_stt("Conn", "Conexión de transcripción lista")
        self._notify("on_connection_state_changed", True)

    # ------------------------------------------------------------------
    # Captura
    # ------------------------------------------------------------------
    async def start_listening(self) -> bool:
        s = self.session
        if s.closed:
            return False
        if s.turn_state is TurnState.LISTENING:
            return True
        if s.busy:
            # Arranque diferido: se abre al terminar el turno en curso
            s.listening = True
            log_turn("Listen", "Mic pedido durante un turno; se abre al terminar")
            return True

        try:
            await self.initialize()
        except TranscriptionConnectionError:
            return False

        s.listening = True
        if s.busy:
            return True
        return await self._open_capture()

    async def _open_capture(self) -> bool:
        async with self._capture_lock:
            s = self.session
            if s.closed or not s.listening:
                return False
            if s.capture_started:
                if not s.busy:
                    self._transcriber.resume()
                    self._set_state(TurnState.LISTENING)
                return True
            try:
                await self._transcriber.start(self._handle_interim, self._handle_final)
            except Exception as e:
                s.listening = False
                if isinstance(e, VoiceCompanionError):
                    error = e
                else:
                    error = TranscriptionConnectionError(str(e), cause=e)
                self._surface(error, LISTEN_ERROR_MESSAGE)
                return False
            s.capture_started = True
            if s.busy:
                self._transcriber.pause()
            else:
                self._set_state(TurnState.LISTENING)
            return True

    async def stop_listening(self) -> str:
        """Para la captura y devuelve el transcript parcial; '' si no se estaba escuchando."""
        s = self.session
        if not s.listening:
            return ""
        async with self._capture_lock:
            if not s.listening:
                return ""
            # Un turno ya aceptado sigue hasta el final; solo se corta la captura
            s.listening = False
            text = ""
            if s.capture_started:
                s.capture_started = False
                try:
                    text = await self._transcriber.stop()
                except Exception as e:
                    log_stt("Error", f"capture_stop: {e}", level=logging.WARNING)
                    text = ""
            if s.turn_state is TurnState.LISTENING:
                self._set_state(TurnState.IDLE)
            return text or ""

    def _handle_interim(self, text: str) -> None:
        self._notify("on_transcript", text)

    def _handle_final(self, text: str) -> None:
        self.session.pending_utterance = text
        self._track(asyncio.ensure_future(self.submit_utterance(text)))

    # ------------------------------------------------------------------
    # Turnos
    # ------------------------------------------------------------------
    async def submit_utterance(self, text: str) -> bool:
        """
        Procesa un utterance final como un turno completo.
        Devuelve False si se descartó (vacío, turno en curso o duplicado).
        """
        s = self.session
        text = (text or "").strip()
        s.pending_utterance = ""
        if not text or s.closed:
            return False
        if s.busy:
            log_turn("Skip", f"Turno en curso, se descarta: {text}")
            return False
        key = normalize_utterance(text)
        if s.is_duplicate(key):
            log_turn("Skip", f"Utterance repetido, se descarta: {text}")
            return False

        s.remember(key)
        self._suspend_capture()
        self._set_state(TurnState.PROCESSING)
        try:
            log_llm("HUMAN", text)
            self._notify("on_user_message", text)
            s.history.append(Role.USER, text)

            try:
                reply = await self._request_reply()
            except Exception as e:
                if isinstance(e, CompletionServiceError):
                    error = e
                else:
                    error = CompletionServiceError(str(e), cause=e)
                self._surface(error, COMPLETION_ERROR_MESSAGE)
                return True

            if reply:
                await self._deliver(reply)
            self._notify("on_turn_complete")
            return True
        finally:
            await self._finish_turn()

    async def _request_reply(self) -> str:
        snapshot = self.session.history.snapshot()
        timeout = self._settings.completion_timeout
        if timeout is None:
            reply = await self._completion.complete(snapshot)
        else:
            try:
                reply = await asyncio.wait_for(self._completion.complete(snapshot), timeout)
            except asyncio.TimeoutError:
                raise CompletionServiceError(f"Completion timed out after {timeout}s")
        return (reply or "").strip()

    async def _deliver(self, reply: str) -> None:
        s = self.session
        if s.history.last_assistant_content() == reply:
            log_turn("Skip", "Respuesta idéntica a la anterior; no se añade al historial")
        else:
            s.history.append(Role.ASSISTANT, reply)
        self._notify("on_assistant_message", reply)
        self._set_state(TurnState.SPEAKING)
        await self._speak(reply)

    async def _speak(self, text: str) -> None:
        if self.session.closed:
            return
        if self.session.muted:
            log_turn("Mute", "Audio silenciado; no se reproduce la respuesta")
            return

        done = asyncio.get_running_loop().create_future()

        def on_complete() -> None:
            if not done.done():
                done.set_result(None)

        def on_speak_done(task: asyncio.Task) -> None:
            if not task.cancelled() and task.exception() is not None:
                error = SynthesisError(str(task.exception()), cause=task.exception())
                log_turn("Error", f"{error.kind.value}: {error.message}", level=logging.WARNING)
            on_complete()

        self._speech_done = done
        task = self._track(asyncio.ensure_future(self._speech.speak(text, on_complete)))
        task.add_done_callback(on_speak_done)
        try:
            await done
        finally:
            self._speech_done = None

    async def _finish_turn(self) -> None:
        s = self.session
        if s.closed or not s.listening:
            self._set_state(TurnState.IDLE)
            return
        if s.capture_started:
            self._transcriber.resume()
            self._set_state(TurnState.LISTENING)
            return
        # Arranque diferido pedido durante el turno
        self._set_state(TurnState.IDLE)
        try:
            await self.initialize()
        except TranscriptionConnectionError:
            s.listening = False
            return
        await self._open_capture()

    async def send_initial_greeting(self) -> bool:
        """Primer turno guionizado: saludo del assistant y luego se abre el mic. Una vez por sesión."""
        s = self.session
        if s.closed or s.greeted or s.busy:
            return False
        s.greeted = True

        greeting = build_greeting(s.identity.name)
        self._suspend_capture()
        self._set_state(TurnState.SPEAKING)
        try:
            s.history.append(Role.ASSISTANT, greeting)
            self._notify("on_assistant_message", greeting)
            await self._speak(greeting)
            self._notify("on_turn_complete")
        finally:
            await self._finish_turn()

        if self._settings.greeting_listen_delay:
            await asyncio.sleep(self._settings.greeting_listen_delay)
        await self.start_listening()
        return True

    # ------------------------------------------------------------------
    # Mute y cierre
    # ------------------------------------------------------------------
    def set_muted(self, muted: bool) -> None:
        self.session.muted = bool(muted)
        log_turn("Mute", "on" if muted else "off")
        if not muted or self._speech_done is None:
            return
        self._speech.cancel()
        # El turno no espera a que el adaptador confirme la cancelación
        if not self._speech_done.done():
            self._speech_done.set_result(None)

    async def teardown(self) -> None:
        """Libera STT y TTS sea cual sea el estado del turno. Idempotente."""
        s = self.session
        if s.closed:
            return
        s.closed = True
        s.listening = False

        if self._init_task is not None and not self._init_task.done():
            self._init_task.cancel()
        self._init_task = None
        if self._speech_done is not None and not self._speech_done.done():
            self._speech_done.set_result(None)

        try:
            await self._speech.close()
        except Exception as e:
            log_turn("Teardown", f"Error liberando TTS: {e}", level=logging.WARNING)
        try:
            await self._transcriber.close()
        except Exception as e:
            log_turn("Teardown", f"Error liberando STT: {e}", level=logging.WARNING)
        s.capture_started = False

        current = asyncio.current_task()
        pending = [t for t in self._tasks if t is not current and not t.done()]
        for t in pending:
            t.cancel()
        await asyncio.gather(*pending, return_exceptions=True)

        if s.connected:
            s.connected = False
            self._notify("on_connection_state_changed", False)
        self._set_state(TurnState.IDLE)
        log_turn("Teardown", "Sesión cerrada")
