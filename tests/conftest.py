import asyncio
import os
import sys
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest

# Credenciales ficticias para CI
os.environ.setdefault("DEEPGRAM_API_KEY", "test-deepgram-key")
os.environ.setdefault("OPENAI_API_KEY", "test-openai-key")
os.environ.setdefault("ELEVEN_API_KEY", "test-eleven-key")
os.environ.setdefault("ELEVEN_VOICE_ID", "test-voice")

# Sin PortAudio (CI) sounddevice falla al importar; solo entonces se sustituye por un mock
try:
    import sounddevice  # noqa: F401
except (ImportError, OSError):
    sounddevice_mock = MagicMock()
    sounddevice_mock.query_devices.return_value = []
    sys.modules["sounddevice"] = sounddevice_mock

from voice_companion.config import OrchestratorSettings
from voice_companion.errors import TranscriptionConnectionError
from voice_companion.orchestrator import ConversationCallbacks, TurnOrchestrator
from voice_companion.state import UserIdentity


class FakeTranscriber:
    """STT en memoria: los tests disparan interim/final a mano."""

    def __init__(self, fail_times: int = 0, init_delay: float = 0.0):
        self.fail_times = fail_times
        self.init_delay = init_delay
        self.init_calls = 0
        self.start_calls = 0
        self.stop_calls = 0
        self.pause_calls = 0
        self.resume_calls = 0
        self.close_calls = 0
        self.paused = False
        self.capturing = False
        self.partial = ""
        self.stop_error = None
        self.start_error = None
        self.on_interim = None
        self.on_final = None

    async def initialize(self):
        self.init_calls += 1
        await asyncio.sleep(self.init_delay)
        if self.fail_times > 0:
            self.fail_times -= 1
            raise TranscriptionConnectionError("handshake failed")

    async def start(self, on_interim, on_final):
        self.start_calls += 1
        if self.start_error is not None:
            raise self.start_error
        self.on_interim = on_interim
        self.on_final = on_final
        self.capturing = True
        self.paused = False

    def pause(self):
        self.pause_calls += 1
        self.paused = True

    def resume(self):
        self.resume_calls += 1
        self.paused = False

    async def stop(self):
        self.stop_calls += 1
        self.capturing = False
        if self.stop_error is not None:
            raise self.stop_error
        text, self.partial = self.partial, ""
        return text

    async def close(self):
        self.close_calls += 1
        self.capturing = False


class FakeCompletion:
    """LLM en memoria: respuestas en orden, excepciones o bloqueo hasta release()."""

    def __init__(self, replies=None, error=None, block=False):
        self.replies = list(replies or [])
        self.error = error
        self.calls = []
        self._gate = asyncio.Event()
        if not block:
            self._gate.set()

    def release(self):
        self._gate.set()

    async def complete(self, history):
        self.calls.append(history)
        await self._gate.wait()
        if self.error is not None:
            raise self.error
        if self.replies:
            return self.replies.pop(0)
        return "ok"


class FakeSpeech:
    """TTS en memoria: on_complete exactamente una vez por speak."""

    def __init__(self, block=False, error=None):
        self.block = block
        self.error = error
        self.spoken = []
        self.completions = 0
        self.cancel_calls = 0
        self.close_calls = 0
        self._release = asyncio.Event()

    def finish(self):
        self._release.set()

    async def speak(self, text, on_complete):
        self.spoken.append(text)
        try:
            if self.error is not None:
                raise self.error
            if self.block:
                await self._release.wait()
        finally:
            self.completions += 1
            on_complete()

    def cancel(self):
        self.cancel_calls += 1
        self._release.set()

    async def close(self):
        self.close_calls += 1
        self._release.set()


class Recorder:
    """Guarda las notificaciones del orquestador en orden."""

    def __init__(self):
        self.events = []

    def callbacks(self):
        return ConversationCallbacks(
            on_user_message=lambda text: self.events.append(("user", text)),
            on_assistant_message=lambda text: self.events.append(("assistant", text)),
            on_turn_complete=lambda: self.events.append(("turn_complete",)),
            on_connection_state_changed=lambda up: self.events.append(("connected", up)),
            on_error=lambda kind, msg: self.events.append(("error", kind, msg)),
            on_transcript=lambda text: self.events.append(("transcript", text)),
        )

    def of(self, name):
        return [e for e in self.events if e[0] == name]


async def _wait_until(predicate, attempts: int = 200):
    for _ in range(attempts):
        if predicate():
            return
        await asyncio.sleep(0)
    raise AssertionError("la condición no se cumplió a tiempo")


@pytest.fixture
def fakes():
    return SimpleNamespace(
        Transcriber=FakeTranscriber,
        Completion=FakeCompletion,
        Speech=FakeSpeech,
    )


@pytest.fixture
def wait_until():
    return _wait_until


@pytest.fixture
def transcriber():
    return FakeTranscriber()


@pytest.fixture
def completion():
    return FakeCompletion(replies=["Hi! How's your day going?"])


@pytest.fixture
def speech():
    return FakeSpeech()


@pytest.fixture
def recorder():
    return Recorder()


@pytest.fixture
def make_orchestrator(transcriber, completion, speech, recorder):
    def factory(**overrides):
        settings = overrides.pop("settings", OrchestratorSettings(greeting_listen_delay=0))
        return TurnOrchestrator(
            UserIdentity("Alex", "male"),
            overrides.pop("transcriber", transcriber),
            overrides.pop("completion", completion),
            overrides.pop("speech", speech),
            callbacks=recorder.callbacks(),
            settings=settings,
        )

    return factory
