"""Adaptador de Deepgram live: conexión, acumulación de transcripts y control de captura."""
import asyncio
from types import SimpleNamespace

import pytest
from deepgram import LiveTranscriptionEvents

from voice_companion.errors import CaptureStopError, TranscriptionConnectionError
from voice_companion.stt.deepgram_live import DeepgramTranscriber


class FakeConnection:
    def __init__(self, start_result=True):
        self.handlers = {}
        self.sent = []
        self.finished = 0
        self.start_result = start_result
        self.options = None

    def on(self, event, handler):
        self.handlers[event] = handler

    def start(self, options):
        self.options = options
        return self.start_result

    def send(self, data):
        self.sent.append(data)

    def finish(self):
        self.finished += 1
        return True


class FakeMic:
    def __init__(self, queue, stop_error=None):
        self.queue = queue
        self.stop_error = stop_error
        self.started = False
        self.stopped = False
        self.closed = False

    def start(self):
        self.started = True

    def stop(self):
        if self.stop_error is not None:
            raise self.stop_error
        self.stopped = True

    def close(self):
        self.closed = True


def result(text, is_final):
    return SimpleNamespace(
        channel=SimpleNamespace(alternatives=[SimpleNamespace(transcript=text)]),
        is_final=is_final,
    )


@pytest.fixture
def conn():
    return FakeConnection()


@pytest.fixture
def mics():
    return []


@pytest.fixture
def make_transcriber(conn, mics):
    def factory(**kwargs):
        mic_error = kwargs.pop("mic_stop_error", None)

        def stream_factory(loop, queue, device):
            mic = FakeMic(queue, stop_error=mic_error)
            mics.append(mic)
            return mic

        client = SimpleNamespace(listen=SimpleNamespace(websocket=SimpleNamespace(v=lambda version: conn)))
        return DeepgramTranscriber(
            stream_factory=stream_factory,
            client_factory=lambda: client,
            drain_seconds=0,
            **kwargs,
        )

    return factory


async def settle():
    for _ in range(5):
        await asyncio.sleep(0)


class TestConnection:
    @pytest.mark.asyncio
    async def test_initialize_starts_websocket_with_utterance_end(self, make_transcriber, conn):
        stt = make_transcriber()

        await stt.initialize()

        assert stt.connected
        assert conn.options.interim_results is True
        assert conn.options.utterance_end_ms == "1500"
        assert conn.options.sample_rate == 16000
        assert LiveTranscriptionEvents.Transcript in conn.handlers
        assert LiveTranscriptionEvents.UtteranceEnd in conn.handlers

    @pytest.mark.asyncio
    async def test_rejected_start_raises_connection_error(self, make_transcriber):
        stt = make_transcriber()
        stt._client_factory = lambda: SimpleNamespace(
            listen=SimpleNamespace(websocket=SimpleNamespace(v=lambda v: FakeConnection(start_result=False)))
        )

        with pytest.raises(TranscriptionConnectionError):
            await stt.initialize()
        assert not stt.connected

    @pytest.mark.asyncio
    async def test_client_errors_become_connection_errors(self):
        def broken_client():
            raise RuntimeError("DEEPGRAM_API_KEY no definido")

        stt = DeepgramTranscriber(client_factory=broken_client)

        with pytest.raises(TranscriptionConnectionError):
            await stt.initialize()

    @pytest.mark.asyncio
    async def test_start_requires_connection(self, make_transcriber):
        stt = make_transcriber()

        with pytest.raises(TranscriptionConnectionError):
            await stt.start(lambda t: None, lambda t: None)

    @pytest.mark.asyncio
    async def test_close_finishes_websocket_once(self, make_transcriber, conn, mics):
        stt = make_transcriber()
        await stt.initialize()
        await stt.start(lambda t: None, lambda t: None)

        await stt.close()
        await stt.close()

        assert conn.finished == 1
        assert mics[0].stopped and mics[0].closed
        assert not stt.connected


class TestTranscripts:
    @pytest.mark.asyncio
    async def test_finals_accumulate_and_utterance_end_delivers_them(self, make_transcriber, conn):
        interim, finals = [], []
        stt = make_transcriber()
        await stt.initialize()
        await stt.start(interim.append, finals.append)
        on_transcript = conn.handlers[LiveTranscriptionEvents.Transcript]
        on_utterance_end = conn.handlers[LiveTranscriptionEvents.UtteranceEnd]

        on_transcript(conn, result=result("hello", True))
        on_transcript(conn, result=result("how are", False))
        on_transcript(conn, result=result("how are you", True))
        await settle()

        assert interim == ["hello", "hello how are", "hello how are you"]
        assert finals == []

        on_utterance_end(conn, utterance_end=SimpleNamespace())
        await settle()
        assert finals == ["hello how are you"]

        on_utterance_end(conn, utterance_end=SimpleNamespace())
        await settle()
        assert finals == ["hello how are you"]

    @pytest.mark.asyncio
    async def test_positional_result_is_accepted(self, make_transcriber, conn):
        interim = []
        stt = make_transcriber()
        await stt.initialize()
        await stt.start(interim.append, lambda t: None)

        conn.handlers[LiveTranscriptionEvents.Transcript](conn, result("hi", True))
        await settle()

        assert interim == ["hi"]

    @pytest.mark.asyncio
    async def test_blank_results_are_ignored(self, make_transcriber, conn):
        interim = []
        stt = make_transcriber()
        await stt.initialize()
        await stt.start(interim.append, lambda t: None)

        conn.handlers[LiveTranscriptionEvents.Transcript](conn, result="   ")
        conn.handlers[LiveTranscriptionEvents.Transcript](conn, result=result("  ", True))
        await settle()

        assert interim == []

    @pytest.mark.asyncio
    async def test_paused_capture_drops_results_and_resume_starts_clean(self, make_transcriber, conn):
        interim, finals = [], []
        stt = make_transcriber()
        await stt.initialize()
        await stt.start(interim.append, finals.append)
        on_transcript = conn.handlers[LiveTranscriptionEvents.Transcript]

        on_transcript(conn, result=result("before", True))
        await settle()
        stt.pause()
        on_transcript(conn, result=result("while paused", True))
        await settle()
        stt.resume()
        on_transcript(conn, result=result("after", True))
        conn.handlers[LiveTranscriptionEvents.UtteranceEnd](conn)
        await settle()

        assert finals == ["after"]

    @pytest.mark.asyncio
    async def test_stop_returns_partial_text(self, make_transcriber, conn, mics):
        stt = make_transcriber()
        await stt.initialize()
        await stt.start(lambda t: None, lambda t: None)
        conn.handlers[LiveTranscriptionEvents.Transcript](conn, result=result("half a", True))
        await settle()

        assert await stt.stop() == "half a"
        assert mics[0].stopped
        assert not stt.capturing
        assert await stt.stop() == ""


class TestCapture:
    @pytest.mark.asyncio
    async def test_mic_chunks_are_forwarded_unless_paused(self, make_transcriber, conn, mics):
        stt = make_transcriber()
        await stt.initialize()
        await stt.start(lambda t: None, lambda t: None)
        queue = mics[0].queue

        queue.put_nowait(b"one")
        await settle()
        stt.pause()
        queue.put_nowait(b"two")
        await settle()
        stt.resume()
        queue.put_nowait(b"three")
        await settle()

        assert conn.sent == [b"one", b"three"]
        await stt.stop()

    @pytest.mark.asyncio
    async def test_start_twice_keeps_a_single_microphone(self, make_transcriber, mics):
        stt = make_transcriber()
        await stt.initialize()

        await stt.start(lambda t: None, lambda t: None)
        await stt.start(lambda t: None, lambda t: None)

        assert len(mics) == 1
        await stt.stop()

    @pytest.mark.asyncio
    async def test_mic_stop_failure_raises_capture_stop_error(self, make_transcriber):
        stt = make_transcriber(mic_stop_error=OSError("device vanished"))
        await stt.initialize()
        await stt.start(lambda t: None, lambda t: None)

        with pytest.raises(CaptureStopError):
            await stt.stop()
        assert not stt.capturing

    @pytest.mark.asyncio
    async def test_local_vad_end_finalizes_utterance(self, make_transcriber, conn, mics):
        finals = []
        stt = make_transcriber(vad_detector=lambda chunk: {"end": 512} if chunk == b"silence" else None)
        await stt.initialize()
        await stt.start(lambda t: None, finals.append)
        conn.handlers[LiveTranscriptionEvents.Transcript](conn, result=result("turn off the lights", True))
        await settle()

        mics[0].queue.put_nowait(b"silence")
        for _ in range(50):
            if finals:
                break
            await asyncio.sleep(0.01)

        assert finals == ["turn off the lights"]
        await stt.stop()
