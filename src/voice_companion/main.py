"""
CLI: conversación de voz con el companion.
  voz input → STT Deepgram [+ VAD Silero opcional] → LLM OpenAI → TTS ElevenLabs → voz output

Uso:
  python -m voice_companion --name Alex --descriptor male
  python -m voice_companion --list-devices
  python -m voice_companion --input-device 1 --output-device 2
  python -m voice_companion --pipeline_vad 1    # fin de enunciado con Silero (requiere extra "vad")
  python -m voice_companion --muted             # respuestas solo en texto

Comandos en consola durante la llamada:
  /mic    abre o cierra el micrófono
  /mute   silencia o reactiva la voz del companion
  /quit   termina la llamada
  (cualquier otra línea se envía como si la hubieras dicho)
"""
import argparse
import asyncio
import signal
import sys
import threading
from typing import Optional, Set

import sounddevice as sd

from .audio.mic import list_audio_devices
from .config import (
    get_deepgram_api_key,
    get_eleven_api_key,
    get_eleven_voice_id,
    get_openai_api_key,
)
from .errors import ErrorKind, TranscriptionConnectionError
from .llm.openai_client import OpenAICompletionClient
from .orchestrator import (
    CompletionClient,
    ConversationCallbacks,
    SpeechOutput,
    TranscriptionStream,
    TurnOrchestrator,
)
from .state import UserIdentity
from .stt.deepgram_live import DeepgramTranscriber
from .tts.elevenlabs_stream import ElevenLabsSpeechOutput
from .utils.logging import log_vad, setup_logging


def start_stdin_reader(loop: asyncio.AbstractEventLoop, queue: asyncio.Queue) -> threading.Thread:
    """Lee stdin en un hilo daemon y pone cada línea en la cola (None en EOF)."""
    def reader():
        for line in sys.stdin:
            loop.call_soon_threadsafe(queue.put_nowait, line.rstrip("\n"))
        loop.call_soon_threadsafe(queue.put_nowait, None)

    thread = threading.Thread(target=reader, name="stdin-reader", daemon=True)
    thread.start()
    return thread


async def console_commands(
    orchestrator: TurnOrchestrator,
    lines: asyncio.Queue,
    stop_event: asyncio.Event,
    tasks: Set[asyncio.Task],
) -> None:
    while not stop_event.is_set():
        line = await lines.get()
        if line is None:
            stop_event.set()
            break
        command = line.strip()
        if not command:
            continue
        if command == "/quit":
            stop_event.set()
        elif command == "/mute":
            orchestrator.set_muted(not orchestrator.muted)
            print("🔇 Audio silenciado" if orchestrator.muted else "🔊 Audio activado")
        elif command == "/mic":
            if orchestrator.session.listening:
                await orchestrator.stop_listening()
                print("🎙️ Mic cerrado")
            elif await orchestrator.start_listening():
                print("🎙️ Mic abierto")
        else:
            task = asyncio.create_task(orchestrator.submit_utterance(command))
            tasks.add(task)
            task.add_done_callback(tasks.discard)


async def run_conversation(
    args: argparse.Namespace,
    *,
    transcriber: Optional[TranscriptionStream] = None,
    completion: Optional[CompletionClient] = None,
    speech: Optional[SpeechOutput] = None,
    lines: Optional[asyncio.Queue] = None,
) -> None:
    """
    Arranca una sesión: conexión STT → saludo → turnos hasta /quit o Ctrl+C.
    Los adaptadores y la cola de líneas se pueden inyectar; por defecto Deepgram, OpenAI, ElevenLabs y stdin.
    """
    get_deepgram_api_key()
    get_openai_api_key()
    get_eleven_api_key()
    get_eleven_voice_id()

    identity = UserIdentity(args.name, args.descriptor)

    if transcriber is None:
        vad_detector = None
        if args.pipeline_vad:
            # torch solo se importa si se pide el VAD local
            from .vad.silero import SileroEndpointDetector

            log_vad("Load", "Cargando Silero VAD…")
            vad_detector = SileroEndpointDetector.load()
            log_vad("Load", "Silero VAD listo")
        transcriber = DeepgramTranscriber(input_device=args.input_device, vad_detector=vad_detector)
    if completion is None:
        completion = OpenAICompletionClient()
    if speech is None:
        speech = ElevenLabsSpeechOutput()

    tasks: Set[asyncio.Task] = set()
    orchestrator: Optional[TurnOrchestrator] = None

    def on_connection_state_changed(connected: bool) -> None:
        print("🟢 Conectado" if connected else "⚪ Desconectado")
        if connected and orchestrator is not None and not orchestrator.session.greeted:
            task = asyncio.create_task(orchestrator.send_initial_greeting())
            tasks.add(task)
            task.add_done_callback(tasks.discard)

    def on_error(kind: ErrorKind, message: str) -> None:
        print(f"⚠️  {message}")

    callbacks = ConversationCallbacks(
        on_user_message=lambda text: print(f"🧑 {text}"),
        on_assistant_message=lambda text: print(f"🤖 {text}"),
        on_turn_complete=lambda: None,
        on_connection_state_changed=on_connection_state_changed,
        on_error=on_error,
        on_transcript=lambda text: print(f"\t… {text}"),
    )
    orchestrator = TurnOrchestrator(identity, transcriber, completion, speech, callbacks)
    orchestrator.set_muted(args.muted)

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, stop_event.set)
        sigint_installed = True
    except (NotImplementedError, RuntimeError, ValueError):
        sigint_installed = False

    if lines is None:
        lines = asyncio.Queue()
        start_stdin_reader(loop, lines)
    console_task = asyncio.create_task(console_commands(orchestrator, lines, stop_event, tasks))

    async def connect() -> None:
        try:
            await orchestrator.initialize()
        except TranscriptionConnectionError:
            print("Escribe /mic para reintentar la conexión")
            return
        print("🎧 LISTO — Habla cuando quieras (/quit o Ctrl+C para salir)")

    # El handshake corre aparte: /quit y Ctrl+C se atienden aunque siga pendiente
    connect_task = asyncio.create_task(connect())
    tasks.add(connect_task)
    connect_task.add_done_callback(tasks.discard)

    try:
        await stop_event.wait()
    finally:
        if sigint_installed:
            loop.remove_signal_handler(signal.SIGINT)
        console_task.cancel()
        await orchestrator.teardown()
        for t in list(tasks):
            t.cancel()
        await asyncio.gather(console_task, *tasks, return_exceptions=True)
    print("👋 Salida limpia")


def _ask(prompt: str) -> str:
    value = ""
    while not value:
        value = input(prompt).strip()
    return value


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Conversación de voz en tiempo real con un companion"
    )
    parser.add_argument("--list-devices", action="store_true", help="Listar dispositivos de audio")
    parser.add_argument("--input-device", type=int, default=None, help="ID dispositivo de entrada (mic)")
    parser.add_argument("--output-device", type=int, default=None, help="ID dispositivo de salida")
    parser.add_argument(
        "--pipeline_vad",
        type=int,
        default=0,
        choices=[0, 1],
        help="1 = fin de enunciado con Silero VAD local, 0 = UtteranceEnd de Deepgram (default)",
    )
    parser.add_argument("--name", default=None, help="Tu nombre")
    parser.add_argument("--descriptor", default=None, help="Cómo te describes (p. ej. male, female)")
    parser.add_argument("--muted", action="store_true", help="Empezar con la voz del companion silenciada")
    parser.add_argument("--log-level", default="INFO", help="Nivel de log (DEBUG, INFO, WARNING…)")
    args = parser.parse_args()

    setup_logging(args.log_level)

    if args.list_devices:
        list_audio_devices()
        return

    if args.input_device is not None or args.output_device is not None:
        sd.default.device = (args.input_device, args.output_device)

    if not args.name:
        args.name = _ask("Tu nombre: ")
    if not args.descriptor:
        args.descriptor = _ask("Cómo te describes (male/female/…): ")

    asyncio.run(run_conversation(args))


if __name__ == "__main__":
    main()
