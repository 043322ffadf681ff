from .mic import list_audio_devices, create_input_stream, mic_sender
from .playback import create_ffplay_process, play_pcm_stream

__all__ = ["list_audio_devices", "create_input_stream", "mic_sender", "create_ffplay_process", "play_pcm_stream"]
