"""Detector de fin de enunciado con Silero (extra "vad")."""
import pytest

np = pytest.importorskip("numpy")
torch = pytest.importorskip("torch")

from voice_companion.vad.silero import SileroEndpointDetector, pcm16_to_float  # noqa: E402


class FakeVADIterator:
    def __init__(self, result=None):
        self.result = result
        self.calls = []

    def __call__(self, tensor, return_seconds=False):
        self.calls.append((tensor, return_seconds))
        return self.result


def test_pcm16_to_float_scales_window():
    chunk = np.array([0, 16384, -32768] + [0] * 509, dtype=np.int16).tobytes()

    audio = pcm16_to_float(chunk)

    assert audio.dtype == np.float32
    assert audio.shape == (512,)
    assert audio[1] == pytest.approx(0.5)
    assert audio[2] == pytest.approx(-1.0)


def test_pcm16_to_float_rejects_partial_window():
    assert pcm16_to_float(b"\x00\x00" * 100) is None


def test_detector_passes_window_to_iterator():
    iterator = FakeVADIterator(result={"end": 4096})
    detector = SileroEndpointDetector(iterator)

    assert detector(b"\x00\x00" * 512) == {"end": 4096}
    tensor, return_seconds = iterator.calls[0]
    assert isinstance(tensor, torch.Tensor)
    assert return_seconds is False


def test_detector_skips_odd_sized_chunks():
    iterator = FakeVADIterator(result={"start": 0})
    detector = SileroEndpointDetector(iterator)

    assert detector(b"\x00\x00" * 10) is None
    assert iterator.calls == []
