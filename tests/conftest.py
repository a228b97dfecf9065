import numpy as np
import pytest
import soundfile as sf

SAMPLE_RATE = 8000


def _sine_wave(freq: float, sr: int, duration: float, amplitude: float = 0.5) -> np.ndarray:
    t = np.linspace(0, duration, int(sr * duration), endpoint=False)
    return (amplitude * np.sin(2 * np.pi * freq * t)).astype(np.float32)


@pytest.fixture
def write_flac(tmp_path):
    def _write(name, data, sr=SAMPLE_RATE, subtype="PCM_16"):
        path = tmp_path / name
        sf.write(str(path), data, sr, subtype=subtype, format="FLAC")
        return path

    return _write


@pytest.fixture
def mono_flac(write_flac):
    return write_flac("tone_1k.flac", _sine_wave(1000.0, SAMPLE_RATE, duration=0.5))


@pytest.fixture
def stereo_flac(write_flac):
    left = _sine_wave(440.0, SAMPLE_RATE, duration=0.5)
    right = _sine_wave(1500.0, SAMPLE_RATE, duration=0.5, amplitude=0.25)
    return write_flac("stereo.flac", np.stack([left, right], axis=1))


@pytest.fixture
def hires_flac(write_flac):
    return write_flac("tone_24bit.flac", _sine_wave(2500.0, 16000, duration=0.25), sr=16000, subtype="PCM_24")


@pytest.fixture
def silent_flac(write_flac):
    return write_flac("silence.flac", np.zeros(4000, dtype=np.float32))
