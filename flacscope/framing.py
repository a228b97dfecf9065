import math
from dataclasses import dataclass
from typing import Iterator

import numpy as np
from numpy.lib.stride_tricks import sliding_window_view
from scipy import signal

from .decoder import AudioStream
from .utils import validate_window_name

WINDOW_FUNCTIONS = ("hann", "hamming", "blackman")


@dataclass(frozen=True)
class Frame:
    index: int
    start: int
    samples: np.ndarray
    values: np.ndarray

    @property
    def size(self) -> int:
        return int(self.values.shape[0])


def validate_frame_geometry(window_size: int, hop_size: int) -> None:
    if int(window_size) != window_size or window_size <= 0:
        raise ValueError("window_size must be a positive integer")
    if int(hop_size) != hop_size or hop_size <= 0:
        raise ValueError("hop_size must be a positive integer")
    if hop_size > window_size:
        raise ValueError("hop_size must not exceed window_size")


def frame_count(total_samples: int, hop_size: int) -> int:
    return math.ceil(total_samples / hop_size) if total_samples > 0 else 0


def make_window(name: str, size: int) -> np.ndarray:
    """
    Symmetric window scaled so its mean is 1, which keeps a sinusoid's peak
    magnitude independent of the window choice.
    """
    window_name = validate_window_name(name, WINDOW_FUNCTIONS)
    window = signal.get_window(window_name, size, fftbins=False).astype(np.float64)
    total = window.sum()
    if total > 0:
        window *= size / total
    return window


def mix_to_mono(stream: AudioStream) -> np.ndarray:
    if stream.channels == 1:
        return stream.samples[:, 0]
    return stream.samples.mean(axis=1, dtype=np.float64).astype(np.float32)


def frame(stream: AudioStream, window_size: int, hop_size: int, window: str = "hann") -> Iterator[Frame]:
    """
    Slice the mono mix of ``stream`` into overlapping windowed frames.

    Frame ``k`` starts at ``k * hop_size``; frames running past the end of the
    audio are zero padded so the tail is never dropped. The returned generator
    is single-pass.
    """
    validate_frame_geometry(window_size, hop_size)
    taper = make_window(window, window_size)
    mono = mix_to_mono(stream)
    count = frame_count(mono.shape[0], hop_size)
    return _generate_frames(mono, count, window_size, hop_size, taper)


def _generate_frames(
    mono: np.ndarray, count: int, window_size: int, hop_size: int, taper: np.ndarray
) -> Iterator[Frame]:
    if count == 0:
        return
    padded_length = (count - 1) * hop_size + window_size
    padded = np.zeros(padded_length, dtype=np.float32)
    padded[: mono.shape[0]] = mono[:padded_length]
    padded.setflags(write=False)
    views = sliding_window_view(padded, window_size)[::hop_size]
    for index in range(count):
        samples = views[index]
        yield Frame(
            index=index,
            start=index * hop_size,
            samples=samples,
            values=samples * taper,
        )
