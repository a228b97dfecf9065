from dataclasses import dataclass
from typing import List

import numpy as np

from .spectrogram_engine import axis_frequencies
from .utils import format_frequency, format_seconds


@dataclass(frozen=True)
class Tick:
    # 0.0 is bottom/left, 1.0 is top/right.
    position: float
    label: str
    value: float


def frequency_ticks(sample_rate: int, window_size: int, scale: str = "hybrid", count: int = 10) -> List[Tick]:
    """Evenly spaced ticks along the frequency axis, labelled with the frequency the image shows there."""
    if count < 2:
        raise ValueError("count must be at least 2")
    positions = np.linspace(0.0, 1.0, count)
    values = axis_frequencies(positions, sample_rate, window_size, scale)
    # The linear image starts half a bin below DC; that edge still reads as 0 Hz.
    return [
        Tick(position=float(t), label=format_frequency(max(float(hz), 0.0)), value=float(hz))
        for t, hz in zip(positions, values)
    ]


def time_ticks(duration: float, count: int = 8) -> List[Tick]:
    if count < 2:
        raise ValueError("count must be at least 2")
    if duration <= 0:
        return []
    positions = np.linspace(0.0, 1.0, count)
    return [Tick(position=float(t), label=format_seconds(t * duration), value=float(t * duration)) for t in positions]
