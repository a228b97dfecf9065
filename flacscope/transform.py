from dataclasses import dataclass
from itertools import islice
from typing import Iterable, Iterator, List

import numpy as np
from scipy import fft

from .errors import PipelineContractError
from .framing import Frame

DEFAULT_BATCH_SIZE = 256


@dataclass(frozen=True)
class SpectralFrame:
    index: int
    start: int
    magnitudes: np.ndarray

    @property
    def bin_count(self) -> int:
        return int(self.magnitudes.shape[0])


def bin_count(window_size: int) -> int:
    return window_size // 2 + 1


def _check_frame(frame: Frame, window_size: int) -> None:
    if frame.values.shape != (window_size,):
        raise PipelineContractError(
            f"frame {frame.index} has {frame.values.shape[0]} samples, transform expects {window_size}"
        )


def _magnitudes(values: np.ndarray, workers: int) -> np.ndarray:
    spectrum = fft.rfft(values, axis=-1, workers=workers)
    magnitudes = np.abs(spectrum)
    magnitudes.setflags(write=False)
    return magnitudes


def transform(frame: Frame, window_size: int) -> SpectralFrame:
    """Magnitude spectrum of one windowed frame, bins 0 through Nyquist."""
    _check_frame(frame, window_size)
    return SpectralFrame(index=frame.index, start=frame.start, magnitudes=_magnitudes(frame.values, workers=1))


def transform_frames(
    frames: Iterable[Frame],
    window_size: int,
    workers: int = -1,
    batch_size: int = DEFAULT_BATCH_SIZE,
) -> Iterator[SpectralFrame]:
    """
    Lazily transform a frame sequence in batches.

    Each batch is a single 2-D FFT call; scipy spreads its rows over ``workers``
    threads (-1 means all cores). Output order matches input order.
    """
    if batch_size <= 0:
        raise ValueError("batch_size must be positive")
    iterator = iter(frames)
    while True:
        batch: List[Frame] = list(islice(iterator, batch_size))
        if not batch:
            return
        for item in batch:
            _check_frame(item, window_size)
        magnitudes = _magnitudes(np.stack([item.values for item in batch]), workers=workers)
        for item, row in zip(batch, magnitudes):
            yield SpectralFrame(index=item.index, start=item.start, magnitudes=row)
