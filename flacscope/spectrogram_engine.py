import logging
from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple

import matplotlib
import numpy as np

from .errors import PipelineContractError
from .transform import SpectralFrame, bin_count
from .utils import map_axis, validate_choice

logger = logging.getLogger(__name__)

PALETTES = ("magma", "inferno", "viridis", "plasma", "cividis", "gray")
FREQUENCY_SCALES = ("hybrid", "log", "linear")
LUT_SIZE = 256


def to_decibels(magnitude: np.ndarray, reference: float, db_range: float) -> np.ndarray:
    """
    20 * log10(magnitude / reference), clamped to [-db_range, 0].
    Zero magnitudes (and a zero reference) land on the floor instead of -inf/NaN.
    """
    floor = -abs(float(db_range))
    magnitude = np.asarray(magnitude, dtype=np.float64)
    if reference <= 0.0:
        return np.full(magnitude.shape, floor)
    ratio = np.maximum(magnitude, 0.0) / float(reference)
    with np.errstate(divide="ignore"):
        db = 20.0 * np.log10(ratio)
    return np.clip(db, floor, 0.0)


def normalize_decibels(db: np.ndarray, db_range: float) -> np.ndarray:
    db_range = abs(float(db_range))
    return (np.clip(db, -db_range, 0.0) + db_range) / db_range


@dataclass(frozen=True)
class Spectrogram:
    magnitudes: np.ndarray
    sample_rate: int
    window_size: int
    hop_size: int

    def __post_init__(self):
        if self.magnitudes.ndim != 2 or self.magnitudes.shape[1] != bin_count(self.window_size):
            raise PipelineContractError(
                f"spectrogram rows must have {bin_count(self.window_size)} bins, got shape {self.magnitudes.shape}"
            )
        if self.magnitudes.flags.writeable:
            magnitudes = self.magnitudes.copy()
            magnitudes.setflags(write=False)
            object.__setattr__(self, "magnitudes", magnitudes)

    @property
    def frame_count(self) -> int:
        return int(self.magnitudes.shape[0])

    @property
    def bin_count(self) -> int:
        return int(self.magnitudes.shape[1])

    @property
    def max_magnitude(self) -> float:
        return float(self.magnitudes.max()) if self.magnitudes.size else 0.0

    def frequencies(self) -> np.ndarray:
        return np.arange(self.bin_count) * (self.sample_rate / float(self.window_size))

    def times(self) -> np.ndarray:
        return np.arange(self.frame_count) * (self.hop_size / float(self.sample_rate))

    def nearest_bin(self, hz: float) -> int:
        return int(np.clip(round(hz * self.window_size / self.sample_rate), 0, self.bin_count - 1))

    def peak_bin(self) -> int:
        """Frequency bin with the most energy summed over time."""
        if not self.frame_count:
            return 0
        return int(np.argmax(self.magnitudes.sum(axis=0)))

    def decibels(self, db_range: float) -> np.ndarray:
        return to_decibels(self.magnitudes, self.max_magnitude, db_range)

    def normalized(self, db_range: float) -> np.ndarray:
        return normalize_decibels(self.decibels(db_range), db_range)


class SpectrogramBuilder:
    """Collects spectral frames row by row; ``finalize`` freezes the result."""

    def __init__(self, sample_rate: int, window_size: int, hop_size: int):
        self.sample_rate = sample_rate
        self.window_size = window_size
        self.hop_size = hop_size
        self._bins = bin_count(window_size)
        self._rows: List[np.ndarray] = []
        self._finalized = False

    def __len__(self) -> int:
        return len(self._rows)

    def append(self, spectral_frame: SpectralFrame) -> None:
        if self._finalized:
            raise PipelineContractError("cannot append to a finalized spectrogram")
        if spectral_frame.magnitudes.shape != (self._bins,):
            raise PipelineContractError(
                f"spectral frame {spectral_frame.index} has {spectral_frame.magnitudes.shape[0]} bins, "
                f"expected {self._bins}"
            )
        if spectral_frame.index != len(self._rows):
            raise PipelineContractError(
                f"spectral frame {spectral_frame.index} arrived out of order, expected {len(self._rows)}"
            )
        self._rows.append(spectral_frame.magnitudes)

    def extend(self, spectral_frames: Iterable[SpectralFrame]) -> None:
        for spectral_frame in spectral_frames:
            self.append(spectral_frame)

    def finalize(self) -> Spectrogram:
        self._finalized = True
        if self._rows:
            magnitudes = np.vstack(self._rows).astype(np.float32)
        else:
            magnitudes = np.zeros((0, self._bins), dtype=np.float32)
        magnitudes.setflags(write=False)
        logger.debug("Spectrogram finalized: %d frame(s) x %d bin(s)", magnitudes.shape[0], self._bins)
        return Spectrogram(
            magnitudes=magnitudes,
            sample_rate=self.sample_rate,
            window_size=self.window_size,
            hop_size=self.hop_size,
        )


def build(
    spectral_frames: Iterable[SpectralFrame], sample_rate: int, window_size: int, hop_size: int
) -> Spectrogram:
    builder = SpectrogramBuilder(sample_rate, window_size, hop_size)
    builder.extend(spectral_frames)
    return builder.finalize()


class Palette:
    """256-entry RGB lookup table sampled from a matplotlib colormap."""

    def __init__(self, name: str):
        self.name = validate_choice(name, PALETTES, "palette")
        cmap = matplotlib.colormaps[self.name]
        lut = cmap(np.linspace(0.0, 1.0, LUT_SIZE), bytes=True)[:, :3]
        self.lut = np.ascontiguousarray(lut, dtype=np.uint8)
        self.lut.setflags(write=False)

    def __repr__(self) -> str:
        return f"Palette({self.name!r})"

    def __call__(self, intensity: np.ndarray) -> np.ndarray:
        """Map intensities in [0, 1] to uint8 RGB, shape (...) -> (..., 3)."""
        intensity = np.nan_to_num(np.asarray(intensity, dtype=np.float64), nan=0.0)
        index = np.rint(np.clip(intensity, 0.0, 1.0) * (LUT_SIZE - 1)).astype(np.intp)
        return self.lut[index]


def get_palette(palette) -> Palette:
    return palette if isinstance(palette, Palette) else Palette(palette)


@dataclass(frozen=True)
class ColorMappedImage:
    pixels: np.ndarray
    palette: str
    dynamic_range_db: float
    frequency_scale: str

    def __post_init__(self):
        if self.pixels.ndim != 3 or self.pixels.shape[2] != 3 or self.pixels.dtype != np.uint8:
            raise PipelineContractError("image pixels must be a (height, width, 3) uint8 array")
        if self.pixels.flags.writeable:
            pixels = self.pixels.copy()
            pixels.setflags(write=False)
            object.__setattr__(self, "pixels", pixels)

    @property
    def width(self) -> int:
        return int(self.pixels.shape[1])

    @property
    def height(self) -> int:
        return int(self.pixels.shape[0])

    def tobytes(self) -> bytes:
        return self.pixels.tobytes()


def _resample_time(magnitudes: np.ndarray, width: int) -> np.ndarray:
    """Box-average frames into fewer columns, or repeat frames into more."""
    frames = magnitudes.shape[0]
    starts = (np.arange(width) * frames) // width
    if width > frames:
        return magnitudes[starts]
    sums = np.add.reduceat(magnitudes, starts, axis=0)
    counts = np.diff(np.append(starts, frames))
    return sums / counts[:, np.newaxis]


def _bin_range(bins: int, scale: str) -> Tuple[float, float]:
    # Bin j covers [j - 0.5, j + 0.5). The log scales start above DC.
    if scale == "linear":
        return -0.5, bins - 0.5
    return min(0.5, bins - 0.5), bins - 0.5


def axis_bins(positions: np.ndarray, bins: int, scale: str) -> np.ndarray:
    """Fractional bin shown at each vertical axis position (0.0 = bottom edge, 1.0 = top edge)."""
    low, high = _bin_range(bins, scale)
    return map_axis(np.asarray(positions, dtype=np.float64), low, high, scale)


def axis_frequencies(positions: np.ndarray, sample_rate: int, window_size: int, scale: str) -> np.ndarray:
    """Frequency in Hz drawn at each vertical axis position of a colorized image."""
    return axis_bins(positions, bin_count(window_size), scale) * (sample_rate / float(window_size))


def _integral(cumulative: np.ndarray, magnitudes: np.ndarray, position: np.ndarray) -> np.ndarray:
    """Integral of the piecewise-constant spectrum from -0.5 up to ``position``."""
    bins = magnitudes.shape[1]
    shifted = np.clip(position + 0.5, 0.0, float(bins))
    index = np.minimum(np.floor(shifted).astype(np.intp), bins - 1)
    return cumulative[:, index] + magnitudes[:, index] * (shifted - index)


def _resample_frequency(magnitudes: np.ndarray, height: int, scale: str) -> np.ndarray:
    """
    Resample the bin axis onto ``height`` rows (row 0 = highest frequency).

    Rows spanning a bin or more are box-averaged over their band; narrower rows
    interpolate linearly between bin centers, so the image never aliases.
    """
    bins = magnitudes.shape[1]
    edges = axis_bins(np.arange(height + 1) / float(height), bins, scale)
    centers = axis_bins((np.arange(height) + 0.5) / float(height), bins, scale)
    widths = edges[1:] - edges[:-1]

    cumulative = np.concatenate((np.zeros((magnitudes.shape[0], 1)), np.cumsum(magnitudes, axis=1)), axis=1)
    band = (_integral(cumulative, magnitudes, edges[1:]) - _integral(cumulative, magnitudes, edges[:-1])) / np.maximum(
        widths, 1e-12
    )

    position = np.clip(centers, 0.0, bins - 1.0)
    lower = np.floor(position).astype(np.intp)
    upper = np.minimum(lower + 1, bins - 1)
    weight = position - lower
    interpolated = magnitudes[:, lower] * (1.0 - weight) + magnitudes[:, upper] * weight

    rows = np.where(widths >= 1.0, band, interpolated)
    return rows[:, ::-1]


def colorize(
    spectrogram: Spectrogram,
    palette="magma",
    dynamic_range_db: float = 60.0,
    size: Optional[Tuple[int, int]] = None,
    frequency_scale: str = "hybrid",
) -> ColorMappedImage:
    """
    Turn a spectrogram into an RGB image.

    Without ``size`` the image has one column per frame and one row per bin on
    a linear frequency axis. With ``size=(width, height)`` both axes are
    resampled from the linear magnitudes before dB scaling, and the dB
    reference stays the spectrogram's global maximum.
    """
    lut = get_palette(palette)
    scale = validate_choice(frequency_scale, FREQUENCY_SCALES, "frequency scale")
    if dynamic_range_db <= 0:
        raise ValueError("dynamic_range_db must be positive")

    magnitudes = spectrogram.magnitudes.astype(np.float64)
    if size is None:
        width, height = spectrogram.frame_count, spectrogram.bin_count
        grid = magnitudes[:, ::-1]
        scale = "linear"
    else:
        width, height = int(size[0]), int(size[1])
        if width <= 0 or height <= 0:
            raise ValueError("image size must be positive")
        if spectrogram.frame_count == 0:
            grid = np.zeros((width, height))
        else:
            grid = _resample_frequency(_resample_time(magnitudes, width), height, scale)

    db = to_decibels(grid, spectrogram.max_magnitude, dynamic_range_db)
    intensity = normalize_decibels(db, dynamic_range_db)
    pixels = np.ascontiguousarray(lut(intensity.T))
    pixels.setflags(write=False)
    return ColorMappedImage(
        pixels=pixels.reshape(height, width, 3),
        palette=lut.name,
        dynamic_range_db=float(dynamic_range_db),
        frequency_scale=scale,
    )
