from typing import Iterable

import numpy as np


def hz_per_bin(sample_rate: int, window_size: int) -> float:
    return float(sample_rate) / float(window_size)


def ms_per_hop(hop_size: int, sample_rate: int) -> float:
    return 1000.0 * float(hop_size) / float(sample_rate)


def format_seconds(seconds: float) -> str:
    if seconds >= 60:
        minutes = int(seconds // 60)
        remainder = seconds % 60
        return f"{minutes:d}m {remainder:.1f}s"
    return f"{seconds:.2f}s"


def format_frequency(hz: float) -> str:
    if hz > 10_000.0:
        return f"{hz / 1000.0:.1f} kHz"
    if hz > 1000.0:
        return f"{hz / 1000.0:.2f} kHz"
    return f"{hz:.0f} Hz"


def validate_choice(name: str, allowed: Iterable[str], what: str) -> str:
    lower = name.lower()
    if lower not in {option.lower() for option in allowed}:
        raise ValueError(f"Unsupported {what} '{name}'")
    return lower


def validate_window_name(name: str, allowed: Iterable[str]) -> str:
    return validate_choice(name, allowed, "window")


def map_axis(t, low: float, high: float, scale: str):
    """
    Map positions ``t`` in [0, 1] onto [low, high].

    ``log`` is geometric, ``linear`` is arithmetic, and ``hybrid`` blends from
    logarithmic at the low end to linear at the high end, so low tones stay
    distinguishable while cutoffs near the top of the spectrum are not squashed.
    """
    t = np.asarray(t, dtype=np.float64)
    linear = low + t * (high - low)
    if scale == "linear":
        return linear
    logarithmic = np.exp2(np.log2(low) + t * (np.log2(high) - np.log2(low)))
    if scale == "log":
        return logarithmic
    if scale == "hybrid":
        return linear * t + logarithmic * (1.0 - t)
    raise ValueError(f"Unsupported frequency scale '{scale}'")


def relative_luminance(rgb: np.ndarray) -> np.ndarray:
    """WCAG relative luminance of 8-bit sRGB colors, shape (..., 3) -> (...)."""
    srgb = np.asarray(rgb, dtype=np.float64)[..., :3] / 255.0
    linear = np.where(srgb <= 0.04045, srgb / 12.92, ((srgb + 0.055) / 1.055) ** 2.4)
    return linear @ np.array([0.2126, 0.7152, 0.0722])
