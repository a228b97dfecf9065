import logging
from dataclasses import dataclass
from typing import Tuple

import numpy as np
from PIL import Image

from .spectrogram_engine import ColorMappedImage, Spectrogram, colorize
from .utils import validate_choice

logger = logging.getLogger(__name__)

INTERPOLATIONS = ("nearest", "bilinear")

_RESAMPLE = {
    "nearest": Image.Resampling.NEAREST,
    "bilinear": Image.Resampling.BILINEAR,
}


@dataclass(frozen=True)
class PixelBuffer:
    width: int
    height: int
    logical_size: Tuple[int, int]
    scale_factor: float
    data: bytes

    @property
    def stride(self) -> int:
        return 3 * self.width

    def to_image(self) -> Image.Image:
        return Image.frombytes("RGB", (self.width, self.height), self.data)

    def to_array(self) -> np.ndarray:
        return np.frombuffer(self.data, dtype=np.uint8).reshape(self.height, self.width, 3)


def physical_size(target_size: Tuple[int, int], device_scale_factor: float) -> Tuple[int, int]:
    if device_scale_factor <= 0:
        raise ValueError("device_scale_factor must be positive")
    width, height = target_size
    return (
        max(1, int(round(width * device_scale_factor))),
        max(1, int(round(height * device_scale_factor))),
    )


def render(
    image: ColorMappedImage,
    target_size: Tuple[int, int],
    device_scale_factor: float = 1.0,
    interpolation: str = "nearest",
) -> PixelBuffer:
    """
    Resample a color-mapped image to ``target_size * device_scale_factor``
    device pixels. Only the image is touched; the spectrogram behind it is not.
    """
    method = validate_choice(interpolation, INTERPOLATIONS, "interpolation")
    size = physical_size(target_size, device_scale_factor)
    if image.width == 0 or image.height == 0:
        pixels = Image.new("RGB", size)
    else:
        pixels = Image.fromarray(image.pixels.copy())
        if pixels.size != size:
            pixels = pixels.resize(size, resample=_RESAMPLE[method])
    return PixelBuffer(
        width=size[0],
        height=size[1],
        logical_size=(int(target_size[0]), int(target_size[1])),
        scale_factor=float(device_scale_factor),
        data=pixels.tobytes(),
    )


def render_spectrogram(
    spectrogram: Spectrogram,
    target_size: Tuple[int, int],
    device_scale_factor: float = 1.0,
    *,
    palette: str = "magma",
    dynamic_range_db: float = 60.0,
    frequency_scale: str = "hybrid",
    interpolation: str = "nearest",
) -> PixelBuffer:
    """Colorize straight at device resolution so every device pixel is computed, not stretched."""
    size = physical_size(target_size, device_scale_factor)
    image = colorize(
        spectrogram,
        palette=palette,
        dynamic_range_db=dynamic_range_db,
        size=size,
        frequency_scale=frequency_scale,
    )
    logger.debug("Rendered %dx%d device pixels at scale %.2f", size[0], size[1], device_scale_factor)
    return render(image, target_size, device_scale_factor, interpolation=interpolation)
