import numpy as np
import pytest

from flacscope.renderer import physical_size, render, render_spectrogram
from flacscope.spectrogram_engine import ColorMappedImage, Spectrogram


def _spectrogram() -> Spectrogram:
    rng = np.random.default_rng(7)
    return Spectrogram(magnitudes=rng.random((12, 33)), sample_rate=8000, window_size=64, hop_size=32)


def _two_pixel_image() -> ColorMappedImage:
    pixels = np.array([[[255, 0, 0], [0, 0, 255]]], dtype=np.uint8)
    return ColorMappedImage(pixels=pixels, palette="magma", dynamic_range_db=60.0, frequency_scale="linear")


def test_physical_size_scales_and_rounds():
    assert physical_size((100, 50), 1.0) == (100, 50)
    assert physical_size((100, 50), 2.0) == (200, 100)
    assert physical_size((101, 33), 1.5) == (152, 50)
    assert physical_size((0, 0), 2.0) == (1, 1)
    with pytest.raises(ValueError):
        physical_size((10, 10), 0.0)


@pytest.mark.parametrize("scale", [1.0, 1.25, 2.0, 3.0])
def test_buffer_is_rendered_at_device_pixels(scale):
    buffer = render_spectrogram(_spectrogram(), (120, 80), scale)
    expected = physical_size((120, 80), scale)
    assert (buffer.width, buffer.height) == expected
    assert buffer.logical_size == (120, 80)
    assert buffer.scale_factor == scale
    assert len(buffer.data) == buffer.stride * buffer.height
    assert buffer.to_array().shape == (expected[1], expected[0], 3)


def test_rendering_leaves_the_spectrogram_untouched():
    spectrogram = _spectrogram()
    before = spectrogram.magnitudes.copy()
    render_spectrogram(spectrogram, (50, 40), 2.0)
    render_spectrogram(spectrogram, (300, 10), 1.0, frequency_scale="log")
    np.testing.assert_array_equal(spectrogram.magnitudes, before)


def test_nearest_upscale_repeats_pixels():
    buffer = render(_two_pixel_image(), (2, 1), 2.0, interpolation="nearest")
    pixels = buffer.to_array()
    assert pixels.shape == (2, 4, 3)
    assert (pixels[:, :2] == [255, 0, 0]).all()
    assert (pixels[:, 2:] == [0, 0, 255]).all()


def test_bilinear_interpolation_blends():
    buffer = render(_two_pixel_image(), (8, 1), 1.0, interpolation="bilinear")
    middle = buffer.to_array()[0, 4]
    assert 0 < middle[0] < 255
    assert 0 < middle[2] < 255


def test_empty_image_renders_black():
    empty = ColorMappedImage(
        pixels=np.zeros((0, 0, 3), dtype=np.uint8), palette="magma", dynamic_range_db=60.0, frequency_scale="linear"
    )
    buffer = render(empty, (10, 5), 2.0)
    assert (buffer.width, buffer.height) == (20, 10)
    assert not buffer.to_array().any()


def test_unknown_interpolation_is_rejected():
    with pytest.raises(ValueError):
        render(_two_pixel_image(), (4, 4), interpolation="lanczos")


def test_buffer_round_trips_through_pillow():
    buffer = render_spectrogram(_spectrogram(), (30, 20), 1.0)
    image = buffer.to_image()
    assert image.size == (30, 20)
    assert image.mode == "RGB"
