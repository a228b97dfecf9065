import numpy as np
import pytest

from flacscope.config import AnalysisParams
from flacscope.decoder import AudioStream
from flacscope.pipeline import analyze_stream
from flacscope.spectrogram_engine import Palette, Spectrogram, colorize
from flacscope.utils import relative_luminance

PARAMS = AnalysisParams(window_size=512, hop_size=256, fft_workers=1)


def _sine_wave(freq: float, sr: int, duration: float) -> np.ndarray:
    t = np.linspace(0, duration, int(sr * duration), endpoint=False)
    return np.sin(2 * np.pi * freq * t).astype(np.float32)


def _tone_spectrogram(freq: float = 1000.0) -> Spectrogram:
    return analyze_stream(AudioStream.from_array(_sine_wave(freq, 8000, 0.5), 8000), PARAMS)


@pytest.mark.parametrize("name", ["magma", "inferno", "viridis", "gray"])
def test_palette_luminance_increases_with_intensity(name):
    palette = Palette(name)
    luminance = relative_luminance(palette(np.linspace(0.0, 1.0, 32)))
    assert np.all(np.diff(luminance) >= 0.0)
    assert luminance[-1] > luminance[0]


def test_palette_clamps_and_handles_nan():
    palette = Palette("magma")
    colors = palette(np.array([-1.0, np.nan, 2.0]))
    np.testing.assert_array_equal(colors[0], palette.lut[0])
    np.testing.assert_array_equal(colors[1], palette.lut[0])
    np.testing.assert_array_equal(colors[2], palette.lut[-1])


def test_unknown_palette_is_rejected():
    with pytest.raises(ValueError):
        Palette("rainbow-unicorn")


def test_native_image_has_one_pixel_per_cell():
    spectrogram = _tone_spectrogram()
    image = colorize(spectrogram)
    assert (image.height, image.width) == (spectrogram.bin_count, spectrogram.frame_count)
    assert image.pixels.dtype == np.uint8
    assert image.frequency_scale == "linear"


def test_loudest_cell_gets_the_brightest_color():
    spectrogram = _tone_spectrogram()
    image = colorize(spectrogram, palette="viridis")
    frame_index, bin_index = np.unravel_index(np.argmax(spectrogram.magnitudes), spectrogram.magnitudes.shape)
    row = spectrogram.bin_count - 1 - bin_index
    np.testing.assert_array_equal(image.pixels[row, frame_index], Palette("viridis").lut[-1])


def test_colorize_is_deterministic():
    spectrogram = _tone_spectrogram()
    first = colorize(spectrogram, size=(123, 77))
    second = colorize(spectrogram, size=(123, 77))
    assert first.tobytes() == second.tobytes()


@pytest.mark.parametrize("size", [(5, 3), (64, 300), (400, 40)])
@pytest.mark.parametrize("scale", ["hybrid", "log", "linear"])
def test_resampled_image_has_requested_size(size, scale):
    image = colorize(_tone_spectrogram(), size=size, frequency_scale=scale)
    assert (image.width, image.height) == size
    assert image.frequency_scale == scale


def test_silence_renders_the_darkest_color():
    silent = analyze_stream(AudioStream.from_array(np.zeros(2000, dtype=np.float32), 8000), PARAMS)
    image = colorize(silent, size=(32, 32))
    assert (image.pixels == Palette("magma").lut[0]).all()


def test_empty_spectrogram_renders_blank_image():
    empty = Spectrogram(magnitudes=np.zeros((0, 257)), sample_rate=8000, window_size=512, hop_size=256)
    image = colorize(empty, size=(20, 10))
    assert (image.width, image.height) == (20, 10)
    assert (image.pixels == Palette("magma").lut[0]).all()


def test_log_axis_lifts_low_frequencies():
    spectrogram = _tone_spectrogram(200.0)

    def brightest_row(scale):
        image = colorize(spectrogram, size=(40, 200), frequency_scale=scale)
        return int(np.argmax(relative_luminance(image.pixels).mean(axis=1)))

    linear_row = brightest_row("linear")
    log_row = brightest_row("log")
    # Row 0 is the top of the image.
    assert linear_row > 170
    assert log_row < linear_row - 40


def test_dynamic_range_must_be_positive():
    with pytest.raises(ValueError):
        colorize(_tone_spectrogram(), dynamic_range_db=0.0)
