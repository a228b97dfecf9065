import numpy as np
import pytest

from flacscope.config import AnalysisParams
from flacscope.decoder import AudioStream
from flacscope.errors import PipelineContractError
from flacscope.pipeline import analyze_stream
from flacscope.spectrogram_engine import Spectrogram, SpectrogramBuilder, to_decibels
from flacscope.transform import SpectralFrame
from flacscope.utils import hz_per_bin

PARAMS = AnalysisParams(window_size=512, hop_size=256, fft_workers=1)


def _sine_wave(freq: float, sr: int, duration: float) -> np.ndarray:
    t = np.linspace(0, duration, int(sr * duration), endpoint=False)
    return np.sin(2 * np.pi * freq * t).astype(np.float32)


def _spectral(index: int, bins: int = 5, value: float = 1.0) -> SpectralFrame:
    return SpectralFrame(index=index, start=index * 4, magnitudes=np.full(bins, value))


def test_builder_appends_rows_in_order():
    builder = SpectrogramBuilder(sample_rate=8000, window_size=8, hop_size=4)
    builder.extend([_spectral(0), _spectral(1, value=2.0)])
    assert len(builder) == 2
    spectrogram = builder.finalize()
    assert spectrogram.magnitudes.shape == (2, 5)
    assert spectrogram.magnitudes.dtype == np.float32
    assert spectrogram.max_magnitude == pytest.approx(2.0)
    np.testing.assert_allclose(spectrogram.times(), [0.0, 0.0005])
    np.testing.assert_allclose(spectrogram.frequencies(), [0, 1000, 2000, 3000, 4000])


def test_builder_rejects_contract_violations():
    builder = SpectrogramBuilder(sample_rate=8000, window_size=8, hop_size=4)
    with pytest.raises(PipelineContractError):
        builder.append(_spectral(1))
    with pytest.raises(PipelineContractError):
        builder.append(_spectral(0, bins=4))
    builder.append(_spectral(0))
    builder.finalize()
    with pytest.raises(PipelineContractError):
        builder.append(_spectral(1))


def test_empty_builder_finalizes_to_zero_frames():
    spectrogram = SpectrogramBuilder(sample_rate=8000, window_size=8, hop_size=4).finalize()
    assert spectrogram.magnitudes.shape == (0, 5)
    assert spectrogram.max_magnitude == 0.0
    assert spectrogram.peak_bin() == 0


def test_spectrogram_rejects_wrong_bin_count():
    with pytest.raises(PipelineContractError):
        Spectrogram(magnitudes=np.zeros((3, 4)), sample_rate=8000, window_size=8, hop_size=4)


def test_spectrogram_is_immutable():
    spectrogram = Spectrogram(magnitudes=np.ones((2, 5)), sample_rate=8000, window_size=8, hop_size=4)
    with pytest.raises(ValueError):
        spectrogram.magnitudes[0, 0] = 0.0


def test_spectrogram_leaves_the_callers_array_alone():
    magnitudes = np.ones((2, 5))
    spectrogram = Spectrogram(magnitudes=magnitudes, sample_rate=8000, window_size=8, hop_size=4)
    magnitudes[0, 0] = 0.0
    assert spectrogram.magnitudes[0, 0] == 1.0


def test_sine_energy_lands_within_one_bin():
    sr = 8000
    stream = AudioStream.from_array(_sine_wave(1234.0, sr, 1.0), sr)
    spectrogram = analyze_stream(stream, PARAMS)
    assert spectrogram.frame_count == 32
    assert spectrogram.bin_count == 257
    peak = spectrogram.frequencies()[spectrogram.peak_bin()]
    assert abs(peak - 1234.0) <= hz_per_bin(sr, 512)
    assert spectrogram.nearest_bin(1234.0) == spectrogram.peak_bin()


def test_silence_sits_on_the_floor_without_nan():
    stream = AudioStream.from_array(np.zeros(2000, dtype=np.float32), 8000)
    spectrogram = analyze_stream(stream, PARAMS)
    db = spectrogram.decibels(60.0)
    assert not np.isnan(db).any()
    assert (db == -60.0).all()
    assert (spectrogram.normalized(60.0) == 0.0).all()


def test_decibels_are_relative_to_the_loudest_bin():
    db = to_decibels(np.array([0.0, 0.001, 0.1, 1.0]), reference=1.0, db_range=50.0)
    np.testing.assert_allclose(db, [-50.0, -50.0, -20.0, 0.0])
    assert not np.isinf(db).any()


def test_zero_reference_is_all_floor():
    db = to_decibels(np.array([0.0, 0.5]), reference=0.0, db_range=40.0)
    np.testing.assert_allclose(db, [-40.0, -40.0])
