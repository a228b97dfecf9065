"""
Decode -> frame -> transform -> build, with no state kept between calls so
several analyses can run at once.
"""
import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

from .config import AnalysisParams
from .decoder import AudioStream, decode
from .framing import frame
from .spectrogram_engine import Spectrogram, build
from .transform import transform_frames
from .utils import hz_per_bin, ms_per_hop

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AnalysisResult:
    stream: AudioStream
    spectrogram: Spectrogram
    source: Optional[Path] = None

    @property
    def title(self) -> str:
        return self.source.name if self.source else "untitled"

    def dominant_frequency(self) -> float:
        return float(self.spectrogram.frequencies()[self.spectrogram.peak_bin()])


def analyze_stream(stream: AudioStream, params: Optional[AnalysisParams] = None) -> Spectrogram:
    params = params or AnalysisParams()
    frames = frame(stream, params.window_size, params.hop_size, window=params.window)
    spectral_frames = transform_frames(frames, params.window_size, workers=params.fft_workers)
    return build(spectral_frames, stream.sample_rate, params.window_size, params.hop_size)


def analyze(path: Union[str, Path], params: Optional[AnalysisParams] = None) -> AnalysisResult:
    params = params or AnalysisParams()
    path = Path(path)
    start = time.perf_counter()
    stream = decode(path, verify_md5=params.verify_md5)
    decoded_at = time.perf_counter()
    spectrogram = analyze_stream(stream, params)
    logger.info(
        "Analyzed %s: %d frame(s), %.2f Hz/bin, %.2f ms/frame (decode %.0f ms, transform %.0f ms)",
        path.name,
        spectrogram.frame_count,
        hz_per_bin(stream.sample_rate, params.window_size),
        ms_per_hop(params.hop_size, stream.sample_rate),
        (decoded_at - start) * 1000.0,
        (time.perf_counter() - decoded_at) * 1000.0,
    )
    return AnalysisResult(stream=stream, spectrogram=spectrogram, source=path)
