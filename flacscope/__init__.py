"""
flacscope: a spectrogram viewer for FLAC files.

The analysis core (decode, frame, transform, colorize, render) has no GUI
dependency; the Qt window in ``flacscope.shell.app`` is only imported when a
window is actually opened.
"""
from .config import AnalysisParams, DisplayParams, ViewerConfig, load_config, save_config
from .decoder import AudioStream, decode, decode_bytes, read_stream_info
from .errors import (
    ChecksumMismatch,
    CorruptFrame,
    DecodeError,
    FlacscopeError,
    NotAContainer,
    PipelineContractError,
    Truncated,
    UnsupportedSubformat,
)
from .pipeline import AnalysisResult, analyze, analyze_stream
from .renderer import PixelBuffer, render, render_spectrogram
from .spectrogram_engine import ColorMappedImage, Spectrogram, colorize

__version__ = "0.1.0"
