import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional, Tuple

from .framing import WINDOW_FUNCTIONS, validate_frame_geometry
from .renderer import INTERPOLATIONS
from .spectrogram_engine import FREQUENCY_SCALES, PALETTES
from .utils import validate_choice

logger = logging.getLogger(__name__)

WINDOW_SIZE_OPTIONS = (1024, 2048, 4096, 8192, 16384)
WINDOW_OPTIONS = WINDOW_FUNCTIONS
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")

DEFAULT_WINDOW_SIZE = 8192
DEFAULT_HOP_SIZE = 4096
DEFAULT_WINDOW = WINDOW_OPTIONS[0]
DEFAULT_PALETTE = PALETTES[0]
DEFAULT_DB_RANGE = 60.0
DEFAULT_FREQUENCY_SCALE = FREQUENCY_SCALES[0]
DEFAULT_INTERPOLATION = INTERPOLATIONS[0]
DEFAULT_WINDOW_GEOMETRY: Tuple[int, int] = (640, 480)
CONFIG_FILENAME = "config.json"


def default_config_path() -> Path:
    base = os.environ.get("XDG_CONFIG_HOME") or str(Path.home() / ".config")
    return Path(base) / "flacscope" / CONFIG_FILENAME


@dataclass(frozen=True)
class AnalysisParams:
    window_size: int = DEFAULT_WINDOW_SIZE
    hop_size: int = DEFAULT_HOP_SIZE
    window: str = DEFAULT_WINDOW
    fft_workers: int = -1
    verify_md5: bool = True

    def __post_init__(self):
        validate_frame_geometry(self.window_size, self.hop_size)
        validate_choice(self.window, WINDOW_OPTIONS, "window")
        if self.fft_workers == 0:
            raise ValueError("fft_workers must be non-zero (-1 uses every core)")


@dataclass(frozen=True)
class DisplayParams:
    palette: str = DEFAULT_PALETTE
    dynamic_range_db: float = DEFAULT_DB_RANGE
    frequency_scale: str = DEFAULT_FREQUENCY_SCALE
    interpolation: str = DEFAULT_INTERPOLATION

    def __post_init__(self):
        validate_choice(self.palette, PALETTES, "palette")
        validate_choice(self.frequency_scale, FREQUENCY_SCALES, "frequency scale")
        validate_choice(self.interpolation, INTERPOLATIONS, "interpolation")
        if self.dynamic_range_db <= 0:
            raise ValueError("dynamic_range_db must be positive")


@dataclass(frozen=True)
class ViewerConfig:
    analysis: AnalysisParams = field(default_factory=AnalysisParams)
    display: DisplayParams = field(default_factory=DisplayParams)
    window_geometry: Tuple[int, int] = DEFAULT_WINDOW_GEOMETRY
    log_level: str = "WARNING"

    def __post_init__(self):
        validate_choice(self.log_level, LOG_LEVELS, "log level")

    @classmethod
    def from_dict(cls, data: Dict) -> "ViewerConfig":
        analysis = data.get("analysis", {})
        display = data.get("display", {})
        geometry = data.get("window_geometry", DEFAULT_WINDOW_GEOMETRY)
        return cls(
            analysis=AnalysisParams(
                window_size=int(analysis.get("window_size", DEFAULT_WINDOW_SIZE)),
                hop_size=int(analysis.get("hop_size", DEFAULT_HOP_SIZE)),
                window=str(analysis.get("window", DEFAULT_WINDOW)),
                fft_workers=int(analysis.get("fft_workers", -1)),
                verify_md5=bool(analysis.get("verify_md5", True)),
            ),
            display=DisplayParams(
                palette=str(display.get("palette", DEFAULT_PALETTE)),
                dynamic_range_db=float(display.get("dynamic_range_db", DEFAULT_DB_RANGE)),
                frequency_scale=str(display.get("frequency_scale", DEFAULT_FREQUENCY_SCALE)),
                interpolation=str(display.get("interpolation", DEFAULT_INTERPOLATION)),
            ),
            window_geometry=(int(geometry[0]), int(geometry[1])),
            log_level=str(data.get("log_level", "WARNING")).upper(),
        )

    def to_dict(self) -> Dict:
        return {
            "analysis": {
                "window_size": self.analysis.window_size,
                "hop_size": self.analysis.hop_size,
                "window": self.analysis.window,
                "fft_workers": self.analysis.fft_workers,
                "verify_md5": self.analysis.verify_md5,
            },
            "display": {
                "palette": self.display.palette,
                "dynamic_range_db": self.display.dynamic_range_db,
                "frequency_scale": self.display.frequency_scale,
                "interpolation": self.display.interpolation,
            },
            "window_geometry": list(self.window_geometry),
            "log_level": self.log_level,
        }


def load_config(config_path: Optional[Path] = None) -> ViewerConfig:
    config_path = Path(config_path) if config_path else default_config_path()
    if not config_path.exists():
        logger.debug("No config at %s, using defaults", config_path)
        return ViewerConfig()
    with config_path.open("r", encoding="utf-8") as f:
        raw = json.load(f)
    return ViewerConfig.from_dict(raw)


def save_config(config: ViewerConfig, config_path: Optional[Path] = None) -> Path:
    config_path = Path(config_path) if config_path else default_config_path()
    config_path.parent.mkdir(parents=True, exist_ok=True)
    with config_path.open("w", encoding="utf-8") as f:
        json.dump(config.to_dict(), f, indent=2)
    return config_path
