import argparse
import dataclasses
import logging
import sys
from pathlib import Path
from typing import List, Optional

from .config import LOG_LEVELS, WINDOW_OPTIONS, WINDOW_SIZE_OPTIONS, ViewerConfig, load_config
from .errors import DecodeError
from .pipeline import analyze
from .spectrogram_engine import FREQUENCY_SCALES, PALETTES
from .utils import format_frequency, format_seconds, hz_per_bin, ms_per_hop

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def positive_int(value: str) -> int:
    try:
        parsed = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"{value!r} is not an integer")
    if parsed <= 0:
        raise argparse.ArgumentTypeError(f"{value!r} must be positive")
    return parsed


def positive_float(value: str) -> float:
    try:
        parsed = float(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"{value!r} is not a number")
    if parsed <= 0:
        raise argparse.ArgumentTypeError(f"{value!r} must be positive")
    return parsed


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="flacscope", description="Spectrogram viewer for FLAC files")
    parser.add_argument("path", nargs="?", type=Path, help="FLAC file to open")
    parser.add_argument("--config", type=Path, default=None, help="Path to a JSON config file")
    parser.add_argument(
        "--window-size",
        type=positive_int,
        help=f"Samples per analysis frame (typical: {', '.join(map(str, WINDOW_SIZE_OPTIONS))})",
    )
    parser.add_argument("--hop-size", type=positive_int, help="Samples between frame starts")
    parser.add_argument("--window", choices=WINDOW_OPTIONS, help="Window function applied to each frame")
    parser.add_argument("--palette", choices=PALETTES, help="Colormap used for the spectrogram")
    parser.add_argument("--dynamic-range", type=positive_float, help="Visible range in dB below the loudest bin")
    parser.add_argument("--frequency-scale", choices=FREQUENCY_SCALES, help="Vertical frequency axis")
    parser.add_argument("--log-level", choices=LOG_LEVELS, type=str.upper, help="Logging verbosity")
    parser.add_argument(
        "--info",
        action="store_true",
        help="Decode and analyze the file, print a summary and exit without opening a window",
    )
    return parser


def configure_logging(level: str) -> None:
    logging.basicConfig(level=getattr(logging, level), format=LOG_FORMAT)


def apply_overrides(config: ViewerConfig, args: argparse.Namespace) -> ViewerConfig:
    analysis = {}
    if args.window_size is not None:
        analysis["window_size"] = args.window_size
    if args.hop_size is not None:
        analysis["hop_size"] = args.hop_size
    if args.window is not None:
        analysis["window"] = args.window

    display = {}
    if args.palette is not None:
        display["palette"] = args.palette
    if args.dynamic_range is not None:
        display["dynamic_range_db"] = args.dynamic_range
    if args.frequency_scale is not None:
        display["frequency_scale"] = args.frequency_scale

    return dataclasses.replace(
        config,
        analysis=dataclasses.replace(config.analysis, **analysis),
        display=dataclasses.replace(config.display, **display),
        log_level=args.log_level or config.log_level,
    )


def print_info(path: Path, config: ViewerConfig) -> int:
    try:
        result = analyze(path, config.analysis)
    except DecodeError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1
    except OSError as exc:
        print(f"error: {path}: {exc.strerror or exc}", file=sys.stderr)
        return 1
    except Exception as exc:
        logger.exception("Unexpected failure while analyzing %s", path)
        print(f"error: {path}: unexpected {exc!r}", file=sys.stderr)
        return 1

    stream = result.stream
    params = config.analysis
    print(f"File:        {path}")
    print(f"Sample rate: {stream.sample_rate} Hz")
    print(f"Channels:    {stream.channels}")
    print(f"Bit depth:   {stream.bits_per_sample}")
    print(f"Duration:    {format_seconds(stream.duration)} ({stream.total_frames} samples)")
    if stream.info is not None:
        print(f"MD5:         {stream.info.md5.hex() if stream.info.has_md5 else 'not set'}")
        print(f"Blocks:      {len(stream.block_offsets)}")
    print(
        f"Frames:      {result.spectrogram.frame_count} x {result.spectrogram.bin_count} bins "
        f"({hz_per_bin(stream.sample_rate, params.window_size):.2f} Hz/bin, "
        f"{ms_per_hop(params.hop_size, stream.sample_rate):.1f} ms/frame)"
    )
    if result.spectrogram.frame_count:
        print(f"Dominant:    {format_frequency(result.dominant_frequency())}")
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config = apply_overrides(load_config(args.config), args)
    except (ValueError, OSError) as exc:
        parser.error(str(exc))
    configure_logging(config.log_level)
    logger.debug("Effective configuration: %s", config.to_dict())

    if args.info:
        if args.path is None:
            parser.error("--info needs a file to analyze")
        return print_info(args.path, config)

    # Qt is only needed for the window, not for --info.
    from .shell.app import run_app

    return run_app(config, args.path)
