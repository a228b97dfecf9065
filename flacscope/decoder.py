"""
FLAC decoder.

Parses the container (optional ID3v2 prefix, ``fLaC`` marker, metadata
blocks) and every audio frame, verifying the header CRC-8, the frame CRC-16
and, when present, the STREAMINFO MD5 signature. Samples are returned as
float32 in [-1, 1) regardless of the source bit depth.

Streams that carry an MD5 signature take a fast path: frames are walked by
their sync codes and checksums without decoding subframes, the samples come
from libsndfile, and they are only accepted when they reproduce the MD5.
Anything else, including every damaged file, goes through the native
subframe decoder, which names the exact fault.
"""
import hashlib
import io
import logging
import re
from dataclasses import dataclass
from operator import mul
from pathlib import Path
from typing import List, Optional, Tuple, Union

import numpy as np
import soundfile as sf

from .bitstream import BitReader, crc8, crc16
from .errors import (
    ChecksumMismatch,
    CorruptFrame,
    DecodeError,
    NotAContainer,
    Truncated,
    UnsupportedSubformat,
)

logger = logging.getLogger(__name__)

FLAC_MAGIC = b"fLaC"
SUPPORTED_EXTENSIONS = (".flac",)
MIN_BITS_PER_SAMPLE = 4
MAX_BITS_PER_SAMPLE = 24
STREAMINFO_LENGTH = 34
ID3V1_LENGTH = 128

# Bit depths libsndfile hands back losslessly as left-justified int32.
_LIBSNDFILE_BITS = (8, 16, 24)
_SYNC_PATTERN = re.compile(b"\xff[\xf8\xf9]")

_BLOCK_STREAMINFO = 0
_BLOCK_INVALID = 127

_FIXED_BLOCK_SIZES = {1: 192, 2: 576, 3: 1152, 4: 2304, 5: 4608}
_FIXED_BLOCK_SIZES.update({code: 256 << (code - 8) for code in range(8, 16)})
_FIXED_SAMPLE_RATES = {
    1: 88200,
    2: 176400,
    3: 192000,
    4: 8000,
    5: 16000,
    6: 22050,
    7: 24000,
    8: 32000,
    9: 44100,
    10: 48000,
    11: 96000,
}
_FIXED_SAMPLE_SIZES = {1: 8, 2: 12, 4: 16, 5: 20, 6: 24, 7: 32}

INDEPENDENT = "independent"
LEFT_SIDE = "left/side"
RIGHT_SIDE = "right/side"
MID_SIDE = "mid/side"
_STEREO_ASSIGNMENTS = {8: LEFT_SIDE, 9: RIGHT_SIDE, 10: MID_SIDE}


@dataclass(frozen=True)
class StreamInfo:
    min_block_size: int
    max_block_size: int
    min_frame_size: int
    max_frame_size: int
    sample_rate: int
    channels: int
    bits_per_sample: int
    total_samples: int
    md5: bytes

    @property
    def has_md5(self) -> bool:
        return any(self.md5)

    @property
    def duration(self) -> float:
        return self.total_samples / float(self.sample_rate) if self.sample_rate else 0.0


@dataclass(frozen=True)
class FrameHeader:
    offset: int
    block_size: int
    sample_rate: int
    channels: int
    channel_assignment: str
    bits_per_sample: int
    number: int
    variable_block_size: bool


@dataclass(frozen=True)
class AudioStream:
    sample_rate: int
    channels: int
    bits_per_sample: int
    total_frames: int
    samples: np.ndarray
    info: Optional[StreamInfo] = None
    block_offsets: Tuple[int, ...] = ()

    def __post_init__(self):
        if self.sample_rate <= 0:
            raise ValueError("sample_rate must be positive")
        if self.samples.ndim != 2 or self.samples.shape != (self.total_frames, self.channels):
            raise ValueError("samples must have shape (total_frames, channels)")
        if self.samples.flags.writeable:
            # Freeze a private copy; the caller's buffer stays theirs.
            samples = self.samples.copy()
            samples.setflags(write=False)
            object.__setattr__(self, "samples", samples)

    @classmethod
    def from_array(cls, samples: np.ndarray, sample_rate: int, bits_per_sample: int = 32) -> "AudioStream":
        data = np.asarray(samples, dtype=np.float32)
        if data.ndim == 1:
            data = data[:, np.newaxis]
        return cls(
            sample_rate=int(sample_rate),
            channels=int(data.shape[1]),
            bits_per_sample=bits_per_sample,
            total_frames=int(data.shape[0]),
            samples=data,
        )

    @property
    def duration(self) -> float:
        return self.total_frames / float(self.sample_rate)


def is_supported_file(path: Union[str, Path]) -> bool:
    return str(path).lower().endswith(SUPPORTED_EXTENSIONS)


def _id3v2_length(data: bytes) -> int:
    if len(data) < 10 or data[:3] != b"ID3":
        return 0
    size = 0
    for byte in data[6:10]:
        size = (size << 7) | (byte & 0x7F)
    footer = 10 if data[5] & 0x10 else 0
    return 10 + size + footer


def _parse_streaminfo(body: bytes, offset: int) -> StreamInfo:
    reader = BitReader(body)
    info = StreamInfo(
        min_block_size=reader.read(16),
        max_block_size=reader.read(16),
        min_frame_size=reader.read(24),
        max_frame_size=reader.read(24),
        sample_rate=reader.read(20),
        channels=reader.read(3) + 1,
        bits_per_sample=reader.read(5) + 1,
        total_samples=reader.read(36),
        md5=reader.read_bytes(16),
    )
    if info.sample_rate == 0:
        raise UnsupportedSubformat("STREAMINFO declares a sample rate of 0 Hz", offset=offset)
    if not MIN_BITS_PER_SAMPLE <= info.bits_per_sample <= MAX_BITS_PER_SAMPLE:
        raise UnsupportedSubformat(
            f"{info.bits_per_sample}-bit audio with {info.channels} channel(s) is not supported", offset=offset
        )
    return info


def _read_metadata(reader: BitReader) -> StreamInfo:
    info = None
    while True:
        block_offset = reader.byte_position
        is_last = reader.read(1)
        block_type = reader.read(7)
        length = reader.read(24)
        if info is None and block_type != _BLOCK_STREAMINFO:
            raise NotAContainer("first metadata block is not STREAMINFO", offset=block_offset)
        if block_type == _BLOCK_INVALID:
            raise NotAContainer("invalid metadata block type", offset=block_offset)
        body = reader.read_bytes(length)
        if block_type == _BLOCK_STREAMINFO and info is None:
            if length < STREAMINFO_LENGTH:
                raise NotAContainer("STREAMINFO block is too short", offset=block_offset)
            info = _parse_streaminfo(body, block_offset)
        if is_last:
            return info


def _open(data: bytes) -> Tuple[BitReader, StreamInfo]:
    start = _id3v2_length(data)
    if data[start:start + 4] != FLAC_MAGIC:
        if data[:4] == b"OggS":
            raise NotAContainer("Ogg-encapsulated streams are not supported, expected a native FLAC file", offset=0)
        raise NotAContainer("missing fLaC stream marker", offset=start)
    reader = BitReader(data, byte_offset=start + 4)
    return reader, _read_metadata(reader)


def _read_frame_header(reader: BitReader, info: StreamInfo) -> FrameHeader:
    start = reader.byte_position
    if reader.read(14) != 0x3FFE:
        raise CorruptFrame("frame sync lost", offset=start)
    reserved = reader.read(1)
    variable_block_size = bool(reader.read(1))
    block_code = reader.read(4)
    rate_code = reader.read(4)
    channel_code = reader.read(4)
    size_code = reader.read(3)
    reserved |= reader.read(1)
    try:
        number = reader.read_coded_number()
    except ValueError as exc:
        raise CorruptFrame(str(exc), offset=start) from exc

    if block_code == 6:
        block_size = reader.read(8) + 1
    elif block_code == 7:
        block_size = reader.read(16) + 1
    else:
        block_size = _FIXED_BLOCK_SIZES.get(block_code)

    if rate_code == 0:
        sample_rate = info.sample_rate
    elif rate_code == 12:
        sample_rate = reader.read(8) * 1000
    elif rate_code == 13:
        sample_rate = reader.read(16)
    elif rate_code == 14:
        sample_rate = reader.read(16) * 10
    else:
        sample_rate = _FIXED_SAMPLE_RATES.get(rate_code)

    header_end = reader.byte_position
    expected_crc = reader.read(8)
    if crc8(reader.data[start:header_end]) != expected_crc:
        raise ChecksumMismatch("frame header CRC-8 mismatch", offset=start)

    if reserved:
        raise UnsupportedSubformat("reserved frame header bit is set", offset=start)
    if block_size is None:
        raise UnsupportedSubformat("reserved block size code", offset=start)
    if sample_rate is None:
        raise UnsupportedSubformat("reserved sample rate code", offset=start)
    if channel_code > 10:
        raise UnsupportedSubformat("reserved channel assignment", offset=start)
    if size_code == 0:
        bits = info.bits_per_sample
    elif size_code in _FIXED_SAMPLE_SIZES:
        bits = _FIXED_SAMPLE_SIZES[size_code]
    else:
        raise UnsupportedSubformat("reserved sample size code", offset=start)

    channels = channel_code + 1 if channel_code < 8 else 2
    if channels != info.channels:
        raise UnsupportedSubformat(
            f"frame has {channels} channel(s), stream declares {info.channels}", offset=start
        )
    if bits != info.bits_per_sample:
        raise UnsupportedSubformat(
            f"frame has {bits} bits per sample, stream declares {info.bits_per_sample}", offset=start
        )
    if sample_rate != info.sample_rate:
        raise UnsupportedSubformat(
            f"sample rate changes mid-stream ({sample_rate} Hz, stream declares {info.sample_rate} Hz)",
            offset=start,
        )

    return FrameHeader(
        offset=start,
        block_size=block_size,
        sample_rate=sample_rate,
        channels=channels,
        channel_assignment=_STEREO_ASSIGNMENTS.get(channel_code, INDEPENDENT),
        bits_per_sample=bits,
        number=number,
        variable_block_size=variable_block_size,
    )


def _read_residual(reader: BitReader, block_size: int, order: int) -> List[int]:
    offset = reader.byte_position
    method = reader.read(2)
    if method > 1:
        raise UnsupportedSubformat("reserved residual coding method", offset=offset)
    parameter_bits = 4 if method == 0 else 5
    escape = (1 << parameter_bits) - 1
    partition_order = reader.read(4)
    partition_size = block_size >> partition_order
    if partition_size << partition_order != block_size or partition_size < order:
        raise CorruptFrame("residual partitions do not fit the block", offset=offset)

    residual: List[int] = []
    for partition in range(1 << partition_order):
        count = partition_size - order if partition == 0 else partition_size
        parameter = reader.read(parameter_bits)
        if parameter == escape:
            raw_bits = reader.read(5)
            residual.extend(reader.read_signed(raw_bits) for _ in range(count))
        else:
            residual.extend(reader.read_rice(count, parameter))
    return residual


def _restore_fixed(warmup: List[int], residual: List[int]) -> np.ndarray:
    """Undo a fixed polynomial predictor: the residual is the order-th difference of the signal."""
    order = len(warmup)
    tail = np.asarray(residual, dtype=np.int64)
    if order == 0:
        return tail
    warm = np.asarray(warmup, dtype=np.int64)
    levels = [warm]
    for _ in range(order - 1):
        levels.append(np.diff(levels[-1]))
    # levels[j][-1] is the j-th difference at the last warm-up position.
    for level in reversed(levels):
        full = level[-1] + np.concatenate((np.zeros(1, dtype=np.int64), np.cumsum(tail)))
        tail = full[1:]
    return np.concatenate((warm, tail))


def _restore_lpc(
    warmup: List[int], coefficients: List[int], shift: int, residual: List[int], bits: int
) -> np.ndarray:
    order = len(coefficients)
    reversed_coefficients = coefficients[::-1]
    low = -(1 << (bits - 1))
    high = (1 << (bits - 1)) - 1
    samples = list(warmup)
    append = samples.append
    for index, value in enumerate(residual):
        prediction = sum(map(mul, reversed_coefficients, samples[index:index + order]))
        sample = value + (prediction >> shift)
        # An unstable predictor grows without bound; stop at the first sample out of range.
        if not low <= sample <= high:
            raise ValueError(f"LPC prediction leaves the {bits}-bit sample range")
        append(sample)
    return np.asarray(samples, dtype=np.int64)


def _check_range(samples: np.ndarray, bits: int) -> None:
    if samples.size and (samples.min() < -(1 << (bits - 1)) or samples.max() >= 1 << (bits - 1)):
        raise ValueError(f"restored samples leave the {bits}-bit sample range")


def _read_subframe(reader: BitReader, block_size: int, bits: int) -> np.ndarray:
    offset = reader.byte_position
    if reader.read(1):
        raise CorruptFrame("subframe padding bit is set", offset=offset)
    kind = reader.read(6)
    wasted = reader.read_unary() + 1 if reader.read(1) else 0
    bits -= wasted
    if bits <= 0:
        raise CorruptFrame("wasted bits exceed the sample size", offset=offset)

    if kind == 0:
        samples = np.full(block_size, reader.read_signed(bits), dtype=np.int64)
    elif kind == 1:
        samples = np.array([reader.read_signed(bits) for _ in range(block_size)], dtype=np.int64)
    elif 8 <= kind <= 12:
        order = kind - 8
        if order > block_size:
            raise CorruptFrame("predictor order exceeds the block size", offset=offset)
        warmup = [reader.read_signed(bits) for _ in range(order)]
        residual = _read_residual(reader, block_size, order)
        try:
            samples = _restore_fixed(warmup, residual)
            _check_range(samples, bits)
        except (ValueError, OverflowError) as exc:
            raise CorruptFrame(str(exc), offset=offset) from exc
    elif kind >= 32:
        order = kind - 31
        if order > block_size:
            raise CorruptFrame("predictor order exceeds the block size", offset=offset)
        warmup = [reader.read_signed(bits) for _ in range(order)]
        precision = reader.read(4) + 1
        if precision == 16:
            raise UnsupportedSubformat("invalid LPC coefficient precision", offset=offset)
        shift = reader.read_signed(5)
        if shift < 0:
            raise UnsupportedSubformat("negative LPC shift", offset=offset)
        coefficients = [reader.read_signed(precision) for _ in range(order)]
        residual = _read_residual(reader, block_size, order)
        try:
            samples = _restore_lpc(warmup, coefficients, shift, residual, bits)
        except ValueError as exc:
            raise CorruptFrame(str(exc), offset=offset) from exc
    else:
        raise UnsupportedSubformat(f"reserved subframe type {kind}", offset=offset)

    if wasted:
        samples = samples << wasted
    return samples


def _side_channel(assignment: str) -> Optional[int]:
    if assignment in (LEFT_SIDE, MID_SIDE):
        return 1
    if assignment == RIGHT_SIDE:
        return 0
    return None


def _decorrelate(assignment: str, channels: List[np.ndarray]) -> List[np.ndarray]:
    if assignment == LEFT_SIDE:
        left, side = channels
        return [left, left - side]
    if assignment == RIGHT_SIDE:
        side, right = channels
        return [side + right, right]
    if assignment == MID_SIDE:
        mid, side = channels
        mid = (mid << 1) | (side & 1)
        return [(mid + side) >> 1, (mid - side) >> 1]
    return channels


def _read_frame(reader: BitReader, info: StreamInfo) -> Tuple[FrameHeader, List[np.ndarray]]:
    header = _read_frame_header(reader, info)
    side = _side_channel(header.channel_assignment)
    channels = []
    for channel in range(header.channels):
        bits = header.bits_per_sample + (1 if channel == side else 0)
        channels.append(_read_subframe(reader, header.block_size, bits))
    reader.align()
    crc_end = reader.byte_position
    expected_crc = reader.read(16)
    if crc16(reader.data[header.offset:crc_end]) != expected_crc:
        raise ChecksumMismatch("frame CRC-16 mismatch", offset=header.offset)
    return header, _decorrelate(header.channel_assignment, channels)


def _at_stream_end(reader: BitReader) -> bool:
    if reader.at_end():
        return True
    # A trailing ID3v1 tag is common on files tagged by older players.
    position = reader.byte_position
    return reader.bytes_left() == ID3V1_LENGTH and reader.data[position:position + 3] == b"TAG"


def _md5_signature(samples: np.ndarray, bits_per_sample: int) -> bytes:
    width = (bits_per_sample + 7) // 8
    if width == 1:
        raw = samples.astype("<i1").tobytes()
    elif width == 2:
        raw = samples.astype("<i2").tobytes()
    elif width == 3:
        raw = np.ascontiguousarray(samples.astype("<i4")).view(np.uint8).reshape(-1, 4)[:, :3].tobytes()
    else:
        raw = samples.astype("<i4").tobytes()
    return hashlib.md5(raw).digest()


class _FrameSequence:
    """Frame numbering seen so far; a dropped, repeated or reordered frame breaks the count."""

    def __init__(self):
        self.samples = 0
        self.offsets: List[int] = []
        self._variable: Optional[bool] = None
        self._first_number = 0

    def add(self, header: FrameHeader) -> None:
        # Fixed-blocksize streams number frames, variable-blocksize streams number samples.
        position = self.samples if header.variable_block_size else len(self.offsets)
        if self._variable is None:
            self._variable = header.variable_block_size
            self._first_number = header.number - position
        elif header.variable_block_size != self._variable:
            raise CorruptFrame("blocking strategy changes mid-stream", offset=header.offset)
        expected = self._first_number + position
        if header.number != expected:
            raise CorruptFrame(
                f"frame number {header.number} is out of sequence, expected {expected}", offset=header.offset
            )
        self.offsets.append(header.offset)
        self.samples += header.block_size


def _audio_end(data: bytes, position: int) -> int:
    end = len(data)
    if end - position >= ID3V1_LENGTH and data[end - ID3V1_LENGTH:end - ID3V1_LENGTH + 3] == b"TAG":
        return end - ID3V1_LENGTH
    return end


def _is_frame_start(data: bytes, position: int, info: StreamInfo) -> bool:
    try:
        _read_frame_header(BitReader(data, position), info)
    except DecodeError:
        return False
    return True


def _frame_end(data: bytes, header: FrameHeader, search_from: int, audio_end: int, info: StreamInfo) -> int:
    """
    Locate the end of a frame without decoding its subframes.

    The frame ends at the first later sync code (or the end of the audio)
    whose two preceding bytes hold the CRC-16 of everything since the frame
    start. The CRC is carried forward between candidates, so a sync pattern
    that turns up inside compressed data costs nothing extra.
    """
    crc = 0
    checked = header.offset
    position = search_from
    while True:
        match = _SYNC_PATTERN.search(data, position, audio_end)
        boundary = match.start() if match else audio_end
        crc = crc16(data[checked:boundary - 2], crc)
        checked = boundary - 2
        if crc == int.from_bytes(data[checked:boundary], "big"):
            if match is None or _is_frame_start(data, boundary, info):
                return boundary
        if match is None:
            raise ChecksumMismatch("frame CRC-16 mismatch", offset=header.offset)
        position = boundary + 1


def _scan_frames(reader: BitReader, info: StreamInfo) -> Tuple[_FrameSequence, int]:
    data = reader.data
    audio_end = _audio_end(data, reader.byte_position)
    sequence = _FrameSequence()
    position = reader.byte_position
    while position < audio_end:
        frame_reader = BitReader(data, position)
        header = _read_frame_header(frame_reader, info)
        sequence.add(header)
        position = _frame_end(data, header, frame_reader.byte_position, audio_end, info)
    return sequence, audio_end


def _read_libsndfile(data: bytes, info: StreamInfo) -> Optional[np.ndarray]:
    try:
        with sf.SoundFile(io.BytesIO(data)) as audio:
            if audio.samplerate != info.sample_rate or audio.channels != info.channels:
                return None
            raw = audio.read(dtype="int32", always_2d=True)
    except RuntimeError as exc:
        logger.debug("libsndfile could not decode the stream: %s", exc)
        return None
    return raw.astype(np.int64) >> (32 - info.bits_per_sample)


def _decode_fast(reader: BitReader, info: StreamInfo) -> Optional[Tuple[np.ndarray, List[int]]]:
    """Checksummed frames plus libsndfile samples that reproduce the MD5, or None."""
    if not info.has_md5 or info.bits_per_sample not in _LIBSNDFILE_BITS:
        return None
    try:
        sequence, audio_end = _scan_frames(reader, info)
    except DecodeError as exc:
        logger.debug("Frame scan stopped at byte %s (%s), using the native decoder", exc.offset, exc.message)
        return None
    expected = info.total_samples or sequence.samples
    if sequence.samples < expected:
        return None
    integers = _read_libsndfile(reader.data[_id3v2_length(reader.data):audio_end], info)
    if integers is None or integers.shape[0] != expected:
        return None
    if _md5_signature(integers, info.bits_per_sample) != info.md5:
        logger.debug("libsndfile output does not match the MD5 signature, using the native decoder")
        return None
    return integers, sequence.offsets


def _decode_native(reader: BitReader, info: StreamInfo, verify_md5: bool) -> Tuple[np.ndarray, List[int]]:
    chunks: List[List[np.ndarray]] = [[] for _ in range(info.channels)]
    sequence = _FrameSequence()
    while not _at_stream_end(reader):
        header, block = _read_frame(reader, info)
        sequence.add(header)
        for channel, samples in enumerate(block):
            chunks[channel].append(samples)

    if info.total_samples and sequence.samples < info.total_samples:
        raise Truncated(
            f"stream holds {sequence.samples} of {info.total_samples} declared samples",
            offset=reader.byte_position,
        )

    if sequence.samples:
        integers = np.stack([np.concatenate(channel) for channel in chunks], axis=1)
    else:
        integers = np.zeros((0, info.channels), dtype=np.int64)
    if info.total_samples:
        integers = integers[: info.total_samples]

    if verify_md5 and info.has_md5 and _md5_signature(integers, info.bits_per_sample) != info.md5:
        raise ChecksumMismatch("decoded audio does not match the STREAMINFO MD5 signature")
    return integers, sequence.offsets


def _decode(data: bytes, verify_md5: bool, fast: bool) -> AudioStream:
    reader, info = _open(data)
    decoded = _decode_fast(reader, info) if fast and verify_md5 else None
    if decoded is None:
        integers, offsets = _decode_native(reader, info, verify_md5)
        logger.debug("Decoded %d frame(s) natively, %d sample(s) per channel", len(offsets), integers.shape[0])
    else:
        integers, offsets = decoded
        logger.debug("Decoded %d frame(s) via libsndfile, %d sample(s) per channel", len(offsets), integers.shape[0])

    scale = np.float32(1.0 / (1 << (info.bits_per_sample - 1)))
    samples = np.ascontiguousarray(integers.astype(np.float32) * scale)
    samples.setflags(write=False)
    return AudioStream(
        sample_rate=info.sample_rate,
        channels=info.channels,
        bits_per_sample=info.bits_per_sample,
        total_frames=int(samples.shape[0]),
        samples=samples,
        info=info,
        block_offsets=tuple(offsets),
    )


def decode_bytes(data: bytes, source: str = "<memory>", verify_md5: bool = True, fast: bool = True) -> AudioStream:
    """
    Decode a complete FLAC file held in memory.
    Raises a DecodeError subclass naming ``source`` when the data is unusable.

    ``fast=False`` forces the native subframe decoder even for streams that
    qualify for the libsndfile path.
    """
    try:
        return _decode(bytes(data), verify_md5, fast)
    except DecodeError as exc:
        exc.with_source(source)
        raise


def decode(path: Union[str, Path], verify_md5: bool = True, fast: bool = True) -> AudioStream:
    path = Path(path)
    stream = decode_bytes(path.read_bytes(), source=path.name, verify_md5=verify_md5, fast=fast)
    logger.info(
        "Decoded %s: %d Hz, %d channel(s), %d-bit, %d frames (%.2fs)",
        path.name,
        stream.sample_rate,
        stream.channels,
        stream.bits_per_sample,
        stream.total_frames,
        stream.duration,
    )
    return stream


def read_stream_info(path: Union[str, Path]) -> StreamInfo:
    """Parse only the container header and STREAMINFO block."""
    path = Path(path)
    try:
        _, info = _open(path.read_bytes())
    except DecodeError as exc:
        exc.with_source(path.name)
        raise
    return info
