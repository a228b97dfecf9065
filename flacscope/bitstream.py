from typing import List, Tuple

import numpy as np

from .errors import Truncated


def _crc_table(width: int, polynomial: int) -> Tuple[int, ...]:
    top = 1 << (width - 1)
    mask = (1 << width) - 1
    table = []
    for byte in range(256):
        crc = byte << (width - 8)
        for _ in range(8):
            crc = ((crc << 1) ^ polynomial) if crc & top else (crc << 1)
        table.append(crc & mask)
    return tuple(table)


def _crc16_word_table(polynomial: int) -> List[int]:
    # Feeding a 16-bit word into a 16-bit register only depends on (crc ^ word).
    crc = np.arange(1 << 16, dtype=np.uint32)
    for _ in range(16):
        crc = np.where(crc & 0x8000, (crc << 1) ^ polynomial, crc << 1) & 0xFFFF
    return crc.tolist()


# FLAC frame header (CRC-8, x^8 + x^2 + x + 1) and frame (CRC-16, x^16 + x^15 + x^2 + 1).
_CRC8_TABLE = _crc_table(8, 0x07)
_CRC16_TABLE = _crc_table(16, 0x8005)
_CRC16_WORD_TABLE = _crc16_word_table(0x8005)


def crc8(data: bytes) -> int:
    crc = 0
    table = _CRC8_TABLE
    for byte in data:
        crc = table[crc ^ byte]
    return crc


def crc16(data: bytes, crc: int = 0) -> int:
    """CRC-16 of ``data``; pass a previous result as ``crc`` to continue over a following chunk."""
    words = len(data) >> 1
    if words:
        table = _CRC16_WORD_TABLE
        for word in np.frombuffer(data, dtype=">u2", count=words).tolist():
            crc = table[crc ^ word]
    if len(data) & 1:
        crc = ((crc << 8) & 0xFFFF) ^ _CRC16_TABLE[(crc >> 8) ^ data[-1]]
    return crc


class BitReader:
    """
    Big-endian bit reader over an in-memory byte string.

    Positions are absolute bit offsets into ``data`` so errors can report the
    byte offset of the damage in the original file.
    """

    def __init__(self, data: bytes, byte_offset: int = 0):
        self._data = bytes(data)
        self._pos = byte_offset * 8

    @property
    def data(self) -> bytes:
        return self._data

    @property
    def byte_position(self) -> int:
        return self._pos >> 3

    @property
    def is_aligned(self) -> bool:
        return self._pos & 7 == 0

    def bytes_left(self) -> int:
        return len(self._data) - ((self._pos + 7) >> 3)

    def at_end(self) -> bool:
        return self._pos >= len(self._data) * 8

    def _truncated(self, what: str) -> Truncated:
        return Truncated(f"stream ends inside {what}", offset=min(self._pos >> 3, len(self._data)))

    def align(self) -> None:
        self._pos = (self._pos + 7) & ~7

    def read(self, count: int) -> int:
        if count == 0:
            return 0
        end_bit = self._pos + count
        start = self._pos >> 3
        end = (end_bit + 7) >> 3
        if end > len(self._data):
            raise self._truncated("a field")
        chunk = int.from_bytes(self._data[start:end], "big")
        self._pos = end_bit
        return (chunk >> ((end << 3) - end_bit)) & ((1 << count) - 1)

    def read_signed(self, count: int) -> int:
        value = self.read(count)
        if count and value >= 1 << (count - 1):
            value -= 1 << count
        return value

    def read_bytes(self, count: int) -> bytes:
        if not self.is_aligned:
            raise ValueError("read_bytes requires a byte-aligned position")
        start = self._pos >> 3
        if start + count > len(self._data):
            raise self._truncated("a block")
        self._pos += count * 8
        return self._data[start:start + count]

    def skip_bytes(self, count: int) -> None:
        self.read_bytes(count)

    def read_unary(self) -> int:
        """Count zero bits up to and including the terminating one bit."""
        data = self._data
        size = len(data)
        byte_index = self._pos >> 3
        bit_offset = self._pos & 7
        count = 0
        while True:
            if byte_index >= size:
                raise self._truncated("a unary code")
            byte = (data[byte_index] << bit_offset) & 0xFF
            if byte:
                leading = 8 - byte.bit_length()
                self._pos = (byte_index << 3) + bit_offset + leading + 1
                return count + leading
            count += 8 - bit_offset
            byte_index += 1
            bit_offset = 0

    def read_rice(self, count: int, parameter: int) -> List[int]:
        """Decode ``count`` zigzag-folded Rice codes with the given parameter."""
        data = self._data
        size = len(data)
        pos = self._pos
        mask = (1 << parameter) - 1
        values = []
        append = values.append
        for _ in range(count):
            byte_index = pos >> 3
            bit_offset = pos & 7
            quotient = 0
            while True:
                if byte_index >= size:
                    self._pos = size * 8
                    raise self._truncated("a residual")
                byte = (data[byte_index] << bit_offset) & 0xFF
                if byte:
                    leading = 8 - byte.bit_length()
                    quotient += leading
                    pos = (byte_index << 3) + bit_offset + leading + 1
                    break
                quotient += 8 - bit_offset
                byte_index += 1
                bit_offset = 0
            if parameter:
                end_bit = pos + parameter
                end = (end_bit + 7) >> 3
                if end > size:
                    self._pos = pos
                    raise self._truncated("a residual")
                chunk = int.from_bytes(data[pos >> 3:end], "big")
                folded = (quotient << parameter) | ((chunk >> ((end << 3) - end_bit)) & mask)
                pos = end_bit
            else:
                folded = quotient
            append((folded >> 1) ^ -(folded & 1))
        self._pos = pos
        return values

    def read_coded_number(self) -> int:
        """Read the UTF-8 style variable-length frame/sample number of a frame header."""
        first = self.read(8)
        if first < 0x80:
            return first
        length = 0
        while first & (0x80 >> length):
            length += 1
        if length == 1 or length > 7:
            raise ValueError("invalid coded number")
        value = first & (0x7F >> length)
        for _ in range(length - 1):
            continuation = self.read(8)
            if continuation & 0xC0 != 0x80:
                raise ValueError("invalid coded number")
            value = (value << 6) | (continuation & 0x3F)
        return value
