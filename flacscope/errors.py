from typing import Optional


class FlacscopeError(Exception):
    """Base class for every error the viewer reports to the user."""


class DecodeError(FlacscopeError):
    """Raised when an audio file cannot be decoded."""

    def __init__(self, message: str, source: Optional[str] = None, offset: Optional[int] = None):
        self.message = message
        self.source = source
        self.offset = offset
        super().__init__(str(self))

    def __str__(self) -> str:
        location = ""
        if self.source:
            location = f"{self.source}: "
        if self.offset is not None:
            return f"{location}{self.message} (at byte {self.offset})"
        return f"{location}{self.message}"

    def with_source(self, source: str) -> "DecodeError":
        self.source = source
        self.args = (str(self),)
        return self


class NotAContainer(DecodeError):
    """The input does not start with a FLAC stream marker."""


class UnsupportedSubformat(DecodeError):
    """The stream is FLAC, but uses a channel/bit-depth layout we do not handle."""


class Truncated(DecodeError):
    """The stream ends in the middle of a metadata block or audio frame."""


class ChecksumMismatch(DecodeError):
    """A frame CRC or the stream MD5 signature does not match the decoded data."""


class CorruptFrame(DecodeError):
    """The frame structure is inconsistent: sync lost or an impossible partition layout."""


class PipelineContractError(FlacscopeError):
    """An internal invariant of the analysis pipeline was violated."""


class UnsupportedDrop(FlacscopeError, ValueError):
    """A drop payload did not contain a usable local file path."""
