"""
Drop payloads as delivered by different file managers.

Some send the dropped file as ``text/plain`` (a bare path or a single URI,
often newline terminated), others as an RFC 2483 ``text/uri-list``. Both are
normalized to one local ``Path`` before anything reaches the pipeline.
"""
from dataclasses import dataclass
from pathlib import Path
from typing import Tuple, Union
from urllib.parse import unquote, urlparse

from ..errors import UnsupportedDrop

TEXT_PLAIN = "text/plain"
URI_LIST = "text/uri-list"
ACCEPTED_MIME_TYPES = (URI_LIST, TEXT_PLAIN)


@dataclass(frozen=True)
class PathDrop:
    text: str


@dataclass(frozen=True)
class UriListDrop:
    uris: Tuple[str, ...]

    @classmethod
    def parse(cls, text: str) -> "UriListDrop":
        lines = (line.strip() for line in text.splitlines())
        return cls(uris=tuple(line for line in lines if line and not line.startswith("#")))


DropPayload = Union[PathDrop, UriListDrop]


def payload_from_mime(mime_type: str, data: Union[str, bytes]) -> DropPayload:
    text = data.decode("utf-8", errors="surrogateescape") if isinstance(data, bytes) else data
    kind = mime_type.split(";", 1)[0].strip().lower()
    if kind == URI_LIST:
        return UriListDrop.parse(text)
    if kind == TEXT_PLAIN:
        return PathDrop(text)
    raise UnsupportedDrop(f"cannot open drops of type {mime_type!r}")


def uri_to_path(uri: str) -> Path:
    parsed = urlparse(uri)
    if parsed.scheme != "file":
        raise UnsupportedDrop(f"only local files can be opened, got {uri!r}")
    if parsed.netloc not in ("", "localhost"):
        raise UnsupportedDrop(f"file is on another host: {parsed.netloc}")
    return Path(unquote(parsed.path))


def normalize_drop(payload: DropPayload) -> Path:
    """Return the single local file a drop refers to; the first one when several were dropped."""
    if isinstance(payload, UriListDrop):
        if not payload.uris:
            raise UnsupportedDrop("the dropped URI list is empty")
        return uri_to_path(payload.uris[0])
    if isinstance(payload, PathDrop):
        text = payload.text.strip()
        if not text:
            raise UnsupportedDrop("the drop carried no file name")
        first = text.splitlines()[0].strip()
        if "://" in first:
            return uri_to_path(first)
        return Path(first).expanduser()
    raise UnsupportedDrop(f"unknown drop payload {payload!r}")
