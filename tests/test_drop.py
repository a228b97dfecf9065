from pathlib import Path

import pytest

from flacscope.errors import UnsupportedDrop
from flacscope.shell.drop import PathDrop, UriListDrop, normalize_drop, payload_from_mime, uri_to_path


def test_plain_path_with_trailing_newline():
    assert normalize_drop(PathDrop("/music/a.flac\n")) == Path("/music/a.flac")


def test_plain_text_carrying_a_file_uri():
    assert normalize_drop(PathDrop("file:///music/my%20song.flac\r\n")) == Path("/music/my song.flac")


def test_home_directory_is_expanded(monkeypatch, tmp_path):
    monkeypatch.setenv("HOME", str(tmp_path))
    assert normalize_drop(PathDrop("~/a.flac")) == tmp_path / "a.flac"


def test_uri_list_skips_comments_and_takes_the_first_file():
    payload = payload_from_mime("text/uri-list", b"# dragged from files\r\nfile:///a.flac\r\nfile:///b.flac\r\n")
    assert isinstance(payload, UriListDrop)
    assert payload.uris == ("file:///a.flac", "file:///b.flac")
    assert normalize_drop(payload) == Path("/a.flac")


def test_mime_parameters_are_ignored():
    payload = payload_from_mime("text/plain;charset=utf-8", "/tmp/x.flac")
    assert payload == PathDrop("/tmp/x.flac")


def test_localhost_uri_is_local():
    assert uri_to_path("file://localhost/srv/x.flac") == Path("/srv/x.flac")


@pytest.mark.parametrize(
    "payload",
    [
        PathDrop(""),
        PathDrop("  \n"),
        UriListDrop(()),
        UriListDrop(("https://example.com/a.flac",)),
        UriListDrop(("file://otherhost/a.flac",)),
        PathDrop("smb://server/share/a.flac"),
    ],
)
def test_unusable_drops_are_rejected(payload):
    with pytest.raises(UnsupportedDrop):
        normalize_drop(payload)


def test_unknown_mime_type_is_rejected():
    with pytest.raises(UnsupportedDrop):
        payload_from_mime("image/png", b"\x89PNG")
