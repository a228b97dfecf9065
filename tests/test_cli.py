import pytest

from flacscope.cli import apply_overrides, build_parser, main
from flacscope.config import ViewerConfig


@pytest.fixture(autouse=True)
def _isolated_config(monkeypatch, tmp_path):
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "xdg"))


def test_info_prints_summary(mono_flac, capsys):
    code = main(["--info", "--window-size", "512", "--hop-size", "256", str(mono_flac)])
    out = capsys.readouterr().out
    assert code == 0
    assert "Sample rate: 8000 Hz" in out
    assert "Channels:    1" in out
    assert "Bit depth:   16" in out
    assert "Blocks:      " in out
    assert "16 x 257 bins" in out
    assert "Dominant:    1000 Hz" in out


def test_info_reports_decode_errors(tmp_path, mono_flac, capsys):
    broken = tmp_path / "broken.flac"
    broken.write_bytes(mono_flac.read_bytes()[:200])
    code = main(["--info", str(broken)])
    err = capsys.readouterr().err
    assert code == 1
    assert err.startswith("error: broken.flac:")


def test_info_reports_unexpected_failures(monkeypatch, mono_flac, capsys):
    def analyze(path, params):
        raise RuntimeError("worker pool exploded")

    monkeypatch.setattr("flacscope.cli.analyze", analyze)
    code = main(["--info", str(mono_flac)])
    err = capsys.readouterr().err
    assert code == 1
    assert "error:" in err
    assert "worker pool exploded" in err


def test_info_requires_a_path():
    with pytest.raises(SystemExit) as excinfo:
        main(["--info"])
    assert excinfo.value.code == 2


def test_invalid_geometry_is_a_usage_error(mono_flac):
    with pytest.raises(SystemExit) as excinfo:
        main(["--info", "--window-size", "256", "--hop-size", "512", str(mono_flac)])
    assert excinfo.value.code == 2


def test_overrides_replace_only_what_was_given():
    args = build_parser().parse_args(
        ["--palette", "viridis", "--dynamic-range", "80", "--frequency-scale", "linear", "--log-level", "debug"]
    )
    config = apply_overrides(ViewerConfig(), args)
    assert config.display.palette == "viridis"
    assert config.display.dynamic_range_db == 80.0
    assert config.display.frequency_scale == "linear"
    assert config.log_level == "DEBUG"
    assert config.analysis == ViewerConfig().analysis


def test_config_file_is_read(tmp_path, mono_flac, capsys):
    config_path = tmp_path / "custom.json"
    config_path.write_text('{"analysis": {"window_size": 1024, "hop_size": 1024}}')
    assert main(["--info", "--config", str(config_path), str(mono_flac)]) == 0
    assert "4 x 513 bins" in capsys.readouterr().out
