import threading
from pathlib import Path

from flacscope.config import AnalysisParams
from flacscope.errors import PipelineContractError, Truncated
from flacscope.shell.session import DisplaySlot, PipelineRunner, RunOutcome

PARAMS = AnalysisParams(window_size=512, hop_size=256, fft_workers=1)


def test_slot_only_accepts_the_latest_token():
    slot = DisplaySlot()
    first = slot.issue()
    second = slot.issue()
    assert slot.latest_token == second
    assert not slot.commit(RunOutcome(token=first, path=Path("a.flac"), result="a"))
    assert slot.current is None
    assert slot.commit(RunOutcome(token=second, path=Path("b.flac"), result="b"))
    assert slot.current.result == "b"


def test_slow_superseded_run_never_reaches_the_display():
    release = threading.Event()
    committed = []

    def analyzer(path, params):
        if path.name == "slow.flac":
            release.wait(5)
        return path.name

    with PipelineRunner(PARAMS, on_commit=committed.append, analyzer=analyzer) as runner:
        slow_token, slow = runner.open("slow.flac")
        fast_token, fast = runner.open("fast.flac")
        fast_outcome = fast.result(timeout=5)
        release.set()
        slow_outcome = slow.result(timeout=5)

    assert fast_outcome.ok and fast_outcome.token == fast_token
    assert slow_outcome.superseded and slow_outcome.token == slow_token
    assert [outcome.result for outcome in committed] == ["fast.flac"]
    assert runner.slot.current.result == "fast.flac"


def test_decode_errors_become_error_outcomes():
    committed = []

    def analyzer(path, params):
        raise Truncated("stream ends inside a residual", source=path.name, offset=120)

    with PipelineRunner(PARAMS, on_commit=committed.append, analyzer=analyzer) as runner:
        _, future = runner.open("cut.flac")
        outcome = future.result(timeout=5)

    assert not outcome.ok
    assert outcome.error == "cut.flac: stream ends inside a residual (at byte 120)"
    assert committed == [outcome]
    assert runner.slot.current is outcome


def test_contract_errors_are_reported_not_raised():
    def analyzer(path, params):
        raise PipelineContractError("frame 3 arrived out of order")

    with PipelineRunner(PARAMS, analyzer=analyzer) as runner:
        _, future = runner.open("x.flac")
        outcome = future.result(timeout=5)

    assert not outcome.ok
    assert "out of order" in outcome.error


def test_unexpected_errors_still_reach_the_display():
    committed = []

    def analyzer(path, params):
        raise RuntimeError("out of scratch space")

    with PipelineRunner(PARAMS, on_commit=committed.append, analyzer=analyzer) as runner:
        _, future = runner.open("huge.flac")
        outcome = future.result(timeout=5)

    assert not outcome.ok
    assert outcome.error.startswith("Unexpected error while analyzing huge.flac")
    assert "out of scratch space" in outcome.error
    assert committed == [outcome]


def test_missing_file_is_reported(tmp_path):
    with PipelineRunner(PARAMS) as runner:
        _, future = runner.open(tmp_path / "missing.flac")
        outcome = future.result(timeout=5)
    assert not outcome.ok
    assert outcome.error.startswith("missing.flac: ")


def test_real_file_is_analyzed(mono_flac):
    with PipelineRunner(PARAMS) as runner:
        _, future = runner.open(mono_flac)
        outcome = future.result(timeout=30)
    assert outcome.ok
    assert outcome.result.title == mono_flac.name
    assert outcome.result.spectrogram.frame_count == 16
