"""
Run bookkeeping for the viewer.

Every file open gets a monotonically increasing token. Analyses run on a
worker pool; a finished run is committed to the display slot only while its
token is still the latest one issued, so a slow, superseded file can never
replace the file the user opened after it.
"""
import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional, Tuple, Union

from ..config import AnalysisParams
from ..errors import DecodeError, PipelineContractError
from ..pipeline import AnalysisResult, analyze

logger = logging.getLogger(__name__)

RunToken = int


@dataclass(frozen=True)
class RunOutcome:
    token: RunToken
    path: Path
    result: Optional[AnalysisResult] = None
    error: Optional[str] = None
    superseded: bool = False

    @property
    def ok(self) -> bool:
        return self.result is not None


class DisplaySlot:
    """Holds the latest issued token and the outcome currently on display."""

    def __init__(self):
        self._lock = threading.Lock()
        self._latest: RunToken = 0
        self._current: Optional[RunOutcome] = None

    def issue(self) -> RunToken:
        with self._lock:
            self._latest += 1
            return self._latest

    @property
    def latest_token(self) -> RunToken:
        with self._lock:
            return self._latest

    @property
    def current(self) -> Optional[RunOutcome]:
        with self._lock:
            return self._current

    def is_current(self, token: RunToken) -> bool:
        with self._lock:
            return token == self._latest

    def commit(self, outcome: RunOutcome) -> bool:
        with self._lock:
            if outcome.token != self._latest:
                logger.debug("Discarding result of superseded run %d (latest %d)", outcome.token, self._latest)
                return False
            self._current = outcome
            return True


Analyzer = Callable[[Path, AnalysisParams], AnalysisResult]


class PipelineRunner:
    def __init__(
        self,
        params: Optional[AnalysisParams] = None,
        slot: Optional[DisplaySlot] = None,
        on_commit: Optional[Callable[[RunOutcome], None]] = None,
        analyzer: Analyzer = analyze,
        max_workers: int = 2,
    ):
        self.params = params or AnalysisParams()
        self.slot = slot or DisplaySlot()
        self._on_commit = on_commit
        self._analyzer = analyzer
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="flacscope-pipeline")

    def __enter__(self) -> "PipelineRunner":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.shutdown()
        return False

    def open(self, path: Union[str, Path]) -> Tuple[RunToken, "Future[RunOutcome]"]:
        token = self.slot.issue()
        path = Path(path)
        logger.info("Run %d: opening %s", token, path)
        return token, self._executor.submit(self._run, token, path)

    def _run(self, token: RunToken, path: Path) -> RunOutcome:
        if not self.slot.is_current(token):
            return RunOutcome(token=token, path=path, superseded=True)
        try:
            outcome = RunOutcome(token=token, path=path, result=self._analyzer(path, self.params))
        except DecodeError as exc:
            logger.warning("Run %d: cannot decode %s: %s", token, path, exc)
            outcome = RunOutcome(token=token, path=path, error=str(exc))
        except OSError as exc:
            logger.warning("Run %d: cannot read %s: %s", token, path, exc)
            outcome = RunOutcome(token=token, path=path, error=f"{path.name}: {exc.strerror or exc}")
        except PipelineContractError as exc:
            logger.exception("Run %d: analysis of %s aborted", token, path)
            outcome = RunOutcome(token=token, path=path, error=f"Internal error while analyzing {path.name}: {exc}")
        except Exception as exc:
            # Only this run is lost; the window must still hear back.
            logger.exception("Run %d: unexpected failure while analyzing %s", token, path)
            outcome = RunOutcome(token=token, path=path, error=f"Unexpected error while analyzing {path.name}: {exc!r}")

        if not self.slot.commit(outcome):
            return RunOutcome(token=token, path=path, superseded=True)
        if self._on_commit:
            self._on_commit(outcome)
        return outcome

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait, cancel_futures=True)
