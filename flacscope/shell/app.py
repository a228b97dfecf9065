import logging
import sys
from pathlib import Path
from typing import List, Optional

from PyQt6 import QtCore, QtGui, QtWidgets

from ..axes import Tick, frequency_ticks
from ..config import ViewerConfig
from ..decoder import is_supported_file
from ..errors import UnsupportedDrop
from ..renderer import render_spectrogram
from ..spectrogram_engine import Spectrogram
from .drop import ACCEPTED_MIME_TYPES, URI_LIST, PathDrop, normalize_drop, payload_from_mime
from .session import PipelineRunner, RunOutcome

logger = logging.getLogger(__name__)

APP_TITLE = "flacscope"
TICK_SIZE = 5
TICK_PADDING = 5


class _ResultBridge(QtCore.QObject):
    # Emitted from a worker thread; Qt queues delivery onto the GUI thread.
    delivered = QtCore.pyqtSignal(object)


class SpectrogramView(QtWidgets.QWidget):
    def __init__(self, config: ViewerConfig, parent=None):
        super().__init__(parent)
        self._display = config.display
        self._spectrogram: Optional[Spectrogram] = None
        self._image: Optional[QtGui.QImage] = None
        self._message = "Drop a FLAC file here"
        self._ticks: List[Tick] = []
        self._label_width = self.fontMetrics().horizontalAdvance("00.00 kHz")
        self._rerender_timer = QtCore.QTimer(self)
        self._rerender_timer.setSingleShot(True)
        self._rerender_timer.setInterval(30)
        self._rerender_timer.timeout.connect(self._rerender)
        self.setMinimumSize(200, 120)

    def graph_rect(self) -> QtCore.QRect:
        left = self._label_width + TICK_SIZE + TICK_PADDING + 1
        return QtCore.QRect(left, 1, max(1, self.width() - left - 1), max(1, self.height() - 2))

    def set_spectrogram(self, spectrogram: Spectrogram) -> None:
        self._spectrogram = spectrogram
        self._message = ""
        self._ticks = frequency_ticks(spectrogram.sample_rate, spectrogram.window_size, self._display.frequency_scale)
        self._rerender()

    def show_message(self, message: str) -> None:
        self._spectrogram = None
        self._image = None
        self._ticks = []
        self._message = message
        self.update()

    def resizeEvent(self, event):
        super().resizeEvent(event)
        # Coalesce bursts of resize events into a single re-render.
        if self._spectrogram is not None:
            self._rerender_timer.start()

    def _rerender(self) -> None:
        if self._spectrogram is None:
            return
        rect = self.graph_rect()
        ratio = self.devicePixelRatioF()
        buffer = render_spectrogram(
            self._spectrogram,
            (rect.width(), rect.height()),
            ratio,
            palette=self._display.palette,
            dynamic_range_db=self._display.dynamic_range_db,
            frequency_scale=self._display.frequency_scale,
            interpolation=self._display.interpolation,
        )
        image = QtGui.QImage(
            buffer.data, buffer.width, buffer.height, buffer.stride, QtGui.QImage.Format.Format_RGB888
        ).copy()
        image.setDevicePixelRatio(ratio)
        self._image = image
        self.update()

    def paintEvent(self, event):
        painter = QtGui.QPainter(self)
        painter.fillRect(self.rect(), QtGui.QColor(0, 0, 0))
        rect = self.graph_rect()
        if self._image is not None:
            if abs(self._image.devicePixelRatio() - self.devicePixelRatioF()) > 1e-6:
                self._rerender_timer.start()
            # A stale image is stretched until the re-render for the new size lands.
            painter.drawImage(QtCore.QRectF(rect), self._image)
        if self._message:
            painter.setPen(QtGui.QColor(230, 230, 230))
            painter.drawText(self.rect(), QtCore.Qt.AlignmentFlag.AlignCenter, self._message)
        if self._ticks:
            self._draw_ticks(painter, rect)
        painter.end()

    def _draw_ticks(self, painter: QtGui.QPainter, rect: QtCore.QRect) -> None:
        painter.setPen(QtGui.QColor(255, 255, 255, 204))
        painter.drawRect(rect.adjusted(0, 0, -1, -1))
        metrics = painter.fontMetrics()
        for tick in self._ticks:
            y = rect.top() + int(round((rect.height() - 1) * (1.0 - tick.position)))
            painter.drawLine(rect.left() - TICK_SIZE, y, rect.left(), y)
            width = metrics.horizontalAdvance(tick.label)
            baseline = y + metrics.capHeight() // 2
            painter.drawText(rect.left() - TICK_SIZE - TICK_PADDING - width, baseline, tick.label)


class MainWindow(QtWidgets.QMainWindow):
    def __init__(self, config: ViewerConfig):
        super().__init__()
        self.config = config
        self.setWindowTitle(APP_TITLE)
        self.resize(*config.window_geometry)
        self.setAcceptDrops(True)
        self.view = SpectrogramView(config, self)
        self.setCentralWidget(self.view)
        self._bridge = _ResultBridge()
        self._bridge.delivered.connect(self._on_outcome)
        self.runner = PipelineRunner(config.analysis, on_commit=self._bridge.delivered.emit)

    def open_file(self, path: Path) -> None:
        if not is_supported_file(path):
            logger.info("%s has no .flac extension, trying to decode it anyway", path.name)
        self.setWindowTitle(f"{path.name} - {APP_TITLE}")
        self.view.show_message(f"Analyzing {path.name}…")
        self.runner.open(path)

    def dragEnterEvent(self, event):
        mime = event.mimeData()
        if any(mime.hasFormat(kind) for kind in ACCEPTED_MIME_TYPES):
            event.acceptProposedAction()

    def dropEvent(self, event):
        mime = event.mimeData()
        try:
            if mime.hasFormat(URI_LIST):
                payload = payload_from_mime(URI_LIST, bytes(mime.data(URI_LIST)))
            else:
                payload = PathDrop(mime.text())
            path = normalize_drop(payload)
        except UnsupportedDrop as exc:
            logger.warning("Ignoring drop: %s", exc)
            self.view.show_message(str(exc))
            return
        event.acceptProposedAction()
        self.open_file(path)

    def _on_outcome(self, outcome: RunOutcome) -> None:
        if not self.runner.slot.is_current(outcome.token):
            return
        if outcome.ok:
            self.view.set_spectrogram(outcome.result.spectrogram)
        else:
            self.view.show_message(outcome.error or "Unable to open file")

    def closeEvent(self, event):
        self.runner.shutdown(wait=False)
        super().closeEvent(event)


def run_app(config: ViewerConfig, initial_path: Optional[Path] = None) -> int:
    app = QtWidgets.QApplication.instance() or QtWidgets.QApplication(sys.argv[:1])
    app.setApplicationName(APP_TITLE)
    window = MainWindow(config)
    window.show()
    if initial_path is not None:
        window.open_file(initial_path)
    return app.exec()
