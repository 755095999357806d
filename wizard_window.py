"""Qt window for the setup wizard.

``QtWizardView`` is handed to the controller and may be called from the wizard
loop thread; it only emits signals. ``WizardWindow`` owns the widgets and
applies those signals on the GUI thread.
"""

from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Optional

from PySide6.QtCore import QObject, QRectF, Qt, QTimer, Signal
from PySide6.QtGui import QColor, QPainter
from PySide6.QtWidgets import (
    QFileDialog,
    QGroupBox,
    QHBoxLayout,
    QInputDialog,
    QLabel,
    QLineEdit,
    QMessageBox,
    QProgressBar,
    QPushButton,
    QScrollArea,
    QTextEdit,
    QVBoxLayout,
    QWidget,
)

from errors import ConfigImportError
from models import ChatRole, MessageKind, StepStatus
from waveform import MAX_BAR_HEIGHT, WaveformMeter
from wizard import CHAT_STEP, RECORDING_STEP, STEP_NAMES, WizardController

logger = logging.getLogger(__name__)

STATUS_COLORS = {
    MessageKind.INFO.value: "#0c5460",
    MessageKind.SUCCESS.value: "#155724",
    MessageKind.ERROR.value: "#721c24",
    MessageKind.WARNING.value: "#856404",
}

STEP_STYLES = {
    StepStatus.PENDING.value: "QGroupBox { color: #999999; }",
    StepStatus.ACTIVE.value: "QGroupBox { color: #007bff; font-weight: bold; }",
    StepStatus.COMPLETED.value: "QGroupBox { color: #28a745; }",
    StepStatus.ERROR.value: "QGroupBox { color: #dc3545; font-weight: bold; }",
}

CHAT_PREFIX = {
    ChatRole.USER.value: "You",
    ChatRole.AI.value: "AI",
    ChatRole.SYSTEM.value: "System",
}

STEP_HINTS = {
    1: "Open the Aliyun console and activate Intelligent Speech Interaction.",
    3: "Create a RAM user with the AliyunNLSFullAccess policy.",
}


class WizardBridge(QObject):
    config_signal = Signal(object)
    step_signal = Signal(int, str)
    status_signal = Signal(int, str, str)
    transcript_signal = Signal(str, bool)
    recording_button_signal = Signal(str, bool)
    download_signal = Signal(bool)
    chat_clear_signal = Signal()
    chat_append_signal = Signal(str, str)
    chat_replace_signal = Signal(str, str)
    chat_enabled_signal = Signal(bool)
    alert_signal = Signal(str)


class QtWizardView:
    """``WizardView`` that forwards every call to the GUI thread."""

    def __init__(self, bridge: WizardBridge) -> None:
        self._bridge = bridge

    def show_config(self, values: dict[str, str]) -> None:
        self._bridge.config_signal.emit(dict(values))

    def show_step(self, step: int, status: StepStatus) -> None:
        self._bridge.step_signal.emit(step, status.value)

    def show_status(self, step: int, message: str, kind: MessageKind) -> None:
        self._bridge.status_signal.emit(step, message, kind.value)

    def set_transcript(self, text: str, placeholder: bool = False) -> None:
        self._bridge.transcript_signal.emit(text, placeholder)

    def set_recording_button(self, label: str, enabled: bool = True) -> None:
        self._bridge.recording_button_signal.emit(label, enabled)

    def set_download_visible(self, visible: bool) -> None:
        self._bridge.download_signal.emit(visible)

    def chat_clear(self) -> None:
        self._bridge.chat_clear_signal.emit()

    def chat_append(self, role: ChatRole, text: str) -> None:
        self._bridge.chat_append_signal.emit(role.value, text)

    def chat_replace_last(self, role: ChatRole, text: str) -> None:
        self._bridge.chat_replace_signal.emit(role.value, text)

    def set_chat_enabled(self, enabled: bool) -> None:
        self._bridge.chat_enabled_signal.emit(enabled)

    def alert(self, message: str) -> None:
        self._bridge.alert_signal.emit(message)


class WaveformWidget(QWidget):
    def __init__(self, parent: Optional[QWidget] = None) -> None:
        super().__init__(parent)
        self.setMinimumHeight(60)
        self._bars: list[float] = []

    def set_bars(self, bars: list[float]) -> None:
        self._bars = bars
        self.update()

    def paintEvent(self, event: Any) -> None:  # noqa: N802
        painter = QPainter(self)
        painter.setRenderHint(QPainter.Antialiasing, True)
        painter.fillRect(self.rect(), QColor("#f8f9fa"))
        if self._bars:
            slot = self.width() / max(len(self._bars), 1)
            mid = self.height() / 2
            scale = (self.height() - 4) / (2 * MAX_BAR_HEIGHT)
            painter.setPen(Qt.NoPen)
            painter.setBrush(QColor("#007bff"))
            for i, height in enumerate(self._bars):
                h = height * scale
                painter.drawRect(QRectF(i * slot, mid - h, max(slot - 1, 1), 2 * h))
        painter.end()


class StepBox(QGroupBox):
    def __init__(self, number: int, on_back: Callable[[int], None]) -> None:
        super().__init__(f"Step {number}: {STEP_NAMES[number]}")
        self.number = number
        self.body = QWidget()
        self.body_layout = QVBoxLayout(self.body)
        self.body_layout.setContentsMargins(0, 0, 0, 0)

        self.status_label = QLabel("")
        self.status_label.setWordWrap(True)
        self.status_label.hide()

        self.back_button = QPushButton("Edit")
        self.back_button.clicked.connect(lambda: on_back(number))
        self.back_button.hide()

        layout = QVBoxLayout(self)
        layout.addWidget(self.body)
        layout.addWidget(self.status_label)
        layout.addWidget(self.back_button, alignment=Qt.AlignRight)

    def apply_status(self, status: str) -> None:
        self.setStyleSheet(STEP_STYLES.get(status, ""))
        focused = status in (StepStatus.ACTIVE.value, StepStatus.ERROR.value)
        self.body.setEnabled(focused)
        self.back_button.setVisible(status == StepStatus.COMPLETED.value)

    def show_message(self, message: str, kind: str) -> None:
        self.status_label.setText(message)
        self.status_label.setStyleSheet(f"color: {STATUS_COLORS.get(kind, '#333333')};")
        self.status_label.setVisible(bool(message))


class WizardWindow(QWidget):
    def __init__(
        self,
        controller: WizardController,
        bridge: WizardBridge,
        runner: Any,
        on_close: Optional[Callable[[], None]] = None,
    ) -> None:
        super().__init__()
        self._controller = controller
        self._runner = runner
        self._on_close = on_close
        self._chat_log: list[tuple[str, str]] = []
        self._fields: dict[str, QLineEdit] = {}

        settings = controller.settings
        self._meter = WaveformMeter(
            controller.recording.take_amplitude,
            max_duration_s=settings.max_recording_s,
            max_bars=settings.max_waveform_bars,
            interval_ms=settings.waveform_interval_ms,
        )

        self.setWindowTitle("Aliyun Voice Setup Wizard")
        self.resize(720, 900)

        self._steps = {n: StepBox(n, self._go_back) for n in sorted(STEP_NAMES)}
        self._build_steps()

        toolbar = QHBoxLayout()
        for label, handler in (
            ("Import", self._import_text),
            ("Import file", self._import_file),
            ("Export", self._show_export),
            ("Clear", self._clear),
        ):
            button = QPushButton(label)
            button.clicked.connect(handler)
            toolbar.addWidget(button)
        toolbar.addStretch(1)

        content = QWidget()
        content_layout = QVBoxLayout(content)
        for box in self._steps.values():
            content_layout.addWidget(box)
        content_layout.addStretch(1)
        scroll = QScrollArea()
        scroll.setWidgetResizable(True)
        scroll.setWidget(content)

        layout = QVBoxLayout(self)
        layout.addLayout(toolbar)
        layout.addWidget(scroll)

        bridge.config_signal.connect(self._on_config)
        bridge.step_signal.connect(self._on_step)
        bridge.status_signal.connect(self._on_status)
        bridge.transcript_signal.connect(self._on_transcript)
        bridge.recording_button_signal.connect(self._on_recording_button)
        bridge.download_signal.connect(self._download_button.setVisible)
        bridge.chat_clear_signal.connect(self._on_chat_clear)
        bridge.chat_append_signal.connect(self._on_chat_append)
        bridge.chat_replace_signal.connect(self._on_chat_replace)
        bridge.chat_enabled_signal.connect(self._on_chat_enabled)
        bridge.alert_signal.connect(self._on_alert)

        self._wave_timer = QTimer(self)
        self._wave_timer.setInterval(settings.waveform_interval_ms)
        self._wave_timer.timeout.connect(self._on_wave_tick)
        self._wave_timer.start()
        self._was_recording = False

    # ------------------------------------------------------------------
    # Layout
    # ------------------------------------------------------------------

    def _build_steps(self) -> None:
        for number in (1, 3):
            box = self._steps[number]
            hint = QLabel(STEP_HINTS[number])
            hint.setWordWrap(True)
            box.body_layout.addWidget(hint)
            box.body_layout.addWidget(self._step_button("Done", number))

        box = self._steps[2]
        box.body_layout.addWidget(self._field("appKey", "AppKey"))
        box.body_layout.addWidget(self._step_button("Confirm", 2))

        box = self._steps[4]
        box.body_layout.addWidget(self._field("accessKeyId", "AccessKey ID"))
        box.body_layout.addWidget(self._field("accessKeySecret", "AccessKey Secret", secret=True))
        box.body_layout.addWidget(self._step_button("Verify", 4))

        box = self._steps[RECORDING_STEP]
        self._record_button = QPushButton("Start")
        self._record_button.clicked.connect(lambda: self._runner.submit(self._controller.toggle_recording()))
        self._waveform = WaveformWidget()
        self._progress = QProgressBar()
        self._progress.setRange(0, 1000)
        self._progress.setTextVisible(False)
        self._progress.setMaximumHeight(6)
        self._transcript = QLabel("Click Start to record")
        self._transcript.setWordWrap(True)
        self._download_button = QPushButton("Download recording")
        self._download_button.clicked.connect(self._save_recording)
        self._download_button.hide()
        box.body_layout.addWidget(self._record_button)
        box.body_layout.addWidget(self._waveform)
        box.body_layout.addWidget(self._progress)
        box.body_layout.addWidget(self._transcript)
        box.body_layout.addWidget(self._download_button)

        box = self._steps[CHAT_STEP]
        box.body_layout.addWidget(self._field("zhipuApiKey", "Zhipu AI API Key", secret=True))
        box.body_layout.addWidget(self._step_button("Validate", CHAT_STEP))
        self._chat_view = QTextEdit()
        self._chat_view.setReadOnly(True)
        self._chat_input = QLineEdit()
        self._chat_input.setPlaceholderText("Type a message")
        self._chat_input.returnPressed.connect(self._send_chat)
        self._send_button = QPushButton("Send")
        self._send_button.clicked.connect(self._send_chat)
        chat_row = QHBoxLayout()
        chat_row.addWidget(self._chat_input)
        chat_row.addWidget(self._send_button)
        box.body_layout.addWidget(self._chat_view)
        box.body_layout.addLayout(chat_row)
        self._on_chat_enabled(False)

    def _field(self, name: str, label: str, secret: bool = False) -> QLineEdit:
        edit = QLineEdit()
        edit.setPlaceholderText(label)
        if secret:
            edit.setEchoMode(QLineEdit.Password)
        edit.textEdited.connect(lambda value: self._runner.call(self._controller.set_field, name, value))
        self._fields[name] = edit
        return edit

    def _step_button(self, label: str, step: int) -> QPushButton:
        button = QPushButton(label)
        button.clicked.connect(lambda: self._runner.submit(self._controller.validate(step)))
        return button

    # ------------------------------------------------------------------
    # User actions
    # ------------------------------------------------------------------

    def _go_back(self, step: int) -> None:
        self._runner.call(self._controller.go_back_to_step, step)

    def _send_chat(self) -> None:
        text = self._chat_input.text().strip()
        if not text or not self._chat_input.isEnabled():
            return
        self._chat_input.clear()
        self._runner.submit(self._controller.send_chat_message(text))

    def _import_text(self) -> None:
        text, ok = QInputDialog.getMultiLineText(self, "Import configuration", "Configuration JSON")
        if ok:
            self._runner.submit(self._controller.import_configuration(text))

    def _import_file(self) -> None:
        path, _ = QFileDialog.getOpenFileName(self, "Import configuration", "", "JSON (*.json)")
        if not path:
            return
        try:
            content = WizardController.load_config_file(Path(path))
        except ConfigImportError as exc:
            self._on_alert(exc.message)
            return
        self._runner.submit(self._controller.import_configuration(content))

    def _show_export(self) -> None:
        lines = [f"{label}: {value}" for label, value in self._controller.config.summary()]
        lines.append(f"Export time: {datetime.now():%Y-%m-%d %H:%M:%S}")
        box = QMessageBox(self)
        box.setWindowTitle("Export configuration")
        box.setText("\n".join(lines))
        copy_button = box.addButton("Copy JSON", QMessageBox.ActionRole)
        save_button = box.addButton("Save JSON", QMessageBox.ActionRole)
        box.addButton(QMessageBox.Close)
        box.exec()
        clicked = box.clickedButton()
        if clicked is copy_button:
            self._runner.call(self._controller.copy_config_to_clipboard)
        elif clicked is save_button:
            directory = QFileDialog.getExistingDirectory(self, "Save configuration to")
            if directory:
                self._runner.call(self._controller.save_config_json, Path(directory))

    def _clear(self) -> None:
        answer = QMessageBox.question(self, "Clear configuration", "Remove all stored credentials?")
        if answer == QMessageBox.Yes:
            self._runner.call(self._controller.clear_configuration)

    def _save_recording(self) -> None:
        directory = QFileDialog.getExistingDirectory(self, "Save recording to")
        if directory:
            self._runner.call(self._controller.save_recording, Path(directory))

    # ------------------------------------------------------------------
    # Signal handlers (GUI thread)
    # ------------------------------------------------------------------

    def _on_config(self, values: dict) -> None:
        for name, edit in self._fields.items():
            edit.setText(values.get(name, ""))

    def _on_step(self, step: int, status: str) -> None:
        self._steps[step].apply_status(status)

    def _on_status(self, step: int, message: str, kind: str) -> None:
        self._steps[step].show_message(message, kind)

    def _on_transcript(self, text: str, placeholder: bool) -> None:
        self._transcript.setText(text)
        self._transcript.setStyleSheet("color: #6c757d;" if placeholder else "color: #333333;")

    def _on_recording_button(self, label: str, enabled: bool) -> None:
        self._record_button.setText(label)
        self._record_button.setEnabled(enabled)

    def _on_chat_clear(self) -> None:
        self._chat_log = []
        self._render_chat()

    def _on_chat_append(self, role: str, text: str) -> None:
        self._chat_log.append((role, text))
        self._render_chat()

    def _on_chat_replace(self, role: str, text: str) -> None:
        for i in range(len(self._chat_log) - 1, -1, -1):
            if self._chat_log[i][0] == role:
                self._chat_log[i] = (role, text)
                break
        else:
            self._chat_log.append((role, text))
        self._render_chat()

    def _on_chat_enabled(self, enabled: bool) -> None:
        self._chat_input.setEnabled(enabled)
        self._send_button.setEnabled(enabled)

    def _on_alert(self, message: str) -> None:
        QMessageBox.information(self, "Aliyun Voice Setup", message)

    def _render_chat(self) -> None:
        self._chat_view.setPlainText(
            "\n\n".join(f"{CHAT_PREFIX.get(role, role)}: {text}" for role, text in self._chat_log)
        )
        bar = self._chat_view.verticalScrollBar()
        bar.setValue(bar.maximum())

    def _on_wave_tick(self) -> None:
        recording = self._controller.recording
        if recording.is_recording:
            if not self._was_recording:
                self._meter.reset()
                self._was_recording = True
            elapsed = recording.elapsed_s()
            self._meter.tick()
            self._waveform.set_bars(self._meter.visible_bars(elapsed))
            self._progress.setValue(int(self._meter.progress(elapsed) * 1000))
        elif self._was_recording:
            self._was_recording = False
            self._progress.setValue(0)

    def closeEvent(self, event: Any) -> None:  # noqa: N802
        self._wave_timer.stop()
        if self._on_close is not None:
            self._on_close()
        super().closeEvent(event)
