"""Application entrypoint."""

from __future__ import annotations

import asyncio
import logging
import os
import sys
import threading
from concurrent.futures import Future
from typing import Any, Callable, Coroutine

from aliyun_api import AliyunSpeechClient
from clipboard import PyperclipClipboard
from config import ConfigStore, load_settings
from recorder import RecordingSession, SoundDeviceCapture
from session_storage import JsonFileSessionStorage
from wizard import WizardController
from zhipu_client import ZhipuChatClient

try:
    from PySide6.QtWidgets import QApplication
except Exception as exc:  # pragma: no cover
    raise SystemExit(f"PySide6 is required to run the desktop app: {exc}")

from wizard_window import QtWizardView, WizardBridge, WizardWindow

logger = logging.getLogger(__name__)

LOG_LEVEL_ENV = "ALIYUN_WIZARD_LOG_LEVEL"


class LoopThread:
    """Runs the wizard's asyncio loop on a background thread."""

    def __init__(self) -> None:
        self.loop = asyncio.new_event_loop()
        self._thread = threading.Thread(target=self._run, name="wizard-loop", daemon=True)

    def start(self) -> None:
        self._thread.start()

    def _run(self) -> None:
        asyncio.set_event_loop(self.loop)
        self.loop.run_forever()

    def submit(self, coro: Coroutine) -> Future:
        future = asyncio.run_coroutine_threadsafe(coro, self.loop)
        future.add_done_callback(self._log_failure)
        return future

    def call(self, fn: Callable[..., Any], *args: Any) -> None:
        self.loop.call_soon_threadsafe(fn, *args)

    def stop(self, timeout_s: float = 2.0) -> None:
        if self.loop.is_running():
            self.loop.call_soon_threadsafe(self.loop.stop)
        self._thread.join(timeout=timeout_s)

    @staticmethod
    def _log_failure(future: Future) -> None:
        if not future.cancelled() and future.exception() is not None:
            logger.error("Wizard task failed", exc_info=future.exception())


class App:
    def __init__(self) -> None:
        self.app = QApplication(sys.argv)
        self.settings = load_settings()
        self.runner = LoopThread()

        self.speech = AliyunSpeechClient(
            self.settings.api_base_url,
            token_path=self.settings.token_path,
            recognize_path=self.settings.recognize_path,
            timeout_s=self.settings.request_timeout_s,
        )
        self.chat = ZhipuChatClient(
            url=self.settings.zhipu_url,
            model=self.settings.zhipu_model,
            temperature=self.settings.zhipu_temperature,
            timeout_s=self.settings.request_timeout_s,
        )
        self.recording = RecordingSession(
            SoundDeviceCapture(
                sample_rate=self.settings.capture_sample_rate,
                block_size=self.settings.block_size,
            ),
            max_duration_s=self.settings.max_recording_s,
            bitrate_kbps=self.settings.mp3_bitrate,
        )

        self.ui = WizardBridge()
        self.controller = WizardController(
            config=ConfigStore(JsonFileSessionStorage()),
            settings=self.settings,
            speech=self.speech,
            chat=self.chat,
            recording=self.recording,
            view=QtWizardView(self.ui),
            clipboard=PyperclipClipboard(),
            loop=self.runner.loop,
        )
        self.window = WizardWindow(self.controller, self.ui, self.runner, on_close=self.quit)

    def run(self) -> int:
        self.runner.start()
        self.window.show()
        self.runner.submit(self.controller.start())
        return self.app.exec()

    def quit(self) -> None:
        self.recording.release()
        future = self.runner.submit(self._close_clients())
        try:
            future.result(timeout=2.0)
        except Exception as exc:
            logger.warning("Closing HTTP clients failed: %s", exc)
        self.runner.stop()
        self.app.quit()

    async def _close_clients(self) -> None:
        await self.speech.aclose()
        await self.chat.aclose()


def configure_logging() -> None:
    level = os.environ.get(LOG_LEVEL_ENV, "INFO").upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def main() -> int:
    configure_logging()
    app = App()
    return app.run()


if __name__ == "__main__":
    raise SystemExit(main())
