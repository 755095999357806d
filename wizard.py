"""Wizard controller: step routines, auto-jump, the recording flow and chat."""

from __future__ import annotations

import asyncio
import json
import logging
import time
from dataclasses import dataclass
from datetime import date
from pathlib import Path
from typing import Awaitable, Callable, Coroutine, Optional

from audio_codec import pcm16_bytes, resample
from config import STEP_REQUIRED_FIELDS, ConfigStore, WizardSettings
from errors import (
    ClipboardError,
    ConfigImportError,
    InvalidApiKey,
    RecordingError,
    WizardError,
    friendly_credential_error,
)
from interfaces import ChatService, ClipboardService, SpeechService, WizardView
from models import ChatRole, MessageKind, RecordingArtifact, StepState, StepStatus
from operation_guard import AsyncOperationGuard
from orchestrator import StepOrchestrator
from recorder import RecordingSession

logger = logging.getLogger(__name__)

RECORDING_STEP = 5
CHAT_STEP = 6

BUTTON_START = "Start"
BUTTON_STARTING = "Starting..."
BUTTON_STOP = "Stop"
BUTTON_PROCESSING = "Processing..."
BUTTON_DONE = "Completed"

TRANSCRIPT_IDLE = "Click Start to record"
TRANSCRIPT_RECORDING = "Recording..."
TRANSCRIPT_RECOGNIZING = "Recognizing speech..."
TRANSCRIPT_TOO_SHORT = "Transcript too short, please record again"
TRANSCRIPT_FAILED = "Recognition failed, please record again"

AI_PLACEHOLDER = "..."

Routine = Callable[[], Awaitable[bool]]
SleepFn = Callable[[float], Awaitable[None]]


@dataclass
class StepDefinition:
    number: int
    name: str
    required_fields: tuple[str, ...]
    routine: Optional[Routine] = None
    auto_jump: bool = True


STEP_NAMES = {
    1: "Service activation",
    2: "AppKey",
    3: "RAM user",
    4: "AccessKey",
    5: "Recording test",
    6: "Zhipu API key",
}


def build_step_states() -> list[StepState]:
    return [
        StepState(number=n, name=STEP_NAMES[n], required_fields=STEP_REQUIRED_FIELDS[n])
        for n in sorted(STEP_NAMES)
    ]


class WizardController:
    """Runs on one asyncio loop; every public coroutine is scheduled onto it."""

    def __init__(
        self,
        config: ConfigStore,
        settings: WizardSettings,
        speech: SpeechService,
        chat: ChatService,
        recording: RecordingSession,
        view: WizardView,
        clipboard: Optional[ClipboardService] = None,
        orchestrator: Optional[StepOrchestrator] = None,
        guard: Optional[AsyncOperationGuard] = None,
        sleep: SleepFn = asyncio.sleep,
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ) -> None:
        self.config = config
        self.settings = settings
        self.speech = speech
        self.chat = chat
        self.recording = recording
        self.view = view
        self.clipboard = clipboard
        self.orchestrator = orchestrator or StepOrchestrator(build_step_states())
        self.guard = guard or AsyncOperationGuard(lambda: self.orchestrator.current_step)
        self._sleep = sleep
        self._loop = loop

        self.orchestrator.on_step_change = self.view.show_step
        self.orchestrator.on_status = self.view.show_status
        self.orchestrator.set_reset_hook(RECORDING_STEP, self._reset_recording_step)
        self.orchestrator.set_reset_hook(CHAT_STEP, self._reset_chat_step)
        self.recording.on_auto_stop = self.handle_auto_stop

        self.steps: dict[int, StepDefinition] = {
            1: StepDefinition(1, STEP_NAMES[1], STEP_REQUIRED_FIELDS[1], self.complete_service_setup),
            2: StepDefinition(2, STEP_NAMES[2], STEP_REQUIRED_FIELDS[2], self.validate_step2),
            3: StepDefinition(3, STEP_NAMES[3], STEP_REQUIRED_FIELDS[3], self.complete_step3),
            4: StepDefinition(4, STEP_NAMES[4], STEP_REQUIRED_FIELDS[4], self.validate_step4),
            5: StepDefinition(5, STEP_NAMES[5], STEP_REQUIRED_FIELDS[5], None, auto_jump=False),
            6: StepDefinition(6, STEP_NAMES[6], STEP_REQUIRED_FIELDS[6], self.validate_step6),
        }

        self._transcript = ""
        self._processing_recording = False
        self._running: set[int] = set()
        self._tasks: set[asyncio.Task] = set()

    @property
    def transcript(self) -> str:
        return self._transcript

    async def start(self) -> None:
        """Show the stored configuration and replay previously completed steps."""
        self._loop = self._loop or asyncio.get_running_loop()
        self.view.show_config(self.config.all())
        for step, status in self.orchestrator.statuses().items():
            self.view.show_step(step, status)
        await self.auto_jump_from(1)

    # ------------------------------------------------------------------
    # Step routines
    # ------------------------------------------------------------------

    async def validate(self, step: int) -> bool:
        definition = self.steps.get(step)
        if definition is None or definition.routine is None:
            return False
        if step in self._running:
            logger.info("Step %d validation already running, ignoring", step)
            return False
        self._running.add(step)
        try:
            return await definition.routine()
        finally:
            self._running.discard(step)

    async def complete_service_setup(self) -> bool:
        if not self._is_focused(1):
            return False
        self._complete(1)
        return True

    async def validate_step2(self) -> bool:
        if not self._is_focused(2):
            return False
        if not self.config.get("appKey").strip():
            self.orchestrator.report(2, "Please enter the AppKey", MessageKind.ERROR)
            return False
        self._complete(2, "AppKey saved, continue with the AccessKey")
        return True

    async def complete_step3(self) -> bool:
        if not self._is_focused(3):
            return False
        self._complete(3, "RAM user step completed")
        return True

    async def validate_step4(self) -> bool:
        if not self._is_focused(4):
            return False
        errors = self.config.validate_access_config()
        if errors:
            self.orchestrator.report(4, ", ".join(errors), MessageKind.ERROR)
            return False

        self.orchestrator.report(4, "Verifying AccessKey...", MessageKind.INFO)
        op_id = self.guard.new_operation_id("token-validate")
        self.guard.register(op_id, 4)
        result = await self.speech.validate_credentials(
            self.config.get("appKey"),
            self.config.get("accessKeyId"),
            self.config.get("accessKeySecret"),
        )
        if not self.guard.is_valid(op_id):
            return False
        self.guard.unregister(op_id)

        if result.success:
            self._complete(4, "AccessKey verified, token acquired")
            return True

        if result.error_type == "network":
            message = result.error
        else:
            message = friendly_credential_error(result.error, self.settings.error_message_max_len)
        logger.error("AccessKey verification failed, raw error: %s", result.error)
        self.orchestrator.report(4, message, MessageKind.ERROR)
        return False

    async def validate_step6(self) -> bool:
        if not self._is_focused(CHAT_STEP):
            return False
        api_key = self.config.get("zhipuApiKey").strip()
        if not api_key:
            self.orchestrator.report(CHAT_STEP, "Please enter the Zhipu AI API key", MessageKind.ERROR)
            return False
        if self.orchestrator.status(CHAT_STEP) == StepStatus.COMPLETED:
            self.orchestrator.activate(CHAT_STEP)

        self.view.chat_clear()
        self.view.set_chat_enabled(False)
        if not self._transcript:
            self.view.chat_append(
                ChatRole.SYSTEM,
                "Finish the recording test in step 5 before validating the Zhipu API key",
            )
            return False
        return await self._validate_zhipu(api_key, self._transcript)

    async def _validate_zhipu(self, api_key: str, transcript: str) -> bool:
        op_id = self.guard.new_operation_id("zhipu-validate")
        self.guard.register(op_id, CHAT_STEP)
        prompt = self.settings.summary_prompt.format(text=transcript)
        self.view.chat_append(ChatRole.USER, prompt)
        self.view.chat_append(ChatRole.AI, AI_PLACEHOLDER)

        try:
            reply = await self.chat.chat(api_key, [{"role": "user", "content": prompt}])
        except WizardError as exc:
            if not self.guard.is_valid(op_id):
                return False
            self.guard.unregister(op_id)
            logger.error("Zhipu validation failed: %s", exc)
            if isinstance(exc, InvalidApiKey):
                text = exc.message
            else:
                text = "Zhipu AI connection failed, please check the API key or the network"
            self.view.chat_replace_last(ChatRole.AI, text)
            return False

        if not self.guard.is_valid(op_id):
            return False
        if reply:
            self.view.chat_replace_last(ChatRole.AI, reply)

        await self._sleep(self.settings.chat_complete_delay_s)
        if not self.guard.is_valid(op_id):
            return False
        self.guard.unregister(op_id)
        self.view.set_chat_enabled(True)
        self._complete(CHAT_STEP, "Zhipu AI verified, you can keep chatting")
        return True

    async def send_chat_message(self, text: str) -> bool:
        text = text.strip()
        if not text or not self._is_focused(CHAT_STEP):
            return False
        api_key = self.config.get("zhipuApiKey").strip()

        self.view.set_chat_enabled(False)
        self.view.chat_append(ChatRole.USER, text)
        self.view.chat_append(ChatRole.AI, AI_PLACEHOLDER)

        op_id = self.guard.new_operation_id("zhipu-chat")
        self.guard.register(op_id, CHAT_STEP)
        try:
            reply = await self.chat.chat(api_key, [{"role": "user", "content": text}])
        except WizardError as exc:
            if not self.guard.is_valid(op_id):
                return False
            self.guard.unregister(op_id)
            logger.error("Chat message failed: %s", exc)
            self.view.chat_replace_last(
                ChatRole.AI, "Sorry, the AI service is unavailable, check the API key or retry later"
            )
            ok = False
        else:
            if not self.guard.is_valid(op_id):
                return False
            self.guard.unregister(op_id)
            if reply:
                self.view.chat_replace_last(ChatRole.AI, reply)
            ok = True

        self.view.set_chat_enabled(True)
        return ok

    # ------------------------------------------------------------------
    # Auto-jump
    # ------------------------------------------------------------------

    def can_step_auto_jump(self, step: int) -> bool:
        definition = self.steps.get(step)
        if definition is None or definition.routine is None or not definition.auto_jump:
            return False
        return self.config.has_fields(definition.required_fields) and self.config.is_step_completed(step)

    async def execute_step_jump(self, step: int) -> bool:
        definition = self.steps.get(step)
        if definition is None or definition.routine is None:
            return False
        logger.info("Replaying step %d (%s)", step, definition.name)
        try:
            return await self.validate(step)
        except Exception:
            logger.exception("Replaying step %d failed", step)
            return False

    async def auto_jump_from(self, start: int) -> None:
        for step in range(start, self.orchestrator.last_step + 1):
            if not self.can_step_auto_jump(step):
                logger.info("Step %d cannot auto-jump, stopping", step)
                return
            if not await self.execute_step_jump(step):
                logger.info("Step %d did not complete, stopping", step)
                return
            await self._sleep(self.settings.auto_jump_settle_s)

    # ------------------------------------------------------------------
    # Navigation and fields
    # ------------------------------------------------------------------

    def go_back_to_step(self, target: int, reset_pending: bool = True) -> None:
        if self.recording.is_recording:
            self.recording.release()
        if reset_pending:
            self.config.unmark_step_completed(target)
        self.orchestrator.activate(target)

    def set_field(self, name: str, value: str) -> None:
        if not self.config.set(name, value):
            return
        if name == "zhipuApiKey" and len(value.strip()) > self.settings.zhipu_key_autovalidate_min_len:
            self._spawn(self._validate_key_later(value))

    async def _validate_key_later(self, value: str) -> None:
        await self._sleep(self.settings.zhipu_key_autovalidate_delay_s)
        if self.config.get("zhipuApiKey") != value:
            return
        if self.orchestrator.current_step != CHAT_STEP:
            return
        logger.info("Zhipu API key entered, validating")
        await self.validate(CHAT_STEP)

    # ------------------------------------------------------------------
    # Recording
    # ------------------------------------------------------------------

    async def toggle_recording(self) -> None:
        if self._processing_recording:
            logger.info("Recording toggle already in progress, ignoring")
            return
        self._processing_recording = True
        self._loop = self._loop or asyncio.get_running_loop()
        try:
            if self.orchestrator.status(RECORDING_STEP) != StepStatus.ACTIVE:
                self.orchestrator.activate(RECORDING_STEP)
            if not self.recording.is_recording:
                self.start_recording()
            else:
                await self.stop_recording()
        finally:
            self._processing_recording = False

    def start_recording(self) -> bool:
        self.view.set_recording_button(BUTTON_STARTING, enabled=False)
        try:
            self.recording.start()
        except WizardError as exc:
            logger.error("Recording start failed: %s", exc)
            self.view.set_recording_button(BUTTON_START)
            self.orchestrator.fail(RECORDING_STEP, exc.message)
            return False
        self.view.set_recording_button(BUTTON_STOP)
        self.view.set_transcript(TRANSCRIPT_RECORDING, placeholder=True)
        return True

    async def stop_recording(self) -> bool:
        self.view.set_recording_button(BUTTON_PROCESSING, enabled=False)
        try:
            # Joins the consumer and encodes MP3, so keep it off the loop.
            artifact = await asyncio.to_thread(self.recording.stop)
        except RecordingError as exc:
            logger.error("Recording stop failed: %s", exc)
            self.view.set_recording_button(BUTTON_START)
            self.orchestrator.fail(RECORDING_STEP, f"Recording failed, please try again: {exc.message}")
            return False
        if artifact is None:
            self.view.set_recording_button(BUTTON_START)
            return False
        return await self._process_artifact(artifact)

    def handle_auto_stop(
        self, artifact: Optional[RecordingArtifact], error: Optional[RecordingError]
    ) -> None:
        """Called from the recording timer thread; hops onto the wizard loop."""
        loop = self._loop
        if loop is None or loop.is_closed():
            logger.warning("Auto-stop fired without a running wizard loop")
            return
        loop.call_soon_threadsafe(self._spawn, self._on_auto_stopped(artifact, error))

    async def _on_auto_stopped(
        self, artifact: Optional[RecordingArtifact], error: Optional[RecordingError]
    ) -> None:
        if self.orchestrator.current_step != RECORDING_STEP:
            return
        if error is not None or artifact is None:
            logger.error("Auto-stopped recording failed: %s", error)
            self.view.set_recording_button(BUTTON_START)
            self.orchestrator.fail(RECORDING_STEP, "Recording failed, please try again")
            return
        self.view.set_recording_button(BUTTON_PROCESSING, enabled=False)
        await self._process_artifact(artifact)

    async def _process_artifact(self, artifact: RecordingArtifact) -> bool:
        logger.info("Recognizing %.1fs recording (%d bytes mp3)", artifact.duration_s, artifact.size_bytes)
        self.view.set_transcript(TRANSCRIPT_RECOGNIZING, placeholder=True)
        ok = await self.perform_speech_recognition()
        if ok:
            self.view.set_recording_button(BUTTON_DONE, enabled=False)
        elif self.orchestrator.current_step == RECORDING_STEP:
            self.view.set_recording_button(BUTTON_START)
        return ok

    async def perform_speech_recognition(self) -> bool:
        op_id = self.guard.new_operation_id("speech-recognition")
        self.guard.register(op_id, RECORDING_STEP)

        samples = self.recording.get_raw_samples()
        if samples is None or len(samples) == 0:
            self.guard.unregister(op_id)
            self.orchestrator.fail(RECORDING_STEP, "No raw audio data is available")
            self.view.set_transcript(TRANSCRIPT_FAILED, placeholder=True)
            return False

        target_rate = self.settings.recognition_sample_rate
        pcm = pcm16_bytes(resample(samples, self.recording.sample_rate, target_rate))
        result = await self.speech.recognize_speech(pcm, target_rate)

        if not self.guard.is_valid(op_id):
            logger.info("Recognition result arrived after leaving step %d, ignored", RECORDING_STEP)
            return False
        self.guard.unregister(op_id)

        text = result.result.strip() if result.success else ""
        if not text:
            logger.error("Speech recognition failed: %s", result.error)
            detail = result.error or "check the network or record again, say at least 10 characters"
            self.orchestrator.fail(RECORDING_STEP, f"Speech recognition failed: {detail}")
            self.view.set_transcript(TRANSCRIPT_FAILED, placeholder=True)
            return False

        self.view.set_transcript(text)
        if len(text) <= self.settings.min_transcript_chars:
            self.orchestrator.report(
                RECORDING_STEP,
                "Transcript too short, please record a longer sample.",
                MessageKind.ERROR,
            )
            self.view.set_transcript(TRANSCRIPT_TOO_SHORT, placeholder=True)
            return False

        logger.info("Speech recognized (%d characters, confidence %.2f)", len(text), result.confidence)
        self._transcript = text
        self._complete(RECORDING_STEP, "Speech recognized, the transcript is shown above.")
        self.view.set_download_visible(True)
        self._spawn(self._continue_to_chat_step())
        return True

    async def _continue_to_chat_step(self) -> None:
        await self._sleep(self.settings.step6_transition_delay_s)
        if self.orchestrator.current_step != CHAT_STEP:
            return
        await self._sleep(self.settings.step6_auto_validate_delay_s)
        if self.orchestrator.current_step == CHAT_STEP and self.can_step_auto_jump(CHAT_STEP):
            await self.execute_step_jump(CHAT_STEP)

    # ------------------------------------------------------------------
    # Import / export
    # ------------------------------------------------------------------

    async def import_configuration(self, text: str) -> bool:
        text = text.strip()
        if not text:
            self.view.alert("Please enter configuration content or load a JSON file")
            return False
        if not self.config.import_config(text):
            self.view.alert("Configuration import failed, please check the JSON format")
            return False
        self.view.alert("Configuration imported")
        self.view.show_config(self.config.all())

        self.guard.clear()
        self.orchestrator.reset_all()
        self.go_back_to_step(1, reset_pending=False)
        await self.auto_jump_from(1)
        return True

    @staticmethod
    def load_config_file(path: Path) -> str:
        """Read an import file; raises ConfigImportError when it is not usable JSON."""
        if path.suffix.lower() != ".json":
            raise ConfigImportError("Please choose a JSON file")
        try:
            content = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            raise ConfigImportError(f"Could not read the file: {exc}") from exc
        try:
            json.loads(content)
        except json.JSONDecodeError as exc:
            raise ConfigImportError("The JSON file is not valid") from exc
        return content

    def export_completed_config(self) -> str:
        return self.config.export_completed_config(
            {n: d.required_fields for n, d in self.steps.items()}
        )

    def copy_config_to_clipboard(self) -> bool:
        if self.clipboard is None:
            self.view.alert("Clipboard is not available")
            return False
        try:
            self.clipboard.copy(self.export_completed_config())
        except ClipboardError as exc:
            self.view.alert(exc.message)
            return False
        self.view.alert("Configuration copied to the clipboard")
        return True

    def save_config_json(self, directory: Path, today: Optional[date] = None) -> Path:
        day = (today or date.today()).isoformat()
        path = directory / f"aliyun-voice-config-{day}.json"
        path.write_text(self.export_completed_config(), encoding="utf-8")
        logger.info("Configuration exported to %s", path)
        return path

    def save_recording(self, directory: Path) -> Optional[Path]:
        artifact = self.recording.last_artifact
        if artifact is None:
            self.view.alert("No recording available to download")
            return None
        path = directory / f"recording_{int(time.time() * 1000)}.mp3"
        path.write_bytes(artifact.data)
        logger.info("Recording saved to %s (%d bytes)", path, artifact.size_bytes)
        return path

    def clear_configuration(self) -> None:
        self.config.clear()
        self.guard.clear()
        self._transcript = ""
        self.view.show_config(self.config.all())
        self.go_back_to_step(1, reset_pending=False)

    # ------------------------------------------------------------------
    # Background tasks
    # ------------------------------------------------------------------

    async def wait_for_background(self) -> None:
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def _spawn(self, coro: Coroutine) -> asyncio.Task:
        loop = asyncio.get_running_loop()
        self._loop = self._loop or loop
        task = loop.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Background task failed", exc_info=task.exception())

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _is_focused(self, step: int) -> bool:
        if self.orchestrator.current_step != step:
            logger.info("Step %d is not current (current %d), ignoring", step, self.orchestrator.current_step)
            return False
        return True

    def _complete(self, step: int, message: str = "") -> None:
        self.orchestrator.complete(step)
        self.config.mark_step_completed(step)
        if message:
            self.orchestrator.report(step, message, MessageKind.SUCCESS)

    def _reset_recording_step(self, previous: StepStatus) -> None:
        if self.recording.is_recording:
            self.recording.release()
        self.view.set_recording_button(BUTTON_START)
        if previous == StepStatus.COMPLETED:
            return
        self._transcript = ""
        self.view.set_transcript(TRANSCRIPT_IDLE, placeholder=True)
        self.view.set_download_visible(False)

    def _reset_chat_step(self, previous: StepStatus) -> None:
        self.view.chat_clear()
        self.view.set_chat_enabled(False)
