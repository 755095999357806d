"""Protocol interfaces used by the wizard components."""

from __future__ import annotations

from queue import Queue
from typing import Optional, Protocol

from models import AudioBlock, ChatRole, MessageKind, RecognitionResult, StepStatus, TokenResult


class SessionStorage(Protocol):
    def get_item(self, key: str) -> Optional[str]: ...

    def set_item(self, key: str, value: str) -> None: ...

    def remove_item(self, key: str) -> None: ...


class CaptureDevice(Protocol):
    sample_rate: int

    def open(self, block_queue: Queue[AudioBlock | None]) -> None: ...

    def close(self) -> None: ...


class SpeechService(Protocol):
    async def validate_credentials(
        self, app_key: str, access_key_id: str, access_key_secret: str
    ) -> TokenResult: ...

    async def recognize_speech(self, pcm16: bytes, sample_rate: int = 16000) -> RecognitionResult: ...


class ChatService(Protocol):
    async def chat(self, api_key: str, messages: list[dict]) -> str: ...


class ClipboardService(Protocol):
    def copy(self, text: str) -> None: ...


class WizardView(Protocol):
    def show_config(self, values: dict[str, str]) -> None: ...

    def show_step(self, step: int, status: StepStatus) -> None: ...

    def show_status(self, step: int, message: str, kind: MessageKind) -> None: ...

    def set_transcript(self, text: str, placeholder: bool = False) -> None: ...

    def set_recording_button(self, label: str, enabled: bool = True) -> None: ...

    def set_download_visible(self, visible: bool) -> None: ...

    def chat_clear(self) -> None: ...

    def chat_append(self, role: ChatRole, text: str) -> None: ...

    def chat_replace_last(self, role: ChatRole, text: str) -> None: ...

    def set_chat_enabled(self, enabled: bool) -> None: ...

    def alert(self, message: str) -> None: ...
