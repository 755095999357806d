"""Wizard settings and the session-backed credential store."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Iterable, Mapping

from interfaces import SessionStorage

logger = logging.getLogger(__name__)

DEFAULT_SETTINGS_PATH = Path.home() / ".config" / "aliyun_voice_wizard" / "settings.json"

CONFIG_KEY = "aliyun_voice_config"
COMPLETED_STEPS_KEY = "aliyun_voice_completed_steps"

CONFIG_FIELDS = ("appKey", "accessKeyId", "accessKeySecret", "zhipuApiKey")

# Configuration fields each step needs before it may replay automatically.
STEP_REQUIRED_FIELDS: dict[int, tuple[str, ...]] = {
    1: (),
    2: ("appKey",),
    3: (),
    4: ("accessKeyId", "accessKeySecret"),
    5: (),
    6: ("zhipuApiKey",),
}

_SETTING_ALIASES = {
    "apiBaseUrl": "api_base_url",
    "zhipuModel": "zhipu_model",
}


@dataclass
class WizardSettings:
    api_base_url: str = "https://aliyun-voice-to-text-api.vercel.app/api"
    token_path: str = "/get-token"
    recognize_path: str = "/recognize-audio"
    streaming_url: str = ""
    zhipu_url: str = "https://open.bigmodel.cn/api/paas/v4/chat/completions"
    zhipu_model: str = "glm-4.5-flash"
    zhipu_temperature: float = 0.6
    summary_prompt: str = "请总结如下录音结果：「{text}」当中的信息，50字以内"
    request_timeout_s: float = 30.0

    capture_sample_rate: int = 44100
    recognition_sample_rate: int = 16000
    block_size: int = 4096
    mp3_bitrate: int = 128
    max_recording_s: float = 30.0
    min_transcript_chars: int = 10

    auto_jump_settle_s: float = 0.5
    step6_transition_delay_s: float = 1.0
    step6_auto_validate_delay_s: float = 0.5
    zhipu_key_autovalidate_delay_s: float = 1.0
    zhipu_key_autovalidate_min_len: int = 10
    chat_complete_delay_s: float = 0.5

    waveform_interval_ms: int = 100
    max_waveform_bars: int = 300
    error_message_max_len: int = 100


def load_settings(path: Path | None = None) -> WizardSettings:
    """Overlay known keys from a JSON file onto the defaults."""
    settings = WizardSettings()
    target = path or DEFAULT_SETTINGS_PATH
    if not target.exists():
        return settings
    try:
        data = json.loads(target.read_text(encoding="utf-8"))
    except (json.JSONDecodeError, OSError) as exc:
        logger.warning("Settings file %s unreadable, using defaults: %s", target, exc)
        return settings
    if not isinstance(data, dict):
        return settings

    known = {f.name: f for f in fields(WizardSettings)}
    for raw_key, value in data.items():
        key = _SETTING_ALIASES.get(raw_key, raw_key)
        if key not in known:
            logger.debug("Ignoring unknown setting %s", raw_key)
            continue
        default = getattr(settings, key)
        try:
            setattr(settings, key, type(default)(value))
        except (TypeError, ValueError):
            logger.warning("Invalid value for setting %s: %r", raw_key, value)
    return settings


def mask_secret(value: str) -> str:
    value = value.strip()
    if len(value) <= 6:
        return ""
    return f"{value[:3]}...{value[-3:]}"


def _masked(value: str) -> str:
    if not value:
        return "not set"
    return mask_secret(value) or "******"


class ConfigStore:
    """Credential fields and completed steps, written through on every change."""

    def __init__(self, storage: SessionStorage) -> None:
        self._storage = storage
        self._config: dict[str, str] = {name: "" for name in CONFIG_FIELDS}
        self._completed: set[int] = set()
        self.load()

    def load(self) -> None:
        raw_config = self._storage.get_item(CONFIG_KEY)
        if raw_config:
            try:
                saved = json.loads(raw_config)
            except json.JSONDecodeError as exc:
                logger.warning("Stored configuration is not valid JSON: %s", exc)
            else:
                if isinstance(saved, dict):
                    for name in CONFIG_FIELDS:
                        if name in saved:
                            self._config[name] = str(saved[name] or "")

        raw_steps = self._storage.get_item(COMPLETED_STEPS_KEY)
        if raw_steps:
            try:
                steps = json.loads(raw_steps)
            except json.JSONDecodeError as exc:
                logger.warning("Stored completed steps are not valid JSON: %s", exc)
            else:
                if isinstance(steps, list):
                    self._completed = {int(s) for s in steps if isinstance(s, int)}

    # ------------------------------------------------------------------
    # Fields
    # ------------------------------------------------------------------

    def get(self, key: str) -> str:
        return self._config.get(key, "")

    def set(self, key: str, value: str) -> bool:
        if key not in self._config:
            logger.debug("Ignoring unknown config field %s", key)
            return False
        self._config[key] = value
        self._save_config()
        return True

    def all(self) -> dict[str, str]:
        return dict(self._config)

    def has_fields(self, names: Iterable[str]) -> bool:
        return all(self._config.get(name, "").strip() for name in names)

    def validate_access_config(self) -> list[str]:
        errors = []
        if not self._config["appKey"].strip():
            errors.append("AppKey must not be empty")
        if not self._config["accessKeyId"].strip():
            errors.append("AccessKey ID must not be empty")
        if not self._config["accessKeySecret"].strip():
            errors.append("AccessKey Secret must not be empty")
        return errors

    def clear(self) -> None:
        self._config = {name: "" for name in CONFIG_FIELDS}
        self._completed.clear()
        self._storage.remove_item(CONFIG_KEY)
        self._storage.remove_item(COMPLETED_STEPS_KEY)

    # ------------------------------------------------------------------
    # Completed steps
    # ------------------------------------------------------------------

    @property
    def completed_steps(self) -> tuple[int, ...]:
        return tuple(sorted(self._completed))

    def mark_step_completed(self, step: int) -> None:
        self._completed.add(step)
        self._save_completed()

    def unmark_step_completed(self, step: int) -> None:
        if step in self._completed:
            self._completed.discard(step)
            self._save_completed()

    def is_step_completed(self, step: int) -> bool:
        return step in self._completed

    # ------------------------------------------------------------------
    # Import / export
    # ------------------------------------------------------------------

    def export_completed_config(
        self, step_fields: Mapping[int, tuple[str, ...]] = STEP_REQUIRED_FIELDS
    ) -> str:
        """JSON of the fields whose owning step has all required fields filled."""
        exported: dict[str, str] = {}
        for step in sorted(step_fields):
            required = step_fields[step]
            if required and self.has_fields(required):
                for name in required:
                    exported[name] = self._config[name]
        return json.dumps(exported, ensure_ascii=False, indent=2)

    def import_config(self, text: str) -> bool:
        try:
            imported = json.loads(text)
        except json.JSONDecodeError as exc:
            logger.error("Configuration import failed: %s", exc)
            return False
        if not isinstance(imported, dict):
            logger.error("Configuration import failed: document is not an object")
            return False
        for name in CONFIG_FIELDS:
            if name in imported:
                self._config[name] = str(imported[name] or "")
        self._save_config()
        return True

    def summary(self) -> list[tuple[str, str]]:
        """Label/value pairs for display, secrets masked."""
        secret = self._config["accessKeySecret"]
        zhipu = self._config["zhipuApiKey"]
        return [
            ("AppKey", self._config["appKey"] or "not set"),
            ("AccessKey ID", self._config["accessKeyId"] or "not set"),
            ("AccessKey Secret", _masked(secret)),
            ("Zhipu API Key", _masked(zhipu)),
        ]

    def _save_config(self) -> None:
        self._storage.set_item(CONFIG_KEY, json.dumps(self._config, ensure_ascii=False))

    def _save_completed(self) -> None:
        self._storage.set_item(COMPLETED_STEPS_KEY, json.dumps(sorted(self._completed)))
