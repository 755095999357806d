"""Session-scoped key-value storage backends."""

from __future__ import annotations

import getpass
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

FILE_MODE = 0o600
DIR_MODE = 0o700


def default_session_path() -> Path:
    """Per-user runtime location, discarded at logout or reboot."""
    runtime_dir = os.environ.get("XDG_RUNTIME_DIR")
    if runtime_dir:
        return Path(runtime_dir) / "aliyun_voice_wizard" / "session.json"
    return Path(tempfile.gettempdir()) / f"aliyun_voice_wizard-{getpass.getuser()}" / "session.json"


class MemorySessionStorage:
    def __init__(self, initial: Optional[dict[str, str]] = None) -> None:
        self._items: dict[str, str] = dict(initial or {})

    def get_item(self, key: str) -> Optional[str]:
        return self._items.get(key)

    def set_item(self, key: str, value: str) -> None:
        self._items[key] = value

    def remove_item(self, key: str) -> None:
        self._items.pop(key, None)


class JsonFileSessionStorage:
    """String key-value pairs kept in one owner-only JSON file, rewritten on every change."""

    def __init__(self, path: Path | None = None) -> None:
        self._path = path or default_session_path()
        self._path.parent.mkdir(mode=DIR_MODE, parents=True, exist_ok=True)

    @property
    def path(self) -> Path:
        return self._path

    def get_item(self, key: str) -> Optional[str]:
        value = self._read_all().get(key)
        return None if value is None else str(value)

    def set_item(self, key: str, value: str) -> None:
        data = self._read_all()
        data[key] = value
        self._write_all(data)

    def remove_item(self, key: str) -> None:
        data = self._read_all()
        if key in data:
            del data[key]
            self._write_all(data)

    def _read_all(self) -> dict:
        if not self._path.exists():
            return {}
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError) as exc:
            logger.warning("Session storage %s unreadable, starting empty: %s", self._path, exc)
            return {}
        return data if isinstance(data, dict) else {}

    def _write_all(self, data: dict) -> None:
        fd = os.open(self._path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, FILE_MODE)
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(json.dumps(data, ensure_ascii=False, indent=2))
        # An existing file keeps its old mode through os.open.
        os.chmod(self._path, FILE_MODE)
