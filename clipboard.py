"""Clipboard access for exporting the configuration document."""

from __future__ import annotations

import logging

from errors import ClipboardError

try:
    import pyperclip
except Exception:  # pragma: no cover
    pyperclip = None  # type: ignore

logger = logging.getLogger(__name__)


class PyperclipClipboard:
    def copy(self, text: str) -> None:
        if pyperclip is None:
            raise ClipboardError("Clipboard support is not installed.")
        try:
            pyperclip.copy(text)
        except pyperclip.PyperclipException as exc:
            logger.error("Clipboard copy failed: %s", exc)
            raise ClipboardError(f"Could not access the clipboard: {exc}") from exc
        logger.info("Copied %d characters to the clipboard", len(text))
