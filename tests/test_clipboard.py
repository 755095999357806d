from __future__ import annotations

from unittest.mock import MagicMock

import pytest

import clipboard
from clipboard import PyperclipClipboard
from errors import ClipboardError


class FakePyperclipError(Exception):
    pass


def _fake_pyperclip(copy_side_effect=None) -> MagicMock:  # noqa: ANN001
    fake = MagicMock()
    fake.PyperclipException = FakePyperclipError
    fake.copy.side_effect = copy_side_effect
    return fake


def test_copy_delegates_to_pyperclip(monkeypatch: pytest.MonkeyPatch) -> None:
    fake = _fake_pyperclip()
    monkeypatch.setattr(clipboard, "pyperclip", fake)

    PyperclipClipboard().copy('{"appKey": "x"}')

    fake.copy.assert_called_once_with('{"appKey": "x"}')


def test_copy_wraps_pyperclip_errors(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(clipboard, "pyperclip", _fake_pyperclip(FakePyperclipError("no xclip")))

    with pytest.raises(ClipboardError, match="no xclip"):
        PyperclipClipboard().copy("text")


def test_copy_without_pyperclip(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(clipboard, "pyperclip", None)

    with pytest.raises(ClipboardError):
        PyperclipClipboard().copy("text")
