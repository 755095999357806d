"""Tests for SoundDeviceCapture and RecordingSession."""

from __future__ import annotations

import threading
from queue import Queue
from unittest.mock import MagicMock, patch

import numpy as np
import pytest

from errors import (
    DEVICE_NOT_FOUND,
    DEVICE_PERMISSION_DENIED,
    AlreadyRecording,
    DeviceUnavailable,
    EmptyCapture,
    EncodingError,
)
from models import AudioBlock, RecordingArtifact
from recorder import RecordingSession, SoundDeviceCapture


# ---------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------

class FakeCapture:
    sample_rate = 16000

    def __init__(self, fail: Exception | None = None) -> None:
        self.fail = fail
        self.queue: Queue[AudioBlock | None] | None = None
        self.open_calls = 0
        self.close_calls = 0

    def open(self, block_queue: Queue[AudioBlock | None]) -> None:
        if self.fail is not None:
            raise self.fail
        self.open_calls += 1
        self.queue = block_queue

    def close(self) -> None:
        self.close_calls += 1
        assert self.queue is not None
        self.queue.put_nowait(None)

    def push(self, values: list[float], index: int = 0) -> None:
        samples = np.array(values, dtype=np.float32)
        assert self.queue is not None
        self.queue.put_nowait(
            AudioBlock(samples=samples, peak=float(np.max(np.abs(samples))), rms=0.0, index=index)
        )


# ---------------------------------------------------------------
# SoundDeviceCapture
# ---------------------------------------------------------------

@patch("recorder.sd")
def test_capture_open_and_close(mock_sd: MagicMock) -> None:
    mock_stream = MagicMock()
    mock_sd.InputStream.return_value = mock_stream

    capture = SoundDeviceCapture(sample_rate=44100, block_size=4096)
    q: Queue[AudioBlock | None] = Queue()
    capture.open(q)

    kwargs = mock_sd.InputStream.call_args.kwargs
    assert kwargs["samplerate"] == 44100
    assert kwargs["blocksize"] == 4096
    assert kwargs["dtype"] == "float32"
    mock_stream.start.assert_called_once()

    capture.close()
    capture.close()  # second close is a no-op

    mock_stream.stop.assert_called_once()
    mock_stream.close.assert_called_once()
    assert q.get_nowait() is None
    assert q.empty()


@patch("recorder.sd")
def test_capture_callback_posts_blocks_with_levels(mock_sd: MagicMock) -> None:
    mock_sd.InputStream.return_value = MagicMock()

    capture = SoundDeviceCapture()
    q: Queue[AudioBlock | None] = Queue()
    capture.open(q)

    indata = np.array([[0.5], [-0.5], [0.5], [-0.5]], dtype=np.float32)
    capture._on_audio(indata, frames=4, time_info=None, status=None)
    capture._on_audio(indata, frames=4, time_info=None, status=None)

    first = q.get_nowait()
    second = q.get_nowait()
    assert isinstance(first, AudioBlock)
    assert first.samples.shape == (4,)
    assert first.peak == pytest.approx(0.5)
    assert first.rms == pytest.approx(0.5)
    assert (first.index, second.index) == (0, 1)
    capture.close()


@patch("recorder.sd")
def test_capture_callback_copies_samples(mock_sd: MagicMock) -> None:
    mock_sd.InputStream.return_value = MagicMock()

    capture = SoundDeviceCapture()
    q: Queue[AudioBlock | None] = Queue()
    capture.open(q)

    indata = np.array([[0.25], [0.25]], dtype=np.float32)
    capture._on_audio(indata, frames=2, time_info=None, status=None)
    indata[:] = 0.0

    assert q.get_nowait().samples.tolist() == [0.25, 0.25]
    capture.close()


@patch("recorder.sd")
def test_capture_queue_full_counts_dropped_blocks(mock_sd: MagicMock) -> None:
    mock_sd.InputStream.return_value = MagicMock()

    capture = SoundDeviceCapture()
    q: Queue[AudioBlock | None] = Queue(maxsize=1)
    capture.open(q)

    indata = np.zeros((16, 1), dtype=np.float32)
    capture._on_audio(indata, frames=16, time_info=None, status=None)
    assert capture.dropped_blocks == 0

    capture._on_audio(indata, frames=16, time_info=None, status=None)
    assert capture.dropped_blocks == 1
    capture.close()


@patch("recorder.sd")
def test_capture_callback_after_close_is_noop(mock_sd: MagicMock) -> None:
    mock_sd.InputStream.return_value = MagicMock()

    capture = SoundDeviceCapture()
    q: Queue[AudioBlock | None] = Queue()
    capture.open(q)
    capture.close()
    q.get_nowait()

    capture._on_audio(np.zeros((16, 1), dtype=np.float32), frames=16, time_info=None, status=None)
    assert q.empty()


def test_capture_without_sounddevice(monkeypatch) -> None:  # noqa: ANN001
    import recorder as rec_mod

    monkeypatch.setattr(rec_mod, "sd", None)

    with pytest.raises(DeviceUnavailable):
        SoundDeviceCapture().open(Queue())


@patch("recorder.sd")
def test_capture_maps_missing_device(mock_sd: MagicMock) -> None:
    mock_sd.InputStream.side_effect = RuntimeError("No Default Input Device Available")

    with pytest.raises(DeviceUnavailable) as info:
        SoundDeviceCapture().open(Queue())

    assert info.value.cause == DEVICE_NOT_FOUND


@patch("recorder.sd")
def test_capture_maps_permission_denied(mock_sd: MagicMock) -> None:
    mock_sd.InputStream.return_value.start.side_effect = RuntimeError("Permission denied")

    with pytest.raises(DeviceUnavailable) as info:
        SoundDeviceCapture().open(Queue())

    assert info.value.cause == DEVICE_PERMISSION_DENIED


# ---------------------------------------------------------------
# RecordingSession
# ---------------------------------------------------------------

@patch("recorder.encode_mp3", return_value=b"mp3-bytes")
def test_session_stop_returns_artifact(mock_encode: MagicMock) -> None:
    capture = FakeCapture()
    session = RecordingSession(capture)
    session.start()
    capture.push([0.1, 0.2], index=0)
    capture.push([0.3, 0.4], index=1)

    artifact = session.stop()

    assert isinstance(artifact, RecordingArtifact)
    assert artifact.data == b"mp3-bytes"
    assert artifact.size_bytes == 9
    assert artifact.sample_rate == 16000
    assert session.last_artifact is artifact
    assert session.get_raw_samples().tolist() == pytest.approx([0.1, 0.2, 0.3, 0.4])
    assert mock_encode.call_args.args[1] == 16000
    assert capture.close_calls == 1
    assert not session.is_recording


def test_session_start_twice_raises() -> None:
    session = RecordingSession(FakeCapture())
    session.start()
    try:
        with pytest.raises(AlreadyRecording):
            session.start()
    finally:
        session.release()


def test_session_stop_without_blocks_raises_empty_capture() -> None:
    capture = FakeCapture()
    session = RecordingSession(capture)
    session.start()

    with pytest.raises(EmptyCapture):
        session.stop()

    assert capture.close_calls == 1
    assert not session.is_recording
    assert session.get_raw_samples() is None


def test_session_stop_when_idle_returns_none() -> None:
    session = RecordingSession(FakeCapture())

    assert session.stop() is None
    assert session.get_raw_samples() is None


@patch("recorder.encode_mp3", side_effect=EncodingError("encoder broke"))
def test_session_releases_device_when_encoding_fails(mock_encode: MagicMock) -> None:
    capture = FakeCapture()
    session = RecordingSession(capture)
    session.start()
    capture.push([0.5])

    with pytest.raises(EncodingError):
        session.stop()

    assert capture.close_calls == 1
    assert session.get_raw_samples() is None
    assert not session.is_recording


def test_session_start_failure_leaves_idle() -> None:
    session = RecordingSession(FakeCapture(fail=DeviceUnavailable(DEVICE_PERMISSION_DENIED)))

    with pytest.raises(DeviceUnavailable):
        session.start()

    assert not session.is_recording


def test_session_wraps_unexpected_open_errors() -> None:
    session = RecordingSession(FakeCapture(fail=OSError("device busy")))

    with pytest.raises(DeviceUnavailable):
        session.start()


def test_session_release_is_idempotent() -> None:
    capture = FakeCapture()
    session = RecordingSession(capture)
    session.start()
    capture.push([0.1])

    session.release()
    session.release()

    assert capture.close_calls == 1
    assert not session.is_recording
    assert session.stop() is None


@patch("recorder.encode_mp3", return_value=b"mp3")
def test_session_tracks_peak_amplitude(mock_encode: MagicMock) -> None:
    capture = FakeCapture()
    session = RecordingSession(capture)
    session.start()
    capture.push([0.1, -0.6])
    capture.push([0.2])
    session.stop()

    assert session.take_amplitude() == pytest.approx(0.6)
    assert session.take_amplitude() == 0.0


def test_session_elapsed_uses_clock() -> None:
    now = [100.0]
    session = RecordingSession(FakeCapture(), clock=lambda: now[0])

    assert session.elapsed_s() == 0.0
    session.start()
    now[0] = 102.5
    assert session.elapsed_s() == pytest.approx(2.5)
    session.release()


@patch("recorder.encode_mp3", return_value=b"auto")
def test_session_auto_stops_at_limit(mock_encode: MagicMock) -> None:
    done = threading.Event()
    results: list[tuple] = []

    def on_auto_stop(artifact, error) -> None:  # noqa: ANN001
        results.append((artifact, error))
        done.set()

    capture = FakeCapture()
    session = RecordingSession(capture, max_duration_s=0.1, on_auto_stop=on_auto_stop)
    session.start()
    capture.push([0.3, 0.3])

    assert done.wait(timeout=3.0)
    artifact, error = results[0]
    assert error is None
    assert artifact.data == b"auto"
    assert not session.is_recording
    assert capture.close_calls == 1


def test_session_auto_stop_reports_empty_capture() -> None:
    done = threading.Event()
    results: list[tuple] = []

    def on_auto_stop(artifact, error) -> None:  # noqa: ANN001
        results.append((artifact, error))
        done.set()

    session = RecordingSession(FakeCapture(), max_duration_s=0.05, on_auto_stop=on_auto_stop)
    session.start()

    assert done.wait(timeout=3.0)
    artifact, error = results[0]
    assert artifact is None
    assert isinstance(error, EmptyCapture)


def test_manual_stop_cancels_auto_stop() -> None:
    called = threading.Event()
    session = RecordingSession(
        FakeCapture(), max_duration_s=0.2, on_auto_stop=lambda a, e: called.set()
    )
    session.start()
    with pytest.raises(EmptyCapture):
        session.stop()

    assert not called.wait(timeout=0.5)
