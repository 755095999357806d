"""Microphone capture and the recording session built on top of it."""

from __future__ import annotations

import logging
import threading
import time
from queue import Empty, Full, Queue
from typing import Any, Callable, Optional

import numpy as np

from audio_codec import analyze_audio, block_levels, encode_mp3, merge_blocks
from errors import (
    DEVICE_NOT_FOUND,
    DEVICE_NOT_SUPPORTED,
    DEVICE_PERMISSION_DENIED,
    AlreadyRecording,
    DeviceError,
    DeviceUnavailable,
    EmptyCapture,
    RecordingError,
)
from interfaces import CaptureDevice
from models import AudioBlock, RecordingArtifact

try:
    import sounddevice as sd
except Exception:  # pragma: no cover
    sd = None  # type: ignore

logger = logging.getLogger(__name__)

QUIET_PEAK = 0.001

AutoStopCallback = Callable[[Optional[RecordingArtifact], Optional[RecordingError]], None]


def _device_cause(exc: Exception) -> str:
    low = str(exc).lower()
    if "permission" in low or "denied" in low or "not authorized" in low:
        return DEVICE_PERMISSION_DENIED
    if "no default input" in low or "invalid device" in low or "not found" in low or "no input" in low:
        return DEVICE_NOT_FOUND
    return DEVICE_NOT_SUPPORTED


class SoundDeviceCapture:
    """Posts float32 mono blocks with their peak/RMS levels into a bounded queue."""

    def __init__(
        self,
        sample_rate: int = 44100,
        channels: int = 1,
        block_size: int = 4096,
    ) -> None:
        self.sample_rate = sample_rate
        self.channels = channels
        self.block_size = block_size
        self._stream: Any = None
        self._running = False
        self._lock = threading.Lock()
        self._block_index = 0
        self.dropped_blocks = 0
        self._block_queue: Queue[AudioBlock | None] | None = None

    def open(self, block_queue: Queue[AudioBlock | None]) -> None:
        with self._lock:
            if self._running:
                return
            if sd is None:
                raise DeviceUnavailable(DEVICE_NOT_SUPPORTED, "sounddevice is not installed")
            self._block_queue = block_queue
            self._block_index = 0
            self.dropped_blocks = 0
            try:
                stream = sd.InputStream(
                    samplerate=self.sample_rate,
                    channels=self.channels,
                    dtype="float32",
                    blocksize=self.block_size,
                    callback=self._on_audio,
                )
                stream.start()
            except Exception as exc:
                raise DeviceUnavailable(_device_cause(exc), str(exc)) from exc
            self._stream = stream
            self._running = True

    def close(self) -> None:
        with self._lock:
            if not self._running:
                return
            self._running = False
            stream, self._stream = self._stream, None
            try:
                if stream is not None:
                    stream.stop()
                    stream.close()
            finally:
                self._emit_sentinel()

    def _on_audio(self, indata: Any, frames: int, time_info: Any, status: Any) -> None:
        if not self._running or self._block_queue is None:
            return
        data = np.asarray(indata, dtype=np.float32)
        samples = np.array(data[:, 0] if data.ndim > 1 else data, dtype=np.float32, copy=True)
        peak, rms = block_levels(samples)
        block = AudioBlock(samples=samples, peak=peak, rms=rms, index=self._block_index)
        self._block_index += 1
        try:
            self._block_queue.put_nowait(block)
        except Full:
            self.dropped_blocks += 1

    def _emit_sentinel(self) -> None:
        if self._block_queue is None:
            return
        try:
            self._block_queue.put_nowait(None)
        except Full:
            pass


class RecordingSession:
    """One recording at a time: capture, time limit, merge and MP3 encode."""

    def __init__(
        self,
        capture: CaptureDevice,
        max_duration_s: float = 30.0,
        bitrate_kbps: int = 128,
        queue_maxsize: int = 256,
        on_auto_stop: Optional[AutoStopCallback] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._capture = capture
        self.max_duration_s = max_duration_s
        self._bitrate_kbps = bitrate_kbps
        self._queue_maxsize = queue_maxsize
        self.on_auto_stop = on_auto_stop
        self._clock = clock

        self._lock = threading.RLock()
        self._recording = False
        self._device_open = False
        self._blocks: list[np.ndarray] = []
        self._amplitude = 0.0
        self._started_at: Optional[float] = None
        self._timer: Optional[threading.Timer] = None
        self._consumer: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self._queue: Queue[AudioBlock | None] = Queue(maxsize=queue_maxsize)
        self._raw_samples: Optional[np.ndarray] = None
        self.last_artifact: Optional[RecordingArtifact] = None

    @property
    def is_recording(self) -> bool:
        return self._recording

    @property
    def sample_rate(self) -> int:
        return self._capture.sample_rate

    def elapsed_s(self) -> float:
        if not self._recording or self._started_at is None:
            return 0.0
        return self._clock() - self._started_at

    def take_amplitude(self) -> float:
        """Max block peak since the previous call."""
        value, self._amplitude = self._amplitude, 0.0
        return value

    def get_raw_samples(self) -> Optional[np.ndarray]:
        return self._raw_samples

    def start(self) -> None:
        with self._lock:
            if self._recording:
                raise AlreadyRecording()
            self._blocks = []
            self._amplitude = 0.0
            self._stop_event.clear()
            self._queue = Queue(maxsize=self._queue_maxsize)
            try:
                self._capture.open(self._queue)
            except DeviceError:
                raise
            except Exception as exc:
                raise DeviceUnavailable(detail=str(exc)) from exc
            self._device_open = True
            self._recording = True
            self._started_at = self._clock()

            self._consumer = threading.Thread(target=self._consume, args=(self._queue,), daemon=True)
            self._consumer.start()
            self._timer = threading.Timer(self.max_duration_s, self._on_timeout)
            self._timer.daemon = True
            self._timer.start()
            logger.info("Recording started at %d Hz, limit %.0fs", self.sample_rate, self.max_duration_s)

    def stop(self) -> Optional[RecordingArtifact]:
        with self._lock:
            if not self._recording:
                return None
            self._recording = False
            self._cancel_timer()
            try:
                self._release_device()
                self._join_consumer()
                if not self._blocks:
                    raise EmptyCapture()

                merged = merge_blocks(self._blocks)
                self._raw_samples = merged
                analysis = analyze_audio(merged, self.sample_rate)
                if analysis.max_amplitude < QUIET_PEAK:
                    logger.warning("Recorded audio is nearly silent (peak %.5f)", analysis.max_amplitude)

                data = encode_mp3(merged, self.sample_rate, self._bitrate_kbps)
                artifact = RecordingArtifact(
                    data=data,
                    sample_rate=self.sample_rate,
                    duration_s=analysis.duration_s,
                )
                self.last_artifact = artifact
                logger.info(
                    "Recording finished: %.1fs, %d blocks, %d bytes",
                    artifact.duration_s,
                    len(self._blocks),
                    artifact.size_bytes,
                )
                return artifact
            except RecordingError:
                self._raw_samples = None
                raise
            finally:
                self._blocks = []
                self._started_at = None

    def release(self) -> None:
        """Abandon any recording in progress and free the device."""
        with self._lock:
            self._recording = False
            self._cancel_timer()
            self._release_device()
            self._join_consumer()
            self._blocks = []
            self._started_at = None

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _consume(self, block_queue: Queue[AudioBlock | None]) -> None:
        while not self._stop_event.is_set():
            try:
                block = block_queue.get(timeout=0.2)
            except Empty:
                continue
            if block is None:
                break
            self._blocks.append(block.samples)
            self._amplitude = max(self._amplitude, block.peak)

    def _join_consumer(self) -> None:
        consumer, self._consumer = self._consumer, None
        if consumer is not None and consumer.is_alive():
            consumer.join(timeout=1.0)
            if consumer.is_alive():
                self._stop_event.set()
                consumer.join(timeout=0.5)
        while True:
            try:
                block = self._queue.get_nowait()
            except Empty:
                break
            if block is not None:
                self._blocks.append(block.samples)

    def _release_device(self) -> None:
        if not self._device_open:
            return
        self._device_open = False
        try:
            self._capture.close()
        except Exception as exc:
            logger.warning("Closing capture device failed: %s", exc)

    def _cancel_timer(self) -> None:
        timer, self._timer = self._timer, None
        if timer is not None:
            timer.cancel()

    def _on_timeout(self) -> None:
        artifact: Optional[RecordingArtifact] = None
        error: Optional[RecordingError] = None
        with self._lock:
            if not self._recording:
                return
            logger.info("Recording limit of %.0fs reached, stopping", self.max_duration_s)
            try:
                artifact = self.stop()
            except RecordingError as exc:
                error = exc
        callback = self.on_auto_stop
        if callback is not None:
            callback(artifact, error)
