"""Level meter model behind the recording waveform display."""

from __future__ import annotations

import math
from typing import Callable

MAX_BAR_HEIGHT = 25.0
MIN_BAR_HEIGHT = 1.0
AMPLITUDE_GAIN = 150.0
BARS_PER_SECOND = 10


class WaveformMeter:
    """Turns the running peak amplitude into bar heights, one bar per tick.

    ``tick`` is driven by a UI timer every ``interval_ms``; the amplitude
    source returns the max peak since its previous call.
    """

    def __init__(
        self,
        amplitude_source: Callable[[], float],
        max_duration_s: float = 30.0,
        max_bars: int = 300,
        interval_ms: int = 100,
    ) -> None:
        self._amplitude_source = amplitude_source
        self.max_duration_s = max_duration_s
        self.max_bars = max_bars
        self.interval_ms = interval_ms
        self._bars: list[float] = []

    @property
    def bars(self) -> list[float]:
        return list(self._bars)

    def reset(self) -> None:
        self._bars = []

    def tick(self) -> float:
        amplitude = self._amplitude_source()
        height = min(MAX_BAR_HEIGHT, max(MIN_BAR_HEIGHT, amplitude * AMPLITUDE_GAIN))
        self._bars.append(height)
        if len(self._bars) > self.max_bars:
            del self._bars[: len(self._bars) - self.max_bars]
        return height

    def visible_bars(self, elapsed_s: float) -> list[float]:
        count = min(self.max_bars, math.ceil(elapsed_s * BARS_PER_SECOND))
        if count <= 0:
            return []
        return self._bars[-count:]

    def progress(self, elapsed_s: float) -> float:
        if self.max_duration_s <= 0:
            return 1.0
        return max(0.0, min(1.0, elapsed_s / self.max_duration_s))
