from __future__ import annotations

import pytest

from waveform import WaveformMeter


def _meter(values: list[float], **kwargs) -> WaveformMeter:  # noqa: ANN003
    source = iter(values)
    return WaveformMeter(lambda: next(source), **kwargs)


def test_tick_scales_and_clamps_heights() -> None:
    meter = _meter([0.0, 0.1, 0.5])

    assert meter.tick() == 1.0
    assert meter.tick() == pytest.approx(15.0)
    assert meter.tick() == 25.0
    assert meter.bars == pytest.approx([1.0, 15.0, 25.0])


def test_bars_are_capped() -> None:
    meter = _meter([0.01 * i for i in range(10)], max_bars=4)
    for _ in range(10):
        meter.tick()

    assert len(meter.bars) == 4
    assert meter.bars[-1] == pytest.approx(0.09 * 150)


def test_visible_bars_follow_elapsed_time() -> None:
    meter = _meter([0.1] * 20)
    for _ in range(20):
        meter.tick()

    assert meter.visible_bars(0.0) == []
    assert len(meter.visible_bars(0.45)) == 5
    assert len(meter.visible_bars(100.0)) == 20


def test_progress_is_fraction_of_limit() -> None:
    meter = _meter([], max_duration_s=30.0)

    assert meter.progress(0.0) == 0.0
    assert meter.progress(15.0) == pytest.approx(0.5)
    assert meter.progress(45.0) == 1.0


def test_reset_clears_bars() -> None:
    meter = _meter([0.2])
    meter.tick()
    meter.reset()

    assert meter.bars == []
