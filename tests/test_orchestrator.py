from __future__ import annotations

import pytest

from errors import InvalidTransition
from models import MessageKind, StepEvent, StepState, StepStatus
from orchestrator import TRANSITIONS, StepOrchestrator


def _orchestrator(count: int = 6, **kwargs) -> StepOrchestrator:  # noqa: ANN003
    return StepOrchestrator([StepState(number=n, name=f"Step {n}") for n in range(1, count + 1)], **kwargs)


def _focused(orch: StepOrchestrator) -> list[int]:
    return [
        n for n, s in orch.statuses().items() if s in (StepStatus.ACTIVE, StepStatus.ERROR)
    ]


def test_initial_state_focuses_first_step() -> None:
    orch = _orchestrator()

    assert orch.current_step == 1
    assert orch.total_steps == 6
    assert orch.last_step == 6
    assert orch.status(1) == StepStatus.ACTIVE
    assert all(orch.status(n) == StepStatus.PENDING for n in range(2, 7))


def test_complete_advances_to_next_step() -> None:
    changes: list[tuple[int, StepStatus]] = []
    orch = _orchestrator(on_step_change=lambda step, status: changes.append((step, status)))

    orch.complete(1)

    assert orch.status(1) == StepStatus.COMPLETED
    assert orch.status(2) == StepStatus.ACTIVE
    assert orch.current_step == 2
    assert changes == [(1, StepStatus.COMPLETED), (2, StepStatus.ACTIVE)]


def test_complete_last_step_keeps_focus() -> None:
    orch = _orchestrator(count=2)
    orch.complete(1)
    orch.complete(2)

    assert orch.statuses() == {1: StepStatus.COMPLETED, 2: StepStatus.COMPLETED}
    assert orch.current_step == 2


def test_complete_without_advance() -> None:
    orch = _orchestrator()
    orch.complete_without_advance(1)

    assert orch.status(1) == StepStatus.COMPLETED
    assert orch.status(2) == StepStatus.PENDING
    assert orch.current_step == 1


def test_activate_demotes_following_steps_and_clears_their_messages() -> None:
    orch = _orchestrator()
    for n in range(1, 5):
        orch.complete(n)
    orch.report(3, "done", MessageKind.SUCCESS)

    orch.activate(2)

    assert orch.current_step == 2
    assert orch.status(1) == StepStatus.COMPLETED
    assert orch.status(2) == StepStatus.ACTIVE
    assert all(orch.status(n) == StepStatus.PENDING for n in range(3, 7))
    assert orch.message(3) == ("", MessageKind.INFO)


def test_single_focused_step_through_a_sequence() -> None:
    orch = _orchestrator()
    orch.complete(1)
    orch.complete(2)
    orch.fail(3, "bad")
    assert _focused(orch) == [3]

    orch.complete(3)
    assert _focused(orch) == [4]

    orch.activate(1)
    assert _focused(orch) == [1]


def test_fail_sets_error_and_reports() -> None:
    reports: list[tuple[int, str, MessageKind]] = []
    orch = _orchestrator(on_status=lambda step, msg, kind: reports.append((step, msg, kind)))

    orch.fail(1, "Please enter the AppKey")

    assert orch.status(1) == StepStatus.ERROR
    assert orch.message(1) == ("Please enter the AppKey", MessageKind.ERROR)
    assert reports[-1] == (1, "Please enter the AppKey", MessageKind.ERROR)


def test_error_step_can_complete() -> None:
    orch = _orchestrator()
    orch.fail(1, "x")
    orch.complete(1)

    assert orch.status(1) == StepStatus.COMPLETED
    assert orch.current_step == 2


@pytest.mark.parametrize("status", [StepStatus.PENDING, StepStatus.COMPLETED])
def test_complete_from_wrong_status_is_rejected(status: StepStatus) -> None:
    orch = _orchestrator()
    orch.complete(1)
    step = 3 if status == StepStatus.PENDING else 1

    with pytest.raises(InvalidTransition):
        orch.complete(step)
    with pytest.raises(InvalidTransition):
        orch.fail(step, "nope")


def test_unknown_step_raises_value_error() -> None:
    orch = _orchestrator()

    with pytest.raises(ValueError):
        orch.activate(7)
    with pytest.raises(ValueError):
        orch.status(0)


def test_reset_hook_receives_previous_status() -> None:
    seen: list[StepStatus] = []
    orch = _orchestrator()
    orch.set_reset_hook(2, seen.append)

    orch.complete(1)
    orch.complete(2)
    orch.activate(2)

    assert seen == [StepStatus.PENDING, StepStatus.COMPLETED]


def test_activate_without_reset_skips_hook() -> None:
    seen: list[StepStatus] = []
    orch = _orchestrator()
    orch.set_reset_hook(1, seen.append)

    orch.activate(1, run_reset=False)

    assert seen == []


def test_reset_all_returns_to_first_step() -> None:
    seen: list[StepStatus] = []
    orch = _orchestrator()
    orch.set_reset_hook(1, seen.append)
    for n in range(1, 4):
        orch.complete(n)
    orch.report(2, "ok", MessageKind.SUCCESS)

    orch.reset_all()

    assert orch.current_step == 1
    assert orch.status(1) == StepStatus.ACTIVE
    assert all(orch.status(n) == StepStatus.PENDING for n in range(2, 7))
    assert orch.message(2) == ("", MessageKind.INFO)
    assert seen == []


def test_transition_table_covers_activation_from_every_status() -> None:
    for status in StepStatus:
        target, _ = TRANSITIONS[(status, StepEvent.ACTIVATE)]
        assert target == StepStatus.ACTIVE


def test_requires_steps() -> None:
    with pytest.raises(ValueError):
        StepOrchestrator([])
