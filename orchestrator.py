"""Step sequencing for the setup wizard, driven by an explicit transition table."""

from __future__ import annotations

import logging
from typing import Callable, Optional, Sequence

from errors import InvalidTransition
from models import MessageKind, StepEffect, StepEvent, StepState, StepStatus

logger = logging.getLogger(__name__)

StepChangeCallback = Callable[[int, StepStatus], None]
StatusCallback = Callable[[int, str, MessageKind], None]
ResetHook = Callable[[StepStatus], None]

Transition = tuple[StepStatus, tuple[StepEffect, ...]]


def _build_transitions() -> dict[tuple[StepStatus, StepEvent], Transition]:
    table: dict[tuple[StepStatus, StepEvent], Transition] = {}
    for status in StepStatus:
        table[(status, StepEvent.ACTIVATE)] = (
            StepStatus.ACTIVE,
            (StepEffect.FOCUS, StepEffect.DEMOTE_FOLLOWING, StepEffect.RESET),
        )
        table[(status, StepEvent.DEMOTE)] = (StepStatus.PENDING, ())
    for status in (StepStatus.ACTIVE, StepStatus.ERROR):
        table[(status, StepEvent.COMPLETE)] = (StepStatus.COMPLETED, (StepEffect.ADVANCE,))
        table[(status, StepEvent.COMPLETE_NO_ADVANCE)] = (StepStatus.COMPLETED, ())
        table[(status, StepEvent.FAIL)] = (StepStatus.ERROR, ())
    return table


TRANSITIONS = _build_transitions()


class StepOrchestrator:
    """Tracks step statuses and the focused step.

    Exactly one step is focused at a time; it is ``active`` or, after a
    failure, ``error``. Activating a step demotes every later step to pending.
    """

    def __init__(
        self,
        steps: Sequence[StepState],
        on_step_change: Optional[StepChangeCallback] = None,
        on_status: Optional[StatusCallback] = None,
    ) -> None:
        if not steps:
            raise ValueError("at least one step is required")
        self._steps = {s.number: s for s in steps}
        self._order = sorted(self._steps)
        self._reset_hooks: dict[int, ResetHook] = {}
        self.on_step_change = on_step_change
        self.on_status = on_status

        for state in self._steps.values():
            state.status = StepStatus.PENDING
            state.message = ""
        first = self._order[0]
        self._steps[first].status = StepStatus.ACTIVE
        self._current = first

    @property
    def current_step(self) -> int:
        return self._current

    @property
    def total_steps(self) -> int:
        return len(self._order)

    @property
    def last_step(self) -> int:
        return self._order[-1]

    def state(self, step: int) -> StepState:
        return self._get(step)

    def status(self, step: int) -> StepStatus:
        return self._get(step).status

    def message(self, step: int) -> tuple[str, MessageKind]:
        state = self._get(step)
        return state.message, state.message_kind

    def statuses(self) -> dict[int, StepStatus]:
        return {n: self._steps[n].status for n in self._order}

    def set_reset_hook(self, step: int, hook: ResetHook) -> None:
        self._get(step)
        self._reset_hooks[step] = hook

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def activate(self, step: int, run_reset: bool = True) -> None:
        previous = self.status(step)
        effects = self._apply(step, StepEvent.ACTIVATE)
        if StepEffect.FOCUS in effects:
            if self._current != step:
                logger.info("Current step %d -> %d", self._current, step)
            self._current = step
        if StepEffect.DEMOTE_FOLLOWING in effects:
            for later in self._order:
                if later > step:
                    self._apply(later, StepEvent.DEMOTE)
                    self.report(later, "")
        if StepEffect.RESET in effects and run_reset:
            self.report(step, "")
            hook = self._reset_hooks.get(step)
            if hook is not None:
                hook(previous)

    def complete(self, step: int) -> None:
        effects = self._apply(step, StepEvent.COMPLETE)
        if StepEffect.ADVANCE in effects and step < self.last_step:
            self.activate(self._next(step))

    def complete_without_advance(self, step: int) -> None:
        self._apply(step, StepEvent.COMPLETE_NO_ADVANCE)

    def fail(self, step: int, message: str) -> None:
        self._apply(step, StepEvent.FAIL)
        self.report(step, message, MessageKind.ERROR)

    def report(self, step: int, message: str, kind: MessageKind = MessageKind.INFO) -> None:
        state = self._get(step)
        state.message = message
        state.message_kind = kind
        if self.on_status:
            self.on_status(step, message, kind)

    def reset_all(self) -> None:
        """Demote every step and focus the first one without running hooks."""
        for number in self._order:
            self._apply(number, StepEvent.DEMOTE)
            self.report(number, "")
        self.activate(self._order[0], run_reset=False)

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _get(self, step: int) -> StepState:
        try:
            return self._steps[step]
        except KeyError:
            raise ValueError(f"unknown step {step}") from None

    def _next(self, step: int) -> int:
        index = self._order.index(step)
        return self._order[index + 1]

    def _apply(self, step: int, event: StepEvent) -> tuple[StepEffect, ...]:
        state = self._get(step)
        transition = TRANSITIONS.get((state.status, event))
        if transition is None:
            raise InvalidTransition(f"step {step}: {event.value} not allowed from {state.status.value}")
        new_status, effects = transition
        if state.status != new_status:
            state.status = new_status
            if self.on_step_change:
                self.on_step_change(step, new_status)
        return effects
