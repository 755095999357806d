"""Discards results of network calls issued from a step the user has left."""

from __future__ import annotations

import itertools
import logging
import time
from typing import Callable

from models import AsyncOperation

logger = logging.getLogger(__name__)


class AsyncOperationGuard:
    """Registry of in-flight operations tagged with the step they belong to.

    Cooperative only: requests keep running, their results are dropped when
    ``is_valid`` fails.
    """

    def __init__(self, current_step: Callable[[], int]) -> None:
        self._current_step = current_step
        self._operations: dict[str, AsyncOperation] = {}
        self._counter = itertools.count(1)

    def __len__(self) -> int:
        return len(self._operations)

    def __contains__(self, op_id: object) -> bool:
        return op_id in self._operations

    def new_operation_id(self, prefix: str) -> str:
        return f"{prefix}-{int(time.time() * 1000)}-{next(self._counter)}"

    def register(self, op_id: str, step: int) -> AsyncOperation:
        operation = AsyncOperation(op_id=op_id, step=step)
        self._operations[op_id] = operation
        logger.debug("Registered operation %s for step %d", op_id, step)
        return operation

    def unregister(self, op_id: str) -> None:
        if self._operations.pop(op_id, None) is not None:
            logger.debug("Operation %s finished", op_id)

    def is_valid(self, op_id: str) -> bool:
        operation = self._operations.get(op_id)
        if operation is None:
            logger.debug("Operation %s unknown or already cleared", op_id)
            return False
        current = self._current_step()
        if current != operation.step:
            logger.info(
                "Discarding result of %s: issued on step %d, now on step %d",
                op_id,
                operation.step,
                current,
            )
            self.unregister(op_id)
            return False
        return True

    def clear(self) -> None:
        if self._operations:
            logger.debug("Clearing %d pending operations", len(self._operations))
        self._operations.clear()
