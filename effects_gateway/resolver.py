"""
Backend resolution for task lookups.

Lookups usually arrive with only a task id, so the backend kind that owns
the task has to be rediscovered: the dominant kind is asked first and, on a
transport failure or a "task not found" rejection, the other kind is asked
exactly once.
"""

from __future__ import annotations

import logging
from typing import Awaitable, Callable, List, Optional, Tuple, TypeVar

from .errors import FallbackExhaustedError, TaskNotFoundError, TransportError
from .models import BackendKind, CancelOutcome, Region, StatusReport, TaskResult, TaskStatus
from .task_client import TaskServiceClient

logger = logging.getLogger(__name__)

T = TypeVar("T")

FALLBACK_ERRORS = (TransportError, TaskNotFoundError)


class BackendResolver:
    """Run task lookups against the dominant backend kind, falling back once."""

    def __init__(self, tasks: TaskServiceClient, primary: Optional[BackendKind] = None):
        self.tasks = tasks
        self.primary = primary or tasks.config.primary_backend

    def order(self, hint: Optional[BackendKind] = None) -> Tuple[BackendKind, BackendKind]:
        first = hint or self.primary
        return first, first.other

    async def run(
        self,
        operation: str,
        task_id: str,
        call: Callable[[BackendKind], Awaitable[T]],
        hint: Optional[BackendKind] = None,
    ) -> T:
        """
        Execute ``call`` against the first backend kind, then the other on failure.

        Only TransportError and TaskNotFoundError trigger the fallback; any
        other rejection propagates from the first attempt.

        Raises:
            FallbackExhaustedError: Both backend kinds failed
        """
        attempts: List[Tuple[BackendKind, Exception]] = []
        for kind in self.order(hint):
            try:
                result = await call(kind)
            except FALLBACK_ERRORS as e:
                attempts.append((kind, e))
                if len(attempts) == 1:
                    logger.warning(
                        f"{operation} for task {task_id} failed on {kind.value} backend ({e}), "
                        f"trying {kind.other.value}"
                    )
                continue
            if attempts:
                logger.info(f"{operation} for task {task_id} succeeded on fallback {kind.value} backend")
            return result

        logger.error(
            f"{operation} for task {task_id} failed on both backends: "
            + "; ".join(f"{kind.value}: {error}" for kind, error in attempts)
        )
        raise FallbackExhaustedError(operation, task_id, attempts)

    async def get_status_report(
        self, task_id: str, region: Region, hint: Optional[BackendKind] = None
    ) -> StatusReport:
        return await self.run(
            "status query",
            task_id,
            lambda kind: self.tasks.fetch_status(kind, task_id, region),
            hint,
        )

    async def get_status(
        self, task_id: str, region: Region, hint: Optional[BackendKind] = None
    ) -> TaskStatus:
        report = await self.get_status_report(task_id, region, hint)
        return report.status

    async def get_result(
        self, task_id: str, region: Region, hint: Optional[BackendKind] = None
    ) -> TaskResult:
        return await self.run(
            "result query",
            task_id,
            lambda kind: self.tasks.fetch_result(kind, task_id, region),
            hint,
        )

    async def request_cancel(
        self, task_id: str, region: Region, hint: Optional[BackendKind] = None
    ) -> CancelOutcome:
        return await self.run(
            "cancel",
            task_id,
            lambda kind: self.tasks.request_cancel(kind, task_id, region),
            hint,
        )
