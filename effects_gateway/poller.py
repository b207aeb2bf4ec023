"""Wait-for-completion loop built on status queries."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from .errors import TaskTerminalError, TimeoutExceeded, TransportError, ValidationError
from .models import BackendKind, Region, TaskResult, TaskStatus
from .resolver import BackendResolver

logger = logging.getLogger(__name__)


class TaskPoller:
    """Poll a task until it reaches a terminal status, then fetch its outputs once."""

    def __init__(
        self,
        resolver: BackendResolver,
        settle_seconds: float = 0.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """
        Initialize task poller.

        Args:
            resolver: Backend resolver used for status and result queries
            settle_seconds: Delay between observing success and fetching outputs
            sleep: Coroutine used to suspend between attempts
        """
        self.resolver = resolver
        self.settle_seconds = settle_seconds
        self._sleep = sleep

    async def wait_for_completion(
        self,
        task_id: str,
        region: Region,
        poll_interval_ms: int,
        max_attempts: int,
        hint: Optional[BackendKind] = None,
    ) -> TaskResult:
        """
        Wait for a task to finish and return its outputs.

        Args:
            task_id: Remote task id
            region: Region the task was submitted to
            poll_interval_ms: Delay between status queries in milliseconds
            max_attempts: Number of status queries before giving up
            hint: Backend kind to query first, when known

        Returns:
            Output URLs of the succeeded task

        Raises:
            TimeoutExceeded: Still not terminal after max_attempts queries
            TaskTerminalError: Task failed or was cancelled
            ValidationError: max_attempts is below 1
        """
        if max_attempts < 1:
            raise ValidationError("maxAttempts must be at least 1")

        interval = max(0, poll_interval_ms) / 1000.0
        last_status: Optional[TaskStatus] = None
        logger.info(
            f"Polling task {task_id} (region: {region.value}, interval: {poll_interval_ms}ms, "
            f"max attempts: {max_attempts})"
        )

        for attempt in range(1, max_attempts + 1):
            try:
                report = await self.resolver.get_status_report(task_id, region, hint)
            except TransportError as e:
                # A failed query is not a task failure; the attempt still counts
                logger.warning(f"Status query for task {task_id} failed (attempt {attempt}/{max_attempts}): {e}")
            else:
                last_status = report.status
                # Later queries go straight to the backend that answered
                hint = report.backend or hint
                logger.info(f"Task {task_id} status: {report.status.value} (attempt {attempt}/{max_attempts})")

                if report.status is TaskStatus.SUCCEEDED:
                    if self.settle_seconds > 0:
                        await self._sleep(self.settle_seconds)
                    return await self.resolver.get_result(task_id, region, hint)

                if report.status in (TaskStatus.FAILED, TaskStatus.CANCELLED):
                    message = report.message or f"task {report.status.value}"
                    logger.error(f"Task {task_id} ended as {report.status.value}: {message}")
                    raise TaskTerminalError(task_id, report.status, message)

            if attempt < max_attempts:
                await self._sleep(interval)

        logger.warning(f"Task {task_id} not finished after {max_attempts} attempts")
        raise TimeoutExceeded(task_id, max_attempts, last_status)
