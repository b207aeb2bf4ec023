"""Idempotent task cancellation."""

from __future__ import annotations

import logging
from typing import Optional

from .errors import FallbackExhaustedError, UpstreamRejection
from .models import BackendKind, CancelOutcome, Region
from .resolver import BackendResolver

logger = logging.getLogger(__name__)


class CancellationCoordinator:
    """
    Cancel tasks with the same two-backend policy as lookups.

    Cancelling a task that already reached a terminal state is a benign
    success: a refused cancel is followed by a status check, and a terminal
    status turns the refusal into ``ok=True``.
    """

    def __init__(self, resolver: BackendResolver):
        self.resolver = resolver

    async def cancel(
        self, task_id: str, region: Region, hint: Optional[BackendKind] = None
    ) -> CancelOutcome:
        """
        Cancel a task.

        Args:
            task_id: Remote task id
            region: Region the task was submitted to
            hint: Backend kind to try first, when known

        Returns:
            Outcome with ``ok`` and a human-readable message

        Raises:
            FallbackExhaustedError: Neither backend kind could be reached
        """
        logger.info(f"Cancelling task {task_id} (region: {region.value})")
        try:
            return await self.resolver.request_cancel(task_id, region, hint)
        except FallbackExhaustedError as e:
            refusal = _last_rejection(e)
            if refusal is None:
                raise
            return await self._settle_refusal(task_id, region, hint, refusal)
        except UpstreamRejection as e:
            return await self._settle_refusal(task_id, region, hint, e)

    async def _settle_refusal(
        self,
        task_id: str,
        region: Region,
        hint: Optional[BackendKind],
        refusal: UpstreamRejection,
    ) -> CancelOutcome:
        try:
            report = await self.resolver.get_status_report(task_id, region, hint)
        except FallbackExhaustedError as e:
            logger.warning(f"Cancel refused for task {task_id} and status unavailable: {e}")
            return CancelOutcome(ok=False, message=refusal.message, details={"code": refusal.code})

        if report.status.is_terminal:
            logger.info(f"Task {task_id} already {report.status.value}, cancel is a no-op")
            return CancelOutcome(
                ok=True,
                message=f"task already {report.status.value}",
                backend=report.backend,
                details={"status": report.status.value},
            )

        logger.warning(f"Cancel refused for running task {task_id}: {refusal.message}")
        return CancelOutcome(
            ok=False,
            message=refusal.message,
            backend=report.backend,
            details={"code": refusal.code, "status": report.status.value},
        )


def _last_rejection(error: FallbackExhaustedError) -> Optional[UpstreamRejection]:
    for _, attempt_error in reversed(error.attempts):
        if isinstance(attempt_error, UpstreamRejection):
            return attempt_error
    return None
