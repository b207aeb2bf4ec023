"""Error taxonomy for the task orchestration layer."""

from __future__ import annotations

from typing import Any, Optional, Sequence, Tuple


class EffectsGatewayError(Exception):
    """Base exception for effects gateway errors."""
    pass


class ValidationError(EffectsGatewayError):
    """Bad file type/name or malformed template, raised before any network call."""
    pass


class TransportError(EffectsGatewayError):
    """Network failure, timeout, or an unreadable response from the remote API."""
    pass


class UpstreamRejection(EffectsGatewayError):
    """Remote API answered with a non-zero code outside the non-fatal whitelist."""

    def __init__(
        self,
        message: str,
        code: Optional[int] = None,
        payload: Optional[Any] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.payload = payload


class TaskNotFoundError(UpstreamRejection):
    """Remote API does not know the task id on the queried backend kind."""
    pass


class TaskTerminalError(EffectsGatewayError):
    """Task reached Failed or Cancelled while being awaited."""

    def __init__(self, task_id: str, status: Any, message: str):
        super().__init__(f"Task {task_id} ended as {getattr(status, 'value', status)}: {message}")
        self.task_id = task_id
        self.status = status
        self.message = message


class TimeoutExceeded(EffectsGatewayError):
    """Poller exhausted its attempt budget while the task was still in flight."""

    def __init__(self, task_id: str, attempts: int, last_status: Any = None):
        super().__init__(
            f"Task {task_id} still processing after {attempts} attempts "
            f"(last status: {getattr(last_status, 'value', last_status)})"
        )
        self.task_id = task_id
        self.attempts = attempts
        self.last_status = last_status


class FallbackExhaustedError(TransportError):
    """Both backend kinds failed for the same lookup."""

    def __init__(self, operation: str, task_id: str, attempts: Sequence[Tuple[Any, Exception]]):
        details = "; ".join(
            f"{getattr(kind, 'value', kind)}: {error}" for kind, error in attempts
        )
        super().__init__(f"{operation} failed on every backend for task {task_id} ({details})")
        self.operation = operation
        self.task_id = task_id
        self.attempts = list(attempts)
