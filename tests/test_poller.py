"""Tests for the wait-for-completion loop."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from effects_gateway.errors import TaskTerminalError, TimeoutExceeded, TransportError, ValidationError
from effects_gateway.models import BackendKind, Region, StatusReport, TaskResult, TaskStatus
from effects_gateway.poller import TaskPoller


def _report(status, backend=BackendKind.WORKFLOW, message=""):
    return StatusReport(status=status, backend=backend, message=message)


def _poller(statuses, result=None, settle_seconds=0.0):
    resolver = MagicMock()
    resolver.get_status_report = AsyncMock(side_effect=statuses)
    resolver.get_result = AsyncMock(return_value=result or TaskResult.from_urls(["https://cdn/out.png"]))
    sleep = AsyncMock()
    return TaskPoller(resolver, settle_seconds=settle_seconds, sleep=sleep), resolver, sleep


@pytest.mark.asyncio
async def test_returns_result_after_success():
    poller, resolver, sleep = _poller(
        [_report(TaskStatus.QUEUED), _report(TaskStatus.RUNNING), _report(TaskStatus.SUCCEEDED)]
    )

    result = await poller.wait_for_completion("t-1", Region.HONGKONG, poll_interval_ms=2000, max_attempts=5)

    assert result.as_list() == ["https://cdn/out.png"]
    assert resolver.get_status_report.await_count == 3
    resolver.get_result.assert_awaited_once_with("t-1", Region.HONGKONG, BackendKind.WORKFLOW)
    assert [call.args[0] for call in sleep.await_args_list] == [2.0, 2.0]


@pytest.mark.asyncio
async def test_settle_delay_before_result_fetch():
    poller, resolver, sleep = _poller([_report(TaskStatus.SUCCEEDED)], settle_seconds=3.0)

    await poller.wait_for_completion("t-1", Region.HONGKONG, poll_interval_ms=1000, max_attempts=3)

    sleep.assert_awaited_once_with(3.0)
    resolver.get_result.assert_awaited_once()


@pytest.mark.asyncio
async def test_times_out_after_exact_attempt_budget():
    """Test a task that never finishes is queried exactly max_attempts times."""
    poller, resolver, sleep = _poller([_report(TaskStatus.RUNNING)] * 4)

    with pytest.raises(TimeoutExceeded) as exc_info:
        await poller.wait_for_completion("t-1", Region.HONGKONG, poll_interval_ms=10, max_attempts=4)

    assert resolver.get_status_report.await_count == 4
    assert sleep.await_count == 3
    assert exc_info.value.attempts == 4
    assert exc_info.value.last_status is TaskStatus.RUNNING
    resolver.get_result.assert_not_awaited()


@pytest.mark.asyncio
@pytest.mark.parametrize("status", [TaskStatus.FAILED, TaskStatus.CANCELLED])
async def test_terminal_failure_raises(status):
    poller, resolver, _ = _poller([_report(TaskStatus.RUNNING), _report(status, message="node 19 crashed")])

    with pytest.raises(TaskTerminalError) as exc_info:
        await poller.wait_for_completion("t-1", Region.HONGKONG, poll_interval_ms=10, max_attempts=10)

    assert exc_info.value.status is status
    assert exc_info.value.message == "node 19 crashed"
    resolver.get_result.assert_not_awaited()


@pytest.mark.asyncio
async def test_transport_errors_count_as_attempts():
    poller, resolver, _ = _poller(
        [TransportError("timeout"), TransportError("timeout"), _report(TaskStatus.SUCCEEDED)]
    )

    result = await poller.wait_for_completion("t-1", Region.HONGKONG, poll_interval_ms=10, max_attempts=3)

    assert len(result) == 1
    assert resolver.get_status_report.await_count == 3


@pytest.mark.asyncio
async def test_transport_errors_exhaust_budget():
    poller, _, _ = _poller([TransportError("down")] * 2)

    with pytest.raises(TimeoutExceeded) as exc_info:
        await poller.wait_for_completion("t-1", Region.HONGKONG, poll_interval_ms=10, max_attempts=2)

    assert exc_info.value.last_status is None


@pytest.mark.asyncio
async def test_answering_backend_is_reused_for_later_queries():
    poller, resolver, _ = _poller(
        [_report(TaskStatus.RUNNING, backend=BackendKind.APP), _report(TaskStatus.SUCCEEDED, backend=BackendKind.APP)]
    )

    await poller.wait_for_completion("t-1", Region.HONGKONG, poll_interval_ms=10, max_attempts=3)

    second_call = resolver.get_status_report.await_args_list[1]
    assert second_call.args == ("t-1", Region.HONGKONG, BackendKind.APP)
    resolver.get_result.assert_awaited_once_with("t-1", Region.HONGKONG, BackendKind.APP)


@pytest.mark.asyncio
async def test_rejects_non_positive_attempt_budget():
    poller, _, _ = _poller([])

    with pytest.raises(ValidationError):
        await poller.wait_for_completion("t-1", Region.HONGKONG, poll_interval_ms=10, max_attempts=0)
