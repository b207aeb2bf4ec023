"""Task submission and per-backend task queries against the remote open API."""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Optional, Sequence

from .api_client import ApiEnvelope, OpenApiClient
from .errors import TaskNotFoundError, UpstreamRejection
from .models import (
    BackendKind,
    BackendSelector,
    CancelOutcome,
    NodeBinding,
    Region,
    StatusReport,
    TaskHandle,
    TaskResult,
    TaskStatus,
)

logger = logging.getLogger(__name__)

STATUS_PATH = "/task/openapi/status"
OUTPUTS_PATH = "/task/openapi/outputs"
CANCEL_PATH = "/task/openapi/cancel"

_IMAGE_SUFFIXES = (".png", ".jpg", ".jpeg", ".webp", ".gif")


def absolute_url(url: str, base_domain: str) -> str:
    if url.startswith("http://") or url.startswith("https://"):
        return url
    base = base_domain.rstrip("/")
    return f"{base}{url}" if url.startswith("/") else f"{base}/{url}"


def _preview(value: str, limit: int = 50) -> str:
    return value if len(value) <= limit else value[:limit] + "..."


class BackendAdapter:
    """Request shape and response interpretation for one backend kind."""

    kind: BackendKind
    create_path: str

    def build_create_payload(
        self,
        selector: BackendSelector,
        bindings: Sequence[NodeBinding],
        instance_type: Optional[str],
    ) -> Dict[str, Any]:
        raise NotImplementedError

    def check_accepted(self, envelope: ApiEnvelope) -> None:
        """Hook for backend-specific acceptance checks on a create response."""

    def extract_outputs(self, data: Any, base_domain: str) -> List[str]:
        raise NotImplementedError


class WorkflowBackend(BackendAdapter):
    kind = BackendKind.WORKFLOW
    create_path = "/task/openapi/create"

    def build_create_payload(self, selector, bindings, instance_type):
        payload: Dict[str, Any] = {
            "workflowId": selector.workflow_id,
            "addMetadata": True,
        }
        # An empty node list runs the workflow unmodified
        if bindings:
            payload["nodeInfoList"] = [binding.to_wire() for binding in bindings]
        if instance_type:
            payload["instanceType"] = instance_type
        return payload

    def check_accepted(self, envelope: ApiEnvelope) -> None:
        data = envelope.data if isinstance(envelope.data, dict) else {}
        tips_raw = data.get("promptTips")
        if not tips_raw:
            return
        try:
            tips = json.loads(tips_raw) if isinstance(tips_raw, str) else tips_raw
        except ValueError:
            logger.warning(f"Could not parse promptTips: {_preview(str(tips_raw), 200)}")
            return
        if not isinstance(tips, dict):
            return
        node_errors = tips.get("node_errors") or {}
        if tips.get("error") or node_errors:
            logger.error(f"Workflow validation failed: error={tips.get('error')}, node_errors={node_errors}")
            raise UpstreamRejection(
                f"workflow validation failed: {json.dumps(tips, ensure_ascii=False)[:500]}",
                code=envelope.code,
                payload=envelope.raw,
            )

    def extract_outputs(self, data, base_domain):
        if not isinstance(data, list) or not data:
            raise TaskNotFoundError("workflow backend returned no outputs", payload=data)
        urls = []
        for item in data:
            if isinstance(item, str):
                urls.append(absolute_url(item, base_domain))
            elif isinstance(item, dict) and (item.get("fileUrl") or item.get("url")):
                urls.append(absolute_url(str(item.get("fileUrl") or item.get("url")), base_domain))
            else:
                logger.warning(f"Skipping unrecognized output entry: {item!r}")
        return urls


class AppBackend(BackendAdapter):
    kind = BackendKind.APP
    create_path = "/task/openapi/ai-app/run"

    def build_create_payload(self, selector, bindings, instance_type):
        if instance_type:
            logger.warning(f"instanceType={instance_type} ignored for app {selector.webapp_id}")
        return {
            # Sent as a string; the remote API rejects integer app ids
            "webappId": selector.webapp_id,
            "nodeInfoList": [binding.to_wire() for binding in bindings],
        }

    def extract_outputs(self, data, base_domain):
        urls = []
        if isinstance(data, list):
            for item in data:
                if isinstance(item, str):
                    urls.append(absolute_url(item, base_domain))
                elif isinstance(item, dict) and (item.get("fileUrl") or item.get("url")):
                    urls.append(absolute_url(str(item.get("fileUrl") or item.get("url")), base_domain))
        elif isinstance(data, dict):
            for value in data.values():
                if isinstance(value, str) and any(suffix in value.lower() for suffix in _IMAGE_SUFFIXES):
                    urls.append(absolute_url(value, base_domain))
        else:
            logger.warning(f"Unrecognized app output format: {data!r}")
        return urls


class TaskServiceClient:
    """Create tasks and run status/result/cancel queries against one backend kind."""

    def __init__(self, api: OpenApiClient):
        self.api = api
        self.config = api.config
        self.backends: Dict[BackendKind, BackendAdapter] = {
            BackendKind.WORKFLOW: WorkflowBackend(),
            BackendKind.APP: AppBackend(),
        }

    def backend(self, kind: BackendKind) -> BackendAdapter:
        return self.backends[kind]

    async def submit(
        self,
        selector: BackendSelector,
        bindings: Sequence[NodeBinding],
        region: Region,
        instance_type: Optional[str] = None,
    ) -> TaskHandle:
        """
        Create a task on the backend named by the selector.

        Args:
            selector: Workflow or app identifier
            bindings: Fully bound node list
            region: Target region
            instance_type: Optional machine class for workflow tasks

        Returns:
            Handle for the created task

        Raises:
            UpstreamRejection: Non-zero code outside the whitelist, or no task id
            TransportError: Network failure or timeout
        """
        backend = self.backend(selector.kind)
        payload = backend.build_create_payload(selector, bindings, instance_type)

        logger.info(
            f"Submitting {selector.kind.value} task {selector.identifier} "
            f"(region: {region.value}, nodes: {len(bindings)})"
        )
        for binding in bindings:
            logger.debug(
                f"  node {binding.node_id}.{binding.field_name} = {_preview(binding.field_value)!r}"
            )

        envelope = await self.api.post_json(
            region, backend.create_path, payload, timeout=self.config.submit_timeout
        )

        if envelope.code != 0:
            if envelope.code not in self.config.nonfatal_codes:
                logger.error(
                    f"Task creation rejected for {selector.kind.value} {selector.identifier}: "
                    f"code={envelope.code}, msg={envelope.msg}"
                )
                raise UpstreamRejection(
                    f"task creation rejected: {envelope.msg or 'code ' + str(envelope.code)}",
                    code=envelope.code,
                    payload=envelope.raw,
                )
            logger.warning(
                f"Task creation returned non-fatal code {envelope.code}: {envelope.msg}"
            )

        backend.check_accepted(envelope)

        task_id = envelope.data.get("taskId") if isinstance(envelope.data, dict) else None
        if not task_id:
            raise UpstreamRejection(
                f"task creation returned no taskId (code {envelope.code}): {envelope.msg}",
                code=envelope.code,
                payload=envelope.raw,
            )

        handle = TaskHandle(task_id=str(task_id), backend=selector, region=region)
        logger.info(f"Task {handle.task_id} created on {selector.kind.value} backend")
        return handle

    async def fetch_status(self, kind: BackendKind, task_id: str, region: Region) -> StatusReport:
        """Query one backend kind for a task's status."""
        envelope = await self.api.post_json(
            region, STATUS_PATH, {"taskId": task_id}, timeout=self.config.status_timeout
        )
        if not envelope.ok:
            raise self.api.rejection(envelope, f"{kind.value} status query failed for task {task_id}")
        if envelope.data in (None, ""):
            raise TaskNotFoundError(
                f"{kind.value} status query returned no status for task {task_id}",
                code=envelope.code,
                payload=envelope.raw,
            )

        status = TaskStatus.from_raw(envelope.data)
        message = envelope.msg
        if isinstance(envelope.data, dict):
            message = str(envelope.data.get("message") or envelope.data.get("msg") or message)
        logger.debug(f"Task {task_id} status on {kind.value}: {envelope.data!r} -> {status.value}")
        return StatusReport(status=status, raw=envelope.data, message=message, backend=kind)

    async def fetch_result(self, kind: BackendKind, task_id: str, region: Region) -> TaskResult:
        """Query one backend kind for a task's output URLs."""
        envelope = await self.api.post_json(
            region, OUTPUTS_PATH, {"taskId": task_id}, timeout=self.config.result_timeout
        )
        if not envelope.ok:
            raise self.api.rejection(envelope, f"{kind.value} result query failed for task {task_id}")

        urls = self.backend(kind).extract_outputs(envelope.data, self.api.base_domain(region))
        logger.info(f"Task {task_id} produced {len(urls)} output(s) on {kind.value}")
        return TaskResult.from_urls(urls)

    async def request_cancel(self, kind: BackendKind, task_id: str, region: Region) -> CancelOutcome:
        """Ask one backend kind to cancel a task."""
        envelope = await self.api.post_json(
            region, CANCEL_PATH, {"taskId": task_id}, timeout=self.config.cancel_timeout
        )
        if not envelope.ok:
            raise self.api.rejection(envelope, f"{kind.value} cancel failed for task {task_id}")
        logger.info(f"Task {task_id} cancelled on {kind.value}")
        return CancelOutcome(ok=True, message=envelope.msg or "cancelled", backend=kind)
