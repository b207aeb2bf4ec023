"""Task orchestration facade: upload, bind, submit, then poll/fetch/cancel."""

from __future__ import annotations

import logging
from typing import Any, List, Mapping, Optional, Sequence

from .api_client import OpenApiClient
from .binder import bind, parse_node_template
from .cancellation import CancellationCoordinator
from .config import GatewayConfig
from .errors import ValidationError
from .models import (
    BackendKind,
    BackendSelector,
    CancelOutcome,
    FileToken,
    NodeBinding,
    NodeTemplateEntry,
    Region,
    TaskHandle,
    TaskResult,
    TaskStatus,
    UploadedAsset,
)
from .poller import TaskPoller
from .resolver import BackendResolver
from .task_client import TaskServiceClient
from .upload import UploadGateway

logger = logging.getLogger(__name__)


class TaskOrchestrator:
    """Single entry point wiring every component to one shared HTTP client."""

    def __init__(self, config: GatewayConfig, api: Optional[OpenApiClient] = None):
        self.config = config
        self.api = api or OpenApiClient(config)
        self.uploads = UploadGateway(self.api)
        self.tasks = TaskServiceClient(self.api)
        self.resolver = BackendResolver(self.tasks)
        self.cancellation = CancellationCoordinator(self.resolver)
        self.poller = TaskPoller(self.resolver, settle_seconds=config.result_settle_seconds)

    async def close(self) -> None:
        await self.api.close()

    async def upload(self, data: bytes, filename: str, region: Region, content_type: Optional[str] = None) -> FileToken:
        return await self.uploads.upload(data, filename, region, content_type)

    def bind(
        self,
        template: Sequence[NodeTemplateEntry],
        file_tokens: Sequence[FileToken],
        form_fields: Mapping[str, Any],
    ) -> List[NodeBinding]:
        return bind(template, file_tokens, form_fields)

    async def submit(
        self,
        selector: BackendSelector,
        bindings: Sequence[NodeBinding],
        region: Region,
        instance_type: Optional[str] = None,
    ) -> TaskHandle:
        return await self.tasks.submit(selector, bindings, region, instance_type)

    async def apply_effect(
        self,
        selector: BackendSelector,
        template: Any,
        assets: Sequence[UploadedAsset],
        form_fields: Mapping[str, Any],
        region: Region,
        instance_type: Optional[str] = None,
    ) -> TaskHandle:
        """
        Upload every asset, bind the template, and submit the task.

        Every asset is validated before the first upload, so a bad file never
        leaves a partial set of uploads behind. Returns as soon as the task is
        created; completion is observed separately.

        Raises:
            ValidationError: Bad template, no images, or a bad file
            UpstreamRejection: Upload or task creation refused
            TransportError: Network failure or timeout
        """
        entries = template if _is_parsed(template) else parse_node_template(template)
        if not assets:
            raise ValidationError("at least one image file is required")
        if len(assets) > self.config.max_files_per_request:
            raise ValidationError(f"at most {self.config.max_files_per_request} image files are allowed")
        for asset in assets:
            self.uploads.validate(asset)

        tokens: List[FileToken] = []
        for asset in assets:
            tokens.append(await self.uploads.upload_asset(asset, region))

        bindings = bind(entries, tokens, form_fields)
        missing = [binding.node_id for binding in bindings if binding.missing]
        if missing:
            logger.warning(f"Submitting {selector.kind.value} {selector.identifier} with defaulted nodes: {missing}")
        return await self.tasks.submit(selector, bindings, region, instance_type)

    async def get_status(self, task_id: str, region: Region, hint: Optional[BackendKind] = None) -> TaskStatus:
        return await self.resolver.get_status(task_id, region, hint)

    async def get_result(self, task_id: str, region: Region, hint: Optional[BackendKind] = None) -> TaskResult:
        return await self.resolver.get_result(task_id, region, hint)

    async def cancel(self, task_id: str, region: Region, hint: Optional[BackendKind] = None) -> CancelOutcome:
        return await self.cancellation.cancel(task_id, region, hint)

    async def wait_for_completion(
        self,
        task_id: str,
        region: Region,
        poll_interval_ms: Optional[int] = None,
        max_attempts: Optional[int] = None,
        hint: Optional[BackendKind] = None,
    ) -> TaskResult:
        return await self.poller.wait_for_completion(
            task_id,
            region,
            poll_interval_ms if poll_interval_ms is not None else self.config.poll_interval_ms,
            max_attempts if max_attempts is not None else self.config.poll_max_attempts,
            hint,
        )


def _is_parsed(template: Any) -> bool:
    return isinstance(template, (list, tuple)) and all(isinstance(item, NodeTemplateEntry) for item in template)
