from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from starlette.datastructures import UploadFile

from .config import GatewayConfig
from .errors import (
    EffectsGatewayError,
    TaskTerminalError,
    TimeoutExceeded,
    TransportError,
    UpstreamRejection,
    ValidationError,
)
from .models import BackendKind, BackendSelector, UploadedAsset
from .orchestrator import TaskOrchestrator

logger = logging.getLogger(__name__)

_TASK_TYPE_ALIASES = {
    "workflow": BackendKind.WORKFLOW,
    "comfyui": BackendKind.WORKFLOW,
    "app": BackendKind.APP,
    "webapp": BackendKind.APP,
}

# Form fields that steer the request rather than feed node bindings
_CONTROL_FIELDS = {"workflowId", "webappId", "nodeInfoList", "regionId", "instanceType"}


@dataclass
class GatewayState:
    config: GatewayConfig
    orchestrator: TaskOrchestrator
    started_at: datetime


class TaskQueryPayload(BaseModel):
    taskId: str
    regionId: Optional[str] = None
    taskType: Optional[str] = None


class TaskWaitPayload(TaskQueryPayload):
    pollIntervalMs: Optional[int] = None
    maxAttempts: Optional[int] = None


class ApplyEffectResponse(BaseModel):
    success: bool
    taskId: str
    taskType: str
    regionId: str
    message: str


class TaskStatusResponse(BaseModel):
    success: bool
    taskId: str
    status: str


class TaskResultsResponse(BaseModel):
    success: bool
    taskId: str
    results: List[str]


class CancelResponse(BaseModel):
    success: bool
    taskId: str
    message: str


def _backend_hint(task_type: Optional[str]) -> Optional[BackendKind]:
    if not task_type:
        return None
    return _TASK_TYPE_ALIASES.get(task_type.strip().lower())


def _wait_budget(payload: TaskWaitPayload, config: GatewayConfig) -> Tuple[int, int]:
    """Poll interval and attempt budget for a wait request, capped by the configured defaults."""
    interval = config.poll_interval_ms
    if payload.pollIntervalMs is not None:
        interval = max(0, min(payload.pollIntervalMs, config.poll_interval_ms))
    attempts = config.poll_max_attempts
    if payload.maxAttempts is not None:
        if payload.maxAttempts < 1:
            raise ValidationError("maxAttempts must be at least 1")
        attempts = min(payload.maxAttempts, config.poll_max_attempts)
    return interval, attempts


def _error_body(exc: Exception) -> Dict[str, Any]:
    return {"success": False, "error": str(exc), "errorType": type(exc).__name__}


async def _read_apply_form(request: Request, config: GatewayConfig):
    form = await request.form()
    assets: List[UploadedAsset] = []
    fields: Dict[str, Any] = {}
    for key, value in form.multi_items():
        if isinstance(value, UploadFile):
            if key != "images":
                raise ValidationError(f"unexpected file field '{key}'")
            if len(assets) >= config.max_files_per_request:
                raise ValidationError(f"at most {config.max_files_per_request} image files are allowed")
            # Refuse oversized files before buffering them
            if value.size is not None and value.size > config.max_upload_bytes:
                raise ValidationError(
                    f"file '{value.filename}' is {value.size} bytes, limit is {config.max_upload_bytes}"
                )
            assets.append(
                UploadedAsset(
                    data=await value.read(),
                    filename=value.filename or "",
                    content_type=value.content_type,
                )
            )
        else:
            # Repeated fields keep their first value
            fields.setdefault(key, value)
    return assets, fields


def create_app(
    config: Optional[GatewayConfig] = None,
    orchestrator: Optional[TaskOrchestrator] = None,
) -> FastAPI:
    cfg = config or GatewayConfig()
    state = GatewayState(
        config=cfg,
        orchestrator=orchestrator or TaskOrchestrator(cfg),
        started_at=datetime.now(timezone.utc),
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        try:
            yield
        finally:
            await state.orchestrator.close()

    app = FastAPI(title="Effects Gateway", version="0.1.0", lifespan=lifespan)

    def get_state() -> GatewayState:
        return state

    @app.exception_handler(ValidationError)
    async def handle_validation(request: Request, exc: ValidationError) -> JSONResponse:
        logger.warning(f"Rejected request to {request.url.path}: {exc}")
        return JSONResponse(_error_body(exc), status_code=400)

    @app.exception_handler(UpstreamRejection)
    async def handle_rejection(request: Request, exc: UpstreamRejection) -> JSONResponse:
        body = _error_body(exc)
        body["code"] = exc.code
        return JSONResponse(body, status_code=502)

    @app.exception_handler(TransportError)
    async def handle_transport(request: Request, exc: TransportError) -> JSONResponse:
        return JSONResponse(_error_body(exc), status_code=503)

    @app.exception_handler(EffectsGatewayError)
    async def handle_other(request: Request, exc: EffectsGatewayError) -> JSONResponse:
        logger.error(f"Unhandled gateway error on {request.url.path}: {exc}")
        return JSONResponse(_error_body(exc), status_code=500)

    @app.post("/v1/effects/apply", response_model=ApplyEffectResponse)
    async def apply_effect(request: Request, state: GatewayState = Depends(get_state)) -> ApplyEffectResponse:
        """
        Upload images, bind the node template and start a task.
        Returns the task id immediately; completion is polled separately.
        """
        assets, fields = await _read_apply_form(request, state.config)
        selector = BackendSelector.from_identifiers(fields.get("workflowId"), fields.get("webappId"))
        region = state.config.resolve_region(fields.get("regionId"))
        form_fields = {key: value for key, value in fields.items() if key not in _CONTROL_FIELDS}

        logger.info(
            f"Apply request: {selector.kind.value}={selector.identifier}, region={region.value}, "
            f"files={len(assets)}, params={sorted(form_fields)}"
        )

        handle = await state.orchestrator.apply_effect(
            selector,
            fields.get("nodeInfoList"),
            assets,
            form_fields,
            region,
            instance_type=fields.get("instanceType") or None,
        )
        return ApplyEffectResponse(
            success=True,
            taskId=handle.task_id,
            taskType=handle.backend_kind.value,
            regionId=handle.region.value,
            message="Task started, processing in background",
        )

    @app.post("/v1/effects/status", response_model=TaskStatusResponse)
    async def task_status(payload: TaskQueryPayload, state: GatewayState = Depends(get_state)) -> TaskStatusResponse:
        region = state.config.resolve_region(payload.regionId)
        status = await state.orchestrator.get_status(payload.taskId, region, _backend_hint(payload.taskType))
        return TaskStatusResponse(success=True, taskId=payload.taskId, status=status.value)

    @app.post("/v1/effects/results", response_model=TaskResultsResponse)
    async def task_results(payload: TaskQueryPayload, state: GatewayState = Depends(get_state)) -> TaskResultsResponse:
        region = state.config.resolve_region(payload.regionId)
        result = await state.orchestrator.get_result(payload.taskId, region, _backend_hint(payload.taskType))
        return TaskResultsResponse(success=True, taskId=payload.taskId, results=result.as_list())

    @app.post("/v1/effects/cancel", response_model=CancelResponse)
    async def cancel_task(payload: TaskQueryPayload, state: GatewayState = Depends(get_state)) -> CancelResponse:
        region = state.config.resolve_region(payload.regionId)
        outcome = await state.orchestrator.cancel(payload.taskId, region, _backend_hint(payload.taskType))
        return CancelResponse(success=outcome.ok, taskId=payload.taskId, message=outcome.message)

    @app.post("/v1/effects/wait")
    async def wait_for_task(payload: TaskWaitPayload, state: GatewayState = Depends(get_state)) -> JSONResponse:
        region = state.config.resolve_region(payload.regionId)
        poll_interval_ms, max_attempts = _wait_budget(payload, state.config)
        try:
            result = await state.orchestrator.wait_for_completion(
                payload.taskId,
                region,
                poll_interval_ms=poll_interval_ms,
                max_attempts=max_attempts,
                hint=_backend_hint(payload.taskType),
            )
        except TimeoutExceeded as e:
            # Still running is not a failure
            return JSONResponse(
                {
                    "success": True,
                    "taskId": payload.taskId,
                    "status": "processing",
                    "message": str(e),
                },
                status_code=202,
            )
        except TaskTerminalError as e:
            return JSONResponse(
                {
                    "success": False,
                    "taskId": payload.taskId,
                    "status": e.status.value,
                    "error": e.message,
                }
            )
        return JSONResponse(
            {
                "success": True,
                "taskId": payload.taskId,
                "status": "succeeded",
                "results": result.as_list(),
            }
        )

    @app.get("/health")
    async def health_check(state: GatewayState = Depends(get_state)) -> JSONResponse:
        config = state.config
        status = "healthy" if config.api_key else "degraded"
        return JSONResponse(
            {
                "status": status,
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "uptime_seconds": int((datetime.now(timezone.utc) - state.started_at).total_seconds()),
                "components": {
                    "gateway": {"status": "healthy", "version": "0.1.0"},
                    "credentials": {"api_key_configured": bool(config.api_key)},
                    "regions": {
                        region.value: endpoint.base_domain for region, endpoint in config.regions.items()
                    },
                    "primary_backend": config.primary_backend.value,
                },
            }
        )

    return app
