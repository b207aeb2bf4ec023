"""Tests for the apply-effect flow and orchestrator wiring."""

import json

import pytest

from conftest import envelope
from effects_gateway.errors import ValidationError
from effects_gateway.models import BackendKind, BackendSelector, Region, TaskStatus, UploadedAsset
from effects_gateway.orchestrator import TaskOrchestrator

TEMPLATE = json.dumps(
    [
        {"nodeId": "19", "fieldName": "image", "paramKey": "image_19"},
        {"nodeId": "20", "fieldName": "image", "paramKey": "image_20"},
        {"nodeId": "351", "fieldName": "select", "paramKey": "select_351"},
        {"nodeId": "52", "fieldName": "text", "paramKey": "style"},
    ]
)


@pytest.mark.asyncio
async def test_apply_effect_uploads_binds_and_submits(config, api_factory, png_bytes, jpeg_bytes):
    api, handler = api_factory(
        envelope(data={"fileName": "api/one.png"}),
        envelope(data={"fileName": "api/two.jpg"}),
        envelope(data={"taskId": "1990000000000000001"}),
    )
    orchestrator = TaskOrchestrator(config, api=api)
    assets = [UploadedAsset(png_bytes, "one.png", "image/png"), UploadedAsset(jpeg_bytes, "two.jpg", "image/jpeg")]

    handle = await orchestrator.apply_effect(
        BackendSelector.workflow("1987728214757978114"),
        TEMPLATE,
        assets,
        {"select_351": "2.9", "prompt_52": "oil painting"},
        Region.HONGKONG,
    )

    assert handle.task_id == "1990000000000000001"
    assert handle.backend_kind is BackendKind.WORKFLOW
    paths = [request.url.path for request in handler.requests]
    assert paths == ["/task/openapi/upload", "/task/openapi/upload", "/task/openapi/create"]
    create_body = json.loads(handler.requests[2].content)
    assert create_body["nodeInfoList"] == [
        {"nodeId": "19", "fieldName": "image", "fieldValue": "api/one.png"},
        {"nodeId": "20", "fieldName": "image", "fieldValue": "api/two.jpg"},
        {"nodeId": "351", "fieldName": "select", "fieldValue": "2"},
        {"nodeId": "52", "fieldName": "text", "fieldValue": "oil painting"},
    ]
    await orchestrator.close()


@pytest.mark.asyncio
async def test_apply_effect_validates_every_file_before_uploading(config, api_factory, png_bytes):
    api, handler = api_factory()
    orchestrator = TaskOrchestrator(config, api=api)
    assets = [UploadedAsset(png_bytes, "good.png"), UploadedAsset(b"%PDF-1.4", "bad.pdf", "application/pdf")]

    with pytest.raises(ValidationError):
        await orchestrator.apply_effect(BackendSelector.app("42"), TEMPLATE, assets, {}, Region.HONGKONG)

    assert handler.requests == []


@pytest.mark.asyncio
async def test_apply_effect_requires_an_image(config, api_factory):
    api, handler = api_factory()
    orchestrator = TaskOrchestrator(config, api=api)

    with pytest.raises(ValidationError, match="at least one"):
        await orchestrator.apply_effect(BackendSelector.app("42"), TEMPLATE, [], {}, Region.HONGKONG)

    assert handler.requests == []


@pytest.mark.asyncio
async def test_apply_effect_rejects_malformed_template(config, api_factory, png_bytes):
    api, handler = api_factory()
    orchestrator = TaskOrchestrator(config, api=api)

    with pytest.raises(ValidationError, match="nodeInfoList"):
        await orchestrator.apply_effect(
            BackendSelector.app("42"), "not json", [UploadedAsset(png_bytes, "a.png")], {}, Region.HONGKONG
        )

    assert handler.requests == []


@pytest.mark.asyncio
async def test_wait_for_completion_uses_configured_defaults(config, api_factory):
    config.poll_interval_ms = 0
    config.poll_max_attempts = 2
    api, handler = api_factory(
        envelope(data="RUNNING"),
        envelope(data="SUCCESS"),
        envelope(data=[{"fileUrl": "https://cdn.example.com/r.png"}]),
    )
    orchestrator = TaskOrchestrator(config, api=api)

    result = await orchestrator.wait_for_completion("t-1", Region.HONGKONG)

    assert result.as_list() == ["https://cdn.example.com/r.png"]
    assert len(handler.requests) == 3
    await orchestrator.close()


@pytest.mark.asyncio
async def test_get_status_delegates_to_resolver(config, api_factory):
    api, _ = api_factory(envelope(data="QUEUED"))
    orchestrator = TaskOrchestrator(config, api=api)

    assert await orchestrator.get_status("t-1", Region.CHINA) is TaskStatus.QUEUED
    await orchestrator.close()
