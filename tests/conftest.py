import io
import json
from typing import List

import httpx
import pytest
from PIL import Image

from effects_gateway.api_client import OpenApiClient
from effects_gateway.config import GatewayConfig


@pytest.fixture
def config():
    """Gateway config with a test key and no settle delay."""
    return GatewayConfig(api_key="test-api-key", result_settle_seconds=0.0)


@pytest.fixture
def png_bytes():
    """A small real PNG image."""
    buffer = io.BytesIO()
    Image.new("RGB", (8, 8), color=(200, 30, 40)).save(buffer, format="PNG")
    return buffer.getvalue()


@pytest.fixture
def jpeg_bytes():
    """A small real JPEG image."""
    buffer = io.BytesIO()
    Image.new("RGB", (8, 8), color=(20, 130, 40)).save(buffer, format="JPEG")
    return buffer.getvalue()


def envelope(code: int = 0, data=None, msg: str = "success") -> httpx.Response:
    return httpx.Response(200, json={"code": code, "msg": msg, "data": data})


class RecordingHandler:
    """MockTransport handler that replays queued responses and records requests."""

    def __init__(self, *responses):
        self.responses: List = list(responses)
        self.requests: List[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if not self.responses:
            raise AssertionError(f"unexpected request to {request.url}")
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        if callable(response):
            return response(request)
        return response

    def json_bodies(self):
        return [json.loads(request.content) for request in self.requests]


@pytest.fixture
def api_factory(config):
    """Build an OpenApiClient backed by a RecordingHandler."""
    def factory(*responses):
        handler = RecordingHandler(*responses)
        client = OpenApiClient(config, transport=httpx.MockTransport(handler))
        return client, handler

    return factory
