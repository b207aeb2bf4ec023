"""Shared HTTP client for the remote workflow-execution open API."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

from .config import GatewayConfig
from .errors import TaskNotFoundError, TransportError, UpstreamRejection
from .models import Region

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ApiEnvelope:
    """Decoded ``{code, msg, data}`` response body."""
    code: int
    msg: str
    data: Any
    raw: Dict[str, Any]

    @property
    def ok(self) -> bool:
        return self.code == 0


class OpenApiClient:
    """
    HTTP client for the remote open API, one connection pool per region.

    Every call carries the configured API key and the region's Host header,
    and is bounded by its own timeout. Transport-level failures surface as
    TransportError; the caller decides how to interpret the response code.
    """

    def __init__(
        self,
        config: GatewayConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.config = config
        self._transport = transport
        self._clients: Dict[Region, httpx.AsyncClient] = {}

    def _get_client(self, region: Region) -> httpx.AsyncClient:
        """Get or create the async HTTP client for a region."""
        client = self._clients.get(region)
        if client is None:
            endpoint = self.config.endpoint_for(region)
            client = httpx.AsyncClient(
                base_url=endpoint.base_domain,
                headers={"Host": endpoint.host},
                transport=self._transport,
                follow_redirects=True,
            )
            self._clients[region] = client
        return client

    async def close(self) -> None:
        """Close all HTTP clients."""
        clients = list(self._clients.values())
        self._clients.clear()
        for client in clients:
            await client.aclose()

    def base_domain(self, region: Region) -> str:
        return self.config.endpoint_for(region).base_domain

    async def post_json(
        self,
        region: Region,
        path: str,
        payload: Dict[str, Any],
        timeout: float,
    ) -> ApiEnvelope:
        """
        POST a JSON body with the API key attached.

        Args:
            region: Target region
            path: Endpoint path, e.g. /task/openapi/status
            payload: Request body without the API key
            timeout: Request timeout in seconds

        Returns:
            Decoded response envelope

        Raises:
            TransportError: Network failure, timeout, HTTP error or unreadable body
        """
        body = {"apiKey": self.config.api_key, **payload}
        return await self._send(region, path, timeout, json=body)

    async def post_multipart(
        self,
        region: Region,
        path: str,
        files: Dict[str, Any],
        data: Dict[str, str],
        timeout: float,
    ) -> ApiEnvelope:
        """POST a multipart form with the API key attached."""
        form = {"apiKey": self.config.api_key, **data}
        return await self._send(region, path, timeout, files=files, data=form)

    async def _send(self, region: Region, path: str, timeout: float, **kwargs: Any) -> ApiEnvelope:
        client = self._get_client(region)
        try:
            response = await client.post(path, timeout=timeout, **kwargs)
        except httpx.TimeoutException as e:
            logger.error(f"Timeout calling {path} (region: {region.value}, timeout: {timeout}s): {e}")
            raise TransportError(f"{path} timed out after {timeout}s") from e
        except httpx.HTTPError as e:
            logger.error(f"Network error calling {path} (region: {region.value}): {e}")
            raise TransportError(f"{path} network error: {e}") from e

        if response.status_code >= 400:
            logger.error(f"{path} returned HTTP {response.status_code} (region: {region.value})")
            raise TransportError(f"{path} returned HTTP {response.status_code}: {response.text[:200]}")

        try:
            body = response.json()
        except ValueError as e:
            raise TransportError(f"{path} returned a non-JSON body") from e

        if not isinstance(body, dict) or "code" not in body:
            raise TransportError(f"{path} returned an unexpected body: {str(body)[:200]}")

        try:
            code = int(body["code"])
        except (TypeError, ValueError) as e:
            raise TransportError(f"{path} returned a non-numeric code: {body['code']!r}") from e

        return ApiEnvelope(
            code=code,
            msg=str(body.get("msg") or body.get("message") or ""),
            data=body.get("data"),
            raw=body,
        )

    def is_not_found(self, envelope: ApiEnvelope) -> bool:
        if envelope.code in self.config.not_found_codes:
            return True
        message = envelope.msg.lower()
        return any(marker in message for marker in self.config.not_found_markers)

    def rejection(self, envelope: ApiEnvelope, context: str) -> UpstreamRejection:
        """Build the typed rejection for a non-success envelope."""
        message = f"{context}: {envelope.msg or 'code ' + str(envelope.code)}"
        if self.is_not_found(envelope):
            return TaskNotFoundError(message, code=envelope.code, payload=envelope.raw)
        return UpstreamRejection(message, code=envelope.code, payload=envelope.raw)
