"""Gateway configuration: region endpoints, response-code policy, timeouts and limits."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Optional, Tuple

from .models import BackendKind, Region

DEFAULT_REGION = Region.HONGKONG

ALLOWED_CONTENT_TYPES: FrozenSet[str] = frozenset(
    {"image/jpeg", "image/jpg", "image/png", "image/gif", "image/webp"}
)
ALLOWED_EXTENSIONS: FrozenSet[str] = frozenset({".jpg", ".jpeg", ".png", ".gif", ".webp"})


@dataclass(frozen=True)
class RegionEndpoint:
    base_domain: str
    host: str
    name: str = ""


def default_regions() -> Dict[Region, RegionEndpoint]:
    return {
        Region.CHINA: RegionEndpoint(
            base_domain="https://www.runninghub.cn",
            host="www.runninghub.cn",
            name="Mainland China",
        ),
        Region.HONGKONG: RegionEndpoint(
            base_domain="https://www.runninghub.ai",
            host="www.runninghub.ai",
            name="Hong Kong / Macau / Taiwan",
        ),
    }


@dataclass
class GatewayConfig:
    api_key: str = ""
    regions: Dict[Region, RegionEndpoint] = field(default_factory=default_regions)
    default_region: Region = DEFAULT_REGION
    # Remote response codes accepted alongside 0 on task creation
    nonfatal_codes: FrozenSet[int] = frozenset({433})
    # Remote response codes meaning "this backend kind does not know the task"
    not_found_codes: FrozenSet[int] = frozenset()
    not_found_markers: Tuple[str, ...] = ("not found", "not exist", "不存在")
    primary_backend: BackendKind = BackendKind.WORKFLOW
    # Per-call timeouts in seconds
    upload_timeout: float = 60.0
    submit_timeout: float = 60.0
    status_timeout: float = 60.0
    result_timeout: float = 60.0
    cancel_timeout: float = 30.0
    # Poller defaults
    poll_interval_ms: int = 5000
    poll_max_attempts: int = 150
    result_settle_seconds: float = 3.0
    # Upload limits
    max_upload_bytes: int = 100 * 1024 * 1024
    max_filename_length: int = 255
    max_files_per_request: int = 10
    # Server
    host: str = "127.0.0.1"
    port: int = 8765

    def endpoint_for(self, region: Region) -> RegionEndpoint:
        endpoint = self.regions.get(region)
        if endpoint is None:
            endpoint = self.regions[self.default_region]
        return endpoint

    def resolve_region(self, raw: Optional[str]) -> Region:
        return Region.parse(raw, default=self.default_region)
