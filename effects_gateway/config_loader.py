"""Configuration loader for the effects gateway - loads from environment variables."""

from __future__ import annotations

import logging
import os
from typing import FrozenSet, Optional

from dotenv import load_dotenv

from .config import GatewayConfig, RegionEndpoint, default_regions
from .models import BackendKind, Region

logger = logging.getLogger(__name__)


def _parse_codes(raw: Optional[str], default: FrozenSet[int]) -> FrozenSet[int]:
    if raw is None:
        return default
    codes = set()
    for item in raw.split(","):
        item = item.strip()
        if not item:
            continue
        try:
            codes.add(int(item))
        except ValueError:
            logger.warning(f"Ignoring non-numeric response code '{item}' in configuration")
    return frozenset(codes)


def _host_of(domain: str) -> str:
    return domain.split("://", 1)[-1].rstrip("/")


def load_config_from_env() -> GatewayConfig:
    """
    Load GatewayConfig from environment variables.

    Loads .env file if present and reads configuration values.

    Environment Variables:
        RUNNINGHUB_API_KEY: API key attached to every outbound call (required)
        RUNNINGHUB_CHINA_DOMAIN: Base domain for the china region
        RUNNINGHUB_HONGKONG_DOMAIN: Base domain for the hongkong region
        RUNNINGHUB_DEFAULT_REGION: Region used when a request names none (default: hongkong)
        RUNNINGHUB_NONFATAL_CODES: Comma-separated task creation codes accepted besides 0 (default: 433)
        RUNNINGHUB_NOT_FOUND_CODES: Comma-separated codes meaning "task unknown" (default: none)
        RUNNINGHUB_PRIMARY_BACKEND: Backend kind queried first, "workflow" or "app" (default: workflow)
        UPLOAD_TIMEOUT_MS / SUBMIT_TIMEOUT_MS / STATUS_TIMEOUT_MS /
        RESULT_TIMEOUT_MS / CANCEL_TIMEOUT_MS: Per-call timeouts in milliseconds
        POLL_INTERVAL_MS: Delay between status queries (default: 5000)
        POLL_MAX_ATTEMPTS: Status queries before giving up (default: 150)
        RESULT_SETTLE_MS: Delay between success and result fetch (default: 3000)
        HOST: Server host (default: 127.0.0.1)
        PORT: Server port (default: 8765)

    Returns:
        GatewayConfig object with values from environment

    Raises:
        ValueError: RUNNINGHUB_API_KEY is not set
    """
    load_dotenv()

    api_key = os.getenv("RUNNINGHUB_API_KEY", "").strip()
    if not api_key:
        logger.error("RUNNINGHUB_API_KEY is not configured; set it in the environment or .env")
        raise ValueError("RUNNINGHUB_API_KEY is not configured")

    regions = default_regions()
    for region, env_name in ((Region.CHINA, "RUNNINGHUB_CHINA_DOMAIN"), (Region.HONGKONG, "RUNNINGHUB_HONGKONG_DOMAIN")):
        domain = os.getenv(env_name)
        if domain:
            regions[region] = RegionEndpoint(
                base_domain=domain.rstrip("/"),
                host=_host_of(domain),
                name=regions[region].name,
            )

    primary_raw = os.getenv("RUNNINGHUB_PRIMARY_BACKEND", BackendKind.WORKFLOW.value).lower()
    try:
        primary_backend = BackendKind(primary_raw)
    except ValueError:
        logger.warning(f"Unknown RUNNINGHUB_PRIMARY_BACKEND '{primary_raw}', using workflow")
        primary_backend = BackendKind.WORKFLOW

    defaults = GatewayConfig()

    config = GatewayConfig(
        api_key=api_key,
        regions=regions,
        default_region=Region.parse(os.getenv("RUNNINGHUB_DEFAULT_REGION")),
        nonfatal_codes=_parse_codes(os.getenv("RUNNINGHUB_NONFATAL_CODES"), defaults.nonfatal_codes),
        not_found_codes=_parse_codes(os.getenv("RUNNINGHUB_NOT_FOUND_CODES"), defaults.not_found_codes),
        primary_backend=primary_backend,
        # Timeouts
        upload_timeout=float(os.getenv("UPLOAD_TIMEOUT_MS", "60000")) / 1000.0,
        submit_timeout=float(os.getenv("SUBMIT_TIMEOUT_MS", "60000")) / 1000.0,
        status_timeout=float(os.getenv("STATUS_TIMEOUT_MS", "60000")) / 1000.0,
        result_timeout=float(os.getenv("RESULT_TIMEOUT_MS", "60000")) / 1000.0,
        cancel_timeout=float(os.getenv("CANCEL_TIMEOUT_MS", "30000")) / 1000.0,
        # Polling
        poll_interval_ms=int(os.getenv("POLL_INTERVAL_MS", "5000")),
        poll_max_attempts=int(os.getenv("POLL_MAX_ATTEMPTS", "150")),
        result_settle_seconds=float(os.getenv("RESULT_SETTLE_MS", "3000")) / 1000.0,
        # Server
        host=os.getenv("HOST", "127.0.0.1"),
        port=int(os.getenv("PORT", "8765")),
    )

    return config
