from __future__ import annotations

import logging
import sys

import uvicorn

from .app import create_app
from .config_loader import load_config_from_env


def setup_logging() -> None:
    """
    Configure logging for system service deployment.

    Logs are formatted with timestamp, level, logger name, and message and go
    to stdout, where the service manager captures them.
    """
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S',
        handlers=[
            logging.StreamHandler(sys.stdout)
        ]
    )

    # Set uvicorn logging to INFO to capture server events
    logging.getLogger("uvicorn").setLevel(logging.INFO)
    logging.getLogger("uvicorn.access").setLevel(logging.INFO)
    logging.getLogger("uvicorn.error").setLevel(logging.INFO)
    # httpx logs every request line at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)


def main() -> None:
    setup_logging()

    logger = logging.getLogger(__name__)
    logger.info("Starting Effects Gateway server")

    try:
        config = load_config_from_env()
    except ValueError as e:
        logger.error(f"Configuration error: {e}")
        sys.exit(1)

    logger.info(
        f"Server configuration: host={config.host}, port={config.port}, "
        f"default_region={config.default_region.value}, primary_backend={config.primary_backend.value}"
    )

    uvicorn.run(create_app(config), host=config.host, port=config.port)


if __name__ == "__main__":
    main()
