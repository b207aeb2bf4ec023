from .app import create_app
from .config import GatewayConfig
from .orchestrator import TaskOrchestrator

__all__ = ["GatewayConfig", "TaskOrchestrator", "create_app"]
