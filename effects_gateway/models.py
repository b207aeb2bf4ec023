"""Domain types shared by the upload, binding, submission and polling layers."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple

from .errors import ValidationError

logger = logging.getLogger(__name__)

# Opaque token returned by the upload endpoint and substituted for raw bytes.
FileToken = str

_ABSENT_IDENTIFIERS = {"", "undefined", "null", "none"}


class Region(str, Enum):
    CHINA = "china"
    HONGKONG = "hongkong"

    @classmethod
    def parse(cls, raw: Optional[str], default: Optional["Region"] = None) -> "Region":
        """Resolve a region id, falling back to the default for unknown values."""
        fallback = default or cls.HONGKONG
        if raw is None or raw == "":
            return fallback
        if isinstance(raw, Region):
            return raw
        try:
            return cls(str(raw).strip().lower())
        except ValueError:
            logger.warning(f"Unknown region '{raw}', using {fallback.value}")
            return fallback


class BackendKind(str, Enum):
    WORKFLOW = "workflow"
    APP = "app"

    @property
    def other(self) -> "BackendKind":
        return BackendKind.APP if self is BackendKind.WORKFLOW else BackendKind.WORKFLOW


class FieldKind(str, Enum):
    IMAGE = "image"
    TEXT = "text"
    SELECT = "select"
    OTHER = "other"

    @classmethod
    def classify(cls, field_name: str) -> "FieldKind":
        if field_name == "image":
            return cls.IMAGE
        if field_name in ("text", "prompt"):
            return cls.TEXT
        if field_name == "select":
            return cls.SELECT
        return cls.OTHER


class TaskStatus(str, Enum):
    QUEUED = "queued"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (TaskStatus.SUCCEEDED, TaskStatus.FAILED, TaskStatus.CANCELLED)

    @classmethod
    def from_raw(cls, raw: Any) -> "TaskStatus":
        """
        Normalize a backend-specific status value.

        Args:
            raw: Status string, or an object carrying a ``status`` field

        Returns:
            Normalized status; unrecognized values map to RUNNING
        """
        value = raw.get("status") if isinstance(raw, dict) else raw
        key = str(value or "").strip().upper()
        status = _RAW_STATUS_MAP.get(key)
        if status is None:
            logger.warning(f"Unrecognized task status {value!r}, treating as running")
            return cls.RUNNING
        return status


_RAW_STATUS_MAP: Dict[str, TaskStatus] = {
    "QUEUED": TaskStatus.QUEUED,
    "PENDING": TaskStatus.QUEUED,
    "WAITING": TaskStatus.QUEUED,
    "RUNNING": TaskStatus.RUNNING,
    "PROCESSING": TaskStatus.RUNNING,
    "SUCCESS": TaskStatus.SUCCEEDED,
    "SUCCEEDED": TaskStatus.SUCCEEDED,
    "COMPLETED": TaskStatus.SUCCEEDED,
    "DONE": TaskStatus.SUCCEEDED,
    "FAILED": TaskStatus.FAILED,
    "FAILURE": TaskStatus.FAILED,
    "ERROR": TaskStatus.FAILED,
    "CANCELLED": TaskStatus.CANCELLED,
    "CANCELED": TaskStatus.CANCELLED,
}


def _clean_identifier(raw: Any) -> Optional[str]:
    if isinstance(raw, (list, tuple)):
        raw = raw[0] if raw else None
    if raw is None:
        return None
    value = str(raw).strip()
    if value.lower() in _ABSENT_IDENTIFIERS:
        return None
    return value


@dataclass(frozen=True)
class BackendSelector:
    """Exactly one backend identifier: a workflow id or a web-app id."""
    kind: BackendKind
    identifier: str

    def __post_init__(self) -> None:
        if not isinstance(self.kind, BackendKind):
            raise ValidationError(f"unknown backend kind: {self.kind!r}")
        if not self.identifier or not str(self.identifier).strip():
            raise ValidationError(f"{self.kind.value} identifier must not be empty")

    @classmethod
    def workflow(cls, workflow_id: str) -> "BackendSelector":
        return cls(BackendKind.WORKFLOW, str(workflow_id))

    @classmethod
    def app(cls, webapp_id: str) -> "BackendSelector":
        return cls(BackendKind.APP, str(webapp_id))

    @classmethod
    def from_identifiers(cls, workflow_id: Any = None, webapp_id: Any = None) -> "BackendSelector":
        """
        Build a selector from raw request values.

        Repeated values keep the first entry, and empty or "undefined" values
        count as absent. A workflow id wins when both are supplied.

        Raises:
            ValidationError: Neither identifier is present
        """
        workflow = _clean_identifier(workflow_id)
        webapp = _clean_identifier(webapp_id)
        if workflow:
            if webapp:
                logger.warning(
                    f"Both workflowId={workflow} and webappId={webapp} supplied, using workflow"
                )
            return cls.workflow(workflow)
        if webapp:
            return cls.app(webapp)
        raise ValidationError("workflowId or webappId is required")

    @property
    def workflow_id(self) -> Optional[str]:
        return self.identifier if self.kind is BackendKind.WORKFLOW else None

    @property
    def webapp_id(self) -> Optional[str]:
        return self.identifier if self.kind is BackendKind.APP else None


@dataclass(frozen=True)
class NodeTemplateEntry:
    """One caller-supplied node skeleton: which node and field needs a value."""
    node_id: str
    field_name: str
    param_key: Optional[str] = None
    field_value: Any = None

    @property
    def kind(self) -> FieldKind:
        return FieldKind.classify(self.field_name)


@dataclass(frozen=True)
class NodeBinding:
    node_id: str
    field_name: str
    param_key: Optional[str]
    field_value: str
    missing: bool = False

    def to_wire(self) -> Dict[str, str]:
        return {
            "nodeId": self.node_id,
            "fieldName": self.field_name,
            "fieldValue": self.field_value,
        }


@dataclass
class UploadedAsset:
    """Raw upload owned by a single request."""
    data: bytes
    filename: str
    content_type: Optional[str] = None

    @property
    def size(self) -> int:
        return len(self.data)


@dataclass(frozen=True)
class TaskHandle:
    task_id: str
    backend: BackendSelector
    region: Region

    @property
    def backend_kind(self) -> BackendKind:
        return self.backend.kind


@dataclass(frozen=True)
class StatusReport:
    """Normalized status plus what the backend actually said."""
    status: TaskStatus
    raw: Any = None
    message: str = ""
    backend: Optional[BackendKind] = None


@dataclass(frozen=True)
class TaskResult:
    urls: Tuple[str, ...] = ()

    def __len__(self) -> int:
        return len(self.urls)

    def as_list(self) -> List[str]:
        return list(self.urls)

    @classmethod
    def from_urls(cls, urls: Sequence[str]) -> "TaskResult":
        return cls(urls=tuple(urls))


@dataclass(frozen=True)
class CancelOutcome:
    ok: bool
    message: str = ""
    backend: Optional[BackendKind] = None
    details: Dict[str, Any] = field(default_factory=dict)
