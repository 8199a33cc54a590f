"""Operation payloads and results.

Two disjoint families of operations can be requested by the assistant:
file operations (``FILE_OPS``) and milestone/task operations
(``MILESTONE_OPS``). Payloads are validated lazily, one operation at a time,
so a malformed entry only fails itself.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

__all__ = [
    "OperationFamily",
    "OperationStatus",
    "FileOperation",
    "MilestoneOperation",
    "OperationResult",
    "BatchReport",
    "Notice",
    "normalize_operations",
]


class OperationFamily(str, Enum):
    FILE = "file"
    MILESTONE = "milestone"


class OperationStatus(str, Enum):
    OK = "ok"
    ERROR = "error"
    UNKNOWN_ACTION = "unknown-action"


class FileOperation(BaseModel):
    """``{action, path, content?, language?, recursive?, newName?, newPath?, filename?}``"""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    action: str
    path: Optional[str] = None
    content: Optional[str] = None
    language: Optional[str] = None
    recursive: bool = False
    new_name: Optional[str] = Field(default=None, alias="newName")
    new_path: Optional[str] = Field(default=None, alias="newPath")
    filename: Optional[str] = None
    paths: Optional[List[str]] = None


class MilestoneOperation(BaseModel):
    """``{action, milestone_id|task_id, status?, title?, description?, due_date?, progress?}``"""

    model_config = ConfigDict(extra="allow")

    action: str
    milestone_id: Optional[Union[str, int]] = None
    task_id: Optional[Union[str, int]] = None
    status: Optional[str] = None
    title: Optional[str] = None
    description: Optional[str] = None
    due_date: Optional[str] = None
    progress: Optional[Union[int, float]] = None


@dataclass
class Notice:
    """A user-facing summary the caller may render however it likes."""

    title: str
    description: str
    variant: str = "default"  # "default" | "destructive"


@dataclass
class OperationResult:
    operation: Any
    status: OperationStatus
    detail: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status is OperationStatus.OK

    def to_dict(self) -> Dict[str, Any]:
        """Flatten into the shape recorded in the ops log."""
        data: Dict[str, Any] = dict(self.operation) if isinstance(self.operation, dict) else {
            "operation": self.operation
        }
        data["status"] = self.status.value
        if self.detail is not None:
            data["error"] = self.detail
        return data


@dataclass
class BatchReport:
    """Outcome of applying one confirmed batch."""

    family: OperationFamily
    results: List[OperationResult]
    applied_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def succeeded(self) -> int:
        return sum(1 for r in self.results if r.ok)

    @property
    def failed(self) -> int:
        return len(self.results) - self.succeeded

    @property
    def notice(self) -> Notice:
        label = "Milestone ops" if self.family is OperationFamily.MILESTONE else "File ops"
        if self.failed:
            return Notice(
                title=f"{label} completed with warnings",
                description=f"{self.succeeded} succeeded, {self.failed} failed",
                variant="destructive",
            )
        return Notice(title=f"{label} applied", description=f"{len(self.results)} changes applied")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "family": self.family.value,
            "timestamp": self.applied_at.isoformat(),
            "ops": [r.to_dict() for r in self.results],
        }


def normalize_operations(payload: Any) -> List[Any]:
    """Wrap a single operation object as a one-element list."""
    if payload is None:
        return []
    if isinstance(payload, list):
        return list(payload)
    return [payload]
