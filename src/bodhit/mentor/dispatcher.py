"""Staging, confirmation and application of assistant-requested operations.

Every extracted ``FILE_OPS`` / ``MILESTONE_OPS`` payload is staged first and
only applied after an explicit :meth:`OperationDispatcher.confirm`;
:meth:`OperationDispatcher.cancel` drops it with no effect.

Application is a fold over the staged operations: each entry is routed by its
``action`` to a handler and turned into exactly one :class:`OperationResult`.
A handler failure is recorded on that entry only and the fold moves on.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Type, TypeVar

from pydantic import BaseModel

from bodhit.backends.protocols import DownloadSink, MilestoneStore, ProjectFileSystem
from bodhit.errors import DispatcherBusyError, OperationApplyError, UnknownAction
from bodhit.mentor.commands import ExtractedCommands
from bodhit.mentor.operations import (
    BatchReport,
    FileOperation,
    MilestoneOperation,
    OperationFamily,
    OperationResult,
    OperationStatus,
    normalize_operations,
)
from bodhit.observability.events import log_batch_event
from bodhit.observability.logging import get_logger

logger = get_logger(__name__)

__all__ = [
    "ApplyTarget",
    "StagedBatch",
    "FILE_HANDLERS",
    "MILESTONE_HANDLERS",
    "apply_operation",
    "apply_file_operations",
    "apply_milestone_operations",
    "OperationDispatcher",
]

OpT = TypeVar("OpT", bound=BaseModel)


@dataclass
class ApplyTarget:
    """The external collaborators a batch is applied to."""

    files: Optional[ProjectFileSystem] = None
    milestones: Optional[MilestoneStore] = None
    downloads: Optional[DownloadSink] = None
    export_filename_prefix: str = "bodhit-project"

    def require_files(self) -> ProjectFileSystem:
        if self.files is None:
            raise OperationApplyError("No project file system attached")
        return self.files

    def require_milestones(self) -> MilestoneStore:
        if self.milestones is None:
            raise OperationApplyError("No milestone store attached")
        return self.milestones


Handler = Callable[[Any, ApplyTarget], Awaitable[None]]


# --- file handlers -------------------------------------------------------


def _require_path(op: FileOperation) -> str:
    if not op.path:
        raise OperationApplyError(f"path is required for {op.action}")
    return op.path


async def _create_file(op: FileOperation, target: ApplyTarget) -> None:
    await target.require_files().create_file(_require_path(op), op.content or "", op.language or "text")


async def _update_file(op: FileOperation, target: ApplyTarget) -> None:
    await target.require_files().update_file(_require_path(op), op.content or "")


async def _delete_file(op: FileOperation, target: ApplyTarget) -> None:
    await target.require_files().delete_file(_require_path(op), recursive=bool(op.recursive))


async def _rename_file(op: FileOperation, target: ApplyTarget) -> None:
    new_name = op.new_name or op.new_path
    if not new_name:
        raise OperationApplyError("newName or newPath is required for rename")
    await target.require_files().rename_file(_require_path(op), new_name)


async def _export_project(op: FileOperation, target: ApplyTarget) -> None:
    if target.downloads is None:
        raise OperationApplyError("No download target attached")
    payload = await target.require_files().export_project(op.paths)
    filename = op.filename or f"{target.export_filename_prefix}-{int(time.time() * 1000)}.json"
    await target.downloads.offer_download(filename, payload, "application/json")


FILE_HANDLERS: Dict[str, Handler] = {
    "create": _create_file,
    "update": _update_file,
    "delete": _delete_file,
    "rename": _rename_file,
    "export": _export_project,
}


# --- milestone handlers --------------------------------------------------


def _text_fields(op: MilestoneOperation, names: Sequence[str]) -> Dict[str, Any]:
    return {name: getattr(op, name) for name in names if getattr(op, name)}


async def _update_milestone(op: MilestoneOperation, target: ApplyTarget) -> None:
    if not op.milestone_id:
        raise OperationApplyError("milestone_id is required")
    fields = _text_fields(op, ("status", "title", "description", "due_date"))
    await target.require_milestones().update_milestone(str(op.milestone_id), fields)


async def _update_task(op: MilestoneOperation, target: ApplyTarget) -> None:
    if not op.task_id:
        raise OperationApplyError("task_id is required")
    fields = _text_fields(op, ("status",))
    if op.progress is not None:
        fields["progress"] = op.progress
    fields.update(_text_fields(op, ("title", "description")))
    await target.require_milestones().update_task(str(op.task_id), fields)


MILESTONE_HANDLERS: Dict[str, Handler] = {
    "update_milestone": _update_milestone,
    "update_task": _update_task,
}


# --- fold ----------------------------------------------------------------


async def apply_operation(
    raw: Any,
    handlers: Dict[str, Handler],
    model: Type[OpT],
    target: ApplyTarget,
) -> OperationResult:
    """Apply one raw operation and report its status. Never raises ``Exception``."""
    action = raw.get("action") if isinstance(raw, dict) else None
    handler = handlers.get(action) if isinstance(action, str) else None
    if handler is None:
        return OperationResult(raw, OperationStatus.UNKNOWN_ACTION, detail=str(UnknownAction(action)))

    try:
        op = model.model_validate(raw)
        await handler(op, target)
    except Exception as exc:
        logger.warning("operation_failed", action=action, error=str(exc))
        return OperationResult(raw, OperationStatus.ERROR, detail=str(exc))
    return OperationResult(raw, OperationStatus.OK)


async def apply_file_operations(operations: Sequence[Any], target: ApplyTarget) -> List[OperationResult]:
    return [await apply_operation(op, FILE_HANDLERS, FileOperation, target) for op in operations]


async def apply_milestone_operations(
    operations: Sequence[Any], target: ApplyTarget
) -> List[OperationResult]:
    return [await apply_operation(op, MILESTONE_HANDLERS, MilestoneOperation, target) for op in operations]


_APPLIERS = {
    OperationFamily.FILE: apply_file_operations,
    OperationFamily.MILESTONE: apply_milestone_operations,
}


# --- confirmation gate ---------------------------------------------------


@dataclass(frozen=True)
class StagedBatch:
    """Operations waiting for the user's decision."""

    family: OperationFamily
    operations: tuple[Any, ...]

    def __len__(self) -> int:
        return len(self.operations)


class OperationDispatcher:
    """Holds at most one staged batch per family and applies it on confirmation.

    A batch is removed from staging before it is applied or cancelled, so it
    can never be applied twice.
    """

    def __init__(self, target: ApplyTarget | None = None, conversation_id: str | None = None):
        self.target = target or ApplyTarget()
        self.conversation_id = conversation_id
        self.ops_log: List[BatchReport] = []
        self._staged: Dict[OperationFamily, StagedBatch] = {}
        self._applying = False

    def stage(self, family: OperationFamily, payload: Any) -> StagedBatch:
        batch = StagedBatch(family, tuple(normalize_operations(payload)))
        if family in self._staged:
            logger.info("staged_batch_replaced", family=family.value)
        self._staged[family] = batch
        log_batch_event(family.value, "staged", len(batch), conversation_id=self.conversation_id)
        return batch

    def stage_commands(self, commands: ExtractedCommands) -> List[StagedBatch]:
        """Stage the file and milestone payloads of one reply. Mentor reports are not gated."""
        staged: List[StagedBatch] = []
        if commands.file_ops is not None and commands.file_ops.parsed is not None:
            staged.append(self.stage(OperationFamily.FILE, commands.file_ops.parsed))
        if commands.milestone_ops is not None and commands.milestone_ops.parsed is not None:
            staged.append(self.stage(OperationFamily.MILESTONE, commands.milestone_ops.parsed))
        return staged

    def pending(self, family: OperationFamily) -> StagedBatch | None:
        return self._staged.get(family)

    def cancel(self, family: OperationFamily) -> bool:
        """Discard the staged batch. Returns False when nothing was staged."""
        batch = self._staged.pop(family, None)
        if batch is None:
            return False
        log_batch_event(family.value, "cancelled", len(batch), conversation_id=self.conversation_id)
        return True

    async def confirm(self, family: OperationFamily) -> BatchReport | None:
        """Apply the staged batch for ``family``; None when nothing was staged."""
        if self._applying:
            raise DispatcherBusyError("A batch is already being applied")
        batch = self._staged.pop(family, None)
        if batch is None:
            return None

        self._applying = True
        try:
            results = await _APPLIERS[family](batch.operations, self.target)
        finally:
            self._applying = False

        report = BatchReport(family, results)
        self.ops_log.append(report)
        log_batch_event(
            family.value,
            "applied",
            len(results),
            succeeded=report.succeeded,
            failed=report.failed,
            conversation_id=self.conversation_id,
        )
        return report
