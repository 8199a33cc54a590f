"""In-memory collaborators.

Used by tests and by embedders that keep the project tree in process. The
file system mirrors the browser-side virtual file system the mentor panel
mutates: flat ``path -> file`` entries, directories implied by prefixes.
"""

from __future__ import annotations

import json
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional

from bodhit.observability.logging import get_logger

logger = get_logger(__name__)

__all__ = [
    "ProjectFile",
    "InMemoryFileSystem",
    "RecordingDownloadSink",
    "InMemoryMilestoneStore",
    "InMemoryConversationStore",
]


def _normalize_path(path: str) -> str:
    path = (path or "").strip()
    if not path:
        raise ValueError("path is required")
    if not path.startswith("/"):
        path = "/" + path
    return path.rstrip("/") or "/"


@dataclass
class ProjectFile:
    path: str
    content: str = ""
    language: str = "text"
    type: str = "file"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "path": self.path,
            "type": self.type,
            "language": self.language,
            "content": self.content,
        }


class InMemoryFileSystem:
    """Flat virtual file system keyed by absolute path."""

    def __init__(self, files: Mapping[str, str] | None = None):
        self.files: Dict[str, ProjectFile] = {}
        for path, content in (files or {}).items():
            normalized = _normalize_path(path)
            self.files[normalized] = ProjectFile(normalized, content)

    def _children(self, path: str) -> List[str]:
        prefix = path.rstrip("/") + "/"
        return [p for p in self.files if p.startswith(prefix)]

    async def create_file(self, path: str, content: str, language: str) -> None:
        path = _normalize_path(path)
        if path in self.files:
            raise FileExistsError(f"{path} already exists")
        self.files[path] = ProjectFile(path, content, language)

    async def update_file(self, path: str, content: str) -> None:
        path = _normalize_path(path)
        existing = self.files.get(path)
        if existing is None:
            raise FileNotFoundError(f"{path} does not exist")
        existing.content = content

    async def delete_file(self, path: str, recursive: bool = False) -> None:
        path = _normalize_path(path)
        children = self._children(path)
        if children:
            if not recursive:
                raise IsADirectoryError(f"{path} is a non-empty directory; pass recursive")
            for child in children:
                del self.files[child]
            self.files.pop(path, None)
            return
        if path not in self.files:
            raise FileNotFoundError(f"{path} does not exist")
        del self.files[path]

    async def rename_file(self, path: str, new_name: str) -> None:
        """Rename ``path``; a bare name stays in the same directory."""
        old = _normalize_path(path)
        if "/" in new_name.strip("/") or new_name.startswith("/"):
            new = _normalize_path(new_name)
        else:
            parent = old.rsplit("/", 1)[0]
            new = f"{parent}/{new_name.strip()}"

        moves = {p: new + p[len(old) :] for p in self._children(old)}
        if old in self.files:
            moves[old] = new
        if not moves:
            raise FileNotFoundError(f"{old} does not exist")
        clashes = [target for target in moves.values() if target in self.files and target not in moves]
        if clashes:
            raise FileExistsError(f"{clashes[0]} already exists")

        moved = {target: self.files.pop(source) for source, target in moves.items()}
        for target, entry in moved.items():
            entry.path = target
            self.files[target] = entry

    async def export_project(self, paths: list[str] | None = None) -> str:
        if paths is None:
            selected = self.files
        else:
            wanted = [_normalize_path(p) for p in paths]
            selected = {
                p: f
                for p, f in self.files.items()
                if any(p == w or p.startswith(w.rstrip("/") + "/") for w in wanted)
            }
        return json.dumps({p: f.to_dict() for p, f in sorted(selected.items())}, indent=2)

    async def snapshot(self) -> dict[str, dict[str, Any]]:
        return {p: f.to_dict() for p, f in self.files.items()}


@dataclass
class Download:
    filename: str
    content: str
    media_type: str


class RecordingDownloadSink:
    """Collects offered downloads instead of handing them to a browser."""

    def __init__(self) -> None:
        self.downloads: List[Download] = []

    async def offer_download(self, filename: str, content: str, media_type: str) -> None:
        self.downloads.append(Download(filename, content, media_type))
        logger.info("download_offered", filename=filename, size=len(content))


class InMemoryMilestoneStore:
    """Milestones and tasks keyed by id; updates patch only the given fields."""

    def __init__(
        self,
        milestones: Mapping[str, Dict[str, Any]] | None = None,
        tasks: Mapping[str, Dict[str, Any]] | None = None,
    ):
        self.milestones: Dict[str, Dict[str, Any]] = {k: dict(v) for k, v in (milestones or {}).items()}
        self.tasks: Dict[str, Dict[str, Any]] = {k: dict(v) for k, v in (tasks or {}).items()}

    async def update_milestone(self, milestone_id: str, fields: Mapping[str, Any]) -> None:
        milestone = self.milestones.get(milestone_id)
        if milestone is None:
            raise LookupError(f"Milestone {milestone_id} not found")
        milestone.update(fields)

    async def update_task(self, task_id: str, fields: Mapping[str, Any]) -> None:
        task = self.tasks.get(task_id)
        if task is None:
            raise LookupError(f"Task {task_id} not found")
        task.update(fields)


@dataclass
class StoredConversation:
    id: str
    title: str
    submission_id: Optional[str] = None
    intake: Optional[Dict[str, str]] = None
    intake_confirmed: bool = False
    messages: List[Dict[str, Any]] = field(default_factory=list)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class InMemoryConversationStore:
    """Append-only conversation log held in memory."""

    def __init__(self) -> None:
        self.conversations: Dict[str, StoredConversation] = {}
        self.mentor_reports: List[Dict[str, Any]] = []

    def _get(self, conversation_id: str) -> StoredConversation:
        conversation = self.conversations.get(conversation_id)
        if conversation is None:
            raise LookupError(f"Conversation {conversation_id} not found")
        return conversation

    async def start_conversation(self, title: str, submission_id: str | None = None) -> str:
        conversation_id = str(uuid.uuid4())
        self.conversations[conversation_id] = StoredConversation(
            id=conversation_id, title=title, submission_id=submission_id
        )
        return conversation_id

    async def add_message(
        self,
        conversation_id: str,
        role: str,
        content: str,
        message_type: str = "explanation",
        file_ops: Any = None,
        mentor_report: Any = None,
    ) -> None:
        self._get(conversation_id).messages.append(
            {
                "role": role,
                "content": content,
                "message_type": message_type,
                "file_ops": file_ops,
                "mentor_report": mentor_report,
            }
        )

    async def update_title(self, conversation_id: str, title: str) -> None:
        self._get(conversation_id).title = title

    async def save_intake(self, conversation_id: str, intake: Mapping[str, str]) -> None:
        conversation = self._get(conversation_id)
        conversation.intake = dict(intake)
        conversation.intake_confirmed = True

    async def save_mentor_report(
        self,
        submission_id: str,
        conversation_id: str | None,
        report: Any,
        raw_text: str,
    ) -> None:
        self.mentor_reports.append(
            {
                "submission_id": submission_id,
                "conversation_id": conversation_id,
                "report": report,
                "raw_text": raw_text,
            }
        )
