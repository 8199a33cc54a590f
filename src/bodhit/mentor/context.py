"""Project context sent alongside the conversation history.

The student controls what the mentor may see. The file list and structure
are always shared; file contents, milestone progress and dashboard data are
only included while the matching access toggle is on.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence

__all__ = ["ChatContext", "build_chat_body"]


@dataclass
class ChatContext:
    current_task: str = ""
    current_code: str = ""
    project_files: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    progress_entries: List[Any] = field(default_factory=list)
    dashboard_context: Optional[Dict[str, Any]] = None
    allow_file_access: bool = False
    allow_progress_access: bool = True
    allow_dashboard_access: bool = True

    @property
    def full_access(self) -> bool:
        return self.allow_file_access and self.allow_progress_access and self.allow_dashboard_access

    def set_full_access(self, enabled: bool) -> None:
        self.allow_file_access = enabled
        self.allow_progress_access = enabled
        self.allow_dashboard_access = enabled

    def toggle_full_access(self) -> bool:
        """Flip all three toggles together, like the panel's single button."""
        self.set_full_access(not self.full_access)
        return self.full_access


def build_chat_body(
    history: Sequence[Mapping[str, str]],
    context: ChatContext,
    files: Mapping[str, Mapping[str, Any]] | None = None,
) -> Dict[str, Any]:
    """Assemble the provider request body.

    ``files`` overrides ``context.project_files`` when a live file system is
    attached. Optional sections are omitted entirely when access is off.
    """
    files_view = dict(files) if files is not None else dict(context.project_files)

    body: Dict[str, Any] = {
        "messages": [{"role": m["role"], "content": m["content"]} for m in history],
        "currentTask": context.current_task,
        "currentCode": context.current_code,
        "projectFiles": list(files_view.keys()),
        "projectStructure": json.dumps(
            [
                {"path": f.get("path"), "type": f.get("type"), "language": f.get("language")}
                for f in files_view.values()
            ]
        ),
    }
    if context.allow_file_access:
        body["projectFilesContent"] = json.dumps(files_view)
    if context.allow_progress_access:
        body["progressEntries"] = json.dumps(context.progress_entries or [])
    if context.allow_dashboard_access and context.dashboard_context:
        body["studentDashboardContext"] = json.dumps(context.dashboard_context)
    return body
