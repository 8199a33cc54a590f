"""Protocol interfaces for the collaborators the mentor engine mutates.

These are intentionally small: the engine only needs to write files, patch
milestones/tasks, append conversation records and stream a chat reply.
"""

from __future__ import annotations

from typing import Any, AsyncIterator, Mapping, Protocol, Union

Chunk = Union[str, bytes]


class ProjectFileSystem(Protocol):
    async def create_file(self, path: str, content: str, language: str) -> None: ...

    async def update_file(self, path: str, content: str) -> None: ...

    async def delete_file(self, path: str, recursive: bool = False) -> None: ...

    async def rename_file(self, path: str, new_name: str) -> None: ...

    async def export_project(self, paths: list[str] | None = None) -> str: ...

    async def snapshot(self) -> dict[str, dict[str, Any]]: ...


class DownloadSink(Protocol):
    async def offer_download(self, filename: str, content: str, media_type: str) -> None: ...


class MilestoneStore(Protocol):
    async def update_milestone(self, milestone_id: str, fields: Mapping[str, Any]) -> None: ...

    async def update_task(self, task_id: str, fields: Mapping[str, Any]) -> None: ...


class ConversationStore(Protocol):
    async def start_conversation(self, title: str, submission_id: str | None = None) -> str: ...

    async def add_message(
        self,
        conversation_id: str,
        role: str,
        content: str,
        message_type: str = "explanation",
        file_ops: Any = None,
        mentor_report: Any = None,
    ) -> None: ...

    async def update_title(self, conversation_id: str, title: str) -> None: ...

    async def save_intake(self, conversation_id: str, intake: Mapping[str, str]) -> None: ...

    async def save_mentor_report(
        self,
        submission_id: str,
        conversation_id: str | None,
        report: Any,
        raw_text: str,
    ) -> None: ...


class ChatTransport(Protocol):
    def stream(self, body: Mapping[str, Any]) -> AsyncIterator[Chunk]: ...
