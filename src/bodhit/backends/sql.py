"""SQLAlchemy-backed conversation and milestone stores."""

from __future__ import annotations

from typing import Any, Mapping
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from bodhit.storage.database import get_async_session_factory
from bodhit.storage.repositories import (
    ConversationRepository,
    MentorReportRepository,
    MessageRepository,
    MilestoneRepository,
    TaskRepository,
)

__all__ = ["SqlConversationStore", "SqlMilestoneStore"]


class SqlConversationStore:
    """ConversationStore that commits each call in its own transaction."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession] | None = None):
        self._session_factory = session_factory or get_async_session_factory()

    async def start_conversation(self, title: str, submission_id: str | None = None) -> str:
        async with self._session_factory() as session, session.begin():
            conversation = await ConversationRepository(session).create_async(title, submission_id)
            return str(conversation.id)

    async def add_message(
        self,
        conversation_id: str,
        role: str,
        content: str,
        message_type: str = "explanation",
        file_ops: Any = None,
        mentor_report: Any = None,
    ) -> None:
        async with self._session_factory() as session, session.begin():
            await MessageRepository(session).append_async(
                UUID(conversation_id),
                role,
                content,
                message_type,
                file_ops=file_ops,
                mentor_report=mentor_report,
            )

    async def update_title(self, conversation_id: str, title: str) -> None:
        async with self._session_factory() as session, session.begin():
            await ConversationRepository(session).update_title_async(UUID(conversation_id), title)

    async def save_intake(self, conversation_id: str, intake: Mapping[str, str]) -> None:
        async with self._session_factory() as session, session.begin():
            await ConversationRepository(session).save_intake_async(UUID(conversation_id), intake)

    async def save_mentor_report(
        self,
        submission_id: str,
        conversation_id: str | None,
        report: Any,
        raw_text: str,
    ) -> None:
        async with self._session_factory() as session, session.begin():
            await MentorReportRepository(session).create_async(
                submission_id,
                report,
                raw_text,
                conversation_id=UUID(conversation_id) if conversation_id else None,
            )


class SqlMilestoneStore:
    """MilestoneStore over the milestones and tasks tables."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession] | None = None):
        self._session_factory = session_factory or get_async_session_factory()

    async def update_milestone(self, milestone_id: str, fields: Mapping[str, Any]) -> None:
        async with self._session_factory() as session, session.begin():
            await MilestoneRepository(session).update_async(milestone_id, fields)

    async def update_task(self, task_id: str, fields: Mapping[str, Any]) -> None:
        async with self._session_factory() as session, session.begin():
            await TaskRepository(session).update_async(task_id, fields)
