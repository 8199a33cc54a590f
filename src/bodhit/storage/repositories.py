"""Data access repositories."""

from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from bodhit.observability.logging import get_logger
from bodhit.storage.models import ChatMessage, Conversation, MentorReport, Milestone, Task

logger = get_logger(__name__)

__all__ = [
    "ConversationRepository",
    "MessageRepository",
    "MentorReportRepository",
    "MilestoneRepository",
    "TaskRepository",
]

INTAKE_COLUMNS = ("project_idea", "tech_stack", "skill_level", "timeline")


class ConversationRepository:
    """Repository for Conversation CRUD operations."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create_async(self, title: str, submission_id: str | None = None) -> Conversation:
        conversation = Conversation(title=title, submission_id=submission_id)
        self.session.add(conversation)
        await self.session.flush()
        logger.info("Created conversation %s", conversation.id)
        return conversation

    async def get_async(self, conversation_id: UUID) -> Optional[Conversation]:
        result = await self.session.execute(
            select(Conversation).where(Conversation.id == conversation_id)
        )
        return result.scalar_one_or_none()

    async def _require_async(self, conversation_id: UUID) -> Conversation:
        conversation = await self.get_async(conversation_id)
        if conversation is None:
            raise LookupError(f"Conversation {conversation_id} not found")
        return conversation

    async def update_title_async(self, conversation_id: UUID, title: str) -> Conversation:
        conversation = await self._require_async(conversation_id)
        conversation.title = title
        await self.session.flush()
        return conversation

    async def save_intake_async(self, conversation_id: UUID, intake: Mapping[str, str]) -> Conversation:
        """Store the confirmed intake fields and mark the intake confirmed."""
        conversation = await self._require_async(conversation_id)
        for column in INTAKE_COLUMNS:
            if column in intake:
                setattr(conversation, column, intake[column])
        conversation.intake_confirmed = True
        await self.session.flush()
        logger.info("Saved intake for conversation %s", conversation_id)
        return conversation

    async def list_by_submission_async(self, submission_id: str) -> List[Conversation]:
        result = await self.session.execute(
            select(Conversation)
            .where(Conversation.submission_id == submission_id)
            .order_by(Conversation.created_at.desc())
        )
        return list(result.scalars().all())


class MessageRepository:
    """Append-only access to conversation messages."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def append_async(
        self,
        conversation_id: UUID,
        role: str,
        content: str,
        message_type: str = "explanation",
        file_ops: Any = None,
        mentor_report: Any = None,
    ) -> ChatMessage:
        result = await self.session.execute(
            select(func.coalesce(func.max(ChatMessage.seq), 0)).where(
                ChatMessage.conversation_id == conversation_id
            )
        )
        message = ChatMessage(
            conversation_id=conversation_id,
            seq=int(result.scalar_one()) + 1,
            role=role,
            content=content,
            message_type=message_type,
            file_ops=file_ops,
            mentor_report=mentor_report,
        )
        self.session.add(message)
        await self.session.flush()
        return message

    async def list_async(self, conversation_id: UUID) -> List[ChatMessage]:
        result = await self.session.execute(
            select(ChatMessage)
            .where(ChatMessage.conversation_id == conversation_id)
            .order_by(ChatMessage.seq)
        )
        return list(result.scalars().all())


class MentorReportRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create_async(
        self,
        submission_id: str,
        report: Any,
        raw_text: str,
        conversation_id: UUID | None = None,
        status: str = "submitted",
    ) -> MentorReport:
        record = MentorReport(
            submission_id=submission_id,
            conversation_id=conversation_id,
            report=report,
            raw_text=raw_text,
            status=status,
        )
        self.session.add(record)
        await self.session.flush()
        logger.info("Saved mentor report %s for submission %s", record.id, submission_id)
        return record

    async def list_by_submission_async(self, submission_id: str) -> List[MentorReport]:
        result = await self.session.execute(
            select(MentorReport)
            .where(MentorReport.submission_id == submission_id)
            .order_by(MentorReport.created_at)
        )
        return list(result.scalars().all())


def _patch(record: Any, fields: Mapping[str, Any], allowed: tuple[str, ...]) -> Dict[str, Any]:
    applied = {k: v for k, v in fields.items() if k in allowed}
    for key, value in applied.items():
        setattr(record, key, value)
    return applied


class MilestoneRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_async(self, milestone_id: str) -> Optional[Milestone]:
        return await self.session.get(Milestone, milestone_id)

    async def update_async(self, milestone_id: str, fields: Mapping[str, Any]) -> Milestone:
        milestone = await self.get_async(milestone_id)
        if milestone is None:
            raise LookupError(f"Milestone {milestone_id} not found")
        _patch(milestone, fields, ("status", "title", "description", "due_date"))
        await self.session.flush()
        return milestone


class TaskRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_async(self, task_id: str) -> Optional[Task]:
        return await self.session.get(Task, task_id)

    async def update_async(self, task_id: str, fields: Mapping[str, Any]) -> Task:
        task = await self.get_async(task_id)
        if task is None:
            raise LookupError(f"Task {task_id} not found")
        _patch(task, fields, ("status", "progress", "title", "description"))
        await self.session.flush()
        return task
