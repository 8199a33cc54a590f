"""SQLAlchemy database models for BODHIT conversations and milestones."""

from __future__ import annotations

from datetime import datetime, timezone
import uuid
from typing import Any, Dict
from uuid import UUID

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    JSON,
    String,
    Text,
    TypeDecorator,
)
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.orm import declarative_base, relationship


def _utc_now() -> datetime:
    """Return a tz-naive UTC timestamp for TIMESTAMP WITHOUT TIME ZONE columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class GUID(TypeDecorator[UUID]):
    """Platform-independent GUID type.

    Uses PostgreSQL's UUID type when available, otherwise stores as String(36).
    """

    impl = String(36)
    cache_ok = True

    def load_dialect_impl(self, dialect: Any) -> Any:
        if dialect.name == "postgresql":
            return dialect.type_descriptor(PG_UUID(as_uuid=True))
        return dialect.type_descriptor(String(36))

    def process_bind_param(self, value: Any, dialect: Any) -> Any:
        if value is None:
            return value
        if dialect.name == "postgresql":
            return value if isinstance(value, uuid.UUID) else uuid.UUID(value)
        return str(value) if isinstance(value, uuid.UUID) else value

    def process_result_value(self, value: Any, dialect: Any) -> UUID | None:
        if value is None:
            return value
        if isinstance(value, uuid.UUID):
            return value
        return uuid.UUID(value)


Base = declarative_base()

__all__ = [
    "Base",
    "GUID",
    "Conversation",
    "ChatMessage",
    "MentorReport",
    "Milestone",
    "Task",
]


class Conversation(Base):
    """A mentor conversation, optionally tied to a project submission."""

    __tablename__ = "conversations"

    id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    title = Column(String(255), nullable=False)
    submission_id = Column(String(128), nullable=True, index=True)
    project_idea = Column(Text, nullable=True)
    tech_stack = Column(Text, nullable=True)
    skill_level = Column(String(128), nullable=True)
    timeline = Column(String(128), nullable=True)
    intake_confirmed = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=_utc_now)
    updated_at = Column(DateTime, default=_utc_now, onupdate=_utc_now)

    messages = relationship(
        "ChatMessage",
        back_populates="conversation",
        order_by="ChatMessage.seq",
        cascade="all, delete-orphan",
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": str(self.id),
            "title": self.title,
            "submission_id": self.submission_id,
            "project_idea": self.project_idea,
            "tech_stack": self.tech_stack,
            "skill_level": self.skill_level,
            "timeline": self.timeline,
            "intake_confirmed": self.intake_confirmed,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self) -> str:
        return f"<Conversation id={self.id} title={self.title!r}>"


class ChatMessage(Base):
    """One transcript entry. ``seq`` preserves append order within a conversation."""

    __tablename__ = "messages"
    __table_args__ = (Index("ix_messages_conversation_seq", "conversation_id", "seq"),)

    id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    conversation_id = Column(GUID(), ForeignKey("conversations.id"), nullable=False)
    seq = Column(Integer, nullable=False)
    role = Column(String(16), nullable=False)
    content = Column(Text, nullable=False)
    message_type = Column(String(32), nullable=False, default="explanation")
    file_ops = Column(JSON, nullable=True)
    mentor_report = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=_utc_now)

    conversation = relationship("Conversation", back_populates="messages")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": str(self.id),
            "conversation_id": str(self.conversation_id),
            "role": self.role,
            "content": self.content,
            "message_type": self.message_type,
            "file_ops": self.file_ops,
            "mentor_report": self.mentor_report,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self) -> str:
        return f"<ChatMessage id={self.id} role={self.role}>"


class MentorReport(Base):
    """Assessment emitted by the assistant, saved without user confirmation."""

    __tablename__ = "mentor_reports"

    id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    submission_id = Column(String(128), nullable=False, index=True)
    conversation_id = Column(GUID(), ForeignKey("conversations.id"), nullable=True)
    report = Column(JSON, nullable=True)
    raw_text = Column(Text, nullable=False)
    status = Column(String(32), nullable=False, default="submitted")
    created_at = Column(DateTime, default=_utc_now)

    def __repr__(self) -> str:
        return f"<MentorReport id={self.id} submission={self.submission_id}>"


class Milestone(Base):
    __tablename__ = "milestones"

    id = Column(String(64), primary_key=True, default=lambda: str(uuid.uuid4()))
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    status = Column(String(32), nullable=False, default="pending")
    due_date = Column(String(32), nullable=True)
    updated_at = Column(DateTime, default=_utc_now, onupdate=_utc_now)

    tasks = relationship("Task", back_populates="milestone")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "status": self.status,
            "due_date": self.due_date,
        }


class Task(Base):
    __tablename__ = "tasks"

    id = Column(String(64), primary_key=True, default=lambda: str(uuid.uuid4()))
    milestone_id = Column(String(64), ForeignKey("milestones.id"), nullable=True)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    status = Column(String(32), nullable=False, default="pending")
    progress = Column(Float, nullable=True)
    updated_at = Column(DateTime, default=_utc_now, onupdate=_utc_now)

    milestone = relationship("Milestone", back_populates="tasks")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "milestone_id": self.milestone_id,
            "title": self.title,
            "description": self.description,
            "status": self.status,
            "progress": self.progress,
        }
