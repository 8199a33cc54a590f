"""BODHIT storage module - Database models and repositories."""

from bodhit.storage.database import (
    get_async_engine,
    get_async_session_factory,
    init_async_db,
    shutdown_async_db,
)
from bodhit.storage.models import Base, ChatMessage, Conversation, MentorReport, Milestone, Task
from bodhit.storage.repositories import (
    ConversationRepository,
    MentorReportRepository,
    MessageRepository,
    MilestoneRepository,
    TaskRepository,
)

__all__ = [
    "Base",
    "Conversation",
    "ChatMessage",
    "MentorReport",
    "Milestone",
    "Task",
    "get_async_engine",
    "get_async_session_factory",
    "init_async_db",
    "shutdown_async_db",
    "ConversationRepository",
    "MessageRepository",
    "MentorReportRepository",
    "MilestoneRepository",
    "TaskRepository",
]
