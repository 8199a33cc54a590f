"""Collaborator protocols and their reference implementations."""

from bodhit.backends.chat_transport import HttpChatTransport
from bodhit.backends.memory import (
    InMemoryConversationStore,
    InMemoryFileSystem,
    InMemoryMilestoneStore,
    RecordingDownloadSink,
)
from bodhit.backends.sql import SqlConversationStore, SqlMilestoneStore
from bodhit.backends.protocols import (
    ChatTransport,
    ConversationStore,
    DownloadSink,
    MilestoneStore,
    ProjectFileSystem,
)

__all__ = [
    "ChatTransport",
    "ConversationStore",
    "DownloadSink",
    "MilestoneStore",
    "ProjectFileSystem",
    "HttpChatTransport",
    "InMemoryConversationStore",
    "InMemoryFileSystem",
    "InMemoryMilestoneStore",
    "RecordingDownloadSink",
    "SqlConversationStore",
    "SqlMilestoneStore",
]
