"""Mentor conversation session.

Routes each user message through the pipeline::

    guard -> intake collector            (until intake is confirmed)
    guard -> stream ingestor -> command extractor -> dispatcher staging

The user message is always appended (and persisted) before the assistant
reply starts streaming. Persistence failures are logged and never end the
session; transport failures come back as a :class:`Notice`.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, List, Optional, Tuple

from bodhit.backends.protocols import ChatTransport, ConversationStore
from bodhit.config import settings
from bodhit.errors import TransportError
from bodhit.mentor.commands import ExtractedCommands, extract_commands
from bodhit.mentor.context import ChatContext, build_chat_body
from bodhit.mentor.dispatcher import ApplyTarget, OperationDispatcher, StagedBatch
from bodhit.mentor.guard import is_code_request, refusal_message
from bodhit.mentor.intake import IntakeCollector, IntakeRecord
from bodhit.mentor.operations import BatchReport, Notice, OperationFamily
from bodhit.mentor.prompts import QUICK_PROMPTS, WELCOME_MESSAGE
from bodhit.mentor.stream import StreamIngestor, StreamResult, close_source
from bodhit.observability.events import MentorEvent, log_mentor_event
from bodhit.observability.logging import conversation_id_var, get_logger

logger = get_logger(__name__)

__all__ = ["Message", "ConversationSession", "TurnOutcome", "MentorSession"]


@dataclass
class Message:
    role: str  # "user" | "assistant"
    content: str
    type: str = "explanation"  # explanation | hint | question | warning
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    file_ops: Any = None
    mentor_report: Any = None


@dataclass
class ConversationSession:
    """Transcript plus intake state. Messages are append-only."""

    messages: List[Message] = field(default_factory=list)
    collector: IntakeCollector = field(default_factory=IntakeCollector)

    @property
    def intake(self) -> IntakeRecord | None:
        return self.collector.intake

    @property
    def confirmed(self) -> bool:
        return self.collector.confirmed

    @property
    def awaiting_confirmation(self) -> bool:
        return self.collector.awaiting_confirmation

    def append(self, message: Message) -> Message:
        self.messages.append(message)
        return message

    def history(self) -> List[dict[str, str]]:
        return [{"role": m.role, "content": m.content} for m in self.messages]


@dataclass
class TurnOutcome:
    """Everything one user message produced, for the caller to render."""

    route: str  # "ignored" | "refused" | "intake" | "streamed"
    messages: List[Message] = field(default_factory=list)
    notice: Optional[Notice] = None
    commands: Optional[ExtractedCommands] = None
    staged: List[StagedBatch] = field(default_factory=list)
    aborted: bool = False


class MentorSession:
    """One student's conversation with the mentor."""

    def __init__(
        self,
        transport: ChatTransport,
        store: ConversationStore | None = None,
        target: ApplyTarget | None = None,
        context: ChatContext | None = None,
        submission_id: str | None = None,
        on_update: Callable[[Message], None] | None = None,
    ):
        self.transport = transport
        self.store = store
        self.context = context or ChatContext()
        self.submission_id = submission_id
        self.on_update = on_update
        self.conversation_id: str | None = None
        self.session = ConversationSession(messages=[Message("assistant", WELCOME_MESSAGE)])
        self.dispatcher = OperationDispatcher(
            target or ApplyTarget(export_filename_prefix=settings.export_filename_prefix)
        )
        self._streaming = False
        self._ingestor: StreamIngestor | None = None

    @property
    def messages(self) -> List[Message]:
        return self.session.messages

    @property
    def quick_prompts(self) -> Tuple[str, ...]:
        return QUICK_PROMPTS

    async def start(self) -> str | None:
        """Open a conversation in the store (if any) and return its id."""
        if self.store is None or self.conversation_id is not None:
            return self.conversation_id
        title = f"{settings.conversation_title_prefix} Chat - {datetime.now():%Y-%m-%d %H:%M:%S}"
        try:
            self.conversation_id = await self.store.start_conversation(title, self.submission_id)
        except Exception as exc:
            logger.error("conversation_start_failed", error=str(exc))
            return None
        self.dispatcher.conversation_id = self.conversation_id
        return self.conversation_id

    # --- persistence -----------------------------------------------------

    async def _persist(self, action: str, *args: Any, **kwargs: Any) -> None:
        """Call a store method; failures are logged and swallowed."""
        if self.store is None:
            return
        try:
            await getattr(self.store, action)(*args, **kwargs)
        except Exception as exc:
            logger.error("conversation_store_failed", action=action, error=str(exc))

    async def _record(self, message: Message) -> Message:
        self.session.append(message)
        if self.conversation_id is not None:
            await self._persist(
                "add_message",
                self.conversation_id,
                message.role,
                message.content,
                message.type,
                file_ops=message.file_ops,
                mentor_report=message.mentor_report,
            )
        return message

    # --- routing -----------------------------------------------------------

    async def handle_message(self, text: str) -> TurnOutcome:
        text = text.strip()
        if not text or self._streaming:
            return TurnOutcome(route="ignored")

        token = conversation_id_var.set(self.conversation_id or "")
        try:
            if self.conversation_id is not None:
                max_chars = settings.conversation_title_max_chars
                title = f"{settings.conversation_title_prefix}: {text[:max_chars]}"
                await self._persist("update_title", self.conversation_id, title)

            if is_code_request(text):
                return await self._refuse(text)
            if not self.session.confirmed:
                return await self._negotiate_intake(text)
            return await self._stream_reply(text)
        finally:
            conversation_id_var.reset(token)

    async def send_quick_prompt(self, index: int) -> TurnOutcome:
        """Send one of :attr:`quick_prompts` as if the student had typed it."""
        return await self.handle_message(QUICK_PROMPTS[index])

    async def _refuse(self, text: str) -> TurnOutcome:
        log_mentor_event(MentorEvent.CODE_REQUEST_REFUSED, conversation_id=self.conversation_id)
        user = await self._record(Message("user", text))
        reply = await self._record(Message("assistant", refusal_message(), "warning"))
        return TurnOutcome(route="refused", messages=[user, reply])

    async def _negotiate_intake(self, text: str) -> TurnOutcome:
        result = self.session.collector.handle(text)
        user = await self._record(Message("user", text))
        reply = await self._record(Message("assistant", result.content, result.message_type))
        if result.confirmed_record is not None and self.conversation_id is not None:
            await self._persist("save_intake", self.conversation_id, result.confirmed_record.to_dict())
        return TurnOutcome(route="intake", messages=[user, reply])

    # --- streaming ---------------------------------------------------------

    def abort_stream(self) -> bool:
        """Stop the in-flight reply, interrupting a read that is still waiting."""
        if not self._streaming or self._ingestor is None:
            return False
        self._ingestor.stop()
        return True

    async def _project_snapshot(self) -> Any:
        # None makes the request body fall back to context.project_files.
        files = self.dispatcher.target.files
        if files is None:
            return None
        try:
            return await files.snapshot()
        except Exception as exc:
            logger.error("project_snapshot_failed", error=str(exc))
            return None

    async def _stream_reply(self, text: str) -> TurnOutcome:
        user = await self._record(Message("user", text))
        outcome = TurnOutcome(route="streamed", messages=[user])

        body = build_chat_body(self.session.history(), self.context, await self._project_snapshot())

        reply: Message | None = None

        def render(content: str) -> None:
            nonlocal reply
            if reply is None:
                reply = self.session.append(Message("assistant", content))
            else:
                reply.content = content
            if self.on_update is not None:
                self.on_update(reply)

        self._streaming = True
        self._ingestor = StreamIngestor(on_update=render)
        log_mentor_event(MentorEvent.STREAM_STARTED, conversation_id=self.conversation_id)
        result: StreamResult | None = None
        try:
            chunks = self.transport.stream(body)
            try:
                result = await self._ingestor.ingest(chunks)
            finally:
                await close_source(chunks)
        except TransportError as exc:
            log_mentor_event(MentorEvent.STREAM_FAILED, conversation_id=self.conversation_id, error=str(exc))
            outcome.notice = Notice(exc.title, exc.description, "destructive")
        finally:
            self._streaming = False
            self._ingestor = None

        if result is not None and result.aborted:
            outcome.aborted = True
            log_mentor_event(MentorEvent.STREAM_ABORTED, conversation_id=self.conversation_id)
        elif result is not None:
            log_mentor_event(
                MentorEvent.STREAM_COMPLETED,
                conversation_id=self.conversation_id,
                extra={"chunks": result.chunks, "chars": len(result.content)},
            )

        if reply is None:
            return outcome

        # Only a fully received reply is scanned for commands.
        if result is not None and not result.aborted:
            outcome.commands = extract_commands(reply.content)
            if not outcome.commands.empty:
                log_mentor_event(
                    MentorEvent.COMMANDS_EXTRACTED,
                    conversation_id=self.conversation_id,
                    extra={"tags": outcome.commands.tags()},
                )
            outcome.staged = self.dispatcher.stage_commands(outcome.commands)
            if outcome.commands.file_ops is not None:
                reply.file_ops = outcome.commands.file_ops.parsed
            if outcome.commands.mentor_report is not None:
                reply.mentor_report = outcome.commands.mentor_report.parsed

        outcome.messages.append(reply)
        if self.conversation_id is not None:
            await self._persist(
                "add_message",
                self.conversation_id,
                "assistant",
                reply.content,
                reply.type,
                file_ops=reply.file_ops,
                mentor_report=reply.mentor_report,
            )
        await self._save_mentor_report(outcome.commands)
        return outcome

    async def _save_mentor_report(self, commands: ExtractedCommands | None) -> None:
        # Not gated by confirmation: the report is saved as soon as it parses.
        if commands is None or commands.mentor_report is None or commands.mentor_report.parsed is None:
            return
        if not self.submission_id:
            return
        block = commands.mentor_report
        await self._persist(
            "save_mentor_report",
            self.submission_id,
            self.conversation_id,
            block.parsed,
            block.raw,
        )
        log_mentor_event(MentorEvent.MENTOR_REPORT_SAVED, conversation_id=self.conversation_id)

    # --- confirmation gate -------------------------------------------------

    def pending(self, family: OperationFamily) -> StagedBatch | None:
        return self.dispatcher.pending(family)

    async def confirm(self, family: OperationFamily) -> BatchReport | None:
        return await self.dispatcher.confirm(family)

    def cancel(self, family: OperationFamily) -> bool:
        return self.dispatcher.cancel(family)
