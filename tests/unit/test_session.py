"""End-to-end tests for a mentor conversation session."""

from __future__ import annotations

import json
from typing import Any, AsyncIterator, Mapping

import anyio
import pytest

from bodhit.backends.memory import (
    InMemoryConversationStore,
    InMemoryFileSystem,
    InMemoryMilestoneStore,
    RecordingDownloadSink,
)
from bodhit.errors import RateLimitedError, TransportError
from bodhit.mentor.context import ChatContext
from bodhit.mentor.dispatcher import ApplyTarget
from bodhit.mentor.operations import OperationFamily
from bodhit.mentor.prompts import CODE_REQUEST_REFUSAL, INTAKE_CONFIRMED, QUICK_PROMPTS, WELCOME_MESSAGE
from bodhit.mentor.session import MentorSession


def frame(content: str) -> bytes:
    payload = {"choices": [{"delta": {"content": content}}]}
    return ("data: " + json.dumps(payload) + "\n").encode("utf-8")


class ScriptedTransport:
    """Replays canned chunks and records every request body."""

    def __init__(self, *replies: list[bytes], error: TransportError | None = None):
        self.replies = list(replies)
        self.error = error
        self.bodies: list[Mapping[str, Any]] = []

    async def stream(self, body: Mapping[str, Any]) -> AsyncIterator[bytes]:
        self.bodies.append(body)
        if self.error is not None:
            raise self.error
        for chunk in self.replies.pop(0):
            yield chunk


class FailingStore(InMemoryConversationStore):
    async def add_message(self, *args: Any, **kwargs: Any) -> None:
        raise RuntimeError("database is down")


def reply(*parts: str) -> list[bytes]:
    return [frame(p) for p in parts] + [b"data: [DONE]\n"]


@pytest.fixture
def target() -> ApplyTarget:
    return ApplyTarget(
        files=InMemoryFileSystem({"/src/app.ts": "export {}"}),
        milestones=InMemoryMilestoneStore(milestones={"m1": {"title": "Setup", "status": "pending"}}),
        downloads=RecordingDownloadSink(),
    )


async def confirmed_session(session: MentorSession, intake_text: str) -> MentorSession:
    await session.start()
    await session.handle_message(intake_text)
    await session.handle_message("yes")
    assert session.session.confirmed
    return session


@pytest.mark.anyio
async def test_new_session_starts_with_welcome() -> None:
    store = InMemoryConversationStore()
    session = MentorSession(ScriptedTransport(), store=store)
    conversation_id = await session.start()

    assert session.messages[0].content == WELCOME_MESSAGE
    assert store.conversations[conversation_id].title.startswith("BODHIT Chat - ")
    assert await session.start() == conversation_id


@pytest.mark.anyio
async def test_blank_message_is_ignored() -> None:
    session = MentorSession(ScriptedTransport())
    outcome = await session.handle_message("   \n ")
    assert outcome.route == "ignored"
    assert len(session.messages) == 1


@pytest.mark.anyio
async def test_code_request_refused_before_intake() -> None:
    transport = ScriptedTransport()
    store = InMemoryConversationStore()
    session = MentorSession(transport, store=store)
    conversation_id = await session.start()

    outcome = await session.handle_message("  Give me the code for a todo app  ")

    assert outcome.route == "refused"
    user, assistant = outcome.messages
    assert user.content == "Give me the code for a todo app"
    assert assistant.content == CODE_REQUEST_REFUSAL
    assert assistant.type == "warning"
    assert transport.bodies == []
    assert not session.session.confirmed
    assert [m["role"] for m in store.conversations[conversation_id].messages] == ["user", "assistant"]


@pytest.mark.anyio
async def test_intake_is_negotiated_before_streaming(intake_text: str) -> None:
    transport = ScriptedTransport()
    store = InMemoryConversationStore()
    session = MentorSession(transport, store=store)
    conversation_id = await session.start()

    echo = await session.handle_message(intake_text)
    assert echo.route == "intake"
    assert echo.messages[1].type == "question"
    assert session.session.awaiting_confirmation

    confirmed = await session.handle_message("yes")
    assert confirmed.messages[1].content == INTAKE_CONFIRMED
    assert session.session.confirmed
    assert transport.bodies == []

    stored = store.conversations[conversation_id]
    assert stored.intake_confirmed is True
    assert stored.intake is not None and stored.intake["tech_stack"] == "React + TypeScript"
    assert stored.title == "BODHIT: yes"


@pytest.mark.anyio
async def test_title_uses_first_48_chars_of_latest_message(intake_text: str) -> None:
    store = InMemoryConversationStore()
    session = MentorSession(ScriptedTransport(), store=store)
    conversation_id = await session.start()
    await session.handle_message("x" * 100)
    assert store.conversations[conversation_id].title == "BODHIT: " + "x" * 48


@pytest.mark.anyio
async def test_code_request_refused_after_intake(intake_text: str) -> None:
    transport = ScriptedTransport()
    session = await confirmed_session(MentorSession(transport), intake_text)
    outcome = await session.handle_message("write the code for me")
    assert outcome.route == "refused"
    assert transport.bodies == []


@pytest.mark.anyio
async def test_streamed_file_ops_wait_for_confirmation(intake_text: str, target: ApplyTarget) -> None:
    text = 'Create a notes file.\n```FILE_OPS\n[{"action": "create", "path": "/notes.md", "content": "# Notes"}]\n```'
    cut = len(text) // 2
    transport = ScriptedTransport(reply(text[:cut], text[cut:]))
    store = InMemoryConversationStore()
    updates: list[str] = []
    session = MentorSession(
        transport,
        store=store,
        target=target,
        context=ChatContext(current_task="Notes"),
        on_update=lambda message: updates.append(message.content),
    )
    await confirmed_session(session, intake_text)

    outcome = await session.handle_message("How should I track notes?")

    assert outcome.route == "streamed"
    assert outcome.notice is None
    assert updates == [text[:cut], text]
    assert outcome.messages[-1].content == text
    assert outcome.messages[-1].file_ops == [{"action": "create", "path": "/notes.md", "content": "# Notes"}]
    assert [b.family for b in outcome.staged] == [OperationFamily.FILE]
    assert "/notes.md" not in target.files.files  # type: ignore[union-attr]

    body = transport.bodies[0]
    assert body["messages"][0] == {"role": "assistant", "content": WELCOME_MESSAGE}
    assert body["messages"][-1] == {"role": "user", "content": "How should I track notes?"}
    assert body["projectFiles"] == ["/src/app.ts"]
    assert body["currentTask"] == "Notes"

    report = await session.confirm(OperationFamily.FILE)
    assert report is not None and report.notice.title == "File ops applied"
    assert target.files.files["/notes.md"].content == "# Notes"  # type: ignore[union-attr]
    assert await session.confirm(OperationFamily.FILE) is None

    stored = store.conversations[session.conversation_id].messages  # type: ignore[index]
    assert stored[-1]["file_ops"] == outcome.messages[-1].file_ops
    assert stored[-2]["content"] == "How should I track notes?"


@pytest.mark.anyio
async def test_cancelled_milestone_ops_have_no_effect(intake_text: str, target: ApplyTarget) -> None:
    text = '```MILESTONE_OPS\n{"action": "update_milestone", "milestone_id": "m1", "status": "done"}\n```'
    session = MentorSession(ScriptedTransport(reply(text)), target=target)
    await confirmed_session(session, intake_text)

    await session.handle_message("I finished setup")
    assert session.pending(OperationFamily.MILESTONE) is not None
    assert session.cancel(OperationFamily.MILESTONE) is True
    assert target.milestones.milestones["m1"]["status"] == "pending"  # type: ignore[union-attr]


@pytest.mark.anyio
async def test_mentor_report_saved_without_confirmation(intake_text: str) -> None:
    text = 'Great work.\n```MENTOR_REPORT\n{"score": 8, "summary": "solid"}\n```'
    store = InMemoryConversationStore()
    session = MentorSession(ScriptedTransport(reply(text)), store=store, submission_id="sub-42")
    await confirmed_session(session, intake_text)

    outcome = await session.handle_message("Create mentor-ready status summary")

    assert outcome.staged == []
    assert outcome.messages[-1].mentor_report == {"score": 8, "summary": "solid"}
    assert store.mentor_reports == [
        {
            "submission_id": "sub-42",
            "conversation_id": session.conversation_id,
            "report": {"score": 8, "summary": "solid"},
            "raw_text": '{"score": 8, "summary": "solid"}',
        }
    ]


@pytest.mark.anyio
async def test_mentor_report_needs_submission(intake_text: str) -> None:
    text = '```MENTOR_REPORT\n{"score": 8}\n```'
    store = InMemoryConversationStore()
    session = MentorSession(ScriptedTransport(reply(text)), store=store)
    await confirmed_session(session, intake_text)
    await session.handle_message("summary please")
    assert store.mentor_reports == []


@pytest.mark.anyio
async def test_transport_failure_becomes_notice(intake_text: str) -> None:
    session = MentorSession(ScriptedTransport(error=RateLimitedError(status_code=429)))
    await confirmed_session(session, intake_text)
    before = len(session.messages)

    outcome = await session.handle_message("next step?")

    assert outcome.notice is not None
    assert outcome.notice.title == "Rate Limited"
    assert outcome.notice.variant == "destructive"
    assert len(session.messages) == before + 1
    assert session.messages[-1].role == "user"

    # The session is still usable afterwards.
    session.transport = ScriptedTransport(reply("ok"))
    assert (await session.handle_message("again")).messages[-1].content == "ok"


@pytest.mark.anyio
async def test_abort_keeps_partial_text_and_skips_extraction(intake_text: str, target: ApplyTarget) -> None:
    chunks = [frame("Partial "), frame('```FILE_OPS\n[{"action": "create", "path": "/x"}]\n```'), frame("tail")]
    store = InMemoryConversationStore()
    holder: dict[str, MentorSession] = {}

    def on_update(message: Any) -> None:
        holder["session"].abort_stream()

    session = MentorSession(ScriptedTransport(chunks), store=store, target=target, on_update=on_update)
    holder["session"] = session
    await confirmed_session(session, intake_text)

    outcome = await session.handle_message("explain")

    assert outcome.aborted is True
    assert outcome.messages[-1].content == "Partial "
    assert outcome.commands is None
    assert outcome.staged == []
    assert session.pending(OperationFamily.FILE) is None
    assert store.conversations[session.conversation_id].messages[-1]["content"] == "Partial "  # type: ignore[index]
    assert session.abort_stream() is False


@pytest.mark.anyio
async def test_message_during_stream_is_ignored(intake_text: str) -> None:
    gate = anyio.Event()
    started = anyio.Event()

    class SlowTransport:
        async def stream(self, body: Mapping[str, Any]) -> AsyncIterator[bytes]:
            yield frame("a")
            await gate.wait()
            yield frame("b")

    session = MentorSession(SlowTransport(), on_update=lambda message: started.set())
    await confirmed_session(session, intake_text)
    outcomes: list[Any] = []

    async def first() -> None:
        outcomes.append(await session.handle_message("first"))

    async with anyio.create_task_group() as tg:
        tg.start_soon(first)
        await started.wait()
        ignored = await session.handle_message("second")
        gate.set()

    assert ignored.route == "ignored"
    assert outcomes[0].messages[-1].content == "ab"


@pytest.mark.anyio
async def test_abort_interrupts_a_stalled_reply(intake_text: str) -> None:
    started = anyio.Event()

    class StalledTransport:
        async def stream(self, body: Mapping[str, Any]) -> AsyncIterator[bytes]:
            yield frame("a")
            await anyio.sleep(30)
            yield frame("LATE")

    store = InMemoryConversationStore()
    session = MentorSession(StalledTransport(), store=store, on_update=lambda message: started.set())
    await confirmed_session(session, intake_text)
    outcomes: list[Any] = []

    async def ask() -> None:
        outcomes.append(await session.handle_message("go on"))

    with anyio.fail_after(5):
        async with anyio.create_task_group() as tg:
            tg.start_soon(ask)
            await started.wait()
            assert session.abort_stream() is True

    outcome = outcomes[0]
    assert outcome.aborted is True
    assert outcome.messages[-1].content == "a"
    assert outcome.commands is None
    assert store.conversations[session.conversation_id].messages[-1]["content"] == "a"  # type: ignore[index]
    assert session.abort_stream() is False


class ChunkIterator:
    """Bare async iterator: no ``aclose``."""

    def __init__(self, chunks: list[bytes]):
        self._chunks = iter(chunks)

    def __aiter__(self) -> ChunkIterator:
        return self

    async def __anext__(self) -> bytes:
        try:
            return next(self._chunks)
        except StopIteration:
            raise StopAsyncIteration from None


@pytest.mark.anyio
async def test_transport_returning_plain_async_iterator(intake_text: str, target: ApplyTarget) -> None:
    text = '```FILE_OPS\n[{"action": "create", "path": "/plain.md", "content": "x"}]\n```'

    class PlainTransport:
        def stream(self, body: Mapping[str, Any]) -> ChunkIterator:
            return ChunkIterator(reply(text))

    store = InMemoryConversationStore()
    session = MentorSession(PlainTransport(), store=store, target=target)
    await confirmed_session(session, intake_text)

    outcome = await session.handle_message("set up notes")

    assert outcome.messages[-1].content == text
    assert [b.family for b in outcome.staged] == [OperationFamily.FILE]
    assert store.conversations[session.conversation_id].messages[-1]["content"] == text  # type: ignore[index]


@pytest.mark.anyio
async def test_failing_file_snapshot_falls_back_to_context(intake_text: str) -> None:
    class BrokenFileSystem(InMemoryFileSystem):
        async def snapshot(self) -> dict[str, dict[str, Any]]:
            raise OSError("disk unavailable")

    transport = ScriptedTransport(reply("fine"))
    session = MentorSession(
        transport,
        target=ApplyTarget(files=BrokenFileSystem()),
        context=ChatContext(project_files={"/README.md": {"content": "hi"}}),
    )
    await confirmed_session(session, intake_text)

    outcome = await session.handle_message("what next?")

    assert outcome.notice is None
    assert outcome.messages[-1].content == "fine"
    assert transport.bodies[0]["projectFiles"] == ["/README.md"]


@pytest.mark.anyio
async def test_quick_prompt_is_sent_as_a_message(intake_text: str) -> None:
    transport = ScriptedTransport(reply("Here is your progress."))
    session = await confirmed_session(MentorSession(transport), intake_text)

    assert session.quick_prompts == QUICK_PROMPTS
    outcome = await session.send_quick_prompt(0)

    assert outcome.route == "streamed"
    assert outcome.messages[0].content == "Review my current milestone progress"
    assert transport.bodies[0]["messages"][-1] == {
        "role": "user",
        "content": "Review my current milestone progress",
    }


@pytest.mark.anyio
async def test_store_failures_do_not_break_the_conversation(intake_text: str) -> None:
    session = MentorSession(ScriptedTransport(reply("hello")), store=FailingStore())
    await confirmed_session(session, intake_text)
    outcome = await session.handle_message("hi")
    assert outcome.messages[-1].content == "hello"


class TestScenarios:
    @pytest.mark.anyio
    async def test_parsed_intake_is_echoed_verbatim(self) -> None:
        session = MentorSession(ScriptedTransport())
        outcome = await session.handle_message(
            "Project idea: Todo app\nTech stack: React\nSkill level: beginner\nTimeline: 2 weeks"
        )
        echo = outcome.messages[1].content
        for line in ("Project idea: Todo app", "Tech stack: React", "Skill level: beginner", "Timeline: 2 weeks"):
            assert line in echo
        assert "yes" in echo and "no" in echo
        assert session.session.awaiting_confirmation

    @pytest.mark.anyio
    async def test_confirmed_file_ops_yield_one_ok_result(self, intake_text: str) -> None:
        text = '```FILE_OPS\n[{"action":"create","path":"/src/a.ts","content":"x"}]\n```'
        files = InMemoryFileSystem()
        session = MentorSession(ScriptedTransport(reply(text)), target=ApplyTarget(files=files))
        await confirmed_session(session, intake_text)
        await session.handle_message("please set up the entry file")

        report = await session.confirm(OperationFamily.FILE)

        assert report is not None
        assert [r.status.value for r in report.results] == ["ok"]
        assert files.files["/src/a.ts"].content == "x"

    @pytest.mark.anyio
    async def test_code_request_mid_intake_keeps_intake_state(self, intake_text: str) -> None:
        transport = ScriptedTransport()
        session = MentorSession(transport)
        await session.handle_message(intake_text)
        record = session.session.intake

        outcome = await session.handle_message("just give me the code")

        assert outcome.route == "refused"
        assert outcome.messages[1].content == CODE_REQUEST_REFUSAL
        assert session.session.awaiting_confirmation
        assert session.session.intake == record
        assert transport.bodies == []
