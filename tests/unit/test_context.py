"""Tests for the chat request body."""

import json

from bodhit.mentor.context import ChatContext, build_chat_body

HISTORY = [{"role": "assistant", "content": "welcome"}, {"role": "user", "content": "hi"}]
FILES = {
    "/src/a.ts": {"path": "/src/a.ts", "type": "file", "language": "typescript", "content": "secret"},
}


def test_default_context_shares_structure_and_progress_only() -> None:
    context = ChatContext(current_task="Build login", progress_entries=[{"week": 1}])
    body = build_chat_body(HISTORY, context, FILES)

    assert body["messages"] == HISTORY
    assert body["currentTask"] == "Build login"
    assert body["projectFiles"] == ["/src/a.ts"]
    assert json.loads(body["projectStructure"]) == [
        {"path": "/src/a.ts", "type": "file", "language": "typescript"}
    ]
    assert "projectFilesContent" not in body
    assert json.loads(body["progressEntries"]) == [{"week": 1}]
    assert "studentDashboardContext" not in body
    assert "secret" not in json.dumps(body)


def test_file_access_includes_contents() -> None:
    context = ChatContext(allow_file_access=True)
    body = build_chat_body(HISTORY, context, FILES)
    assert json.loads(body["projectFilesContent"])["/src/a.ts"]["content"] == "secret"


def test_dashboard_included_when_present_and_allowed() -> None:
    context = ChatContext(dashboard_context={"streak": 3})
    assert json.loads(build_chat_body(HISTORY, context)["studentDashboardContext"]) == {"streak": 3}
    context.allow_dashboard_access = False
    assert "studentDashboardContext" not in build_chat_body(HISTORY, context)


def test_context_files_used_without_live_file_system() -> None:
    context = ChatContext(project_files=FILES)
    assert build_chat_body(HISTORY, context)["projectFiles"] == ["/src/a.ts"]


def test_toggle_full_access_flips_all_three() -> None:
    context = ChatContext()
    assert not context.full_access
    assert context.toggle_full_access() is True
    assert context.allow_file_access and context.allow_progress_access and context.allow_dashboard_access
    assert context.toggle_full_access() is False
    assert not (context.allow_file_access or context.allow_progress_access or context.allow_dashboard_access)
