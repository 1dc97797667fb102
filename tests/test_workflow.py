from __future__ import annotations

import re
from datetime import timedelta
from pathlib import Path

import pytest

from coursework_bridge.analyzer import analyze
from coursework_bridge.models import (
    Assignment,
    Course,
    DraftStatus,
    SessionStatus,
    SolutionFormat,
    WorkflowAction,
)
from coursework_bridge.solution import DraftStore, generate_prompt, prepare_context
from coursework_bridge.workflow import (
    WorkflowOrchestrator,
    format_duration,
    utc_now,
    write_draft_file,
)

COURSE = Course(id=101, name="CS 170: Efficient Algorithms", course_code="CS 170")
HW = Assignment(
    id=9017, name="Homework 17", points_possible=10.0, submission_types=("online_upload",)
)


@pytest.fixture
def orchestrator() -> WorkflowOrchestrator:
    return WorkflowOrchestrator()


def _with_draft(orchestrator: WorkflowOrchestrator, content: str = "def solve(): pass"):
    session = orchestrator.create_session("hw 17 from cs 170")
    draft = DraftStore().save_draft(HW.id, COURSE.id, HW.name, content, SolutionFormat.CODE)
    orchestrator.set_draft(session, draft)
    return session


def test_create_session(orchestrator: WorkflowOrchestrator) -> None:
    first = orchestrator.create_session("hw 17 from cs 170")
    second = orchestrator.create_session("lab 3 for eecs 16a")
    assert re.fullmatch(r"wf-\d+-1", first.id)
    assert re.fullmatch(r"wf-\d+-2", second.id)
    assert first.status is SessionStatus.IN_PROGRESS
    assert first.logs[0].details == "Workflow session started"
    assert orchestrator.get_session(first.id) is first
    assert orchestrator.get_session("wf-missing") is None
    assert orchestrator.list_sessions() == [first, second]


def test_informational_setters_keep_status_and_log(orchestrator: WorkflowOrchestrator) -> None:
    session = orchestrator.create_session("hw 17 from cs 170")
    analysis = analyze(HW, COURSE.id)
    context = prepare_context(analysis)

    orchestrator.set_course(session, COURSE, 100)
    orchestrator.set_assignment(session, HW, 60)
    orchestrator.set_analysis(session, analysis)
    orchestrator.set_solution_context(session, context, generate_prompt(context))

    assert session.status is SessionStatus.IN_PROGRESS
    assert [entry.action for entry in session.logs] == [
        WorkflowAction.RESOLVE_COURSE,
        WorkflowAction.RESOLVE_COURSE,
        WorkflowAction.RESOLVE_ASSIGNMENT,
        WorkflowAction.ANALYZE_ASSIGNMENT,
        WorkflowAction.PREPARE_SOLUTION,
    ]
    assert session.logs[1].data["confidence"] == 100
    assert session.generated_prompt.startswith("# Assignment Solution Request")


def test_set_draft_moves_to_awaiting_review(orchestrator: WorkflowOrchestrator) -> None:
    session = _with_draft(orchestrator)
    assert session.status is SessionStatus.AWAITING_REVIEW
    assert orchestrator.list_active_sessions() == [session]


def test_approve_without_draft_is_noop(orchestrator: WorkflowOrchestrator) -> None:
    session = orchestrator.create_session("hw 17 from cs 170")
    assert orchestrator.approve_draft(session) is False
    assert session.status is SessionStatus.IN_PROGRESS
    assert len(session.logs) == 1


def test_submission_after_approval(orchestrator: WorkflowOrchestrator) -> None:
    session = _with_draft(orchestrator)
    assert orchestrator.approve_draft(session) is True
    assert session.status is SessionStatus.APPROVED
    assert session.draft.status is DraftStatus.APPROVED

    orchestrator.record_submission(session, "https://gs.test/submissions/1")
    assert session.status is SessionStatus.SUBMITTED
    assert session.completed_at is not None
    assert session.draft.status is DraftStatus.SUBMITTED
    assert orchestrator.list_active_sessions() == []


def test_record_error_keeps_resolved_fields(orchestrator: WorkflowOrchestrator) -> None:
    session = orchestrator.create_session("hw 17 from cs 170")
    orchestrator.set_course(session, COURSE, 100)
    orchestrator.record_error(session, "Could not find an assignment")

    assert session.status is SessionStatus.FAILED
    assert session.lms_course == COURSE
    last = session.logs[-1]
    assert last.action is WorkflowAction.ERROR
    assert last.success is False
    assert last.error == "Could not find an assignment"


def test_record_error_on_terminal_session_only_logs(orchestrator: WorkflowOrchestrator) -> None:
    session = _with_draft(orchestrator)
    orchestrator.record_submission(session, "https://gs.test/submissions/1")
    orchestrator.record_error(session, "late failure")
    assert session.status is SessionStatus.SUBMITTED
    assert session.logs[-1].success is False


def test_submitted_session_ignores_later_transitions(
    orchestrator: WorkflowOrchestrator,
) -> None:
    session = _with_draft(orchestrator)
    orchestrator.approve_draft(session)
    assert orchestrator.record_submission(session, "https://gs.test/submissions/1") is True
    logged = len(session.logs)

    assert orchestrator.approve_draft(session) is False
    replacement = DraftStore().save_draft(HW.id, COURSE.id, HW.name, "v2", SolutionFormat.CODE)
    assert orchestrator.set_draft(session, replacement) is False
    assert orchestrator.record_submission(session, "https://gs.test/submissions/2") is False

    assert session.status is SessionStatus.SUBMITTED
    assert session.submission_url == "https://gs.test/submissions/1"
    assert session.draft.status is DraftStatus.SUBMITTED
    assert session.draft.content == "def solve(): pass"
    assert len(session.logs) == logged


def test_failed_session_cannot_be_submitted(orchestrator: WorkflowOrchestrator) -> None:
    session = _with_draft(orchestrator)
    orchestrator.record_error(session, "upload bounced")

    assert orchestrator.record_submission(session, "https://gs.test/submissions/1") is False
    assert orchestrator.approve_draft(session) is False
    assert session.status is SessionStatus.FAILED
    assert session.submission_url is None
    assert session.completed_at is None


def test_logs_are_time_ordered(orchestrator: WorkflowOrchestrator) -> None:
    session = _with_draft(orchestrator)
    orchestrator.approve_draft(session)
    stamps = [entry.timestamp for entry in session.logs]
    assert stamps == sorted(stamps)


def test_summary_and_documentation(orchestrator: WorkflowOrchestrator) -> None:
    session = orchestrator.create_session("hw 17 from cs 170")
    orchestrator.set_course(session, COURSE, 100)
    orchestrator.set_assignment(session, HW, 60)
    orchestrator.set_analysis(session, analyze(HW, COURSE.id))
    draft = DraftStore().save_draft(HW.id, COURSE.id, HW.name, "x" * 600, SolutionFormat.CODE)
    orchestrator.set_draft(session, draft)
    orchestrator.record_error(session, "upload bounced")

    summary = orchestrator.get_summary(session)
    assert summary.startswith(f"# Workflow Session: {session.id}")
    assert "**Course:** CS 170: Efficient Algorithms (CS 170)" in summary
    assert "[FAILED] **error**: upload bounced" in summary

    doc = orchestrator.get_documentation(session)
    assert "ASSIGNMENT COMPLETION REPORT" in doc
    assert "Points: 10" in doc
    assert "x" * 500 + "..." in doc
    assert "x" * 501 not in doc
    assert "Final Status: FAILED" in doc
    assert '"confidence": 60' in doc


@pytest.mark.parametrize(
    ("seconds", "expected"),
    [(42, "42s"), (125, "2m 5s"), (3 * 3600 + 7 * 60 + 9, "3h 7m")],
)
def test_format_duration(seconds: int, expected: str) -> None:
    start = utc_now()
    assert format_duration(start, start + timedelta(seconds=seconds)) == expected


def test_write_draft_file(tmp_path: Path) -> None:
    draft = DraftStore().save_draft(5, 42, "Essay #1: The New Deal", "body", SolutionFormat.ESSAY)
    path = write_draft_file(draft, tmp_path / "drafts")
    assert path.name == "42-5-essay-1-the-new-deal.md"
    assert path.read_text() == "body"
